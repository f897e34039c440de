from typing import Optional

from sqlalchemy.orm import Session

from app.models import Agent
from app.services.evolution_service import EvolutionClient, get_gateway_client
from app.services.llm import LLMProvider, get_llm_provider


class TenantClients:
    """Collaborator clients for one agent, built on first use.

    Credentials are only resolved when a client is actually needed, so a
    text message that never reaches the model does not require an OpenAI key.
    """

    def __init__(
        self,
        db: Session,
        agent: Agent,
        gateway: Optional[EvolutionClient] = None,
        llm: Optional[LLMProvider] = None,
    ):
        self.db = db
        self.agent = agent
        self._gateway = gateway
        self._llm = llm

    @property
    def gateway(self) -> EvolutionClient:
        if self._gateway is None:
            self._gateway = get_gateway_client(self.db, self.agent)
        return self._gateway

    @property
    def llm(self) -> LLMProvider:
        if self._llm is None:
            self._llm = get_llm_provider(self.db, self.agent)
        return self._llm

"""Per-tenant credential resolution.

Order: the agent's own columns, then the process environment (settings), then
the global ``settings`` table. Missing credentials are a configuration error,
never retried.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import get_logger
from app.models import Agent, AppSetting

logger = get_logger("credentials")


class CredentialsNotConfiguredError(Exception):
    """No usable credentials for a collaborator."""

    def __init__(self, service: str, agent_id=None):
        self.service = service
        self.agent_id = agent_id
        super().__init__(f"{service} credentials not configured")


@dataclass(frozen=True)
class OpenAICredentials:
    api_key: str
    base_url: str


@dataclass(frozen=True)
class GatewayCredentials:
    api_url: str
    api_key: str


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def clean_gateway_url(url: str) -> str:
    """Normalize a gateway base URL (dashboard links end in /manager)."""
    url = url.strip().rstrip("/")
    if url.endswith("/manager"):
        url = url[: -len("/manager")]
    return url.rstrip("/")


def get_app_setting(db: Session, key: str) -> Optional[str]:
    row = db.query(AppSetting).filter(AppSetting.key == key).first()
    return _clean(row.value) if row else None


def resolve_openai_credentials(db: Session, agent: Optional[Agent]) -> OpenAICredentials:
    api_key = _clean(getattr(agent, "openai_api_key", None)) if agent else None
    source = "agent"
    if not api_key:
        api_key = _clean(settings.openai_api_key)
        source = "env"
    if not api_key:
        api_key = get_app_setting(db, "openai_api_key")
        source = "settings_table"
    if not api_key:
        raise CredentialsNotConfiguredError("openai", getattr(agent, "id", None))

    logger.debug("Resolved OpenAI credentials", extra={"context": {"source": source}})
    return OpenAICredentials(api_key=api_key, base_url=settings.openai_base_url.rstrip("/"))


def resolve_gateway_credentials(db: Session, agent: Optional[Agent]) -> GatewayCredentials:
    api_url = _clean(getattr(agent, "evolution_api_url", None)) if agent else None
    api_key = _clean(getattr(agent, "evolution_api_key", None)) if agent else None

    if not api_url or not api_key:
        api_url = api_url or _clean(settings.evolution_api_url)
        api_key = api_key or _clean(settings.evolution_api_key)
    if not api_url or not api_key:
        api_url = api_url or get_app_setting(db, "evolution_api_url")
        api_key = api_key or get_app_setting(db, "evolution_api_key")
    if not api_url or not api_key:
        raise CredentialsNotConfiguredError("evolution", getattr(agent, "id", None))

    return GatewayCredentials(api_url=clean_gateway_url(api_url), api_key=api_key)

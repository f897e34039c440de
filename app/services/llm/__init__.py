from functools import lru_cache

from sqlalchemy.orm import Session

from app.config import settings
from app.models import Agent
from app.services.credentials_service import OpenAICredentials, resolve_openai_credentials
from app.services.llm.base import LLMProvider, LLMProviderError, LLMResponse, LLMToolCall
from app.services.llm.openai_provider import OpenAIProvider

__all__ = [
    "LLMProvider",
    "LLMProviderError",
    "LLMResponse",
    "LLMToolCall",
    "OpenAIProvider",
    "get_llm_provider",
]


@lru_cache(maxsize=64)
def _provider_for(credentials: OpenAICredentials) -> OpenAIProvider:
    return OpenAIProvider(
        api_key=credentials.api_key,
        default_model=settings.openai_model,
        base_url=credentials.base_url,
        timeout_seconds=settings.openai_timeout_seconds,
        transcription_model=settings.transcription_model,
        transcription_language=settings.transcription_language,
    )


def get_llm_provider(db: Session, agent: Agent | None) -> LLMProvider:
    """Completion client for a tenant, keyed by its resolved credentials.

    Raises CredentialsNotConfiguredError when no key is available.
    """
    return _provider_for(resolve_openai_credentials(db, agent))

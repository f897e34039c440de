from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Union

# Plain text, or OpenAI-style content parts (text + image_url) for multimodal input.
UserContent = Union[str, List[dict]]


class LLMProviderError(Exception):
    """Completion service call failed (transport, HTTP status or payload)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass
class LLMToolCall:
    id: str
    name: str
    arguments: str  # raw JSON string as returned by the model


@dataclass
class LLMResponse:
    content: str
    model: str
    tool_calls: List[LLMToolCall] = field(default_factory=list)
    usage: Optional[dict] = None


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    def complete_chat(
        self,
        *,
        model: Optional[str],
        system_prompt: str,
        history: List[dict],
        user_content: UserContent,
        tools: Optional[List[dict]] = None,
        max_tokens: int = 1000,
    ) -> LLMResponse:
        """Run one chat completion turn."""
        pass

    @abstractmethod
    def transcribe_audio(self, *, audio_bytes: bytes, filename: str, mime_type: Optional[str] = None) -> str:
        """Speech to text."""
        pass

    @abstractmethod
    def describe_image(self, *, image_base64: str, mime_type: str = "image/jpeg", prompt: Optional[str] = None) -> str:
        """Describe an image, transcribing any visible text."""
        pass

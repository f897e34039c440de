from typing import List, Optional

import httpx

from app.logging_config import get_logger
from app.services.llm.base import LLMProvider, LLMProviderError, LLMResponse, LLMToolCall, UserContent

logger = get_logger("llm.openai")

DEFAULT_IMAGE_PROMPT = (
    "Descreva esta imagem em detalhes. Se houver texto visível, transcreva-o integralmente."
)


class OpenAIProvider(LLMProvider):
    """OpenAI API provider."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o",
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 60.0,
        transcription_model: str = "whisper-1",
        transcription_language: Optional[str] = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.timeout_seconds = timeout_seconds
        self.transcription_model = transcription_model
        self.transcription_language = transcription_language
        base_url = base_url.rstrip("/")
        self.chat_url = f"{base_url}/chat/completions"
        self.audio_url = f"{base_url}/audio/transcriptions"

    def _post_chat(self, payload: dict) -> dict:
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    self.chat_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as exc:
            logger.error(f"OpenAI transport error: {exc}")
            raise LLMProviderError(f"OpenAI transport error: {exc}") from exc

        logger.debug(f"OpenAI response status: {response.status_code}")
        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.text}")
            raise LLMProviderError(
                f"OpenAI API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )
        return response.json()

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
        """Generate one assistant turn, optionally with tool calling."""
        model = model or self.default_model
        messages = [{"role": "system", "content": system_prompt}, *history, {"role": "user", "content": user_content}]

        payload = {
            "model": model,
            "messages": messages,
            "max_completion_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}, tools={len(tools or [])}")
        data = self._post_chat(payload)

        content = ""
        tool_calls: List[LLMToolCall] = []
        if data.get("choices"):
            message = data["choices"][0].get("message") or {}
            content = message.get("content") or ""
            for call in message.get("tool_calls") or []:
                function = call.get("function") or {}
                tool_calls.append(
                    LLMToolCall(
                        id=call.get("id", ""),
                        name=function.get("name", ""),
                        arguments=function.get("arguments") or "{}",
                    )
                )

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            tool_calls=tool_calls,
            usage=data.get("usage"),
        )

    def describe_image(self, *, image_base64: str, mime_type: str = "image/jpeg", prompt: Optional[str] = None) -> str:
        payload = {
            "model": self.default_model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt or DEFAULT_IMAGE_PROMPT},
                        {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{image_base64}"}},
                    ],
                }
            ],
            "max_completion_tokens": 1000,
        }
        data = self._post_chat(payload)
        choices = data.get("choices") or []
        if not choices:
            return ""
        return ((choices[0].get("message") or {}).get("content") or "").strip()

    def transcribe_audio(
        self,
        *,
        audio_bytes: bytes,
        filename: str,
        mime_type: Optional[str] = None,
    ) -> str:
        """Transcribe audio using OpenAI speech-to-text."""
        if not audio_bytes:
            raise ValueError("audio_bytes is empty")

        files = {"file": (filename or "audio.ogg", audio_bytes, mime_type or "application/octet-stream")}
        data = {"model": self.transcription_model, "response_format": "text"}
        if self.transcription_language:
            data["language"] = self.transcription_language

        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    self.audio_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    files=files,
                    data=data,
                )
        except httpx.HTTPError as exc:
            raise LLMProviderError(f"OpenAI transcription transport error: {exc}") from exc

        logger.debug(f"OpenAI transcription status: {response.status_code}")
        if response.status_code != 200:
            logger.error(f"OpenAI transcription error: {response.text}")
            raise LLMProviderError(
                f"OpenAI transcription error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        transcript = (response.text or "").strip()
        if not transcript:
            logger.warning("OpenAI transcription returned empty text")
        return transcript

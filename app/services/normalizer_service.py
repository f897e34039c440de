"""Turn one inbound WhatsApp payload into canonical text.

Media handling never raises past this module: any failure downgrades to a
placeholder string and the pipeline keeps going.
"""

import base64
from dataclasses import dataclass
from typing import Optional

from app.logging_config import get_logger
from app.models import Agent
from app.schemas.webhook import MessageContent
from app.services.evolution_service import GatewayError
from app.services.llm.base import LLMProviderError
from app.services.tenant_service import TenantClients

logger = get_logger("normalizer")

AUDIO_DOWNLOAD_FAILED = "[Áudio recebido - não foi possível transcrever]"
AUDIO_TRANSCRIPTION_FAILED = "[Áudio recebido - erro na transcrição]"
IMAGE_UNPROCESSABLE = "[Imagem recebida - não foi possível processar]"
IMAGE_FAILED = "[Imagem recebida - erro no processamento]"

DEFAULT_AUDIO_MIME = "audio/ogg"


@dataclass
class NormalizedContent:
    """Canonical text plus provenance of how it was obtained."""

    text: Optional[str]
    kind: str = "text"  # text, audio, image, document
    degraded: bool = False
    reason: Optional[str] = None
    image_base64: Optional[str] = None
    image_mime: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.text or "").strip()

    @property
    def is_audio(self) -> bool:
        return self.kind == "audio"

    def as_metadata(self) -> dict:
        meta = {"kind": self.kind}
        if self.degraded:
            meta["degraded"] = True
            meta["degraded_reason"] = self.reason
        return meta


def clean_audio_mime(raw_mime: Optional[str]) -> str:
    """`audio/ogg; codecs=opus` -> `audio/ogg`."""
    return (raw_mime or DEFAULT_AUDIO_MIME).split(";")[0].strip() or DEFAULT_AUDIO_MIME


def infer_audio_filename(mime_type: str) -> str:
    """Filename with an extension the transcription endpoint accepts."""
    if "mp3" in mime_type or "mpeg" in mime_type:
        return "audio.mp3"
    if "mp4" in mime_type or "m4a" in mime_type:
        return "audio.m4a"
    if "wav" in mime_type:
        return "audio.wav"
    if "webm" in mime_type:
        return "audio.webm"
    return "audio.ogg"


def extract_text(message: Optional[MessageContent]) -> Optional[str]:
    if message is None:
        return None
    if message.conversation:
        return message.conversation
    if message.extendedTextMessage and message.extendedTextMessage.text:
        return message.extendedTextMessage.text
    return None


class ContentNormalizer:
    def __init__(self, clients: TenantClients, instance_name: str):
        self.clients = clients
        self.instance_name = instance_name

    def normalize(self, message: Optional[MessageContent], agent: Agent, event_id: Optional[str]) -> NormalizedContent:
        # Precedence: image > document > audio > text; a disabled capability falls through.
        if message is not None:
            if message.imageMessage is not None and agent.image_enabled is not False:
                return self._normalize_image(message, event_id)
            if message.documentMessage is not None and agent.document_enabled is not False:
                return self._normalize_document(message, event_id)
            if message.audioMessage is not None and agent.audio_enabled is not False:
                return self._normalize_audio(message, event_id)
        return NormalizedContent(text=extract_text(message), kind="text")

    def _download(self, event_id: Optional[str]) -> Optional[str]:
        if not event_id:
            return None
        return self.clients.gateway.download_media_base64(self.instance_name, event_id)

    def _normalize_audio(self, message: MessageContent, event_id: Optional[str]) -> NormalizedContent:
        mime_type = clean_audio_mime(message.audioMessage.mimetype)
        try:
            media_b64 = self._download(event_id)
        except GatewayError as exc:
            logger.warning("Audio download failed", extra={"context": {"event_id": event_id, "error": str(exc)}})
            media_b64 = None
        if not media_b64:
            return NormalizedContent(AUDIO_DOWNLOAD_FAILED, kind="audio", degraded=True, reason="download_failed")

        try:
            audio_bytes = base64.b64decode(media_b64)
            transcript = self.clients.llm.transcribe_audio(
                audio_bytes=audio_bytes,
                filename=infer_audio_filename(mime_type),
                mime_type=mime_type,
            )
        except (LLMProviderError, ValueError) as exc:
            logger.warning(
                "Audio transcription failed",
                extra={"context": {"event_id": event_id, "error": str(exc)}},
            )
            return NormalizedContent(AUDIO_TRANSCRIPTION_FAILED, kind="audio", degraded=True, reason="transcription_failed")

        if not transcript:
            return NormalizedContent(AUDIO_TRANSCRIPTION_FAILED, kind="audio", degraded=True, reason="empty_transcript")
        return NormalizedContent(transcript, kind="audio")

    def _describe(self, media_b64: str, mime_type: str, prompt: Optional[str]) -> str:
        return self.clients.llm.describe_image(image_base64=media_b64, mime_type=mime_type, prompt=prompt)

    def _normalize_image(self, message: MessageContent, event_id: Optional[str]) -> NormalizedContent:
        caption = (message.imageMessage.caption or "").strip()
        mime_type = message.imageMessage.mimetype or "image/jpeg"
        try:
            media_b64 = self._download(event_id)
            if not media_b64:
                return NormalizedContent(
                    caption or IMAGE_UNPROCESSABLE, kind="image", degraded=True, reason="download_failed"
                )
            prompt = f'O usuário enviou esta imagem com a legenda: "{caption}". Analise a imagem.' if caption else None
            analysis = self._describe(media_b64, mime_type, prompt)
        except (GatewayError, LLMProviderError, ValueError) as exc:
            logger.warning("Image analysis failed", extra={"context": {"event_id": event_id, "error": str(exc)}})
            return NormalizedContent(caption or IMAGE_FAILED, kind="image", degraded=True, reason="analysis_failed")

        if caption:
            text = f'[Imagem com legenda: "{caption}"]\n\nAnálise da imagem: {analysis}'
        else:
            text = f"[Imagem recebida]\n\nAnálise: {analysis}"
        return NormalizedContent(text, kind="image", image_base64=media_b64, image_mime=mime_type)

    def _normalize_document(self, message: MessageContent, event_id: Optional[str]) -> NormalizedContent:
        document = message.documentMessage
        file_name = document.fileName or document.title or "documento"
        mime_type = document.mimetype or ""

        if mime_type.startswith("image/"):
            try:
                media_b64 = self._download(event_id)
                if not media_b64:
                    return NormalizedContent(
                        f"[Documento recebido: {file_name}]", kind="document", degraded=True, reason="download_failed"
                    )
                analysis = self._describe(media_b64, mime_type, None)
            except (GatewayError, LLMProviderError, ValueError) as exc:
                logger.warning(
                    "Document analysis failed", extra={"context": {"event_id": event_id, "error": str(exc)}}
                )
                return NormalizedContent(
                    f"[Documento recebido: {file_name} - erro no processamento]",
                    kind="document",
                    degraded=True,
                    reason="analysis_failed",
                )
            return NormalizedContent(f"[Documento: {file_name}]\n\nConteúdo: {analysis}", kind="document")

        if mime_type == "application/pdf":
            return NormalizedContent(
                f"[Documento PDF recebido: {file_name}]\n\nNota: Recebi seu documento. Como posso ajudá-lo com ele?",
                kind="document",
            )
        # Full document parsing is not supported; acknowledge receipt only.
        return NormalizedContent(f"[Documento recebido: {file_name}]", kind="document")

"""Split replies into human-sized chunks and deliver them with pauses."""

import asyncio
import base64
import random
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

import httpx

from app.logging_config import get_logger
from app.models import AgentMedia
from app.services.evolution_service import EvolutionClient, GatewayError

logger = get_logger("pacer")

SPLIT_DELIMITER_RE = re.compile(r"\n*-{3,}\n*")
PARAGRAPH_RE = re.compile(r"\n\s*\n")
SENTENCE_RE = re.compile(r"(?<=[.!?…])\s+")

NO_SPLIT_MAX_CHARS = 300
PARAGRAPH_CHUNK_MAX_CHARS = 400
SENTENCE_CHUNK_MAX_CHARS = 350

CHUNK_DELAY_RANGE_SECONDS = (0.8, 1.2)
MEDIA_ITEM_DELAY_SECONDS = 0.8
GALLERY_FILE_DELAY_SECONDS = 0.5
MEDIA_DOWNLOAD_TIMEOUT_SECONDS = 30.0

MEDIA_FAILED_REPLY = (
    "Tive um problema ao enviar a imagem/vídeo agora. Pode tentar novamente ou me dizer qual produto você quer ver?"
)

Sleep = Callable[[float], Awaitable[None]]


def _pack(pieces: Sequence[str], max_chars: int, joiner: str) -> List[str]:
    chunks: List[str] = []
    current = ""
    for piece in pieces:
        piece = piece.strip()
        if not piece:
            continue
        candidate = f"{current}{joiner}{piece}" if current else piece
        if current and len(candidate) > max_chars:
            chunks.append(current)
            current = piece
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


def _split_sentences(text: str, max_chars: int) -> List[str]:
    return _pack(SENTENCE_RE.split(text), max_chars, " ")


def split_reply(text: str) -> List[str]:
    """Chunk a reply for sequential delivery.

    An explicit `---` delimiter always wins. Otherwise short replies stay whole,
    paragraphs are packed greedily, and long paragraph-less text is packed by
    sentence.
    """
    text = (text or "").strip()
    if not text:
        return []

    if SPLIT_DELIMITER_RE.search(text):
        return [segment.strip() for segment in SPLIT_DELIMITER_RE.split(text) if segment.strip()]

    if len(text) <= NO_SPLIT_MAX_CHARS:
        return [text]

    paragraphs = [p.strip() for p in PARAGRAPH_RE.split(text) if p.strip()]
    if len(paragraphs) > 1:
        pieces: List[str] = []
        for paragraph in paragraphs:
            if len(paragraph) > PARAGRAPH_CHUNK_MAX_CHARS:
                pieces.extend(_split_sentences(paragraph, PARAGRAPH_CHUNK_MAX_CHARS))
            else:
                pieces.append(paragraph)
        return _pack(pieces, PARAGRAPH_CHUNK_MAX_CHARS, "\n\n")

    return _split_sentences(text, SENTENCE_CHUNK_MAX_CHARS)


def chunk_delay_seconds() -> float:
    return random.uniform(*CHUNK_DELAY_RANGE_SECONDS)


async def deliver_chunks(
    gateway: EvolutionClient,
    instance: str,
    phone: str,
    chunks: Sequence[str],
    *,
    sleep: Sleep = asyncio.sleep,
) -> int:
    """Send chunks in order with a short random pause between them.

    A failed send stops the sequence; chunks already sent stay sent.
    Returns the number of chunks delivered.
    """
    sent = 0
    for index, chunk in enumerate(chunks):
        if index > 0:
            await sleep(chunk_delay_seconds())
        try:
            await asyncio.to_thread(gateway.send_text, instance, phone, chunk)
        except GatewayError as exc:
            logger.error(
                "Chunk send failed, stopping sequence",
                extra={"context": {"phone": phone, "chunk_index": index, "chunks": len(chunks), "error": str(exc)}},
            )
            break
        sent += 1
    return sent


@dataclass
class MediaFile:
    base64: str
    mime_type: str


def parse_data_url(url: str) -> Optional[MediaFile]:
    if not url.startswith("data:") or "base64," not in url:
        return None
    header, _, payload = url.partition("base64,")
    mime_type = header[len("data:") :].rstrip(";")
    return MediaFile(base64=payload.strip(), mime_type=mime_type)


async def _load_media_file(url: str, fallback_mime: str) -> Optional[MediaFile]:
    if not url:
        return None
    data_file = parse_data_url(url)
    if data_file is not None:
        return data_file
    if url.startswith(("http://", "https://")):
        async with httpx.AsyncClient(timeout=MEDIA_DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
        mime_type = response.headers.get("content-type", "").split(";")[0].strip() or fallback_mime
        return MediaFile(base64=base64.b64encode(response.content).decode("ascii"), mime_type=mime_type)
    return None


async def deliver_media(
    gateway: EvolutionClient,
    instance: str,
    phone: str,
    media_items: Sequence[AgentMedia],
    *,
    sleep: Sleep = asyncio.sleep,
) -> int:
    """Send every file of every queued media item.

    The first file of an item carries the item name as caption. If nothing at
    all could be sent, the customer gets a short apology instead.
    """
    sent = 0
    errors = 0
    for item_index, item in enumerate(media_items):
        if item_index > 0:
            await sleep(MEDIA_ITEM_DELAY_SECONDS)
        file_urls = list(item.file_urls or [])
        mime_types = list(item.mime_types or [])
        if not file_urls:
            logger.error("Media item has no files", extra={"context": {"media": item.name}})
            errors += 1
            continue

        for file_index, url in enumerate(file_urls):
            declared_mime = mime_types[file_index] if file_index < len(mime_types) else None
            try:
                media_file = await _load_media_file(url, declared_mime or "image/jpeg")
                if media_file is None:
                    logger.error(
                        "Unusable media URL",
                        extra={"context": {"media": item.name, "url_preview": str(url)[:60]}},
                    )
                    errors += 1
                    continue
                await asyncio.to_thread(
                    gateway.send_media,
                    instance,
                    phone,
                    media_file.base64,
                    declared_mime or media_file.mime_type or "image/jpeg",
                    caption=item.name if file_index == 0 else None,
                    file_name=item.name,
                )
                sent += 1
            except (GatewayError, httpx.HTTPError) as exc:
                errors += 1
                logger.error(
                    "Media send failed",
                    extra={"context": {"media": item.name, "file_index": file_index, "error": str(exc)}},
                )
            if file_index < len(file_urls) - 1:
                await sleep(GALLERY_FILE_DELAY_SECONDS)

    logger.info("Media delivery summary", extra={"context": {"phone": phone, "sent": sent, "errors": errors}})
    if errors and not sent:
        try:
            await asyncio.to_thread(gateway.send_text, instance, phone, MEDIA_FAILED_REPLY)
        except GatewayError as exc:
            logger.error("Failed to notify customer about media failure", extra={"context": {"error": str(exc)}})
    return sent

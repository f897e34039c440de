"""Resolve model tool calls into the reply actually sent to the customer."""

import json
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from app.logging_config import get_logger
from app.models import AgentMedia
from app.services.llm.base import LLMResponse, LLMToolCall

logger = get_logger("tool_service")

HANDOFF_ACK = "Entendido! Estou acionando um atendente humano para te ajudar. Em breve você será atendido. 🙌"
MEDIA_DEFAULT_ACK = "Perfeito! Vou te enviar agora."
MEDIA_NOT_FOUND = "Desculpe, não encontrei a mídia solicitada."
FALLBACK_REPLY = "Desculpe, não consegui gerar uma resposta."


class ReplySource:
    MODEL = "model"
    SEND_MEDIA = "tool:send_media"
    SEND_MEDIA_NOT_FOUND = "tool:send_media_not_found"
    NOTIFY_HUMAN = "tool:notify_human"
    FALLBACK = "fallback"


class MediaMatcher(Protocol):
    def match(self, requested: str, catalog: Sequence[AgentMedia]) -> Optional[AgentMedia]: ...


class SubstringMediaMatcher:
    """Case-insensitive substring match in either direction; first catalog hit wins."""

    def match(self, requested: str, catalog: Sequence[AgentMedia]) -> Optional[AgentMedia]:
        wanted = str(requested).strip().lower()
        if not wanted:
            return None
        for item in catalog:
            name = (item.name or "").lower()
            if name and (wanted in name or name in wanted):
                return item
        return None


@dataclass
class HandoffRequest:
    reason: str
    conversation_history: str
    order_details: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None


@dataclass
class AgentReply:
    text: str
    source: str
    media: List[AgentMedia] = field(default_factory=list)
    handoff: Optional[HandoffRequest] = None


def _parse_arguments(call: LLMToolCall) -> Optional[dict]:
    try:
        args = json.loads(call.arguments or "{}")
    except (TypeError, ValueError) as exc:
        logger.warning(
            "Malformed tool arguments, skipping call",
            extra={"context": {"tool": call.name, "error": str(exc)}},
        )
        return None
    if not isinstance(args, dict):
        logger.warning("Tool arguments are not an object, skipping call", extra={"context": {"tool": call.name}})
        return None
    return args


def _match_media(args: dict, catalog: Sequence[AgentMedia], matcher: MediaMatcher) -> List[AgentMedia]:
    names = args.get("media_names") or []
    if isinstance(names, str):
        names = [names]

    matched: List[AgentMedia] = []
    for name in names:
        item = matcher.match(name, catalog)
        if item is None:
            logger.info("Media not found", extra={"context": {"requested": name}})
            continue
        matched.append(item)
    return matched


def interpret_completion(
    response: LLMResponse,
    catalog: Sequence[AgentMedia],
    *,
    customer_phone: Optional[str] = None,
    matcher: Optional[MediaMatcher] = None,
) -> AgentReply:
    """Turn a completion into reply text, media queue and optional handoff.

    Media matches accumulate over every send_media call of the turn and the
    last suggested message wins. notify_human overrides any media decision.
    """
    matcher = matcher or SubstringMediaMatcher()
    text = (response.content or "").strip()
    source = ReplySource.MODEL
    media: List[AgentMedia] = []
    media_requested = False
    suggested = ""
    handoff: Optional[HandoffRequest] = None

    for call in response.tool_calls:
        if call.name not in ("send_media", "notify_human"):
            logger.warning("Unknown tool call ignored", extra={"context": {"tool": call.name}})
            continue
        args = _parse_arguments(call)
        if args is None:
            continue

        if call.name == "send_media":
            media_requested = True
            message = str(args.get("message") or "").strip()
            if message:
                suggested = message
            for item in _match_media(args, catalog, matcher):
                if item not in media:
                    media.append(item)
        else:
            handoff = HandoffRequest(
                reason=str(args.get("reason") or "Transferência solicitada"),
                conversation_history=str(args.get("conversation_history") or ""),
                order_details=args.get("order_details") or None,
                customer_name=args.get("customer_name") or None,
                customer_phone=customer_phone,
            )

    if handoff is not None:
        text, source, media = HANDOFF_ACK, ReplySource.NOTIFY_HUMAN, []
    elif media:
        text, source = suggested or MEDIA_DEFAULT_ACK, ReplySource.SEND_MEDIA
    elif media_requested:
        text, source = suggested or MEDIA_NOT_FOUND, ReplySource.SEND_MEDIA_NOT_FOUND

    if not text:
        text, source = FALLBACK_REPLY, ReplySource.FALLBACK

    return AgentReply(text=text, source=source, media=media, handoff=handoff)

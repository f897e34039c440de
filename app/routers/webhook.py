import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.logging_config import LoggerAdapter, get_logger
from app.models import Agent
from app.schemas.webhook import WebhookEvent, WebhookResponse
from app.services.ai_service import generate_agent_reply
from app.services.alert_service import alert_error, alert_warning
from app.services.conversation_service import (
    ConversationKey,
    get_agent_by_instance,
    increment_message_count,
    record_agent_activity,
    save_message,
)
from app.services.credentials_service import CredentialsNotConfiguredError
from app.services.dedup_service import EventDeduplicator, event_deduplicator
from app.services.evolution_service import GatewayError
from app.services.handoff_service import notify_human
from app.services.llm import LLMProviderError
from app.services.normalizer_service import ContentNormalizer
from app.services.pacer_service import deliver_chunks, deliver_media, split_reply
from app.services.policy_service import PolicyOutcome, evaluate_policies
from app.services.tenant_service import TenantClients
from app.services.tool_service import interpret_completion

logger = get_logger("webhook")

router = APIRouter()

MESSAGE_UPSERT_EVENTS = {"messages.upsert", "messages_upsert"}


def _is_message_event(event: WebhookEvent) -> bool:
    if event.data is None:
        return False
    if event.event is None:
        return True
    return event.event.strip().lower() in MESSAGE_UPSERT_EVENTS


def _ignored(reason: str, message_id: Optional[str] = None) -> WebhookResponse:
    return WebhookResponse(status="ignored", reason=reason, message_id=message_id)


def reply_timestamp(received_at: datetime) -> datetime:
    """Wall-clock time for an agent reply, strictly after the message it answers."""
    return max(datetime.now(timezone.utc), received_at + timedelta(milliseconds=1))


def _record_agent_reply(
    db: Session,
    agent: Agent,
    key: ConversationKey,
    text: str,
    metadata: dict,
    received_at: datetime,
) -> None:
    replied_at = reply_timestamp(received_at)
    save_message(db, key, "agent", text, status="sent", message_metadata=metadata, now=replied_at)
    record_agent_activity(db, key, replied_at)
    increment_message_count(db, agent.id, replied_at)


async def _handle_webhook_event(
    event: WebhookEvent,
    instance_name: str,
    db: Session,
    *,
    now: Optional[datetime] = None,
    deduplicator: EventDeduplicator = event_deduplicator,
    clients: Optional[TenantClients] = None,
) -> WebhookResponse:
    """One gateway event in, zero or more outbound messages out."""
    if not _is_message_event(event):
        return _ignored("unsupported_event")

    data = event.data
    event_id = data.key.id
    if deduplicator.check_and_record(event_id):
        logger.info("Duplicate webhook ignored", extra={"context": {"event_id": event_id}})
        return _ignored("duplicate", event_id)

    agent = get_agent_by_instance(db, instance_name)
    if agent is None:
        logger.info("No online agent for instance", extra={"context": {"instance": instance_name}})
        return _ignored("no_agent", event_id)

    now = now or datetime.now(timezone.utc)
    key = ConversationKey.from_remote_jid(agent.id, data.key.remoteJid)
    log = LoggerAdapter(
        logger,
        {"instance": instance_name, "agent_id": str(agent.id), "phone": key.phone_number, "event_id": event_id},
    )
    clients = clients or TenantClients(db, agent)

    try:
        # Gateway, model and store calls are blocking; keep them off the event loop.
        normalizer = ContentNormalizer(clients, instance_name)
        content = await asyncio.to_thread(normalizer.normalize, data.message, agent, event_id)
        if content.is_empty:
            return _ignored("no_content", event_id)

        decision = evaluate_policies(
            db, agent, key, content, from_owner=data.key.fromMe, now=now, event_id=event_id
        )
        db.commit()

        if decision.outcome == PolicyOutcome.OUT_OF_HOURS:
            sent = 0
            try:
                await asyncio.to_thread(
                    clients.gateway.send_text, instance_name, key.phone_number, decision.reply_text
                )
                sent = 1
            except GatewayError as exc:
                log.error("Out-of-hours reply failed", context={"error": str(exc)})
            _record_agent_reply(db, agent, key, decision.reply_text, {"source": "out_of_hours"}, now)
            db.commit()
            return WebhookResponse(status="ok", reason=decision.outcome.value, message_id=event_id, chunks_sent=sent)

        if not decision.should_generate:
            return WebhookResponse(
                status="ok",
                reason=decision.outcome.value,
                message_id=event_id,
                remaining_seconds=decision.remaining_seconds,
            )

        try:
            completion = await asyncio.to_thread(
                generate_agent_reply, db, agent, key, content, now=now, llm=clients.llm
            )
        except LLMProviderError as exc:
            log.error("Completion failed, no reply sent", context={"error": str(exc)})
            alert_error("Completion failed", {"agent": agent.name, "phone": key.phone_number, "error": str(exc)})
            return WebhookResponse(status="ok", reason="reply_failed", message_id=event_id)

        reply = interpret_completion(completion.response, completion.media_items, customer_phone=key.phone_number)
        _record_agent_reply(
            db,
            agent,
            key,
            reply.text,
            {
                "source": reply.source,
                "model": completion.response.model,
                "media": [item.name for item in reply.media],
                "handoff": reply.handoff is not None,
                "tools_used": completion.used_tools,
            },
            now,
        )
        db.commit()

        chunks = split_reply(reply.text)
        chunks_sent = await deliver_chunks(clients.gateway, instance_name, key.phone_number, chunks)
        media_sent = 0
        if reply.media:
            media_sent = await deliver_media(clients.gateway, instance_name, key.phone_number, reply.media)
        if reply.handoff is not None:
            await asyncio.to_thread(notify_human, clients.gateway, agent, reply.handoff)

        log.info(
            "Reply delivered",
            context={"source": reply.source, "chunks": len(chunks), "chunks_sent": chunks_sent, "media_sent": media_sent},
        )
        return WebhookResponse(
            status="ok",
            reason="replied",
            message_id=event_id,
            chunks_sent=chunks_sent,
            media_sent=media_sent,
        )
    except CredentialsNotConfiguredError as exc:
        db.rollback()
        log.error("Credentials not configured", context={"service": exc.service})
        alert_warning("Credentials not configured", {"agent": agent.name, "service": exc.service})
        return WebhookResponse(status="error", reason="credentials_not_configured", message_id=event_id)
    except Exception as exc:
        db.rollback()
        log.exception("Webhook processing failed", context={"error": str(exc)})
        raise


@router.post("/webhook/{instance_name}", response_model=WebhookResponse)
async def handle_webhook(instance_name: str, event: WebhookEvent, db: Session = Depends(get_db)):
    return await _handle_webhook_event(event, instance_name, db)

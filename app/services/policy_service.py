from dataclasses import dataclass
from datetime import datetime, time, timezone
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Agent
from app.models.agent import (
    DEFAULT_OPERATING_HOURS_END,
    DEFAULT_OPERATING_HOURS_START,
    DEFAULT_TAKEOVER_TIMEOUT_SECONDS,
    DEFAULT_TIMEZONE,
)
from app.services.conversation_service import (
    ConversationKey,
    delete_takeover,
    get_takeover,
    increment_message_count,
    record_user_activity,
    save_message,
    upsert_takeover,
)
from app.services.normalizer_service import NormalizedContent

logger = get_logger("policy")

DEFAULT_OUT_OF_HOURS_MESSAGE = (
    "Olá! Nosso horário de atendimento é das 09:00 às 18:00. "
    "Deixe sua mensagem que responderemos assim que possível! 🕐"
)


class PolicyOutcome(str, Enum):
    OWNER_MESSAGE_STORED = "owner_message_stored"
    GHOST_MODE = "ghost_mode"
    OUT_OF_HOURS = "out_of_hours"
    TAKEOVER_ACTIVE = "takeover_active"
    PROCEED = "proceed"


@dataclass
class PolicyDecision:
    outcome: PolicyOutcome
    remaining_seconds: Optional[int] = None
    reply_text: Optional[str] = None  # set for OUT_OF_HOURS

    @property
    def should_generate(self) -> bool:
        return self.outcome == PolicyOutcome.PROCEED


def _ensure_timezone(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def agent_zone(agent: Agent) -> ZoneInfo:
    name = agent.operating_hours_timezone or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, using {DEFAULT_TIMEZONE}")
        return ZoneInfo(DEFAULT_TIMEZONE)


def _as_minutes(value, default: time) -> int:
    if isinstance(value, str):
        hour, _, minute = value.partition(":")
        return int(hour) * 60 + int(minute[:2] or 0)
    value = value or default
    return value.hour * 60 + value.minute


def is_within_operating_hours(agent: Agent, now: datetime) -> bool:
    """Minute-precision check of `now` against the agent's [start, end) window.

    A window whose start is after its end wraps past midnight.
    """
    if not agent.operating_hours_enabled:
        return True

    local = _ensure_timezone(now).astimezone(agent_zone(agent))
    current = local.hour * 60 + local.minute
    start = _as_minutes(agent.operating_hours_start, DEFAULT_OPERATING_HOURS_START)
    end = _as_minutes(agent.operating_hours_end, DEFAULT_OPERATING_HOURS_END)

    if start <= end:
        return start <= current < end
    return current >= start or current < end


def takeover_timeout_seconds(agent: Agent) -> int:
    timeout = agent.takeover_timeout or 0
    return timeout if timeout > 0 else DEFAULT_TAKEOVER_TIMEOUT_SECONDS


def evaluate_policies(
    db: Session,
    agent: Agent,
    key: ConversationKey,
    content: NormalizedContent,
    *,
    from_owner: bool,
    now: datetime,
    event_id: Optional[str] = None,
) -> PolicyDecision:
    """Run the ordered behavioral rules for one inbound message.

    Persists the inbound message (as owner or user) before any rule that can
    suppress a reply, so ghost/takeover/out-of-hours traffic is still logged.
    """
    metadata = {"event_id": event_id, **content.as_metadata()}

    if from_owner:
        save_message(
            db,
            key,
            "owner",
            content.text,
            status="sent",
            is_audio=content.is_audio,
            is_from_owner=True,
            message_metadata={**metadata, "source": "owner"},
            now=now,
        )
        upsert_takeover(db, key, now)
        increment_message_count(db, agent.id, now)
        logger.info(
            "Owner message stored, takeover activated",
            extra={"context": {"agent_id": str(agent.id), "phone": key.phone_number}},
        )
        return PolicyDecision(PolicyOutcome.OWNER_MESSAGE_STORED)

    save_message(
        db,
        key,
        "user",
        content.text,
        status="received",
        is_audio=content.is_audio,
        message_metadata=metadata,
        now=now,
    )
    record_user_activity(db, key, now)
    increment_message_count(db, agent.id, now)

    if agent.ghost_mode:
        logger.info("Ghost mode: skipping response", extra={"context": {"phone": key.phone_number}})
        return PolicyDecision(PolicyOutcome.GHOST_MODE)

    if not is_within_operating_hours(agent, now):
        return PolicyDecision(
            PolicyOutcome.OUT_OF_HOURS,
            reply_text=agent.out_of_hours_message or DEFAULT_OUT_OF_HOURS_MESSAGE,
        )

    takeover = get_takeover(db, key)
    if takeover is not None:
        timeout = takeover_timeout_seconds(agent)
        elapsed = (now - _ensure_timezone(takeover.taken_over_at)).total_seconds()
        if elapsed < timeout:
            remaining = round(timeout - elapsed)
            logger.info(
                "Takeover active",
                extra={"context": {"phone": key.phone_number, "remaining_seconds": remaining}},
            )
            return PolicyDecision(PolicyOutcome.TAKEOVER_ACTIVE, remaining_seconds=remaining)
        delete_takeover(db, key)
        logger.info("Takeover expired, agent resuming", extra={"context": {"phone": key.phone_number}})

    return PolicyDecision(PolicyOutcome.PROCEED)

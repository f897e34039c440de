from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Agent, ConversationActivity
from app.models.agent import DEFAULT_INACTIVITY_TIMEOUT_MINUTES
from app.services.conversation_service import ConversationKey, increment_message_count, save_message
from app.services.credentials_service import CredentialsNotConfiguredError
from app.services.evolution_service import EvolutionClient, GatewayError, get_gateway_client

logger = get_logger("inactivity")

GatewayFactory = Callable[[Session, Agent], EvolutionClient]


def _ensure_timezone(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def inactivity_window(agent: Agent) -> timedelta:
    minutes = agent.inactivity_timeout or 0
    if minutes <= 0:
        minutes = DEFAULT_INACTIVITY_TIMEOUT_MINUTES
    return timedelta(minutes=minutes)


def is_stalled(activity: ConversationActivity, agent: Agent, now: datetime) -> bool:
    """The agent spoke last and the customer has been silent past the window."""
    if activity.inactivity_message_sent:
        return False
    if activity.last_agent_message_at is None or activity.last_user_message_at is None:
        return False
    last_user = _ensure_timezone(activity.last_user_message_at)
    last_agent = _ensure_timezone(activity.last_agent_message_at)
    if last_agent <= last_user:
        return False
    return last_user < now - inactivity_window(agent)


def find_stalled_conversations(db: Session, now: datetime) -> List[Tuple[ConversationActivity, Agent]]:
    rows = (
        db.query(ConversationActivity, Agent)
        .join(Agent, Agent.id == ConversationActivity.agent_id)
        .filter(
            Agent.status == "online",
            Agent.ghost_mode.is_(False),
            Agent.inactivity_enabled.is_(True),
            ConversationActivity.inactivity_message_sent.is_(False),
            ConversationActivity.last_agent_message_at.isnot(None),
            ConversationActivity.last_user_message_at.isnot(None),
        )
        .all()
    )
    return [(activity, agent) for activity, agent in rows if is_stalled(activity, agent, now)]


def process_inactive_conversations(
    db: Session,
    now: Optional[datetime] = None,
    gateway_factory: Optional[GatewayFactory] = None,
) -> dict:
    """Send one follow-up to every stalled conversation.

    Each conversation commits on its own; one failure is logged and skipped.
    """
    now = now or datetime.now(timezone.utc)
    gateway_factory = gateway_factory or get_gateway_client
    sent: List[dict] = []
    failed: List[dict] = []

    for activity, agent in find_stalled_conversations(db, now):
        key = ConversationKey(agent_id=agent.id, phone_number=activity.phone_number)
        text = (agent.inactivity_message or "").strip()
        if not text:
            logger.warning("Inactivity enabled without a message", extra={"context": {"agent_id": str(agent.id)}})
            continue

        try:
            gateway = gateway_factory(db, agent)
            gateway.send_text(agent.instance_name, key.phone_number, text)
            save_message(
                db,
                key,
                "agent",
                text,
                status="sent",
                message_metadata={"source": "inactivity"},
                now=now,
            )
            activity.inactivity_message_sent = True
            activity.last_agent_message_at = now
            increment_message_count(db, agent.id, now)
            db.commit()
        except (GatewayError, CredentialsNotConfiguredError) as exc:
            db.rollback()
            logger.error(
                "Inactivity message failed",
                extra={"context": {"agent_id": str(agent.id), "phone": key.phone_number, "error": str(exc)}},
            )
            failed.append({"agent_id": str(agent.id), "phone_number": key.phone_number, "error": str(exc)})
            continue

        logger.info(
            "Inactivity message sent",
            extra={"context": {"agent_id": str(agent.id), "phone": key.phone_number}},
        )
        sent.append({"agent_id": str(agent.id), "phone_number": key.phone_number})

    return {"sent": len(sent), "failed": len(failed), "conversations": sent, "errors": failed}

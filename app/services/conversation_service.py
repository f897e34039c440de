from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from app.models import (
    Agent,
    AgentDocument,
    AgentMedia,
    ConversationActivity,
    ConversationTakeover,
    Message,
)

WHATSAPP_JID_SUFFIX = "@s.whatsapp.net"


@dataclass(frozen=True)
class ConversationKey:
    """Identity of one conversation: an agent talking to one phone number."""

    agent_id: UUID
    phone_number: str

    @classmethod
    def from_remote_jid(cls, agent_id: UUID, remote_jid: str) -> "ConversationKey":
        return cls(agent_id=agent_id, phone_number=normalize_phone_number(remote_jid))


def normalize_phone_number(remote_jid: str | None) -> str:
    """Strip the WhatsApp JID suffix, leaving the bare number."""
    if not remote_jid:
        return ""
    return remote_jid.replace(WHATSAPP_JID_SUFFIX, "").strip()


def get_agent_by_instance(db: Session, instance_name: str) -> Optional[Agent]:
    """Online agent bound to a gateway instance."""
    return (
        db.query(Agent)
        .filter(Agent.instance_name == instance_name, Agent.status == "online")
        .first()
    )


def get_agent(db: Session, agent_id: UUID) -> Optional[Agent]:
    return db.query(Agent).filter(Agent.id == agent_id).first()


def save_message(
    db: Session,
    key: ConversationKey,
    sender: str,
    content: str,
    *,
    status: str = "received",
    is_audio: bool = False,
    is_from_owner: bool = False,
    message_metadata: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> Message:
    """Append one message to the conversation log."""
    message = Message(
        agent_id=key.agent_id,
        phone_number=key.phone_number,
        sender=sender,
        content=content,
        status=status,
        is_audio=is_audio,
        is_from_owner=is_from_owner,
        message_metadata=message_metadata or {},
        created_at=now or datetime.now(timezone.utc),
    )
    db.add(message)
    db.flush()
    return message


def increment_message_count(db: Session, agent_id: UUID, now: Optional[datetime] = None) -> None:
    db.query(Agent).filter(Agent.id == agent_id).update(
        {
            Agent.messages_count: Agent.messages_count + 1,
            Agent.updated_at: now or datetime.now(timezone.utc),
        },
        synchronize_session=False,
    )


def record_user_activity(db: Session, key: ConversationKey, now: datetime) -> None:
    """Mark a new user message; re-arms the inactivity follow-up."""
    stmt = (
        insert(ConversationActivity)
        .values(
            agent_id=key.agent_id,
            phone_number=key.phone_number,
            last_user_message_at=now,
            inactivity_message_sent=False,
        )
        .on_conflict_do_update(
            index_elements=["agent_id", "phone_number"],
            set_={"last_user_message_at": now, "inactivity_message_sent": False},
        )
    )
    db.execute(stmt)


def record_agent_activity(db: Session, key: ConversationKey, now: datetime) -> None:
    stmt = (
        insert(ConversationActivity)
        .values(
            agent_id=key.agent_id,
            phone_number=key.phone_number,
            last_agent_message_at=now,
            inactivity_message_sent=False,
        )
        .on_conflict_do_update(
            index_elements=["agent_id", "phone_number"],
            set_={"last_agent_message_at": now},
        )
    )
    db.execute(stmt)


def get_takeover(db: Session, key: ConversationKey) -> Optional[ConversationTakeover]:
    return (
        db.query(ConversationTakeover)
        .filter(
            ConversationTakeover.agent_id == key.agent_id,
            ConversationTakeover.phone_number == key.phone_number,
        )
        .first()
    )


def upsert_takeover(db: Session, key: ConversationKey, now: datetime) -> None:
    """Start (or restart) the human takeover window for a conversation."""
    stmt = (
        insert(ConversationTakeover)
        .values(agent_id=key.agent_id, phone_number=key.phone_number, taken_over_at=now)
        .on_conflict_do_update(
            index_elements=["agent_id", "phone_number"],
            set_={"taken_over_at": now},
        )
    )
    db.execute(stmt)


def delete_takeover(db: Session, key: ConversationKey) -> None:
    db.query(ConversationTakeover).filter(
        ConversationTakeover.agent_id == key.agent_id,
        ConversationTakeover.phone_number == key.phone_number,
    ).delete(synchronize_session=False)


def get_recent_messages(db: Session, key: ConversationKey, limit: int = 10) -> list[Message]:
    """Last `limit` messages of the conversation, oldest first."""
    rows = (
        db.query(Message)
        .filter(Message.agent_id == key.agent_id, Message.phone_number == key.phone_number)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(rows))


def get_media_items(db: Session, agent_id: UUID) -> list[AgentMedia]:
    return db.query(AgentMedia).filter(AgentMedia.agent_id == agent_id).order_by(AgentMedia.created_at).all()


def get_documents(db: Session, agent_id: UUID) -> list[AgentDocument]:
    return (
        db.query(AgentDocument).filter(AgentDocument.agent_id == agent_id).order_by(AgentDocument.created_at).all()
    )

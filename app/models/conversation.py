import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from app.database import Base


class ConversationActivity(Base):
    __tablename__ = "conversation_activity"
    __table_args__ = (UniqueConstraint("agent_id", "phone_number", name="uq_conversation_activity"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_id = Column(UUID(as_uuid=True), ForeignKey("agents.id"), nullable=False)
    phone_number = Column(Text, nullable=False)
    last_user_message_at = Column(TIMESTAMP(timezone=True))
    last_agent_message_at = Column(TIMESTAMP(timezone=True))
    inactivity_message_sent = Column(Boolean, nullable=False, default=False)


class ConversationTakeover(Base):
    __tablename__ = "conversation_takeover"
    __table_args__ = (UniqueConstraint("agent_id", "phone_number", name="uq_conversation_takeover"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_id = Column(UUID(as_uuid=True), ForeignKey("agents.id"), nullable=False)
    phone_number = Column(Text, nullable=False)
    taken_over_at = Column(TIMESTAMP(timezone=True), nullable=False)

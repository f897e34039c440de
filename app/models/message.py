import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

from app.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_id = Column(UUID(as_uuid=True), ForeignKey("agents.id"), nullable=False, index=True)
    phone_number = Column(Text, nullable=False, index=True)
    sender = Column(Text, nullable=False)  # user, agent, owner
    content = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="received")  # received, sent
    is_audio = Column(Boolean, nullable=False, default=False)
    is_from_owner = Column(Boolean, nullable=False, default=False)
    message_metadata = Column("metadata", JSONB, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)

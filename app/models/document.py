import uuid

from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base


class AgentDocument(Base):
    __tablename__ = "documents"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_id = Column(UUID(as_uuid=True), ForeignKey("agents.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    doc_type = Column("type", Text)
    content = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True))

    agent = relationship("Agent", back_populates="documents")

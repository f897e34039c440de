import uuid

from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import ARRAY, TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base


class AgentMedia(Base):
    __tablename__ = "agent_media"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_id = Column(UUID(as_uuid=True), ForeignKey("agents.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    media_type = Column("type", Text, nullable=False, default="image")  # image, gallery, video, document
    file_urls = Column(ARRAY(Text), nullable=False, default=list)
    mime_types = Column(ARRAY(Text), nullable=False, default=list)
    created_at = Column(TIMESTAMP(timezone=True))

    agent = relationship("Agent", back_populates="media_items")

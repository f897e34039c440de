import uuid
from datetime import time

from sqlalchemy import Boolean, Column, Integer, Text, Time
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base

DEFAULT_TAKEOVER_TIMEOUT_SECONDS = 60
DEFAULT_INACTIVITY_TIMEOUT_MINUTES = 5
DEFAULT_OPERATING_HOURS_START = time(9, 0)
DEFAULT_OPERATING_HOURS_END = time(18, 0)
DEFAULT_TIMEZONE = "America/Sao_Paulo"


class Agent(Base):
    __tablename__ = "agents"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    prompt = Column(Text)
    status = Column(Text, nullable=False, default="offline")  # online, offline
    instance_name = Column(Text, index=True)
    messages_count = Column(Integer, nullable=False, default=0)

    audio_enabled = Column(Boolean, default=True)
    image_enabled = Column(Boolean, default=True)
    document_enabled = Column(Boolean, default=True)
    widget_enabled = Column(Boolean, default=False)
    ghost_mode = Column(Boolean, default=False)

    takeover_timeout = Column(Integer, default=DEFAULT_TAKEOVER_TIMEOUT_SECONDS)  # seconds

    inactivity_enabled = Column(Boolean, default=False)
    inactivity_timeout = Column(Integer, default=DEFAULT_INACTIVITY_TIMEOUT_MINUTES)  # minutes
    inactivity_message = Column(Text)

    operating_hours_enabled = Column(Boolean, default=False)
    operating_hours_start = Column(Time, default=DEFAULT_OPERATING_HOURS_START)
    operating_hours_end = Column(Time, default=DEFAULT_OPERATING_HOURS_END)
    operating_hours_timezone = Column(Text, default=DEFAULT_TIMEZONE)
    out_of_hours_message = Column(Text)

    notification_number = Column(Text)
    transfer_instructions = Column(Text)

    openai_model = Column(Text)
    openai_api_key = Column(Text)
    evolution_api_url = Column(Text)
    evolution_api_key = Column(Text)

    created_at = Column(TIMESTAMP(timezone=True))
    updated_at = Column(TIMESTAMP(timezone=True))

    media_items = relationship("AgentMedia", back_populates="agent")
    documents = relationship("AgentDocument", back_populates="agent")
    faqs = relationship("AgentFaq", back_populates="agent")

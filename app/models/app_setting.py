from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP

from app.database import Base


class AppSetting(Base):
    """Global key/value settings (credential fallback for all agents)."""

    __tablename__ = "settings"

    key = Column(Text, primary_key=True)
    value = Column(Text)
    updated_at = Column(TIMESTAMP(timezone=True))

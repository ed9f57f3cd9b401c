from sqlalchemy import Column, String, JSON, DateTime
from sqlalchemy.sql import func

from reco.db.base import Base


class AppMetadata(Base):
    """Keyed configuration records (seed state, demo session id, ...)."""

    __tablename__ = "app_metadata"

    key = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

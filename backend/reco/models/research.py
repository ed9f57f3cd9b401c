from sqlalchemy import Column, String, DateTime, Text
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.sql import func
import uuid
import enum

from reco.db.base import Base


class ResearchStatus(str, enum.Enum):
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class ResearchSession(Base):
    __tablename__ = "research_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    status = Column(String(20), nullable=False, default=ResearchStatus.RUNNING.value)
    steps = Column(JSONB, nullable=False, default=list)  # ordered step log
    question = Column(Text, nullable=True)
    product_id = Column(String(255), nullable=True)
    answer = Column(Text, nullable=True)
    evidence = Column(JSONB, nullable=True)
    suggestions = Column(JSONB, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

from sqlalchemy import Column, String, DateTime, ForeignKey, Text, BigInteger, Integer, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from reco.db.base import Base


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ConversationStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class Conversation(Base):
    __tablename__ = "conversation"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    session_id = Column(String(255), unique=True, nullable=False, index=True)  # client generated
    store_id = Column(String(255), nullable=True, index=True)
    product_id = Column(String(255), nullable=True)
    product_title = Column(String(512), nullable=True)

    status = Column(String(20), nullable=False, default=ConversationStatus.ACTIVE.value)
    messages_count = Column(Integer, nullable=False, default=0, server_default="0")

    started_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_message_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")


class Message(Base):
    __tablename__ = "message"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    conversation_id = Column(BigInteger, ForeignKey("conversation.id"), nullable=False, index=True)

    role = Column(String(20), nullable=False)  # user, assistant
    content = Column(Text, nullable=False)
    evidence_count = Column(Integer, nullable=True)
    suggestions = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: str
    store_id: Optional[str] = None
    product_id: Optional[str] = None
    product_title: Optional[str] = None
    status: str
    messages_count: int
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: int
    role: str
    content: str
    evidence_count: Optional[int] = None
    suggestions: Optional[List[str]] = None
    created_at: Optional[datetime] = None


class ConversationStats(BaseModel):
    total_conversations: int
    conversations_today: int
    total_messages: int
    messages_today: int
    avg_messages_per_conversation: float


class DemoSessionResponse(BaseModel):
    session_id: str

from datetime import datetime
from typing import Any, List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field

from reco.schemas.chat import HistoryTurn


class ResearchStartRequest(BaseModel):
    question: str = Field(..., min_length=1)
    product: Optional[str] = None
    tenant_id: Optional[str] = None
    history: List[HistoryTurn] = Field(default_factory=list)


class ResearchStartResponse(BaseModel):
    id: uuid.UUID


class ResearchSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    status: str
    steps: List[str] = []
    answer: Optional[str] = None
    evidence: Optional[List[Any]] = None
    suggestions: Optional[List[str]] = None
    created_at: Optional[datetime] = None

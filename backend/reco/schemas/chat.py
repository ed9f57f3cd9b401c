from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from reco.schemas.review import EvidenceItem


AskMode = Literal["standard", "research", "auto"]


class HistoryTurn(BaseModel):
    role: str
    text: str


class AskRequest(BaseModel):
    question: str = Field(..., min_length=1)
    product: Optional[str] = Field(None, description="Product identifier used to scope retrieval")
    product_title: Optional[str] = None
    mode: Optional[AskMode] = "auto"
    session_id: Optional[str] = Field(None, description="Stable per browser/device")
    tenant_id: Optional[str] = Field(None, description="Store domain, e.g. my-store.myshopify.com")
    history: List[HistoryTurn] = Field(default_factory=list)


class AskResponse(BaseModel):
    ok: bool
    answer: str
    evidence: List[EvidenceItem] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ReviewOut(BaseModel):
    """A review as the answering pipeline sees it (author/body already cleaned)."""

    id: str
    external_id: Optional[str] = None
    store_id: Optional[str] = None
    product_id: Optional[str] = None
    product_title: Optional[str] = None
    author_name: str = "Anonymous"
    rating: float = 0.0
    fit_feedback: Optional[str] = None
    review_body: str = ""
    source: Optional[str] = None
    created_at: Optional[datetime] = None


class EvidenceItem(BaseModel):
    review: ReviewOut
    score: Optional[float] = None  # None when the item came from a full scan


class ReviewIn(BaseModel):
    external_id: Optional[str] = None
    store_id: Optional[str] = None
    product_id: Optional[str] = None
    product_title: Optional[str] = None
    author_name: str = "Anonymous"
    rating: float = 0.0
    fit_feedback: Optional[str] = None
    review_body: str
    source: str = "okendo"
    created_at: Optional[str] = None


class BulkUpsertRequest(BaseModel):
    reviews: List[ReviewIn] = Field(default_factory=list)


class BulkUpsertResponse(BaseModel):
    inserted: int


class SeedStatus(BaseModel):
    seeded: bool
    last_upload_at: Optional[str] = None


class NormalizeReport(BaseModel):
    total: int
    patched: int
    deleted: int

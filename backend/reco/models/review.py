from sqlalchemy import Column, String, Float, Text, DateTime, BigInteger, Index
from sqlalchemy.sql import func
from pgvector.sqlalchemy import Vector

from reco.db.base import Base
from reco.core.config import settings


class Review(Base):
    __tablename__ = "reviews"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    store_id = Column(String(255), nullable=True, index=True)  # tenant, e.g. my-store.myshopify.com
    external_id = Column(String(255), nullable=True, index=True)
    product_id = Column(String(255), nullable=True, index=True)
    product_title = Column(String(512), nullable=True)

    # Raw upstream values; may still hold serialized-object artifacts until normalized
    author_name = Column(Text, nullable=False, default="Anonymous")
    rating = Column(Float, nullable=False, default=0.0)
    fit_feedback = Column(String(255), nullable=True)
    review_body = Column(Text, nullable=False, default="")
    source = Column(String(50), nullable=False, default="okendo")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    embedding = Column(Vector(settings.VECTOR_DIMENSIONS), nullable=True)

    __table_args__ = (
        Index("ix_reviews_store_product", "store_id", "product_id"),
    )

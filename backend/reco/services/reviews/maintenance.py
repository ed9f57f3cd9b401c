from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reco.core.exceptions import PersistenceError
from reco.core.logging import get_logger
from reco.models.review import Review
from reco.schemas.review import NormalizeReport, ReviewIn
from reco.services.ai.llm_service import llm_service
from reco.services.metadata_service import metadata_service
from reco.services.reviews.text_normalizer import (
    ANONYMOUS,
    clean_author_field,
    coerce_review_fields,
    ParseStrategy,
    review_signature,
)

logger = get_logger(__name__)

EMBED_BATCH_SIZE = 64
PRODUCT_SCAN_LIMIT = 1000


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


class ReviewMaintenanceService:
    """Ingestion and cleanup passes over the stored review corpus."""

    def __init__(self, embedder=None):
        self.embedder = embedder or llm_service

    @staticmethod
    def _coherent_row(review: ReviewIn) -> Dict[str, Any]:
        row = review.model_dump()
        row.update(coerce_review_fields(review.review_body, row))
        row["author_name"] = clean_author_field(row.get("author_name")).value or ANONYMOUS
        row["created_at"] = _parse_timestamp(row.get("created_at"))
        return row

    async def bulk_upsert_embedded(self, db: AsyncSession, reviews: Sequence[ReviewIn]) -> int:
        """Embed each review body and insert it. Returns the number inserted."""
        rows = [self._coherent_row(r) for r in reviews]
        if not rows:
            return 0

        inserted = 0
        try:
            for start in range(0, len(rows), EMBED_BATCH_SIZE):
                batch = rows[start:start + EMBED_BATCH_SIZE]
                vectors = await self.embedder.embed_many(
                    [row["review_body"] for row in batch], task_type="document"
                )
                for row, vector in zip(batch, vectors):
                    if row["created_at"] is None:
                        row.pop("created_at")
                    db.add(Review(**row, embedding=vector))
                    inserted += 1
                await db.flush()
            await metadata_service.mark_seeded(db, commit=False)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError(f"Bulk upsert failed: {e}") from e

        logger.info(
            f"Inserted {inserted} embedded reviews",
            extra={"event": "reviews_bulk_upsert", "inserted": inserted},
        )
        return inserted

    async def normalize_and_dedupe(self, db: AsyncSession) -> NormalizeReport:
        """Patch serialized-object artifacts in place, then drop duplicate reviews.

        Duplicates share a signature (external id, else normalized
        body + product + author); the newest row of each group is kept.
        """
        result = await db.execute(select(Review).order_by(Review.created_at.desc(), Review.id.desc()))
        reviews: List[Review] = list(result.scalars().all())

        keep: Dict[str, int] = {}
        to_delete: List[int] = []
        patched = 0

        for review in reviews:
            updates: Dict[str, Any] = {}
            body = review.review_body or ""
            if body.strip().startswith("{"):
                updates = coerce_review_fields(body, {"author_name": review.author_name})
                if "created_at" in updates:
                    parsed = _parse_timestamp(updates.pop("created_at"))
                    if parsed is not None:
                        updates["created_at"] = parsed

            author_field = clean_author_field(updates.get("author_name", review.author_name))
            if author_field.strategy != ParseStrategy.STRICT:
                updates["author_name"] = author_field.value or ANONYMOUS

            updates = {k: v for k, v in updates.items() if getattr(review, k) != v}
            if updates:
                for key, value in updates.items():
                    setattr(review, key, value)
                patched += 1

            signature = review_signature(
                external_id=review.external_id,
                body=review.review_body,
                product_id=review.product_id,
                author=review.author_name,
            )
            if signature in keep:
                to_delete.append(review.id)
            else:
                keep[signature] = review.id

        try:
            if to_delete:
                await db.execute(delete(Review).where(Review.id.in_(to_delete)))
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError(f"Normalization failed: {e}") from e

        report = NormalizeReport(total=len(reviews), patched=patched, deleted=len(to_delete))
        logger.info(
            "normalized review corpus",
            extra={"event": "reviews_normalized", **report.model_dump()},
        )
        return report

    async def list_products(self, db: AsyncSession, store_id: Optional[str] = None) -> List[str]:
        stmt = (
            select(Review.product_id)
            .where(Review.product_id.isnot(None))
            .order_by(Review.created_at.desc())
            .limit(PRODUCT_SCAN_LIMIT)
        )
        if store_id:
            stmt = stmt.where(Review.store_id == store_id)
        products: List[str] = []
        for (product_id,) in (await db.execute(stmt)).all():
            if product_id and product_id not in products:
                products.append(product_id)
        return products


review_maintenance_service = ReviewMaintenanceService()

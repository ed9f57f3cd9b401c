from __future__ import annotations

import time
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reco.core.exceptions import RetrievalError
from reco.core.logging import get_logger
from reco.models.review import Review
from reco.schemas.review import EvidenceItem, ReviewOut
from reco.services.contracts import ReviewIndex
from reco.services.reviews.text_normalizer import clean_author, clean_body

logger = get_logger(__name__)


def to_review_out(review: Review) -> ReviewOut:
    """ORM row -> pipeline record, cleaning author/body at read time."""
    return ReviewOut(
        id=str(review.id),
        external_id=review.external_id,
        store_id=review.store_id,
        product_id=review.product_id,
        product_title=review.product_title,
        author_name=clean_author(review.author_name),
        rating=float(review.rating or 0.0),
        fit_feedback=review.fit_feedback,
        review_body=clean_body(review.review_body),
        source=review.source,
        created_at=review.created_at,
    )


class PgReviewIndex:
    """pgvector-backed review index (cosine distance, similarity = 1 - distance)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _scoped(stmt, *, product_id: Optional[str], store_id: Optional[str]):
        if product_id:
            stmt = stmt.where(Review.product_id == product_id)
        if store_id:
            stmt = stmt.where(Review.store_id == store_id)
        return stmt

    async def _execute(self, stmt):
        try:
            return await self.db.execute(stmt)
        except SQLAlchemyError:
            # the session is shared with the recorder; an aborted transaction poisons it
            await self.db.rollback()
            raise

    async def release(self) -> None:
        """End the read transaction so the connection goes back to the pool."""
        await self.db.commit()

    async def search(
        self,
        *,
        vector: Sequence[float],
        k: int,
        product_id: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> List[Tuple[str, float]]:
        distance_col = Review.embedding.cosine_distance(list(vector)).label("distance")
        stmt = (
            select(Review.id, distance_col)
            .where(Review.embedding.isnot(None))
            .order_by(distance_col)
            .limit(k)
        )
        stmt = self._scoped(stmt, product_id=product_id, store_id=store_id)
        result = await self._execute(stmt)
        return [(str(review_id), 1.0 - float(distance)) for review_id, distance in result.all()]

    async def get_many(self, ids: Sequence[str]) -> List[ReviewOut]:
        if not ids:
            return []
        numeric_ids = [int(i) for i in ids]
        result = await self._execute(select(Review).where(Review.id.in_(numeric_ids)))
        return [to_review_out(r) for r in result.scalars().all()]

    async def list_all(
        self,
        *,
        product_id: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> List[ReviewOut]:
        # Full scan; fine for a few thousand reviews per store.
        stmt = self._scoped(
            select(Review).order_by(Review.created_at.desc()),
            product_id=product_id,
            store_id=store_id,
        )
        result = await self._execute(stmt)
        return [to_review_out(r) for r in result.scalars().all()]

    async def list_recent(
        self,
        *,
        limit: int,
        product_id: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> List[ReviewOut]:
        stmt = self._scoped(
            select(Review).order_by(Review.created_at.desc()).limit(limit),
            product_id=product_id,
            store_id=store_id,
        )
        result = await self._execute(stmt)
        return [to_review_out(r) for r in result.scalars().all()]


class EvidenceRetriever:
    """Top-K nearest reviews for a query vector, resolved in one batched fetch."""

    def __init__(self, index: ReviewIndex):
        self.index = index

    async def retrieve(
        self,
        vector: Sequence[float],
        k: int,
        *,
        product_id: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> List[EvidenceItem]:
        started = time.perf_counter()
        try:
            hits = await self.index.search(
                vector=vector, k=k, product_id=product_id, store_id=store_id
            )
            if not hits:
                return []
            score_by_id: Dict[str, float] = {}
            for review_id, score in hits:
                score_by_id.setdefault(str(review_id), float(score))
            reviews = await self.index.get_many(list(score_by_id))
        except RetrievalError:
            raise
        except Exception as e:
            raise RetrievalError(f"Review retrieval failed: {e}") from e

        items = [
            EvidenceItem(review=review, score=score_by_id.get(review.id))
            for review in reviews
            if review.id in score_by_id
        ]
        items.sort(key=lambda item: item.score if item.score is not None else float("-inf"), reverse=True)
        logger.info(
            "retrieved %d/%d reviews",
            len(items),
            k,
            extra={
                "event": "evidence_retrieved",
                "requested": k,
                "got": len(items),
                "ms": round((time.perf_counter() - started) * 1000.0, 1),
            },
        )
        return items

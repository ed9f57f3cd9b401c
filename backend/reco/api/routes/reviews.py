from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from reco.core.exceptions import EmbeddingError, PersistenceError
from reco.core.logging import get_logger
from reco.dependencies import get_db
from reco.schemas.review import BulkUpsertRequest, BulkUpsertResponse, NormalizeReport, SeedStatus
from reco.services.metadata_service import LAST_UPLOAD_KEY, metadata_service
from reco.services.reviews.maintenance import review_maintenance_service

router = APIRouter()
logger = get_logger(__name__)


@router.post("/bulk", response_model=BulkUpsertResponse)
async def bulk_upsert(request: BulkUpsertRequest, db: AsyncSession = Depends(get_db)):
    """Embed and store a batch of reviews."""
    try:
        inserted = await review_maintenance_service.bulk_upsert_embedded(db, request.reviews)
    except (EmbeddingError, PersistenceError) as e:
        logger.error(f"Bulk upsert failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Bulk upsert failed: {e}",
        )
    return BulkUpsertResponse(inserted=inserted)


@router.post("/normalize", response_model=NormalizeReport)
async def normalize_reviews(db: AsyncSession = Depends(get_db)):
    """Clean serialized-object artifacts and drop duplicate reviews."""
    try:
        return await review_maintenance_service.normalize_and_dedupe(db)
    except PersistenceError as e:
        logger.error(f"Normalization failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Normalization failed",
        )


@router.get("/products", response_model=List[str])
async def list_products(store_id: Optional[str] = None, db: AsyncSession = Depends(get_db)):
    return await review_maintenance_service.list_products(db, store_id=store_id)


@router.get("/status", response_model=SeedStatus)
async def seed_status(db: AsyncSession = Depends(get_db)):
    """Whether a review corpus has been uploaded, and when."""
    seeded = await metadata_service.is_seeded(db)
    last_upload = await metadata_service.get_value(db, LAST_UPLOAD_KEY)
    return SeedStatus(seeded=seeded, last_upload_at=str(last_upload) if last_upload else None)

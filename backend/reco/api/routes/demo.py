from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from reco.dependencies import get_db
from reco.schemas.conversation import DemoSessionResponse
from reco.services.metadata_service import metadata_service

router = APIRouter()


@router.get("/demo-session", response_model=DemoSessionResponse)
async def demo_session(db: AsyncSession = Depends(get_db)):
    """Shared session id used by the demo storefront."""
    return DemoSessionResponse(session_id=await metadata_service.get_or_create_demo_session(db))

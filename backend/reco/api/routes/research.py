from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from reco.core.exceptions import NotFoundException, PersistenceError
from reco.core.logging import get_logger
from reco.dependencies import get_db
from reco.schemas.research import ResearchSessionOut, ResearchStartRequest, ResearchStartResponse
from reco.services.research.service import research_service

router = APIRouter()
logger = get_logger(__name__)


@router.post("", response_model=ResearchStartResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_research(
    request: ResearchStartRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    """Create a research session and run the analysis in the background."""
    try:
        research_id = await research_service.start(db, request, background_tasks)
    except PersistenceError as e:
        logger.error(f"Research start failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not start research",
        )
    return ResearchStartResponse(id=research_id)


@router.get("/{research_id}", response_model=ResearchSessionOut)
async def get_research(research_id: UUID, db: AsyncSession = Depends(get_db)):
    session = await research_service.get(db, research_id)
    if session is None:
        raise NotFoundException("Research session not found")
    return session

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from reco.core.logging import get_logger
from reco.dependencies import get_db
from reco.schemas.chat import AskRequest, AskResponse
from reco.services.chat.orchestrator import build_ask_orchestrator

router = APIRouter()
logger = get_logger(__name__)


@router.post("/ask", response_model=AskResponse)
async def ask(
    request: AskRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Answer a shopper question from product reviews.

    Anticipated upstream failures come back as ``ok=false`` with an answer;
    only unexpected errors surface as 500.
    """
    try:
        return await build_ask_orchestrator(db).ask(request)
    except Exception as e:
        logger.error(f"Ask error: {e}", extra={"event": "ask_unhandled"})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error answering question",
        )

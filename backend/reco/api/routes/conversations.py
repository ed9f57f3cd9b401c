from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from reco.core.exceptions import NotFoundException, PersistenceError
from reco.core.logging import get_logger
from reco.dependencies import get_db
from reco.schemas.conversation import ConversationOut, ConversationStats, MessageOut
from reco.services.chat.recorder import SqlConversationRecorder

router = APIRouter()
logger = get_logger(__name__)


@router.get("/stats/{tenant}", response_model=ConversationStats)
async def conversation_stats(tenant: str, db: AsyncSession = Depends(get_db)):
    return await SqlConversationRecorder(db).get_conversation_stats(tenant)


@router.get("/store/{tenant}", response_model=List[ConversationOut])
async def list_store_conversations(
    tenant: str,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """Most recent conversations for a tenant, newest first."""
    return await SqlConversationRecorder(db).list_store_conversations(tenant, limit=limit)


@router.get("/{session_id}", response_model=ConversationOut)
async def get_conversation(session_id: str, db: AsyncSession = Depends(get_db)):
    conversation = await SqlConversationRecorder(db).get_conversation_by_session(session_id)
    if conversation is None:
        raise NotFoundException("Conversation not found")
    return conversation


@router.get("/{conversation_id}/messages", response_model=List[MessageOut])
async def list_messages(conversation_id: int, db: AsyncSession = Depends(get_db)):
    return await SqlConversationRecorder(db).get_messages(conversation_id)


@router.post("/{conversation_id}/end", status_code=status.HTTP_204_NO_CONTENT)
async def end_conversation(conversation_id: int, db: AsyncSession = Depends(get_db)):
    try:
        ended = await SqlConversationRecorder(db).end_conversation(conversation_id)
    except PersistenceError as e:
        logger.error(f"End conversation failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not end conversation",
        )
    if not ended:
        raise NotFoundException("Conversation not found")

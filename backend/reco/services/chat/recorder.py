from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func, insert as sa_insert, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reco.core.exceptions import PersistenceError
from reco.core.logging import get_logger
from reco.models.chat import Conversation, ConversationStatus, Message, MessageRole
from reco.schemas.conversation import ConversationStats

logger = get_logger(__name__)


class SqlConversationRecorder:
    """Conversation/message persistence backed by the async SQLAlchemy session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as e:
            logger.warning(f"Rollback failed: {e}")

    async def _conversation_id_for(self, session_id: str) -> Optional[int]:
        result = await self.db.execute(
            select(Conversation.id).where(Conversation.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create_conversation(
        self,
        session_id: str,
        tenant: Optional[str] = None,
        product_id: Optional[str] = None,
        product_title: Optional[str] = None,
    ) -> int:
        """Conversation id for a session, creating it on first use.

        Concurrent first calls race on the unique session_id; the loser's
        insert is a no-op and it re-reads the winner's row.
        """
        try:
            existing = await self._conversation_id_for(session_id)
            if existing is not None:
                return existing

            stmt = (
                insert(Conversation)
                .values(
                    session_id=session_id,
                    store_id=tenant,
                    product_id=product_id,
                    product_title=product_title,
                    status=ConversationStatus.ACTIVE.value,
                    messages_count=0,
                )
                .on_conflict_do_nothing(index_elements=[Conversation.session_id])
                .returning(Conversation.id)
            )
            result = await self.db.execute(stmt)
            created = result.scalar_one_or_none()
            await self.db.commit()
            if created is not None:
                logger.info(
                    "Created conversation",
                    extra={"event": "conversation_created", "conversation_id": created},
                )
                return created

            winner = await self._conversation_id_for(session_id)
        except SQLAlchemyError as e:
            await self._rollback()
            raise PersistenceError(f"Conversation lookup failed: {e}") from e

        if winner is None:
            raise PersistenceError(f"Conversation for session {session_id!r} vanished after insert")
        return winner

    async def save_message(
        self,
        conversation_id: int,
        role: str,
        text: str,
        evidence_count: Optional[int] = None,
        suggestions: Optional[List[str]] = None,
    ) -> int:
        """Append a message and bump the conversation counter in the same transaction."""
        role_value = role.value if isinstance(role, MessageRole) else str(role)
        try:
            result = await self.db.execute(
                sa_insert(Message)
                .values(
                    conversation_id=conversation_id,
                    role=role_value,
                    content=text,
                    evidence_count=evidence_count,
                    suggestions=list(suggestions) if suggestions is not None else None,
                )
                .returning(Message.id)
            )
            message_id = result.scalar_one()
            # increment happens in SQL so concurrent writers never lose a count
            await self.db.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(
                    messages_count=Conversation.messages_count + 1,
                    last_message_at=func.now(),
                )
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self._rollback()
            raise PersistenceError(f"Saving {role_value} message failed: {e}") from e
        return message_id

    async def end_conversation(self, conversation_id: int) -> bool:
        try:
            result = await self.db.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(status=ConversationStatus.COMPLETED.value, ended_at=func.now())
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self._rollback()
            raise PersistenceError(f"Ending conversation failed: {e}") from e
        return bool(result.rowcount)

    async def get_messages(self, conversation_id: int) -> List[Message]:
        result = await self.db.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        return list(result.scalars().all())

    async def get_conversation_by_session(self, session_id: str) -> Optional[Conversation]:
        result = await self.db.execute(
            select(Conversation).where(Conversation.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def list_store_conversations(self, store_id: str, limit: int = 50) -> List[Conversation]:
        result = await self.db.execute(
            select(Conversation)
            .where(Conversation.store_id == store_id)
            .order_by(Conversation.started_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_conversation_stats(self, store_id: str) -> ConversationStats:
        today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        base = select(
            func.count(Conversation.id),
            func.coalesce(func.sum(Conversation.messages_count), 0),
        ).where(Conversation.store_id == store_id)

        total_conversations, total_messages = (await self.db.execute(base)).one()
        conversations_today, messages_today = (
            await self.db.execute(base.where(Conversation.started_at >= today))
        ).one()

        total_conversations = int(total_conversations or 0)
        total_messages = int(total_messages or 0)
        avg = round(total_messages / total_conversations, 1) if total_conversations else 0.0
        return ConversationStats(
            total_conversations=total_conversations,
            conversations_today=int(conversations_today or 0),
            total_messages=total_messages,
            messages_today=int(messages_today or 0),
            avg_messages_per_conversation=avg,
        )

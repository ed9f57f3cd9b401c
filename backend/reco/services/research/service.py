from __future__ import annotations

import time
import uuid
from typing import Any, Dict, List, Optional, Sequence

from fastapi import BackgroundTasks
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reco.core.config import settings
from reco.core.exceptions import PersistenceError
from reco.core.logging import get_logger
from reco.db.session import AsyncSessionLocal
from reco.models.research import ResearchSession, ResearchStatus
from reco.prompts.system_prompts import AnswerMode
from reco.schemas.chat import HistoryTurn
from reco.schemas.research import ResearchStartRequest
from reco.services.ai.llm_service import llm_service
from reco.services.chat.answer_synthesizer import AnswerSynthesizer, answer_synthesizer
from reco.services.chat.suggestions import SuggestionGenerator, suggestion_generator
from reco.services.contracts import EmbeddingClient, ResearchStore, ReviewIndex
from reco.services.reviews.relevance import RelevanceRule
from reco.services.reviews.retrieval import EvidenceRetriever, PgReviewIndex
from reco.services.reviews.structured_filter import StructuredFilter, extract_constraints

logger = get_logger(__name__)

STEP_STARTED = "Research started"
STEP_EMBEDDING = "Embedding query"
STEP_PREPARING_SUGGESTIONS = "Preparing suggestions"
STEP_DONE = "Done"
STEP_ERROR = "Error during research"


def searching_step(product_id: Optional[str]) -> str:
    return f"Searching reviews (product={product_id or 'any'})"


def analyzing_step(count: int) -> str:
    return f"Analyzing {count} reviews"


class SqlResearchStore:
    """Research session rows; the step log is appended server side."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _write(self, stmt, what: str) -> None:
        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Research {what} failed: {e}") from e

    async def create(self, question: str, product_id: Optional[str] = None) -> uuid.UUID:
        session = ResearchSession(
            status=ResearchStatus.RUNNING.value,
            steps=[STEP_STARTED],
            question=question,
            product_id=product_id,
        )
        try:
            self.db.add(session)
            await self.db.commit()
            await self.db.refresh(session)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Research create failed: {e}") from e
        logger.info("research session created", extra={"event": "research_created"})
        return session.id

    async def get(self, research_id: uuid.UUID) -> Optional[ResearchSession]:
        result = await self.db.execute(
            select(ResearchSession).where(ResearchSession.id == research_id)
        )
        return result.scalar_one_or_none()

    async def append_step(self, research_id: Any, step: str) -> None:
        await self._write(
            update(ResearchSession)
            .where(ResearchSession.id == research_id)
            .values(
                steps=ResearchSession.steps.op("||", return_type=JSONB)(
                    func.jsonb_build_array(step)
                )
            ),
            "append_step",
        )

    async def finalize(
        self,
        research_id: Any,
        *,
        answer: str,
        evidence: List[Dict[str, Any]],
        suggestions: List[str],
    ) -> None:
        await self._write(
            update(ResearchSession)
            .where(ResearchSession.id == research_id)
            .values(
                status=ResearchStatus.DONE.value,
                answer=answer,
                evidence=evidence,
                suggestions=suggestions,
            ),
            "finalize",
        )

    async def mark_error(self, research_id: Any) -> None:
        await self._write(
            update(ResearchSession)
            .where(ResearchSession.id == research_id)
            .values(status=ResearchStatus.ERROR.value),
            "mark_error",
        )


class ResearchRunner:
    """Multi-step business-insight analysis that reports progress into its session."""

    def __init__(
        self,
        *,
        store: ResearchStore,
        index: ReviewIndex,
        embedder: Optional[EmbeddingClient] = None,
        synthesizer: Optional[AnswerSynthesizer] = None,
        suggester: Optional[SuggestionGenerator] = None,
        relevance: Optional[RelevanceRule] = None,
    ):
        self.store = store
        self.index = index
        self.embedder = embedder or llm_service
        self.synthesizer = synthesizer or answer_synthesizer
        self.suggester = suggester or suggestion_generator
        self.relevance = relevance or RelevanceRule.from_settings()
        self.retriever = EvidenceRetriever(index)
        self.structured = StructuredFilter(index, keep=self.relevance.is_relevant)
        self.top_k = int(getattr(settings, "RESEARCH_TOP_K", 24))

    async def run(
        self,
        research_id: Any,
        question: str,
        *,
        product_id: Optional[str] = None,
        store_id: Optional[str] = None,
        history: Optional[Sequence[HistoryTurn]] = None,
    ) -> None:
        started = time.perf_counter()
        finalized = False
        try:
            await self.store.append_step(research_id, STEP_EMBEDDING)
            vector = await self.embedder.embed(question, task_type="query")

            await self.store.append_step(research_id, searching_step(product_id))
            evidence = await self.retriever.retrieve(
                vector, self.top_k, product_id=product_id, store_id=store_id
            )
            evidence = self.relevance.filter(evidence)
            evidence = await self.structured.refine(
                evidence,
                extract_constraints(question),
                k=self.top_k,
                product_id=product_id,
                store_id=store_id,
            )

            await self.store.append_step(research_id, analyzing_step(len(evidence)))
            answer = await self.synthesizer.answer_or_fallback(
                question, evidence, AnswerMode.RESEARCH, history
            )

            await self.store.append_step(research_id, STEP_PREPARING_SUGGESTIONS)
            suggestions = await self.suggester.suggest(question, evidence, history)

            await self.store.finalize(
                research_id,
                answer=answer,
                evidence=[item.model_dump(mode="json") for item in evidence],
                suggestions=suggestions,
            )
            finalized = True
            await self.store.append_step(research_id, STEP_DONE)
            logger.info(
                "research done",
                extra={
                    "event": "research_done",
                    "evidence": len(evidence),
                    "ms": round((time.perf_counter() - started) * 1000.0, 1),
                },
            )
        except Exception as e:
            if finalized:
                logger.warning(
                    f"Research finished but the last step was not recorded: {e}",
                    extra={"event": "research_done_step_failed"},
                )
                return
            logger.error(
                f"Research failed: {e}",
                extra={"event": "research_failed"},
            )
            try:
                await self.store.mark_error(research_id)
                await self.store.append_step(research_id, STEP_ERROR)
            except Exception as mark_exc:
                logger.error(
                    f"Could not mark research {research_id} as errored: {mark_exc}",
                    extra={"event": "research_mark_error_failed"},
                )


class ResearchService:
    async def start(
        self,
        db: AsyncSession,
        request: ResearchStartRequest,
        background_tasks: BackgroundTasks,
    ) -> uuid.UUID:
        research_id = await SqlResearchStore(db).create(request.question, request.product)
        background_tasks.add_task(
            self.run_in_background,
            research_id,
            request.question,
            request.product,
            request.tenant_id,
            list(request.history),
        )
        return research_id

    async def get(self, db: AsyncSession, research_id: uuid.UUID) -> Optional[ResearchSession]:
        return await SqlResearchStore(db).get(research_id)

    async def run_in_background(
        self,
        research_id: uuid.UUID,
        question: str,
        product_id: Optional[str],
        store_id: Optional[str],
        history: List[HistoryTurn],
    ) -> None:
        # request session is closed by now; open a fresh one
        async with AsyncSessionLocal() as db:
            runner = ResearchRunner(store=SqlResearchStore(db), index=PgReviewIndex(db))
            await runner.run(
                research_id,
                question,
                product_id=product_id,
                store_id=store_id,
                history=history,
            )


research_service = ResearchService()

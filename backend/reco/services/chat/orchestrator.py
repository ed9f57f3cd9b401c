from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from reco.core.config import settings
from reco.core.logging import get_logger
from reco.models.chat import MessageRole
from reco.prompts.system_prompts import AnswerMode
from reco.schemas.chat import AskRequest, AskResponse
from reco.schemas.review import EvidenceItem
from reco.services.ai.llm_service import llm_service
from reco.services.chat.answer_synthesizer import (
    AnswerSynthesizer,
    answer_synthesizer,
    build_evidence_fallback,
    sanitize_answer,
)
from reco.services.chat.policy_guard import PolicyGuard, policy_guard
from reco.services.chat.recorder import SqlConversationRecorder
from reco.services.chat.retrieval_plan import RetrievalPlan, RetrievalPlanner
from reco.services.chat.suggestions import (
    SuggestionGenerator,
    fallback_suggestions,
    suggestion_generator,
)
from reco.services.contracts import ConversationRecorder, EmbeddingClient, ReviewIndex
from reco.services.reviews.relevance import RelevanceRule
from reco.services.reviews.retrieval import EvidenceRetriever, PgReviewIndex
from reco.services.reviews.structured_filter import StructuredFilter, extract_constraints
from reco.utils.debug_log import debug_log

logger = get_logger(__name__)

GENERIC_ANSWER = (
    "I can help you learn about this product based on customer reviews - ask me about fit, "
    "comfort, compression, or how it looks under clothes."
)


class AskStage(str, enum.Enum):
    RECEIVED = "received"
    GUARDED = "guarded"
    EMBEDDED = "embedded"
    RETRIEVED = "retrieved"
    FILTERED = "filtered"
    SYNTHESIZED = "synthesized"
    SUGGESTED = "suggested"
    RECORDED = "recorded"
    RETURNED = "returned"
    DEGRADED = "degraded"


@dataclass
class AskTrace:
    stages: List[AskStage] = field(default_factory=list)
    degraded_from: Optional[AskStage] = None
    started: float = field(default_factory=time.perf_counter)

    def enter(self, stage: AskStage) -> None:
        self.stages.append(stage)

    @property
    def current(self) -> Optional[AskStage]:
        return self.stages[-1] if self.stages else None

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.started) * 1000.0, 1)


class AskOrchestrator:
    """Runs one question through guard, retrieval, synthesis, suggestions and recording.

    Every anticipated failure resolves to an answer; ``ok=False`` marks the
    degraded path.
    """

    def __init__(
        self,
        *,
        index: ReviewIndex,
        recorder: Optional[ConversationRecorder] = None,
        embedder: Optional[EmbeddingClient] = None,
        synthesizer: Optional[AnswerSynthesizer] = None,
        suggester: Optional[SuggestionGenerator] = None,
        guard: Optional[PolicyGuard] = None,
        relevance: Optional[RelevanceRule] = None,
    ):
        self.index = index
        self.recorder = recorder
        self.embedder = embedder or llm_service
        self.synthesizer = synthesizer or answer_synthesizer
        self.suggester = suggester or suggestion_generator
        self.guard = guard or policy_guard
        self.relevance = relevance or RelevanceRule.from_settings()
        self.retriever = EvidenceRetriever(index)
        self.structured = StructuredFilter(index, keep=self.relevance.is_relevant)
        self.degraded_sample = int(getattr(settings, "DEGRADED_SAMPLE_SIZE", 8))

    async def _conversation_id(self, request: AskRequest) -> Optional[int]:
        if not request.session_id or self.recorder is None:
            return None
        try:
            return await self.recorder.get_or_create_conversation(
                request.session_id,
                tenant=request.tenant_id,
                product_id=request.product,
                product_title=request.product_title,
            )
        except Exception as e:
            logger.warning(
                f"Conversation lookup failed: {e}",
                extra={"event": "conversation_lookup_failed"},
            )
            return None

    async def _record(
        self,
        conversation_id: Optional[int],
        role: MessageRole,
        text: str,
        *,
        evidence_count: Optional[int] = None,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        if conversation_id is None or self.recorder is None:
            return
        try:
            await self.recorder.save_message(
                conversation_id,
                role.value,
                text,
                evidence_count=evidence_count,
                suggestions=suggestions,
            )
        except Exception as e:
            logger.warning(
                f"Saving {role.value} message failed: {e}",
                extra={"event": "message_save_failed"},
            )

    async def _release_index(self) -> None:
        # reads are done; generation must not hold a pooled connection
        try:
            await self.index.release()
        except Exception as e:
            logger.warning(
                f"Releasing the review read failed: {e}",
                extra={"event": "index_release_failed"},
            )

    async def _answer(
        self,
        request: AskRequest,
        plan: RetrievalPlan,
        trace: AskTrace,
    ) -> Tuple[str, List[EvidenceItem]]:
        question = request.question

        trace.enter(AskStage.EMBEDDED)
        vector = await self.embedder.embed(question, task_type="query")

        trace.enter(AskStage.RETRIEVED)
        evidence = await self.retriever.retrieve(
            vector, plan.k, product_id=request.product, store_id=request.tenant_id
        )

        trace.enter(AskStage.FILTERED)
        evidence = self.relevance.filter(evidence)
        evidence = await self.structured.refine(
            evidence,
            extract_constraints(question),
            k=plan.k,
            product_id=request.product,
            store_id=request.tenant_id,
        )
        debug_log("filtered", {"k": plan.k, "evidence": len(evidence), "mode": plan.mode.value})
        await self._release_index()

        trace.enter(AskStage.SYNTHESIZED)
        answer = await self.synthesizer.synthesize(question, evidence, plan.mode, request.history)
        if not answer:
            answer = build_evidence_fallback(question, evidence)
        return answer, evidence

    async def _degraded(
        self,
        request: AskRequest,
        mode: AnswerMode,
    ) -> Tuple[str, List[EvidenceItem]]:
        try:
            recent = await self.index.list_recent(
                limit=self.degraded_sample,
                product_id=request.product,
                store_id=request.tenant_id,
            )
            await self._release_index()
            answer = await self.synthesizer.direct_answer(request.question, recent, mode)
            if answer:
                return answer, [EvidenceItem(review=r) for r in recent]
        except Exception as e:
            logger.warning(
                f"Degraded answer failed, using generic reply: {e}",
                extra={"event": "ask_degraded_generic"},
            )
        return sanitize_answer(GENERIC_ANSWER), []

    async def ask(self, request: AskRequest) -> AskResponse:
        trace = AskTrace()
        trace.enter(AskStage.RECEIVED)
        question = request.question

        # user turn is persisted before anything can fail downstream
        conversation_id = await self._conversation_id(request)
        await self._record(conversation_id, MessageRole.USER, question)

        trace.enter(AskStage.GUARDED)
        ok = True
        evidence: List[EvidenceItem] = []
        if self.guard.is_out_of_scope(question):
            answer = sanitize_answer(self.guard.safe_redirect(question, request.product_title))
            suggestions = self.guard.suggestions()
            trace.enter(AskStage.SYNTHESIZED)
            logger.info("policy redirect", extra={"event": "ask_policy_redirect"})
        else:
            plan = RetrievalPlanner.decide(question, request.mode)
            try:
                answer, evidence = await self._answer(request, plan, trace)
            except Exception as e:
                trace.degraded_from = trace.current
                trace.enter(AskStage.DEGRADED)
                logger.warning(
                    f"Ask pipeline failed at {trace.degraded_from}: {e}",
                    extra={"event": "ask_degraded"},
                )
                ok = False
                answer, evidence = await self._degraded(request, plan.mode)
                suggestions = fallback_suggestions()
            else:
                trace.enter(AskStage.SUGGESTED)
                suggestions = await self.suggester.suggest(question, evidence, request.history)

        trace.enter(AskStage.RECORDED)
        await self._record(
            conversation_id,
            MessageRole.ASSISTANT,
            answer,
            evidence_count=len(evidence),
            suggestions=suggestions,
        )

        trace.enter(AskStage.RETURNED)
        logger.info(
            "ask done",
            extra={
                "event": "ask_done",
                "ok": ok,
                "evidence": len(evidence),
                "ms": trace.elapsed_ms(),
            },
        )
        debug_log(
            "returned",
            {
                "ok": ok,
                "stages": [s.value for s in trace.stages],
                "degraded_from": trace.degraded_from.value if trace.degraded_from else None,
                "ms": trace.elapsed_ms(),
            },
        )
        return AskResponse(ok=ok, answer=answer, evidence=evidence, suggestions=suggestions)


def build_ask_orchestrator(db: AsyncSession) -> AskOrchestrator:
    return AskOrchestrator(index=PgReviewIndex(db), recorder=SqlConversationRecorder(db))

"""In-memory collaborators shared by the pipeline tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from reco.schemas.review import ReviewOut
from reco.services.ai.llm_service import GenerationResult

_BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_review(
    review_id: Any,
    body: str,
    *,
    rating: float = 5.0,
    author: str = "Jane D.",
    fit: Optional[str] = None,
    product_id: Optional[str] = "X",
    store_id: Optional[str] = None,
) -> ReviewOut:
    return ReviewOut(
        id=str(review_id),
        product_id=product_id,
        store_id=store_id,
        author_name=author,
        rating=rating,
        fit_feedback=fit,
        review_body=body,
        created_at=_BASE_TIME + timedelta(minutes=int(review_id) if str(review_id).isdigit() else 0),
    )


class FakeEmbedder:
    def __init__(self, vector: Optional[List[float]] = None, error: Optional[Exception] = None):
        self.vector = vector or [0.1, 0.2, 0.3]
        self.error = error
        self.calls: List[str] = []

    async def embed(self, text: str, task_type: str = "query") -> List[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vector)

    async def embed_many(self, texts: Sequence[str], task_type: str = "document") -> List[List[float]]:
        self.calls.extend(texts)
        if self.error is not None:
            raise self.error
        return [list(self.vector) for _ in texts]


class ScriptedGenerator:
    """Returns queued outputs in order; strings become stop-finished results."""

    def __init__(self, outputs: Sequence[Any] = ()):
        self.outputs = list(outputs)
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, **kwargs) -> GenerationResult:
        self.calls.append(kwargs)
        if not self.outputs:
            return GenerationResult(text="", finish_reason="stop")
        item = self.outputs.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, GenerationResult):
            return item
        return GenerationResult(text=str(item), finish_reason="stop")


class FakeIndex:
    """Vector index over a fixed corpus; ``window`` pins which ids search returns."""

    def __init__(
        self,
        reviews: Sequence[ReviewOut],
        *,
        window: Optional[Sequence[str]] = None,
        search_error: Optional[Exception] = None,
        recent_error: Optional[Exception] = None,
    ):
        self.reviews = list(reviews)
        self.window = list(window) if window is not None else None
        self.search_error = search_error
        self.recent_error = recent_error
        self.search_calls: List[Dict[str, Any]] = []
        self.get_many_calls: List[List[str]] = []
        self.list_all_calls = 0
        self.list_recent_calls = 0
        self.release_calls = 0

    def _scoped(self, product_id: Optional[str], store_id: Optional[str]) -> List[ReviewOut]:
        return [
            r for r in self.reviews
            if (not product_id or r.product_id == product_id)
            and (not store_id or r.store_id == store_id)
        ]

    async def search(
        self,
        *,
        vector: Sequence[float],
        k: int,
        product_id: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> List[Tuple[str, float]]:
        self.search_calls.append({"k": k, "product_id": product_id, "store_id": store_id})
        if self.search_error is not None:
            raise self.search_error
        scoped = self._scoped(product_id, store_id)
        if self.window is not None:
            scoped = [r for r in scoped if r.id in self.window]
        return [(r.id, round(0.99 - i * 0.01, 4)) for i, r in enumerate(scoped[:k])]

    async def get_many(self, ids: Sequence[str]) -> List[ReviewOut]:
        self.get_many_calls.append(list(ids))
        wanted = set(ids)
        # reversed so callers cannot rely on fetch order
        return [r for r in reversed(self.reviews) if r.id in wanted]

    async def list_all(
        self,
        *,
        product_id: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> List[ReviewOut]:
        self.list_all_calls += 1
        return self._scoped(product_id, store_id)

    async def list_recent(
        self,
        *,
        limit: int,
        product_id: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> List[ReviewOut]:
        self.list_recent_calls += 1
        if self.recent_error is not None:
            raise self.recent_error
        scoped = sorted(self._scoped(product_id, store_id), key=lambda r: r.created_at, reverse=True)
        return scoped[:limit]

    async def release(self) -> None:
        self.release_calls += 1


class FakeRecorder:
    def __init__(self, save_error: Optional[Exception] = None):
        self.save_error = save_error
        self.conversations: Dict[str, int] = {}
        self.messages: List[Dict[str, Any]] = []

    async def get_or_create_conversation(
        self,
        session_id: str,
        tenant: Optional[str] = None,
        product_id: Optional[str] = None,
        product_title: Optional[str] = None,
    ) -> int:
        if session_id not in self.conversations:
            self.conversations[session_id] = len(self.conversations) + 1
        return self.conversations[session_id]

    async def save_message(
        self,
        conversation_id: int,
        role: str,
        text: str,
        evidence_count: Optional[int] = None,
        suggestions: Optional[List[str]] = None,
    ) -> int:
        if self.save_error is not None:
            raise self.save_error
        self.messages.append(
            {
                "conversation_id": conversation_id,
                "role": role,
                "text": text,
                "evidence_count": evidence_count,
                "suggestions": suggestions,
            }
        )
        return len(self.messages)


class FakeResearchStore:
    def __init__(self, finalize_error: Optional[Exception] = None):
        self.finalize_error = finalize_error
        self.steps: List[str] = ["Research started"]
        self.status = "running"
        self.finalized: Optional[Dict[str, Any]] = None
        self.error_marks = 0

    async def append_step(self, research_id: Any, step: str) -> None:
        self.steps.append(step)

    async def finalize(self, research_id: Any, *, answer: str, evidence, suggestions) -> None:
        if self.finalize_error is not None:
            raise self.finalize_error
        self.status = "done"
        self.finalized = {"answer": answer, "evidence": evidence, "suggestions": suggestions}

    async def mark_error(self, research_id: Any) -> None:
        self.status = "error"
        self.error_marks += 1


class FakeResult:
    def __init__(self, value: Any = None, rows: Optional[Sequence[Any]] = None, rowcount: int = 1):
        self.value = value
        self.rows = list(rows or [])
        self.rowcount = rowcount

    def scalar_one_or_none(self) -> Any:
        return self.value

    def scalar_one(self) -> Any:
        return self.value

    def one(self) -> Any:
        return self.value

    def scalars(self) -> "FakeResult":
        return self

    def all(self) -> List[Any]:
        return list(self.rows)


class FakeSession:
    """Async-session stand-in; ``handler(stmt)`` decides what each execute returns."""

    def __init__(self, handler=None):
        self.handler = handler
        self.statements: List[Any] = []
        self.added: List[Any] = []
        self.commits = 0
        self.rollbacks = 0
        self.flushes = 0

    async def execute(self, stmt):
        self.statements.append(stmt)
        if self.handler is None:
            return FakeResult()
        return self.handler(stmt)

    def add(self, obj: Any) -> None:
        self.added.append(obj)

    async def flush(self) -> None:
        self.flushes += 1

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    async def refresh(self, obj: Any) -> None:
        return None

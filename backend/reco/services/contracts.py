from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from reco.schemas.review import ReviewOut
from reco.services.ai.llm_service import GenerationResult


class EmbeddingClient(Protocol):
    async def embed(self, text: str, task_type: str = "query") -> List[float]:
        ...


class GenerationClient(Protocol):
    async def generate(
        self,
        *,
        system_instruction: str,
        turns: Sequence[Dict[str, str]],
        temperature: float,
        top_p: float,
        max_output_tokens: int,
        model: Optional[str] = None,
    ) -> GenerationResult:
        ...


class ReviewIndex(Protocol):
    async def search(
        self,
        *,
        vector: Sequence[float],
        k: int,
        product_id: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> List[Tuple[str, float]]:
        """Nearest reviews as ``(id, similarity)`` pairs, best first."""
        ...

    async def get_many(self, ids: Sequence[str]) -> List[ReviewOut]:
        ...

    async def list_all(
        self,
        *,
        product_id: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> List[ReviewOut]:
        ...

    async def list_recent(
        self,
        *,
        limit: int,
        product_id: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> List[ReviewOut]:
        ...

    async def release(self) -> None:
        """Finish reading; no connection is held across model calls afterwards."""
        ...


class ConversationRecorder(Protocol):
    async def get_or_create_conversation(
        self,
        session_id: str,
        tenant: Optional[str] = None,
        product_id: Optional[str] = None,
        product_title: Optional[str] = None,
    ) -> int:
        ...

    async def save_message(
        self,
        conversation_id: int,
        role: str,
        text: str,
        evidence_count: Optional[int] = None,
        suggestions: Optional[List[str]] = None,
    ) -> int:
        ...


class ResearchStore(Protocol):
    async def append_step(self, research_id: Any, step: str) -> None:
        ...

    async def finalize(
        self,
        research_id: Any,
        *,
        answer: str,
        evidence: List[Dict[str, Any]],
        suggestions: List[str],
    ) -> None:
        ...

    async def mark_error(self, research_id: Any) -> None:
        ...

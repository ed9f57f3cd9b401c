import asyncio
import hashlib
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from reco.core.config import settings
from reco.core.exceptions import EmbeddingError, GenerationError
from reco.core.logging import get_logger

logger = get_logger(__name__)

TRUNCATION_REASONS = {"length", "max_tokens"}


class _EmbeddingCache:
    def __init__(self, *, max_items: int, ttl_seconds: float):
        self.max_items = max(0, int(max_items))
        self.ttl_seconds = float(ttl_seconds)
        self._data: OrderedDict[str, tuple[float, List[float]]] = OrderedDict()

    def get(self, key: str) -> Optional[List[float]]:
        if not key or self.max_items <= 0:
            return None
        item = self._data.get(key)
        if not item:
            return None
        expires_at, value = item
        if expires_at and expires_at < time.time():
            self._data.pop(key, None)
            return None
        self._data.move_to_end(key)
        return value

    def set(self, key: str, value: List[float]) -> None:
        if not key or self.max_items <= 0:
            return
        expires_at = 0.0
        if self.ttl_seconds > 0:
            expires_at = time.time() + self.ttl_seconds
        self._data[key] = (expires_at, value)
        self._data.move_to_end(key)
        while len(self._data) > self.max_items:
            self._data.popitem(last=False)


@dataclass(frozen=True)
class GenerationResult:
    text: str
    finish_reason: Optional[str] = None

    @property
    def truncated(self) -> bool:
        return (self.finish_reason or "").lower() in TRUNCATION_REASONS


class LLMService:
    """Embedding + generation facade over the OpenAI API."""

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self._client = client
        self.model = settings.OPENAI_MODEL
        self.embedding_model = settings.EMBEDDING_MODEL
        self.dimensions = int(settings.VECTOR_DIMENSIONS)
        self.timeout = float(getattr(settings, "LLM_TIMEOUT_SECONDS", 30.0))
        self._embedding_cache = _EmbeddingCache(
            max_items=int(getattr(settings, "EMBEDDING_CACHE_MAX_ITEMS", 512)),
            ttl_seconds=float(getattr(settings, "EMBEDDING_CACHE_TTL_SECONDS", 3600)),
        )

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        return self._client

    @staticmethod
    def _normalize_query(text: str) -> str:
        return " ".join((text or "").split()).lower()

    def _embedding_cache_key(self, text: str, task_type: str) -> str:
        payload = f"{self.embedding_model}:{self.dimensions}:{task_type}:{self._normalize_query(text)}"
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
        return f"{self.embedding_model}:{digest}"

    async def embed(self, text: str, task_type: str = "query") -> List[float]:
        """Embed one text; raises EmbeddingError on failure or an empty vector."""
        cache_key = self._embedding_cache_key(text, task_type)
        cached = self._embedding_cache.get(cache_key)
        if cached is not None:
            return cached
        try:
            response = await asyncio.wait_for(
                self.client.embeddings.create(
                    model=self.embedding_model,
                    input=(text or "").replace("\n", " "),
                    dimensions=self.dimensions,
                ),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"Error generating embedding: {e}")
            raise EmbeddingError(f"Embedding call failed: {e}") from e

        data = getattr(response, "data", None) or []
        values = [float(x) for x in (data[0].embedding if data else [])]
        if not values:
            raise EmbeddingError("Empty embedding")
        if len(values) != self.dimensions:
            raise EmbeddingError(f"Embedding has {len(values)} dims, expected {self.dimensions}")
        self._embedding_cache.set(cache_key, values)
        return values

    async def embed_many(self, texts: Sequence[str], task_type: str = "document") -> List[List[float]]:
        if not texts:
            return []
        try:
            response = await asyncio.wait_for(
                self.client.embeddings.create(
                    model=self.embedding_model,
                    input=[(t or "").replace("\n", " ") for t in texts],
                    dimensions=self.dimensions,
                ),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"Error generating batch embeddings: {e}")
            raise EmbeddingError(f"Batch embedding call failed: {e}") from e
        vectors = [[float(x) for x in item.embedding] for item in response.data]
        if len(vectors) != len(texts) or any(not v for v in vectors):
            raise EmbeddingError("Batch embedding returned missing vectors")
        return vectors

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
        """One chat completion. Transport, status and timeout failures raise GenerationError."""
        messages = [{"role": "system", "content": system_instruction}]
        messages.extend({"role": t["role"], "content": t["content"]} for t in turns)
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=model or self.model,
                    messages=messages,
                    temperature=temperature,
                    top_p=top_p,
                    max_tokens=max_output_tokens,
                ),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.warning(f"Generation call failed: {e}")
            raise GenerationError(str(e)) from e

        choices = getattr(response, "choices", None) or []
        if not choices:
            return GenerationResult(text="", finish_reason=None)
        choice = choices[0]
        content = getattr(choice.message, "content", None) or ""
        return GenerationResult(text=content, finish_reason=getattr(choice, "finish_reason", None))


# Singleton instance
llm_service = LLMService()

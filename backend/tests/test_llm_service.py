from types import SimpleNamespace

import pytest

from reco.core.config import settings
from reco.core.exceptions import EmbeddingError, GenerationError
from reco.services.ai.llm_service import GenerationResult, LLMService


class FakeOpenAI:
    def __init__(self, *, vector=None, completion="Hello", finish_reason="stop", error=None):
        self.vector = vector
        self.completion = completion
        self.finish_reason = finish_reason
        self.error = error
        self.embedding_requests = []
        self.chat_requests = []
        self.embeddings = SimpleNamespace(create=self._create_embedding)
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create_completion))

    async def _create_embedding(self, **kwargs):
        self.embedding_requests.append(kwargs)
        if self.error is not None:
            raise self.error
        inputs = kwargs["input"] if isinstance(kwargs["input"], list) else [kwargs["input"]]
        data = [] if self.vector is None else [SimpleNamespace(embedding=self.vector) for _ in inputs]
        return SimpleNamespace(data=data)

    async def _create_completion(self, **kwargs):
        self.chat_requests.append(kwargs)
        if self.error is not None:
            raise self.error
        choice = SimpleNamespace(
            message=SimpleNamespace(content=self.completion),
            finish_reason=self.finish_reason,
        )
        return SimpleNamespace(choices=[choice])


def _vector():
    return [0.01] * int(settings.VECTOR_DIMENSIONS)


@pytest.mark.asyncio
async def test_embed_returns_vector_and_caches_normalized_query() -> None:
    client = FakeOpenAI(vector=_vector())
    service = LLMService(client=client)

    first = await service.embed("Does it  run small?")
    second = await service.embed("does it run small?")

    assert first == second
    assert len(first) == settings.VECTOR_DIMENSIONS
    assert len(client.embedding_requests) == 1
    assert client.embedding_requests[0]["dimensions"] == settings.VECTOR_DIMENSIONS


@pytest.mark.asyncio
async def test_embed_rejects_empty_and_wrong_sized_vectors() -> None:
    with pytest.raises(EmbeddingError):
        await LLMService(client=FakeOpenAI(vector=None)).embed("fit?")
    with pytest.raises(EmbeddingError):
        await LLMService(client=FakeOpenAI(vector=[0.1, 0.2])).embed("fit?")


@pytest.mark.asyncio
async def test_embed_transport_failure_is_embedding_error() -> None:
    with pytest.raises(EmbeddingError):
        await LLMService(client=FakeOpenAI(error=ConnectionError("reset"))).embed("fit?")


@pytest.mark.asyncio
async def test_embed_many_returns_one_vector_per_text() -> None:
    client = FakeOpenAI(vector=_vector())

    vectors = await LLMService(client=client).embed_many(["a", "b\nc"])

    assert len(vectors) == 2
    assert client.embedding_requests[0]["input"] == ["a", "b c"]
    assert await LLMService(client=client).embed_many([]) == []


@pytest.mark.asyncio
async def test_generate_prepends_system_and_flags_truncation() -> None:
    client = FakeOpenAI(completion="Partial", finish_reason="length")

    result = await LLMService(client=client).generate(
        system_instruction="persona",
        turns=[{"role": "user", "content": "fit?"}],
        temperature=0.5,
        top_p=0.9,
        max_output_tokens=64,
    )

    assert result == GenerationResult(text="Partial", finish_reason="length")
    assert result.truncated
    messages = client.chat_requests[0]["messages"]
    assert messages[0] == {"role": "system", "content": "persona"}
    assert messages[1] == {"role": "user", "content": "fit?"}
    assert client.chat_requests[0]["max_tokens"] == 64


@pytest.mark.asyncio
async def test_generate_failure_is_generation_error() -> None:
    service = LLMService(client=FakeOpenAI(error=TimeoutError("slow")))

    with pytest.raises(GenerationError):
        await service.generate(
            system_instruction="persona",
            turns=[],
            temperature=0.5,
            top_p=0.9,
            max_output_tokens=64,
        )


def test_stop_reason_is_not_truncated() -> None:
    assert not GenerationResult(text="ok", finish_reason="stop").truncated
    assert not GenerationResult(text="ok").truncated

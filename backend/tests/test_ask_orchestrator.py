from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import InternalError, OperationalError

from reco.core.exceptions import EmbeddingError, PersistenceError, RetrievalError
from reco.models.review import Review
from reco.schemas.chat import AskRequest
from reco.services.chat.answer_synthesizer import AnswerSynthesizer, sanitize_answer
from reco.services.chat.orchestrator import GENERIC_ANSWER, AskOrchestrator
from reco.services.chat.policy_guard import POLICY_SUGGESTIONS
from reco.services.chat.recorder import SqlConversationRecorder
from reco.services.chat.suggestions import SuggestionGenerator, fallback_suggestions
from reco.services.reviews.retrieval import EvidenceRetriever, PgReviewIndex
from review_fakes import (
    FakeEmbedder,
    FakeIndex,
    FakeRecorder,
    FakeResult,
    FakeSession,
    ScriptedGenerator,
    make_review,
)


def _corpus(count: int = 20):
    return [
        make_review(i, f"Review {i}: smooth under dresses and true to size.", rating=4 + (i % 2))
        for i in range(1, count + 1)
    ]


def _orchestrator(
    *,
    index=None,
    embedder=None,
    recorder=None,
    answers=("Most reviewers say it runs true — Jane D. (5/5) agrees.",),
    suggestions=('["Does it roll down?", "Is it breathable?", "Good for summer?"]',),
):
    return AskOrchestrator(
        index=index if index is not None else FakeIndex(_corpus()),
        recorder=recorder,
        embedder=embedder or FakeEmbedder(),
        synthesizer=AnswerSynthesizer(ScriptedGenerator(list(answers))),
        suggester=SuggestionGenerator(ScriptedGenerator(list(suggestions))),
    )


@pytest.mark.asyncio
async def test_product_question_is_answered_from_retrieved_reviews() -> None:
    index = FakeIndex(_corpus())
    recorder = FakeRecorder()
    orchestrator = _orchestrator(index=index, recorder=recorder)

    response = await orchestrator.ask(AskRequest(question="Does it run small?", product="X", session_id="s-1"))

    assert response.ok is True
    assert response.answer == "Most reviewers say it runs true - Jane D. (5/5) agrees."
    assert response.suggestions == ["Does it roll down?", "Is it breathable?", "Good for summer?"]
    assert 0 < len(response.evidence) <= 16
    assert index.search_calls == [{"k": 16, "product_id": "X", "store_id": None}]
    scores = [item.score for item in response.evidence]
    assert scores == sorted(scores, reverse=True)

    assert [m["role"] for m in recorder.messages] == ["user", "assistant"]
    assert recorder.messages[0]["text"] == "Does it run small?"
    assert recorder.messages[1]["evidence_count"] == len(response.evidence)
    assert recorder.messages[1]["suggestions"] == response.suggestions


@pytest.mark.regression
@pytest.mark.asyncio
async def test_policy_question_redirects_without_retrieval() -> None:
    index = FakeIndex(_corpus())
    embedder = FakeEmbedder()
    recorder = FakeRecorder()
    orchestrator = _orchestrator(index=index, embedder=embedder, recorder=recorder)

    response = await orchestrator.ask(
        AskRequest(question="What's your return policy?", product="X", product_title="Sculpt Short", session_id="s-2")
    )

    assert response.ok is True
    assert "store policies" in response.answer
    assert "Sculpt Short" in response.answer
    assert "shipping" not in response.answer.lower()
    assert "return" not in response.answer.lower()
    assert response.evidence == []
    assert response.suggestions == POLICY_SUGGESTIONS
    assert embedder.calls == []
    assert index.search_calls == []
    assert [m["role"] for m in recorder.messages] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_embedding_failure_degrades_to_recent_reviews() -> None:
    index = FakeIndex(_corpus())
    orchestrator = _orchestrator(
        index=index,
        embedder=FakeEmbedder(error=EmbeddingError("quota")),
        answers=("Recent buyers like the fit.",),
    )

    response = await orchestrator.ask(AskRequest(question="Does it run small?", product="X"))

    assert response.ok is False
    assert response.answer == "Recent buyers like the fit."
    assert response.suggestions == fallback_suggestions()
    assert index.list_recent_calls == 1
    assert len(response.evidence) == 8
    assert response.evidence[0].review.id == "20"


@pytest.mark.asyncio
async def test_degraded_path_falls_back_to_generic_answer() -> None:
    index = FakeIndex(_corpus(), search_error=RuntimeError("db down"), recent_error=RuntimeError("db down"))
    orchestrator = _orchestrator(index=index)

    response = await orchestrator.ask(AskRequest(question="Does it run small?", product="X"))

    assert response.ok is False
    assert response.answer == sanitize_answer(GENERIC_ANSWER)
    assert response.evidence == []
    assert len(response.suggestions) == 3


@pytest.mark.asyncio
async def test_empty_ladder_answers_from_evidence_and_stays_ok() -> None:
    orchestrator = _orchestrator(answers=())

    response = await orchestrator.ask(AskRequest(question="Does it run small?", product="X"))

    assert response.ok is True
    assert response.answer.startswith("Here's what customers mention")


@pytest.mark.asyncio
async def test_recorder_failures_do_not_fail_the_request() -> None:
    recorder = FakeRecorder(save_error=PersistenceError("disk full"))
    orchestrator = _orchestrator(recorder=recorder)

    response = await orchestrator.ask(AskRequest(question="Does it run small?", product="X", session_id="s-3"))

    assert response.ok is True
    assert response.answer


@pytest.mark.asyncio
async def test_no_session_means_nothing_recorded() -> None:
    recorder = FakeRecorder()

    await _orchestrator(recorder=recorder).ask(AskRequest(question="Does it run small?", product="X"))

    assert recorder.conversations == {}
    assert recorder.messages == []


@pytest.mark.asyncio
async def test_rating_filter_narrows_evidence() -> None:
    corpus = [make_review(i, "Smooth and comfy.", rating=2 if i <= 4 else 5) for i in range(1, 21)]
    orchestrator = _orchestrator(index=FakeIndex(corpus))

    response = await orchestrator.ask(AskRequest(question="show reviews 3 stars or less", product="X"))

    assert response.ok is True
    assert {item.review.id for item in response.evidence} == {"1", "2", "3", "4"}


@pytest.mark.asyncio
async def test_retriever_sorts_by_score_and_wraps_index_errors() -> None:
    index = FakeIndex(_corpus(5))

    items = await EvidenceRetriever(index).retrieve([0.1], 3, product_id="X")

    assert [item.review.id for item in items] == ["1", "2", "3"]
    assert len(index.get_many_calls) == 1

    with pytest.raises(RetrievalError):
        await EvidenceRetriever(FakeIndex([], search_error=ValueError("bad vector"))).retrieve([0.1], 3)


@pytest.mark.asyncio
async def test_retriever_skips_fetch_when_search_is_empty() -> None:
    index = FakeIndex([])

    assert await EvidenceRetriever(index).retrieve([0.1], 5) == []
    assert index.get_many_calls == []


class AbortingSession(FakeSession):
    """Postgres-like session: the first review search fails and every later
    statement is refused until ``rollback()`` ends the aborted transaction."""

    def __init__(self, recent):
        super().__init__()
        self.recent = recent
        self.aborted = False
        self.search_failed = False
        self.executed = []

    async def execute(self, stmt):
        self.statements.append(stmt)
        if self.aborted:
            raise InternalError("SELECT", {}, Exception("current transaction is aborted"))
        if stmt.is_select and "distance" in stmt.selected_columns.keys() and not self.search_failed:
            self.search_failed = True
            self.aborted = True
            raise OperationalError("SELECT", {}, Exception("canceling statement due to statement timeout"))
        self.executed.append(stmt)
        return FakeResult(5, rows=self.recent)

    async def rollback(self) -> None:
        await super().rollback()
        self.aborted = False


def _stored_review(review_id: int) -> Review:
    return Review(
        id=review_id,
        product_id="X",
        author_name="Jane D.",
        rating=5.0,
        review_body=f"Recent review {review_id}: no roll down.",
        source="okendo",
        created_at=datetime(2025, 1, 1, 0, review_id, tzinfo=timezone.utc),
    )


@pytest.mark.regression
@pytest.mark.asyncio
async def test_database_search_failure_still_answers_from_recent_reviews_and_records() -> None:
    db = AbortingSession([_stored_review(3), _stored_review(2), _stored_review(1)])
    orchestrator = AskOrchestrator(
        index=PgReviewIndex(db),
        recorder=SqlConversationRecorder(db),
        embedder=FakeEmbedder(),
        synthesizer=AnswerSynthesizer(ScriptedGenerator(["Recent buyers love the fit."])),
        suggester=SuggestionGenerator(ScriptedGenerator([])),
    )

    response = await orchestrator.ask(AskRequest(question="Does it run small?", product="X", session_id="s-9"))

    assert response.ok is False
    assert response.answer == "Recent buyers love the fit."
    assert [item.review.id for item in response.evidence] == ["3", "2", "1"]
    assert db.rollbacks == 1
    saved = [s for s in db.executed if s.is_insert and s.table.name == "message"]
    assert len(saved) == 2


@pytest.mark.asyncio
async def test_index_rolls_back_and_reraises_database_errors() -> None:
    def handler(stmt):
        raise OperationalError("SELECT", {}, Exception("connection reset"))

    db = FakeSession(handler)

    with pytest.raises(OperationalError):
        await PgReviewIndex(db).list_recent(limit=8, product_id="X")
    assert db.rollbacks == 1


class ReleaseWatchingGenerator(ScriptedGenerator):
    def __init__(self, index, outputs):
        super().__init__(outputs)
        self.index = index
        self.releases_seen = []

    async def generate(self, **kwargs):
        self.releases_seen.append(self.index.release_calls)
        return await super().generate(**kwargs)


@pytest.mark.asyncio
async def test_read_transaction_ends_before_generation() -> None:
    index = FakeIndex(_corpus())
    answers = ReleaseWatchingGenerator(index, ["Runs true to size."])
    suggestions = ReleaseWatchingGenerator(index, ['["Does it roll?", "Breathable?", "Summer?"]'])
    orchestrator = AskOrchestrator(
        index=index,
        embedder=FakeEmbedder(),
        synthesizer=AnswerSynthesizer(answers),
        suggester=SuggestionGenerator(suggestions),
    )

    response = await orchestrator.ask(AskRequest(question="Does it run small?", product="X"))

    assert response.ok is True
    assert answers.releases_seen and all(seen == 1 for seen in answers.releases_seen)
    assert suggestions.releases_seen == [1]


@pytest.mark.asyncio
async def test_index_release_commits_the_read() -> None:
    db = FakeSession()

    await PgReviewIndex(db).release()

    assert db.commits == 1
    assert db.statements == []

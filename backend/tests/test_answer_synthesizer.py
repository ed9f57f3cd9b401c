import pytest

from reco.core.exceptions import GenerationError, SynthesisEmpty
from reco.prompts.system_prompts import CONTINUATION_INSTRUCTION, STRICT_REQUIREMENTS, AnswerMode
from reco.schemas.chat import HistoryTurn
from reco.schemas.review import EvidenceItem
from reco.services.ai.llm_service import GenerationResult
from reco.services.chat.answer_synthesizer import (
    FALLBACK_ITEMS,
    NO_EVIDENCE_ANSWER,
    AnswerSynthesizer,
    build_evidence_fallback,
    history_to_turns,
    sanitize_answer,
)
from review_fakes import ScriptedGenerator, make_review


def _evidence(count: int = 3):
    return [
        EvidenceItem(
            review=make_review(i, f"Review number {i} says it smooths well.", rating=4, fit="True to size"),
            score=0.9,
        )
        for i in range(1, count + 1)
    ]


@pytest.mark.parametrize(
    "raw,expected",
    [
        ('"Great fit — runs small"', "Great fit - runs small"),
        ("Soft and well-made", "Soft and well-made"),
        ("comfy -all day", "comfy - all day"),
        ("Breathable – light  ", "Breathable - light"),
        ('He said "-" twice', "He said - twice"),
        ("para one\n\n\n\npara two", "para one\n\npara two"),
        ("- **Fit**: true to size\n-  **Comfort**: all day", "- **Fit**: true to size\n- **Comfort**: all day"),
        (None, ""),
    ],
)
def test_sanitize_answer(raw, expected: str) -> None:
    assert sanitize_answer(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        '"“Nested — quotes”"',
        "a  -  b --- c",
        '  "x" - "y"  \r\n\r\n\r\n- item',
        "1) first\n2) second — detail",
    ],
)
def test_sanitize_is_idempotent(raw: str) -> None:
    once = sanitize_answer(raw)

    assert sanitize_answer(once) == once


def test_history_to_turns_maps_roles_and_limits() -> None:
    history = [
        HistoryTurn(role="user", text="old"),
        HistoryTurn(role="user", text="Does it roll?"),
        HistoryTurn(role="bot", text="  "),
        HistoryTurn(role="assistant", text="Not much."),
    ]

    assert history_to_turns(history, 3) == [
        {"role": "user", "content": "Does it roll?"},
        {"role": "assistant", "content": "Not much."},
    ]
    assert history_to_turns(history, 0) == []


@pytest.mark.asyncio
async def test_third_tier_answer_is_used_after_two_empty_tiers() -> None:
    generator = ScriptedGenerator(["", "   ", "Customers love it — Jane D. (4/5) says so."])
    history = [HistoryTurn(role="user", text="Hi"), HistoryTurn(role="assistant", text="Hello!")]

    answer = await AnswerSynthesizer(generator).synthesize("Is it comfy?", _evidence(), AnswerMode.STANDARD, history)

    assert answer == "Customers love it - Jane D. (4/5) says so."
    assert len(generator.calls) == 3
    assert len(generator.calls[0]["turns"]) == 3
    assert STRICT_REQUIREMENTS in generator.calls[1]["system_instruction"]
    assert generator.calls[1]["max_output_tokens"] > generator.calls[0]["max_output_tokens"]
    # seed tier drops history
    assert len(generator.calls[2]["turns"]) == 1
    assert "Seeds:" in generator.calls[2]["turns"][0]["content"]


@pytest.mark.asyncio
async def test_failed_call_advances_ladder() -> None:
    generator = ScriptedGenerator([GenerationError("timeout"), "Second tier text."])

    answer = await AnswerSynthesizer(generator).synthesize("Is it comfy?", _evidence())

    assert answer == "Second tier text."
    assert len(generator.calls) == 2


@pytest.mark.asyncio
async def test_exhausted_ladder_raises_and_synthesize_returns_empty() -> None:
    synthesizer = AnswerSynthesizer(ScriptedGenerator([GenerationError("down")] * 3))

    with pytest.raises(SynthesisEmpty):
        await synthesizer.run_ladder("Is it comfy?", _evidence())

    assert await AnswerSynthesizer(ScriptedGenerator()).synthesize("Is it comfy?", _evidence()) == ""


@pytest.mark.regression
@pytest.mark.asyncio
async def test_all_tiers_empty_still_answers_from_evidence() -> None:
    answer = await AnswerSynthesizer(ScriptedGenerator()).answer_or_fallback("Does it run small?", _evidence())

    assert answer.startswith('Here\'s what customers mention related to "Does it run small?"')
    assert "1. Jane D., 4/5 (True to size): Review number 1" in answer
    assert "—" not in answer


@pytest.mark.asyncio
async def test_truncated_answer_gets_one_continuation() -> None:
    generator = ScriptedGenerator(
        [GenerationResult(text="It smooths the waist", finish_reason="length"), "and stays put."]
    )

    answer = await AnswerSynthesizer(generator).synthesize("Is it comfy?", _evidence())

    assert answer == "It smooths the waist and stays put."
    assert len(generator.calls) == 2
    follow_up = generator.calls[1]["turns"]
    assert follow_up[-2] == {"role": "assistant", "content": "It smooths the waist"}
    assert follow_up[-1]["content"] == CONTINUATION_INSTRUCTION
    assert generator.calls[1]["temperature"] == pytest.approx(0.45)


@pytest.mark.asyncio
async def test_failed_continuation_keeps_partial() -> None:
    generator = ScriptedGenerator(
        [GenerationResult(text="Partial answer", finish_reason="max_tokens"), GenerationError("boom")]
    )

    assert await AnswerSynthesizer(generator).synthesize("Is it comfy?", _evidence()) == "Partial answer"


@pytest.mark.asyncio
async def test_direct_answer_is_single_call_without_history() -> None:
    generator = ScriptedGenerator(["Short   answer."])
    reviews = [item.review for item in _evidence(2)]

    answer = await AnswerSynthesizer(generator).direct_answer("Is it comfy?", reviews)

    assert answer == "Short answer."
    assert len(generator.calls) == 1
    assert len(generator.calls[0]["turns"]) == 1


def test_evidence_fallback_caps_items_and_snippets() -> None:
    long_body = "word " * 100
    evidence = [EvidenceItem(review=make_review(i, long_body)) for i in range(1, 9)]

    text = build_evidence_fallback("Fit?", evidence)

    assert f"{FALLBACK_ITEMS}. " in text
    assert f"{FALLBACK_ITEMS + 1}. " not in text
    assert "..." in text
    assert build_evidence_fallback("Fit?", []) == NO_EVIDENCE_ANSWER

"""Grounded answer generation.

The model is tried through a fixed ladder of tiers, first acceptable text wins:

1. base persona prompt with the full evidence block
2. stricter persona (minimum length, no heading-only output), larger budget
3. stricter persona over a compact seed digest of the first few reviews

A tier whose call fails counts as an empty result. A response cut off by the
token limit gets exactly one continuation call. Every returned answer goes
through :func:`sanitize_answer`.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from reco.core.config import settings
from reco.core.exceptions import GenerationError, SynthesisEmpty
from reco.core.logging import get_logger
from reco.prompts.system_prompts import (
    CONTINUATION_INSTRUCTION,
    AnswerMode,
    AnswerPrompt,
    build_answer_prompt,
    build_seed_prompt,
    format_rating,
)
from reco.schemas.chat import HistoryTurn
from reco.schemas.review import EvidenceItem, ReviewOut
from reco.services.ai.llm_service import GenerationResult, llm_service
from reco.services.contracts import GenerationClient

logger = get_logger(__name__)

NO_EVIDENCE_ANSWER = "I couldn't find enough in the reviews to answer that confidently."
FALLBACK_ITEMS = 5
FALLBACK_SNIPPET_CHARS = 140
CONTINUATION_TEMPERATURE = 0.45
CONTINUATION_TOP_P = 0.95

_DASH_RE = re.compile(r"[ \t]*[—–][ \t]*")
_QUOTED_PUNCT_RE = re.compile(r"\"\s*([-,:;])\s*\"")
_WRAPPING_QUOTES_RE = re.compile(r"^[\"“”]+([^\"“”]*)[\"“”]+$")
_HSPACE_RE = re.compile(r"[ \t\f\v]+")
_BULLET_RE = re.compile(r"^(?:[-*•]|\d+[.)])\s+")
_SPACED_HYPHEN_RE = re.compile(r"(?<=\S)(?: +- *| *- +)(?=\S)")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_MAX_SANITIZE_PASSES = 8


def _normalize_line(line: str) -> str:
    line = _HSPACE_RE.sub(" ", line).strip()
    bullet = _BULLET_RE.match(line)
    prefix = ""
    if bullet:
        prefix = bullet.group(0).strip() + " "
        line = line[bullet.end():]
    return prefix + _SPACED_HYPHEN_RE.sub(" - ", line)


def _sanitize_once(text: str) -> str:
    s = text.replace("\r\n", "\n").replace("\r", "\n")
    s = _DASH_RE.sub(" - ", s)
    s = _QUOTED_PUNCT_RE.sub(r"\1", s)
    s = s.strip()
    wrapped = _WRAPPING_QUOTES_RE.match(s)
    if wrapped:
        s = wrapped.group(1).strip()
    s = "\n".join(_normalize_line(line) for line in s.split("\n"))
    s = _BLANK_LINES_RE.sub("\n\n", s)
    return s.strip()


def sanitize_answer(text: Optional[str]) -> str:
    """Dash/hyphen/whitespace/quote cleanup. Idempotent; keeps line breaks for bullets."""
    current = str(text or "")
    for _ in range(_MAX_SANITIZE_PASSES):
        cleaned = _sanitize_once(current)
        if cleaned == current:
            break
        current = cleaned
    return current


def _is_acceptable(text: Optional[str]) -> bool:
    return bool(sanitize_answer(text))


def _snippet(body: str, limit: int) -> str:
    body = " ".join((body or "").split())
    return body[:limit] + ("..." if len(body) > limit else "")


def build_evidence_fallback(question: str, evidence: Sequence[EvidenceItem]) -> str:
    """Deterministic answer assembled from evidence text, used when no tier produced one."""
    reviews = [item.review for item in evidence][:FALLBACK_ITEMS]
    if not reviews:
        return NO_EVIDENCE_ANSWER
    bullets = []
    for i, review in enumerate(reviews, start=1):
        fit = f" ({review.fit_feedback})" if review.fit_feedback else ""
        bullets.append(
            f"{i}. {review.author_name}, {format_rating(review.rating)}/5{fit}: "
            f"{_snippet(review.review_body, FALLBACK_SNIPPET_CHARS)}"
        )
    lines = "\n".join(bullets)
    return sanitize_answer(f"Here's what customers mention related to \"{question}\":\n\n{lines}")


def history_to_turns(history: Optional[Iterable[HistoryTurn]], limit: int) -> List[Dict[str, str]]:
    turns: List[Dict[str, str]] = []
    if limit <= 0:
        return turns
    for turn in list(history or [])[-limit:]:
        text = (turn.text or "").strip()
        if not text:
            continue
        role = "user" if (turn.role or "").lower() == "user" else "assistant"
        turns.append({"role": role, "content": text})
    return turns


@dataclass(frozen=True)
class LadderTier:
    name: str
    prompt: AnswerPrompt
    temperature: float
    top_p: float
    max_output_tokens: int
    include_history: bool = True

    def turns(self, history_turns: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
        turns = list(history_turns) if self.include_history else []
        turns.append({"role": "user", "content": self.prompt.user})
        return turns


def build_ladder(question: str, reviews: Sequence[ReviewOut], mode: AnswerMode) -> List[LadderTier]:
    strict_top_p = float(getattr(settings, "ANSWER_STRICT_TOP_P", 0.95))
    strict_tokens = int(getattr(settings, "ANSWER_STRICT_MAX_TOKENS", 2048))
    return [
        LadderTier(
            name="base",
            prompt=build_answer_prompt(question, reviews, mode),
            temperature=float(getattr(settings, "ANSWER_TEMPERATURE", 0.55)),
            top_p=float(getattr(settings, "ANSWER_TOP_P", 0.9)),
            max_output_tokens=int(getattr(settings, "ANSWER_MAX_TOKENS", 1024)),
        ),
        LadderTier(
            name="strict",
            prompt=build_answer_prompt(question, reviews, mode, strict=True),
            temperature=float(getattr(settings, "ANSWER_STRICT_TEMPERATURE", 0.5)),
            top_p=strict_top_p,
            max_output_tokens=strict_tokens,
        ),
        LadderTier(
            name="seeds",
            prompt=build_seed_prompt(
                question,
                reviews,
                limit=int(getattr(settings, "ANSWER_SEED_COUNT", 5)),
                max_chars=int(getattr(settings, "ANSWER_SEED_CHARS", 140)),
            ),
            temperature=float(getattr(settings, "ANSWER_SEED_TEMPERATURE", 0.45)),
            top_p=strict_top_p,
            max_output_tokens=strict_tokens,
            include_history=False,
        ),
    ]


class AnswerSynthesizer:
    def __init__(self, client: Optional[GenerationClient] = None):
        self.client = client or llm_service
        self.history_limit = int(getattr(settings, "ANSWER_HISTORY_TURNS", 6))

    async def _call(self, tier: LadderTier, turns: Sequence[Dict[str, str]]) -> GenerationResult:
        return await self.client.generate(
            system_instruction=tier.prompt.system,
            turns=turns,
            temperature=tier.temperature,
            top_p=tier.top_p,
            max_output_tokens=tier.max_output_tokens,
        )

    async def _continue(self, tier: LadderTier, turns: Sequence[Dict[str, str]], partial: str) -> str:
        follow_up = list(turns) + [
            {"role": "assistant", "content": partial},
            {"role": "user", "content": CONTINUATION_INSTRUCTION},
        ]
        try:
            result = await self.client.generate(
                system_instruction=tier.prompt.system,
                turns=follow_up,
                temperature=CONTINUATION_TEMPERATURE,
                top_p=CONTINUATION_TOP_P,
                max_output_tokens=int(getattr(settings, "ANSWER_CONTINUATION_MAX_TOKENS", 512)),
            )
        except GenerationError as e:
            logger.warning(
                f"Continuation failed, keeping partial answer: {e}",
                extra={"event": "answer_continuation_failed"},
            )
            return partial
        extra_text = (result.text or "").strip()
        logger.info(
            "continued truncated answer",
            extra={"event": "answer_continued", "add_chars": len(extra_text)},
        )
        return f"{partial} {extra_text}" if extra_text else partial

    async def run_ladder(
        self,
        question: str,
        evidence: Sequence[EvidenceItem],
        mode: AnswerMode = AnswerMode.STANDARD,
        history: Optional[Sequence[HistoryTurn]] = None,
    ) -> str:
        """Walk the tiers; raises SynthesisEmpty when none produced usable text."""
        reviews = [item.review for item in evidence]
        history_turns = history_to_turns(history, self.history_limit)
        for attempt, tier in enumerate(build_ladder(question, reviews, mode), start=1):
            turns = tier.turns(history_turns)
            started = time.perf_counter()
            try:
                result = await self._call(tier, turns)
            except GenerationError as e:
                logger.warning(
                    f"Answer tier {tier.name} failed: {e}",
                    extra={"event": "answer_tier_failed", "tier": tier.name, "attempt": attempt},
                )
                continue
            if not _is_acceptable(result.text):
                logger.info(
                    f"Answer tier {tier.name} returned empty text",
                    extra={"event": "answer_tier_empty", "tier": tier.name, "attempt": attempt},
                )
                continue

            text = result.text
            if result.truncated:
                text = await self._continue(tier, turns, text)
            answer = sanitize_answer(text)
            logger.info(
                "generated answer",
                extra={
                    "event": "answer_generated",
                    "tier": tier.name,
                    "chars": len(answer),
                    "finish_reason": result.finish_reason,
                    "ms": round((time.perf_counter() - started) * 1000.0, 1),
                },
            )
            return answer
        raise SynthesisEmpty("All answer tiers returned empty text")

    async def synthesize(
        self,
        question: str,
        evidence: Sequence[EvidenceItem],
        mode: AnswerMode = AnswerMode.STANDARD,
        history: Optional[Sequence[HistoryTurn]] = None,
    ) -> str:
        """Sanitized model answer, or "" when every tier came back empty."""
        try:
            return await self.run_ladder(question, evidence, mode, history)
        except SynthesisEmpty:
            logger.warning("Answer ladder exhausted", extra={"event": "answer_ladder_exhausted"})
            return ""

    async def answer_or_fallback(
        self,
        question: str,
        evidence: Sequence[EvidenceItem],
        mode: AnswerMode = AnswerMode.STANDARD,
        history: Optional[Sequence[HistoryTurn]] = None,
    ) -> str:
        answer = await self.synthesize(question, evidence, mode, history)
        return answer or build_evidence_fallback(question, evidence)

    async def direct_answer(
        self,
        question: str,
        reviews: Sequence[ReviewOut],
        mode: AnswerMode = AnswerMode.STANDARD,
    ) -> str:
        """Single base-tier call without retries, used by the degraded path."""
        tier = build_ladder(question, reviews, mode)[0]
        result = await self._call(tier, tier.turns([]))
        return sanitize_answer(result.text)


answer_synthesizer = AnswerSynthesizer()

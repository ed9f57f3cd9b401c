from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence

from reco.core.config import settings, split_terms
from reco.prompts.system_prompts import AnswerMode


def _business_pattern(terms: Sequence[str]) -> Optional[re.Pattern]:
    if not terms:
        return None
    parts = [re.escape(t).replace(r"\ ", r"\s+") for t in sorted(terms, key=len, reverse=True)]
    # stems like "insight" also catch "insights"
    return re.compile(r"\b(?:" + "|".join(parts) + r")", re.IGNORECASE)


def is_business_question(question: str, terms: Optional[Sequence[str]] = None) -> bool:
    vocabulary = tuple(terms) if terms is not None else split_terms(settings.BUSINESS_TRIGGER_TERMS)
    pattern = _business_pattern(vocabulary)
    return bool(pattern and pattern.search(question or ""))


@dataclass(frozen=True)
class RetrievalPlan:
    k: int
    mode: AnswerMode
    business: bool


class RetrievalPlanner:
    @staticmethod
    def size_k(question: str, *, business: bool) -> int:
        base_k = int(getattr(settings, "RETRIEVAL_BASE_K", 24))
        business_k = int(getattr(settings, "RETRIEVAL_BUSINESS_K", 48))
        min_k = int(getattr(settings, "RETRIEVAL_MIN_K", 16))
        max_k = int(getattr(settings, "RETRIEVAL_MAX_K", 64))
        short_chars = int(getattr(settings, "RETRIEVAL_SHORT_QUESTION_CHARS", 40))
        long_chars = int(getattr(settings, "RETRIEVAL_LONG_QUESTION_CHARS", 140))
        long_bonus = int(getattr(settings, "RETRIEVAL_LONG_QUESTION_BONUS", 16))

        k = business_k if business else base_k
        length = len(question or "")
        if length < short_chars:
            k = max(min_k, k // 2)
        if length > long_chars:
            k = min(max_k, k + long_bonus)
        return max(min_k, min(max_k, k))

    @staticmethod
    def decide(question: str, requested_mode: Optional[str] = None) -> RetrievalPlan:
        heuristic = is_business_question(question)
        if requested_mode in (AnswerMode.STANDARD.value, AnswerMode.RESEARCH.value):
            mode = AnswerMode(requested_mode)
        else:
            mode = AnswerMode.RESEARCH if heuristic else AnswerMode.STANDARD
        business = heuristic or mode == AnswerMode.RESEARCH
        return RetrievalPlan(
            k=RetrievalPlanner.size_k(question, business=business),
            mode=mode,
            business=business,
        )

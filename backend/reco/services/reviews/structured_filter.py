"""Keyword / rating constraints pulled from the question text.

Only a handful of phrasings are recognised: quoted phrases, an allow-list of
product attribute words and comparison phrases around a rating value.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence

from reco.core.config import settings, split_terms
from reco.core.logging import get_logger
from reco.schemas.review import EvidenceItem, ReviewOut
from reco.services.contracts import ReviewIndex

logger = get_logger(__name__)

STRICT_EPSILON = 0.001

_NUM = r"(\d+(?:\.\d+)?)"
_QUOTED_RE = re.compile(r"(?<!\w)[\"'“]([^\"'”]+)[\"'”](?!\w)")

# Evaluated in order; the first match per bound wins.
_MAX_PATTERNS = (
    (re.compile(_NUM + r"\s*stars?\s*(?:or\s*less|and\s*below|or\s*fewer|or\s*lower)"), 0.0),
    (re.compile(r"(?:<=|≤)\s*" + _NUM), 0.0),
    (re.compile(r"\bat\s*most\s*" + _NUM), 0.0),
    (re.compile(r"<(?!=)\s*" + _NUM), STRICT_EPSILON),
    (re.compile(r"\b(?:under|below|less\s*than)\s*" + _NUM), STRICT_EPSILON),
)
_MIN_PATTERNS = (
    (re.compile(_NUM + r"\s*stars?\s*(?:or\s*more|and\s*above|or\s*higher|and\s*up)"), 0.0),
    (re.compile(r"(?:>=|≥)\s*" + _NUM), 0.0),
    (re.compile(r"\bat\s*least\s*" + _NUM), 0.0),
    (re.compile(r">(?!=)\s*" + _NUM), -STRICT_EPSILON),
    (re.compile(r"\b(?:over|above|more\s*than)\s*" + _NUM), -STRICT_EPSILON),
)


@dataclass(frozen=True)
class FilterConstraints:
    keywords: FrozenSet[str] = field(default_factory=frozenset)
    min_rating: Optional[float] = None
    max_rating: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return not self.keywords and self.min_rating is None and self.max_rating is None

    def matches(self, review: ReviewOut) -> bool:
        body = (review.review_body or "").lower()
        rating = float(review.rating or 0.0)
        if self.keywords and not any(k in body for k in self.keywords):
            return False
        if self.max_rating is not None and rating > self.max_rating:
            return False
        if self.min_rating is not None and rating < self.min_rating:
            return False
        return True


def _first_bound(text: str, patterns) -> Optional[float]:
    for pattern, adjust in patterns:
        match = pattern.search(text)
        if match:
            return float(match.group(1)) - adjust
    return None


def extract_constraints(
    question: str,
    attribute_terms: Optional[Iterable[str]] = None,
) -> FilterConstraints:
    text = (question or "").lower()
    terms = (
        tuple(attribute_terms)
        if attribute_terms is not None
        else split_terms(settings.FILTER_ATTRIBUTE_TERMS)
    )

    keywords = set()
    for match in _QUOTED_RE.finditer(text):
        phrase = match.group(1).strip()
        if phrase:
            keywords.add(phrase)
    for term in terms:
        if re.search(r"\b" + re.escape(term) + r"(?:s)?\b", text):
            keywords.add(term)

    return FilterConstraints(
        keywords=frozenset(keywords),
        min_rating=_first_bound(text, _MIN_PATTERNS),
        max_rating=_first_bound(text, _MAX_PATTERNS),
    )


def apply(evidence: Sequence[EvidenceItem], constraints: FilterConstraints) -> List[EvidenceItem]:
    if constraints.is_empty:
        return list(evidence)
    return [item for item in evidence if constraints.matches(item.review)]


class StructuredFilter:
    """Narrows a vector-search window, widening to a full scan when it is too thin."""

    def __init__(
        self,
        index: ReviewIndex,
        *,
        min_matches: Optional[int] = None,
        keep: Optional[Callable[[ReviewOut], bool]] = None,
    ):
        self.index = index
        self.min_matches = int(
            min_matches
            if min_matches is not None
            else getattr(settings, "STRUCTURED_FILTER_MIN_MATCHES", 3)
        )
        self.keep = keep

    async def refine(
        self,
        evidence: Sequence[EvidenceItem],
        constraints: FilterConstraints,
        *,
        k: int,
        product_id: Optional[str] = None,
        store_id: Optional[str] = None,
    ) -> List[EvidenceItem]:
        if constraints.is_empty:
            return list(evidence)

        filtered = apply(evidence, constraints)
        if len(filtered) < self.min_matches:
            scanned = await self._full_scan(constraints, product_id=product_id, store_id=store_id)
            if scanned is not None:
                filtered = self._merge(filtered, scanned)

        if not filtered:
            logger.info(
                "structured filter matched nothing; keeping unfiltered window",
                extra={"event": "structured_filter_empty"},
            )
            return list(evidence)

        logger.info(
            "structured filter kept %d reviews",
            len(filtered),
            extra={
                "event": "structured_filter",
                "keywords": sorted(constraints.keywords),
                "min_rating": constraints.min_rating,
                "max_rating": constraints.max_rating,
            },
        )
        return filtered[:k]

    async def _full_scan(
        self,
        constraints: FilterConstraints,
        *,
        product_id: Optional[str],
        store_id: Optional[str],
    ) -> Optional[List[EvidenceItem]]:
        try:
            corpus = await self.index.list_all(product_id=product_id, store_id=store_id)
        except Exception as e:
            logger.warning(
                f"Full-scan fallback failed: {e}",
                extra={"event": "structured_filter_scan_failed"},
            )
            return None
        return [
            EvidenceItem(review=review, score=None)
            for review in corpus
            if (self.keep is None or self.keep(review)) and constraints.matches(review)
        ]

    @staticmethod
    def _merge(window: List[EvidenceItem], scanned: List[EvidenceItem]) -> List[EvidenceItem]:
        # window hits keep their score and order; scan-only hits follow
        seen = {item.review.id for item in window}
        merged = list(window)
        merged.extend(item for item in scanned if item.review.id not in seen)
        return merged

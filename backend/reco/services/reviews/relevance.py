from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from reco.core.config import settings, split_terms
from reco.schemas.review import EvidenceItem, ReviewOut


def _term_pattern(terms: Sequence[str]) -> Optional[re.Pattern]:
    if not terms:
        return None
    alternatives = "|".join(re.escape(t) for t in sorted(terms, key=len, reverse=True))
    return re.compile(r"(?<![\w-])(?:" + alternatives + r")s?(?![\w-])", re.IGNORECASE)


@dataclass(frozen=True)
class RelevanceRule:
    """Drops reviews about another product category unless they co-mention ours."""

    exclude_terms: Tuple[str, ...]
    include_terms: Tuple[str, ...]

    @classmethod
    def from_settings(cls) -> "RelevanceRule":
        return cls(
            exclude_terms=split_terms(settings.RELEVANCE_EXCLUDE_TERMS),
            include_terms=split_terms(settings.RELEVANCE_INCLUDE_TERMS),
        )

    def is_relevant(self, review: ReviewOut) -> bool:
        exclude = _term_pattern(self.exclude_terms)
        if exclude is None:
            return True
        body = review.review_body or ""
        if not exclude.search(body):
            return True
        include = _term_pattern(self.include_terms)
        return bool(include and include.search(body))

    def filter(self, evidence: Iterable[EvidenceItem]) -> List[EvidenceItem]:
        return [item for item in evidence if self.is_relevant(item.review)]

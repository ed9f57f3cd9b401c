from __future__ import annotations

import re
from typing import List, Optional, Sequence

from reco.core.config import settings, split_terms

POLICY_SUGGESTIONS: List[str] = [
    "Does it show under clothes?",
    "How's the compression level?",
    "Can I wear it all day?",
]

_REDIRECT_GUIDE = (
    "Most customers talk about compression that smooths without digging, seamless lines "
    "under outfits, and sizing that runs true, with some sizing up for longer torsos."
)
_REDIRECT_TIP = (
    "If you're between sizes, go by the size chart or size up for comfort. For smoothing "
    "under dresses, mid to high compression works best; for all-day wear, lighter "
    "compression is more comfortable."
)


def _plural_pattern(terms: Sequence[str]) -> Optional[re.Pattern]:
    if not terms:
        return None
    parts = []
    for term in sorted(terms, key=len, reverse=True):
        escaped = re.escape(term).replace(r"\ ", r"\s+")
        suffix = "e?s?" if term.endswith(("y", "h", "x", "s")) else "s?"
        if term.endswith("y"):
            escaped = escaped[:-1] + "(?:y|ie)"
        parts.append(escaped + suffix)
    return re.compile(r"\b(?:" + "|".join(parts) + r")\b", re.IGNORECASE)


class PolicyGuard:
    """Out-of-scope (store policy) detection and the safe redirect that replaces retrieval."""

    def __init__(self, terms: Optional[Sequence[str]] = None):
        self.terms = tuple(terms) if terms is not None else split_terms(settings.POLICY_TERMS)
        self._pattern = _plural_pattern(self.terms)

    def is_out_of_scope(self, question: str) -> bool:
        if self._pattern is None:
            return False
        return bool(self._pattern.search(question or ""))

    def safe_redirect(self, question: str, product_title: Optional[str] = None) -> str:
        subject = product_title.strip() if product_title and product_title.strip() else "this piece"
        lead = (
            f"I can't speak to store policies here, but I can help with how {subject} "
            "actually feels and fits."
        )
        return f"{lead} {_REDIRECT_GUIDE} {_REDIRECT_TIP}"

    def suggestions(self) -> List[str]:
        return list(POLICY_SUGGESTIONS)


policy_guard = PolicyGuard()

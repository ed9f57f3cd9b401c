"""Follow-up question suggestions.

Model output is parsed through an ordered chain: strict JSON array (code
fences stripped), then the first bracketed array embedded in prose, then a
line/comma split that keeps only question-shaped items.
"""

from __future__ import annotations

import json
import re
from typing import Callable, List, Optional, Sequence

from reco.core.config import settings, split_phrases
from reco.core.exceptions import GenerationError, SuggestionError
from reco.core.logging import get_logger
from reco.prompts.system_prompts import SUGGESTION_INSTRUCTION, build_suggestion_prompt
from reco.schemas.chat import HistoryTurn
from reco.schemas.review import EvidenceItem
from reco.services.ai.llm_service import llm_service
from reco.services.contracts import GenerationClient

logger = get_logger(__name__)

SUGGESTION_COUNT = 3
_FENCE_RE = re.compile(r"```(?:json)?\s*|```")
_ARRAY_RE = re.compile(r"\[[^\[\]]*\]", re.DOTALL)
_SPLIT_RE = re.compile(r"\n|,")
_ITEM_TRIM_RE = re.compile(r"^[\-\s\"'*•\d.)]+|[\"'\s]+$")


def fallback_suggestions() -> List[str]:
    phrases = split_phrases(getattr(settings, "FALLBACK_SUGGESTIONS", ""))
    return list(phrases[:SUGGESTION_COUNT])


def _clean_items(items: Sequence[object]) -> List[str]:
    cleaned: List[str] = []
    for item in items:
        text = " ".join(str(item).split()).strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned


def parse_strict(raw: str) -> Optional[List[str]]:
    text = _FENCE_RE.sub("", raw or "").strip()
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    if not isinstance(parsed, list):
        return None
    return _clean_items(parsed) or None


def parse_embedded_array(raw: str) -> Optional[List[str]]:
    match = _ARRAY_RE.search(raw or "")
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    if not isinstance(parsed, list):
        return None
    return _clean_items(parsed) or None


def parse_lines(raw: str) -> Optional[List[str]]:
    text = _FENCE_RE.sub("", raw or "")
    candidates = [_ITEM_TRIM_RE.sub("", part) for part in _SPLIT_RE.split(text)]
    questions = [c for c in candidates if c.endswith("?")]
    return _clean_items(questions) or None


PARSE_CHAIN: Sequence[Callable[[str], Optional[List[str]]]] = (
    parse_strict,
    parse_embedded_array,
    parse_lines,
)


def parse_suggestions(raw: str) -> List[str]:
    """First three usable suggestions; raises SuggestionError when nothing parses."""
    for strategy in PARSE_CHAIN:
        items = strategy(raw)
        if items:
            return items[:SUGGESTION_COUNT]
    raise SuggestionError("No usable suggestions in model output")


def pad_suggestions(items: Sequence[str], fallback: Sequence[str]) -> List[str]:
    result = list(items)[:SUGGESTION_COUNT]
    for extra in fallback:
        if len(result) >= SUGGESTION_COUNT:
            break
        if extra not in result:
            result.append(extra)
    return result


class SuggestionGenerator:
    def __init__(self, client: Optional[GenerationClient] = None):
        self.client = client or llm_service

    async def suggest(
        self,
        question: str,
        evidence: Sequence[EvidenceItem],
        history: Optional[Sequence[HistoryTurn]] = None,
    ) -> List[str]:
        """Always returns exactly three suggestions; never raises for model trouble."""
        fallback = fallback_suggestions()
        review_limit = int(getattr(settings, "SUGGESTION_REVIEW_LIMIT", 8))
        history_limit = int(getattr(settings, "ANSWER_HISTORY_TURNS", 6))
        history_lines = [
            f"{turn.role}: {turn.text}" for turn in list(history or [])[-history_limit:]
        ] if history_limit > 0 else []
        prompt = build_suggestion_prompt(
            question,
            [item.review for item in list(evidence)[:review_limit]],
            history_lines,
        )
        try:
            result = await self.client.generate(
                system_instruction=SUGGESTION_INSTRUCTION,
                turns=[{"role": "user", "content": prompt}],
                temperature=float(getattr(settings, "SUGGESTION_TEMPERATURE", 0.7)),
                top_p=float(getattr(settings, "ANSWER_TOP_P", 0.9)),
                max_output_tokens=int(getattr(settings, "SUGGESTION_MAX_TOKENS", 256)),
            )
            items = parse_suggestions(result.text or "")
        except (GenerationError, SuggestionError) as e:
            logger.info(
                f"Using fallback suggestions: {e}",
                extra={"event": "suggestions_fallback"},
            )
            return fallback
        return pad_suggestions(items, fallback)


suggestion_generator = SuggestionGenerator()

"""Clean review author/body fields that still carry serialized-object artifacts.

Upstream imports sometimes stored a whole review-widget object (Python ``repr``
or single-quoted pseudo JSON) where plain text was expected, e.g.
``{'displayName': 'Jane D.', 'location': {...}}`` in the author column. The
helpers here recover the readable value through an ordered chain of strategies:

``STRICT``        strict ``json.loads``
``COERCED``       quote / literal rewrite then ``json.loads``, then ``ast.literal_eval``
``REGEX``         targeted ``'key': 'value'`` extraction
``RAW_FALLBACK``  strip object prefixes and noisy shapes from the raw text

Every strategy is importable on its own so each tier can be tested in isolation.
"""

from __future__ import annotations

import ast
import enum
import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

ANONYMOUS = "Anonymous"

AUTHOR_KEYS: Tuple[str, ...] = ("displayName", "author", "name")
BODY_KEYS: Tuple[str, ...] = ("body", "review_body", "reviewBody")

_TRUE_RE = re.compile(r"\bTrue\b")
_FALSE_RE = re.compile(r"\bFalse\b")
_NONE_RE = re.compile(r"\bNone\b")
_WS_RE = re.compile(r"\s+")
_INNER_OBJECT_RE = re.compile(r"\{[^{}]*\}")
_NOISY_SHAPE_RES = tuple(
    re.compile(r"\{[^{}]*?['\"]?" + key + r"['\"]?[^{}]*?\}")
    for key in ("attributes", "location", "customAvatar", "avatarUrl", "displayName")
)
_KEY_FRAGMENT_RE = re.compile(r"['\"]?[A-Za-z_][A-Za-z0-9_]*['\"]\s*:\s*")
_STRAY_QUOTE_RE = re.compile(r"(?<![A-Za-z0-9])['\"]|['\"](?![A-Za-z0-9])")
_STRAY_BRACKET_RE = re.compile(r"[\[\]]")
_COMMA_RUN_RE = re.compile(r"\s*,(?:\s*,)+")


class ParseStrategy(str, enum.Enum):
    STRICT = "strict"
    COERCED = "coerced"
    REGEX = "regex"
    RAW_FALLBACK = "raw_fallback"


@dataclass(frozen=True)
class CleanedField:
    value: str
    strategy: ParseStrategy


def _looks_like_object(text: str) -> bool:
    return text.startswith("{")


def parse_strict(raw: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_coerced(raw: str) -> Optional[Dict[str, Any]]:
    fixed = raw.replace("'", '"')
    fixed = _TRUE_RE.sub("true", fixed)
    fixed = _FALSE_RE.sub("false", fixed)
    fixed = _NONE_RE.sub("null", fixed)
    try:
        parsed = json.loads(fixed)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed
    # Python repr with apostrophes inside values survives literal_eval only
    try:
        parsed = ast.literal_eval(raw)
    except (ValueError, SyntaxError, TypeError, MemoryError, RecursionError):
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_loose_object(raw: Any) -> Tuple[Optional[Dict[str, Any]], Optional[ParseStrategy]]:
    """Parse a serialized-object string, reporting which tier succeeded."""
    if not isinstance(raw, str):
        return None, None
    text = raw.strip()
    if not _looks_like_object(text):
        return None, None
    parsed = parse_strict(text)
    if parsed is not None:
        return parsed, ParseStrategy.STRICT
    parsed = parse_coerced(text)
    if parsed is not None:
        return parsed, ParseStrategy.COERCED
    return None, None


def _string_field(obj: Dict[str, Any], keys: Sequence[str]) -> Optional[str]:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def author_from_object(obj: Dict[str, Any]) -> Optional[str]:
    profile = obj.get("authorProfile")
    if isinstance(profile, dict):
        found = _string_field(profile, AUTHOR_KEYS)
        if found:
            return found
    return _string_field(obj, AUTHOR_KEYS)


def body_from_object(obj: Dict[str, Any]) -> Optional[str]:
    return _string_field(obj, BODY_KEYS)


def extract_by_regex(raw: str, key: str) -> Optional[str]:
    pattern = re.compile(r"['\"]" + re.escape(key) + r"['\"]\s*:\s*(['\"])(.*?)(?<!\\)\1", re.DOTALL)
    match = pattern.search(raw)
    if not match:
        return None
    value = match.group(2).strip()
    return value or None


def strip_object_prefix(text: str) -> Optional[str]:
    """Drop a complete leading ``{...}`` object and return what follows it."""
    if not _looks_like_object(text):
        return None
    depth = 0
    for idx, ch in enumerate(text):
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                rest = text[idx + 1:].strip()
                return rest or None
    return None


def extract_truncated_value(raw: str, key: str) -> Optional[str]:
    """Value of ``key`` when the object was cut off inside that value."""
    pattern = re.compile(r"['\"]" + re.escape(key) + r"['\"]\s*:\s*['\"]([^'\"]+)$")
    match = pattern.search(raw.rstrip())
    if not match:
        return None
    value = match.group(1).strip()
    return value or None


def strip_noisy_shapes(text: str) -> str:
    cleaned = text
    for pattern in _NOISY_SHAPE_RES:
        cleaned = pattern.sub(" ", cleaned)
    previous = None
    while previous != cleaned:
        previous = cleaned
        cleaned = _INNER_OBJECT_RE.sub(" ", cleaned)
    cleaned = cleaned.replace("{", " ").replace("}", " ")
    cleaned = _KEY_FRAGMENT_RE.sub(" ", cleaned)
    cleaned = _STRAY_BRACKET_RE.sub(" ", cleaned)
    cleaned = _STRAY_QUOTE_RE.sub("", cleaned)
    cleaned = _COMMA_RUN_RE.sub(",", cleaned)
    return _WS_RE.sub(" ", cleaned).strip(" ,")


def _clean_field(
    raw: Any,
    *,
    from_object: Callable[[Dict[str, Any]], Optional[str]],
    regex_keys: Sequence[str],
    default: str,
) -> CleanedField:
    if raw is None or not isinstance(raw, str):
        return CleanedField(default, ParseStrategy.RAW_FALLBACK)
    text = raw.strip()
    if not text:
        return CleanedField(default, ParseStrategy.RAW_FALLBACK)
    if not _looks_like_object(text):
        # plain text passes through untouched apart from whitespace
        return CleanedField(_WS_RE.sub(" ", text), ParseStrategy.STRICT)

    parsed, strategy = parse_loose_object(text)
    if parsed is not None and strategy is not None:
        value = from_object(parsed)
        if value:
            return CleanedField(_WS_RE.sub(" ", value), strategy)

    for key in regex_keys:
        value = extract_by_regex(text, key)
        if value:
            return CleanedField(_WS_RE.sub(" ", value), ParseStrategy.REGEX)

    for key in regex_keys:
        value = extract_truncated_value(text, key)
        if value:
            return CleanedField(_WS_RE.sub(" ", value), ParseStrategy.REGEX)

    rest = strip_object_prefix(text)
    if rest:
        cleaned = strip_noisy_shapes(rest)
        if cleaned:
            return CleanedField(cleaned, ParseStrategy.RAW_FALLBACK)

    if _KEY_FRAGMENT_RE.search(text):
        # an unclosed object without our keys only holds other fields' values
        return CleanedField(default, ParseStrategy.RAW_FALLBACK)
    cleaned = strip_noisy_shapes(text)
    return CleanedField(cleaned or default, ParseStrategy.RAW_FALLBACK)


def clean_author_field(raw: Any) -> CleanedField:
    return _clean_field(
        raw,
        from_object=author_from_object,
        regex_keys=("displayName", "author"),
        default=ANONYMOUS,
    )


def clean_body_field(raw: Any) -> CleanedField:
    return _clean_field(
        raw,
        from_object=body_from_object,
        regex_keys=("body", "review_body"),
        default="",
    )


def clean_author(raw: Any) -> str:
    return clean_author_field(raw).value or ANONYMOUS


def clean_body(raw: Any) -> str:
    return clean_body_field(raw).value


def coerce_review_fields(raw_body: Any, defaults: Dict[str, Any]) -> Dict[str, Any]:
    """Rebuild coherent review fields when the body holds a whole serialized review.

    Returns only the fields that could be recovered; callers merge them over
    the row they already have.
    """
    parsed, _strategy = parse_loose_object(raw_body)
    if parsed is None:
        return {}
    updates: Dict[str, Any] = {}
    author = author_from_object(parsed)
    updates["author_name"] = author or defaults.get("author_name") or ANONYMOUS
    if parsed.get("rating") is not None:
        try:
            updates["rating"] = float(parsed["rating"])
        except (TypeError, ValueError):
            pass
    if parsed.get("fitFeedback") is not None:
        updates["fit_feedback"] = str(parsed["fitFeedback"])
    body = body_from_object(parsed)
    if body:
        updates["review_body"] = body
    created = parsed.get("dateCreated") or parsed.get("createdAt")
    if created:
        updates["created_at"] = str(created)
    return updates


def normalize_signature_text(value: Optional[str]) -> str:
    text = _WS_RE.sub(" ", str(value or "").lower())
    return re.sub(r"[^\w\s]", "", text).strip()


def review_signature(
    *,
    external_id: Optional[str],
    body: Optional[str],
    product_id: Optional[str],
    author: Optional[str],
) -> str:
    """Dedupe key: external id when present, else a hash of body+product+author."""
    if external_id:
        return f"ext:{external_id}"
    payload = "|".join(
        [
            normalize_signature_text(body),
            str(product_id or ""),
            normalize_signature_text(author),
        ]
    )
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"sig:{digest}"

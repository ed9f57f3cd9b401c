from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from reco.schemas.review import ReviewOut


class AnswerMode(str, enum.Enum):
    STANDARD = "standard"
    RESEARCH = "research"


PERSONA = (
    "You are Reco, an AI shopping assistant embedded on a product page. You're helpful, "
    "knowledgeable, and focused on helping shoppers decide with confidence. Ground every "
    "answer in the provided customer reviews.\n\n"
    "PERSONALITY & TONE:\n"
    "- Conversational and friendly, but professional.\n"
    "- Open naturally (e.g. \"Here's what customers say\", \"Looking at the reviews\"); jump "
    "straight to the answer for direct questions and use reassuring warmth for worries.\n"
    "- Avoid overly casual terms like 'gorgeous', 'babe', 'honey', 'hun'.\n\n"
    "GROUNDING:\n"
    "- The reviews are your only source of truth. Never invent details they do not support.\n"
    "- Reference reviewers by name when quoting (e.g. \"Sarah M. mentioned...\").\n"
    "- When coverage is thin, say so and share the closest relevant takeaways.\n\n"
    "CONTENT RULES:\n"
    "- Questions the reviews can't cover (shipping, returns, store policies, unrelated topics): "
    "do not guess; redirect warmly to fit, feel, and sizing.\n"
    "- Business/analysis requests: 3-5 bullets with bold short headings plus one recommendation "
    "paragraph.\n"
    "- Normal questions: ONE conversational paragraph with 2-3 reviewer attributions (name + rating).\n\n"
    "STYLE: No em-dashes. Prefer commas or short sentences. Natural sentence variety."
)

STRICT_REQUIREMENTS = (
    "OUTPUT REQUIREMENTS: Respond in natural prose with at least 2 sentences. Never return an "
    "empty response. Always include your own consensus beyond any quote.\n"
    "MUST: Minimum 80 characters. Do not output only headings or placeholders."
)

CONTINUATION_INSTRUCTION = (
    "Continue and complete the previous answer in 1-2 sentences. Avoid repetition."
)

SUGGESTION_INSTRUCTION = (
    "You generate 3 short, friendly follow-up questions for a shopping assistant chat. "
    "Keep each under 7 words, end each with '?', avoid repeating the user's question, "
    "and stay on this product (fit, feel, sizing, comfort, wear)."
)


@dataclass(frozen=True)
class ModeHint:
    mode: AnswerMode
    text: str


STANDARD_HINT = ModeHint(
    AnswerMode.STANDARD,
    "STANDARD MODE: Write one natural, warm paragraph in persona. Weave 2-3 short reviewer "
    "attributions inline like: Abby M. (4/5) \"...\". Avoid headings or bullet sections.",
)
RESEARCH_HINT = ModeHint(
    AnswerMode.RESEARCH,
    "BUSINESS INSIGHT MODE: Provide 3-5 bullets with bold short headings summarizing recurring "
    "themes and trade-offs, then one tight recommendation paragraph. If the user specified "
    "keywords or rating thresholds, only use matching reviews.",
)


def mode_hint(mode: AnswerMode) -> ModeHint:
    return RESEARCH_HINT if mode == AnswerMode.RESEARCH else STANDARD_HINT


def format_rating(rating: Optional[float]) -> str:
    try:
        return f"{float(rating):g}"
    except (TypeError, ValueError):
        return "?"


@dataclass(frozen=True)
class EvidenceBlock:
    reviews: Sequence[ReviewOut]

    def render(self) -> str:
        entries: List[str] = []
        for review in self.reviews:
            lines = [
                f"- Author: {review.author_name}",
                f"  Rating: {format_rating(review.rating)}/5",
            ]
            if review.fit_feedback:
                lines.append(f"  Fit: {review.fit_feedback}")
            lines.append(f"  Review: {review.review_body}")
            entries.append("\n".join(lines))
        return "\n\n".join(entries) if entries else "(no matching reviews found)"


@dataclass(frozen=True)
class SeedDigest:
    reviews: Sequence[ReviewOut]
    limit: int = 5
    max_chars: int = 140

    def render(self) -> str:
        seeds: List[str] = []
        for review in list(self.reviews)[: self.limit]:
            full = review.review_body or ""
            snippet = full[: self.max_chars] + ("..." if len(full) > self.max_chars else "")
            fit = f" {review.fit_feedback}" if review.fit_feedback else ""
            seeds.append(f"* {format_rating(review.rating)}/5{fit}: {snippet}")
        return "\n".join(seeds) if seeds else "(no review seeds available)"


@dataclass(frozen=True)
class AnswerPrompt:
    system: str
    user: str


def answer_system_prompt(*, strict: bool = False) -> str:
    if strict:
        return f"{PERSONA}\n\n{STRICT_REQUIREMENTS}"
    return PERSONA


def build_answer_prompt(
    question: str,
    reviews: Sequence[ReviewOut],
    mode: AnswerMode,
    *,
    strict: bool = False,
) -> AnswerPrompt:
    hint = mode_hint(mode)
    lead = "Rewrite clearly in persona. " if strict else ""
    user = (
        f"{lead}User question: \"{question}\". {hint.text}\n\n"
        f"Ground your answer ONLY in these customer reviews:\n\n{EvidenceBlock(reviews).render()}"
    )
    return AnswerPrompt(system=answer_system_prompt(strict=strict), user=user)


def build_seed_prompt(
    question: str,
    reviews: Sequence[ReviewOut],
    *,
    limit: int = 5,
    max_chars: int = 140,
) -> AnswerPrompt:
    digest = SeedDigest(reviews, limit=limit, max_chars=max_chars).render()
    user = (
        f"Using ONLY these review bullet seeds, write one helpful paragraph answering: "
        f"\"{question}\" in persona.\n\nSeeds:\n{digest}"
    )
    return AnswerPrompt(system=answer_system_prompt(strict=True), user=user)


def build_suggestion_prompt(
    question: str,
    reviews: Iterable[ReviewOut],
    history_lines: Sequence[str],
    *,
    body_chars: int = 200,
) -> str:
    review_lines = []
    for review in reviews:
        body = (review.review_body or "")[:body_chars]
        fit = f" {review.fit_feedback}" if review.fit_feedback else ""
        review_lines.append(f"- {format_rating(review.rating)}/5{fit}: {body}")
    convo = "\n".join(history_lines) or "(new conversation)"
    reviews_block = "\n".join(review_lines) or "(no reviews)"
    return (
        "Based on the conversation and these review snippets, propose 3 follow-up questions the "
        "user is likely to ask next. Return ONLY a JSON array of strings, e.g. "
        "[\"Q1?\", \"Q2?\", \"Q3?\"].\n\n"
        f"Conversation:\n{convo}\n\nUser question: {question}\n\nReviews:\n{reviews_block}"
    )

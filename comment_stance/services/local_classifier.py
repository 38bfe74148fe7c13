from __future__ import annotations

import re

from comment_stance.models.stance import Stance

AGREE_TERMS: tuple[str, ...] = (
    "agree",
    "yes",
    "right",
    "correct",
    "exactly",
    "true",
    "good",
    "good point",
    "well said",
    "love",
    "great",
    "awesome",
    "amazing",
    "excellent",
    "perfect",
    "best",
    "fantastic",
    "helpful",
    "informative",
    "useful",
    "insightful",
    "brilliant",
    "spot on",
    "valid",
    "thanks",
    "thank you",
    "appreciate",
    "accurate",
    "\U0001f44d",
    "❤",
    "\U0001f4af",
)

DISAGREE_TERMS: tuple[str, ...] = (
    "disagree",
    "no",
    "wrong",
    "incorrect",
    "false",
    "bad",
    "terrible",
    "awful",
    "hate",
    "dislike",
    "worst",
    "poor",
    "useless",
    "misleading",
    "inaccurate",
    "disappointing",
    "rubbish",
    "nonsense",
    "ridiculous",
    "stupid",
    "bs",
    "lies",
    "thumbs down",
    "waste",
    "garbage",
    "trash",
    "horrible",
    "not true",
    "\U0001f44e",
)

NEGATION_TERMS: tuple[str, ...] = (
    "not",
    "never",
    "don't",
    "doesn't",
    "didn't",
    "isn't",
    "aren't",
    "wasn't",
    "weren't",
)

_APOSTROPHE_VARIANTS = str.maketrans({"’": "'", "‘": "'", "ʼ": "'"})


def _term_pattern(term: str) -> re.Pattern[str]:
    # Bounded on both sides so "agree" never matches inside "disagree" and "no" not inside "not".
    return re.compile(rf"(?<!\w){re.escape(term)}(?!\w)")


_AGREE_PATTERNS = tuple(_term_pattern(term) for term in AGREE_TERMS)
_DISAGREE_PATTERNS = tuple(_term_pattern(term) for term in DISAGREE_TERMS)
_NEGATION_PATTERNS = tuple(_term_pattern(term) for term in NEGATION_TERMS)


def classify_local_stance(text: str, context: str = "") -> Stance:
    """
    Keyword heuristic used whenever the remote classifier cannot be used.

    `context` (the video title) is accepted for signature parity with the remote
    classifier and does not influence the score. The function is pure and cannot fail.
    """
    _ = context
    if not text or not text.strip():
        return Stance.NEUTRAL

    normalized = text.translate(_APOSTROPHE_VARIANTS).lower()

    agree_score = _count_matches(_AGREE_PATTERNS, normalized)
    disagree_score = _count_matches(_DISAGREE_PATTERNS, normalized)

    # Presence-based negation: every negation token turns each present agree term negative.
    negations_present = sum(1 for pattern in _NEGATION_PATTERNS if pattern.search(normalized))
    agree_terms_present = sum(1 for pattern in _AGREE_PATTERNS if pattern.search(normalized))
    flipped = negations_present * agree_terms_present
    agree_score -= flipped
    disagree_score += flipped

    if agree_score > disagree_score:
        return Stance.AGREE
    if disagree_score > agree_score:
        return Stance.DISAGREE
    return Stance.NEUTRAL


def _count_matches(patterns: tuple[re.Pattern[str], ...], text: str) -> int:
    return sum(len(pattern.findall(text)) for pattern in patterns)


class LocalStanceClassifier:
    def classify(self, text: str, context: str = "") -> Stance:
        return classify_local_stance(text, context)

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from comment_stance.models.stance import Stance

STOP_WORDS: frozenset[str] = frozenset(
    {
        "the",
        "and",
        "a",
        "to",
        "of",
        "in",
        "is",
        "it",
        "you",
        "that",
        "was",
        "for",
        "on",
        "are",
        "with",
        "as",
        "this",
        "not",
        "but",
        "be",
        "have",
        "they",
        "what",
        "just",
        "from",
        "your",
        "about",
        "there",
        "their",
        "would",
        "like",
    }
)
KEYWORD_LIMIT = 10
USERNAME_MASK_CHAR = "*"

_PUNCTUATION_PATTERN = re.compile(r"[^\w\s]")


@dataclass(frozen=True)
class AnalyzedComment:
    comment_id: str
    text: str
    username: str
    published_at: str
    stance: Stance
    original_username: str = ""


@dataclass(frozen=True)
class StanceSummary:
    total_comments: int
    stance_distribution: dict[str, int]
    monthly_distribution: dict[str, int]
    keywords: list[str]


def summarize_comments(
    comments: Sequence[AnalyzedComment],
    *,
    now: datetime | None = None,
) -> StanceSummary:
    return StanceSummary(
        total_comments=len(comments),
        stance_distribution=count_stances(comment.stance for comment in comments),
        monthly_distribution=bucket_by_month(
            (comment.published_at for comment in comments),
            now=now,
        ),
        keywords=extract_keywords(comment.text for comment in comments),
    )


def count_stances(stances: Iterable[Stance]) -> dict[str, int]:
    counts = {stance.value: 0 for stance in Stance}
    for stance in stances:
        counts[stance.value] += 1
    return counts


def bucket_by_month(timestamps: Iterable[str], *, now: datetime | None = None) -> dict[str, int]:
    """Histogram keyed `YYYY-M` (month not zero padded); unparseable stamps count as now."""
    fallback = now if now is not None else datetime.now(UTC)
    buckets: dict[str, int] = {}
    for raw_timestamp in timestamps:
        parsed = _parse_datetime_utc(raw_timestamp) or fallback
        key = f"{parsed.year}-{parsed.month}"
        buckets[key] = buckets.get(key, 0) + 1
    return buckets


def extract_keywords(texts: Iterable[str], *, top_n: int = KEYWORD_LIMIT) -> list[str]:
    words = [
        word
        for text in texts
        if text
        for word in _PUNCTUATION_PATTERN.sub("", text.lower()).split()
        if len(word) > 3 and word not in STOP_WORDS
    ]
    # Counter.most_common keeps first-encountered order among equal counts.
    return [word for word, _ in Counter(words).most_common(top_n)]


def mask_username(username: str) -> str:
    if len(username) <= 2:
        return username
    return f"{username[:2]}{USERNAME_MASK_CHAR * (len(username) - 2)}"


def _parse_datetime_utc(raw_value: str | None) -> datetime | None:
    if raw_value is None:
        return None
    normalized = raw_value.strip()
    if not normalized:
        return None
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)

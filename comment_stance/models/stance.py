from __future__ import annotations

from enum import StrEnum


class Stance(StrEnum):
    AGREE = "agree"
    DISAGREE = "disagree"
    NEUTRAL = "neutral"


def parse_stance(raw_value: object) -> Stance | None:
    """Strict parse of an upstream reply; anything but the three labels yields None."""
    if not isinstance(raw_value, str):
        return None
    normalized = raw_value.strip().strip("\"'.").strip().casefold()
    try:
        return Stance(normalized)
    except ValueError:
        return None

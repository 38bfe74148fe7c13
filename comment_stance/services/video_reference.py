from __future__ import annotations

import re

from comment_stance.errors import InvalidVideoReferenceError

VIDEO_ID_PATTERN = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?|shorts|live)/|.*[?&]v=)|youtu\.be/)"
    r"([^\"&?/\s]{11})"
)
BARE_VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")


def extract_video_id(video_url: str) -> str:
    candidate = video_url.strip() if isinstance(video_url, str) else ""
    if not candidate:
        raise InvalidVideoReferenceError("Video URL is required")

    if BARE_VIDEO_ID_PATTERN.match(candidate):
        return candidate

    match = VIDEO_ID_PATTERN.search(candidate)
    if match is None:
        raise InvalidVideoReferenceError("Invalid YouTube video URL")
    return match.group(1)

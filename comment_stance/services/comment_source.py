from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from importlib import import_module
from threading import Lock
from typing import Any, Protocol, cast

from comment_stance.errors import CommentStanceError
from comment_stance.services.backoff_gate import BackoffGate
from comment_stance.services.result_cache import ResultCache
from comment_stance.telemetry import TelemetryClient, TelemetryEvent

LOGGER = logging.getLogger("comment_stance.comments")

YOUTUBE_PAGE_SIZE_LIMIT = 100


@dataclass(frozen=True)
class VideoComment:
    comment_id: str | None
    text: str | None
    author: str | None
    published_at: str | None


@dataclass(frozen=True)
class CommentFetchResult:
    comments: list[VideoComment]
    cache_hit: bool
    gate_closed: bool = False
    error_type: str | None = None


class CommentSourceError(CommentStanceError):
    pass


class CommentPageFetcher(Protocol):
    def fetch_page(
        self,
        *,
        video_id: str,
        page_token: str | None,
        max_results: int,
    ) -> dict[str, Any]:
        ...


class YouTubeDataApiPageFetcher:
    """Blocking commentThreads.list pager; the discovery client is built on first use."""

    def __init__(self, *, api_key: str | None) -> None:
        self._api_key = api_key
        self._client: Any | None = None
        self._client_lock = Lock()

    def fetch_page(
        self,
        *,
        video_id: str,
        page_token: str | None,
        max_results: int,
    ) -> dict[str, Any]:
        client = self._get_client()
        request_kwargs: dict[str, Any] = {
            "part": "snippet",
            "videoId": video_id,
            "maxResults": max(1, min(YOUTUBE_PAGE_SIZE_LIMIT, max_results)),
            "textFormat": "plainText",
        }
        if page_token:
            request_kwargs["pageToken"] = page_token
        response = client.commentThreads().list(**request_kwargs).execute()
        return _as_dict(response)

    def _get_client(self) -> Any:
        with self._client_lock:
            if self._client is None:
                self._client = _build_youtube_data_client(self._api_key)
            return self._client


def _build_youtube_data_client(api_key: str | None) -> Any:
    if api_key is None:
        raise CommentSourceError("COMMENT_STANCE_YOUTUBE_API_KEY is not configured")
    try:
        discovery_module = import_module("googleapiclient.discovery")
    except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
        raise CommentSourceError(
            "Comment fetching requires the google-api-python-client dependency"
        ) from exc

    build_fn: Any = discovery_module.build
    return build_fn("youtube", "v3", developerKey=api_key, cache_discovery=False)


class YouTubeCommentSource:
    """
    Top-level comments for a video, cached per video id and guarded by its own gate.

    Upstream failures never propagate: a closed gate or a failed fetch yields an
    empty list, and quota errors additionally close the gate.
    """

    def __init__(
        self,
        *,
        page_fetcher: CommentPageFetcher,
        gate: BackoffGate,
        cache: ResultCache[tuple[VideoComment, ...]],
        max_comments: int = 100,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._page_fetcher = page_fetcher
        self._gate = gate
        self._cache = cache
        self._max_comments = max(1, max_comments)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def gate(self) -> BackoffGate:
        return self._gate

    @property
    def cache(self) -> ResultCache[tuple[VideoComment, ...]]:
        return self._cache

    async def fetch(self, video_id: str) -> list[VideoComment]:
        result = await self.fetch_with_metadata(video_id)
        return result.comments

    async def fetch_with_metadata(self, video_id: str) -> CommentFetchResult:
        cached = self._cache.get(video_id)
        if cached is not None:
            return CommentFetchResult(comments=list(cached), cache_hit=True)

        if not self._gate.is_available():
            LOGGER.info("youtube comments gate closed; returning no comments video_id=%s", video_id)
            return CommentFetchResult(comments=[], cache_hit=False, gate_closed=True)

        try:
            comments = await self._fetch_all_pages(video_id)
        except Exception as exc:
            rate_limited = _is_youtube_quota_error(exc)
            if rate_limited:
                self._gate.trigger_backoff()
            else:
                LOGGER.warning(
                    "youtube comment fetch failed video_id=%s error=%s",
                    video_id,
                    _summarize_exception_message(exc),
                    exc_info=True,
                )
            self._telemetry.emit(
                TelemetryEvent.COMMENTS_FETCH_ERROR,
                video_id=video_id,
                rate_limited=rate_limited,
                error_type=type(exc).__name__,
            )
            return CommentFetchResult(
                comments=[],
                cache_hit=False,
                error_type=type(exc).__name__,
            )

        self._gate.reset_backoff()
        self._cache.put(video_id, tuple(comments))
        self._telemetry.emit(
            TelemetryEvent.COMMENTS_FETCH_FINISH,
            video_id=video_id,
            comment_count=len(comments),
        )
        return CommentFetchResult(comments=comments, cache_hit=False)

    async def _fetch_all_pages(self, video_id: str) -> list[VideoComment]:
        comments: list[VideoComment] = []
        page_token: str | None = None
        remaining = self._max_comments

        while remaining > 0:
            payload = await asyncio.to_thread(
                self._page_fetcher.fetch_page,
                video_id=video_id,
                page_token=page_token,
                max_results=min(remaining, YOUTUBE_PAGE_SIZE_LIMIT),
            )
            page_items = [_comment_from_thread(item) for item in _as_list(payload.get("items"))]
            comments.extend(page_items[:remaining])
            remaining = self._max_comments - len(comments)

            next_token = payload.get("nextPageToken")
            if not isinstance(next_token, str) or not next_token or not page_items:
                break
            page_token = next_token

        return comments


def _comment_from_thread(raw_item: Any) -> VideoComment:
    item = _as_dict(raw_item)
    snippet = _as_dict(_as_dict(_as_dict(item.get("snippet")).get("topLevelComment")).get("snippet"))
    return VideoComment(
        comment_id=_coerce_nonempty_string(item.get("id")),
        text=_coerce_string(snippet.get("textDisplay")),
        author=_coerce_nonempty_string(snippet.get("authorDisplayName")),
        published_at=_coerce_nonempty_string(snippet.get("publishedAt")),
    )


def _is_youtube_quota_error(exc: Exception) -> bool:
    response = getattr(exc, "resp", None)
    status = getattr(response, "status", None) if response is not None else None
    if status is None:
        status = getattr(exc, "status_code", None)
    try:
        status_code = int(status) if status is not None else None
    except (TypeError, ValueError):
        status_code = None
    if status_code in {403, 429}:
        return True

    class_name = exc.__class__.__name__.lower()
    if "rate" in class_name and "limit" in class_name:
        return True

    message = str(exc).lower()
    markers = (
        "quota",
        "quotaexceeded",
        "dailylimitexceeded",
        "ratelimitexceeded",
        "rate limit",
        "too many requests",
    )
    return any(marker in message for marker in markers)


def _summarize_exception_message(exc: Exception, *, max_length: int = 400) -> str:
    raw = str(exc).strip()
    if not raw:
        raw = repr(exc)
    if len(raw) <= max_length:
        return raw
    return f"{raw[: max_length - 3]}..."


def _coerce_string(raw_value: object) -> str | None:
    if isinstance(raw_value, str):
        return raw_value
    return None


def _coerce_nonempty_string(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value.strip()
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        converted: dict[str, Any] = {}
        for key, item in raw_dict.items():
            if isinstance(key, str):
                converted[key] = item
        return converted
    return {}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        raw_list = cast(list[Any], value)
        return list(raw_list)
    return []

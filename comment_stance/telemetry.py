from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal, Protocol

import structlog

LOGGER = logging.getLogger("comment_stance.telemetry_client")

_MAX_STRING_LENGTH = 160

TelemetryValue = bool | int | float | str | None


class TelemetryEvent(StrEnum):
    HTTP_REQUEST_START = "http.request.start"
    HTTP_REQUEST_FINISH = "http.request.finish"
    HTTP_REQUEST_ERROR = "http.request.error"
    ANALYSIS_FINISH = "analysis.finish"
    ANALYSIS_PERSIST_ERROR = "analysis.persist.error"
    STANCE_CLASSIFY_FINISH = "stance.classify.finish"
    STANCE_REMOTE_RATE_LIMITED = "stance.remote.rate_limited"
    STANCE_REMOTE_ERROR = "stance.remote.error"
    COMMENTS_FETCH_FINISH = "youtube.comments.fetch.finish"
    COMMENTS_FETCH_ERROR = "youtube.comments.fetch.error"
    CACHE_SWEEP_FINISH = "cache.sweep.finish"
    CACHE_SWEEP_ERROR = "cache.sweep.error"


_HTTP_REQUEST_FIELDS = frozenset({"request_id", "method", "path"})

# Every event declares the attributes it may carry. Anything else, comment text and
# author names included, is dropped before a sink sees it.
_EVENT_FIELDS: dict[TelemetryEvent, frozenset[str]] = {
    TelemetryEvent.HTTP_REQUEST_START: _HTTP_REQUEST_FIELDS,
    TelemetryEvent.HTTP_REQUEST_FINISH: _HTTP_REQUEST_FIELDS | {"duration_ms", "status_code"},
    TelemetryEvent.HTTP_REQUEST_ERROR: _HTTP_REQUEST_FIELDS | {"duration_ms", "error_type"},
    TelemetryEvent.ANALYSIS_FINISH: frozenset(
        {"video_id", "comment_count", "comments_cache_hit", "duration_ms"}
    ),
    TelemetryEvent.ANALYSIS_PERSIST_ERROR: frozenset({"video_id", "error_type"}),
    TelemetryEvent.STANCE_CLASSIFY_FINISH: frozenset({"source", "stance", "duration_ms"}),
    TelemetryEvent.STANCE_REMOTE_RATE_LIMITED: frozenset({"cooldown_seconds", "error_type"}),
    TelemetryEvent.STANCE_REMOTE_ERROR: frozenset({"error_type"}),
    TelemetryEvent.COMMENTS_FETCH_FINISH: frozenset({"video_id", "comment_count"}),
    TelemetryEvent.COMMENTS_FETCH_ERROR: frozenset({"video_id", "rate_limited", "error_type"}),
    TelemetryEvent.CACHE_SWEEP_FINISH: frozenset({"tick_id", "duration_ms"}),
    TelemetryEvent.CACHE_SWEEP_ERROR: frozenset({"tick_id", "cache_name", "error_type"}),
}

# Per-cache counters are named after the cache, e.g. purged_stance.
_EVENT_FIELD_PREFIXES: dict[TelemetryEvent, tuple[str, ...]] = {
    TelemetryEvent.CACHE_SWEEP_FINISH: ("purged_",),
}


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    def __init__(self) -> None:
        self._logger = structlog.get_logger("comment_stance.telemetry")

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event: TelemetryEvent | str, **attributes: Any) -> None:
        if not self.enabled:
            return
        try:
            known_event = TelemetryEvent(event)
        except ValueError:
            LOGGER.warning("dropping unregistered telemetry event event=%s", event)
            return
        self.sink.emit(
            event_name=known_event.value,
            attributes=event_attributes(known_event, attributes),
        )


def event_attributes(
    event: TelemetryEvent,
    attributes: Mapping[str, Any],
) -> dict[str, TelemetryValue]:
    """Keep the attributes registered for `event`, compacted to flat scalar values."""
    allowed = _EVENT_FIELDS[event]
    prefixes = _EVENT_FIELD_PREFIXES.get(event, ())
    kept: dict[str, TelemetryValue] = {}
    dropped: list[str] = []
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if key in allowed or (prefixes and key.startswith(prefixes)):
            kept[key] = _compact_value(raw_value)
        elif key:
            dropped.append(key)
    if dropped:
        LOGGER.debug(
            "dropped unregistered telemetry attributes event=%s attributes=%s",
            event.value,
            ",".join(sorted(dropped)),
        )
    return kept


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    LOGGER.warning("unsupported telemetry sink requested; disabling telemetry sink=%s", sink)
    return TelemetryClient.disabled()


def _compact_value(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = " ".join(value.split())
        if len(compact) <= _MAX_STRING_LENGTH:
            return compact
        return f"{compact[:_MAX_STRING_LENGTH]}..."
    return type(value).__name__

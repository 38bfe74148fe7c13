from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from typing import Any, Protocol
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from comment_stance.telemetry import TelemetryClient, TelemetryEvent

LOGGER = logging.getLogger("comment_stance.cache_janitor")


class PurgeableCache(Protocol):
    @property
    def name(self) -> str:
        ...

    def purge_expired(self) -> int:
        ...


class CacheJanitor:
    """Background thread that drops expired entries from in-memory caches."""

    def __init__(
        self,
        caches: Sequence[PurgeableCache],
        sweep_interval_seconds: float,
        *,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._caches = tuple(caches)
        self._sweep_interval_seconds = max(1.0, sweep_interval_seconds)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="comment-stance-cache-janitor")
        self._thread.daemon = True
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=3)
            self._thread = None

    def sweep_once(self) -> dict[str, int]:
        tick_id = uuid4().hex
        tick_tokens = bind_contextvars(janitor_tick_id=tick_id)
        started_at = time.perf_counter()
        purged: dict[str, int] = {}
        try:
            for cache in self._caches:
                try:
                    purged[cache.name] = cache.purge_expired()
                except Exception as exc:
                    LOGGER.warning("cache sweep failed cache=%s", cache.name, exc_info=True)
                    self._telemetry.emit(
                        TelemetryEvent.CACHE_SWEEP_ERROR,
                        tick_id=tick_id,
                        cache_name=cache.name,
                        error_type=type(exc).__name__,
                    )
            attributes: dict[str, Any] = {f"purged_{name}": count for name, count in purged.items()}
            self._telemetry.emit(
                TelemetryEvent.CACHE_SWEEP_FINISH,
                tick_id=tick_id,
                duration_ms=int((time.perf_counter() - started_at) * 1000),
                **attributes,
            )
            return purged
        finally:
            reset_contextvars(**tick_tokens)

    def _run_loop(self) -> None:
        while not self._stop_event.wait(self._sweep_interval_seconds):
            self.sweep_once()

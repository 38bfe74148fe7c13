from __future__ import annotations

import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Literal

from comment_stance.models.stance import Stance
from comment_stance.services.backoff_gate import BackoffGate
from comment_stance.services.local_classifier import LocalStanceClassifier
from comment_stance.services.remote_classifier import (
    RemoteClassifier,
    RemoteRateLimitedError,
    RemoteTransientError,
)
from comment_stance.services.result_cache import ResultCache
from comment_stance.telemetry import TelemetryClient, TelemetryEvent

LOGGER = logging.getLogger("comment_stance.orchestrator")

CACHE_KEY_TEXT_CHARS = 200
CACHE_KEY_CONTEXT_CHARS = 100

StanceSource = Literal["cache", "remote", "local"]


@dataclass(frozen=True)
class StanceClassification:
    stance: Stance
    source: StanceSource


def build_stance_cache_key(text: str, context: str) -> str:
    normalized_text = " ".join(text.split()).casefold()[:CACHE_KEY_TEXT_CHARS]
    normalized_context = " ".join(context.split()).casefold()[:CACHE_KEY_CONTEXT_CHARS]
    return f"{normalized_text}\x1f{normalized_context}"


class ClassificationOrchestrator:
    """
    Cache, then gate, then remote or local classification for a single comment.

    `classify` never raises: rate limits close the gate and fall back to the local
    heuristic, other remote failures fall back without touching the gate. Every
    result is cached under a key derived from the input only, so a burst of
    identical comments during a cooldown pays the heuristic once.
    """

    def __init__(
        self,
        *,
        remote: RemoteClassifier,
        gate: BackoffGate,
        cache: ResultCache[Stance],
        local: LocalStanceClassifier | None = None,
        cache_ttl_seconds: float | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._remote = remote
        self._gate = gate
        self._cache = cache
        self._local = local if local is not None else LocalStanceClassifier()
        self._cache_ttl_seconds = cache_ttl_seconds
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def remote(self) -> RemoteClassifier:
        return self._remote

    @property
    def gate(self) -> BackoffGate:
        return self._gate

    @property
    def cache(self) -> ResultCache[Stance]:
        return self._cache

    async def classify(self, text: str, context: str = "") -> Stance:
        result = await self.classify_with_metadata(text, context)
        return result.stance

    async def classify_with_metadata(self, text: str, context: str = "") -> StanceClassification:
        started_at = perf_counter()
        cache_key = build_stance_cache_key(text, context)

        cached = self._cache.get(cache_key)
        if cached is not None:
            result = StanceClassification(stance=cached, source="cache")
        else:
            result = await self._classify_uncached(text, context)
            self._cache.put(cache_key, result.stance, self._cache_ttl_seconds)

        self._telemetry.emit(
            TelemetryEvent.STANCE_CLASSIFY_FINISH,
            source=result.source,
            stance=result.stance.value,
            duration_ms=int((perf_counter() - started_at) * 1000),
        )
        return result

    async def _classify_uncached(self, text: str, context: str) -> StanceClassification:
        if not text.strip():
            return self._local_result(text, context)

        if not self._gate.is_available():
            LOGGER.debug("classifier gate closed; using local heuristic")
            return self._local_result(text, context)

        try:
            stance = await self._remote.classify(text, context)
        except RemoteRateLimitedError as exc:
            cooldown_seconds = self._gate.trigger_backoff()
            self._telemetry.emit(
                TelemetryEvent.STANCE_REMOTE_RATE_LIMITED,
                cooldown_seconds=cooldown_seconds,
                error_type=type(exc).__name__,
            )
            return self._local_result(text, context)
        except RemoteTransientError as exc:
            LOGGER.info("remote classification failed; using local heuristic error=%s", exc)
            self._telemetry.emit(
                TelemetryEvent.STANCE_REMOTE_ERROR,
                error_type=type(exc.__cause__ or exc).__name__,
            )
            return self._local_result(text, context)

        self._gate.reset_backoff()
        return StanceClassification(stance=stance, source="remote")

    def _local_result(self, text: str, context: str) -> StanceClassification:
        return StanceClassification(stance=self._local.classify(text, context), source="local")

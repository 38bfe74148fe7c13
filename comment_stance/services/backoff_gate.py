from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from time import monotonic

LOGGER = logging.getLogger("comment_stance.backoff")


@dataclass(frozen=True)
class BackoffState:
    name: str
    available: bool
    retry_at: float
    current_delay_seconds: float
    initial_delay_seconds: float
    max_delay_seconds: float


class BackoffGate:
    """
    Availability tracker for one upstream dependency.

    A failure closes the gate for the current delay and doubles the delay for the
    next failure (capped at `max_delay_seconds`). Once `retry_at` has passed the
    next `is_available()` call re-opens the gate on its own, so a single probe
    request is allowed through without waiting for a success. Each success halves
    the delay, never below `initial_delay_seconds`.
    """

    def __init__(
        self,
        name: str,
        *,
        initial_delay_seconds: float,
        max_delay_seconds: float,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        if initial_delay_seconds <= 0:
            raise ValueError("initial_delay_seconds must be positive")
        self._name = name
        self._initial_delay_seconds = initial_delay_seconds
        self._max_delay_seconds = max(initial_delay_seconds, max_delay_seconds)
        self._current_delay_seconds = initial_delay_seconds
        self._available = True
        self._retry_at = 0.0
        self._clock = clock
        self._lock = Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def current_delay_seconds(self) -> float:
        with self._lock:
            return self._current_delay_seconds

    def is_available(self) -> bool:
        with self._lock:
            if not self._available and self._clock() >= self._retry_at:
                self._available = True
                LOGGER.info(
                    "backoff window elapsed; probing upstream again service=%s",
                    self._name,
                )
            return self._available

    def trigger_backoff(self) -> float:
        """Close the gate and return the cooldown applied, in seconds."""
        with self._lock:
            applied_delay = self._current_delay_seconds
            self._available = False
            self._retry_at = self._clock() + applied_delay
            self._current_delay_seconds = min(
                self._current_delay_seconds * 2,
                self._max_delay_seconds,
            )
        LOGGER.warning(
            "upstream rate limited; backing off service=%s cooldown_seconds=%s next_delay_seconds=%s",
            self._name,
            applied_delay,
            self._current_delay_seconds,
        )
        return applied_delay

    def reset_backoff(self) -> None:
        with self._lock:
            self._current_delay_seconds = max(
                self._current_delay_seconds / 2,
                self._initial_delay_seconds,
            )

    def snapshot(self) -> BackoffState:
        with self._lock:
            return BackoffState(
                name=self._name,
                available=self._available,
                retry_at=self._retry_at,
                current_delay_seconds=self._current_delay_seconds,
                initial_delay_seconds=self._initial_delay_seconds,
                max_delay_seconds=self._max_delay_seconds,
            )

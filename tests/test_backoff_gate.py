from __future__ import annotations

import random
import threading

import pytest
from fakes import FakeClock

from comment_stance.services.backoff_gate import BackoffGate


def _gate(clock: FakeClock, *, initial: float = 300, maximum: float = 7_200) -> BackoffGate:
    return BackoffGate(
        "classifier",
        initial_delay_seconds=initial,
        max_delay_seconds=maximum,
        clock=clock,
    )


def test_gate_starts_available_with_initial_delay(clock: FakeClock) -> None:
    gate = _gate(clock)

    assert gate.is_available() is True
    assert gate.current_delay_seconds == 300
    snapshot = gate.snapshot()
    assert snapshot.name == "classifier"
    assert snapshot.available is True
    assert snapshot.retry_at == 0.0


def test_trigger_closes_gate_until_retry_at(clock: FakeClock) -> None:
    gate = _gate(clock)

    applied = gate.trigger_backoff()

    assert applied == 300
    assert gate.is_available() is False
    assert gate.snapshot().retry_at == pytest.approx(1_300.0)
    clock.advance(299.9)
    assert gate.is_available() is False
    clock.advance(0.1)
    assert gate.is_available() is True
    assert gate.snapshot().available is True


def test_trigger_doubles_delay_up_to_cap(clock: FakeClock) -> None:
    gate = _gate(clock)

    applied = [gate.trigger_backoff() for _ in range(7)]

    assert applied == [300, 600, 1_200, 2_400, 4_800, 7_200, 7_200]
    assert gate.current_delay_seconds == 7_200


def test_reset_halves_delay_with_floor(clock: FakeClock) -> None:
    gate = _gate(clock)
    gate.trigger_backoff()
    gate.trigger_backoff()
    gate.trigger_backoff()
    assert gate.current_delay_seconds == 2_400

    gate.reset_backoff()
    assert gate.current_delay_seconds == 1_200
    gate.reset_backoff()
    gate.reset_backoff()
    gate.reset_backoff()
    assert gate.current_delay_seconds == 300


def test_reset_does_not_reopen_closed_gate(clock: FakeClock) -> None:
    gate = _gate(clock)
    gate.trigger_backoff()

    gate.reset_backoff()

    assert gate.is_available() is False


def test_delay_stays_within_bounds_for_random_sequences(clock: FakeClock) -> None:
    rng = random.Random(7)
    gate = _gate(clock, initial=5, maximum=160)

    for _ in range(1_000):
        operation = rng.choice(("trigger", "reset", "probe", "wait"))
        if operation == "trigger":
            applied = gate.trigger_backoff()
            assert 5 <= applied <= 160
        elif operation == "reset":
            gate.reset_backoff()
        elif operation == "probe":
            gate.is_available()
        else:
            clock.advance(rng.uniform(0, 200))
        assert 5 <= gate.current_delay_seconds <= 160


def test_max_below_initial_is_clamped(clock: FakeClock) -> None:
    gate = _gate(clock, initial=60, maximum=10)

    assert gate.snapshot().max_delay_seconds == 60
    gate.trigger_backoff()
    assert gate.current_delay_seconds == 60


def test_non_positive_initial_delay_is_rejected(clock: FakeClock) -> None:
    with pytest.raises(ValueError):
        _gate(clock, initial=0)


def test_concurrent_triggers_keep_delay_consistent(clock: FakeClock) -> None:
    gate = _gate(clock, initial=1, maximum=1_024)
    barrier = threading.Barrier(8)

    def _worker() -> None:
        barrier.wait()
        gate.trigger_backoff()

    threads = [threading.Thread(target=_worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert gate.current_delay_seconds == 256

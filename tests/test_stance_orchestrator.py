from __future__ import annotations

import pytest
from fakes import CaptureSink, FakeClock, ScriptedBackend

from comment_stance.models.stance import Stance
from comment_stance.services.backoff_gate import BackoffGate
from comment_stance.services.remote_classifier import (
    RemoteClassifier,
    RemoteRateLimitedError,
    RemoteTransientError,
)
from comment_stance.services.result_cache import ResultCache
from comment_stance.services.stance_orchestrator import (
    ClassificationOrchestrator,
    build_stance_cache_key,
)
from comment_stance.telemetry import TelemetryClient


def _orchestrator(
    backend: ScriptedBackend | None,
    clock: FakeClock,
    *,
    sink: CaptureSink | None = None,
) -> ClassificationOrchestrator:
    telemetry = TelemetryClient(enabled=True, sink=sink) if sink is not None else None
    return ClassificationOrchestrator(
        remote=RemoteClassifier(backend),
        gate=BackoffGate(
            "classifier",
            initial_delay_seconds=300,
            max_delay_seconds=7_200,
            clock=clock,
        ),
        cache=ResultCache("stance", default_ttl_seconds=600, clock=clock),
        telemetry=telemetry,
    )


@pytest.mark.asyncio
async def test_rate_limit_falls_back_locally_and_closes_gate(clock: FakeClock) -> None:
    backend = ScriptedBackend([RemoteRateLimitedError("quota exhausted") for _ in range(4)])
    orchestrator = _orchestrator(backend, clock)

    results = [
        await orchestrator.classify(text, "Video")
        for text in ["I agree with this", "I disagree completely", "nice video"]
    ]

    assert results == [Stance.AGREE, Stance.DISAGREE, Stance.NEUTRAL]
    assert orchestrator.gate.is_available() is False
    assert len(backend.prompts) == 1

    fourth = await orchestrator.classify_with_metadata("a brand new comment", "Video")
    assert fourth.source == "local"
    assert len(backend.prompts) == 1


@pytest.mark.asyncio
async def test_gate_reopens_after_cooldown(clock: FakeClock) -> None:
    backend = ScriptedBackend([RemoteRateLimitedError("slow down")], default="disagree")
    orchestrator = _orchestrator(backend, clock)

    await orchestrator.classify("first comment", "Video")
    assert orchestrator.gate.current_delay_seconds == 600

    clock.advance(300)
    result = await orchestrator.classify_with_metadata("second comment", "Video")

    assert result.source == "remote"
    assert result.stance == Stance.DISAGREE
    assert orchestrator.gate.current_delay_seconds == 300


@pytest.mark.asyncio
async def test_mixed_case_reply_is_normalized(clock: FakeClock) -> None:
    orchestrator = _orchestrator(ScriptedBackend(["Agree "]), clock)

    result = await orchestrator.classify_with_metadata("some comment", "Video")

    assert result.stance == Stance.AGREE
    assert result.source == "remote"


@pytest.mark.asyncio
async def test_invalid_reply_is_neutral_without_backoff(clock: FakeClock) -> None:
    orchestrator = _orchestrator(ScriptedBackend(["maybe"]), clock)

    result = await orchestrator.classify_with_metadata("I agree completely", "Video")

    assert result.stance == Stance.NEUTRAL
    assert result.source == "remote"
    assert orchestrator.gate.is_available() is True
    assert orchestrator.gate.current_delay_seconds == 300


@pytest.mark.asyncio
async def test_transient_failure_keeps_gate_open(clock: FakeClock) -> None:
    sink = CaptureSink()
    backend = ScriptedBackend([RemoteTransientError("socket closed")])
    orchestrator = _orchestrator(backend, clock, sink=sink)

    result = await orchestrator.classify_with_metadata("this is terrible", "Video")

    assert result.stance == Stance.DISAGREE
    assert result.source == "local"
    assert orchestrator.gate.is_available() is True
    assert "stance.remote.error" in sink.names()


@pytest.mark.asyncio
async def test_unconfigured_remote_uses_local(clock: FakeClock) -> None:
    orchestrator = _orchestrator(None, clock)

    result = await orchestrator.classify_with_metadata("great stuff", "Video")

    assert result.stance == Stance.AGREE
    assert result.source == "local"
    assert orchestrator.gate.is_available() is True


@pytest.mark.asyncio
async def test_same_input_within_ttl_calls_remote_once(clock: FakeClock) -> None:
    backend = ScriptedBackend(["agree", "disagree"])
    orchestrator = _orchestrator(backend, clock)

    first = await orchestrator.classify_with_metadata("Solid  Point", "Video")
    second = await orchestrator.classify_with_metadata("solid point", "video")

    assert first.stance == second.stance == Stance.AGREE
    assert second.source == "cache"
    assert len(backend.prompts) == 1


@pytest.mark.asyncio
async def test_cache_expiry_triggers_new_remote_call(clock: FakeClock) -> None:
    backend = ScriptedBackend(["agree", "disagree"])
    orchestrator = _orchestrator(backend, clock)

    await orchestrator.classify("solid point", "Video")
    clock.advance(600)
    result = await orchestrator.classify_with_metadata("solid point", "Video")

    assert result.stance == Stance.DISAGREE
    assert result.source == "remote"
    assert len(backend.prompts) == 2


@pytest.mark.asyncio
async def test_local_fallback_results_are_cached(clock: FakeClock) -> None:
    backend = ScriptedBackend([RemoteRateLimitedError("slow down")], default="neutral")
    orchestrator = _orchestrator(backend, clock)

    await orchestrator.classify("I agree with this", "Video")
    clock.advance(300)
    again = await orchestrator.classify_with_metadata("I agree with this", "Video")

    assert again.source == "cache"
    assert again.stance == Stance.AGREE
    assert len(backend.prompts) == 1


@pytest.mark.asyncio
async def test_blank_text_never_reaches_remote(clock: FakeClock) -> None:
    backend = ScriptedBackend(["agree"])
    orchestrator = _orchestrator(backend, clock)

    result = await orchestrator.classify_with_metadata("   ", "Video")

    assert result.stance == Stance.NEUTRAL
    assert result.source == "local"
    assert backend.prompts == []


@pytest.mark.asyncio
async def test_classification_emits_telemetry_without_text(clock: FakeClock) -> None:
    sink = CaptureSink()
    orchestrator = _orchestrator(
        ScriptedBackend([RemoteRateLimitedError("429")]),
        clock,
        sink=sink,
    )

    await orchestrator.classify("a secret opinion", "Video")

    assert sink.names() == ["stance.remote.rate_limited", "stance.classify.finish"]
    rate_limited_attributes = sink.events[0][1]
    assert rate_limited_attributes["cooldown_seconds"] == 300
    for _, attributes in sink.events:
        assert all("a secret opinion" not in str(value) for value in attributes.values())


def test_cache_key_normalizes_and_truncates() -> None:
    long_text = "x" * 500
    key = build_stance_cache_key(f"  {long_text}  ", "  Title  ")

    assert key == f"{'x' * 200}\x1ftitle"
    assert build_stance_cache_key("A  b", "T") == build_stance_cache_key("a b", "t")
    assert build_stance_cache_key("a b", "one") != build_stance_cache_key("a b", "two")

from __future__ import annotations

import asyncio

import pytest
from fakes import no_sleep

from comment_stance.services.batch_runner import BatchExecutionError, BoundedBatchRunner


@pytest.mark.asyncio
async def test_runner_never_exceeds_concurrency() -> None:
    runner = BoundedBatchRunner(concurrency=2, dispatch_delay_seconds=0.5, sleep=no_sleep)
    in_flight = 0
    max_in_flight = 0

    async def _work(item: int) -> int:
        nonlocal in_flight, max_in_flight
        in_flight += 1
        max_in_flight = max(max_in_flight, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return item * 2

    results = await runner.run(list(range(7)), _work)

    assert results == [0, 2, 4, 6, 8, 10, 12]
    assert max_in_flight == 2


@pytest.mark.asyncio
async def test_results_follow_input_order_not_completion_order() -> None:
    runner = BoundedBatchRunner(concurrency=3, dispatch_delay_seconds=0, sleep=no_sleep)
    durations = {"first": 0.05, "second": 0.03, "third": 0.0}
    completed: list[str] = []

    async def _work(item: str) -> str:
        await asyncio.sleep(durations[item])
        completed.append(item)
        return item.upper()

    results = await runner.run(["first", "second", "third"], _work)

    assert completed[0] == "third"
    assert results == ["FIRST", "SECOND", "THIRD"]


@pytest.mark.asyncio
async def test_dispatch_delay_applies_to_every_item() -> None:
    sleeps: list[float] = []

    async def _record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    async def _work(item: int) -> int:
        return item

    runner = BoundedBatchRunner(concurrency=2, dispatch_delay_seconds=0.5, sleep=_record_sleep)
    await runner.run([1, 2, 3], _work)

    assert sleeps == [0.5, 0.5, 0.5]


@pytest.mark.asyncio
async def test_zero_delay_skips_sleep() -> None:
    sleeps: list[float] = []

    async def _record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    async def _work(item: int) -> int:
        return item

    runner = BoundedBatchRunner(concurrency=2, dispatch_delay_seconds=0, sleep=_record_sleep)
    await runner.run([1, 2], _work)

    assert sleeps == []


@pytest.mark.asyncio
async def test_on_error_supplies_fallback_value() -> None:
    runner = BoundedBatchRunner(concurrency=2, dispatch_delay_seconds=0, sleep=no_sleep)

    async def _work(item: int) -> str:
        if item == 1:
            raise RuntimeError("boom")
        return f"ok-{item}"

    def _fallback(item: int, exc: Exception) -> str:
        return f"fallback-{item}-{type(exc).__name__}"

    results = await runner.run([0, 1, 2], _work, on_error=_fallback)

    assert results == ["ok-0", "fallback-1-RuntimeError", "ok-2"]


@pytest.mark.asyncio
async def test_failures_without_fallback_raise_after_all_items_finish() -> None:
    runner = BoundedBatchRunner(concurrency=2, dispatch_delay_seconds=0, sleep=no_sleep)
    finished: list[int] = []

    async def _work(item: int) -> int:
        if item in {0, 3}:
            raise ValueError(f"bad {item}")
        finished.append(item)
        return item

    with pytest.raises(BatchExecutionError) as exc_info:
        await runner.run([0, 1, 2, 3], _work)

    assert [failure.index for failure in exc_info.value.failures] == [0, 3]
    assert sorted(finished) == [1, 2]


@pytest.mark.asyncio
async def test_failing_fallback_is_reported_after_siblings_finish() -> None:
    runner = BoundedBatchRunner(concurrency=2, dispatch_delay_seconds=0, sleep=no_sleep)
    finished: list[int] = []

    async def _work(item: int) -> int:
        if item == 0:
            raise RuntimeError("boom")
        await asyncio.sleep(0.01)
        finished.append(item)
        return item

    def _fallback(item: int, exc: Exception) -> int:
        raise ValueError(f"no fallback for {item}")

    with pytest.raises(BatchExecutionError) as exc_info:
        await runner.run([0, 1, 2], _work, on_error=_fallback)

    assert sorted(finished) == [1, 2]
    failures = exc_info.value.failures
    assert [failure.index for failure in failures] == [0]
    assert isinstance(failures[0].error, ValueError)


@pytest.mark.asyncio
async def test_empty_batch_returns_empty_list() -> None:
    runner = BoundedBatchRunner()

    async def _work(item: int) -> int:
        return item

    assert await runner.run([], _work) == []
    assert runner.concurrency == 2

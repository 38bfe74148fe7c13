from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar, cast

from comment_stance.errors import CommentStanceError

LOGGER = logging.getLogger("comment_stance.batch")

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class BatchItemFailure:
    index: int
    error: BaseException


class BatchExecutionError(CommentStanceError):
    def __init__(self, failures: list[BatchItemFailure], total: int) -> None:
        super().__init__(f"{len(failures)} of {total} batch items failed")
        self.failures = failures


@dataclass
class _Slot(Generic[R]):
    value: R | None = None
    error: BaseException | None = None


class BoundedBatchRunner:
    """
    Fan-out with a fixed concurrency ceiling and flat dispatch pacing.

    Each item waits for a free slot, sleeps `dispatch_delay_seconds` inside the slot,
    then runs. Results come back in input order whatever the completion order.
    """

    def __init__(
        self,
        *,
        concurrency: int = 2,
        dispatch_delay_seconds: float = 0.5,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._concurrency = max(1, concurrency)
        self._dispatch_delay_seconds = max(0.0, dispatch_delay_seconds)
        self._sleep = sleep

    @property
    def concurrency(self) -> int:
        return self._concurrency

    async def run(
        self,
        items: Sequence[T],
        work: Callable[[T], Awaitable[R]],
        *,
        on_error: Callable[[T, Exception], R] | None = None,
    ) -> list[R]:
        if not items:
            return []

        semaphore = asyncio.Semaphore(self._concurrency)
        slots: list[_Slot[R]] = [_Slot() for _ in items]

        async def _run_one(index: int, item: T) -> None:
            async with semaphore:
                if self._dispatch_delay_seconds > 0:
                    await self._sleep(self._dispatch_delay_seconds)
                try:
                    slots[index].value = await work(item)
                except Exception as exc:
                    LOGGER.warning("batch item failed index=%s", index, exc_info=True)
                    if on_error is None:
                        slots[index].error = exc
                        return
                    try:
                        slots[index].value = on_error(item, exc)
                    except Exception as fallback_exc:
                        LOGGER.warning(
                            "batch item fallback failed index=%s", index, exc_info=True
                        )
                        slots[index].error = fallback_exc

        await asyncio.gather(*(_run_one(index, item) for index, item in enumerate(items)))

        failures = [
            BatchItemFailure(index=index, error=slot.error)
            for index, slot in enumerate(slots)
            if slot.error is not None
        ]
        if failures:
            raise BatchExecutionError(failures, total=len(items))
        return [cast(R, slot.value) for slot in slots]

from __future__ import annotations

import threading

from fakes import FakeClock

from comment_stance.services.result_cache import ResultCache


def test_cache_returns_value_until_expiry(clock: FakeClock) -> None:
    cache: ResultCache[str] = ResultCache("stance", default_ttl_seconds=10, clock=clock)
    cache.put("key", "agree")

    clock.advance(9.99)
    assert cache.get("key") == "agree"

    clock.advance(0.01)
    assert cache.get("key") is None
    assert len(cache) == 0


def test_cache_miss_returns_none(clock: FakeClock) -> None:
    cache: ResultCache[str] = ResultCache("stance", default_ttl_seconds=10, clock=clock)

    assert cache.get("missing") is None


def test_per_entry_ttl_overrides_default(clock: FakeClock) -> None:
    cache: ResultCache[str] = ResultCache("stance", default_ttl_seconds=600, clock=clock)
    cache.put("short", "neutral", ttl_seconds=1)
    cache.put("long", "agree")

    clock.advance(2)

    assert cache.get("short") is None
    assert cache.get("long") == "agree"


def test_overwrite_refreshes_expiry(clock: FakeClock) -> None:
    cache: ResultCache[str] = ResultCache("stance", default_ttl_seconds=10, clock=clock)
    cache.put("key", "agree")
    clock.advance(8)
    cache.put("key", "disagree")
    clock.advance(8)

    assert cache.get("key") == "disagree"


def test_purge_expired_drops_only_expired_entries(clock: FakeClock) -> None:
    cache: ResultCache[str] = ResultCache("stance", default_ttl_seconds=10, clock=clock)
    cache.put("old-1", "agree")
    cache.put("old-2", "neutral")
    clock.advance(5)
    cache.put("fresh", "disagree")
    clock.advance(6)

    assert cache.purge_expired() == 2
    assert len(cache) == 1
    assert cache.get("fresh") == "disagree"
    assert cache.purge_expired() == 0


def test_max_entries_evicts_oldest_insertion(clock: FakeClock) -> None:
    cache: ResultCache[int] = ResultCache(
        "stance",
        default_ttl_seconds=60,
        max_entries=2,
        clock=clock,
    )
    cache.put("a", 1)
    cache.put("b", 2)
    cache.put("a", 3)
    cache.put("c", 4)

    assert len(cache) == 2
    assert cache.get("b") is None
    assert cache.get("a") == 3
    assert cache.get("c") == 4


def test_clear_empties_cache(clock: FakeClock) -> None:
    cache: ResultCache[str] = ResultCache("comments", default_ttl_seconds=60, clock=clock)
    cache.put("video", "x")

    cache.clear()

    assert len(cache) == 0
    assert cache.name == "comments"


def test_concurrent_puts_and_gets_respect_max_entries(clock: FakeClock) -> None:
    cache: ResultCache[int] = ResultCache(
        "stance",
        default_ttl_seconds=60,
        max_entries=50,
        clock=clock,
    )
    barrier = threading.Barrier(8)
    misread: list[tuple[str, int | None]] = []

    def _worker(worker_id: int) -> None:
        barrier.wait()
        for index in range(200):
            key = f"w{worker_id}-{index}"
            cache.put(key, worker_id)
            value = cache.get(key)
            if value not in (None, worker_id):
                misread.append((key, value))
            cache.get(f"w{(worker_id + 1) % 8}-{index}")

    threads = [threading.Thread(target=_worker, args=(worker_id,)) for worker_id in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert misread == []
    assert len(cache) == 50


def test_concurrent_purge_and_put_lose_no_fresh_entries(clock: FakeClock) -> None:
    cache: ResultCache[str] = ResultCache("stance", default_ttl_seconds=10, clock=clock)
    for index in range(500):
        cache.put(f"stale-{index}", "neutral", ttl_seconds=0)

    purged: list[int] = []

    def _writer() -> None:
        for index in range(500):
            cache.put(f"fresh-{index}", "agree")

    def _sweeper() -> None:
        for _ in range(50):
            purged.append(cache.purge_expired())

    threads = [threading.Thread(target=_writer), threading.Thread(target=_sweeper)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    purged.append(cache.purge_expired())

    assert sum(purged) == 500
    assert len(cache) == 500
    assert all(cache.get(f"fresh-{index}") == "agree" for index in range(500))

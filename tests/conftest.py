from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from fakes import FakeClock, ServiceHarness, build_service_harness, thread_item
from fastapi.testclient import TestClient

from comment_stance.dependencies import get_analysis_service, reset_cached_dependencies
from comment_stance.main import create_app


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def runtime_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("COMMENT_STANCE_DATA_DIR", str(data_dir))
    monkeypatch.setenv("COMMENT_STANCE_TELEMETRY_SINK", "none")
    monkeypatch.setenv("COMMENT_STANCE_BATCH_DISPATCH_DELAY_SECONDS", "0")
    monkeypatch.delenv("COMMENT_STANCE_GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("COMMENT_STANCE_YOUTUBE_API_KEY", raising=False)
    reset_cached_dependencies()
    yield data_dir
    reset_cached_dependencies()


@pytest.fixture
def client_factory(
    runtime_env: Path,
) -> Iterator[Callable[..., TestClient]]:
    _ = runtime_env
    opened: list[TestClient] = []

    def _open(service: Any, *, raise_server_exceptions: bool = True) -> TestClient:
        app = create_app()
        app.dependency_overrides[get_analysis_service] = lambda: service
        test_client = TestClient(app, raise_server_exceptions=raise_server_exceptions)
        test_client.__enter__()
        opened.append(test_client)
        return test_client

    yield _open

    for test_client in opened:
        test_client.__exit__(None, None, None)


@pytest.fixture
def analyze_harness(
    client_factory: Callable[..., TestClient],
) -> tuple[TestClient, ServiceHarness]:
    harness = build_service_harness(
        items=[
            thread_item("c1", "I totally agree, great point", author="alice"),
            thread_item("c2", "this is completely wrong and terrible", author="bob_the_builder"),
            thread_item("c3", "nice video", author=None, published_at="2024-04-01T00:00:00Z"),
        ],
        answers={
            "I totally agree, great point": "agree",
            "this is completely wrong and terrible": "disagree",
            "nice video": "neutral",
        },
    )
    return client_factory(harness.service), harness


@pytest.fixture(autouse=True)
def _reset_application_loggers() -> Iterator[None]:  # pyright: ignore[reportUnusedFunction]
    yield
    for name in ("comment_stance", "comment_stance.telemetry"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = True

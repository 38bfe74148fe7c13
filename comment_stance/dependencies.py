from __future__ import annotations

from functools import lru_cache

from comment_stance.config import AppSettings, load_settings
from comment_stance.models.stance import Stance
from comment_stance.repositories.comment_repository import AnalyzedCommentRepository
from comment_stance.repositories.database import Database
from comment_stance.services.backoff_gate import BackoffGate
from comment_stance.services.batch_runner import BoundedBatchRunner
from comment_stance.services.cache_janitor import CacheJanitor
from comment_stance.services.comment_analysis_service import CommentAnalysisService
from comment_stance.services.comment_source import (
    VideoComment,
    YouTubeCommentSource,
    YouTubeDataApiPageFetcher,
)
from comment_stance.services.remote_classifier import RemoteClassifier, build_gemini_backend
from comment_stance.services.result_cache import ResultCache
from comment_stance.services.stance_orchestrator import ClassificationOrchestrator
from comment_stance.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_stance_cache() -> ResultCache[Stance]:
    settings = get_settings()
    return ResultCache(
        "stance",
        default_ttl_seconds=settings.stance_cache_ttl_seconds,
        max_entries=settings.stance_cache_max_entries,
    )


@lru_cache(maxsize=1)
def get_comments_cache() -> ResultCache[tuple[VideoComment, ...]]:
    settings = get_settings()
    return ResultCache(
        "comments",
        default_ttl_seconds=settings.comments_cache_ttl_seconds,
    )


@lru_cache(maxsize=1)
def get_orchestrator() -> ClassificationOrchestrator:
    settings = get_settings()
    return ClassificationOrchestrator(
        remote=RemoteClassifier(
            build_gemini_backend(
                api_key=settings.gemini_api_key,
                model=settings.gemini_model,
            ),
            timeout_seconds=settings.remote_timeout_seconds,
        ),
        gate=BackoffGate(
            "classifier",
            initial_delay_seconds=settings.classifier_backoff_initial_seconds,
            max_delay_seconds=settings.classifier_backoff_max_seconds,
        ),
        cache=get_stance_cache(),
        cache_ttl_seconds=settings.stance_cache_ttl_seconds,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_comment_repository() -> AnalyzedCommentRepository | None:
    settings = get_settings()
    if not settings.persistence_enabled:
        return None
    database = Database(settings.db_path)
    database.initialize()
    return AnalyzedCommentRepository(database)


@lru_cache(maxsize=1)
def get_analysis_service() -> CommentAnalysisService:
    settings = get_settings()
    telemetry = get_telemetry()

    return CommentAnalysisService(
        comment_source=YouTubeCommentSource(
            page_fetcher=YouTubeDataApiPageFetcher(api_key=settings.youtube_api_key),
            gate=BackoffGate(
                "youtube_comments",
                initial_delay_seconds=settings.comments_backoff_initial_seconds,
                max_delay_seconds=settings.comments_backoff_max_seconds,
            ),
            cache=get_comments_cache(),
            max_comments=settings.comments_max_results,
            telemetry=telemetry,
        ),
        orchestrator=get_orchestrator(),
        batch_runner=BoundedBatchRunner(
            concurrency=settings.batch_concurrency,
            dispatch_delay_seconds=settings.batch_dispatch_delay_seconds,
        ),
        persistence=get_comment_repository(),
        telemetry=telemetry,
    )


def build_cache_janitor() -> CacheJanitor:
    settings = get_settings()
    return CacheJanitor(
        [get_stance_cache(), get_comments_cache()],
        settings.cache_sweep_interval_seconds,
        telemetry=get_telemetry(),
    )


def reset_cached_dependencies() -> None:
    get_analysis_service.cache_clear()
    get_comment_repository.cache_clear()
    get_orchestrator.cache_clear()
    get_comments_cache.cache_clear()
    get_stance_cache.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from time import perf_counter
from typing import Any, Protocol
from uuid import uuid4

from comment_stance.repositories.comment_repository import AnalyzedCommentRecord
from comment_stance.services.batch_runner import BoundedBatchRunner
from comment_stance.services.comment_aggregation import (
    AnalyzedComment,
    StanceSummary,
    mask_username,
    summarize_comments,
)
from comment_stance.services.comment_source import VideoComment, YouTubeCommentSource
from comment_stance.services.local_classifier import classify_local_stance
from comment_stance.services.stance_orchestrator import (
    ClassificationOrchestrator,
    StanceClassification,
)
from comment_stance.services.video_reference import extract_video_id
from comment_stance.telemetry import TelemetryClient, TelemetryEvent

LOGGER = logging.getLogger("comment_stance.analysis")

DEFAULT_VIDEO_TITLE = "YouTube Video"
ANONYMOUS_USERNAME = "Anonymous"


class PersistenceSink(Protocol):
    def save(self, record: AnalyzedCommentRecord) -> str:
        ...


@dataclass(frozen=True)
class CommentAnalysisReport:
    video_id: str
    video_title: str
    comments: list[AnalyzedComment]
    summary: StanceSummary


class CommentAnalysisService:
    def __init__(
        self,
        *,
        comment_source: YouTubeCommentSource,
        orchestrator: ClassificationOrchestrator,
        batch_runner: BoundedBatchRunner,
        persistence: PersistenceSink | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._comment_source = comment_source
        self._orchestrator = orchestrator
        self._batch_runner = batch_runner
        self._persistence = persistence
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def orchestrator(self) -> ClassificationOrchestrator:
        return self._orchestrator

    async def analyze(
        self,
        video_url: str,
        video_title: str | None = None,
    ) -> CommentAnalysisReport:
        video_id = extract_video_id(video_url)
        title = (video_title or "").strip() or DEFAULT_VIDEO_TITLE
        started_at = perf_counter()

        fetch_result = await self._comment_source.fetch_with_metadata(video_id)
        if not fetch_result.comments:
            LOGGER.info(
                "no comments to classify video_id=%s gate_closed=%s error_type=%s",
                video_id,
                fetch_result.gate_closed,
                fetch_result.error_type,
            )

        async def _work(comment: VideoComment) -> AnalyzedComment:
            return await self._analyze_comment(comment, video_id=video_id, video_title=title)

        def _fallback(comment: VideoComment, exc: Exception) -> AnalyzedComment:
            _ = exc
            text = comment.text or ""
            return _build_analyzed_comment(
                comment,
                StanceClassification(stance=classify_local_stance(text, title), source="local"),
            )

        analyzed = await self._batch_runner.run(fetch_result.comments, _work, on_error=_fallback)
        summary = summarize_comments(analyzed)

        self._telemetry.emit(
            TelemetryEvent.ANALYSIS_FINISH,
            video_id=video_id,
            comment_count=summary.total_comments,
            comments_cache_hit=fetch_result.cache_hit,
            duration_ms=int((perf_counter() - started_at) * 1000),
        )
        return CommentAnalysisReport(
            video_id=video_id,
            video_title=title,
            comments=analyzed,
            summary=summary,
        )

    def upstream_status(self) -> dict[str, Any]:
        return {
            "classifier": {
                **asdict(self._orchestrator.gate.snapshot()),
                "cache_entries": len(self._orchestrator.cache),
            },
            "comments": {
                **asdict(self._comment_source.gate.snapshot()),
                "cache_entries": len(self._comment_source.cache),
            },
            "remote_classifier_configured": self._orchestrator.remote.configured,
        }

    async def _analyze_comment(
        self,
        comment: VideoComment,
        *,
        video_id: str,
        video_title: str,
    ) -> AnalyzedComment:
        classification = await self._orchestrator.classify_with_metadata(
            comment.text or "",
            video_title,
        )
        analyzed = _build_analyzed_comment(comment, classification)
        await self._persist(analyzed, video_id=video_id, classification=classification)
        return analyzed

    async def _persist(
        self,
        analyzed: AnalyzedComment,
        *,
        video_id: str,
        classification: StanceClassification,
    ) -> None:
        if self._persistence is None:
            return

        record = AnalyzedCommentRecord(
            video_id=video_id,
            comment_id=analyzed.comment_id,
            text=analyzed.text,
            masked_username=analyzed.username,
            original_username=analyzed.original_username,
            published_at=analyzed.published_at,
            stance=classification.stance.value,
            stance_source=classification.source,
        )
        try:
            await asyncio.to_thread(self._persistence.save, record)
        except Exception as exc:
            LOGGER.warning(
                "failed to persist analyzed comment video_id=%s comment_id=%s",
                video_id,
                analyzed.comment_id,
                exc_info=True,
            )
            self._telemetry.emit(
                TelemetryEvent.ANALYSIS_PERSIST_ERROR,
                video_id=video_id,
                error_type=type(exc).__name__,
            )


def _build_analyzed_comment(
    comment: VideoComment,
    classification: StanceClassification,
) -> AnalyzedComment:
    username = comment.author.strip() if comment.author and comment.author.strip() else ""
    username = username or ANONYMOUS_USERNAME
    return AnalyzedComment(
        comment_id=comment.comment_id or _generate_comment_id(),
        text=comment.text or "",
        username=mask_username(username),
        original_username=username,
        published_at=comment.published_at or datetime.now(UTC).isoformat(),
        stance=classification.stance,
    )


def _generate_comment_id() -> str:
    millis = int(datetime.now(UTC).timestamp() * 1000)
    return f"comment_{millis}_{uuid4().hex[:9]}"

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from comment_stance.models.stance import Stance
from comment_stance.services.comment_aggregation import AnalyzedComment
from comment_stance.services.comment_analysis_service import CommentAnalysisReport

_CAMEL_CASE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
)


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    video_url: str
    video_title: str | None = None


class SentimentDistribution(BaseModel):
    model_config = _CAMEL_CASE_CONFIG

    agree: int = 0
    disagree: int = 0
    neutral: int = 0


class AnalyzedCommentPayload(BaseModel):
    model_config = _CAMEL_CASE_CONFIG

    comment_id: str
    text: str
    username: str
    published_at: str
    sentiment: Stance


class AnalyzeResponse(BaseModel):
    model_config = _CAMEL_CASE_CONFIG

    total_comments: int
    sentiment_distribution: SentimentDistribution
    monthly_distribution: dict[str, int] = Field(default_factory=dict)
    keywords: list[str] = Field(default_factory=list)
    comments: list[AnalyzedCommentPayload] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: CommentAnalysisReport) -> AnalyzeResponse:
        summary = report.summary
        return cls(
            total_comments=summary.total_comments,
            sentiment_distribution=SentimentDistribution(**summary.stance_distribution),
            monthly_distribution=dict(summary.monthly_distribution),
            keywords=list(summary.keywords),
            comments=[_comment_payload(comment) for comment in report.comments],
        )


def _comment_payload(comment: AnalyzedComment) -> AnalyzedCommentPayload:
    return AnalyzedCommentPayload(
        comment_id=comment.comment_id,
        text=comment.text,
        username=comment.username,
        published_at=comment.published_at,
        sentiment=comment.stance,
    )


class BackoffGateStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    available: bool
    retry_at: float
    current_delay_seconds: float
    initial_delay_seconds: float
    max_delay_seconds: float
    cache_entries: int


class UpstreamStatusResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    classifier: BackoffGateStatus
    comments: BackoffGateStatus
    remote_classifier_configured: bool

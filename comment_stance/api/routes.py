from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from structlog.contextvars import bind_contextvars, reset_contextvars

from comment_stance.dependencies import get_analysis_service
from comment_stance.errors import InvalidVideoReferenceError
from comment_stance.models.analysis_contracts import (
    AnalyzeRequest,
    AnalyzeResponse,
    UpstreamStatusResponse,
)
from comment_stance.services.comment_analysis_service import CommentAnalysisService

router = APIRouter()


@router.post(
    "/api/analyze",
    response_model=AnalyzeResponse,
    tags=["analysis"],
    operation_id="analyze_video_comments",
)
async def analyze_video_comments(
    request: AnalyzeRequest,
    service: Annotated[CommentAnalysisService, Depends(get_analysis_service)],
) -> AnalyzeResponse:
    context_tokens = bind_contextvars(analysis_video_url=request.video_url)
    try:
        report = await service.analyze(request.video_url, request.video_title)
    except InvalidVideoReferenceError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        reset_contextvars(**context_tokens)
    return AnalyzeResponse.from_report(report)


@router.get(
    "/api/status",
    response_model=UpstreamStatusResponse,
    tags=["system"],
    operation_id="upstream_status",
)
def upstream_status(
    service: Annotated[CommentAnalysisService, Depends(get_analysis_service)],
) -> UpstreamStatusResponse:
    return UpstreamStatusResponse.model_validate(service.upstream_status())

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends

from ..deps import get_now, get_review_flow
from ..flows import ReviewSessionFlow
from ..models import (
    ReviewSession,
    ReviewSessionCompleteRequest,
    ReviewSessionCompleteResponse,
)

router = APIRouter(tags=["review"])


@router.post("/session", response_model=ReviewSession, summary="復習セッションを開始（4択問題を生成）")
def start_session(
    flow: ReviewSessionFlow = Depends(get_review_flow),
    now: datetime = Depends(get_now),
) -> ReviewSession:
    """Return up to `review_session_cap` questions, most overdue first.

    期限到来のレコードが無い場合は空の questions を返す（エラーではない）。
    """
    return flow.start(now)


@router.post(
    "/session/complete",
    response_model=ReviewSessionCompleteResponse,
    summary="セッションの回答結果を提出順に反映",
)
def complete_session(
    req: ReviewSessionCompleteRequest,
    flow: ReviewSessionFlow = Depends(get_review_flow),
    now: datetime = Depends(get_now),
) -> ReviewSessionCompleteResponse:
    items = flow.complete(req.results, now)
    return ReviewSessionCompleteResponse(items=items)

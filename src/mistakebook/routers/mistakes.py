from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ..config import settings
from ..deps import get_now, get_store
from ..logging import logger
from ..metrics import registry
from ..models import (
    VARIATION_TAG,
    BulkMistakeInput,
    MistakeDraft,
    MistakeListResponse,
    MistakeRecord,
    MistakeStatus,
    MistakeUpdate,
    ReviewOutcomeRequest,
    ReviewStats,
    VariationRequest,
)
from ..store import RecordStore


router = APIRouter(tags=["mistakes"])


def _parse_status_filter(raw: str | None) -> set[MistakeStatus] | None:
    """`status=active,processing` をパースする。空なら None（フィルタなし）。"""

    if raw is None:
        return None
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    if not parts:
        return None
    try:
        return {MistakeStatus(p) for p in parts}
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"invalid status filter: {raw}") from exc


@router.get("", response_model=MistakeListResponse, summary="錯題一覧（新しい順・ページング）")
def list_mistakes(
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    status_filter: str | None = Query(default=None, alias="status"),
    store: RecordStore = Depends(get_store),
) -> MistakeListResponse:
    page_size = min(limit or settings.default_page_size, settings.max_page_size)
    items, total = store.list_active(page, page_size, _parse_status_filter(status_filter))
    return MistakeListResponse(data=items, total=total, page=page, limit=page_size)


@router.post(
    "",
    response_model=list[MistakeRecord],
    status_code=status.HTTP_201_CREATED,
    summary="撮影ページから切り出した錯題を一括登録",
)
def create_mistakes(
    req: BulkMistakeInput,
    store: RecordStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> list[MistakeRecord]:
    created = store.create_many(req.to_drafts(), now)
    logger.info(
        "mistake_created",
        count=len(created),
        mistake_ids=[r.id for r in created],
        file_id=req.original_image.file_id,
    )
    return created


@router.get("/review-queue", response_model=list[MistakeRecord], summary="期限到来の錯題（古い順）")
def review_queue(
    store: RecordStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> list[MistakeRecord]:
    return store.find_due(now)


@router.get("/stats", response_model=ReviewStats, summary="復習の進捗統計")
def review_stats(
    store: RecordStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> ReviewStats:
    return store.stats(now)


@router.get("/{item_id}", response_model=MistakeRecord)
def get_mistake(item_id: str, store: RecordStore = Depends(get_store)) -> MistakeRecord:
    return store.get(item_id)


@router.put("/{item_id}", response_model=MistakeRecord, summary="内容の編集（SRS 状態は保持）")
def update_mistake(
    item_id: str,
    req: MistakeUpdate,
    store: RecordStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> MistakeRecord:
    changes = req.changes()
    updated = store.update_content(item_id, changes, now)
    logger.info("mistake_updated", mistake_id=item_id, fields=sorted(changes))
    return updated


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT, summary="論理削除")
def delete_mistake(
    item_id: str,
    store: RecordStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> Response:
    store.soft_delete(item_id, now)
    logger.info("mistake_deleted", mistake_id=item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{item_id}/review", response_model=MistakeRecord, summary="復習結果を記録し次回出題時刻を更新")
def review_mistake(
    item_id: str,
    req: ReviewOutcomeRequest,
    store: RecordStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> MistakeRecord:
    updated = store.record_review(
        item_id, req.success, now, expected_version=req.expected_version
    )
    registry.record_review(req.success)
    logger.info(
        "mistake_reviewed",
        mistake_id=item_id,
        success=req.success,
        duration=req.duration,
        review_count=updated.review_count,
        mastery_level=updated.mastery_level.value,
        next_review_at=updated.next_review_at.isoformat(),
    )
    return updated


@router.post(
    "/{item_id}/variations",
    response_model=MistakeRecord,
    status_code=status.HTTP_201_CREATED,
    summary="変式練習を保存",
)
def save_variation(
    item_id: str,
    req: VariationRequest,
    store: RecordStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> MistakeRecord:
    source = store.get(item_id)
    tags = list(req.tags)
    if VARIATION_TAG not in tags:
        tags.append(VARIATION_TAG)
    draft = MistakeDraft(
        user_id=source.user_id,
        original_mistake_id=source.id,
        image_data=source.image_data,
        html_content=req.html,
        visual_components=req.visual_components,
        answer=req.answer,
        explanation=req.explanation,
        tags=tags,
    )
    created = store.create(draft, now)
    logger.info("variation_created", mistake_id=created.id, original_mistake_id=source.id)
    return created

from __future__ import annotations

import abc
from datetime import datetime
from typing import Collection, Iterable, Mapping, Optional, Sequence

from ..id_factory import generate_mistake_id
from ..models import (
    MasteryLevel,
    MistakeDraft,
    MistakeRecord,
    MistakeStatus,
    ReviewLogEntry,
    ReviewStats,
)

# 変更を許可するコンテンツ系フィールド。SRS 系フィールドはここに含めない。
EDITABLE_FIELDS: frozenset[str] = frozenset(
    {
        "html_content",
        "image_data",
        "visual_components",
        "answer",
        "explanation",
        "tags",
        "status",
    }
)


class RecordStoreError(Exception):
    """Base class for record store failures."""


class RecordNotFoundError(RecordStoreError, KeyError):
    def __init__(self, item_id: str) -> None:
        super().__init__(item_id)
        self.item_id = item_id

    def __str__(self) -> str:
        return f"mistake record not found: {self.item_id}"


class StaleRecordError(RecordStoreError):
    """An outcome was submitted against an outdated version of a record."""

    def __init__(self, item_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"stale write for {item_id}: expected version {expected}, found {actual}"
        )
        self.item_id = item_id
        self.expected = expected
        self.actual = actual


def new_record(draft: MistakeDraft, now: datetime) -> MistakeRecord:
    """Build a freshly ingested record: active, unreviewed, due immediately."""

    return MistakeRecord(
        id=generate_mistake_id(),
        user_id=draft.user_id,
        original_mistake_id=draft.original_mistake_id,
        image_data=draft.image_data,
        html_content=draft.html_content,
        visual_components=list(draft.visual_components),
        answer=draft.answer,
        explanation=draft.explanation,
        tags=list(draft.tags),
        status=MistakeStatus.active,
        created_at=now,
        updated_at=now,
        next_review_at=now,
        review_count=0,
        mastery_level=MasteryLevel.new,
        version=0,
    )


def apply_content_changes(
    record: MistakeRecord, changes: Mapping[str, object], now: datetime
) -> MistakeRecord:
    """Merge content edits into `record`, leaving SRS fields untouched."""

    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"fields not editable: {sorted(unknown)}")
    if changes.get("status") in (MistakeStatus.deleted, MistakeStatus.deleted.value):
        raise ValueError("status 'deleted' is set via soft_delete")
    payload = record.model_dump()
    payload.update(changes)
    payload["updated_at"] = now
    payload["version"] = record.version + 1
    return MistakeRecord.model_validate(payload)


class RecordStore(abc.ABC):
    """Repository interface the scheduler-facing flows depend on.

    Implementations must apply `record_review` calls for one record in request
    order: the load → schedule → persist cycle runs under a single writer lock
    (or transaction), and `expected_version` lets callers detect lost updates.
    """

    @abc.abstractmethod
    def create(self, draft: MistakeDraft, now: datetime) -> MistakeRecord: ...

    @abc.abstractmethod
    def create_many(
        self, drafts: Iterable[MistakeDraft], now: datetime
    ) -> list[MistakeRecord]: ...

    @abc.abstractmethod
    def get(self, item_id: str) -> MistakeRecord: ...

    @abc.abstractmethod
    def list_active(
        self,
        page: int,
        page_size: int,
        statuses: Optional[Collection[MistakeStatus]] = None,
    ) -> tuple[list[MistakeRecord], int]: ...

    @abc.abstractmethod
    def update_content(
        self, item_id: str, changes: Mapping[str, object], now: datetime
    ) -> MistakeRecord: ...

    @abc.abstractmethod
    def soft_delete(self, item_id: str, now: datetime) -> None: ...

    @abc.abstractmethod
    def find_due(
        self, now: datetime, limit: Optional[int] = None
    ) -> list[MistakeRecord]: ...

    @abc.abstractmethod
    def record_review(
        self,
        item_id: str,
        success: bool,
        now: datetime,
        expected_version: Optional[int] = None,
    ) -> MistakeRecord: ...

    @abc.abstractmethod
    def record_reviews(
        self, outcomes: Sequence[tuple[str, bool]], now: datetime
    ) -> list[MistakeRecord]:
        """Apply `(item_id, success)` pairs in order, all or nothing.

        An id may repeat; later outcomes see the earlier ones. If any id is
        missing or any record is invalid, nothing is written.
        """

    @abc.abstractmethod
    def recent_reviews(self, limit: int = 5) -> list[ReviewLogEntry]: ...

    @abc.abstractmethod
    def stats(self, now: datetime) -> ReviewStats: ...

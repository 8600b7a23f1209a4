from __future__ import annotations

import threading
from datetime import UTC, datetime, time
from typing import Collection, Iterable, Mapping, Optional, Sequence

from .. import srs
from ..models import (
    MasteryLevel,
    MistakeDraft,
    MistakeRecord,
    MistakeStatus,
    ReviewLogEntry,
    ReviewStats,
)
from ..models.common import ensure_utc
from .base import (
    RecordNotFoundError,
    RecordStore,
    StaleRecordError,
    apply_content_changes,
    new_record,
)


def _detached(record: MistakeRecord) -> MistakeRecord:
    return record.model_copy(deep=True)


class InMemoryRecordStore(RecordStore):
    """Process-local store guarded by one re-entrant lock.

    Used for tests and for `MISTAKEBOOK_STORE=memory` demo runs; contents are
    lost on restart. Records handed out are deep copies, so callers cannot
    change stored state outside the lock.
    """

    def __init__(self) -> None:
        self._records: dict[str, MistakeRecord] = {}
        self._reviews: list[ReviewLogEntry] = []
        self._lock = threading.RLock()

    def _get_visible(self, item_id: str) -> MistakeRecord:
        record = self._records.get(item_id)
        if record is None or record.status is MistakeStatus.deleted:
            raise RecordNotFoundError(item_id)
        return record

    @staticmethod
    def _apply_review(
        current: MistakeRecord, success: bool, now: datetime
    ) -> tuple[MistakeRecord, ReviewLogEntry]:
        updated = srs.record_outcome(current, success, now)
        updated = updated.model_copy(update={"version": current.version + 1})
        entry = ReviewLogEntry(
            mistake_id=current.id,
            reviewed_at=now,
            success=success,
            review_count=updated.review_count,
            mastery_level=updated.mastery_level,
            next_review_at=updated.next_review_at,
        )
        return updated, entry

    def create(self, draft: MistakeDraft, now: datetime) -> MistakeRecord:
        return self.create_many([draft], now)[0]

    def create_many(
        self, drafts: Iterable[MistakeDraft], now: datetime
    ) -> list[MistakeRecord]:
        created = [new_record(draft, now) for draft in drafts]
        with self._lock:
            for record in created:
                self._records[record.id] = record
        return [_detached(record) for record in created]

    def get(self, item_id: str) -> MistakeRecord:
        with self._lock:
            return _detached(self._get_visible(item_id))

    def list_active(
        self,
        page: int,
        page_size: int,
        statuses: Optional[Collection[MistakeStatus]] = None,
    ) -> tuple[list[MistakeRecord], int]:
        with self._lock:
            snapshot = list(self._records.values())
        items, total = srs.list_active(snapshot, page, page_size, statuses)
        return [_detached(record) for record in items], total

    def update_content(
        self, item_id: str, changes: Mapping[str, object], now: datetime
    ) -> MistakeRecord:
        with self._lock:
            current = self._get_visible(item_id)
            updated = apply_content_changes(current, changes, now)
            self._records[item_id] = updated
            return _detached(updated)

    def soft_delete(self, item_id: str, now: datetime) -> None:
        with self._lock:
            current = self._get_visible(item_id)
            self._records[item_id] = current.model_copy(
                update={
                    "status": MistakeStatus.deleted,
                    "updated_at": ensure_utc(now),
                    "version": current.version + 1,
                }
            )

    def find_due(
        self, now: datetime, limit: Optional[int] = None
    ) -> list[MistakeRecord]:
        with self._lock:
            snapshot = list(self._records.values())
        return [_detached(record) for record in srs.select_due(snapshot, now, cap=limit)]

    def record_review(
        self,
        item_id: str,
        success: bool,
        now: datetime,
        expected_version: Optional[int] = None,
    ) -> MistakeRecord:
        with self._lock:
            current = self._get_visible(item_id)
            if expected_version is not None and expected_version != current.version:
                raise StaleRecordError(item_id, expected_version, current.version)
            updated, entry = self._apply_review(current, success, now)
            self._records[item_id] = updated
            self._reviews.append(entry)
            return _detached(updated)

    def record_reviews(
        self, outcomes: Sequence[tuple[str, bool]], now: datetime
    ) -> list[MistakeRecord]:
        with self._lock:
            # 全件を計算し終えてから反映する（途中で失敗したら何も書かない）
            staged: dict[str, MistakeRecord] = {}
            entries: list[ReviewLogEntry] = []
            results: list[MistakeRecord] = []
            for item_id, success in outcomes:
                current = staged.get(item_id) or self._get_visible(item_id)
                updated, entry = self._apply_review(current, success, now)
                staged[item_id] = updated
                entries.append(entry)
                results.append(updated)
            self._records.update(staged)
            self._reviews.extend(entries)
            return [_detached(record) for record in results]

    def recent_reviews(self, limit: int = 5) -> list[ReviewLogEntry]:
        with self._lock:
            ordered = sorted(
                enumerate(self._reviews),
                key=lambda pair: (pair[1].reviewed_at, pair[0]),
                reverse=True,
            )
        return [entry.model_copy() for _, entry in ordered[:limit]]

    def stats(self, now: datetime) -> ReviewStats:
        today_start = datetime.combine(ensure_utc(now).date(), time.min, tzinfo=UTC)
        with self._lock:
            visible = [
                r for r in self._records.values() if r.status is not MistakeStatus.deleted
            ]
            reviewed_today = sum(
                1 for entry in self._reviews if entry.reviewed_at >= today_start
            )
        mastery = {level.value: 0 for level in MasteryLevel}
        for record in visible:
            mastery[record.mastery_level.value] += 1
        return ReviewStats(
            due_now=len(srs.select_due(visible, now)),
            reviewed_today=reviewed_today,
            total_active=len(visible),
            mastery=mastery,
            recent=self.recent_reviews(),
        )

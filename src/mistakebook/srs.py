"""Spaced-repetition scheduling for mistake records.

A coarse fixed ladder (no ease factor):

- success: review_count += 1; interval 1 day, 3 days, then review_count * 7 days
- success with review_count > 2 marks the record `mastered`, otherwise `learning`
- failure: review_count unchanged, mastery back to `learning`, retry tomorrow

Everything here is pure: no I/O, no clock reads, no in-place mutation.
Persistence and write ordering belong to the record store.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Collection, Iterable, Optional

from .models import MasteryLevel, MistakeRecord, MistakeStatus
from .models.common import ensure_utc


FAILURE_RETRY_INTERVAL = timedelta(days=1)
DEFAULT_EXCLUDED_STATUSES: frozenset[MistakeStatus] = frozenset({MistakeStatus.deleted})


class InvalidStateError(ValueError):
    """Raised when a record handed to the scheduler violates its contract."""

    def __init__(self, item_id: str | None, reason: str) -> None:
        super().__init__(f"invalid record state for {item_id!r}: {reason}")
        self.item_id = item_id
        self.reason = reason


def utcnow() -> datetime:
    return datetime.now(UTC)


def success_interval(review_count: int) -> timedelta:
    """Return the interval after a successful review that brought the count to `review_count`."""

    if review_count < 1:
        raise ValueError("review_count after a success is at least 1")
    if review_count == 1:
        return timedelta(days=1)
    if review_count == 2:
        return timedelta(days=3)
    return timedelta(days=review_count * 7)


def mastery_for(review_count: int) -> MasteryLevel:
    return MasteryLevel.mastered if review_count > 2 else MasteryLevel.learning


def validate_item(item: MistakeRecord) -> None:
    """Reject records the scheduler cannot reason about."""

    count = getattr(item, "review_count", None)
    if count is None or isinstance(count, bool) or not isinstance(count, int):
        raise InvalidStateError(getattr(item, "id", None), "review_count is missing")
    if count < 0:
        raise InvalidStateError(item.id, f"review_count is negative ({count})")
    if item.next_review_at is None:
        raise InvalidStateError(item.id, "next_review_at is missing")
    if item.created_at is None or item.updated_at is None:
        raise InvalidStateError(item.id, "created_at/updated_at is missing")


def record_outcome(item: MistakeRecord, success: bool, now: datetime) -> MistakeRecord:
    """Compute the next SRS state of `item` after one answered attempt.

    Returns a new record; the input is left untouched. Calling this twice with
    the same arguments yields identical output. A naive `now` is taken as UTC.
    """

    now = ensure_utc(now)
    validate_item(item)
    if success:
        review_count = item.review_count + 1
        mastery = mastery_for(review_count)
        next_review_at = now + success_interval(review_count)
    else:
        review_count = item.review_count
        mastery = MasteryLevel.learning
        next_review_at = now + FAILURE_RETRY_INTERVAL
    return item.model_copy(
        update={
            "review_count": review_count,
            "mastery_level": mastery,
            "next_review_at": next_review_at,
            "updated_at": now,
        }
    )


def is_due(item: MistakeRecord, now: datetime) -> bool:
    return item.next_review_at is not None and item.next_review_at <= ensure_utc(now)


def _due_order_key(item: MistakeRecord) -> tuple:
    return (ensure_utc(item.next_review_at), ensure_utc(item.created_at), item.id)


def select_due(
    items: Iterable[MistakeRecord],
    now: datetime,
    exclude_statuses: Collection[MistakeStatus] = DEFAULT_EXCLUDED_STATUSES,
    cap: Optional[int] = None,
) -> list[MistakeRecord]:
    """Return the records due at `now`, most overdue first.

    An empty list means nothing to review right now, which is a normal outcome.
    """

    if cap is not None and cap < 0:
        raise ValueError("cap must be non-negative")
    now = ensure_utc(now)
    excluded = frozenset(exclude_statuses)
    due = [
        item
        for item in items
        if item.status not in excluded and is_due(item, now)
    ]
    due.sort(key=_due_order_key)
    if cap is not None:
        return due[:cap]
    return due


def list_active(
    items: Iterable[MistakeRecord],
    page: int,
    page_size: int,
    statuses: Optional[Collection[MistakeStatus]] = None,
) -> tuple[list[MistakeRecord], int]:
    """Paginate non-deleted records, newest first.

    `page` is 1-based. Ties on `created_at` are broken by id so a page keeps
    its members between reads of an unchanged collection.
    """

    if page < 1:
        raise ValueError("page must be >= 1")
    if page_size < 1:
        raise ValueError("page_size must be >= 1")
    allowed = None if statuses is None else frozenset(statuses) - DEFAULT_EXCLUDED_STATUSES
    visible = [
        item
        for item in items
        if item.status is not MistakeStatus.deleted
        and (allowed is None or item.status in allowed)
    ]
    visible.sort(key=lambda it: (ensure_utc(it.created_at), it.id), reverse=True)
    start = (page - 1) * page_size
    return visible[start : start + page_size], len(visible)

"""FastAPI dependencies shared by the routers.

Tests replace these through `app.dependency_overrides` to pin the clock and
swap in an isolated store.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import Depends

from .config import settings
from .flows import ReviewSessionFlow
from .srs import utcnow
from .store import RecordStore, get_store


def get_now() -> datetime:
    return utcnow()


def get_review_flow(store: RecordStore = Depends(get_store)) -> ReviewSessionFlow:
    return ReviewSessionFlow(store, cap=settings.review_session_cap)


__all__ = ["get_now", "get_review_flow", "get_store"]

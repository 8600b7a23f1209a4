"""Pytest configuration: in-memory store and a controllable clock for API tests."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta

# モジュール import 時に生成される共有ストアが .data/ に SQLite を作らないよう、
# 既定のバックエンドをメモリに切り替えておく。個別テストは monkeypatch で上書き可能。
os.environ.setdefault("MISTAKEBOOK_STORE", "memory")

import pytest
from fastapi.testclient import TestClient

from mistakebook.deps import get_now, get_store
from mistakebook.main import app
from mistakebook.metrics import registry
from mistakebook.store import InMemoryRecordStore


BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=UTC)


class FakeClock:
    """Mutable clock injected through `get_now`."""

    def __init__(self, now: datetime = BASE_TIME) -> None:
        self.now = now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def memory_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture()
def client(clock: FakeClock, memory_store: InMemoryRecordStore):
    registry.reset()
    app.dependency_overrides[get_now] = clock
    app.dependency_overrides[get_store] = lambda: memory_store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()

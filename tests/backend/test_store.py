"""メモリ/SQLite 両実装のレコードストアに共通する契約を検証するテスト群。"""

from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from mistakebook import srs
from mistakebook.models import MasteryLevel, MistakeDraft, MistakeStatus, VisualComponent
from mistakebook.store import (
    InMemoryRecordStore,
    RecordNotFoundError,
    SQLiteRecordStore,
    StaleRecordError,
    create_store,
)


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path):
    if request.param == "memory":
        return InMemoryRecordStore()
    return SQLiteRecordStore(str(tmp_path / "nested" / "mistakes.sqlite3"))


def _draft(answer: str = "42", **kwargs) -> MistakeDraft:
    return MistakeDraft(
        html_content=kwargs.pop("html_content", "<p>6 × 7 = ?</p>"),
        answer=answer,
        explanation=kwargs.pop("explanation", "九九"),
        tags=kwargs.pop("tags", ["乘法"]),
        **kwargs,
    )


def test_create_initialises_srs_state(store):
    record = store.create(_draft(), T0)

    assert record.id.startswith("mk:")
    assert record.status is MistakeStatus.active
    assert record.review_count == 0
    assert record.mastery_level is MasteryLevel.new
    assert record.next_review_at == T0
    assert record.version == 0
    assert store.get(record.id) == record


def test_create_many_roundtrips_content(store):
    created = store.create_many(
        [
            _draft("12元", visual_components=[VisualComponent(type="clock", props={"hour": 3})]),
            _draft("3/4", tags=["分数", "比较"]),
        ],
        T0,
    )

    loaded = store.get(created[0].id)
    assert loaded.answer == "12元"
    assert loaded.visual_components[0].type == "clock"
    assert loaded.visual_components[0].props == {"hour": 3}
    assert store.get(created[1].id).tags == ["分数", "比较"]


def test_get_unknown_raises_not_found(store):
    with pytest.raises(RecordNotFoundError):
        store.get("mk:missing")


def test_list_active_newest_first_with_total(store):
    ids = [store.create(_draft(str(i)), T0 + timedelta(minutes=i)).id for i in range(7)]

    page1, total = store.list_active(1, 5)
    page2, _ = store.list_active(2, 5)

    assert total == 7
    assert [r.id for r in page1] == list(reversed(ids))[:5]
    assert [r.id for r in page2] == list(reversed(ids))[5:]


def test_list_active_status_filter(store):
    keep = store.create(_draft(), T0)
    archived = store.create(_draft(), T0)
    store.update_content(archived.id, {"status": MistakeStatus.archived}, T0)

    items, total = store.list_active(1, 10, {MistakeStatus.archived})

    assert total == 1
    assert [r.id for r in items] == [archived.id]
    assert store.list_active(1, 10)[1] == 2
    assert keep.id in {r.id for r in store.list_active(1, 10)[0]}


def test_soft_delete_hides_record_everywhere(store):
    kept = store.create(_draft(), T0)
    gone = store.create(_draft(), T0)

    store.soft_delete(gone.id, T0 + timedelta(minutes=1))

    with pytest.raises(RecordNotFoundError):
        store.get(gone.id)
    assert [r.id for r in store.list_active(1, 10)[0]] == [kept.id]
    assert [r.id for r in store.find_due(T0 + timedelta(days=1))] == [kept.id]
    with pytest.raises(RecordNotFoundError):
        store.soft_delete(gone.id, T0)
    with pytest.raises(RecordNotFoundError):
        store.record_review(gone.id, True, T0)


def test_find_due_orders_and_caps(store):
    first = store.create(_draft(), T0)
    second = store.create(_draft(), T0 + timedelta(hours=1))
    later = store.create(_draft(), T0 + timedelta(hours=2))
    store.record_review(later.id, True, T0 + timedelta(hours=2))

    now = T0 + timedelta(hours=3)
    assert [r.id for r in store.find_due(now)] == [first.id, second.id]
    assert [r.id for r in store.find_due(now, limit=1)] == [first.id]
    assert store.find_due(T0 - timedelta(seconds=1)) == []


def test_record_review_persists_schedule_and_history(store):
    record = store.create(_draft(), T0)

    updated = store.record_review(record.id, True, T0)

    assert updated.review_count == 1
    assert updated.mastery_level is MasteryLevel.learning
    assert updated.next_review_at == T0 + timedelta(days=1)
    assert updated.version == 1
    assert store.get(record.id) == updated

    history = store.recent_reviews()
    assert len(history) == 1
    assert history[0].mistake_id == record.id
    assert history[0].success is True
    assert history[0].next_review_at == T0 + timedelta(days=1)


def test_sequential_reviews_apply_in_order(store):
    record = store.create(_draft(), T0)

    store.record_review(record.id, True, T0)
    store.record_review(record.id, True, T0 + timedelta(days=1))
    store.record_review(record.id, True, T0 + timedelta(days=4))
    final = store.record_review(record.id, False, T0 + timedelta(days=25))

    assert final.review_count == 3
    assert final.mastery_level is MasteryLevel.learning
    assert final.next_review_at == T0 + timedelta(days=26)
    assert final.version == 4
    assert [e.success for e in store.recent_reviews(limit=10)] == [False, True, True, True]


def test_stale_expected_version_is_rejected(store):
    record = store.create(_draft(), T0)
    store.record_review(record.id, True, T0, expected_version=0)

    with pytest.raises(StaleRecordError) as excinfo:
        store.record_review(record.id, True, T0, expected_version=0)

    assert excinfo.value.actual == 1
    assert store.get(record.id).review_count == 1
    assert len(store.recent_reviews()) == 1


def test_content_edit_preserves_srs_state(store):
    record = store.create(_draft(), T0)
    reviewed = store.record_review(record.id, True, T0)

    edited = store.update_content(
        record.id, {"answer": "43", "tags": ["修正"]}, T0 + timedelta(hours=1)
    )

    assert edited.answer == "43"
    assert edited.tags == ["修正"]
    assert edited.review_count == reviewed.review_count
    assert edited.next_review_at == reviewed.next_review_at
    assert edited.mastery_level is reviewed.mastery_level
    assert edited.updated_at == T0 + timedelta(hours=1)
    assert edited.version == reviewed.version + 1
    assert len(store.recent_reviews()) == 1


@pytest.mark.parametrize(
    "changes",
    [{"review_count": 9}, {"next_review_at": T0}, {"status": MistakeStatus.deleted}],
)
def test_content_edit_rejects_srs_and_delete_fields(store, changes):
    record = store.create(_draft(), T0)

    with pytest.raises(ValueError):
        store.update_content(record.id, changes, T0)


def test_stats_counts_due_reviews_and_mastery(store):
    a = store.create(_draft(), T0)
    b = store.create(_draft(), T0)
    c = store.create(_draft(), T0)
    store.soft_delete(c.id, T0)
    store.record_review(a.id, True, T0 - timedelta(days=1))
    store.record_review(a.id, True, T0)

    stats = store.stats(T0)

    assert stats.total_active == 2
    assert stats.due_now == 1
    assert stats.reviewed_today == 1
    assert stats.mastery["learning"] == 1
    assert stats.mastery["new"] == 1
    assert stats.mastery["mastered"] == 0
    assert [e.mistake_id for e in stats.recent] == [a.id, a.id]
    assert b.id not in {e.mistake_id for e in stats.recent}


def test_sqlite_store_survives_reopen(tmp_path: Path):
    db_path = str(tmp_path / "mistakes.sqlite3")
    first = SQLiteRecordStore(db_path)
    record = first.create(_draft(), T0)
    first.record_review(record.id, True, T0)

    reopened = SQLiteRecordStore(db_path)

    assert reopened.get(record.id).review_count == 1
    assert len(reopened.recent_reviews()) == 1


def test_invalid_stored_state_surfaces_from_review(tmp_path: Path):
    import sqlite3

    db_path = str(tmp_path / "mistakes.sqlite3")
    store = SQLiteRecordStore(db_path)
    record = store.create(_draft(), T0)
    conn = sqlite3.connect(db_path)
    with conn:
        conn.execute("UPDATE mistakes SET review_count = -3 WHERE id = ?", (record.id,))
    conn.close()

    with pytest.raises(srs.InvalidStateError):
        store.record_review(record.id, True, T0)
    assert store.recent_reviews() == []


def test_create_store_selects_backend(tmp_path: Path):
    assert isinstance(create_store("memory"), InMemoryRecordStore)
    assert isinstance(
        create_store("sqlite", str(tmp_path / "x.sqlite3")), SQLiteRecordStore
    )
    with pytest.raises(ValueError):
        create_store("firestore")


def test_record_reviews_applies_batch_in_order(store):
    first = store.create(_draft(), T0)
    second = store.create(_draft(), T0)

    updated = store.record_reviews(
        [(first.id, True), (second.id, False), (first.id, True)], T0
    )

    assert [r.id for r in updated] == [first.id, second.id, first.id]
    assert [r.review_count for r in updated] == [1, 0, 2]
    assert store.get(first.id).review_count == 2
    assert store.get(first.id).next_review_at == T0 + timedelta(days=3)
    assert store.get(first.id).version == 2
    assert store.get(second.id).mastery_level is MasteryLevel.learning
    assert len(store.recent_reviews(limit=10)) == 3


def test_record_reviews_writes_nothing_when_an_id_is_unknown(store):
    record = store.create(_draft(), T0)

    with pytest.raises(RecordNotFoundError):
        store.record_reviews([(record.id, True), ("mk:missing", True)], T0)

    untouched = store.get(record.id)
    assert untouched.review_count == 0
    assert untouched.version == 0
    assert untouched.next_review_at == T0
    assert store.recent_reviews() == []


def test_record_reviews_writes_nothing_when_a_record_was_deleted(store):
    kept = store.create(_draft(), T0)
    gone = store.create(_draft(), T0)
    store.soft_delete(gone.id, T0)

    with pytest.raises(RecordNotFoundError):
        store.record_reviews([(kept.id, False), (gone.id, True)], T0)

    assert store.get(kept.id).mastery_level is MasteryLevel.new
    assert store.recent_reviews() == []


def test_concurrent_reviews_of_one_record_are_all_applied(store):
    record = store.create(_draft(), T0)
    workers = 8

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(
            pool.map(lambda _: store.record_review(record.id, True, T0), range(workers))
        )

    final = store.get(record.id)
    assert final.review_count == workers
    assert final.version == workers
    assert sorted(r.review_count for r in results) == list(range(1, workers + 1))
    history = store.recent_reviews(limit=workers * 2)
    assert len(history) == workers
    assert sorted(e.review_count for e in history) == list(range(1, workers + 1))


def test_naive_now_is_treated_as_utc(store):
    naive = T0.replace(tzinfo=None)
    record = store.create(_draft(), naive)

    reviewed = store.record_review(record.id, True, naive)

    assert reviewed.updated_at == T0
    assert reviewed.updated_at.tzinfo is not None
    assert reviewed.next_review_at == T0 + timedelta(days=1)
    assert store.get(record.id).next_review_at == T0 + timedelta(days=1)
    assert [r.id for r in store.find_due(naive + timedelta(days=1))] == [record.id]
    assert store.find_due(naive + timedelta(hours=23)) == []
    store.soft_delete(record.id, naive)
    assert store.stats(naive).total_active == 0


def test_memory_store_hands_out_copies():
    store = InMemoryRecordStore()
    (created,) = store.create_many([_draft(tags=["原"])], T0)

    created.tags.append("外部変更")
    created.review_count = 99
    fetched = store.get(created.id)
    fetched.tags.clear()

    stored = store.get(created.id)
    assert stored.tags == ["原"]
    assert stored.review_count == 0
    listed = store.list_active(1, 5)[0][0]
    listed.answer = "changed"
    assert store.get(created.id).answer == "42"

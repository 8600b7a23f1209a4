from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import UTC, datetime, time
from pathlib import Path
from typing import Collection, Iterable, Iterator, Mapping, Optional, Sequence

from .. import srs
from ..logging import logger
from ..models.common import ensure_utc
from ..models import (
    MasteryLevel,
    MistakeDraft,
    MistakeRecord,
    MistakeStatus,
    ReviewLogEntry,
    ReviewStats,
)
from .base import (
    RecordNotFoundError,
    RecordStore,
    StaleRecordError,
    apply_content_changes,
    new_record,
)


_RECORD_COLUMNS = (
    "id, user_id, original_mistake_id, image_data, html_content, visual_components, "
    "answer, explanation, tags, status, created_at, updated_at, next_review_at, "
    "review_count, mastery_level, version"
)


def _to_iso(value: datetime) -> str:
    """Serialise timestamps with a fixed layout so TEXT comparison matches time order."""

    return ensure_utc(value).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class SQLiteRecordStore(RecordStore):
    """SQLite-backed persistence layer for mistake records and review history.

    - records are soft-deleted (`status = 'deleted'`) and never purged here
    - review outcomes run inside `BEGIN IMMEDIATE` so concurrent writers on the
      same row are serialised in arrival order
    - every mutation bumps `version` for optimistic checks by the caller
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._ensure_dirs()
        self._init_db()
        logger.info("store_initialized", backend="sqlite", db_path=db_path)

    # --- low-level helpers ---
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path, timeout=10.0, isolation_level=None, check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        with conn:  # autocommit on pragma
            conn.execute("pragma journal_mode=WAL;")
            conn.execute("pragma foreign_keys=ON;")
        return conn

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _immediate(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction that holds the database write lock until commit."""

        with self._conn() as conn:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK;")
                raise
            else:
                conn.execute("COMMIT;")

    def _ensure_dirs(self) -> None:
        p = Path(self.db_path)
        if p.parent and not p.parent.exists():
            p.parent.mkdir(parents=True, exist_ok=True)

    def _init_db(self) -> None:
        with self._conn() as conn:
            with conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS mistakes (
                        id TEXT PRIMARY KEY,
                        user_id TEXT,
                        original_mistake_id TEXT,
                        image_data TEXT,
                        html_content TEXT NOT NULL DEFAULT '',
                        visual_components TEXT NOT NULL DEFAULT '[]',
                        answer TEXT NOT NULL DEFAULT '',
                        explanation TEXT NOT NULL DEFAULT '',
                        tags TEXT NOT NULL DEFAULT '[]',
                        status TEXT NOT NULL DEFAULT 'active',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        next_review_at TEXT NOT NULL,
                        review_count INTEGER NOT NULL DEFAULT 0,
                        mastery_level TEXT NOT NULL DEFAULT 'new',
                        version INTEGER NOT NULL DEFAULT 0
                    );
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_mistakes_status_due ON mistakes(status, next_review_at);"
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_mistakes_created_at ON mistakes(created_at);"
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS reviews (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        mistake_id TEXT NOT NULL,
                        reviewed_at TEXT NOT NULL,
                        success INTEGER NOT NULL,
                        review_count INTEGER NOT NULL,
                        mastery_level TEXT NOT NULL,
                        next_review_at TEXT NOT NULL,
                        FOREIGN KEY(mistake_id) REFERENCES mistakes(id) ON DELETE CASCADE
                    );
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_reviews_reviewed_at ON reviews(reviewed_at);"
                )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> MistakeRecord:
        return MistakeRecord(
            id=row["id"],
            user_id=row["user_id"],
            original_mistake_id=row["original_mistake_id"],
            image_data=row["image_data"],
            html_content=row["html_content"] or "",
            visual_components=json.loads(row["visual_components"] or "[]"),
            answer=row["answer"] or "",
            explanation=row["explanation"] or "",
            tags=json.loads(row["tags"] or "[]"),
            status=MistakeStatus(row["status"]),
            created_at=_from_iso(row["created_at"]),
            updated_at=_from_iso(row["updated_at"]),
            next_review_at=_from_iso(row["next_review_at"]),
            review_count=int(row["review_count"]),
            mastery_level=MasteryLevel(row["mastery_level"]),
            version=int(row["version"]),
        )

    @staticmethod
    def _record_params(record: MistakeRecord) -> tuple:
        return (
            record.id,
            record.user_id,
            record.original_mistake_id,
            record.image_data,
            record.html_content,
            json.dumps(
                [vc.model_dump() for vc in record.visual_components], ensure_ascii=False
            ),
            record.answer,
            record.explanation,
            json.dumps(record.tags, ensure_ascii=False),
            record.status.value,
            _to_iso(record.created_at),
            _to_iso(record.updated_at),
            _to_iso(record.next_review_at),
            record.review_count,
            record.mastery_level.value,
            record.version,
        )

    def _fetch_visible(self, conn: sqlite3.Connection, item_id: str) -> MistakeRecord:
        cur = conn.execute(
            f"SELECT {_RECORD_COLUMNS} FROM mistakes WHERE id = ? AND status != 'deleted';",
            (item_id,),
        )
        row = cur.fetchone()
        if row is None:
            raise RecordNotFoundError(item_id)
        return self._row_to_record(row)

    def _insert_record(self, conn: sqlite3.Connection, record: MistakeRecord) -> None:
        conn.execute(
            f"""
            INSERT INTO mistakes({_RECORD_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            self._record_params(record),
        )

    def _update_record(self, conn: sqlite3.Connection, record: MistakeRecord) -> None:
        # UPDATE (not REPLACE) keeps the reviews rows attached via ON DELETE CASCADE
        params = self._record_params(record)
        conn.execute(
            """
            UPDATE mistakes
            SET user_id = ?, original_mistake_id = ?, image_data = ?, html_content = ?,
                visual_components = ?, answer = ?, explanation = ?, tags = ?, status = ?,
                created_at = ?, updated_at = ?, next_review_at = ?, review_count = ?,
                mastery_level = ?, version = ?
            WHERE id = ?;
            """,
            (*params[1:], params[0]),
        )

    # --- public API ---
    def create(self, draft: MistakeDraft, now: datetime) -> MistakeRecord:
        return self.create_many([draft], now)[0]

    def create_many(
        self, drafts: Iterable[MistakeDraft], now: datetime
    ) -> list[MistakeRecord]:
        created = [new_record(draft, now) for draft in drafts]
        with self._immediate() as conn:
            for record in created:
                self._insert_record(conn, record)
        return created

    def get(self, item_id: str) -> MistakeRecord:
        with self._conn() as conn:
            return self._fetch_visible(conn, item_id)

    def list_active(
        self,
        page: int,
        page_size: int,
        statuses: Optional[Collection[MistakeStatus]] = None,
    ) -> tuple[list[MistakeRecord], int]:
        if page < 1:
            raise ValueError("page must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        where = "status != 'deleted'"
        params: list[object] = []
        if statuses is not None:
            allowed = sorted(
                {MistakeStatus(s).value for s in statuses} - {MistakeStatus.deleted.value}
            )
            if not allowed:
                return [], 0
            where += f" AND status IN ({', '.join('?' for _ in allowed)})"
            params.extend(allowed)
        with self._conn() as conn:
            total = int(
                conn.execute(
                    f"SELECT COUNT(1) AS c FROM mistakes WHERE {where};", params
                ).fetchone()["c"]
            )
            cur = conn.execute(
                f"""
                SELECT {_RECORD_COLUMNS} FROM mistakes
                WHERE {where}
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?;
                """,
                (*params, page_size, (page - 1) * page_size),
            )
            items = [self._row_to_record(row) for row in cur.fetchall()]
        return items, total

    def update_content(
        self, item_id: str, changes: Mapping[str, object], now: datetime
    ) -> MistakeRecord:
        with self._immediate() as conn:
            current = self._fetch_visible(conn, item_id)
            updated = apply_content_changes(current, changes, now)
            self._update_record(conn, updated)
        return updated

    def soft_delete(self, item_id: str, now: datetime) -> None:
        with self._immediate() as conn:
            cur = conn.execute(
                """
                UPDATE mistakes
                SET status = 'deleted', updated_at = ?, version = version + 1
                WHERE id = ? AND status != 'deleted';
                """,
                (_to_iso(now), item_id),
            )
            if cur.rowcount == 0:
                raise RecordNotFoundError(item_id)

    def find_due(
        self, now: datetime, limit: Optional[int] = None
    ) -> list[MistakeRecord]:
        if limit is not None and limit < 0:
            raise ValueError("cap must be non-negative")
        with self._conn() as conn:
            cur = conn.execute(
                f"""
                SELECT {_RECORD_COLUMNS} FROM mistakes
                WHERE status != 'deleted' AND next_review_at <= ?
                ORDER BY next_review_at ASC, created_at ASC, id ASC
                LIMIT ?;
                """,
                (_to_iso(now), -1 if limit is None else limit),
            )
            return [self._row_to_record(row) for row in cur.fetchall()]

    def _apply_review(
        self, conn: sqlite3.Connection, current: MistakeRecord, success: bool, now: datetime
    ) -> MistakeRecord:
        updated = srs.record_outcome(current, success, now)
        updated = updated.model_copy(update={"version": current.version + 1})
        self._update_record(conn, updated)
        conn.execute(
            """
            INSERT INTO reviews(mistake_id, reviewed_at, success, review_count, mastery_level, next_review_at)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (
                current.id,
                _to_iso(now),
                1 if success else 0,
                updated.review_count,
                updated.mastery_level.value,
                _to_iso(updated.next_review_at),
            ),
        )
        return updated

    def record_review(
        self,
        item_id: str,
        success: bool,
        now: datetime,
        expected_version: Optional[int] = None,
    ) -> MistakeRecord:
        with self._immediate() as conn:
            current = self._fetch_visible(conn, item_id)
            if expected_version is not None and expected_version != current.version:
                raise StaleRecordError(item_id, expected_version, current.version)
            return self._apply_review(conn, current, success, now)

    def record_reviews(
        self, outcomes: Sequence[tuple[str, bool]], now: datetime
    ) -> list[MistakeRecord]:
        """Apply a batch of outcomes inside one `BEGIN IMMEDIATE` transaction.

        同一トランザクション内で順に読み書きするため、同じ id が複数回
        現れても前の結果を引き継ぐ。どれか 1 件でも失敗すれば全件ロールバック。
        """
        with self._immediate() as conn:
            return [
                self._apply_review(conn, self._fetch_visible(conn, item_id), success, now)
                for item_id, success in outcomes
            ]

    def recent_reviews(self, limit: int = 5) -> list[ReviewLogEntry]:
        with self._conn() as conn:
            cur = conn.execute(
                """
                SELECT mistake_id, reviewed_at, success, review_count, mastery_level, next_review_at
                FROM reviews
                ORDER BY reviewed_at DESC, id DESC
                LIMIT ?;
                """,
                (limit,),
            )
            return [
                ReviewLogEntry(
                    mistake_id=row["mistake_id"],
                    reviewed_at=_from_iso(row["reviewed_at"]),
                    success=bool(row["success"]),
                    review_count=int(row["review_count"]),
                    mastery_level=MasteryLevel(row["mastery_level"]),
                    next_review_at=_from_iso(row["next_review_at"]),
                )
                for row in cur.fetchall()
            ]

    def stats(self, now: datetime) -> ReviewStats:
        """Return due/reviewed counters plus the mastery distribution.

        - due_now: next_review_at <= now の削除されていないレコード件数
        - reviewed_today: 当日 00:00 UTC 以降に記録された復習件数
        """
        today_start = datetime.combine(ensure_utc(now).date(), time.min, tzinfo=UTC)
        with self._conn() as conn:
            due_now = int(
                conn.execute(
                    "SELECT COUNT(1) AS c FROM mistakes WHERE status != 'deleted' AND next_review_at <= ?;",
                    (_to_iso(now),),
                ).fetchone()["c"]
            )
            reviewed_today = int(
                conn.execute(
                    "SELECT COUNT(1) AS c FROM reviews WHERE reviewed_at >= ?;",
                    (_to_iso(today_start),),
                ).fetchone()["c"]
            )
            mastery = {level.value: 0 for level in MasteryLevel}
            total_active = 0
            for row in conn.execute(
                """
                SELECT mastery_level, COUNT(1) AS c FROM mistakes
                WHERE status != 'deleted'
                GROUP BY mastery_level;
                """
            ).fetchall():
                mastery[row["mastery_level"]] = int(row["c"])
                total_active += int(row["c"])
        return ReviewStats(
            due_now=due_now,
            reviewed_today=reviewed_today,
            total_active=total_active,
            mastery=mastery,
            recent=self.recent_reviews(),
        )

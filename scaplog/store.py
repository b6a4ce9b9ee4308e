"""SQLite-backed capture store with a trigger-maintained FTS5 index."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing, contextmanager
from datetime import datetime, time, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, List, Optional, TypeVar

from .errors import StoreError, StoreValidationError
from .models import CaptureRecord, StoreStatistics

logger = logging.getLogger(__name__)

T = TypeVar("T")

_COLUMNS = "id, observed_at, summary, screenshot_path, app_name, window_title, recorded_at"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS captures (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    observed_at TEXT NOT NULL,
    summary TEXT NOT NULL CHECK (length(summary) > 0),
    screenshot_path TEXT,
    app_name TEXT,
    window_title TEXT,
    recorded_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_captures_recorded_at ON captures(recorded_at);
CREATE INDEX IF NOT EXISTS idx_captures_app_name ON captures(app_name);
"""

FTS5_SQL = """
CREATE VIRTUAL TABLE IF NOT EXISTS captures_fts USING fts5(
    summary,
    app_name,
    window_title,
    content='captures',
    content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS captures_fts_insert AFTER INSERT ON captures BEGIN
    INSERT INTO captures_fts(rowid, summary, app_name, window_title)
    VALUES (new.id, new.summary, new.app_name, new.window_title);
END;

CREATE TRIGGER IF NOT EXISTS captures_fts_delete AFTER DELETE ON captures BEGIN
    INSERT INTO captures_fts(captures_fts, rowid, summary, app_name, window_title)
    VALUES ('delete', old.id, old.summary, old.app_name, old.window_title);
END;

CREATE TRIGGER IF NOT EXISTS captures_fts_update AFTER UPDATE ON captures BEGIN
    INSERT INTO captures_fts(captures_fts, rowid, summary, app_name, window_title)
    VALUES ('delete', old.id, old.summary, old.app_name, old.window_title);
    INSERT INTO captures_fts(rowid, summary, app_name, window_title)
    VALUES (new.id, new.summary, new.app_name, new.window_title);
END;
"""


def to_db_time(value: datetime) -> str:
    """Normalise to a UTC ISO-8601 string; naive values are local time."""

    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def start_of_local_day(now: datetime | None = None) -> datetime:
    local = (now or datetime.now(timezone.utc)).astimezone()
    return datetime.combine(local.date(), time.min, tzinfo=local.tzinfo)


def build_match_query(query: str) -> str:
    """Turn free text into an OR of quoted prefix terms for FTS5."""

    terms = []
    for token in query.split():
        escaped = token.replace('"', '""')
        terms.append(f'"{escaped}"*')
    return " OR ".join(terms)


class CaptureStore:
    """Persist capture records and keep their full-text index in sync.

    Every operation runs on one dedicated worker thread that owns the only
    connection, so SQLite is touched by a single logical thread at a time.
    Public methods are coroutines that queue work onto that worker.
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self.db_path = str(db_path)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="scaplog-store")
        self._conn: Optional[sqlite3.Connection] = None
        self._executor.submit(self._open).result()

    # ------------------------------------------------------------------
    # Worker-side helpers
    # ------------------------------------------------------------------

    def _open(self) -> None:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(self.db_path, isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            conn.executescript(SCHEMA_SQL)
            conn.executescript(FTS5_SQL)
            conn.execute("INSERT INTO captures_fts(captures_fts) VALUES ('rebuild')")
        except sqlite3.Error as exc:
            raise StoreError(f"open {self.db_path}: {exc}") from exc
        self._conn = conn
        logger.info("Capture store opened at %s", self.db_path)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("capture store is closed")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self.conn
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    async def _call(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        def run() -> T:
            try:
                return func(*args)
            except sqlite3.Error as exc:
                raise StoreError(f"{operation}: {exc}") from exc

        try:
            future = self._executor.submit(run)
        except RuntimeError as exc:
            raise StoreError(f"{operation}: capture store is closed") from exc
        return await asyncio.wrap_future(future)

    def _select(self, sql: str, params: Iterable[Any] = ()) -> List[CaptureRecord]:
        with closing(self.conn.cursor()) as cur:
            cur.execute(sql, tuple(params))
            rows = cur.fetchall()
        return [self._row_to_record(row) for row in rows]

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> CaptureRecord:
        screenshot = row["screenshot_path"]
        return CaptureRecord(
            id=row["id"],
            observed_at=from_db_time(row["observed_at"]),
            summary_text=row["summary"],
            screenshot_path=Path(screenshot) if screenshot else None,
            application_name=row["app_name"],
            window_title=row["window_title"],
            recorded_at=from_db_time(row["recorded_at"]),
        )

    def _insert(self, record: CaptureRecord) -> int:
        payload = (
            to_db_time(record.observed_at),
            record.summary_text,
            str(record.screenshot_path) if record.screenshot_path else None,
            record.application_name,
            record.window_title,
            to_db_time(record.recorded_at),
        )
        with self._transaction() as conn, closing(conn.cursor()) as cur:
            cur.execute(
                """
                INSERT INTO captures
                    (observed_at, summary, screenshot_path, app_name, window_title, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                payload,
            )
            row_id = int(cur.lastrowid)
        logger.debug("Saved capture %s: %.50s", row_id, record.summary_text)
        return row_id

    def _delete_where(self, where: str, params: tuple) -> List[CaptureRecord]:
        with self._transaction() as conn:
            removed = self._select(f"SELECT {_COLUMNS} FROM captures WHERE {where}", params)
            conn.execute(f"DELETE FROM captures WHERE {where}", params)
        return removed

    def _statistics(self, now: datetime | None) -> StoreStatistics:
        stats = StoreStatistics()
        conn = self.conn
        stats.total_count = conn.execute("SELECT COUNT(*) FROM captures").fetchone()[0]
        stats.today_count = conn.execute(
            "SELECT COUNT(*) FROM captures WHERE recorded_at >= ?",
            (to_db_time(start_of_local_day(now)),),
        ).fetchone()[0]
        rows = conn.execute(
            """
            SELECT app_name, COUNT(*) AS cnt FROM captures
            WHERE app_name IS NOT NULL AND app_name != ''
            GROUP BY app_name ORDER BY cnt DESC, app_name ASC LIMIT 10
            """
        ).fetchall()
        stats.per_application = [(row["app_name"], row["cnt"]) for row in rows]
        first, last = conn.execute("SELECT MIN(recorded_at), MAX(recorded_at) FROM captures").fetchone()
        stats.first_recorded_at = from_db_time(first) if first else None
        stats.last_recorded_at = from_db_time(last) if last else None
        return stats

    def _close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def insert(self, record: CaptureRecord) -> int:
        if not record.summary_text:
            raise StoreValidationError("summary text must not be empty")
        return await self._call("insert", self._insert, record)

    async def fetch(self, record_id: int) -> Optional[CaptureRecord]:
        rows = await self._call(
            "fetch", self._select, f"SELECT {_COLUMNS} FROM captures WHERE id = ?", (record_id,)
        )
        return rows[0] if rows else None

    async def fetch_recent(self, limit: int = 50, offset: int = 0) -> List[CaptureRecord]:
        if limit < 0 or offset < 0:
            raise StoreValidationError("limit and offset must not be negative")
        # Ordered by id: observed timestamps may be missing or out of order.
        return await self._call(
            "fetch_recent",
            self._select,
            f"SELECT {_COLUMNS} FROM captures ORDER BY id DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )

    async def fetch_today(self, now: datetime | None = None) -> List[CaptureRecord]:
        return await self._call(
            "fetch_today",
            self._select,
            f"SELECT {_COLUMNS} FROM captures WHERE recorded_at >= ? ORDER BY id DESC",
            (to_db_time(start_of_local_day(now)),),
        )

    async def fetch_in_range(self, start: datetime, end: datetime) -> List[CaptureRecord]:
        start_key, end_key = to_db_time(start), to_db_time(end)
        if start_key > end_key:
            raise StoreValidationError("start of the range must not be after its end")
        return await self._call(
            "fetch_in_range",
            self._select,
            f"""
            SELECT {_COLUMNS} FROM captures
            WHERE recorded_at >= ? AND recorded_at <= ?
            ORDER BY id DESC
            """,
            (start_key, end_key),
        )

    async def search(self, query: str, limit: int = 50) -> List[CaptureRecord]:
        match = build_match_query(query)
        if not match:
            return []
        return await self._call(
            "search",
            self._select,
            """
            SELECT c.id, c.observed_at, c.summary, c.screenshot_path, c.app_name,
                   c.window_title, c.recorded_at
            FROM captures c
            JOIN captures_fts ON c.id = captures_fts.rowid
            WHERE captures_fts MATCH ?
            ORDER BY rank
            LIMIT ?
            """,
            (match, limit),
        )

    async def delete(self, record_id: int) -> Optional[CaptureRecord]:
        """Delete one record; returns the removed record, if any."""

        removed = await self._call("delete", self._delete_where, "id = ?", (record_id,))
        return removed[0] if removed else None

    async def delete_many(self, record_ids: Iterable[int]) -> List[CaptureRecord]:
        ids = tuple(sorted({int(record_id) for record_id in record_ids}))
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        return await self._call("delete_many", self._delete_where, f"id IN ({placeholders})", ids)

    async def delete_older_than(self, cutoff: datetime) -> List[CaptureRecord]:
        """Delete records with ``recorded_at`` strictly before ``cutoff``."""

        removed = await self._call(
            "delete_older_than", self._delete_where, "recorded_at < ?", (to_db_time(cutoff),)
        )
        logger.info("Deleted %d captures recorded before %s", len(removed), cutoff.isoformat())
        return removed

    async def statistics(self, now: datetime | None = None) -> StoreStatistics:
        return await self._call("statistics", self._statistics, now)

    async def aclose(self) -> None:
        await self._call("close", self._close)
        self._executor.shutdown(wait=True)

    def close(self) -> None:
        """Close from synchronous code; waits for queued work to finish."""

        try:
            self._executor.submit(self._close).result()
        except RuntimeError:
            return
        self._executor.shutdown(wait=True)

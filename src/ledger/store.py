"""Standup store contract plus in-memory and SQLite implementations.

``upsert_for_day`` is the only write path for generated standups. It runs
the caller's ``mutate`` callback against the current row for
(user_id, date) and persists the result, atomically with respect to other
upserts for the same key.
"""

import asyncio
import copy
import json
import sqlite3
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

from src.activity.models import parse_timestamp
from src.ledger.models import StandupRecord

Mutation = Callable[[StandupRecord | None], StandupRecord]


class StandupStore(Protocol):
    async def upsert_for_day(self, user_id: str, date: str, mutate: Mutation) -> StandupRecord: ...

    async def find_by_date(self, user_id: str, date: str) -> StandupRecord | None: ...

    async def get(self, user_id: str, standup_id: str) -> StandupRecord | None: ...

    async def list_for_user(self, user_id: str) -> list[StandupRecord]: ...

    async def delete(self, user_id: str, standup_id: str) -> bool: ...


_EPOCH = datetime.min.replace(tzinfo=UTC)


def generated_instant(record: StandupRecord) -> datetime:
    """Parsed ``generated_at``; rows may carry mixed UTC offsets."""
    return parse_timestamp(record["generated_at"]) or _EPOCH


def newest(records: list[StandupRecord]) -> StandupRecord | None:
    if not records:
        return None
    return max(records, key=generated_instant)


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryStandupStore:
    """List-backed store for tests and development mode.

    Rows are kept in a flat list rather than keyed by day so that rows
    written before the one-per-day rule (``insert_raw``) can coexist.
    """

    def __init__(self) -> None:
        self._rows: list[StandupRecord] = []
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._holders: dict[tuple[str, str], int] = {}

    def insert_raw(self, record: StandupRecord) -> None:
        """Append a row without any uniqueness check."""
        self._rows.append(copy.deepcopy(record))

    async def upsert_for_day(self, user_id: str, date: str, mutate: Mutation) -> StandupRecord:
        key = (user_id, date)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                matches = [r for r in self._rows if r["user_id"] == user_id and r["date"] == date]
                current = newest(matches)
                record = mutate(copy.deepcopy(current) if current is not None else None)
                if current is None:
                    self._rows.append(copy.deepcopy(record))
                else:
                    index = next(i for i, r in enumerate(self._rows) if r is current)
                    self._rows[index] = copy.deepcopy(record)
                return copy.deepcopy(record)
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    async def find_by_date(self, user_id: str, date: str) -> StandupRecord | None:
        current = newest([r for r in self._rows if r["user_id"] == user_id and r["date"] == date])
        return copy.deepcopy(current) if current is not None else None

    async def get(self, user_id: str, standup_id: str) -> StandupRecord | None:
        for r in self._rows:
            if r["user_id"] == user_id and r["id"] == standup_id:
                return copy.deepcopy(r)
        return None

    async def list_for_user(self, user_id: str) -> list[StandupRecord]:
        return [copy.deepcopy(r) for r in self._rows if r["user_id"] == user_id]

    async def delete(self, user_id: str, standup_id: str) -> bool:
        before = len(self._rows)
        self._rows = [r for r in self._rows if not (r["user_id"] == user_id and r["id"] == standup_id)]
        return len(self._rows) < before


# ---------------------------------------------------------------------------
# SQLite implementation
# ---------------------------------------------------------------------------


class SqliteStandupStore:
    """SQLite-backed store. Upserts run inside ``BEGIN IMMEDIATE`` transactions."""

    def __init__(self, conn: sqlite3.Connection, lock: "threading.Lock | None" = None) -> None:
        self._conn = conn
        # Stores sharing a connection must share this lock: transactions are per connection.
        self._lock = lock or threading.Lock()

    async def upsert_for_day(self, user_id: str, date: str, mutate: Mutation) -> StandupRecord:
        return await asyncio.to_thread(self._upsert_for_day, user_id, date, mutate)

    async def find_by_date(self, user_id: str, date: str) -> StandupRecord | None:
        return await asyncio.to_thread(self._find_by_date, user_id, date)

    async def get(self, user_id: str, standup_id: str) -> StandupRecord | None:
        return await asyncio.to_thread(
            self._fetch_one,
            "SELECT * FROM standups WHERE user_id = ? AND id = ?",
            (user_id, standup_id),
        )

    async def list_for_user(self, user_id: str) -> list[StandupRecord]:
        return await asyncio.to_thread(self._list_for_user, user_id)

    async def delete(self, user_id: str, standup_id: str) -> bool:
        return await asyncio.to_thread(self._delete, user_id, standup_id)

    def insert_raw(self, record: StandupRecord) -> None:
        """Write a row without any uniqueness check."""
        with self._lock:
            self._write(record)

    def _fetch_one(self, sql: str, params: tuple[object, ...]) -> StandupRecord | None:
        with self._lock:
            row = self._conn.execute(sql, params).fetchone()
        return _row_to_standup(row) if row is not None else None

    def _find_by_date(self, user_id: str, date: str) -> StandupRecord | None:
        with self._lock:
            return self._newest_for_day(user_id, date)

    def _newest_for_day(self, user_id: str, date: str) -> StandupRecord | None:
        rows = self._conn.execute(
            "SELECT * FROM standups WHERE user_id = ? AND date = ?", (user_id, date)
        ).fetchall()
        return newest([_row_to_standup(r) for r in rows])

    def _list_for_user(self, user_id: str) -> list[StandupRecord]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM standups WHERE user_id = ?", (user_id,)).fetchall()
        return [_row_to_standup(r) for r in rows]

    def _delete(self, user_id: str, standup_id: str) -> bool:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM standups WHERE user_id = ? AND id = ?", (user_id, standup_id))
            return cursor.rowcount > 0

    def _upsert_for_day(self, user_id: str, date: str, mutate: Mutation) -> StandupRecord:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                current = self._newest_for_day(user_id, date)
                record = mutate(current)
                if current is not None and current["id"] != record["id"]:
                    self._conn.execute("DELETE FROM standups WHERE id = ?", (current["id"],))
                self._write(record)
                self._conn.execute("COMMIT")
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
        return record

    def _write(self, record: StandupRecord) -> None:
        self._conn.execute(
            """INSERT OR REPLACE INTO standups
               (id, user_id, date, content, raw_data, preferences,
                generation_metadata, replaced_count, generated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                record["id"],
                record["user_id"],
                record["date"],
                record["content"],
                json.dumps(record["raw_data"]) if record["raw_data"] is not None else None,
                json.dumps(record["preferences"]),
                json.dumps(record["generation_metadata"]),
                record["replaced_count"],
                record["generated_at"],
            ),
        )


def _row_to_standup(row: sqlite3.Row) -> StandupRecord:
    return StandupRecord(
        id=row["id"],
        user_id=row["user_id"],
        date=row["date"],
        content=row["content"],
        raw_data=json.loads(row["raw_data"]) if row["raw_data"] else None,
        preferences=json.loads(row["preferences"] or "{}"),
        generation_metadata=json.loads(row["generation_metadata"] or "{}"),
        replaced_count=row["replaced_count"],
        generated_at=row["generated_at"],
    )

"""Credential store contract plus in-memory and SQLite implementations.

One credential per (user_id, provider_type). Credentials are deactivated on
verification failure and only removed on explicit disconnect.
"""

import asyncio
import copy
import json
import sqlite3
import threading
from datetime import UTC, datetime
from typing import Any, Protocol

from src.credentials.models import CredentialRecord


class CredentialStore(Protocol):
    async def find(self, user_id: str, provider_type: str) -> CredentialRecord | None: ...

    async def find_active(self, user_id: str, provider_type: str) -> CredentialRecord | None: ...

    async def upsert(self, user_id: str, provider_type: str, fields: dict[str, Any]) -> CredentialRecord: ...

    async def deactivate(self, user_id: str, provider_type: str) -> None: ...

    async def touch_synced(self, user_id: str, provider_type: str) -> None: ...

    async def remove(self, user_id: str, provider_type: str) -> bool: ...

    async def list_active_users(self, provider_type: str) -> list[str]: ...


_UPDATABLE_FIELDS = ("access_token", "refresh_token", "token_expiry", "metadata", "is_active", "last_synced_at")


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _new_record(user_id: str, provider_type: str, fields: dict[str, Any]) -> CredentialRecord:
    now = _now()
    return CredentialRecord(
        user_id=user_id,
        provider_type=provider_type,
        access_token=fields.get("access_token", ""),
        refresh_token=fields.get("refresh_token"),
        token_expiry=fields.get("token_expiry"),
        metadata=dict(fields.get("metadata") or {}),
        is_active=bool(fields.get("is_active", True)),
        last_synced_at=fields.get("last_synced_at"),
        created_at=now,
        updated_at=now,
    )


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - set(_UPDATABLE_FIELDS)
    if unknown:
        msg = f"Unknown credential fields: {', '.join(sorted(unknown))}"
        raise ValueError(msg)


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryCredentialStore:
    """Dict-backed store for tests and development mode."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], CredentialRecord] = {}

    async def find(self, user_id: str, provider_type: str) -> CredentialRecord | None:
        record = self._records.get((user_id, provider_type))
        return copy.deepcopy(record) if record is not None else None

    async def find_active(self, user_id: str, provider_type: str) -> CredentialRecord | None:
        record = await self.find(user_id, provider_type)
        if record is None or not record["is_active"]:
            return None
        return record

    async def upsert(self, user_id: str, provider_type: str, fields: dict[str, Any]) -> CredentialRecord:
        _check_fields(fields)
        key = (user_id, provider_type)
        existing = self._records.get(key)
        if existing is None:
            record = _new_record(user_id, provider_type, fields)
        else:
            record = copy.deepcopy(existing)
            record.update(fields)  # type: ignore[typeddict-item]
            record["updated_at"] = _now()
        self._records[key] = record
        return copy.deepcopy(record)

    async def deactivate(self, user_id: str, provider_type: str) -> None:
        record = self._records.get((user_id, provider_type))
        if record is not None:
            record["is_active"] = False
            record["updated_at"] = _now()

    async def touch_synced(self, user_id: str, provider_type: str) -> None:
        record = self._records.get((user_id, provider_type))
        if record is not None:
            record["last_synced_at"] = _now()
            record["updated_at"] = record["last_synced_at"]

    async def remove(self, user_id: str, provider_type: str) -> bool:
        return self._records.pop((user_id, provider_type), None) is not None

    async def list_active_users(self, provider_type: str) -> list[str]:
        return sorted(
            user_id for (user_id, ptype), r in self._records.items() if ptype == provider_type and r["is_active"]
        )


# ---------------------------------------------------------------------------
# SQLite implementation
# ---------------------------------------------------------------------------


class SqliteCredentialStore:
    """SQLite-backed store. Blocking calls run in a worker thread."""

    def __init__(self, conn: sqlite3.Connection, lock: "threading.Lock | None" = None) -> None:
        self._conn = conn
        self._lock = lock or threading.Lock()

    async def find(self, user_id: str, provider_type: str) -> CredentialRecord | None:
        return await asyncio.to_thread(self._find, user_id, provider_type)

    async def find_active(self, user_id: str, provider_type: str) -> CredentialRecord | None:
        record = await self.find(user_id, provider_type)
        if record is None or not record["is_active"]:
            return None
        return record

    async def upsert(self, user_id: str, provider_type: str, fields: dict[str, Any]) -> CredentialRecord:
        _check_fields(fields)
        return await asyncio.to_thread(self._upsert, user_id, provider_type, fields)

    async def deactivate(self, user_id: str, provider_type: str) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE credentials SET is_active = 0, updated_at = ? WHERE user_id = ? AND provider_type = ?",
            (_now(), user_id, provider_type),
        )

    async def touch_synced(self, user_id: str, provider_type: str) -> None:
        now = _now()
        await asyncio.to_thread(
            self._execute,
            "UPDATE credentials SET last_synced_at = ?, updated_at = ? WHERE user_id = ? AND provider_type = ?",
            (now, now, user_id, provider_type),
        )

    async def remove(self, user_id: str, provider_type: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute,
            "DELETE FROM credentials WHERE user_id = ? AND provider_type = ?",
            (user_id, provider_type),
        )
        return deleted > 0

    async def list_active_users(self, provider_type: str) -> list[str]:
        return await asyncio.to_thread(self._list_active_users, provider_type)

    def _execute(self, sql: str, params: tuple[object, ...]) -> int:
        with self._lock:
            cursor = self._conn.execute(sql, params)
            return cursor.rowcount

    def _find(self, user_id: str, provider_type: str) -> CredentialRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM credentials WHERE user_id = ? AND provider_type = ?",
                (user_id, provider_type),
            ).fetchone()
        return _row_to_credential(row) if row is not None else None

    def _list_active_users(self, provider_type: str) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT user_id FROM credentials WHERE provider_type = ? AND is_active = 1 ORDER BY user_id",
                (provider_type,),
            ).fetchall()
        return [r["user_id"] for r in rows]

    def _upsert(self, user_id: str, provider_type: str, fields: dict[str, Any]) -> CredentialRecord:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                row = self._conn.execute(
                    "SELECT * FROM credentials WHERE user_id = ? AND provider_type = ?",
                    (user_id, provider_type),
                ).fetchone()
                if row is None:
                    record = _new_record(user_id, provider_type, fields)
                else:
                    record = _row_to_credential(row)
                    record.update(fields)  # type: ignore[typeddict-item]
                    record["updated_at"] = _now()
                self._conn.execute(
                    """INSERT OR REPLACE INTO credentials
                       (user_id, provider_type, access_token, refresh_token, token_expiry,
                        metadata, is_active, last_synced_at, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        record["user_id"],
                        record["provider_type"],
                        record["access_token"],
                        record["refresh_token"],
                        record["token_expiry"],
                        json.dumps(record["metadata"]),
                        int(record["is_active"]),
                        record["last_synced_at"],
                        record["created_at"],
                        record["updated_at"],
                    ),
                )
                self._conn.execute("COMMIT")
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
        return record


def _row_to_credential(row: sqlite3.Row) -> CredentialRecord:
    return CredentialRecord(
        user_id=row["user_id"],
        provider_type=row["provider_type"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        token_expiry=row["token_expiry"],
        metadata=json.loads(row["metadata"] or "{}"),
        is_active=bool(row["is_active"]),
        last_synced_at=row["last_synced_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )

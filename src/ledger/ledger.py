"""Standup ledger: one logical standup per (user, calendar day).

Regenerating a day rewrites the existing record in place. The record id
stays the same, ``replaced_count`` goes up by one, and ``generated_at``
is refreshed. Listing collapses any legacy duplicate rows for a day to
the newest one before paginating.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Any

from src.errors import NotFoundError
from src.generation.models import GenerationMetadata, Preferences
from src.ledger.models import StandupRecord
from src.ledger.store import StandupStore, generated_instant

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_PAGE_SIZE = 30


def _utcnow() -> datetime:
    return datetime.now(UTC)


def latest_per_day(records: list[StandupRecord]) -> list[StandupRecord]:
    """Keep only the most recently generated record for each date."""
    newest: dict[str, StandupRecord] = {}
    for record in records:
        kept = newest.get(record["date"])
        if kept is None or generated_instant(record) > generated_instant(kept):
            newest[record["date"]] = record
    return list(newest.values())


class StandupLedger:
    def __init__(self, store: StandupStore, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or _utcnow

    async def upsert_generate(
        self,
        user_id: str,
        day: date,
        content: str,
        raw_data: dict[str, Any] | None,
        preferences: Preferences,
        generation_metadata: GenerationMetadata,
    ) -> StandupRecord:
        """Create the day's record or overwrite it as a regeneration."""
        generated_at = self._clock().isoformat()

        def mutate(current: StandupRecord | None) -> StandupRecord:
            if current is None:
                return StandupRecord(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    date=day.isoformat(),
                    content=content,
                    raw_data=raw_data,
                    preferences=preferences,
                    generation_metadata=generation_metadata,
                    replaced_count=0,
                    generated_at=generated_at,
                )
            return StandupRecord(
                id=current["id"],
                user_id=user_id,
                date=current["date"],
                content=content,
                raw_data=raw_data,
                preferences=preferences,
                generation_metadata=generation_metadata,
                replaced_count=current["replaced_count"] + 1,
                generated_at=generated_at,
            )

        record = await self._store.upsert_for_day(user_id, day.isoformat(), mutate)
        logger.info(
            "Stored standup %s for %s on %s (replaced_count=%d)",
            record["id"],
            user_id,
            record["date"],
            record["replaced_count"],
        )
        return record

    async def list(self, user_id: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> list[StandupRecord]:
        """Newest-first page of standups, at most one per date."""
        if limit < 0 or offset < 0:
            msg = "limit and offset must be non-negative"
            raise ValueError(msg)
        records = latest_per_day(await self._store.list_for_user(user_id))
        records.sort(key=generated_instant, reverse=True)
        return records[offset : offset + limit]

    async def find_by_date(self, user_id: str, day: date) -> StandupRecord | None:
        return await self._store.find_by_date(user_id, day.isoformat())

    async def get(self, user_id: str, standup_id: str) -> StandupRecord:
        record = await self._store.get(user_id, standup_id)
        if record is None:
            msg = f"Standup {standup_id} not found"
            raise NotFoundError(msg)
        return record

    async def remove(self, user_id: str, standup_id: str) -> None:
        if not await self._store.delete(user_id, standup_id):
            msg = f"Standup {standup_id} not found"
            raise NotFoundError(msg)
        logger.info("Deleted standup %s for %s", standup_id, user_id)

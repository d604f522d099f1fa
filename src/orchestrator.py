"""Standup orchestration: credential → activity → generation → ledger.

``Orchestrator.generate`` is total over its inputs. A missing credential,
a rejected credential, an unreachable provider, or a failing LLM all
degrade to a stored standup rather than an error. Only ledger lookups
(``NotFoundError``), unreadable stored credentials, and storage failures
propagate.
"""

import logging
import os
import threading
import time
from datetime import UTC, date, datetime
from typing import Any

from src.activity.aggregator import ActivityAggregator
from src.activity.models import ActivityWindow, NormalizedActivity, is_empty
from src.auth.tokens import Mode, resolve_mode
from src.config import Settings, get_settings
from src.credentials.models import GITHUB, ResolvedCredential
from src.credentials.service import CredentialService
from src.credentials.store import CredentialStore, InMemoryCredentialStore, SqliteCredentialStore
from src.credentials.vault import KEY_BYTES, CredentialVault
from src.db import get_initialized_connection
from src.errors import CredentialError
from src.generation.models import (
    GenerationMetadata,
    GenerationRequest,
    GenerationResult,
    Preferences,
)
from src.generation.pipeline import GenerationPipeline
from src.ledger.ledger import DEFAULT_PAGE_SIZE, StandupLedger
from src.ledger.models import StandupRecord
from src.ledger.store import InMemoryStandupStore, SqliteStandupStore, StandupStore
from src.observability.metrics import CREDENTIALS_DEACTIVATED, GENERATION_DURATION, STANDUPS_TOTAL

logger = logging.getLogger(__name__)

NO_ACTIVITY_TEMPLATE = "No activity found for {date}."


def no_activity_content(day: date) -> str:
    return NO_ACTIVITY_TEMPLATE.format(date=day.isoformat())


class Orchestrator:
    def __init__(
        self,
        credentials: CredentialService,
        aggregator: ActivityAggregator,
        pipeline: GenerationPipeline,
        ledger: StandupLedger,
        mode: Mode,
        settings: Settings | None = None,
        provider_type: str = GITHUB,
    ) -> None:
        self._credentials = credentials
        self._aggregator = aggregator
        self._pipeline = pipeline
        self._ledger = ledger
        self._mode = mode
        self._settings = settings or get_settings()
        self._provider_type = provider_type

    @property
    def credentials(self) -> CredentialService:
        return self._credentials

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def llm_active(self) -> bool:
        return self._mode.llm_enabled and self._pipeline.llm_configured

    def _preferences(
        self,
        tone: str | None,
        length: str | None,
        custom_prompt: str | None,
        sprint_goal: str | None,
    ) -> Preferences:
        preferences = Preferences(
            tone=tone or self._settings.default_tone,
            length=length or self._settings.default_length,
        )
        if custom_prompt:
            preferences["custom_prompt"] = custom_prompt
        if sprint_goal:
            preferences["sprint_goal"] = sprint_goal
        return preferences

    async def generate(
        self,
        user_id: str,
        day: date,
        tone: str | None = None,
        length: str | None = None,
        custom_prompt: str | None = None,
        sprint_goal: str | None = None,
        username: str | None = None,
    ) -> StandupRecord:
        """Generate (or regenerate) the standup for ``user_id`` on ``day``."""
        start = time.monotonic()
        preferences = self._preferences(tone, length, custom_prompt, sprint_goal)
        activity, discovered = await self._collect_activity(user_id, day)
        result = await self._produce(activity, preferences, day, username or discovered or user_id)
        record = await self._store(user_id, day, result, activity, preferences)
        GENERATION_DURATION.observe(time.monotonic() - start)
        return record

    async def regenerate(
        self,
        user_id: str,
        standup_id: str,
        tone: str | None = None,
        length: str | None = None,
        custom_prompt: str | None = None,
        sprint_goal: str | None = None,
        username: str | None = None,
    ) -> StandupRecord:
        """Regenerate a stored standup from its captured activity. No refetch.

        Raises:
            NotFoundError: no standup with that id belongs to the user.
        """
        start = time.monotonic()
        original = await self._ledger.get(user_id, standup_id)
        previous = original["preferences"]
        preferences = self._preferences(
            tone or previous.get("tone"),
            length or previous.get("length"),
            custom_prompt if custom_prompt is not None else previous.get("custom_prompt"),
            sprint_goal if sprint_goal is not None else previous.get("sprint_goal"),
        )
        day = date.fromisoformat(original["date"])
        activity: NormalizedActivity | None = original["raw_data"]  # type: ignore[assignment]
        result = await self._produce(activity, preferences, day, username or user_id)
        record = await self._store(user_id, day, result, activity, preferences)
        GENERATION_DURATION.observe(time.monotonic() - start)
        return record

    async def active_users(self) -> list[str]:
        """Users with an active credential for this orchestrator's provider."""
        return await self._credentials.active_users(self._provider_type)

    async def list(self, user_id: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> list[StandupRecord]:
        return await self._ledger.list(user_id, limit=limit, offset=offset)

    async def find_by_date(self, user_id: str, day: date) -> StandupRecord | None:
        return await self._ledger.find_by_date(user_id, day)

    async def get(self, user_id: str, standup_id: str) -> StandupRecord:
        return await self._ledger.get(user_id, standup_id)

    async def remove(self, user_id: str, standup_id: str) -> None:
        await self._ledger.remove(user_id, standup_id)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _collect_activity(self, user_id: str, day: date) -> tuple[NormalizedActivity | None, str | None]:
        """Return (activity, account username). Absent activity is not an error."""
        credential = await self._credentials.resolve(user_id, self._provider_type)
        if credential is None:
            logger.info("No active %s credential for %s; skipping aggregation", self._provider_type, user_id)
            return None, None

        discovered: list[str] = []

        async def on_username(name: str) -> None:
            discovered.append(name)
            await self._credentials.remember_username(credential, name)

        window = ActivityWindow.preceding(day, days=self._settings.activity_lookback_days)
        try:
            activity = await self._aggregator.fetch_activity(credential, window, on_username=on_username)
        except CredentialError as e:
            logger.warning("Credential rejected for %s: %s", user_id, e)
            await self._credentials.deactivate(user_id, self._provider_type)
            CREDENTIALS_DEACTIVATED.inc()
            return None, credential.username

        await self._mark_synced(credential)
        return activity, discovered[-1] if discovered else credential.username

    async def _mark_synced(self, credential: ResolvedCredential) -> None:
        try:
            await self._credentials.mark_synced(credential.user_id, credential.provider_type)
        except Exception:
            logger.debug("Failed to record sync time for %s", credential.user_id, exc_info=True)

    async def _produce(
        self,
        activity: NormalizedActivity | None,
        preferences: Preferences,
        day: date,
        username: str,
    ) -> GenerationResult:
        if self.llm_active and is_empty(activity):
            logger.info("No activity for %s; skipping LLM call", day.isoformat())
            return GenerationResult(
                content=no_activity_content(day),
                metadata=GenerationMetadata(
                    source="no_activity",
                    model=None,
                    tokens_used=None,
                    cost=None,
                    generated_at=datetime.now(UTC).isoformat(),
                ),
            )
        request = GenerationRequest(activity=activity, preferences=preferences, date=day, username=username)
        return await self._pipeline.generate(request, use_llm=self._mode.llm_enabled)

    async def _store(
        self,
        user_id: str,
        day: date,
        result: GenerationResult,
        activity: NormalizedActivity | None,
        preferences: Preferences,
    ) -> StandupRecord:
        raw_data: dict[str, Any] | None = dict(activity) if activity is not None else None
        record = await self._ledger.upsert_generate(
            user_id,
            day,
            result["content"],
            raw_data,
            preferences,
            result["metadata"],
        )
        try:
            STANDUPS_TOTAL.labels(source=result["metadata"]["source"]).inc()
        except Exception:
            logger.debug("Failed to record standup metric", exc_info=True)
        return record


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def _build_vault(settings: Settings, mode: Mode) -> CredentialVault:
    if not settings.encryption_key and mode is Mode.DEVELOPMENT:
        logger.warning("ENCRYPTION_KEY not set; using a throwaway key for this development session")
        return CredentialVault(os.urandom(KEY_BYTES))
    return CredentialVault.from_settings(settings)


def build_orchestrator(settings: Settings | None = None) -> Orchestrator:
    """Wire an Orchestrator from settings.

    Uses SQLite stores when ``standup_db_path`` is set, in-memory stores
    otherwise.
    """
    settings = settings or get_settings()
    mode = resolve_mode(settings)

    credential_store: CredentialStore
    standup_store: StandupStore
    if settings.standup_db_path:
        conn = get_initialized_connection(settings.standup_db_path)
        conn_lock = threading.Lock()
        credential_store = SqliteCredentialStore(conn, lock=conn_lock)
        standup_store = SqliteStandupStore(conn, lock=conn_lock)
    else:
        logger.info("STANDUP_DB_PATH not set; using in-memory stores")
        credential_store = InMemoryCredentialStore()
        standup_store = InMemoryStandupStore()

    return Orchestrator(
        credentials=CredentialService(credential_store, _build_vault(settings, mode)),
        aggregator=ActivityAggregator(settings),
        pipeline=GenerationPipeline.from_settings(settings, llm_enabled=mode.llm_enabled),
        ledger=StandupLedger(standup_store),
        mode=mode,
        settings=settings,
    )

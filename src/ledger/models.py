"""TypedDict model for persisted standup records."""

from typing import Any, TypedDict

from src.generation.models import GenerationMetadata, Preferences


class StandupRecord(TypedDict):
    id: str  # stable across regenerations of the same day
    user_id: str
    date: str  # calendar day, ISO 8601 (YYYY-MM-DD)
    content: str
    raw_data: dict[str, Any] | None  # the NormalizedActivity used
    preferences: Preferences
    generation_metadata: GenerationMetadata
    replaced_count: int
    generated_at: str  # ISO 8601 instant, refreshed on every regeneration

"""TypedDict models for generation requests and results."""

from datetime import date
from typing import Literal, NotRequired, TypedDict

from src.activity.models import NormalizedActivity

# llm: LLM succeeded. fallback: LLM attempted and failed. basic: no LLM
# configured (or disabled by mode). no_activity: nothing to summarize, LLM skipped.
GenerationSource = Literal["llm", "fallback", "basic", "no_activity"]


class Preferences(TypedDict):
    tone: str
    length: str  # short | medium | long
    custom_prompt: NotRequired[str | None]
    sprint_goal: NotRequired[str | None]


class GenerationMetadata(TypedDict):
    source: GenerationSource
    model: str | None
    tokens_used: int | None
    cost: float | None
    generated_at: str  # ISO 8601


class GenerationRequest(TypedDict):
    activity: NormalizedActivity | None
    preferences: Preferences
    date: date
    username: str


class GenerationResult(TypedDict):
    content: str
    metadata: GenerationMetadata

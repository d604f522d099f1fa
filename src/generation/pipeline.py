"""Standup generation: LLM call with a deterministic template fallback.

The pipeline never lets an LLM failure escape. Network errors, auth
errors, quota errors, timeouts, and empty completions all fall back to
:func:`fallback_generate`, and ``metadata.source`` records why.
"""

import logging
import random
from datetime import UTC, date, datetime, timedelta

from src.activity.models import NormalizedActivity, is_empty
from src.config import Settings
from src.errors import GenerationError
from src.generation.llm import LLMClient, build_llm_client
from src.generation.models import (
    GenerationMetadata,
    GenerationRequest,
    GenerationResult,
    GenerationSource,
    Preferences,
)
from src.generation.prompts import NO_SPRINT_GOAL, PromptTemplate, fill_template, get_prompt
from src.observability.metrics import LLM_CALLS_TOTAL, LLM_ESTIMATED_COST, LLM_TOKEN_USAGE

logger = logging.getLogger(__name__)

MAX_COMMITS = 5
MAX_PULL_REQUESTS = 3
MAX_ISSUES = 3

NO_ACTIVITY_TEXT = "No source-control activity found."

MAX_TOKENS_BY_LENGTH: dict[str, int] = {"short": 150, "medium": 300, "long": 500}
DEFAULT_MAX_TOKENS = MAX_TOKENS_BY_LENGTH["medium"]

DEFAULT_TEMPERATURE = 0.7

# USD per 1,000 tokens.  Keys are model name prefixes; longest match wins.
COST_PER_1K_TOKENS: dict[str, float] = {
    "gpt-4o-mini": 0.000375,
    "openai/gpt-4o-mini": 0.000375,
    "gpt-4o": 0.00625,
    "claude-3-5-haiku": 0.0024,
}
DEFAULT_COST_PER_1K_TOKENS = 0.000375

# Fallback template section headers
STANDUP_HEADER = "## Daily Standup"
YESTERDAY_HEADER = "**Yesterday"
TODAY_HEADER = "**Today:**"
BLOCKERS_HEADER = "**Blockers:**"

# Generic bullets, paired by index so yesterday and today share a theme.
GENERIC_YESTERDAY: tuple[tuple[str, ...], ...] = (
    ("Worked on development tasks", "Reviewed code and made improvements", "Collaborated with team members"),
    ("Implemented feature changes", "Fixed bugs found in testing", "Updated project documentation"),
    ("Investigated an open issue", "Refactored supporting code", "Paired with a teammate on a design question"),
)
GENERIC_TODAY: tuple[tuple[str, ...], ...] = (
    ("Continue current project work", "Address any priority items", "Participate in team meetings"),
    ("Finish the feature in progress", "Verify the bug fixes", "Review open pull requests"),
    ("Ship the fix for the open issue", "Add tests around the refactor", "Write up the design decision"),
)
BLOCKER_PHRASES: tuple[str, ...] = (
    "None at this time",
    "Waiting on code review",
    "Waiting on clarification of requirements",
    "None, keeping an eye on CI stability",
)


# ---------------------------------------------------------------------------
# Prompt construction
# ---------------------------------------------------------------------------


def _first_line(text: str) -> str:
    return text.strip().splitlines()[0] if text.strip() else ""


def format_activity(activity: NormalizedActivity | None) -> str:
    """Render activity as a compact summary: up to 5 commits, 3 PRs, 3 issues."""
    if activity is None or is_empty(activity):
        return NO_ACTIVITY_TEXT

    sections: list[str] = []
    commits = activity["commits"]
    if commits:
        lines = [f"Commits ({len(commits)}):"]
        lines.extend(f"- {_first_line(c['message'])} ({c['repository']})" for c in commits[:MAX_COMMITS])
        sections.append("\n".join(lines))

    prs = activity["pull_requests"]
    if prs:
        lines = [f"Pull Requests ({len(prs)}):"]
        lines.extend(f"- {pr['action']}: {pr['title']} ({pr['repository']})" for pr in prs[:MAX_PULL_REQUESTS])
        sections.append("\n".join(lines))

    issues = activity["issues"]
    if issues:
        lines = [f"Issues ({len(issues)}):"]
        lines.extend(f"- {i['action']}: {i['title']} ({i['repository']})" for i in issues[:MAX_ISSUES])
        sections.append("\n".join(lines))

    return "\n\n".join(sections)


def build_prompt(
    tone: str,
    activity: NormalizedActivity | None,
    preferences: Preferences,
    day: date,
) -> PromptTemplate:
    """Return the filled system/user prompt pair for ``tone``."""
    template = get_prompt(tone)
    user = fill_template(
        template.user,
        {
            "activity_data": format_activity(activity),
            "sprint_goal": preferences.get("sprint_goal") or NO_SPRINT_GOAL,
            "tone": tone,
            "length": preferences["length"],
            "date": day.strftime("%a %b %d %Y"),
            "custom_prompt": preferences.get("custom_prompt") or "",
        },
    )
    return PromptTemplate(system=template.system, user=user)


def max_tokens_for(length: str) -> int:
    return MAX_TOKENS_BY_LENGTH.get(length, DEFAULT_MAX_TOKENS)


def cost_for(tokens_used: int, model: str, default_unit_cost: float = DEFAULT_COST_PER_1K_TOKENS) -> float:
    unit_cost = default_unit_cost
    best = ""
    for prefix, cost in COST_PER_1K_TOKENS.items():
        if model.startswith(prefix) and len(prefix) > len(best):
            best, unit_cost = prefix, cost
    return tokens_used / 1000 * unit_cost


# ---------------------------------------------------------------------------
# Deterministic fallback
# ---------------------------------------------------------------------------


def _activity_bullets(activity: NormalizedActivity) -> tuple[list[str], list[str]]:
    """Yesterday bullets from real activity, plus follow-ups for still-open work."""
    done: list[str] = []
    follow_ups: list[str] = []
    for c in activity["commits"][:MAX_COMMITS]:
        done.append(f"Committed: {_first_line(c['message'])} ({c['repository']})")
    for pr in activity["pull_requests"][:MAX_PULL_REQUESTS]:
        done.append(f"{pr['action'].capitalize()} PR #{pr['id']}: {pr['title']} ({pr['repository']})")
        if pr["lifecycle_state"] == "open":
            follow_ups.append(f"Follow up on PR #{pr['id']}: {pr['title']}")
    for issue in activity["issues"][:MAX_ISSUES]:
        done.append(f"{issue['action'].capitalize()} issue #{issue['id']}: {issue['title']} ({issue['repository']})")
        if issue["lifecycle_state"] == "open":
            follow_ups.append(f"Continue work on issue #{issue['id']}: {issue['title']}")
    return done, follow_ups


def fallback_generate(
    activity: NormalizedActivity | None,
    preferences: Preferences,
    day: date,
    username: str,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> str:
    """Build a standup from a fixed template. Needs no network access."""
    _ = preferences  # the template has a single fixed shape
    rng = rng or random.Random()
    now = now or datetime.now(UTC)
    theme = rng.randrange(len(GENERIC_YESTERDAY))
    blocker = rng.choice(BLOCKER_PHRASES)

    if activity is None or is_empty(activity):
        yesterday = list(GENERIC_YESTERDAY[theme])
        today = list(GENERIC_TODAY[theme])
    else:
        yesterday, today = _activity_bullets(activity)
        if not today:
            today = list(GENERIC_TODAY[theme])

    previous_day = day - timedelta(days=1)
    lines = [
        f"{STANDUP_HEADER} - {day.strftime('%a %b %d %Y')}",
        "",
        f"{YESTERDAY_HEADER} ({previous_day.strftime('%a %b %d %Y')}):**",
        *[f"- {b}" for b in yesterday],
        "",
        TODAY_HEADER,
        *[f"- {b}" for b in today],
        "",
        BLOCKERS_HEADER,
        f"- {blocker}",
        "",
        f"Generated for {username} at {now.strftime('%Y-%m-%d %H:%M UTC')}",
    ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def _metadata(
    source: GenerationSource,
    model: str | None = None,
    tokens_used: int | None = None,
    cost: float | None = None,
) -> GenerationMetadata:
    return GenerationMetadata(
        source=source,
        model=model,
        tokens_used=tokens_used,
        cost=cost,
        generated_at=datetime.now(UTC).isoformat(),
    )


class GenerationPipeline:
    def __init__(
        self,
        llm_client: LLMClient | None,
        temperature: float = DEFAULT_TEMPERATURE,
        default_unit_cost: float = DEFAULT_COST_PER_1K_TOKENS,
        rng: random.Random | None = None,
    ) -> None:
        self._llm = llm_client
        self._temperature = temperature
        self._default_unit_cost = default_unit_cost
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: Settings, llm_enabled: bool = True) -> "GenerationPipeline":
        return cls(
            build_llm_client(settings) if llm_enabled else None,
            temperature=settings.llm_temperature,
            default_unit_cost=settings.llm_cost_per_1k_tokens,
        )

    @property
    def llm_configured(self) -> bool:
        return self._llm is not None

    def _fallback(self, request: GenerationRequest, source: GenerationSource) -> GenerationResult:
        content = fallback_generate(
            request["activity"],
            request["preferences"],
            request["date"],
            request["username"],
            rng=self._rng,
        )
        return GenerationResult(content=content, metadata=_metadata(source))

    async def generate(self, request: GenerationRequest, use_llm: bool = True) -> GenerationResult:
        """Generate standup text. Always returns a result.

        ``use_llm=False`` forces the template path even when a client is
        configured, reported as ``basic``.
        """
        if self._llm is None or not use_llm:
            return self._fallback(request, "basic")

        preferences = request["preferences"]
        prompt = build_prompt(preferences["tone"], request["activity"], preferences, request["date"])
        try:
            completion = await self._llm.complete(
                prompt.system,
                prompt.user,
                max_tokens=max_tokens_for(preferences["length"]),
                temperature=self._temperature,
            )
            if not completion["text"].strip():
                msg = "LLM returned empty content"
                raise GenerationError(msg)
        except Exception as e:
            LLM_CALLS_TOTAL.labels(status="error").inc()
            logger.warning("LLM generation failed, using fallback template: %s", e)
            return self._fallback(request, "fallback")

        tokens_used = completion["tokens_used"]
        cost = cost_for(tokens_used, self._llm.model, self._default_unit_cost)
        LLM_CALLS_TOTAL.labels(status="success").inc()
        LLM_TOKEN_USAGE.inc(tokens_used)
        LLM_ESTIMATED_COST.inc(cost)
        return GenerationResult(
            content=completion["text"].strip(),
            metadata=_metadata("llm", model=self._llm.model, tokens_used=tokens_used, cost=cost),
        )

"""Unit tests for observability metrics and where they are recorded."""

from datetime import UTC, date, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from prometheus_client import REGISTRY

from src.activity.aggregator import ActivityAggregator
from src.activity.models import ActivityWindow, Repository
from src.generation.llm import Completion
from src.generation.models import GenerationRequest, Preferences
from src.generation.pipeline import GenerationPipeline
from src.observability.metrics import (
    CREDENTIALS_DEACTIVATED,
    GENERATION_DURATION,
    LLM_CALLS_TOTAL,
    LLM_ESTIMATED_COST,
    LLM_TOKEN_USAGE,
    REPOSITORY_FETCH_FAILURES,
    SCHEDULED_RUNS_TOTAL,
    STANDUPS_TOTAL,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _sample(metric_name: str, labels: dict[str, str] | None = None) -> float:
    """Read current value from the default registry (0.0 if never recorded)."""
    return REGISTRY.get_sample_value(metric_name, labels or {}) or 0.0


def _request() -> GenerationRequest:
    return GenerationRequest(
        activity=None,
        preferences=Preferences(tone="professional", length="medium"),
        date=date(2024, 1, 3),
        username="octocat",
    )


# ---------------------------------------------------------------------------
# Metric definition tests
# ---------------------------------------------------------------------------


class TestMetricDefinitions:
    """Verify all expected metrics are registered with correct types."""

    def test_standups_total_is_counter(self) -> None:
        assert STANDUPS_TOTAL._type == "counter"

    def test_generation_duration_is_histogram(self) -> None:
        assert GENERATION_DURATION._type == "histogram"

    def test_scheduled_runs_is_counter(self) -> None:
        assert SCHEDULED_RUNS_TOTAL._type == "counter"

    def test_repository_fetch_failures_is_counter(self) -> None:
        assert REPOSITORY_FETCH_FAILURES._type == "counter"

    def test_credentials_deactivated_is_counter(self) -> None:
        assert CREDENTIALS_DEACTIVATED._type == "counter"

    def test_llm_metrics_are_counters(self) -> None:
        assert LLM_CALLS_TOTAL._type == "counter"
        assert LLM_TOKEN_USAGE._type == "counter"
        assert LLM_ESTIMATED_COST._type == "counter"


# ---------------------------------------------------------------------------
# Recording sites
# ---------------------------------------------------------------------------


class TestLLMMetrics:
    async def test_success_records_tokens_and_cost(self) -> None:
        llm = MagicMock()
        llm.model = "gpt-4o-mini"
        llm.complete = AsyncMock(return_value=Completion(text="ok", tokens_used=4000))
        calls_before = _sample("standup_engine_llm_calls_total", {"status": "success"})
        tokens_before = _sample("standup_engine_llm_token_usage_total")
        cost_before = _sample("standup_engine_llm_estimated_cost_dollars_total")

        await GenerationPipeline(llm).generate(_request())

        assert _sample("standup_engine_llm_calls_total", {"status": "success"}) - calls_before == 1
        assert _sample("standup_engine_llm_token_usage_total") - tokens_before == 4000
        assert abs(_sample("standup_engine_llm_estimated_cost_dollars_total") - cost_before - 0.0015) < 1e-9

    async def test_failure_records_error(self) -> None:
        llm = MagicMock()
        llm.model = "gpt-4o-mini"
        llm.complete = AsyncMock(side_effect=RuntimeError("boom"))
        before = _sample("standup_engine_llm_calls_total", {"status": "error"})

        await GenerationPipeline(llm).generate(_request())

        assert _sample("standup_engine_llm_calls_total", {"status": "error"}) - before == 1


class TestRepositoryFailureMetric:
    async def test_failed_repository_counted(self, mock_settings: Any) -> None:
        client = MagicMock()
        client.list_accessible_repositories = AsyncMock(
            return_value=[Repository(full_name="acme/api", owner="acme", name="api")]
        )
        client.list_commits = AsyncMock(side_effect=RuntimeError("500"))
        window = ActivityWindow(since=datetime(2024, 1, 2, tzinfo=UTC), until=datetime(2024, 1, 3, tzinfo=UTC))
        before = _sample("standup_engine_repository_fetch_failures_total")

        await ActivityAggregator(mock_settings).aggregate(client, window)

        assert _sample("standup_engine_repository_fetch_failures_total") - before == 1

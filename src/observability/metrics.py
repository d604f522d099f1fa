"""Prometheus metric definitions for standup engine self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Histogram

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

GENERATION_DURATION_BUCKETS = (0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0)

# ---------------------------------------------------------------------------
# Standup-level metrics
# ---------------------------------------------------------------------------

STANDUPS_TOTAL = Counter(
    "standup_engine_standups_total",
    "Total number of generated standups",
    labelnames=["source"],
)

GENERATION_DURATION = Histogram(
    "standup_engine_generation_duration_seconds",
    "End-to-end standup generation duration in seconds",
    buckets=GENERATION_DURATION_BUCKETS,
)

SCHEDULED_RUNS_TOTAL = Counter(
    "standup_engine_scheduled_runs_total",
    "Scheduled per-user standup generations",
    labelnames=["status"],
)

# ---------------------------------------------------------------------------
# Provider metrics
# ---------------------------------------------------------------------------

REPOSITORY_FETCH_FAILURES = Counter(
    "standup_engine_repository_fetch_failures_total",
    "Repositories whose activity could not be fetched",
)

CREDENTIALS_DEACTIVATED = Counter(
    "standup_engine_credentials_deactivated_total",
    "Credentials deactivated after failed provider verification",
)

# ---------------------------------------------------------------------------
# LLM metrics
# ---------------------------------------------------------------------------

LLM_CALLS_TOTAL = Counter(
    "standup_engine_llm_calls_total",
    "Total number of LLM calls",
    labelnames=["status"],
)

LLM_TOKEN_USAGE = Counter(
    "standup_engine_llm_token_usage",
    "Total LLM tokens used",
)

LLM_ESTIMATED_COST = Counter(
    "standup_engine_llm_estimated_cost_dollars",
    "Estimated cumulative LLM cost in USD",
)

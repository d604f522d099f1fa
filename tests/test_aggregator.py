"""Unit tests for activity classification, normalization, and aggregation."""

from datetime import UTC, date, datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest

from src.activity.aggregator import (
    ActivityAggregator,
    classify_issue,
    classify_pull_request,
    normalize_commit,
    normalize_pull_request,
)
from src.activity.models import ActivityWindow, Repository, empty_activity, is_empty, parse_timestamp
from src.credentials.models import GITHUB, ResolvedCredential
from src.errors import CredentialError

WINDOW = ActivityWindow(since=datetime(2024, 1, 1, tzinfo=UTC), until=datetime(2024, 1, 4, tzinfo=UTC))
EARLY_WINDOW = ActivityWindow(since=datetime(2023, 12, 1, tzinfo=UTC), until=datetime(2023, 12, 31, tzinfo=UTC))

REPO_A = Repository(full_name="acme/api", owner="acme", name="api")
REPO_B = Repository(full_name="acme/web", owner="acme", name="web")


def _pr(**overrides: Any) -> dict[str, Any]:
    pr: dict[str, Any] = {
        "number": 12,
        "title": "Add export endpoint",
        "html_url": "https://github.test/acme/api/pull/12",
        "state": "open",
        "created_at": "2023-11-20T10:00:00Z",
        "updated_at": "2024-01-02T12:00:00Z",
        "closed_at": None,
        "merged_at": None,
    }
    pr.update(overrides)
    return pr


def _issue(**overrides: Any) -> dict[str, Any]:
    issue: dict[str, Any] = {
        "number": 5,
        "title": "Login is slow",
        "html_url": "https://github.test/acme/api/issues/5",
        "state": "open",
        "created_at": "2023-11-20T10:00:00Z",
        "updated_at": "2024-01-02T12:00:00Z",
        "closed_at": None,
    }
    issue.update(overrides)
    return issue


def _commit(sha: str, message: str, when: str) -> dict[str, Any]:
    return {
        "sha": sha,
        "html_url": f"https://github.test/acme/api/commit/{sha}",
        "author": {"login": "octocat"},
        "commit": {"message": message, "author": {"name": "Octo Cat", "date": when}},
    }


MERGED_PR = _pr(
    state="closed",
    created_at="2024-01-02T09:00:00Z",
    updated_at="2024-01-03T09:00:00Z",
    closed_at="2024-01-03T09:00:00Z",
    merged_at="2024-01-03T09:00:00Z",
)


class TestActivityWindow:
    def test_half_open(self) -> None:
        assert WINDOW.contains(datetime(2024, 1, 1, tzinfo=UTC))
        assert not WINDOW.contains(datetime(2024, 1, 4, tzinfo=UTC))
        assert not WINDOW.contains(None)

    def test_requires_aware_bounds(self) -> None:
        with pytest.raises(ValueError, match="timezone-aware"):
            ActivityWindow(since=datetime(2024, 1, 1), until=datetime(2024, 1, 2))  # noqa: DTZ001

    def test_requires_ordered_bounds(self) -> None:
        with pytest.raises(ValueError, match="after"):
            ActivityWindow(since=datetime(2024, 1, 2, tzinfo=UTC), until=datetime(2024, 1, 1, tzinfo=UTC))

    def test_preceding_day(self) -> None:
        window = ActivityWindow.preceding(date(2024, 1, 3))
        assert window.since == datetime(2024, 1, 2, tzinfo=UTC)
        assert window.until == datetime(2024, 1, 3, tzinfo=UTC)

    def test_preceding_multiple_days(self) -> None:
        window = ActivityWindow.preceding(date(2024, 1, 8), days=3)
        assert window.since == datetime(2024, 1, 5, tzinfo=UTC)

    def test_for_day(self) -> None:
        window = ActivityWindow.for_day(date(2024, 2, 29))
        assert window.until == datetime(2024, 3, 1, tzinfo=UTC)


class TestParseTimestamp:
    def test_zulu(self) -> None:
        assert parse_timestamp("2024-01-02T03:04:05Z") == datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)

    def test_naive_defaults_to_utc(self) -> None:
        parsed = parse_timestamp("2024-01-02T03:04:05")
        assert parsed is not None
        assert parsed.tzinfo is not None

    def test_empty(self) -> None:
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None


class TestClassifyPullRequest:
    def test_created_and_merged_in_window_is_merged(self) -> None:
        assert classify_pull_request(MERGED_PR, WINDOW) == "merged"

    def test_outside_window_is_reviewed(self) -> None:
        assert classify_pull_request(MERGED_PR, EARLY_WINDOW) == "reviewed"

    def test_opened_in_window(self) -> None:
        assert classify_pull_request(_pr(created_at="2024-01-02T00:00:00Z"), WINDOW) == "opened"

    def test_closed_without_merge(self) -> None:
        pr = _pr(state="closed", closed_at="2024-01-02T00:00:00Z")
        assert classify_pull_request(pr, WINDOW) == "closed"

    def test_merged_before_window_but_updated_in_it(self) -> None:
        pr = _pr(state="closed", closed_at="2023-12-20T00:00:00Z", merged_at="2023-12-20T00:00:00Z")
        assert classify_pull_request(pr, WINDOW) == "reviewed"

    def test_touched_only(self) -> None:
        assert classify_pull_request(_pr(), WINDOW) == "reviewed"


class TestClassifyIssue:
    def test_opened(self) -> None:
        assert classify_issue(_issue(created_at="2024-01-01T00:00:00Z"), WINDOW) == "opened"

    def test_closed(self) -> None:
        assert classify_issue(_issue(state="closed", closed_at="2024-01-03T23:59:59Z"), WINDOW) == "closed"

    def test_commented(self) -> None:
        assert classify_issue(_issue(), WINDOW) == "commented"


class TestNormalize:
    def test_commit(self) -> None:
        commit = normalize_commit(_commit("abc", "Fix bug\n\nLong body", "2024-01-02T00:00:00Z"), REPO_A)
        assert commit["id"] == "abc"
        assert commit["author"] == "octocat"
        assert commit["repository"] == "acme/api"
        assert commit["timestamp"] == "2024-01-02T00:00:00Z"

    def test_commit_without_account_falls_back_to_git_name(self) -> None:
        raw = _commit("abc", "msg", "2024-01-02T00:00:00Z")
        raw["author"] = None
        assert normalize_commit(raw, REPO_A)["author"] == "Octo Cat"

    def test_pull_request_lifecycle(self) -> None:
        event = normalize_pull_request(MERGED_PR, REPO_A, WINDOW)
        assert event["lifecycle_state"] == "merged"
        assert event["action"] == "merged"
        assert event["id"] == 12

    def test_empty_activity(self) -> None:
        assert is_empty(None)
        assert is_empty(empty_activity())


# ---------------------------------------------------------------------------
# Aggregation with a fake provider client
# ---------------------------------------------------------------------------


class FakeClient:
    def __init__(self, repos: list[Repository], failing: set[str] | None = None) -> None:
        self.repos = repos
        self.failing = failing or set()
        self.username: str | None = "octocat"
        self.verify = AsyncMock()
        self.aclose = AsyncMock()

    async def __aenter__(self) -> "FakeClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def list_accessible_repositories(self, window: ActivityWindow) -> list[Repository]:
        return self.repos

    async def list_commits(self, repo: Repository, window: ActivityWindow) -> list[dict[str, Any]]:
        if repo["full_name"] in self.failing:
            msg = "boom"
            raise RuntimeError(msg)
        return [
            _commit(f"{repo['name']}-1", f"Work on {repo['name']}", "2024-01-02T10:00:00Z"),
            _commit(f"{repo['name']}-old", "Old work", "2023-12-01T10:00:00Z"),
        ]

    async def list_pull_requests(self, repo: Repository) -> list[dict[str, Any]]:
        return [MERGED_PR, _pr(number=99, updated_at="2023-10-01T00:00:00Z")]

    async def list_issues(self, repo: Repository, window: ActivityWindow) -> list[dict[str, Any]]:
        return [_issue()]


def _credential(**metadata: Any) -> ResolvedCredential:
    return ResolvedCredential(user_id="u1", provider_type=GITHUB, access_token="t", metadata=metadata)


class TestAggregate:
    async def test_one_failing_repository_does_not_abort(self, mock_settings: Any) -> None:
        client = FakeClient([REPO_A, REPO_B], failing={"acme/api"})
        aggregator = ActivityAggregator(mock_settings)
        activity = await aggregator.aggregate(client, WINDOW)
        assert [c["id"] for c in activity["commits"]] == ["web-1"]
        assert len(activity["pull_requests"]) == 1
        assert activity["pull_requests"][0]["repository"] == "acme/web"

    async def test_filters_to_window(self, mock_settings: Any) -> None:
        activity = await ActivityAggregator(mock_settings).aggregate(FakeClient([REPO_A]), WINDOW)
        assert [c["id"] for c in activity["commits"]] == ["api-1"]
        assert [pr["id"] for pr in activity["pull_requests"]] == [12]
        assert [i["action"] for i in activity["issues"]] == ["commented"]

    async def test_listing_failure_returns_empty(self, mock_settings: Any) -> None:
        client = FakeClient([REPO_A])
        client.list_accessible_repositories = AsyncMock(side_effect=RuntimeError("down"))  # type: ignore[method-assign]
        activity = await ActivityAggregator(mock_settings).aggregate(client, WINDOW)
        assert is_empty(activity)

    async def test_all_repositories_failing(self, mock_settings: Any) -> None:
        client = FakeClient([REPO_A, REPO_B], failing={"acme/api", "acme/web"})
        activity = await ActivityAggregator(mock_settings).aggregate(client, WINDOW)
        assert activity["commits"] == []


class TestFetchActivity:
    async def test_unusable_credential_returns_none(self, mock_settings: Any) -> None:
        aggregator = ActivityAggregator(mock_settings, client_factory=lambda c, s: None)
        assert await aggregator.fetch_activity(_credential(), WINDOW) is None

    async def test_rejected_credential_raises(self, mock_settings: Any) -> None:
        client = FakeClient([REPO_A])
        client.verify = AsyncMock(side_effect=CredentialError("bad token"))
        aggregator = ActivityAggregator(mock_settings, client_factory=lambda c, s: client)
        with pytest.raises(CredentialError):
            await aggregator.fetch_activity(_credential(), WINDOW)
        client.aclose.assert_awaited_once()

    async def test_unreachable_provider_returns_none(self, mock_settings: Any) -> None:
        client = FakeClient([REPO_A])
        client.verify = AsyncMock(side_effect=ConnectionError("no route"))
        aggregator = ActivityAggregator(mock_settings, client_factory=lambda c, s: client)
        assert await aggregator.fetch_activity(_credential(), WINDOW) is None

    async def test_reports_discovered_username(self, mock_settings: Any) -> None:
        client = FakeClient([REPO_A])
        on_username = AsyncMock()
        aggregator = ActivityAggregator(mock_settings, client_factory=lambda c, s: client)
        activity = await aggregator.fetch_activity(_credential(), WINDOW, on_username=on_username)
        assert activity is not None
        assert len(activity["commits"]) == 1
        on_username.assert_awaited_once_with("octocat")
        client.aclose.assert_awaited_once()

    async def test_known_username_not_reported(self, mock_settings: Any) -> None:
        client = FakeClient([REPO_A])
        on_username = AsyncMock()
        aggregator = ActivityAggregator(mock_settings, client_factory=lambda c, s: client)
        await aggregator.fetch_activity(_credential(username="octocat"), WINDOW, on_username=on_username)
        on_username.assert_not_awaited()

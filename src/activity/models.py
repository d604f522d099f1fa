"""Activity window and normalized activity types."""

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Literal, TypedDict

PullRequestState = Literal["open", "closed", "merged"]
PullRequestAction = Literal["opened", "reviewed", "merged", "closed"]
IssueState = Literal["open", "closed"]
IssueAction = Literal["opened", "closed", "commented"]


@dataclass(frozen=True)
class ActivityWindow:
    """Half-open time interval [since, until). Both ends are timezone-aware."""

    since: datetime
    until: datetime

    def __post_init__(self) -> None:
        if self.since.tzinfo is None or self.until.tzinfo is None:
            msg = "ActivityWindow bounds must be timezone-aware"
            raise ValueError(msg)
        if self.until <= self.since:
            msg = "ActivityWindow until must be after since"
            raise ValueError(msg)

    def contains(self, instant: datetime | None) -> bool:
        if instant is None:
            return False
        return self.since <= instant < self.until

    @classmethod
    def for_day(cls, day: date) -> "ActivityWindow":
        """The UTC calendar day as a window."""
        start = datetime.combine(day, time.min, tzinfo=UTC)
        return cls(since=start, until=start + timedelta(days=1))

    @classmethod
    def preceding(cls, day: date, days: int = 1) -> "ActivityWindow":
        """The ``days`` UTC calendar days immediately before ``day``."""
        if days < 1:
            msg = "Lookback must be at least one day"
            raise ValueError(msg)
        until = datetime.combine(day, time.min, tzinfo=UTC)
        return cls(since=until - timedelta(days=days), until=until)


class Repository(TypedDict):
    full_name: str  # "owner/name"
    owner: str
    name: str


class Commit(TypedDict):
    id: str  # sha
    message: str
    url: str
    author: str
    timestamp: str  # ISO 8601
    repository: str


class PullRequestEvent(TypedDict):
    id: int
    title: str
    url: str
    lifecycle_state: PullRequestState
    created_at: str
    updated_at: str
    repository: str
    action: PullRequestAction


class IssueEvent(TypedDict):
    id: int
    title: str
    url: str
    lifecycle_state: IssueState
    created_at: str
    updated_at: str
    repository: str
    action: IssueAction


class NormalizedActivity(TypedDict):
    commits: list[Commit]
    pull_requests: list[PullRequestEvent]
    issues: list[IssueEvent]


def empty_activity() -> NormalizedActivity:
    return NormalizedActivity(commits=[], pull_requests=[], issues=[])


def is_empty(activity: NormalizedActivity | None) -> bool:
    """True for absent activity or activity with no commits, PRs, or issues."""
    if activity is None:
        return True
    return not (activity["commits"] or activity["pull_requests"] or activity["issues"])


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO 8601 / GitHub ``Z`` timestamp into an aware datetime."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)

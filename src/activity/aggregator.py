"""Activity aggregation across every repository a credential can see.

Repositories are fetched concurrently under a semaphore. Each repository is
independent: a failure is logged as a ``PartialFetchError`` and contributes
nothing, while the remaining repositories are still aggregated. Sibling
fetches are never cancelled because ``asyncio.gather`` runs with
``return_exceptions=True``.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from src.activity.github import ProviderClient, build_provider_client
from src.activity.models import (
    ActivityWindow,
    Commit,
    IssueAction,
    IssueEvent,
    NormalizedActivity,
    PullRequestAction,
    PullRequestEvent,
    Repository,
    empty_activity,
    parse_timestamp,
)
from src.config import Settings, get_settings
from src.credentials.models import ResolvedCredential
from src.errors import CredentialError, PartialFetchError
from src.observability.metrics import REPOSITORY_FETCH_FAILURES

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ResolvedCredential, Settings], ProviderClient | None]
UsernameCallback = Callable[[str], Awaitable[None]]


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def classify_pull_request(raw: dict[str, Any], window: ActivityWindow) -> PullRequestAction:
    """Pick the most significant thing that happened to a PR inside the window.

    Terminal events win over creation: a PR opened and merged in the same
    window is reported as merged.
    """
    closed_at = parse_timestamp(raw.get("closed_at"))
    merged_at = parse_timestamp(raw.get("merged_at"))
    if raw.get("state") == "closed" and window.contains(closed_at or merged_at):
        return "merged" if merged_at is not None else "closed"
    if window.contains(parse_timestamp(raw.get("created_at"))):
        return "opened"
    return "reviewed"


def classify_issue(raw: dict[str, Any], window: ActivityWindow) -> IssueAction:
    if raw.get("state") == "closed" and window.contains(parse_timestamp(raw.get("closed_at"))):
        return "closed"
    if window.contains(parse_timestamp(raw.get("created_at"))):
        return "opened"
    return "commented"


def _touched_in_window(raw: dict[str, Any], window: ActivityWindow) -> bool:
    return any(
        window.contains(parse_timestamp(raw.get(field)))
        for field in ("created_at", "updated_at", "closed_at", "merged_at")
    )


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_commit(raw: dict[str, Any], repo: Repository) -> Commit:
    commit = raw.get("commit") or {}
    git_author = commit.get("author") or {}
    account = raw.get("author") or {}
    return Commit(
        id=str(raw.get("sha", "")),
        message=str(commit.get("message", "")),
        url=str(raw.get("html_url", "")),
        author=str(account.get("login") or git_author.get("name") or "unknown"),
        timestamp=str(git_author.get("date", "")),
        repository=repo["full_name"],
    )


def normalize_pull_request(raw: dict[str, Any], repo: Repository, window: ActivityWindow) -> PullRequestEvent:
    state = "merged" if raw.get("merged_at") else ("closed" if raw.get("state") == "closed" else "open")
    return PullRequestEvent(
        id=int(raw.get("number", 0)),
        title=str(raw.get("title", "")),
        url=str(raw.get("html_url", "")),
        lifecycle_state=state,
        created_at=str(raw.get("created_at", "")),
        updated_at=str(raw.get("updated_at", "")),
        repository=repo["full_name"],
        action=classify_pull_request(raw, window),
    )


def normalize_issue(raw: dict[str, Any], repo: Repository, window: ActivityWindow) -> IssueEvent:
    return IssueEvent(
        id=int(raw.get("number", 0)),
        title=str(raw.get("title", "")),
        url=str(raw.get("html_url", "")),
        lifecycle_state="closed" if raw.get("state") == "closed" else "open",
        created_at=str(raw.get("created_at", "")),
        updated_at=str(raw.get("updated_at", "")),
        repository=repo["full_name"],
        action=classify_issue(raw, window),
    )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


class ActivityAggregator:
    def __init__(
        self,
        settings: Settings | None = None,
        client_factory: ClientFactory = build_provider_client,
        max_concurrency: int | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client_factory = client_factory
        self._max_concurrency = max_concurrency or self._settings.github_max_concurrent_repos

    async def fetch_activity(
        self,
        credential: ResolvedCredential,
        window: ActivityWindow,
        on_username: UsernameCallback | None = None,
    ) -> NormalizedActivity | None:
        """Fetch normalized activity for everything the credential can see.

        Returns None when the credential cannot be turned into a usable
        client or the provider cannot be reached at all.

        Raises:
            CredentialError: the provider rejected the credential.
        """
        client = self._client_factory(credential, self._settings)
        if client is None:
            return None
        async with client:
            try:
                await client.verify()
            except CredentialError:
                raise
            except Exception:
                logger.warning("Could not verify %s credential for %s", credential.provider_type, credential.user_id)
                return None

            username = getattr(client, "username", None)
            if on_username is not None and username and username != credential.username:
                await on_username(username)

            return await self.aggregate(client, window)

    async def aggregate(self, client: ProviderClient, window: ActivityWindow) -> NormalizedActivity:
        """Fan out over the client's repositories and concatenate the results."""
        try:
            repositories = await client.list_accessible_repositories(window)
        except CredentialError:
            raise
        except Exception as e:
            logger.warning("Failed to list repositories: %s", e)
            return empty_activity()

        semaphore = asyncio.Semaphore(self._max_concurrency)
        gathered = await asyncio.gather(
            *[self._fetch_repository(client, repo, window, semaphore) for repo in repositories],
            return_exceptions=True,
        )

        activity = empty_activity()
        for result in gathered:
            if isinstance(result, BaseException):
                logger.warning("%s", result)
                REPOSITORY_FETCH_FAILURES.inc()
                continue
            activity["commits"].extend(result["commits"])
            activity["pull_requests"].extend(result["pull_requests"])
            activity["issues"].extend(result["issues"])

        logger.info(
            "Aggregated %d commits, %d PRs, %d issues across %d repositories",
            len(activity["commits"]),
            len(activity["pull_requests"]),
            len(activity["issues"]),
            len(repositories),
        )
        return activity

    async def _fetch_repository(
        self,
        client: ProviderClient,
        repo: Repository,
        window: ActivityWindow,
        semaphore: asyncio.Semaphore,
    ) -> NormalizedActivity:
        async with semaphore:
            try:
                raw_commits = await client.list_commits(repo, window)
                raw_prs = await client.list_pull_requests(repo)
                raw_issues = await client.list_issues(repo, window)
                commits = [normalize_commit(c, repo) for c in raw_commits]
                return NormalizedActivity(
                    commits=[c for c in commits if window.contains(parse_timestamp(c["timestamp"]))],
                    pull_requests=[
                        normalize_pull_request(pr, repo, window) for pr in raw_prs if _touched_in_window(pr, window)
                    ],
                    issues=[normalize_issue(i, repo, window) for i in raw_issues if _touched_in_window(i, window)],
                )
            except Exception as e:
                raise PartialFetchError(repo["full_name"], e) from e

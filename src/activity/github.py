"""GitHub REST API clients for the two credential strategies.

Both clients expose the same calls so the aggregator can treat them
polymorphically:

- ``PersonalTokenClient``: a bearer token for one account. ``verify()``
  self-discovers the username. Repositories are discovered through
  commit and issue search, and pull requests and issues are limited to
  ones that account authored or is involved in.
- ``InstallationClient``: a GitHub App installation. A short-lived app JWT
  is exchanged for an installation token, and repositories come from
  ``/installation/repositories``.

The clients return raw GitHub JSON; normalization and classification live
in :mod:`src.activity.aggregator`.
"""

import logging
import time
from datetime import datetime
from typing import Any, Protocol

import httpx
from jose import jwt

from src.activity.models import ActivityWindow, Repository
from src.config import Settings
from src.credentials.models import ResolvedCredential
from src.errors import CredentialError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15
DEFAULT_MAX_PAGES = 5
PER_PAGE = 100
API_VERSION = "2022-11-28"

# GitHub App JWTs may live at most 10 minutes; backdate iat for clock drift.
APP_JWT_TTL_SECONDS = 540
APP_JWT_BACKDATE_SECONDS = 60

_AUTH_FAILURE_STATUSES = {401, 403}


class ProviderClient(Protocol):
    """Source-control provider capability used by the aggregator."""

    async def verify(self) -> None: ...

    async def list_accessible_repositories(self, window: ActivityWindow) -> list[Repository]: ...

    async def list_commits(self, repo: Repository, window: ActivityWindow) -> list[dict[str, Any]]: ...

    async def list_pull_requests(self, repo: Repository) -> list[dict[str, Any]]: ...

    async def list_issues(self, repo: Repository, window: ActivityWindow) -> list[dict[str, Any]]: ...

    async def __aenter__(self) -> "ProviderClient": ...

    async def __aexit__(self, *exc_info: object) -> None: ...


def _iso(instant: datetime) -> str:
    return instant.strftime("%Y-%m-%dT%H:%M:%SZ")


def _repository_from_full_name(full_name: str) -> Repository:
    owner, _, name = full_name.partition("/")
    return Repository(full_name=full_name, owner=owner, name=name)


class GitHubClient:
    """Shared HTTP plumbing: auth headers, timeouts, and Link pagination."""

    def __init__(
        self,
        base_url: str = "https://api.github.com",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> None:
        self._max_pages = max_pages
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            },
        )
        self.author: str | None = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def _set_token(self, token: str) -> None:
        self._http.headers["Authorization"] = f"Bearer {token}"

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._http.get(path, params=params)
        _ = response.raise_for_status()
        return response.json()

    async def _get_paginated(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        items_key: str | None = None,
    ) -> list[dict[str, Any]]:
        """Follow ``Link: rel="next"`` up to ``max_pages`` pages and concatenate items."""
        items: list[dict[str, Any]] = []
        url: str | None = path
        query: dict[str, Any] | None = {"per_page": PER_PAGE, **(params or {})}
        pages = 0
        while url and pages < self._max_pages:
            response = await self._http.get(url, params=query)
            _ = response.raise_for_status()
            body = response.json()
            page = body.get(items_key, []) if items_key else body
            if isinstance(page, list):
                items.extend(page)
            pages += 1
            url = response.links.get("next", {}).get("url")
            query = None  # the next URL already carries the query string
        return items

    async def list_commits(self, repo: Repository, window: ActivityWindow) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"since": _iso(window.since), "until": _iso(window.until)}
        if self.author:
            params["author"] = self.author
        return await self._get_paginated(f"/repos/{repo['owner']}/{repo['name']}/commits", params)

    async def list_pull_requests(self, repo: Repository) -> list[dict[str, Any]]:
        # One page of the most recently updated PRs is enough to cover a short window.
        return await self._get(
            f"/repos/{repo['owner']}/{repo['name']}/pulls",
            {"state": "all", "sort": "updated", "direction": "desc", "per_page": PER_PAGE},
        )

    async def list_issues(self, repo: Repository, window: ActivityWindow) -> list[dict[str, Any]]:
        raw = await self._get_paginated(
            f"/repos/{repo['owner']}/{repo['name']}/issues",
            {"state": "all", "since": _iso(window.since), "sort": "updated", "direction": "desc"},
        )
        # The issues endpoint also returns pull requests.
        return [issue for issue in raw if "pull_request" not in issue]


class PersonalTokenClient(GitHubClient):
    def __init__(self, token: str, username: str | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._set_token(token)
        self.username = username
        self.author = username

    async def verify(self) -> None:
        """Check the token and discover the account username.

        Raises:
            CredentialError: GitHub rejected the token.
        """
        try:
            user = await self._get("/user")
        except httpx.HTTPStatusError as e:
            if e.response.status_code in _AUTH_FAILURE_STATUSES:
                msg = f"GitHub rejected the personal token ({e.response.status_code})"
                raise CredentialError(msg) from e
            raise
        login = user.get("login")
        if not login:
            msg = "GitHub /user response has no login"
            raise CredentialError(msg)
        self.username = str(login)
        self.author = self.username

    async def list_accessible_repositories(self, window: ActivityWindow) -> list[Repository]:
        """Repositories the account touched in the window, via commit and issue search."""
        if not self.username:
            await self.verify()
        span = f"{_iso(window.since)}..{_iso(window.until)}"

        commit_hits = await self._get(
            "/search/commits",
            {"q": f"author:{self.username} committer-date:{span}", "per_page": PER_PAGE},
        )
        issue_hits = await self._get(
            "/search/issues",
            {"q": f"involves:{self.username} updated:{span}", "per_page": PER_PAGE},
        )

        names: dict[str, None] = {}
        for item in commit_hits.get("items", []):
            full_name = item.get("repository", {}).get("full_name")
            if full_name:
                names[full_name] = None
        for item in issue_hits.get("items", []):
            repo_url = item.get("repository_url", "")
            if "/repos/" in repo_url:
                names[repo_url.split("/repos/", 1)[1]] = None
        return [_repository_from_full_name(name) for name in names]

    async def list_pull_requests(self, repo: Repository) -> list[dict[str, Any]]:
        """Pull requests in ``repo`` authored by this account."""
        pulls = await super().list_pull_requests(repo)
        return [pr for pr in pulls if (pr.get("user") or {}).get("login") == self.username]

    async def list_issues(self, repo: Repository, window: ActivityWindow) -> list[dict[str, Any]]:
        """Issues in ``repo`` that involve this account (author, assignee, mention, or comment)."""
        if not self.username:
            await self.verify()
        query = f"repo:{repo['full_name']} is:issue involves:{self.username} updated:>={_iso(window.since)}"
        return await self._get_paginated("/search/issues", {"q": query}, items_key="items")


class InstallationClient(GitHubClient):
    def __init__(self, app_id: str, private_key: str, installation_id: int, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._app_id = app_id
        self._private_key = private_key
        self.installation_id = installation_id
        self._token_expires_at = 0.0

    def _app_jwt(self) -> str:
        now = int(time.time())
        payload = {
            "iat": now - APP_JWT_BACKDATE_SECONDS,
            "exp": now + APP_JWT_TTL_SECONDS,
            "iss": self._app_id,
        }
        return jwt.encode(payload, self._private_key, algorithm="RS256")

    async def _ensure_token(self) -> None:
        if time.monotonic() < self._token_expires_at:
            return
        response = await self._http.post(
            f"/app/installations/{self.installation_id}/access_tokens",
            headers={"Authorization": f"Bearer {self._app_jwt()}"},
        )
        _ = response.raise_for_status()
        self._set_token(response.json()["token"])
        # Installation tokens last an hour; refresh well before that.
        self._token_expires_at = time.monotonic() + 50 * 60

    async def verify(self) -> None:
        """Exchange the app JWT for an installation token.

        Raises:
            CredentialError: the installation is unknown or the app was rejected.
        """
        try:
            await self._ensure_token()
        except httpx.HTTPStatusError as e:
            if e.response.status_code in {*_AUTH_FAILURE_STATUSES, 404}:
                msg = f"GitHub rejected installation {self.installation_id} ({e.response.status_code})"
                raise CredentialError(msg) from e
            raise

    async def list_accessible_repositories(self, window: ActivityWindow) -> list[Repository]:
        _ = window  # an installation sees a fixed set of repositories
        await self._ensure_token()
        raw = await self._get_paginated("/installation/repositories", items_key="repositories")
        return [
            Repository(full_name=r["full_name"], owner=r["owner"]["login"], name=r["name"])
            for r in raw
            if r.get("full_name")
        ]


def build_provider_client(credential: ResolvedCredential, settings: Settings) -> ProviderClient | None:
    """Turn a resolved credential into a client, or None if it cannot be used."""
    common: dict[str, Any] = {
        "base_url": settings.github_api_url,
        "timeout": settings.github_timeout_seconds,
    }
    installation_id = credential.installation_id
    if installation_id is not None:
        if not (settings.github_app_id and settings.github_app_private_key):
            logger.warning("Installation credential for %s but GitHub App is not configured", credential.user_id)
            return None
        return InstallationClient(
            app_id=settings.github_app_id,
            private_key=settings.github_app_private_key,
            installation_id=installation_id,
            **common,
        )
    if credential.access_token:
        return PersonalTokenClient(credential.access_token, username=credential.username, **common)
    logger.info("Credential for %s has neither a token nor an installation id", credential.user_id)
    return None

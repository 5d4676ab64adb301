"""
GitHub API client for recent commit counts.

Used as the upstream fetcher for the "commits" cache namespace. Errors are
raised, not swallowed: the cache decides whether a failure reaches the caller.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

logger = logging.getLogger("github_client")

USER_AGENT = "ByteBashBlitz-Leaderboard"

# Worst case backoff, (RETRY_ATTEMPTS - 1) * RETRY_MAX_WAIT seconds, must stay
# under the cache fetch timeout
RETRY_ATTEMPTS = 3
RETRY_MAX_WAIT = 2


class GitHubRateLimitError(Exception):
    """GitHub refused the request because the rate limit is exhausted."""


class GitHubClient:
    """
    Thin async wrapper over the GitHub commit search endpoint.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        token: Optional[str] = None,
        base_url: str = "https://api.github.com",
        window_days: int = 30,
    ):
        """
        Args:
            http: Shared async HTTP client (owned by the caller)
            token: GitHub token for higher rate limits
            base_url: API root
            window_days: How far back commits are counted
        """
        self._http = http
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._window_days = window_days

    def _get_headers(self) -> dict:
        headers = {
            "Accept": "application/vnd.github.cloak-preview+json",
            "User-Agent": USER_AGENT,
        }
        if self._token:
            headers["Authorization"] = f"token {self._token}"
        return headers

    def _since(self) -> str:
        since = datetime.now(timezone.utc) - timedelta(days=self._window_days)
        return since.strftime("%Y-%m-%dT%H:%M:%SZ")

    @retry(
        stop=stop_after_attempt(RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=RETRY_MAX_WAIT),
        retry=retry_if_exception_type((httpx.TransportError, GitHubRateLimitError)),
        reraise=True,
    )
    async def fetch_commit_count(self, username: str) -> int:
        """
        Count the user's commits authored in the last window_days.

        Retries transport errors and rate limiting with exponential backoff.

        Raises:
            httpx.HTTPStatusError: Non-retryable error response
            GitHubRateLimitError: Still rate limited after retries
        """
        response = await self._http.get(
            f"{self._base_url}/search/commits",
            params={
                "q": f"author:{username} author-date:>{self._since()}",
                "sort": "author-date",
                "order": "desc",
                "per_page": 100,
            },
            headers=self._get_headers(),
        )

        if response.status_code == 429 or (
            response.status_code == 403
            and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            logger.warning(f"GitHub rate limit hit for {username}")
            raise GitHubRateLimitError(f"GitHub rate limit exceeded ({response.status_code})")

        if response.is_error:
            logger.warning(
                f"GitHub API error for {username}: {response.status_code} {response.reason_phrase}"
            )
        response.raise_for_status()

        data = response.json()
        return int(data.get("total_count") or 0)

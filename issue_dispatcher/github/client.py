"""GitHub API client for issue discovery and tracking.

This module provides an async wrapper around the GitHub REST API for:
- Fetching open issues assigned to the operator
- Remembering which issues were already handed to the dispatcher
- Checking the API rate limit and waiting for reset when it runs low
- Verifying repository access at startup

Includes retry logic with exponential backoff and jitter for transient
failures.

Source:
- issue_dispatcher/github/models.py (Issue, RateLimitStatus)
- issue_dispatcher/config.py (github_token, github_base_url)
"""

import asyncio
import random
import time
from typing import Any, Dict, Iterable, List, Optional, Set

import httpx
import structlog

from issue_dispatcher.github.models import Issue, RateLimitStatus


logger = structlog.get_logger(__name__)


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class RateLimitError(GitHubAPIError):
    """Raised when the GitHub API rate limit is exceeded.

    Attributes:
        reset_at: Unix timestamp when the rate limit resets.
        retry_after: Seconds to wait before retrying.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after


class GitHubClient:
    """Async GitHub API client used for issue discovery and tracking.

    The client owns the set of issue ids it has already returned from
    ``get_assigned_issues`` (the "seen" set). Each dispatcher instance gets
    its own client, so de-duplication is never shared between instances;
    pass ``seen_issue_ids`` to pre-populate it.

    Attributes:
        token: GitHub API token (PAT or GitHub App token).
        base_url: Base URL for GitHub API (default: https://api.github.com).
        max_retries: Maximum number of retry attempts for transient failures.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
        timeout: Request timeout in seconds.

    Example:
        >>> client = GitHubClient(token="ghp_xxx")
        >>> async with client:
        ...     issues = await client.get_assigned_issues("acme", "widgets", "dev1")
    """

    # HTTP status codes that should trigger a retry; 429 raises RateLimitError
    RETRYABLE_STATUS_CODES = {408, 500, 502, 503, 504}

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
        seen_issue_ids: Optional[Iterable[int]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the GitHub client.

        Args:
            token: GitHub API token for authentication.
            base_url: Base URL for GitHub API. Use this to support
                      GitHub Enterprise Server endpoints.
            max_retries: Maximum number of retry attempts.
            base_delay: Base delay in seconds for exponential backoff.
            max_delay: Maximum delay in seconds between retries.
            timeout: Request timeout in seconds.
            seen_issue_ids: Issue ids to treat as already discovered.
            transport: Optional httpx transport (used by tests).
        """
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._seen_issue_ids: Set[int] = set(seen_issue_ids or ())
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "issue-dispatcher/1.0",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Issue discovery and tracking
    # ------------------------------------------------------------------

    async def get_assigned_issues(
        self, owner: str, repo: str, assignee: str
    ) -> List[Issue]:
        """Fetch open issues assigned to ``assignee`` not seen before.

        Every returned issue is added to the seen set, so subsequent polls
        only return newly assigned issues. Pull requests, which the issues
        endpoint also lists, are skipped.

        Raises:
            GitHubAPIError: If the request fails after all retries.
        """
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/issues",
            params={"assignee": assignee, "state": "open", "per_page": 100},
        )

        new_issues: List[Issue] = []
        for payload in response.json():
            if "pull_request" in payload:
                continue
            issue = Issue.from_api(payload)
            if issue.id in self._seen_issue_ids:
                continue
            self._seen_issue_ids.add(issue.id)
            new_issues.append(issue)

        logger.info(
            "Fetched assigned issues",
            repository=f"{owner}/{repo}",
            assignee=assignee,
            new_issues=len(new_issues),
        )
        return new_issues

    def mark_issue_as_processed(self, issue_id: int) -> None:
        """Record an issue as handled so discovery never returns it again."""
        self._seen_issue_ids.add(issue_id)

    def is_processed(self, issue_id: int) -> bool:
        return issue_id in self._seen_issue_ids

    async def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        """Fetch repository metadata; used to verify access."""
        response = await self._request("GET", f"/repos/{owner}/{repo}")
        return response.json()

    async def get_rate_limit(self) -> RateLimitStatus:
        """Fetch the current core REST API quota."""
        response = await self._request("GET", "/rate_limit")
        return RateLimitStatus.from_api(response.json())

    async def check_rate_limit(
        self, threshold: int = 10, max_wait: float = 3600.0
    ) -> None:
        """Wait for the quota window to reset when few requests remain.

        Failures to read the quota are logged and ignored; the subsequent
        request will surface any real problem.
        """
        try:
            status = await self.get_rate_limit()
        except GitHubAPIError as exc:
            logger.warning("Failed to check rate limit", error=str(exc))
            return

        logger.info(
            "GitHub API rate limit",
            remaining=status.remaining,
            limit=status.limit,
            reset_at=status.reset_at.isoformat(),
        )

        if status.remaining < threshold:
            wait = min(status.seconds_until_reset(), max_wait)
            logger.warning(
                "Low rate limit remaining, waiting for reset",
                remaining=status.remaining,
                wait_seconds=wait,
            )
            await asyncio.sleep(wait)

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with full jitter (attempt is 0-indexed)."""
        exponential_delay = self.base_delay * (2 ** attempt)
        capped_delay = min(exponential_delay, self.max_delay)
        return random.uniform(0, capped_delay)

    def _parse_int_header(self, headers: httpx.Headers, name: str) -> Optional[int]:
        value = headers.get(name)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return None

    def _rate_limit_error(self, response: httpx.Response) -> RateLimitError:
        """Build a RateLimitError from a rate-limited response."""
        reset_at = self._parse_int_header(response.headers, "x-ratelimit-reset")
        retry_after = None
        if reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))
        retry_after_header = self._parse_int_header(response.headers, "retry-after")
        if retry_after_header is not None:
            retry_after = retry_after_header

        logger.warning(
            "GitHub API rate limit exceeded",
            reset_at=reset_at,
            retry_after=retry_after,
        )
        return RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
            request_url=str(response.url),
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Raises:
            GitHubAPIError: If the request fails after all retries.
            RateLimitError: If rate limit is exceeded.
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    method=method,
                    url=path,
                    params=params,
                    json=json_data,
                )
            except (httpx.TimeoutException, httpx.RequestError) as exc:
                last_exception = exc
                if attempt < self.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "Request error, retrying",
                        error=str(exc),
                        attempt=attempt + 1,
                        max_retries=self.max_retries,
                        delay=delay,
                        path=path,
                    )
                    await asyncio.sleep(delay)
                    continue
                break

            remaining = self._parse_int_header(
                response.headers, "x-ratelimit-remaining"
            )
            if response.status_code == 403 and remaining == 0:
                raise self._rate_limit_error(response)
            if response.status_code == 429:
                raise self._rate_limit_error(response)

            if (
                response.status_code in self.RETRYABLE_STATUS_CODES
                and attempt < self.max_retries
            ):
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    "Retryable error from GitHub API",
                    status_code=response.status_code,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                    path=path,
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code >= 400:
                error_body = response.text
                logger.error(
                    "GitHub API error",
                    status_code=response.status_code,
                    path=path,
                    method=method,
                    response_body=error_body[:500],
                )
                raise GitHubAPIError(
                    message=f"GitHub API error: {response.status_code}",
                    status_code=response.status_code,
                    response_body=error_body,
                    request_url=str(response.url),
                )

            return response

        logger.error(
            "GitHub API request failed after all retries",
            path=path,
            method=method,
            max_retries=self.max_retries,
        )
        raise GitHubAPIError(
            message=f"Request failed after {self.max_retries} retries: {last_exception}",
            request_url=f"{self.base_url}{path}",
        ) from last_exception

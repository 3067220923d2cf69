"""GitHub integration for issue discovery and tracking.

This module provides:
- Issue and rate limit models
- An async GitHub REST client with retry logic and a per-instance seen set
- A poller that feeds newly assigned issues into the work queue
"""

from issue_dispatcher.github.client import (
    GitHubAPIError,
    GitHubClient,
    RateLimitError,
)
from issue_dispatcher.github.models import Issue, RateLimitStatus

__all__ = [
    "GitHubAPIError",
    "GitHubClient",
    "Issue",
    "RateLimitError",
    "RateLimitStatus",
]

"""Periodic discovery of newly assigned issues.

The poller fetches open issues assigned to the operator on a fixed
interval and hands new ones to the work queue. Poll failures are logged
and never stop the dispatcher; the next interval simply tries again.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from issue_dispatcher.github.client import GitHubClient, RateLimitError
from issue_dispatcher.processing.queue import QueueStatus, WorkQueue
from issue_dispatcher.retry import with_retry


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PollerStatus:
    running: bool
    interval_seconds: float
    queue: QueueStatus


class IssuePoller:
    """Polls GitHub for assigned issues and enqueues new ones.

    Attributes:
        github_client: Client used for discovery; owns the seen set.
        queue: Work queue receiving new issues.
        owner: Repository owner.
        repo: Repository name.
        assignee: Login whose assigned issues are processed.
        interval_seconds: Seconds between polls.
        max_retries: Attempts per poll for transient failures.
    """

    def __init__(
        self,
        github_client: GitHubClient,
        queue: WorkQueue,
        owner: str,
        repo: str,
        assignee: str,
        interval_seconds: float = 60.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
    ):
        self.github_client = github_client
        self.queue = queue
        self.owner = owner
        self.repo = repo
        self.assignee = assignee
        self.interval_seconds = interval_seconds
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def start(self) -> None:
        """Poll once immediately, then keep polling in the background."""
        if self._running:
            logger.warning("Poller is already running")
            return

        self._running = True
        logger.info("Starting poller", interval_seconds=self.interval_seconds)
        await self.poll_once()
        self._task = asyncio.create_task(self._poll_forever())

    def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        logger.info("Poller stopped")

    def is_active(self) -> bool:
        return self._running

    async def poll_once(self) -> int:
        """Run one discovery pass.

        Returns:
            Number of issues added to the queue (0 on failure).
        """
        try:
            logger.info("Polling for new issues")
            await self.github_client.check_rate_limit()

            issues = await with_retry(
                lambda: self.github_client.get_assigned_issues(
                    self.owner, self.repo, self.assignee
                ),
                max_attempts=self.max_retries,
                base_delay=self.retry_base_delay,
                operation_name="GitHub issue discovery",
                no_retry=(RateLimitError,),
            )
        except Exception as exc:
            logger.error("Polling failed", error=str(exc))
            return 0

        if not issues:
            logger.info("No new issues found")
            return 0

        added = self.queue.enqueue(issues)
        logger.info("Added new issues to queue", count=added)
        return added

    def get_status(self) -> PollerStatus:
        return PollerStatus(
            running=self._running,
            interval_seconds=self.interval_seconds,
            queue=self.queue.get_status(),
        )

    async def _poll_forever(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            if not self._running:
                return
            await self.poll_once()

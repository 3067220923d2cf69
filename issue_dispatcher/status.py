"""Dispatcher status snapshot and periodic status reporting."""

import asyncio
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from issue_dispatcher.github.models import Issue
from issue_dispatcher.github.poller import IssuePoller
from issue_dispatcher.processing.queue import WorkQueue


logger = structlog.get_logger(__name__)


class DispatcherStatus(BaseModel):
    """Point-in-time view of the dispatcher.

    Attributes:
        polling: Whether issue discovery is running.
        processing: Whether an issue is being processed right now.
        queue_size: Issues waiting in the queue (including the head).
        next_issue: Issue at the head of the queue, if any.
    """

    polling: bool = False
    processing: bool = False
    queue_size: int = Field(default=0, ge=0)
    next_issue: Optional[Issue] = None


class StatusMonitor:
    """Logs the dispatcher status on a fixed interval."""

    def __init__(
        self,
        poller: IssuePoller,
        queue: WorkQueue,
        interval_seconds: float = 30.0,
    ):
        self.poller = poller
        self.queue = queue
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._monitoring = False

    def start(self) -> None:
        if self._monitoring:
            logger.warning("Status monitoring is already running")
            return

        self._monitoring = True
        self._task = asyncio.create_task(self._report_forever())
        logger.info("Status monitoring started", interval_seconds=self.interval_seconds)

    def stop(self) -> None:
        if not self._monitoring:
            return

        self._monitoring = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        logger.info("Status monitoring stopped")

    def is_monitoring(self) -> bool:
        return self._monitoring

    def get_status(self) -> DispatcherStatus:
        queue_status = self.queue.get_status()
        return DispatcherStatus(
            polling=self.poller.is_active(),
            processing=queue_status.processing,
            queue_size=queue_status.size,
            next_issue=queue_status.next_issue,
        )

    def log_status_now(self) -> DispatcherStatus:
        """Log the current status immediately and return it."""
        status = self.get_status()
        logger.info(
            "Dispatcher status",
            queue_size=status.queue_size,
            processing=status.processing,
            polling=status.polling,
        )
        if status.next_issue and not status.processing:
            logger.info(
                "Next issue in queue",
                issue_number=status.next_issue.number,
                title=status.next_issue.title,
            )
        return status

    async def _report_forever(self) -> None:
        while self._monitoring:
            await asyncio.sleep(self.interval_seconds)
            if not self._monitoring:
                return
            self.log_status_now()

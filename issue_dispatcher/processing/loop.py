"""Single-worker processing loop over the work queue.

On a fixed cadence the loop takes the issue at the head of the queue and
runs the pipeline for it. The head is only dequeued when the run is
over for good (success or terminal failure); a throttled issue stays at
the head and is resumed on a later cycle, once the rate limit cooldown has
elapsed. Cycles during the cooldown are skipped without touching the
queue.

Scheduling uses a self-rescheduling ``call_later`` timer. A timer tick
never starts a cycle while the previous cycle task is still running, so
cycles never overlap.
"""

import asyncio
import time
from typing import Callable, Optional, Protocol, Tuple

import structlog

from issue_dispatcher.github.models import Issue
from issue_dispatcher.processing.pipeline import ResumablePipeline
from issue_dispatcher.processing.queue import WorkQueue
from issue_dispatcher.processing.rate_limit import RateLimitPolicy
from issue_dispatcher.processing.results import (
    Failure,
    NeedsResume,
    PipelineResult,
    Success,
)


logger = structlog.get_logger(__name__)


class IssueTracker(Protocol):
    """Discovery collaborator told about issues that are finished."""

    def mark_issue_as_processed(self, issue_id: int) -> None:
        ...


class ProcessingLoop:
    """Runs queued issues through the pipeline one at a time.

    Attributes:
        pipeline: The resumable pipeline.
        queue: Work queue shared with the poller.
        policy: Decides what to do with throttled issues.
        tracker: Notified when an issue fails so it is not rediscovered.
        base_branch: Branch new feature branches start from.
        interval_seconds: Seconds between cycles.
        rate_limit_retry_delay: Seconds to wait after a throttled run
            before the next cycle.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        pipeline: ResumablePipeline,
        queue: WorkQueue,
        policy: RateLimitPolicy,
        tracker: IssueTracker,
        base_branch: str,
        interval_seconds: float = 5.0,
        rate_limit_retry_delay: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pipeline = pipeline
        self.queue = queue
        self.policy = policy
        self.tracker = tracker
        self.base_branch = base_branch
        self.interval_seconds = interval_seconds
        self.rate_limit_retry_delay = rate_limit_retry_delay
        self._clock = clock
        self._resume_at: Optional[float] = None
        self._running = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._cycle: Optional[asyncio.Task] = None

    def start(self) -> None:
        """Schedule cycles on the running event loop. Idempotent."""
        if self._running:
            logger.warning("Processing loop is already running")
            return

        self._running = True
        self._schedule_next()
        logger.info("Processing loop started", interval_seconds=self.interval_seconds)

    def stop(self) -> None:
        """Cancel the pending timer and clear the processing flag.

        A cycle already in flight runs to completion.
        """
        if not self._running:
            return

        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.queue.set_processing(False)
        logger.info("Processing loop stopped")

    def is_running(self) -> bool:
        return self._running

    def cooldown_remaining(self) -> float:
        """Seconds until a throttled issue may be retried (0 when not paused)."""
        if self._resume_at is None:
            return 0.0
        return max(0.0, self._resume_at - self._clock())

    async def run_cycle(self) -> Optional[PipelineResult]:
        """Process the head issue, if any.

        Returns:
            The pipeline result, or None when idle, busy, or cooling down
            after a rate limit.
        """
        if self.queue.is_empty() or self.queue.is_processing():
            return None
        remaining = self.cooldown_remaining()
        if remaining > 0:
            logger.debug(
                "Rate limit cooldown in effect, skipping cycle",
                remaining_seconds=round(remaining, 1),
            )
            return None
        self._resume_at = None

        issue = self.queue.peek()
        if issue is None:
            return None

        logger.info(
            "Processing issue",
            issue_number=issue.number,
            title=issue.title,
            queue_size=self.queue.size(),
        )
        result, remove = await self._process(issue)
        if remove:
            self.queue.dequeue()
        return result

    async def process_issue(self, issue: Issue) -> bool:
        """Run the pipeline for one issue.

        Returns:
            True when the issue should leave the queue.
        """
        _, remove = await self._process(issue)
        return remove

    async def _process(self, issue: Issue) -> Tuple[PipelineResult, bool]:
        self.queue.set_processing(True)
        try:
            try:
                result = await self.pipeline.process(issue, self.base_branch)
            except Exception as exc:
                logger.exception(
                    "Unexpected error while processing issue",
                    issue_number=issue.number,
                )
                result = Failure(reason=f"unexpected error: {exc}")
            return result, await self._should_remove(issue, result)
        finally:
            self.queue.set_processing(False)

    async def _should_remove(self, issue: Issue, result: PipelineResult) -> bool:
        if isinstance(result, Success):
            logger.info(
                "Issue completed",
                issue_number=issue.number,
                branch=result.branch_name,
            )
            return True

        if isinstance(result, NeedsResume):
            self._resume_at = self._clock() + self.rate_limit_retry_delay
            logger.info(
                "Pausing before retrying throttled issue",
                issue_number=issue.number,
                delay_seconds=self.rate_limit_retry_delay,
            )
            return await self.policy.handle_rate_limit(issue, result)

        logger.error(
            "Issue failed",
            issue_number=issue.number,
            reason=result.reason,
        )
        self.tracker.mark_issue_as_processed(issue.id)
        return True

    def _schedule_next(self) -> None:
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.interval_seconds, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if not self._running:
            return

        self._schedule_next()
        if self._cycle is not None and not self._cycle.done():
            logger.debug("Previous cycle still running, skipping")
            return

        self._cycle = asyncio.create_task(self.run_cycle())
        self._cycle.add_done_callback(self._on_cycle_done)

    def _on_cycle_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Processing cycle crashed", error=str(exc))

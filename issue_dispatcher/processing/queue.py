"""FIFO work queue of issues awaiting processing.

The queue holds at most one entry per issue id in arrival order, plus a
single processing flag. There is exactly one worker, so the flag is a
plain boolean rather than per-issue locking.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

import structlog

from issue_dispatcher.github.models import Issue


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class QueueStatus:
    """Snapshot of the queue for status reporting."""

    size: int
    processing: bool
    next_issue: Optional[Issue] = None


class WorkQueue:
    """De-duplicating FIFO of issues with a single-worker processing flag."""

    def __init__(self) -> None:
        self._issues: List[Issue] = []
        self._processing = False

    def enqueue(self, issues: Iterable[Issue]) -> int:
        """Append every issue whose id is not already queued.

        Returns:
            Number of issues actually added.
        """
        added = 0
        for issue in issues:
            if any(queued.id == issue.id for queued in self._issues):
                continue
            self._issues.append(issue)
            added += 1
            logger.info(
                "Issue queued",
                issue_number=issue.number,
                title=issue.title,
                queue_size=len(self._issues),
            )
        return added

    def peek(self) -> Optional[Issue]:
        return self._issues[0] if self._issues else None

    def dequeue(self) -> Optional[Issue]:
        """Remove and return the head issue, or None when empty."""
        if not self._issues:
            return None
        issue = self._issues.pop(0)
        logger.info("Issue dequeued", issue_number=issue.number)
        return issue

    def remove(self, issue_id: int) -> bool:
        """Remove the issue with ``issue_id`` wherever it sits."""
        for index, issue in enumerate(self._issues):
            if issue.id == issue_id:
                del self._issues[index]
                logger.info("Issue removed from queue", issue_number=issue.number)
                return True
        return False

    def is_empty(self) -> bool:
        return not self._issues

    def size(self) -> int:
        return len(self._issues)

    def __len__(self) -> int:
        return len(self._issues)

    def get_all(self) -> List[Issue]:
        return list(self._issues)

    def clear(self) -> None:
        self._issues.clear()
        logger.info("Queue cleared")

    def set_processing(self, processing: bool) -> None:
        self._processing = processing

    def is_processing(self) -> bool:
        return self._processing

    def get_status(self) -> QueueStatus:
        return QueueStatus(
            size=len(self._issues),
            processing=self._processing,
            next_issue=self.peek(),
        )

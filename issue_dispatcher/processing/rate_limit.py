"""Policy for issues paused by agent throttling.

A throttled issue stays at the head of the queue; the processing loop
retries it on the first cycle after the rate limit cooldown, where the
pipeline resumes from the persisted step.
"""

import structlog

from issue_dispatcher.github.models import Issue
from issue_dispatcher.processing.results import NeedsResume, PipelineResult


logger = structlog.get_logger(__name__)


class RateLimitPolicy:
    """Decides what happens to an issue whose pipeline run was throttled."""

    def is_rate_limited(self, result: PipelineResult) -> bool:
        return isinstance(result, NeedsResume)

    async def handle_rate_limit(self, issue: Issue, result: PipelineResult) -> bool:
        """Log the pause and keep the issue queued.

        Returns:
            Whether the issue should be removed from the queue (never).
        """
        if not isinstance(result, NeedsResume):
            return False

        state = result.state
        logger.warning(
            "Rate limit hit, issue will be resumed on a later cycle",
            issue_number=issue.number,
            step=state.current_step.value,
            branch=state.branch_name,
            completed_steps=[s.value for s in state.completed_steps],
            retry_count=state.retry_count,
            reason=result.reason,
        )
        return False

    def describe(self, result: PipelineResult) -> str:
        """Human-readable summary of a result's throttling status."""
        if not isinstance(result, NeedsResume):
            return "No rate limit detected"
        return (
            f"Rate limited at step '{result.state.current_step.value}' "
            f"(retry {result.state.retry_count})"
        )

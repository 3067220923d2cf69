"""Issue processing: work queue, resumable pipeline, and worker loop."""

from issue_dispatcher.processing.loop import ProcessingLoop
from issue_dispatcher.processing.pipeline import (
    ResumablePipeline,
    StepCompleted,
    StepFailed,
    StepThrottled,
    apply_outcome,
)
from issue_dispatcher.processing.queue import QueueStatus, WorkQueue
from issue_dispatcher.processing.rate_limit import RateLimitPolicy
from issue_dispatcher.processing.results import (
    Failure,
    NeedsResume,
    PipelineResult,
    Success,
)

__all__ = [
    "Failure",
    "NeedsResume",
    "PipelineResult",
    "ProcessingLoop",
    "QueueStatus",
    "RateLimitPolicy",
    "ResumablePipeline",
    "StepCompleted",
    "StepFailed",
    "StepThrottled",
    "Success",
    "WorkQueue",
    "apply_outcome",
]

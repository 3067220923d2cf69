"""Processing state models and persistence.

This module tracks each issue's progress through the pipeline:
- branch_creation → implementation → change_detection
- → commit_push → pr_creation → completed

State is persisted as one JSON file per issue so that a rate-limited
issue can resume at the exact step where it stopped.
"""

from issue_dispatcher.state.models import (
    STEP_SEQUENCE,
    ProcessingState,
    ProcessingStep,
    next_step,
    steps_before,
)
from issue_dispatcher.state.store import StateStore

__all__ = [
    # Models
    "ProcessingState",
    "ProcessingStep",
    "STEP_SEQUENCE",
    "next_step",
    "steps_before",
    # Store
    "StateStore",
]

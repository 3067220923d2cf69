"""Processing state models.

This module defines the data models for resumable issue processing:
- ProcessingStep: Ordered enum of the pipeline steps
- ProcessingState: Persisted progress of one issue through the pipeline
- STEP_SEQUENCE / next_step: The fixed linear step order

The step order is total and linear:

    branch_creation → implementation → change_detection
    → commit_push → pr_creation → completed

ProcessingState enforces that ``completed_steps`` is always exactly the
prefix of STEP_SEQUENCE before ``current_step``. Transitions are pure:
``advanced()`` and ``with_retry()`` return new instances and never touch
storage.

The models use Pydantic for validation, consistent with the rest of the
package (config.py, github/models.py).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class ProcessingStep(str, Enum):
    """Steps that an issue progresses through, in execution order.

    Attributes:
        BRANCH_CREATION: Feature branch is created off the base branch.
        IMPLEMENTATION: Claude Code implements the issue.
        CHANGE_DETECTION: Working tree is checked for modifications.
        COMMIT_PUSH: Claude Code commits and pushes the changes.
        PR_CREATION: Claude Code opens the pull request.
        COMPLETED: Terminal marker; never part of completed_steps.
    """

    BRANCH_CREATION = "branch_creation"
    IMPLEMENTATION = "implementation"
    CHANGE_DETECTION = "change_detection"
    COMMIT_PUSH = "commit_push"
    PR_CREATION = "pr_creation"
    COMPLETED = "completed"


STEP_SEQUENCE: Tuple[ProcessingStep, ...] = (
    ProcessingStep.BRANCH_CREATION,
    ProcessingStep.IMPLEMENTATION,
    ProcessingStep.CHANGE_DETECTION,
    ProcessingStep.COMMIT_PUSH,
    ProcessingStep.PR_CREATION,
    ProcessingStep.COMPLETED,
)


def step_index(step: ProcessingStep) -> int:
    """Return the position of a step in STEP_SEQUENCE."""
    return STEP_SEQUENCE.index(step)


def next_step(step: ProcessingStep) -> Optional[ProcessingStep]:
    """Return the step following ``step``, or None for COMPLETED.

    Example:
        >>> next_step(ProcessingStep.COMMIT_PUSH)
        <ProcessingStep.PR_CREATION: 'pr_creation'>
        >>> next_step(ProcessingStep.COMPLETED) is None
        True
    """
    index = step_index(step)
    if index + 1 >= len(STEP_SEQUENCE):
        return None
    return STEP_SEQUENCE[index + 1]


def steps_before(step: ProcessingStep) -> List[ProcessingStep]:
    """Return the steps strictly preceding ``step`` in execution order."""
    return list(STEP_SEQUENCE[: step_index(step)])


class ProcessingState(BaseModel):
    """Persisted progress of one issue through the pipeline.

    Serialized with camelCase keys (``issueId``, ``branchName``, ...) so the
    on-disk record stays readable and stable for operators.

    Attributes:
        issue_id: Stable GitHub issue id (not the user-facing number).
        branch_name: Feature branch created for this issue.
        base_branch: Branch the feature branch is created from.
        current_step: First step not yet completed.
        completed_steps: Ordered prefix of steps already completed.
        retry_count: Number of rate-limit pauses so far.
        last_updated: When the state was last written (UTC).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    issue_id: int = Field(
        ...,
        description="Stable GitHub issue id",
    )

    branch_name: str = Field(
        ...,
        min_length=1,
        description="Feature branch created for this issue",
    )

    base_branch: str = Field(
        ...,
        min_length=1,
        description="Branch the feature branch is created from",
    )

    current_step: ProcessingStep = Field(
        default=ProcessingStep.BRANCH_CREATION,
        description="First step not yet completed",
    )

    completed_steps: List[ProcessingStep] = Field(
        default_factory=list,
        description="Ordered prefix of completed steps",
    )

    retry_count: int = Field(
        default=0,
        ge=0,
        description="Number of rate-limit pauses so far",
    )

    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the state was last written (UTC)",
    )

    @model_validator(mode="after")
    def _check_step_prefix(self) -> "ProcessingState":
        """Reject states whose completed steps are not the exact prefix."""
        expected = steps_before(self.current_step)
        if list(self.completed_steps) != expected:
            raise ValueError(
                f"completed_steps {[s.value for s in self.completed_steps]} "
                f"is not the prefix before {self.current_step.value}"
            )
        return self

    @classmethod
    def initial(
        cls, issue_id: int, branch_name: str, base_branch: str
    ) -> "ProcessingState":
        """Build a fresh state positioned at BRANCH_CREATION."""
        return cls(
            issue_id=issue_id,
            branch_name=branch_name,
            base_branch=base_branch,
            current_step=ProcessingStep.BRANCH_CREATION,
            completed_steps=[],
            retry_count=0,
        )

    @property
    def is_completed(self) -> bool:
        return self.current_step == ProcessingStep.COMPLETED

    def advanced(self) -> "ProcessingState":
        """Return a copy with the current step completed.

        Raises:
            ValueError: If the state is already COMPLETED.
        """
        following = next_step(self.current_step)
        if following is None:
            raise ValueError("Cannot advance a completed state")
        return self.model_copy(
            update={
                "current_step": following,
                "completed_steps": [*self.completed_steps, self.current_step],
            }
        )

    def at_step(self, step: ProcessingStep) -> "ProcessingState":
        """Return a copy positioned at ``step`` with the matching prefix."""
        return self.model_copy(
            update={"current_step": step, "completed_steps": steps_before(step)}
        )

    def with_retry(self) -> "ProcessingState":
        """Return a copy with retry_count incremented."""
        return self.model_copy(update={"retry_count": self.retry_count + 1})

    def stamped(self) -> "ProcessingState":
        """Return a copy with last_updated set to now (UTC)."""
        return self.model_copy(
            update={"last_updated": datetime.now(timezone.utc)}
        )

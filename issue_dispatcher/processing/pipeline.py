"""Resumable issue-processing pipeline.

Drives one issue through the fixed step sequence:

    BRANCH_CREATION → IMPLEMENTATION → CHANGE_DETECTION
    → COMMIT_PUSH → PR_CREATION → COMPLETED

The pipeline is a state machine over ProcessingState. Each step action
produces a StepOutcome; the pure ``apply_outcome`` turns the current state
and that outcome into the next state and, when the run is over, a
PipelineResult. The driving loop in ResumablePipeline only performs step
actions, persists, and cleans up.

Failure policy:
- Agent throttling pauses the issue: retry_count is incremented and the
  state persisted at the unfinished step. The branch and working tree
  are left as they are so the next run resumes exactly there.
- Any other failure, including a step that produced no changes, is
  terminal: uncommitted changes are discarded, the branch deleted and
  the state removed.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Tuple, Union

import structlog

from issue_dispatcher.git.branches import BranchManager
from issue_dispatcher.github.models import Issue
from issue_dispatcher.prompts import (
    commit_prompt,
    implementation_prompt,
    pull_request_prompt,
)
from issue_dispatcher.processing.results import (
    Failure,
    NeedsResume,
    PipelineResult,
    Success,
)
from issue_dispatcher.retry import with_retry
from issue_dispatcher.runner.claude import AgentThrottledError
from issue_dispatcher.state.models import ProcessingState, ProcessingStep
from issue_dispatcher.state.store import StateStore


logger = structlog.get_logger(__name__)

NO_CHANGES_REASON = "no changes produced"


class Agent(Protocol):
    """Code-generation agent consumed by the pipeline.

    ``execute`` raises AgentThrottledError when the agent is throttled and
    any other exception on failure.
    """

    async def execute(self, prompt: str) -> object:
        ...


@dataclass(frozen=True)
class StepCompleted:
    pass


@dataclass(frozen=True)
class StepThrottled:
    reason: str


@dataclass(frozen=True)
class StepFailed:
    reason: str


StepOutcome = Union[StepCompleted, StepThrottled, StepFailed]


def apply_outcome(
    state: ProcessingState, outcome: StepOutcome
) -> Tuple[ProcessingState, Optional[PipelineResult]]:
    """Compute the state after a step outcome.

    Returns:
        The next state and, if the run is over, its result. A None result
        means the pipeline continues with the returned state.
    """
    if isinstance(outcome, StepCompleted):
        advanced = state.advanced()
        if advanced.is_completed:
            return advanced, Success(branch_name=advanced.branch_name)
        return advanced, None

    if isinstance(outcome, StepThrottled):
        paused = state.with_retry()
        return paused, NeedsResume(state=paused, reason=outcome.reason)

    return state, Failure(reason=outcome.reason)


class ResumablePipeline:
    """Advances issues through the step sequence with durable progress.

    Attributes:
        branch_manager: Git operations on the working tree.
        agent: Code-generation agent (Claude Code).
        state_store: Persistence for per-issue progress.
        max_attempts: In-step attempts for failing agent calls.
        retry_base_delay: Backoff base for in-step retries, in seconds.
    """

    def __init__(
        self,
        branch_manager: BranchManager,
        agent: Agent,
        state_store: StateStore,
        max_attempts: int = 3,
        retry_base_delay: float = 2.0,
    ):
        self.branch_manager = branch_manager
        self.agent = agent
        self.state_store = state_store
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay

    async def process(self, issue: Issue, base_branch: str) -> PipelineResult:
        """Run the pipeline for an issue, resuming persisted progress."""
        state = self._load_or_create(issue, base_branch)

        if state.is_completed:
            logger.info(
                "Issue already completed, clearing state",
                issue_number=issue.number,
            )
            self.state_store.remove(issue.id)
            return Success(branch_name=state.branch_name)

        result: Optional[PipelineResult] = None
        while result is None:
            step = state.current_step
            outcome = await self._perform_step(step, issue, state)
            state, result = apply_outcome(state, outcome)

            if result is None:
                logger.info(
                    "Step completed",
                    issue_number=issue.number,
                    step=step.value,
                    next_step=state.current_step.value,
                )
                state = self.state_store.save(state) or state

        return await self._finish(issue, state, result)

    async def resume_issue(self, issue_id: int, issue: Issue) -> PipelineResult:
        """Resume an issue that has persisted progress.

        Returns Failure when there is nothing to resume.
        """
        state = self.state_store.load(issue_id)
        if state is None:
            return Failure(reason=f"no processing state found for issue {issue_id}")

        logger.info(
            "Resuming issue",
            issue_number=issue.number,
            step=state.current_step.value,
            retry_count=state.retry_count,
        )
        return await self.process(issue, state.base_branch)

    def _load_or_create(self, issue: Issue, base_branch: str) -> ProcessingState:
        state = self.state_store.load(issue.id)
        if state is not None:
            logger.info(
                "Found persisted state",
                issue_number=issue.number,
                step=state.current_step.value,
                completed_steps=[s.value for s in state.completed_steps],
                retry_count=state.retry_count,
            )
            return state

        branch_name = self.branch_manager.generate_branch_name(issue)
        logger.info(
            "Starting issue processing",
            issue_number=issue.number,
            title=issue.title,
            branch=branch_name,
        )
        return self.state_store.create_initial(issue.id, branch_name, base_branch)

    async def _finish(
        self, issue: Issue, state: ProcessingState, result: PipelineResult
    ) -> PipelineResult:
        if isinstance(result, Success):
            self.state_store.remove(issue.id)
            logger.info(
                "Issue processed successfully",
                issue_number=issue.number,
                branch=result.branch_name,
            )
            return result

        if isinstance(result, NeedsResume):
            saved = self.state_store.save(state) or state
            logger.warning(
                "Issue paused by agent throttling",
                issue_number=issue.number,
                step=saved.current_step.value,
                retry_count=saved.retry_count,
                reason=result.reason,
            )
            return NeedsResume(state=saved, reason=result.reason)

        logger.error(
            "Issue processing failed",
            issue_number=issue.number,
            step=state.current_step.value,
            reason=result.reason,
        )
        await self._cleanup(state)
        self.state_store.remove(issue.id)
        return result

    async def _perform_step(
        self, step: ProcessingStep, issue: Issue, state: ProcessingState
    ) -> StepOutcome:
        """Run the action for ``step`` and classify how it ended."""
        logger.info("Executing step", issue_number=issue.number, step=step.value)
        try:
            if step == ProcessingStep.BRANCH_CREATION:
                await self.branch_manager.switch_to_branch(
                    state.branch_name, state.base_branch
                )
            elif step == ProcessingStep.IMPLEMENTATION:
                await self._run_agent(implementation_prompt(issue), step)
            elif step == ProcessingStep.CHANGE_DETECTION:
                if not await self.branch_manager.check_for_changes():
                    return StepFailed(reason=NO_CHANGES_REASON)
            elif step == ProcessingStep.COMMIT_PUSH:
                await self._run_agent(commit_prompt(), step)
            elif step == ProcessingStep.PR_CREATION:
                await self._run_agent(pull_request_prompt(state.base_branch), step)
        except AgentThrottledError as exc:
            return StepThrottled(reason=str(exc))
        except Exception as exc:
            return StepFailed(reason=f"{step.value}: {exc}")

        return StepCompleted()

    async def _run_agent(self, prompt: str, step: ProcessingStep) -> None:
        await with_retry(
            lambda: self.agent.execute(prompt),
            max_attempts=self.max_attempts,
            base_delay=self.retry_base_delay,
            operation_name=f"Claude Code {step.value}",
        )

    async def _cleanup(self, state: ProcessingState) -> None:
        """Discard changes and delete the branch after a terminal failure."""
        try:
            await self.branch_manager.discard_changes()
        except Exception as exc:
            logger.warning(
                "Cleanup failed to discard changes",
                branch=state.branch_name,
                error=str(exc),
            )

        try:
            await self.branch_manager.delete_branch(
                state.branch_name, state.base_branch
            )
        except Exception as exc:
            logger.warning(
                "Cleanup failed to delete branch",
                branch=state.branch_name,
                error=str(exc),
            )

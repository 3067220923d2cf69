"""Unit tests for the resumable issue-processing pipeline.

Covers the happy path, pause-and-resume on agent throttling, terminal
failures with cleanup, resume from a persisted step, and the pure
``apply_outcome`` transition function.
"""

import asyncio

import pytest

from issue_dispatcher.git.branches import GitCommandError
from issue_dispatcher.processing.pipeline import (
    ResumablePipeline,
    StepCompleted,
    StepFailed,
    StepThrottled,
    apply_outcome,
)
from issue_dispatcher.processing.results import Failure, NeedsResume, Success
from issue_dispatcher.runner.claude import AgentExecutionError, AgentThrottledError
from issue_dispatcher.state.models import ProcessingState, ProcessingStep


def run_async(coro):
    return asyncio.run(coro)


def throttled():
    return AgentThrottledError("Claude AI usage limit reached")


@pytest.fixture
def build_pipeline(branch_manager, state_store):
    def _build(agent):
        return ResumablePipeline(
            branch_manager=branch_manager,
            agent=agent,
            state_store=state_store,
            max_attempts=3,
            retry_base_delay=0.0,
        )

    return _build


class TestApplyOutcome:
    def _state(self, step=ProcessingStep.BRANCH_CREATION):
        return ProcessingState.initial(1, "issue-1-x", "main").at_step(step)

    def test_completed_advances_without_result(self):
        state, result = apply_outcome(self._state(), StepCompleted())

        assert result is None
        assert state.current_step == ProcessingStep.IMPLEMENTATION
        assert state.completed_steps == [ProcessingStep.BRANCH_CREATION]

    def test_completing_last_step_is_success(self):
        state, result = apply_outcome(
            self._state(ProcessingStep.PR_CREATION), StepCompleted()
        )

        assert result == Success(branch_name="issue-1-x")
        assert state.is_completed

    def test_throttled_increments_retry_and_stays_at_step(self):
        state, result = apply_outcome(
            self._state(ProcessingStep.COMMIT_PUSH), StepThrottled(reason="limit")
        )

        assert isinstance(result, NeedsResume)
        assert result.state is state
        assert state.current_step == ProcessingStep.COMMIT_PUSH
        assert state.retry_count == 1

    def test_failed_keeps_state_and_reports_reason(self):
        original = self._state(ProcessingStep.IMPLEMENTATION)
        state, result = apply_outcome(original, StepFailed(reason="boom"))

        assert state == original
        assert result == Failure(reason="boom")


class TestScenarios:
    def test_no_throttling_succeeds_and_clears_state(
        self, build_pipeline, make_agent, issue, branch_manager, state_store
    ):
        agent = make_agent()
        result = run_async(build_pipeline(agent).process(issue, "main"))

        assert result == Success(branch_name="issue-100-add-user-login")
        assert state_store.load(issue.id) is None
        branch_manager.switch_to_branch.assert_awaited_once_with(
            "issue-100-add-user-login", "main"
        )
        assert agent.calls == ["implementation", "commit", "pull_request"]
        branch_manager.delete_branch.assert_not_awaited()

    def test_throttled_implementation_resumes_at_implementation(
        self, build_pipeline, make_agent, issue, branch_manager, state_store
    ):
        agent = make_agent({"implementation": [throttled()]})
        pipeline = build_pipeline(agent)

        first = run_async(pipeline.process(issue, "main"))

        assert isinstance(first, NeedsResume)
        assert first.state.current_step == ProcessingStep.IMPLEMENTATION
        assert first.state.retry_count == 1
        persisted = state_store.load(issue.id)
        assert persisted.current_step == ProcessingStep.IMPLEMENTATION
        assert persisted.retry_count == 1
        branch_manager.discard_changes.assert_not_awaited()
        branch_manager.delete_branch.assert_not_awaited()

        second = run_async(pipeline.resume_issue(issue.id, issue))

        assert second == Success(branch_name="issue-100-add-user-login")
        assert agent.count("implementation") == 2
        assert agent.count("commit") == 1
        assert agent.count("pull_request") == 1
        branch_manager.switch_to_branch.assert_awaited_once()
        branch_manager.check_for_changes.assert_awaited_once()
        assert state_store.load(issue.id) is None

    def test_no_changes_is_terminal_with_cleanup(
        self, build_pipeline, make_agent, issue, branch_manager, state_store
    ):
        branch_manager.check_for_changes.return_value = False
        agent = make_agent()

        result = run_async(build_pipeline(agent).process(issue, "main"))

        assert isinstance(result, Failure)
        assert "no changes" in result.reason
        branch_manager.discard_changes.assert_awaited_once()
        branch_manager.delete_branch.assert_awaited_once_with(
            "issue-100-add-user-login", "main"
        )
        assert state_store.load(issue.id) is None
        assert agent.calls == ["implementation"]

    def test_repeated_throttling_at_pr_creation_counts_retries(
        self, build_pipeline, make_agent, issue, branch_manager, state_store
    ):
        agent = make_agent({"pull_request": [throttled() for _ in range(5)]})
        pipeline = build_pipeline(agent)

        results = [run_async(pipeline.process(issue, "main")) for _ in range(5)]

        assert all(isinstance(r, NeedsResume) for r in results)
        assert [r.state.retry_count for r in results] == [1, 2, 3, 4, 5]
        assert state_store.load(issue.id).retry_count == 5
        assert state_store.load(issue.id).current_step == ProcessingStep.PR_CREATION
        branch_manager.switch_to_branch.assert_awaited_once()
        branch_manager.check_for_changes.assert_awaited_once()
        assert agent.count("implementation") == 1
        assert agent.count("commit") == 1
        assert agent.count("pull_request") == 5


class TestResume:
    def test_resume_from_commit_push_skips_earlier_steps(
        self, build_pipeline, make_agent, issue, branch_manager, state_store
    ):
        state_store.save(
            ProcessingState.initial(
                issue.id, "issue-100-add-user-login", "main"
            ).at_step(ProcessingStep.COMMIT_PUSH)
        )
        agent = make_agent()

        result = run_async(build_pipeline(agent).process(issue, "main"))

        assert isinstance(result, Success)
        assert agent.calls == ["commit", "pull_request"]
        branch_manager.switch_to_branch.assert_not_awaited()
        branch_manager.check_for_changes.assert_not_awaited()

    def test_resume_uses_persisted_base_branch(
        self, build_pipeline, make_agent, issue, state_store
    ):
        state_store.save(
            ProcessingState.initial(issue.id, "issue-100-x", "develop").at_step(
                ProcessingStep.PR_CREATION
            )
        )
        agent = make_agent()

        result = run_async(build_pipeline(agent).resume_issue(issue.id, issue))

        assert result == Success(branch_name="issue-100-x")
        assert "base branch develop" in agent.prompts[-1]

    def test_resume_without_state_fails(self, build_pipeline, make_agent, issue):
        result = run_async(build_pipeline(make_agent()).resume_issue(issue.id, issue))

        assert result == Failure(
            reason=f"no processing state found for issue {issue.id}"
        )

    def test_state_already_completed_is_success(
        self, build_pipeline, make_agent, issue, branch_manager, state_store
    ):
        state_store.save(
            ProcessingState.initial(issue.id, "issue-100-done", "main").at_step(
                ProcessingStep.COMPLETED
            )
        )
        agent = make_agent()

        result = run_async(build_pipeline(agent).process(issue, "main"))

        assert result == Success(branch_name="issue-100-done")
        assert agent.calls == []
        branch_manager.switch_to_branch.assert_not_awaited()
        assert state_store.load(issue.id) is None

    def test_reprocessing_after_success_starts_fresh(
        self, build_pipeline, make_agent, issue, branch_manager, state_store
    ):
        agent = make_agent()
        pipeline = build_pipeline(agent)

        run_async(pipeline.process(issue, "main"))
        result = run_async(pipeline.process(issue, "main"))

        assert isinstance(result, Success)
        assert branch_manager.switch_to_branch.await_count == 2
        assert agent.count("implementation") == 2


class TestTerminalFailures:
    def test_agent_failure_after_retries_cleans_up_once(
        self, build_pipeline, make_agent, issue, branch_manager, state_store
    ):
        agent = make_agent(
            {"commit": [AgentExecutionError("exit 1", exit_code=1) for _ in range(3)]}
        )

        result = run_async(build_pipeline(agent).process(issue, "main"))

        assert isinstance(result, Failure)
        assert result.reason.startswith("commit_push:")
        assert agent.count("commit") == 3
        assert agent.count("pull_request") == 0
        branch_manager.discard_changes.assert_awaited_once()
        branch_manager.delete_branch.assert_awaited_once()
        assert state_store.load(issue.id) is None

    def test_transient_agent_failure_is_retried_in_step(
        self, build_pipeline, make_agent, issue
    ):
        agent = make_agent({"implementation": [AgentExecutionError("flaky")]})

        result = run_async(build_pipeline(agent).process(issue, "main"))

        assert isinstance(result, Success)
        assert agent.count("implementation") == 2

    def test_branch_creation_failure_is_terminal(
        self, build_pipeline, make_agent, issue, branch_manager, state_store
    ):
        branch_manager.switch_to_branch.side_effect = GitCommandError(
            ("checkout", "main"), "pathspec 'main' did not match", returncode=1
        )
        agent = make_agent()

        result = run_async(build_pipeline(agent).process(issue, "main"))

        assert isinstance(result, Failure)
        assert result.reason.startswith("branch_creation:")
        assert agent.calls == []
        branch_manager.discard_changes.assert_awaited_once()
        branch_manager.delete_branch.assert_awaited_once()
        assert state_store.load(issue.id) is None

    def test_change_detection_error_is_terminal(
        self, build_pipeline, make_agent, issue, branch_manager
    ):
        branch_manager.check_for_changes.side_effect = GitCommandError(
            ("status", "--porcelain"), "not a git repository", returncode=128
        )

        result = run_async(build_pipeline(make_agent()).process(issue, "main"))

        assert isinstance(result, Failure)
        assert result.reason.startswith("change_detection:")

    def test_cleanup_errors_are_swallowed(
        self, build_pipeline, make_agent, issue, branch_manager, state_store
    ):
        branch_manager.check_for_changes.return_value = False
        branch_manager.discard_changes.side_effect = RuntimeError("disk full")

        result = run_async(build_pipeline(make_agent()).process(issue, "main"))

        assert isinstance(result, Failure)
        branch_manager.delete_branch.assert_awaited_once()
        assert state_store.load(issue.id) is None

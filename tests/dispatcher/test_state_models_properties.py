"""Property-based tests for processing state models.

Validates the ordering invariant: completed_steps is always exactly the
prefix of the step sequence before current_step, for every state reachable
through the pure transitions, and states violating it are rejected.

Testing Configuration:
- Library: Hypothesis (Python)
"""

import json

import pytest
from hypothesis import assume, given, settings, strategies as st
from pydantic import ValidationError

from issue_dispatcher.state.models import (
    STEP_SEQUENCE,
    ProcessingState,
    ProcessingStep,
    next_step,
    steps_before,
)


steps = st.sampled_from(list(ProcessingStep))
transitions = st.lists(st.sampled_from(["advance", "retry"]), max_size=20)


def _initial() -> ProcessingState:
    return ProcessingState.initial(1001, "issue-7-fix-login", "main")


@settings(max_examples=100)
@given(ops=transitions)
def test_transitions_preserve_step_prefix(ops):
    state = _initial()
    retries = 0
    for op in ops:
        if op == "advance":
            if state.is_completed:
                with pytest.raises(ValueError):
                    state.advanced()
                continue
            state = state.advanced()
        else:
            state = state.with_retry()
            retries += 1

        assert state.completed_steps == steps_before(state.current_step)
        assert ProcessingStep.COMPLETED not in state.completed_steps

    assert state.retry_count == retries


@settings(max_examples=100)
@given(step=steps)
def test_at_step_builds_matching_prefix(step):
    state = _initial().at_step(step)

    assert state.current_step == step
    assert state.completed_steps == list(STEP_SEQUENCE[: STEP_SEQUENCE.index(step)])


@settings(max_examples=100)
@given(step=steps, completed=st.lists(steps, max_size=6))
def test_non_prefix_completed_steps_rejected(step, completed):
    assume(completed != steps_before(step))

    with pytest.raises(ValidationError):
        ProcessingState(
            issue_id=1,
            branch_name="issue-1-x",
            base_branch="main",
            current_step=step,
            completed_steps=completed,
        )


@settings(max_examples=50)
@given(step=steps, retries=st.integers(min_value=0, max_value=50))
def test_json_record_uses_camel_case_and_round_trips(step, retries):
    state = _initial().at_step(step).model_copy(update={"retry_count": retries})

    payload = json.loads(state.model_dump_json(by_alias=True))

    assert set(payload) == {
        "issueId",
        "branchName",
        "baseBranch",
        "currentStep",
        "completedSteps",
        "retryCount",
        "lastUpdated",
    }
    assert payload["currentStep"] == step.value
    assert ProcessingState.model_validate(payload) == state


def test_next_step_follows_sequence():
    for current, following in zip(STEP_SEQUENCE, STEP_SEQUENCE[1:]):
        assert next_step(current) == following
    assert next_step(ProcessingStep.COMPLETED) is None


def test_negative_retry_count_rejected():
    with pytest.raises(ValidationError):
        ProcessingState(
            issue_id=1, branch_name="b", base_branch="main", retry_count=-1
        )

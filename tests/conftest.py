"""Shared fixtures for dispatcher tests."""

from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from issue_dispatcher.git.branches import BranchManager
from issue_dispatcher.github.models import Issue
from issue_dispatcher.runner.claude import AgentResult, AgentStatus
from issue_dispatcher.state.store import StateStore


def prompt_kind(prompt: str) -> str:
    """Map a prompt to the agent step that sent it."""
    if "implement the following GitHub issue" in prompt:
        return "implementation"
    if "commit message" in prompt:
        return "commit"
    if "pull request" in prompt:
        return "pull_request"
    return "unknown"


class ScriptedAgent:
    """Agent double that raises scripted errors per step, in order.

    ``script`` maps a prompt kind to a list of outcomes; ``None`` means the
    call succeeds, an exception instance is raised. Once a list is used up
    every further call for that kind succeeds.
    """

    def __init__(self, script: Optional[Dict[str, List[Optional[Exception]]]] = None):
        self.script = {kind: list(outcomes) for kind, outcomes in (script or {}).items()}
        self.calls: List[str] = []
        self.prompts: List[str] = []

    async def execute(self, prompt: str) -> AgentResult:
        kind = prompt_kind(prompt)
        self.calls.append(kind)
        self.prompts.append(prompt)

        pending = self.script.get(kind)
        if pending:
            outcome = pending.pop(0)
            if outcome is not None:
                raise outcome

        return AgentResult(
            status=AgentStatus.COMPLETED,
            exit_code=0,
            stdout="done",
            stderr="",
            duration_seconds=0.01,
        )

    def count(self, kind: str) -> int:
        return self.calls.count(kind)


@pytest.fixture
def make_issue():
    def _make(
        number: int = 100,
        title: str = "Add user login",
        issue_id: Optional[int] = None,
        body: Optional[str] = "Users need to log in.",
    ) -> Issue:
        return Issue(
            id=issue_id if issue_id is not None else number * 1000,
            number=number,
            title=title,
            body=body,
            html_url=f"https://github.com/acme/widgets/issues/{number}",
            assignee="dev1",
        )

    return _make


@pytest.fixture
def issue(make_issue):
    return make_issue()


@pytest.fixture
def branch_manager():
    """BranchManager double: async methods are AsyncMocks, naming is real."""
    manager = MagicMock(spec=BranchManager)
    manager.generate_branch_name.side_effect = BranchManager().generate_branch_name
    manager.check_for_changes.return_value = True
    return manager


@pytest.fixture
def state_store(tmp_path):
    return StateStore(tmp_path / ".claude-state")


@pytest.fixture
def make_agent():
    return ScriptedAgent

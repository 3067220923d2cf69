"""Outcome of one pipeline run for an issue.

Exactly one of three variants:
- Success: the pull request step completed; no state remains.
- NeedsResume: the agent was throttled; state is persisted at the
  unfinished step and the issue stays queued.
- Failure: a terminal error; the branch and working tree were cleaned up
  and the state removed.
"""

from dataclasses import dataclass
from typing import Union

from issue_dispatcher.state.models import ProcessingState


@dataclass(frozen=True)
class Success:
    branch_name: str


@dataclass(frozen=True)
class NeedsResume:
    state: ProcessingState
    reason: str


@dataclass(frozen=True)
class Failure:
    reason: str


PipelineResult = Union[Success, NeedsResume, Failure]

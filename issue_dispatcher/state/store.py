"""JSON-file store for processing state persistence.

This module persists one ProcessingState per issue as a JSON file named
``<issue_id>.json`` inside a state directory. It provides:
- Atomic writes (temp file + replace) so a crash never leaves a torn record
- Corruption tolerance: unreadable or invalid records load as absent
- Best-effort semantics: filesystem errors are logged and swallowed

Availability is preferred over durability here. A failed write costs the
ability to resume that issue from the exact step; it never stops the
dispatcher. The state directory is operator-visible and may be deleted at
any time.
"""

import os
import tempfile
from contextlib import suppress
from pathlib import Path
from typing import List, Optional, Union

import structlog
from pydantic import ValidationError

from issue_dispatcher.state.models import ProcessingState, ProcessingStep


logger = structlog.get_logger(__name__)


class StateStore:
    """Directory-backed store of per-issue processing state.

    Attributes:
        state_directory: Directory holding one JSON record per issue.

    Example:
        >>> store = StateStore(Path(".claude-state"))
        >>> state = store.create_initial(1001, "issue-7-fix-login", "main")
        >>> store.load(1001).current_step
        <ProcessingStep.BRANCH_CREATION: 'branch_creation'>
    """

    def __init__(self, state_directory: Union[str, Path] = ".claude-state"):
        self.state_directory = Path(state_directory)
        self._ensure_directory()

    def save(self, state: ProcessingState) -> Optional[ProcessingState]:
        """Write a state record, overwriting any previous one.

        Args:
            state: The state to persist; last_updated is stamped on write.

        Returns:
            The stamped state as written, or None if the write failed.
        """
        stamped = state.stamped()
        path = self._state_path(stamped.issue_id)
        try:
            self._atomic_write(
                path, stamped.model_dump_json(by_alias=True, indent=2)
            )
        except OSError as exc:
            logger.warning(
                "Failed to save processing state",
                issue_id=stamped.issue_id,
                error=str(exc),
            )
            return None

        logger.info(
            "Saved processing state",
            issue_id=stamped.issue_id,
            step=stamped.current_step.value,
            retry_count=stamped.retry_count,
        )
        return stamped

    def load(self, issue_id: int) -> Optional[ProcessingState]:
        """Read the state record for an issue.

        A missing file, an unreadable file, and a record that fails
        validation are all reported as None.
        """
        path = self._state_path(issue_id)
        if not path.exists():
            return None

        try:
            state = ProcessingState.model_validate_json(
                path.read_text(encoding="utf-8")
            )
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning(
                "Failed to load processing state",
                issue_id=issue_id,
                error=str(exc),
            )
            return None

        logger.debug(
            "Loaded processing state",
            issue_id=issue_id,
            step=state.current_step.value,
        )
        return state

    def create_initial(
        self, issue_id: int, branch_name: str, base_branch: str
    ) -> ProcessingState:
        """Build and persist a fresh BRANCH_CREATION state.

        The returned state is valid even if persisting it failed.
        """
        state = ProcessingState.initial(issue_id, branch_name, base_branch)
        return self.save(state) or state

    def advance(
        self,
        issue_id: int,
        new_step: ProcessingStep,
        just_completed: Optional[ProcessingStep] = None,
    ) -> Optional[ProcessingState]:
        """Move a persisted state to ``new_step``.

        ``completed_steps`` is rebuilt as the prefix before ``new_step`` so
        the record always satisfies the ordering invariant.
        ``just_completed``, when given, must be the step right before
        ``new_step``.
        """
        state = self.load(issue_id)
        if state is None:
            logger.warning(
                "No processing state to advance",
                issue_id=issue_id,
                step=new_step.value,
            )
            return None

        updated = state.at_step(new_step)
        if just_completed is not None and (
            not updated.completed_steps
            or updated.completed_steps[-1] != just_completed
        ):
            logger.warning(
                "Completed step does not precede new step",
                issue_id=issue_id,
                step=new_step.value,
                completed=just_completed.value,
            )
        return self.save(updated)

    def increment_retry(self, issue_id: int) -> Optional[ProcessingState]:
        """Increment the retry count of a persisted state."""
        state = self.load(issue_id)
        if state is None:
            return None
        return self.save(state.with_retry())

    def remove(self, issue_id: int) -> None:
        """Delete the state record for an issue; absence is fine."""
        path = self._state_path(issue_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning(
                "Failed to remove processing state",
                issue_id=issue_id,
                error=str(exc),
            )
            return
        logger.info("Removed processing state", issue_id=issue_id)

    def list_pending(self) -> List[int]:
        """Return the ids of all issues with a persisted state record."""
        try:
            names = [entry.name for entry in self.state_directory.iterdir()]
        except OSError as exc:
            logger.debug(
                "State directory not readable",
                directory=str(self.state_directory),
                error=str(exc),
            )
            return []

        issue_ids = []
        for name in names:
            stem, suffix = os.path.splitext(name)
            if suffix != ".json":
                continue
            try:
                issue_ids.append(int(stem))
            except ValueError:
                continue
        return sorted(issue_ids)

    def _state_path(self, issue_id: int) -> Path:
        return self.state_directory / f"{issue_id}.json"

    def _ensure_directory(self) -> None:
        try:
            self.state_directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning(
                "Failed to create state directory",
                directory=str(self.state_directory),
                error=str(exc),
            )

    @staticmethod
    def _atomic_write(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{path.name}.", suffix=".tmp", dir=str(path.parent)
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            tmp_path.replace(path)
        finally:
            with suppress(OSError):
                tmp_path.unlink(missing_ok=True)

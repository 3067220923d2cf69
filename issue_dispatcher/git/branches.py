"""Git branch management for the working tree.

Runs git as an asyncio subprocess against the operator's working tree:
- Branch naming from issue number and title
- Creating the feature branch off an up-to-date base branch
- Detecting working-tree modifications
- Cleaning up (discarding changes, deleting the branch) after a failure

The working tree is shared by every issue; the dispatcher processes one
issue at a time so these operations never interleave.
"""

import asyncio
import re
from pathlib import Path
from typing import Optional, Tuple, Union

import structlog

from issue_dispatcher.github.models import Issue


logger = structlog.get_logger(__name__)

GIT_COMMAND_TIMEOUT_SECONDS = 120
BRANCH_SLUG_MAX_LENGTH = 50


class GitCommandError(Exception):
    """Raised when a git command fails or cannot be executed.

    Attributes:
        command: The git arguments that were run.
        returncode: Exit code, or None when git never ran.
        stderr: Captured standard error.
    """

    def __init__(
        self,
        command: Tuple[str, ...],
        stderr: str,
        returncode: Optional[int] = None,
    ):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"git {' '.join(command)} failed (rc={returncode}): {stderr}"
        )


def slugify_title(title: str, max_length: int = BRANCH_SLUG_MAX_LENGTH) -> str:
    """Reduce an issue title to a branch-safe slug.

    Example:
        >>> slugify_title("Fix login: handle 500s!")
        'fix-login-handle-500s'
    """
    cleaned = re.sub(r"[^a-z0-9\s-]", "", title.lower())
    return re.sub(r"\s+", "-", cleaned)[:max_length]


class BranchManager:
    """Git operations on the dispatcher's working tree.

    Attributes:
        working_directory: Root of the git working tree.
        timeout_seconds: Timeout applied to each git invocation.
    """

    def __init__(
        self,
        working_directory: Union[str, Path] = ".",
        timeout_seconds: float = GIT_COMMAND_TIMEOUT_SECONDS,
    ):
        self.working_directory = Path(working_directory)
        self.timeout_seconds = timeout_seconds

    def generate_branch_name(self, issue: Issue) -> str:
        """Return ``issue-<number>-<slug>`` for an issue."""
        return f"issue-{issue.number}-{slugify_title(issue.title)}"

    async def switch_to_branch(self, branch_name: str, base_branch: str) -> None:
        """Create ``branch_name`` off the freshly pulled ``base_branch``.

        A branch of the same name left behind by an interrupted run is
        reset to the base branch instead of failing the step.

        Raises:
            GitCommandError: If any git step fails.
        """
        logger.info("Switching to base branch", base_branch=base_branch)
        await self._git("checkout", base_branch)
        await self._git("pull", "origin", base_branch)

        logger.info("Creating branch", branch=branch_name)
        await self._git("checkout", "-B", branch_name)

    async def check_for_changes(self) -> bool:
        """Return True when the working tree has any modification.

        Raises:
            GitCommandError: If ``git status`` fails.
        """
        output = await self._git("status", "--porcelain")
        return bool(output.strip())

    async def delete_branch(self, branch_name: str, base_branch: str) -> None:
        """Switch back to ``base_branch`` and delete ``branch_name``.

        Cleanup is best effort: failures are logged, never raised.
        """
        try:
            await self._git("checkout", base_branch)
        except GitCommandError as exc:
            logger.warning(
                "Failed to switch to base branch for cleanup",
                branch=branch_name,
                base_branch=base_branch,
                error=str(exc),
            )
            return

        try:
            await self._git("branch", "-D", branch_name)
        except GitCommandError:
            logger.debug("Branch already absent", branch=branch_name)
            return
        logger.info("Deleted local branch", branch=branch_name)

    async def discard_changes(self) -> None:
        """Drop all uncommitted and untracked changes. Best effort."""
        try:
            await self._git("restore", ".")
            await self._git("clean", "-fd")
        except GitCommandError as exc:
            logger.warning("Failed to discard changes", error=str(exc))
            return
        logger.info("Discarded uncommitted changes")

    async def is_work_tree(self) -> bool:
        """Return True if the working directory is inside a git work tree."""
        try:
            output = await self._git("rev-parse", "--is-inside-work-tree")
        except GitCommandError:
            return False
        return output.strip() == "true"

    async def _git(self, *args: str) -> str:
        """Run one git command and return its stdout.

        Raises:
            GitCommandError: On non-zero exit, timeout, or missing git.
        """
        logger.debug("Running git", args=" ".join(args), cwd=str(self.working_directory))
        try:
            process = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=str(self.working_directory),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise GitCommandError(args, f"Failed to execute git: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise GitCommandError(
                args, f"Timed out after {self.timeout_seconds}s"
            ) from exc

        if process.returncode != 0:
            raise GitCommandError(
                args,
                stderr.decode("utf-8", errors="replace").strip(),
                returncode=process.returncode,
            )
        return stdout.decode("utf-8", errors="replace")

"""Startup checks for the dispatcher's external dependencies.

Before any issue is processed the dispatcher verifies that:
- a GitHub token is configured and can read the repository
- the Claude Code CLI is installed and answers ``--version``
- the working directory is a git work tree

Every check runs; failures are collected and reported together.
"""

import asyncio
from typing import List, Optional

import structlog

from issue_dispatcher.git.branches import BranchManager
from issue_dispatcher.github.client import GitHubAPIError, GitHubClient


logger = structlog.get_logger(__name__)

VERSION_CHECK_TIMEOUT_SECONDS = 30


class PrerequisiteError(Exception):
    """Raised when one or more startup checks fail.

    Attributes:
        failures: Human-readable description of each failed check.
    """

    def __init__(self, failures: List[str]):
        self.failures = failures
        super().__init__(
            "Prerequisites validation failed: " + "; ".join(failures)
        )


class PrerequisitesValidator:
    """Runs the startup checks against real collaborators."""

    def __init__(
        self,
        github_client: GitHubClient,
        branch_manager: BranchManager,
        owner: str,
        repo: str,
        claude_cli_path: str = "claude",
    ):
        self.github_client = github_client
        self.branch_manager = branch_manager
        self.owner = owner
        self.repo = repo
        self.claude_cli_path = claude_cli_path

    async def validate(self) -> None:
        """Run every check.

        Raises:
            PrerequisiteError: Listing every check that failed.
        """
        logger.info("Validating prerequisites")
        failures = [
            failure
            for failure in (
                await self.check_repository_access(),
                await self.check_claude_cli(),
                await self.check_work_tree(),
            )
            if failure is not None
        ]

        if failures:
            for failure in failures:
                logger.error("Prerequisite check failed", reason=failure)
            raise PrerequisiteError(failures)

        logger.info("Prerequisites validation passed")

    async def check_repository_access(self) -> Optional[str]:
        """Return None if the token can read the repository, else a reason."""
        repository = f"{self.owner}/{self.repo}"
        if not self.github_client.token:
            return (
                "GitHub token is not configured "
                "(set DISPATCHER_GITHUB_TOKEN or GITHUB_TOKEN)"
            )
        try:
            await self.github_client.get_repository(self.owner, self.repo)
        except GitHubAPIError as exc:
            return f"Repository {repository} is not accessible: {exc}"
        logger.debug("Repository access validated", repository=repository)
        return None

    async def check_claude_cli(self) -> Optional[str]:
        """Return None if ``claude --version`` succeeds, else a reason."""
        try:
            process = await asyncio.create_subprocess_exec(
                self.claude_cli_path,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            return f"Claude CLI is not available ({self.claude_cli_path}): {exc}"

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(), timeout=VERSION_CHECK_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return (
                f"Claude CLI is not available ({self.claude_cli_path}): "
                f"timed out after {VERSION_CHECK_TIMEOUT_SECONDS}s"
            )

        if process.returncode != 0:
            return (
                f"Claude CLI is not available ({self.claude_cli_path}): "
                f"exit code {process.returncode}"
            )
        logger.debug(
            "Claude CLI availability validated",
            version=stdout.decode("utf-8", errors="replace").strip(),
        )
        return None

    async def check_work_tree(self) -> Optional[str]:
        if await self.branch_manager.is_work_tree():
            return None
        return (
            f"{self.branch_manager.working_directory} is not a git work tree"
        )

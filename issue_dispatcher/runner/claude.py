"""Claude Code CLI subprocess management.

Executes the Claude Code CLI as an async subprocess with the prompt on
stdin, timeout enforcement, and structured result capture. The runner
owns the classification of each run:

- COMPLETED: exit code 0 and no throttling notice in the output
- THROTTLED: the output reports a usage limit or quota exhaustion
- FAILED: anything else (non-zero exit, timeout, missing binary)

Callers receive the classification as a typed status (``run``) or as a
typed exception (``execute``) and never inspect the CLI's text.
"""

import asyncio
import os
import re
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import structlog

from issue_dispatcher.retry import NonRetryableError


logger = structlog.get_logger(__name__)

RATE_LIMIT_PATTERNS = (
    re.compile(r"^(?:claude ai )?usage limit reached\b"),
    re.compile(r"^5-hour limit reached\b"),
    re.compile(r"limit reached\|\d+$"),
    re.compile(r"^(?:api )?error: rate limit exceeded\b"),
)

QUOTA_PATTERNS = (
    re.compile(r"^(?:error: )?daily quota (?:reached|exceeded|exhausted)\b"),
    re.compile(r"^quota (?:reached|exceeded)\b"),
)


class AgentStatus(str, Enum):
    """Classification of one agent run."""

    COMPLETED = "completed"
    THROTTLED = "throttled"
    FAILED = "failed"


class AgentThrottledError(NonRetryableError):
    """The agent refused work until a cooldown elapses.

    Transient: the pipeline persists its progress and resumes later.
    """


class AgentExecutionError(Exception):
    """The agent run failed for a reason other than throttling.

    Attributes:
        exit_code: Process exit code (-1 for timeout/OS errors).
        stderr: Captured standard error (truncated in the message).
    """

    def __init__(self, message: str, exit_code: int = -1, stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


@dataclass
class AgentResult:
    """Result of a Claude Code CLI execution.

    Attributes:
        status: Classification of the run.
        exit_code: Process exit code (-1 for timeout/OS errors).
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration_seconds: Wall-clock execution time.
    """

    status: AgentStatus
    exit_code: int
    stdout: str
    stderr: str
    duration_seconds: float

    @property
    def success(self) -> bool:
        return self.status == AgentStatus.COMPLETED

    @property
    def summary(self) -> str:
        """First non-empty output line, for log and error messages."""
        for text in (self.stdout, self.stderr):
            for line in text.strip().splitlines():
                if line.strip():
                    return line.strip()[:200]
        return ""


def classify_output(exit_code: int, stdout: str, stderr: str = "") -> AgentStatus:
    """Classify a finished run from its exit code and output.

    Throttling notices win over the exit code: the CLI reports usage
    limits both with exit code 0 and with a failure exit code. Only the
    first and last non-empty lines of each stream are checked, so a run
    that merely talks about rate limiting is not mistaken for one.

    Example:
        >>> classify_output(0, "Claude AI usage limit reached|1760000000")
        <AgentStatus.THROTTLED: 'throttled'>
        >>> classify_output(0, "Added rate limit handling to routes.")
        <AgentStatus.COMPLETED: 'completed'>
        >>> classify_output(1, "", "boom")
        <AgentStatus.FAILED: 'failed'>
    """
    if any(is_throttling_notice(line) for line in _edge_lines(stdout, stderr)):
        return AgentStatus.THROTTLED
    if exit_code == 0:
        return AgentStatus.COMPLETED
    return AgentStatus.FAILED


def is_throttling_notice(line: str) -> bool:
    """Return True if a single output line is a usage limit or quota notice."""
    text = line.strip().lower()
    return any(
        pattern.search(text) for pattern in RATE_LIMIT_PATTERNS + QUOTA_PATTERNS
    )


def _edge_lines(*streams: str) -> List[str]:
    lines = []
    for stream in streams:
        content = [line for line in stream.splitlines() if line.strip()]
        if content:
            lines.append(content[0])
            if len(content) > 1:
                lines.append(content[-1])
    return lines


class ClaudeCodeRunner:
    """Runs prompts through the Claude Code CLI in the working tree.

    Attributes:
        cli_path: Path or name of the ``claude`` executable.
        working_directory: Directory the CLI runs in.
        timeout_seconds: Maximum execution time before the process is killed.
        allowed_tools: Tools passed via ``--allowedTools``.
        disallowed_tools: Tools passed via ``--disallowedTools``.
        dangerously_skip_permissions: Pass ``--dangerously-skip-permissions``
            instead of an allow-list.
    """

    def __init__(
        self,
        cli_path: str = "claude",
        working_directory: Union[str, Path] = ".",
        timeout_seconds: float = 300,
        allowed_tools: Optional[Sequence[str]] = None,
        disallowed_tools: Optional[Sequence[str]] = None,
        dangerously_skip_permissions: bool = False,
        bash_default_timeout_ms: Optional[int] = 300000,
        bash_max_timeout_ms: Optional[int] = 600000,
    ):
        self.cli_path = cli_path
        self.working_directory = Path(working_directory)
        self.timeout_seconds = timeout_seconds
        self.allowed_tools = list(allowed_tools or [])
        self.disallowed_tools = list(disallowed_tools or [])
        self.dangerously_skip_permissions = dangerously_skip_permissions
        self.bash_default_timeout_ms = bash_default_timeout_ms
        self.bash_max_timeout_ms = bash_max_timeout_ms

    async def execute(self, prompt: str) -> AgentResult:
        """Run a prompt and raise unless it completed.

        Raises:
            AgentThrottledError: The agent is rate limited or out of quota.
            AgentExecutionError: The run failed for any other reason.
        """
        result = await self.run(prompt)

        if result.status == AgentStatus.THROTTLED:
            logger.warning("Claude Code throttled", summary=result.summary)
            raise AgentThrottledError(f"Claude Code limit reached: {result.summary}")

        if result.status == AgentStatus.FAILED:
            raise AgentExecutionError(
                f"Claude Code failed with exit code {result.exit_code}: "
                f"{result.stderr[:500] or result.summary}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )

        return result

    async def run(self, prompt: str) -> AgentResult:
        """Execute the CLI with ``prompt`` on stdin and classify the run."""
        start_time = time.monotonic()
        process: Optional[asyncio.subprocess.Process] = None

        try:
            process = await self._start_process()
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(prompt.encode("utf-8")),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return await self._handle_timeout(process, start_time)
        except OSError as exc:
            return self._handle_os_error(exc, start_time)

        duration = time.monotonic() - start_time
        return self._build_result(
            process.returncode or 0,
            stdout_bytes.decode("utf-8", errors="replace"),
            stderr_bytes.decode("utf-8", errors="replace"),
            duration,
        )

    def build_command(self) -> List[str]:
        """Assemble the CLI argument list from the permission settings."""
        command = [self.cli_path, "--print"]

        if self.dangerously_skip_permissions:
            command.append("--dangerously-skip-permissions")
        elif self.allowed_tools:
            command.extend(["--allowedTools", *self.allowed_tools])

        if self.disallowed_tools:
            command.extend(["--disallowedTools", *self.disallowed_tools])

        return command

    def build_environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        if self.bash_default_timeout_ms:
            env["BASH_DEFAULT_TIMEOUT_MS"] = str(self.bash_default_timeout_ms)
        if self.bash_max_timeout_ms:
            env["BASH_MAX_TIMEOUT_MS"] = str(self.bash_max_timeout_ms)
        return env

    async def _start_process(self) -> asyncio.subprocess.Process:
        """Launch the CLI subprocess.

        Raises:
            OSError: If the executable cannot be found or started.
        """
        command = self.build_command()
        logger.info(
            "Starting Claude Code",
            command=" ".join(command),
            cwd=str(self.working_directory),
            timeout=self.timeout_seconds,
        )
        return await asyncio.create_subprocess_exec(
            *command,
            cwd=str(self.working_directory),
            env=self.build_environment(),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def _handle_timeout(
        self,
        process: Optional[asyncio.subprocess.Process],
        start_time: float,
    ) -> AgentResult:
        """Kill the process and return a timeout failure result."""
        if process is not None:
            process.kill()
            await process.wait()
        duration = time.monotonic() - start_time
        logger.error("Claude Code timed out", timeout=self.timeout_seconds)
        return AgentResult(
            status=AgentStatus.FAILED,
            exit_code=-1,
            stdout="",
            stderr=f"Process timed out after {self.timeout_seconds}s",
            duration_seconds=duration,
        )

    def _handle_os_error(self, exc: OSError, start_time: float) -> AgentResult:
        """Return a failure result for OS-level errors (e.g., missing binary)."""
        duration = time.monotonic() - start_time
        logger.error("Failed to start Claude Code", error=str(exc))
        return AgentResult(
            status=AgentStatus.FAILED,
            exit_code=-1,
            stdout="",
            stderr=f"Failed to start Claude Code: {exc}",
            duration_seconds=duration,
        )

    def _build_result(
        self,
        exit_code: int,
        stdout: str,
        stderr: str,
        duration: float,
    ) -> AgentResult:
        status = classify_output(exit_code, stdout, stderr)

        if status == AgentStatus.COMPLETED:
            logger.info(
                "Claude Code completed",
                duration=round(duration, 1),
                summary=stdout.strip()[:200],
            )
        elif status == AgentStatus.FAILED:
            logger.error(
                "Claude Code failed",
                exit_code=exit_code,
                duration=round(duration, 1),
            )

        return AgentResult(
            status=status,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_seconds=duration,
        )

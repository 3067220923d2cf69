"""Dispatcher orchestrator wiring discovery, processing, and monitoring.

The orchestrator owns the work queue and builds the long-running
components around it:

    IssuePoller → WorkQueue → ProcessingLoop → ResumablePipeline
                                      ↑
                               StatusMonitor (reporting only)

Collaborators (GitHub client, branch manager, agent, state store,
prerequisites validator) are accepted via constructor injection and
default to the real implementations built from settings.

Issues with persisted progress are not re-queued directly: they are still
open and assigned, so the first poll rediscovers them and the pipeline
resumes each from its persisted step.
"""

from typing import Optional

import structlog

from issue_dispatcher.config import DispatcherSettings, log_configuration
from issue_dispatcher.git.branches import BranchManager
from issue_dispatcher.github.client import GitHubClient
from issue_dispatcher.github.poller import IssuePoller
from issue_dispatcher.prerequisites import PrerequisitesValidator
from issue_dispatcher.processing.loop import ProcessingLoop
from issue_dispatcher.processing.pipeline import Agent, ResumablePipeline
from issue_dispatcher.processing.queue import WorkQueue
from issue_dispatcher.processing.rate_limit import RateLimitPolicy
from issue_dispatcher.runner.claude import ClaudeCodeRunner
from issue_dispatcher.state.store import StateStore
from issue_dispatcher.status import DispatcherStatus, StatusMonitor


logger = structlog.get_logger(__name__)


class DispatcherOrchestrator:
    """Starts, stops, and reports on the dispatcher components.

    Attributes:
        settings: Dispatcher configuration.
        queue: Work queue shared by the poller and the processing loop.
        github_client: Discovery and tracking client.
        branch_manager: Git operations on the working tree.
        agent: Code-generation agent.
        state_store: Per-issue progress persistence.
        validator: Startup prerequisite checks.
    """

    def __init__(
        self,
        settings: DispatcherSettings,
        *,
        github_client: Optional[GitHubClient] = None,
        branch_manager: Optional[BranchManager] = None,
        agent: Optional[Agent] = None,
        state_store: Optional[StateStore] = None,
        validator: Optional[PrerequisitesValidator] = None,
    ):
        self.settings = settings
        self.queue = WorkQueue()
        self.github_client = github_client or GitHubClient(
            token=settings.github_token,
            base_url=settings.github_base_url,
            max_retries=settings.max_retries,
        )
        self.branch_manager = branch_manager or BranchManager(
            working_directory=settings.working_directory
        )
        self.agent = agent or ClaudeCodeRunner(
            cli_path=settings.claude_cli_path,
            working_directory=settings.working_directory,
            timeout_seconds=settings.claude_timeout_seconds,
            allowed_tools=settings.allowed_tools,
            disallowed_tools=settings.disallowed_tools,
            dangerously_skip_permissions=settings.dangerously_skip_permissions,
            bash_default_timeout_ms=settings.bash_default_timeout_ms,
            bash_max_timeout_ms=settings.bash_max_timeout_ms,
        )
        self.state_store = state_store or StateStore(
            settings.resolved_state_directory
        )
        self.validator = validator or PrerequisitesValidator(
            github_client=self.github_client,
            branch_manager=self.branch_manager,
            owner=settings.owner,
            repo=settings.repo,
            claude_cli_path=settings.claude_cli_path,
        )

        self.pipeline: Optional[ResumablePipeline] = None
        self.poller: Optional[IssuePoller] = None
        self.processing_loop: Optional[ProcessingLoop] = None
        self.status_monitor: Optional[StatusMonitor] = None
        self._running = False

    async def start(self) -> None:
        """Validate prerequisites and start every component.

        If any step fails, everything already started is stopped and the
        error is re-raised.
        """
        if self._running:
            logger.warning("Dispatcher is already running")
            return

        logger.info(
            "Starting dispatcher",
            repository=self.settings.repository,
            assignee=self.settings.assignee,
        )
        log_configuration(self.settings)

        try:
            await self.validator.validate()
            self._log_resumable_issues()
            self._build_components()

            await self.poller.start()
            self.processing_loop.start()
            self.status_monitor.start()
        except Exception:
            logger.error("Failed to start dispatcher")
            await self._shutdown()
            raise

        self._running = True
        logger.info("Dispatcher started")

    async def stop(self) -> None:
        """Stop every component and close the GitHub client. Idempotent."""
        if not self._running:
            return

        logger.info("Stopping dispatcher")
        await self._shutdown()
        logger.info("Dispatcher stopped")

    def get_status(self) -> DispatcherStatus:
        if self.status_monitor is None:
            return DispatcherStatus()
        return self.status_monitor.get_status()

    def is_active(self) -> bool:
        return self._running

    def _log_resumable_issues(self) -> None:
        pending = self.state_store.list_pending()
        if not pending:
            return

        logger.info("Found issues with saved progress", count=len(pending))
        for issue_id in pending:
            state = self.state_store.load(issue_id)
            if state is None:
                continue
            logger.info(
                "Resumable issue",
                issue_id=issue_id,
                step=state.current_step.value,
                branch=state.branch_name,
                retry_count=state.retry_count,
            )

    def _build_components(self) -> None:
        settings = self.settings
        self.pipeline = ResumablePipeline(
            branch_manager=self.branch_manager,
            agent=self.agent,
            state_store=self.state_store,
            max_attempts=settings.max_retries,
            retry_base_delay=settings.retry_base_delay_seconds,
        )
        self.poller = IssuePoller(
            github_client=self.github_client,
            queue=self.queue,
            owner=settings.owner,
            repo=settings.repo,
            assignee=settings.assignee,
            interval_seconds=settings.poll_interval_seconds,
            max_retries=settings.max_retries,
            retry_base_delay=settings.retry_base_delay_seconds,
        )
        self.processing_loop = ProcessingLoop(
            pipeline=self.pipeline,
            queue=self.queue,
            policy=RateLimitPolicy(),
            tracker=self.github_client,
            base_branch=settings.base_branch,
            interval_seconds=settings.processing_interval_seconds,
            rate_limit_retry_delay=settings.rate_limit_retry_delay_seconds,
        )
        self.status_monitor = StatusMonitor(
            poller=self.poller,
            queue=self.queue,
            interval_seconds=settings.status_interval_seconds,
        )

    async def _shutdown(self) -> None:
        """Stop components in reverse start order; one failure never blocks the rest."""
        for name, component in (
            ("status monitor", self.status_monitor),
            ("processing loop", self.processing_loop),
            ("poller", self.poller),
        ):
            if component is None:
                continue
            try:
                component.stop()
            except Exception as exc:
                logger.error("Failed to stop component", component=name, error=str(exc))

        try:
            await self.github_client.close()
        except Exception as exc:
            logger.error("Failed to close GitHub client", error=str(exc))

        self._running = False

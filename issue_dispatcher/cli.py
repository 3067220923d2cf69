"""Typer CLI for the issue dispatcher."""

import asyncio
import signal
from pathlib import Path
from typing import Any, Optional

import structlog
import typer
from pydantic import ValidationError

from issue_dispatcher import __version__
from issue_dispatcher.config import DispatcherSettings, get_settings
from issue_dispatcher.git.branches import BranchManager
from issue_dispatcher.github.client import GitHubClient
from issue_dispatcher.logging_config import configure_logging
from issue_dispatcher.orchestrator import DispatcherOrchestrator
from issue_dispatcher.prerequisites import PrerequisiteError, PrerequisitesValidator
from issue_dispatcher.state.store import StateStore


logger = structlog.get_logger(__name__)

app = typer.Typer(
    help="Turn GitHub issues assigned to you into pull requests with Claude Code"
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"issue-dispatcher {__version__}")
        raise typer.Exit()


@app.callback()
def _main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Global callback to wire shared options like --version."""
    return None


def _owner_option() -> Any:
    return typer.Option(
        None, "--owner", "-o", help="Repository owner. Overrides DISPATCHER_OWNER."
    )


def _repo_option() -> Any:
    return typer.Option(
        None, "--repo", "-r", help="Repository name. Overrides DISPATCHER_REPO."
    )


def _assignee_option() -> Any:
    return typer.Option(
        None,
        "--assignee",
        "-a",
        help="Process issues assigned to this login. Overrides DISPATCHER_ASSIGNEE.",
    )


def _working_dir_option() -> Any:
    return typer.Option(
        None,
        "--working-dir",
        "-w",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
        help="Git working tree the dispatcher operates on.",
    )


def _load_settings(**overrides: Any) -> DispatcherSettings:
    """Build settings or exit with a readable validation message."""
    try:
        return get_settings(**overrides)
    except ValidationError as exc:
        typer.secho("Invalid configuration:", fg=typer.colors.RED, err=True)
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"])
            typer.secho(f"  {location}: {error['msg']}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def start(
    owner: Optional[str] = _owner_option(),
    repo: Optional[str] = _repo_option(),
    assignee: Optional[str] = _assignee_option(),
    base_branch: Optional[str] = typer.Option(
        None, "--base-branch", "-b", help="Base branch for pull requests."
    ),
    interval: Optional[float] = typer.Option(
        None, "--interval", "-i", help="Polling interval in seconds."
    ),
    max_retries: Optional[int] = typer.Option(
        None, "--max-retries", help="Maximum retry attempts per step."
    ),
    working_dir: Optional[Path] = _working_dir_option(),
    skip_permissions: Optional[bool] = typer.Option(
        None,
        "--dangerously-skip-permissions/--with-permissions",
        help="Let Claude Code run every tool without asking.",
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level."),
    log_json: Optional[bool] = typer.Option(
        None, "--log-json/--log-console", help="Emit JSON log lines."
    ),
) -> None:
    """Start polling and processing issues until interrupted."""
    settings = _load_settings(
        owner=owner,
        repo=repo,
        assignee=assignee,
        base_branch=base_branch,
        poll_interval_seconds=interval,
        max_retries=max_retries,
        working_directory=working_dir,
        dangerously_skip_permissions=skip_permissions,
        log_level=log_level,
        log_json=log_json,
    )
    configure_logging(settings.log_level, json=settings.log_json)

    try:
        asyncio.run(_run_until_signalled(DispatcherOrchestrator(settings)))
    except PrerequisiteError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


async def _run_until_signalled(orchestrator: DispatcherOrchestrator) -> None:
    """Run the orchestrator until SIGINT or SIGTERM, then stop it."""
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    await orchestrator.start()
    try:
        await shutdown.wait()
        logger.info("Received shutdown signal")
    finally:
        await orchestrator.stop()


@app.command()
def status(
    owner: Optional[str] = _owner_option(),
    repo: Optional[str] = _repo_option(),
    assignee: Optional[str] = _assignee_option(),
    working_dir: Optional[Path] = _working_dir_option(),
) -> None:
    """Show the configuration and issues with saved progress."""
    settings = _load_settings(
        owner=owner, repo=repo, assignee=assignee, working_directory=working_dir
    )
    configure_logging("WARNING")

    typer.echo(f"Repository:      {settings.repository}")
    typer.echo(f"Assignee:        {settings.assignee}")
    typer.echo(f"Base branch:     {settings.base_branch}")
    typer.echo(f"Working dir:     {settings.working_directory}")
    typer.echo(f"State directory: {settings.resolved_state_directory}")

    store = StateStore(settings.resolved_state_directory)
    pending = store.list_pending()
    if not pending:
        typer.echo("\nNo issues with saved progress.")
        return

    typer.echo(f"\nIssues with saved progress ({len(pending)}):")
    for issue_id in pending:
        state = store.load(issue_id)
        if state is None:
            typer.echo(f"  {issue_id}: unreadable state record")
            continue
        typer.echo(
            f"  {issue_id}: step={state.current_step.value} "
            f"branch={state.branch_name} retries={state.retry_count} "
            f"updated={state.last_updated.isoformat()}"
        )


@app.command()
def validate(
    owner: Optional[str] = _owner_option(),
    repo: Optional[str] = _repo_option(),
    assignee: Optional[str] = _assignee_option(),
    working_dir: Optional[Path] = _working_dir_option(),
) -> None:
    """Check GitHub access, the Claude CLI, and the working tree."""
    settings = _load_settings(
        owner=owner, repo=repo, assignee=assignee, working_directory=working_dir
    )
    configure_logging(settings.log_level, json=settings.log_json)

    try:
        asyncio.run(_validate(settings))
    except PrerequisiteError as exc:
        typer.secho("Prerequisites validation failed:", fg=typer.colors.RED, err=True)
        for failure in exc.failures:
            typer.secho(f"  - {failure}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    typer.secho("All prerequisites satisfied.", fg=typer.colors.GREEN)


async def _validate(settings: DispatcherSettings) -> None:
    async with GitHubClient(
        token=settings.github_token, base_url=settings.github_base_url
    ) as client:
        validator = PrerequisitesValidator(
            github_client=client,
            branch_manager=BranchManager(settings.working_directory),
            owner=settings.owner,
            repo=settings.repo,
            claude_cli_path=settings.claude_cli_path,
        )
        await validator.validate()


def main() -> None:
    app()


if __name__ == "__main__":
    main()

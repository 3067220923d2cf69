"""Unit tests for git branch management.

Git is never run: ``asyncio.create_subprocess_exec`` is patched with mock
processes so the exact commands and error handling can be asserted.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from hypothesis import given, strategies as st

from issue_dispatcher.git.branches import BranchManager, GitCommandError, slugify_title


def run_async(coro):
    return asyncio.run(coro)


def _process(returncode=0, stdout=b"", stderr=b""):
    process = AsyncMock()
    process.returncode = returncode
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    process.kill = MagicMock()
    process.wait = AsyncMock()
    return process


def _git_args(mock_exec):
    return [call.args[1:] for call in mock_exec.call_args_list]


@pytest.fixture
def manager(tmp_path):
    return BranchManager(working_directory=tmp_path, timeout_seconds=5)


class TestBranchNaming:
    def test_generate_branch_name(self, manager, make_issue):
        issue = make_issue(number=42, title="Fix Login: handle 500s!")

        assert manager.generate_branch_name(issue) == "issue-42-fix-login-handle-500s"

    def test_slug_collapses_whitespace_and_truncates(self):
        slug = slugify_title("  Add   " + "very long title " * 10)

        assert len(slug) == 50
        assert "--" not in slug.strip("-")

    @given(title=st.text(max_size=200))
    def test_slug_is_branch_safe(self, title):
        slug = slugify_title(title)

        assert len(slug) <= 50
        assert all(c in "abcdefghijklmnopqrstuvwxyz0123456789-" for c in slug)


class TestSwitchToBranch:
    def test_runs_checkout_pull_and_create(self, manager):
        with patch(
            "asyncio.create_subprocess_exec", return_value=_process()
        ) as mock_exec:
            run_async(manager.switch_to_branch("issue-1-x", "main"))

        assert _git_args(mock_exec) == [
            ("checkout", "main"),
            ("pull", "origin", "main"),
            ("checkout", "-B", "issue-1-x"),
        ]
        assert mock_exec.call_args.kwargs["cwd"] == str(manager.working_directory)

    def test_leftover_branch_from_interrupted_run_is_reset(self, manager):
        # a plain ``checkout -b`` would fail with "already exists" here
        with patch(
            "asyncio.create_subprocess_exec", return_value=_process()
        ) as mock_exec:
            run_async(manager.switch_to_branch("issue-1-x", "main"))
            run_async(manager.switch_to_branch("issue-1-x", "main"))

        create_calls = [args for args in _git_args(mock_exec) if "issue-1-x" in args]
        assert create_calls == [("checkout", "-B", "issue-1-x")] * 2

    def test_failure_raises_git_command_error(self, manager):
        with patch(
            "asyncio.create_subprocess_exec",
            return_value=_process(returncode=1, stderr=b"fatal: couldn't find remote ref"),
        ):
            with pytest.raises(GitCommandError) as exc_info:
                run_async(manager.switch_to_branch("issue-1-x", "main"))

        assert exc_info.value.returncode == 1
        assert "couldn't find remote ref" in exc_info.value.stderr

    def test_missing_git_raises_git_command_error(self, manager):
        with patch(
            "asyncio.create_subprocess_exec", side_effect=FileNotFoundError("git")
        ):
            with pytest.raises(GitCommandError):
                run_async(manager.switch_to_branch("issue-1-x", "main"))

    def test_timeout_kills_process(self, manager):
        process = _process()
        process.communicate = AsyncMock(side_effect=asyncio.TimeoutError)

        with patch("asyncio.create_subprocess_exec", return_value=process):
            with pytest.raises(GitCommandError, match="Timed out"):
                run_async(manager.switch_to_branch("issue-1-x", "main"))

        process.kill.assert_called_once()


class TestChangeDetection:
    def test_porcelain_output_means_changes(self, manager):
        with patch(
            "asyncio.create_subprocess_exec",
            return_value=_process(stdout=b" M src/app.py\n?? new.py\n"),
        ) as mock_exec:
            assert run_async(manager.check_for_changes()) is True

        assert _git_args(mock_exec) == [("status", "--porcelain")]

    def test_empty_output_means_clean(self, manager):
        with patch("asyncio.create_subprocess_exec", return_value=_process(stdout=b"\n")):
            assert run_async(manager.check_for_changes()) is False

    def test_status_failure_raises(self, manager):
        with patch(
            "asyncio.create_subprocess_exec", return_value=_process(returncode=128)
        ):
            with pytest.raises(GitCommandError):
                run_async(manager.check_for_changes())


class TestCleanup:
    def test_delete_branch_switches_to_base_first(self, manager):
        with patch(
            "asyncio.create_subprocess_exec", return_value=_process()
        ) as mock_exec:
            run_async(manager.delete_branch("issue-1-x", "main"))

        assert _git_args(mock_exec) == [("checkout", "main"), ("branch", "-D", "issue-1-x")]

    def test_delete_missing_branch_is_tolerated(self, manager):
        processes = [_process(), _process(returncode=1, stderr=b"branch not found")]

        with patch("asyncio.create_subprocess_exec", side_effect=processes):
            run_async(manager.delete_branch("issue-1-x", "main"))

    def test_delete_branch_stops_when_checkout_fails(self, manager):
        with patch(
            "asyncio.create_subprocess_exec", return_value=_process(returncode=1)
        ) as mock_exec:
            run_async(manager.delete_branch("issue-1-x", "main"))

        assert _git_args(mock_exec) == [("checkout", "main")]

    def test_discard_changes_restores_and_cleans(self, manager):
        with patch(
            "asyncio.create_subprocess_exec", return_value=_process()
        ) as mock_exec:
            run_async(manager.discard_changes())

        assert _git_args(mock_exec) == [("restore", "."), ("clean", "-fd")]

    def test_discard_changes_swallows_errors(self, manager):
        with patch(
            "asyncio.create_subprocess_exec", return_value=_process(returncode=1)
        ):
            run_async(manager.discard_changes())


class TestWorkTree:
    def test_inside_work_tree(self, manager):
        with patch("asyncio.create_subprocess_exec", return_value=_process(stdout=b"true\n")):
            assert run_async(manager.is_work_tree()) is True

    def test_outside_work_tree(self, manager):
        with patch(
            "asyncio.create_subprocess_exec", return_value=_process(returncode=128)
        ):
            assert run_async(manager.is_work_tree()) is False

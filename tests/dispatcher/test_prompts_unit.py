"""Unit tests for the prompt text sent to the agent."""

from issue_dispatcher.prompts import (
    commit_prompt,
    implementation_prompt,
    pull_request_prompt,
)


class TestPrompts:
    def test_implementation_prompt_includes_issue(self, make_issue):
        issue = make_issue(number=12, title="Add dark mode", body="Support a dark theme.")

        prompt = implementation_prompt(issue)

        assert prompt.startswith("Please help implement the following GitHub issue:\n\n")
        assert "Title: Add dark mode\n\n" in prompt
        assert "Description:\nSupport a dark theme.\n\n" in prompt
        assert "Issue URL: https://github.com/acme/widgets/issues/12" in prompt
        assert prompt.endswith("ensure the code follows best practices.")

    def test_implementation_prompt_without_body(self, make_issue):
        prompt = implementation_prompt(make_issue(body=None))

        assert "Description:" not in prompt

    def test_commit_prompt_asks_to_push(self):
        assert "push the changes to the remote repository" in commit_prompt()

    def test_pull_request_prompt_targets_base_branch(self):
        prompt = pull_request_prompt("release/2.0")

        assert "targeting the base branch release/2.0" in prompt
        assert "PULL_REQUEST_TEMPLATE" in prompt

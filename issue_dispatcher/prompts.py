"""Prompt text sent to Claude Code for each agent step."""

from issue_dispatcher.github.models import Issue


def implementation_prompt(issue: Issue) -> str:
    """Build the prompt asking the agent to implement an issue.

    Example:
        >>> issue = Issue(id=1, number=7, title="Fix login", body=None,
        ...               html_url="https://github.com/o/r/issues/7")
        >>> print(implementation_prompt(issue).splitlines()[2])
        Title: Fix login
    """
    prompt = "Please help implement the following GitHub issue:\n\n"
    prompt += f"Title: {issue.title}\n\n"

    if issue.body:
        prompt += f"Description:\n{issue.body}\n\n"

    prompt += f"Issue URL: {issue.html_url}\n\n"
    prompt += (
        "Please implement the required changes and ensure the code follows "
        "best practices."
    )
    return prompt


def commit_prompt() -> str:
    return (
        "Please create a concise and descriptive commit message summarizing "
        "the changes made. The message should follow best practices for "
        "commit messages. After committing, please push the changes to the "
        "remote repository."
    )


def pull_request_prompt(base_branch: str) -> str:
    return (
        f"Please create a pull request targeting the base branch {base_branch}. "
        "If a PULL_REQUEST_TEMPLATE exists in the repository, please use it to "
        "format the pull request description. Ensure the title is clear and "
        "references the issue being addressed."
    )

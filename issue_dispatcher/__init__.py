"""Issue dispatcher: assigned GitHub issues to pull requests via Claude Code.

This package implements a local daemon for a single operator and repository:
- GitHub polling and FIFO work queue intake
- Resumable per-issue pipeline with JSON state persistence
- Branch management through git
- Code generation, commit/push and PR creation through the Claude Code CLI
- Pause-and-resume when the agent is rate limited
"""

__version__ = "1.0.0"

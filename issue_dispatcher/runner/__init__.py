"""Claude Code CLI subprocess runner.

This module manages Claude Code execution:
- Subprocess invocation with the prompt on stdin
- Tool permission flags and bash timeout environment
- Timeout enforcement
- Classification of each run as completed, throttled, or failed
"""

from issue_dispatcher.runner.claude import (
    AgentExecutionError,
    AgentResult,
    AgentStatus,
    AgentThrottledError,
    ClaudeCodeRunner,
    classify_output,
)

__all__ = [
    "AgentExecutionError",
    "AgentResult",
    "AgentStatus",
    "AgentThrottledError",
    "ClaudeCodeRunner",
    "classify_output",
]

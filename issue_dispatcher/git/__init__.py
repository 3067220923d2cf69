"""Git working-tree operations (branching, change detection, cleanup)."""

from issue_dispatcher.git.branches import (
    BranchManager,
    GitCommandError,
    slugify_title,
)

__all__ = [
    "BranchManager",
    "GitCommandError",
    "slugify_title",
]

"""Git workspaces: per-repo operation queue, git wrappers, worktree provider, merge."""

from .git_commands import GitCommandError, GitCommands
from .git_queue import GitOperationQueue
from .merge import BranchMerger, MergeResult
from .provider import ProjectStructureViolation, Workspace, WorkspaceProvider, branch_for

__all__ = [
    "BranchMerger",
    "GitCommandError",
    "GitCommands",
    "GitOperationQueue",
    "MergeResult",
    "ProjectStructureViolation",
    "Workspace",
    "WorkspaceProvider",
    "branch_for",
]

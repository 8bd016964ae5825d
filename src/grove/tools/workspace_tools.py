"""File, shell and git tools that operate inside a ticket workspace.

Every path goes through the workspace's SandboxedExecutor, so a tool can
never read or write outside the worktree.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from grove.sandbox.executor import RunResult
from grove.tools.registry import ToolContext, ToolDefinition

logger = logging.getLogger(__name__)


# ── Tool Parameter Models ────────────────────────────────────────────────────


class FileReadParams(BaseModel):
    path: str = Field(description="Path relative to the workspace root")


class FileWriteParams(BaseModel):
    path: str = Field(description="Path relative to the workspace root")
    content: str = Field(description="Full file content to write")


class FileEditParams(BaseModel):
    path: str = Field(description="Path relative to the workspace root")
    old_string: str = Field(min_length=1, description="Exact text to replace")
    new_string: str = Field(description="Replacement text")
    replace_all: bool = Field(default=False, description="Replace every occurrence")


class FileListParams(BaseModel):
    path: str = Field(default=".", description="Directory relative to the workspace root")


class BashParams(BaseModel):
    command: str = Field(min_length=1, description="Shell command, run with bash -c")
    cwd: str | None = Field(default=None, description="Working directory inside the workspace")
    timeout: float | None = Field(default=None, gt=0, description="Seconds before the command is killed")


class GitStatusParams(BaseModel):
    pass


class GitDiffParams(BaseModel):
    staged: bool = Field(default=False, description="Show staged changes instead of unstaged")
    path: str | None = Field(default=None, description="Limit the diff to one path")


class GitCommitParams(BaseModel):
    message: str = Field(min_length=1, description="Commit message")


class GitPushParams(BaseModel):
    pass


# ── Helpers ──────────────────────────────────────────────────────────────────


def format_result(result: RunResult) -> str:
    """Render a RunResult the way agents see it."""
    parts = [f"exit code: {result.exit_code}"]
    if result.timed_out:
        parts.append("(timed out)")
    if result.truncated:
        parts.append("(output truncated)")
    text = " ".join(parts)
    if result.stdout:
        text += f"\n--- stdout ---\n{result.stdout}"
    if result.stderr:
        text += f"\n--- stderr ---\n{result.stderr}"
    return text


# ── Tool Implementations ─────────────────────────────────────────────────────


async def file_read(ctx: ToolContext, params: FileReadParams) -> str:
    return await ctx.workspace.executor.read_file(params.path)


async def file_write(ctx: ToolContext, params: FileWriteParams) -> str:
    target = await ctx.workspace.executor.write_file(params.path, params.content)
    return f"Wrote {len(params.content.encode())} bytes to {target}"


async def file_edit(ctx: ToolContext, params: FileEditParams) -> str:
    executor = ctx.workspace.executor
    content = await executor.read_file(params.path)
    count = content.count(params.old_string)
    if count == 0:
        raise ValueError(f"old_string not found in {params.path}")
    if count > 1 and not params.replace_all:
        raise ValueError(
            f"old_string occurs {count} times in {params.path}; pass replace_all or add context"
        )
    updated = content.replace(params.old_string, params.new_string, -1 if params.replace_all else 1)
    await executor.write_file(params.path, updated)
    return f"Replaced {count if params.replace_all else 1} occurrence(s) in {params.path}"


async def file_list(ctx: ToolContext, params: FileListParams) -> str:
    entries = await ctx.workspace.executor.list_files(params.path)
    return "\n".join(entries)


async def bash(ctx: ToolContext, params: BashParams) -> str:
    result = await ctx.workspace.executor.run(
        "bash", ["-c", params.command], cwd=params.cwd, timeout=params.timeout
    )
    return format_result(result)


async def git_status(ctx: ToolContext, params: GitStatusParams) -> str:
    result = await ctx.workspace.executor.run("git", ["status", "--short", "--branch"])
    return format_result(result)


async def git_diff(ctx: ToolContext, params: GitDiffParams) -> str:
    args = ["diff"]
    if params.staged:
        args.append("--staged")
    if params.path:
        args += ["--", str(ctx.workspace.executor.guard(params.path))]
    result = await ctx.workspace.executor.run("git", args)
    return format_result(result)


async def git_commit(ctx: ToolContext, params: GitCommitParams) -> str:
    executor = ctx.workspace.executor
    added = await executor.run("git", ["add", "-A"])
    if not added.ok:
        return format_result(added)
    status = await executor.run("git", ["status", "--porcelain"])
    if status.ok and not status.stdout.strip():
        return "Nothing to commit, working tree clean"
    return format_result(await executor.run("git", ["commit", "-m", params.message]))


async def git_push(ctx: ToolContext, params: GitPushParams) -> str:
    workspace = ctx.workspace
    if not workspace.branch:
        raise ValueError("Workspace has no branch checked out")
    result = await workspace.executor.run("git", ["push", "-u", "origin", workspace.branch])
    return format_result(result)


WORKSPACE_TOOLS: list[ToolDefinition] = [
    ToolDefinition(
        "file_read", "Read a file in the workspace", FileReadParams, file_read, ("Read", "Grep", "Glob")
    ),
    ToolDefinition("file_write", "Create or overwrite a file", FileWriteParams, file_write, ("Write",)),
    ToolDefinition("file_edit", "Replace exact text in a file", FileEditParams, file_edit, ("Edit",)),
    ToolDefinition("file_list", "List a directory", FileListParams, file_list, ("Glob",)),
    ToolDefinition("bash", "Run a shell command in the workspace", BashParams, bash, ("Bash",)),
    ToolDefinition("git_status", "Show working tree status", GitStatusParams, git_status),
    ToolDefinition("git_diff", "Show uncommitted changes", GitDiffParams, git_diff),
    ToolDefinition("git_commit", "Stage everything and commit", GitCommitParams, git_commit),
    ToolDefinition("git_push", "Push the ticket branch to origin", GitPushParams, git_push),
]

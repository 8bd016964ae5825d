"""Thin async wrappers around the git CLI.

Mutating calls go through :class:`GitOperationQueue` keyed on the
repository path.  Read-only queries (branch exists, remote URL, current
branch, dirty check) run immediately and turn "not found" into ``False``
or ``""`` instead of raising.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from grove.sandbox.config import SandboxConfig
from grove.sandbox.env_scrub import build_sanitized_env
from grove.sandbox.executor import RunResult, run_command
from grove.workspace.git_queue import GitOperationQueue

logger = logging.getLogger(__name__)

_STDERR_TAIL = 500


class GitCommandError(RuntimeError):
    """A git subcommand exited non-zero."""

    def __init__(self, subcommand: str, exit_code: int, stderr: str, cwd: str | None = None):
        self.subcommand = subcommand
        self.exit_code = exit_code
        self.stderr = stderr
        self.cwd = cwd
        tail = stderr.strip()[-_STDERR_TAIL:]
        super().__init__(f"git {subcommand} failed (exit {exit_code}): {tail}")


class GitCommands:
    """git subcommands used by workspace provisioning, cleanup and merge."""

    def __init__(
        self,
        queue: GitOperationQueue,
        *,
        timeout: float = 30.0,
        sandbox: SandboxConfig | None = None,
        git_exe: str = "git",
    ):
        self.queue = queue
        self.timeout = timeout
        self.sandbox = sandbox or SandboxConfig()
        self.git_exe = git_exe

    # ── Primitives ───────────────────────────────────────────────────────

    async def run(
        self, cwd: str | os.PathLike, *args: str, env: dict[str, str] | None = None
    ) -> RunResult:
        """Run ``git args...`` in ``cwd`` without queueing or checking."""
        result = await run_command(
            self.git_exe,
            args,
            cwd=cwd,
            timeout=self.timeout,
            max_output=self.sandbox.max_output_bytes,
            env=build_sanitized_env(self.sandbox, extra=env),
        )
        if result.exit_code != 0:
            logger.debug(
                "git %s in %s exited %d: %s",
                args[0] if args else "",
                cwd,
                result.exit_code,
                result.stderr.strip()[-_STDERR_TAIL:],
            )
        return result

    async def check(
        self, cwd: str | os.PathLike, *args: str, env: dict[str, str] | None = None
    ) -> str:
        """Run git and return stdout, raising GitCommandError on failure."""
        result = await self.run(cwd, *args, env=env)
        if result.exit_code != 0:
            raise GitCommandError(args[0], result.exit_code, result.stderr, cwd=str(cwd))
        return result.stdout

    async def shared(
        self,
        repo: str | os.PathLike,
        *args: str,
        cwd: str | os.PathLike | None = None,
        env: dict[str, str] | None = None,
    ) -> str:
        """Queue a checked git call on ``repo``'s chain."""
        return await self.queue.shared(repo, lambda: self.check(cwd or repo, *args, env=env))

    # ── Shared-state operations (queued) ─────────────────────────────────

    async def fetch(self, repo: Path, remote: str = "origin") -> None:
        await self.shared(repo, "fetch", remote)

    async def create_branch(self, repo: Path, name: str, start_point: str) -> None:
        await self.shared(repo, "branch", name, start_point)

    async def delete_branch(self, repo: Path, name: str, *, force: bool = True) -> None:
        await self.shared(repo, "branch", "-D" if force else "-d", name)

    async def add_worktree(self, repo: Path, path: Path, branch: str) -> None:
        await self.shared(repo, "worktree", "add", str(path), branch)

    async def remove_worktree(self, repo: Path, path: Path) -> None:
        await self.shared(repo, "worktree", "remove", "--force", str(path))

    async def prune_worktrees(self, repo: Path) -> None:
        await self.shared(repo, "worktree", "prune")

    # ── Local queries (not queued) ───────────────────────────────────────

    async def branch_exists(self, repo: Path, name: str) -> bool:
        result = await self.run(repo, "rev-parse", "--verify", "--quiet", f"refs/heads/{name}")
        return result.exit_code == 0

    async def remote_url(self, repo: Path, remote: str = "origin") -> str:
        result = await self.run(repo, "config", "--get", f"remote.{remote}.url")
        return result.stdout.strip() if result.exit_code == 0 else ""

    async def current_branch(self, cwd: Path) -> str:
        result = await self.run(cwd, "branch", "--show-current")
        return result.stdout.strip() if result.exit_code == 0 else ""

    async def remote_default_branch(self, repo: Path, fallback: str = "main") -> str:
        """``origin/<default>`` as advertised by ``origin/HEAD``, else ``origin/<fallback>``."""
        result = await self.run(repo, "symbolic-ref", "--short", "refs/remotes/origin/HEAD")
        ref = result.stdout.strip()
        if result.exit_code == 0 and ref:
            return ref
        return f"origin/{fallback}"

    async def is_dirty(self, cwd: Path) -> bool:
        result = await self.run(cwd, "status", "--porcelain")
        return result.exit_code == 0 and bool(result.stdout.strip())

    async def head_commit(self, cwd: Path) -> str:
        return (await self.check(cwd, "rev-parse", "HEAD")).strip()

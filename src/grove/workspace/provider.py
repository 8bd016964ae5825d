"""Workspace resolution: main checkout or per-ticket git worktree.

On-disk layout for a project ``<slug>`` under ``projects_root``::

    <projects_root>/<slug>/repo/                 canonical clone
    <projects_root>/<slug>/worktrees/<ticket>/   one worktree per ticket

Each ticket works on branch ``ticket/<ticket>`` created from the remote's
default branch.  Anything that touches the repository's shared git state
is queued on the repo path.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from grove.sandbox.config import SandboxConfig
from grove.sandbox.executor import SandboxedExecutor
from grove.workspace.git_commands import GitCommands

logger = logging.getLogger(__name__)

_TICKET_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
BRANCH_PREFIX = "ticket/"


class ProjectStructureViolation(RuntimeError):
    """The project directory does not have the expected repo/ layout.

    Fatal: the caller has to fix the directory, retrying will not help.
    """


def branch_for(ticket_id: str | int) -> str:
    return f"{BRANCH_PREFIX}{ticket_id}"


def committer_env(ticket_id: str | int) -> dict[str, str]:
    """Per-ticket git identity, passed via env to every workspace command.

    Set through the environment rather than ``git config`` because a
    worktree shares its config file with the main checkout.
    """
    name = f"{ticket_id} Agent"
    email = f"{ticket_id}@grove.local"
    return {
        "GIT_AUTHOR_NAME": name,
        "GIT_AUTHOR_EMAIL": email,
        "GIT_COMMITTER_NAME": name,
        "GIT_COMMITTER_EMAIL": email,
    }


@dataclass
class Workspace:
    """A resolved directory an agent may work in."""

    project_id: str
    ticket_id: str | None
    root_path: Path
    repo_path: Path
    branch: str
    remote: str
    executor: SandboxedExecutor
    git_env: dict[str, str] = field(default_factory=dict)

    @property
    def is_worktree(self) -> bool:
        return self.ticket_id is not None


class WorkspaceProvider:
    """Resolves and tears down ticket workspaces."""

    def __init__(
        self,
        projects_root: str | Path,
        git: GitCommands,
        *,
        default_branch: str = "main",
        sandbox: SandboxConfig | None = None,
    ):
        self.projects_root = Path(projects_root)
        self.git = git
        self.default_branch = default_branch
        self.sandbox = sandbox or SandboxConfig()
        self._provisioning: dict[Path, asyncio.Task[Workspace]] = {}

    # ── Paths ────────────────────────────────────────────────────────────

    def repo_path(self, project_id: str) -> Path:
        return self.projects_root / project_id / "repo"

    def worktrees_dir(self, project_id: str) -> Path:
        return self.projects_root / project_id / "worktrees"

    def worktree_path(self, project_id: str, ticket_id: str | int) -> Path:
        return self.worktrees_dir(project_id) / _checked_ticket_id(ticket_id)

    def verify_structure(self, project_id: str) -> Path:
        """Return the canonical repo path or raise ProjectStructureViolation."""
        project_dir = self.projects_root / project_id
        repo = project_dir / "repo"
        if not repo.is_dir():
            raise ProjectStructureViolation(
                f"FATAL: Project structure violation - repo/ directory missing at {repo}. "
                f"Expected structure: {project_dir}/repo/ (git clone) and "
                f"{project_dir}/worktrees/ (ticket worktrees). "
                "Clone the repository into repo/ before dispatching agents."
            )
        if not (repo / ".git").exists():
            raise ProjectStructureViolation(
                f"FATAL: Project structure violation - repo/ is not a git repository at {repo}. "
                "Re-clone the repository into repo/."
            )
        return repo

    # ── Resolve ──────────────────────────────────────────────────────────

    async def resolve(self, project_id: str, ticket_id: str | int | None = None) -> Workspace:
        """Return the workspace for a project, or for one ticket of it.

        Without a ticket this is the main checkout on whatever branch it has
        checked out.  With a ticket, the worktree is reused if present and
        provisioned otherwise; concurrent calls for the same ticket share a
        single provisioning run.
        """
        repo = self.verify_structure(project_id)

        if ticket_id is None:
            remote = await self.git.remote_url(repo)
            branch = await self.git.current_branch(repo)
            return Workspace(
                project_id=project_id,
                ticket_id=None,
                root_path=repo,
                repo_path=repo,
                branch=branch,
                remote=remote,
                executor=SandboxedExecutor(repo, self.sandbox),
            )

        ticket = _checked_ticket_id(ticket_id)
        path = self.worktree_path(project_id, ticket)
        if path.exists():
            return await self._build_workspace(project_id, ticket, repo, path)

        task = self._provisioning.get(path)
        if task is None:
            task = asyncio.create_task(
                self._provision(project_id, ticket, repo, path),
                name=f"provision-{project_id}-{ticket}",
            )
            self._provisioning[path] = task
            task.add_done_callback(lambda _t: self._provisioning.pop(path, None))
        return await asyncio.shield(task)

    async def _provision(self, project_id: str, ticket: str, repo: Path, path: Path) -> Workspace:
        branch = branch_for(ticket)
        logger.info("Provisioning worktree for %s/%s at %s", project_id, ticket, path)

        await self.git.fetch(repo)
        if await self.git.branch_exists(repo, branch):
            logger.info("Deleting stale branch %s in %s", branch, repo)
            await self.git.delete_branch(repo, branch)
        start_point = await self.git.remote_default_branch(repo, self.default_branch)
        await self.git.create_branch(repo, branch, start_point)

        path.parent.mkdir(parents=True, exist_ok=True)
        await self.git.add_worktree(repo, path, branch)

        logger.info("Worktree ready: %s (branch=%s, base=%s)", path, branch, start_point)
        return await self._build_workspace(project_id, ticket, repo, path)

    async def _build_workspace(
        self, project_id: str, ticket: str, repo: Path, path: Path
    ) -> Workspace:
        identity = committer_env(ticket)
        return Workspace(
            project_id=project_id,
            ticket_id=ticket,
            root_path=path,
            repo_path=repo,
            branch=branch_for(ticket),
            remote=await self.git.remote_url(repo),
            executor=SandboxedExecutor(path, self.sandbox, env=identity),
            git_env=identity,
        )

    # ── Cleanup ──────────────────────────────────────────────────────────

    async def cleanup(self, project_id: str, ticket_id: str | int | None) -> list[str]:
        """Remove a ticket's worktree and branch. Returns the steps taken."""
        log: list[str] = []
        if ticket_id is None:
            return log

        repo = self.verify_structure(project_id)
        ticket = _checked_ticket_id(ticket_id)
        path = self.worktree_path(project_id, ticket)
        branch = branch_for(ticket)

        if path.exists():
            await self.git.remove_worktree(repo, path)
            log.append(f"Removed worktree {path}")
        else:
            log.append(f"No worktree at {path}")

        if await self.git.branch_exists(repo, branch):
            await self.git.delete_branch(repo, branch)
            log.append(f"Deleted branch {branch}")
        else:
            log.append(f"No branch {branch}")

        logger.info("Cleaned up workspace %s/%s", project_id, ticket)
        return log


def _checked_ticket_id(ticket_id: str | int) -> str:
    value = str(ticket_id)
    if not _TICKET_ID_RE.match(value):
        raise ValueError(f"Invalid ticket id for a workspace path: {value!r}")
    return value

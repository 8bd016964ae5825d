"""Merge a ticket branch into the main checkout.

The whole sequence runs as one operation on the repository's queue so no
worktree provisioning can interleave with it.  Three paths:

- normal: commit leftovers in the worktree, remove the worktree, commit
  leftovers on main, ``merge --no-ff`` (plain merge as fallback), delete
  the branch;
- nested metadata: the worktree's ``.git`` is a directory or points at a
  missing gitdir (an agent ran ``git init`` or similar), so git cannot merge
  it; the files are copied into the main checkout and committed there;
- no worktree: merge the branch if it still exists.

The default branch is pushed afterwards on a best-effort basis.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from grove.workspace.git_commands import GitCommandError, GitCommands

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    ok: bool
    merge_commit: str | None = None
    log: list[str] = field(default_factory=list)


def has_nested_metadata(worktree: Path) -> bool:
    """True when ``worktree/.git`` no longer links back to the main repo."""
    dot_git = worktree / ".git"
    if dot_git.is_dir():
        return True
    if dot_git.is_file():
        content = dot_git.read_text(encoding="utf-8", errors="replace").strip()
        if content.startswith("gitdir:"):
            target = Path(content[len("gitdir:") :].strip())
            if not target.is_absolute():
                target = worktree / target
            return not target.exists()
        return True
    return False


def _copy_worktree_files(src: Path, dest: Path) -> int:
    """Copy every top-level entry except ``.git`` from src into dest."""
    copied = 0
    for entry in os.scandir(src):
        if entry.name == ".git":
            continue
        target = dest / entry.name
        if entry.is_dir(follow_symlinks=False):
            shutil.copytree(entry.path, target, symlinks=True, dirs_exist_ok=True)
        else:
            shutil.copy2(entry.path, target, follow_symlinks=False)
        copied += 1
    return copied


class BranchMerger:
    """Runs the ship sequence for one ticket branch."""

    def __init__(self, git: GitCommands):
        self.git = git

    async def ship(
        self,
        repo: Path,
        worktree: Path,
        branch: str,
        message: str,
        *,
        default_branch: str = "main",
        env: dict[str, str] | None = None,
    ) -> MergeResult:
        """Merge ``branch`` into ``repo`` and return the ordered step log."""
        return await self.git.queue.shared(
            repo, lambda: self._ship(repo, worktree, branch, message, default_branch, env)
        )

    async def _ship(
        self,
        repo: Path,
        worktree: Path,
        branch: str,
        message: str,
        default_branch: str,
        env: dict[str, str] | None,
    ) -> MergeResult:
        result = MergeResult(ok=False)
        log = result.log
        try:
            if worktree.exists() and has_nested_metadata(worktree):
                await self._recover_nested(repo, worktree, branch, message, log, env)
            elif worktree.exists():
                await self._commit_pending(worktree, f"wip: {message}", log, env)
                await self.git.check(repo, "worktree", "remove", "--force", str(worktree))
                log.append(f"Removed worktree {worktree}")
                await self._commit_pending(repo, f"chore: auto-commit before merging {branch}", log, env)
                if not await self._merge(repo, branch, message, log, env):
                    return result
                await self.git.check(repo, "branch", "-d", branch)
                log.append(f"Deleted branch {branch}")
            elif await self.git.branch_exists(repo, branch):
                log.append(f"No worktree at {worktree}; merging branch {branch} directly")
                if not await self._merge(repo, branch, message, log, env):
                    return result
                await self.git.check(repo, "branch", "-d", branch)
                log.append(f"Deleted branch {branch}")
            else:
                log.append(f"Nothing to merge: no worktree at {worktree} and no branch {branch}")
                return result

            result.merge_commit = await self.git.head_commit(repo)
            log.append(f"Merge commit {result.merge_commit}")
        except (GitCommandError, OSError) as exc:
            # OSError covers shutil.Error from the nested-recovery copy
            logger.warning("Ship of %s in %s failed: %s", branch, repo, exc)
            log.append(f"Error: {exc}")
            return result

        push = await self.git.run(repo, "push", "origin", default_branch, env=env)
        if push.ok:
            log.append(f"Pushed {default_branch} to origin")
        else:
            logger.warning("Push of %s from %s failed: %s", default_branch, repo, push.stderr.strip()[-500:])
            log.append(f"Push skipped: {push.stderr.strip() or 'exit ' + str(push.exit_code)}")

        result.ok = True
        return result

    async def _recover_nested(
        self,
        repo: Path,
        worktree: Path,
        branch: str,
        message: str,
        log: list[str],
        env: dict[str, str] | None,
    ) -> None:
        log.append(f"Worktree {worktree} has nested git metadata; recovering files by copy")
        if (worktree / ".git").is_dir():
            # Best-effort snapshot inside the nested repo before the copy.
            add = await self.git.run(worktree, "add", "-A", env=env)
            if add.ok and await self.git.is_dirty(worktree):
                await self.git.run(worktree, "commit", "-m", f"wip: {message}", env=env)

        copied = await asyncio.to_thread(_copy_worktree_files, worktree, repo)
        log.append(f"Copied {copied} entries into {repo}")

        await self.git.check(repo, "add", "-A", env=env)
        if await self.git.is_dirty(repo):
            await self.git.check(repo, "commit", "-m", message, env=env)
            log.append("Committed recovered files on main")
        else:
            log.append("Recovered files matched main; nothing to commit")

        await asyncio.to_thread(shutil.rmtree, worktree)
        log.append(f"Removed corrupted worktree {worktree}")
        await self.git.run(repo, "worktree", "prune")
        if await self.git.branch_exists(repo, branch):
            await self.git.run(repo, "branch", "-D", branch)
            log.append(f"Deleted branch {branch}")

    async def _commit_pending(
        self, cwd: Path, message: str, log: list[str], env: dict[str, str] | None
    ) -> None:
        if not await self.git.is_dirty(cwd):
            return
        await self.git.check(cwd, "add", "-A", env=env)
        await self.git.check(cwd, "commit", "-m", message, env=env)
        log.append(f"Committed pending changes in {cwd}")

    async def _merge(
        self, repo: Path, branch: str, message: str, log: list[str], env: dict[str, str] | None
    ) -> bool:
        merged = await self.git.run(repo, "merge", "--no-ff", "-m", message, branch, env=env)
        if merged.ok:
            log.append(f"Merged {branch} (--no-ff)")
            return True

        await self.git.run(repo, "merge", "--abort")
        fallback = await self.git.run(repo, "merge", branch, env=env)
        if fallback.ok:
            log.append(f"Merged {branch}")
            return True

        await self.git.run(repo, "merge", "--abort")
        detail = (fallback.stderr or fallback.stdout).strip()[-500:]
        logger.warning("Merge of %s into %s failed: %s", branch, repo, detail)
        log.append(f"Merge of {branch} failed: {detail}")
        return False

"""Tests for git wrappers and worktree provisioning against a real repository."""

import asyncio
import shutil

import pytest

from grove.workspace.git_commands import GitCommandError, GitCommands
from grove.workspace.git_queue import GitOperationQueue
from grove.workspace.provider import (
    ProjectStructureViolation,
    WorkspaceProvider,
    branch_for,
    committer_env,
)

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def git_commands():
    return GitCommands(GitOperationQueue())


@pytest.fixture
def provider(projects_root, git_commands):
    return WorkspaceProvider(projects_root, git_commands)


class TestGitCommands:
    async def test_branch_exists(self, projects_root, git_commands):
        repo = projects_root / "demo" / "repo"
        assert await git_commands.branch_exists(repo, "main")
        assert not await git_commands.branch_exists(repo, "nope")

    async def test_remote_queries(self, projects_root, git_commands):
        repo = projects_root / "demo" / "repo"
        assert (await git_commands.remote_url(repo)).endswith("origin.git")
        assert await git_commands.remote_url(repo, "upstream") == ""
        assert await git_commands.current_branch(repo) == "main"
        assert await git_commands.remote_default_branch(repo) == "origin/main"

    async def test_is_dirty(self, projects_root, git_commands):
        repo = projects_root / "demo" / "repo"
        assert not await git_commands.is_dirty(repo)
        (repo / "new.txt").write_text("x")
        assert await git_commands.is_dirty(repo)

    async def test_check_raises_with_subcommand(self, projects_root, git_commands):
        repo = projects_root / "demo" / "repo"
        with pytest.raises(GitCommandError) as exc_info:
            await git_commands.check(repo, "checkout", "does-not-exist")
        assert exc_info.value.subcommand == "checkout"
        assert exc_info.value.exit_code != 0
        assert "git checkout failed" in str(exc_info.value)


class TestStructure:
    def test_missing_repo_dir(self, tmp_path, git_commands):
        (tmp_path / "proj").mkdir()
        provider = WorkspaceProvider(tmp_path, git_commands)
        with pytest.raises(ProjectStructureViolation, match="FATAL: Project structure violation"):
            provider.verify_structure("proj")

    def test_repo_not_a_git_clone(self, tmp_path, git_commands):
        (tmp_path / "proj" / "repo").mkdir(parents=True)
        provider = WorkspaceProvider(tmp_path, git_commands)
        with pytest.raises(ProjectStructureViolation, match="not a git repository"):
            provider.verify_structure("proj")

    def test_ticket_id_is_path_safe(self, provider):
        with pytest.raises(ValueError):
            provider.worktree_path("demo", "../../etc")


class TestResolve:
    async def test_project_workspace_is_main_checkout(self, provider, projects_root):
        ws = await provider.resolve("demo")
        assert ws.root_path == projects_root / "demo" / "repo"
        assert ws.branch == "main"
        assert not ws.is_worktree

    async def test_ticket_workspace_provisions_worktree(self, provider, projects_root, run_git):
        ws = await provider.resolve("demo", 7)
        expected = projects_root / "demo" / "worktrees" / "7"
        assert ws.root_path == expected
        assert ws.is_worktree
        assert ws.branch == branch_for(7) == "ticket/7"
        assert (expected / "README.md").exists()
        assert run_git(expected, "branch", "--show-current") == "ticket/7"
        assert ws.git_env == committer_env("7")

    async def test_second_resolve_reuses_worktree(self, provider):
        first = await provider.resolve("demo", 3)
        (first.root_path / "scratch.txt").write_text("keep")
        second = await provider.resolve("demo", 3)
        assert second.root_path == first.root_path
        assert (second.root_path / "scratch.txt").read_text() == "keep"

    async def test_concurrent_resolves_share_provisioning(self, provider, git_commands, monkeypatch):
        calls = 0
        original = git_commands.add_worktree

        async def counting(*args, **kwargs):
            nonlocal calls
            calls += 1
            return await original(*args, **kwargs)

        monkeypatch.setattr(git_commands, "add_worktree", counting)
        results = await asyncio.gather(*(provider.resolve("demo", 5) for _ in range(4)))
        assert calls == 1
        assert len({ws.root_path for ws in results}) == 1

    async def test_provisioning_runs_on_repo_queue(self, provider, git_commands, projects_root, monkeypatch):
        recorded: list[tuple[str, str]] = []
        current = {"key": None}
        original_shared = git_commands.queue.shared
        original_check = git_commands.check

        async def recording_shared(repo_path, op):
            async def traced():
                current["key"] = GitOperationQueue.key_for(repo_path)
                try:
                    return await op()
                finally:
                    current["key"] = None

            return await original_shared(repo_path, traced)

        async def recording_check(cwd, *args, **kwargs):
            if current["key"] is not None:
                recorded.append((current["key"], args[0]))
            return await original_check(cwd, *args, **kwargs)

        monkeypatch.setattr(git_commands.queue, "shared", recording_shared)
        monkeypatch.setattr(git_commands, "check", recording_check)
        await asyncio.gather(*(provider.resolve("demo", 12) for _ in range(4)))

        repo_key = GitOperationQueue.key_for(projects_root / "demo" / "repo")
        assert [sub for _, sub in recorded] == ["fetch", "branch", "worktree"]
        assert {key for key, _ in recorded} == {repo_key}

    async def test_stale_branch_is_replaced(self, provider, projects_root, run_git):
        repo = projects_root / "demo" / "repo"
        run_git(repo, "branch", "ticket/9")
        (repo / "extra.txt").write_text("x")
        run_git(repo, "add", "extra.txt")
        run_git(repo, "commit", "-q", "-m", "local only")
        run_git(repo, "branch", "-f", "ticket/9", "HEAD")

        ws = await provider.resolve("demo", 9)
        # recreated from origin/main, so the local-only commit is gone
        assert not (ws.root_path / "extra.txt").exists()

    async def test_executor_is_confined_to_worktree(self, provider):
        ws = await provider.resolve("demo", 11)
        with pytest.raises(PermissionError):
            ws.executor.guard("../../repo/README.md")

    async def test_commits_use_ticket_identity(self, provider, run_git):
        ws = await provider.resolve("demo", 12)
        await ws.executor.write_file("feature.txt", "done")
        await ws.executor.run("git", ["add", "-A"])
        result = await ws.executor.run("git", ["commit", "-q", "-m", "feature"])
        assert result.ok
        assert run_git(ws.root_path, "log", "-1", "--format=%an <%ae>") == "12 Agent <12@grove.local>"


class TestCleanup:
    async def test_removes_worktree_and_branch(self, provider, projects_root):
        ws = await provider.resolve("demo", 4)
        log = await provider.cleanup("demo", 4)
        assert not ws.root_path.exists()
        assert not await provider.git.branch_exists(projects_root / "demo" / "repo", "ticket/4")
        assert log == [f"Removed worktree {ws.root_path}", "Deleted branch ticket/4"]

    async def test_cleanup_of_missing_workspace(self, provider):
        log = await provider.cleanup("demo", 99)
        assert log[0].startswith("No worktree at")
        assert log[1] == "No branch ticket/99"

"""Tests for the ship sequence: normal merge, nested-metadata recovery, edge cases."""

import shutil

import pytest

from grove.workspace.git_commands import GitCommands
from grove.workspace.git_queue import GitOperationQueue
from grove.workspace.merge import BranchMerger, has_nested_metadata
from grove.workspace.provider import WorkspaceProvider, committer_env

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def git_commands():
    return GitCommands(GitOperationQueue())


@pytest.fixture
def provider(projects_root, git_commands):
    return WorkspaceProvider(projects_root, git_commands)


@pytest.fixture
def merger(git_commands):
    return BranchMerger(git_commands)


async def _ship(merger, provider, ticket_id):
    repo = provider.verify_structure("demo")
    return await merger.ship(
        repo,
        provider.worktree_path("demo", ticket_id),
        f"ticket/{ticket_id}",
        f"merge ticket/{ticket_id}: test",
        env=committer_env(ticket_id),
    )


class TestNestedDetection:
    def test_plain_directory(self, tmp_path):
        assert not has_nested_metadata(tmp_path)

    def test_git_directory(self, tmp_path):
        (tmp_path / ".git").mkdir()
        assert has_nested_metadata(tmp_path)

    def test_gitdir_pointing_nowhere(self, tmp_path):
        (tmp_path / ".git").write_text(f"gitdir: {tmp_path / 'missing'}\n")
        assert has_nested_metadata(tmp_path)

    def test_valid_gitdir_file(self, tmp_path):
        target = tmp_path / "meta"
        target.mkdir()
        wt = tmp_path / "wt"
        wt.mkdir()
        (wt / ".git").write_text(f"gitdir: {target}\n")
        assert not has_nested_metadata(wt)


class TestNormalShip:
    async def test_merges_uncommitted_work(self, merger, provider, projects_root, run_git):
        ws = await provider.resolve("demo", 1)
        (ws.root_path / "feature.py").write_text("VALUE = 1\n")

        result = await _ship(merger, provider, 1)

        repo = projects_root / "demo" / "repo"
        assert result.ok
        assert result.merge_commit == run_git(repo, "rev-parse", "HEAD")
        assert (repo / "feature.py").read_text() == "VALUE = 1\n"
        assert not ws.root_path.exists()
        assert run_git(repo, "branch", "--list", "ticket/1") == ""
        assert any("--no-ff" in line for line in result.log)

    async def test_pushes_default_branch(self, merger, provider, tmp_path, run_git):
        ws = await provider.resolve("demo", 2)
        (ws.root_path / "pushed.txt").write_text("x")

        result = await _ship(merger, provider, 2)

        assert result.ok
        assert "Pushed main to origin" in result.log
        assert run_git(tmp_path / "origin.git", "rev-parse", "main") == result.merge_commit

    async def test_merge_commit_has_ticket_identity(self, merger, provider, projects_root, run_git):
        ws = await provider.resolve("demo", 3)
        (ws.root_path / "a.txt").write_text("a")
        await _ship(merger, provider, 3)
        author = run_git(projects_root / "demo" / "repo", "log", "-1", "--format=%an")
        assert author == "3 Agent"


class TestNestedRecovery:
    async def test_recovers_files_from_nested_repo(self, merger, provider, projects_root, run_git):
        ws = await provider.resolve("demo", 4)
        # Simulate an agent that ran `rm .git && git init` inside its worktree.
        (ws.root_path / ".git").unlink()
        run_git(ws.root_path, "init", "-q")
        (ws.root_path / "src").mkdir()
        (ws.root_path / "src" / "app.py").write_text("print('recovered')\n")

        result = await _ship(merger, provider, 4)

        repo = projects_root / "demo" / "repo"
        assert result.ok
        assert result.merge_commit == run_git(repo, "rev-parse", "HEAD")
        assert (repo / "src" / "app.py").read_text() == "print('recovered')\n"
        assert not ws.root_path.exists()
        assert run_git(repo, "branch", "--list", "ticket/4") == ""
        assert result.log[0].startswith(f"Worktree {ws.root_path} has nested git metadata")
        assert "Committed recovered files on main" in result.log
        # The nested .git directory must not be copied over the main repo's.
        assert (repo / ".git" / "HEAD").exists()

    async def test_copy_collision_fails_cleanly(self, merger, provider, projects_root, run_git):
        repo = projects_root / "demo" / "repo"
        ws = await provider.resolve("demo", 8)
        (repo / "docs").write_text("main keeps docs as a file\n")
        run_git(repo, "add", "docs")
        run_git(repo, "commit", "-q", "-m", "docs file")

        (ws.root_path / ".git").unlink()
        run_git(ws.root_path, "init", "-q")
        (ws.root_path / "docs").mkdir()
        (ws.root_path / "docs" / "guide.md").write_text("# Guide\n")

        result = await _ship(merger, provider, 8)

        assert not result.ok
        assert result.merge_commit is None
        assert result.log[-1].startswith("Error:")
        assert (repo / "docs").is_file()


class TestEdgeCases:
    async def test_nothing_to_merge(self, merger, provider):
        result = await _ship(merger, provider, 50)
        assert not result.ok
        assert result.merge_commit is None
        assert result.log[-1].startswith("Nothing to merge")

    async def test_branch_without_worktree(self, merger, provider, projects_root, run_git):
        ws = await provider.resolve("demo", 6)
        (ws.root_path / "b.txt").write_text("b")
        run_git(ws.root_path, "add", "b.txt")
        run_git(ws.root_path, "commit", "-q", "-m", "b")
        run_git(projects_root / "demo" / "repo", "worktree", "remove", "--force", str(ws.root_path))

        result = await _ship(merger, provider, 6)

        assert result.ok
        assert (projects_root / "demo" / "repo" / "b.txt").exists()
        assert result.log[0].startswith("No worktree at")

    async def test_conflict_fails_without_state_change(self, merger, provider, projects_root, run_git):
        repo = projects_root / "demo" / "repo"
        ws = await provider.resolve("demo", 7)
        (ws.root_path / "README.md").write_text("# from ticket\n")

        (repo / "README.md").write_text("# from main\n")
        run_git(repo, "commit", "-q", "-am", "main edit")
        head_before = run_git(repo, "rev-parse", "HEAD")

        result = await _ship(merger, provider, 7)

        assert not result.ok
        assert result.merge_commit is None
        assert run_git(repo, "rev-parse", "HEAD") == head_before
        assert any("failed" in line for line in result.log)

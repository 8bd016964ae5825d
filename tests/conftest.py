"""Shared fixtures: a real git project laid out as <projects_root>/<slug>/repo."""

import subprocess
from pathlib import Path

import pytest


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=str(cwd), capture_output=True, text=True, check=True
    )
    return result.stdout.strip()


@pytest.fixture
def run_git():
    """The `git` helper, for asserting on repository state."""
    return git


@pytest.fixture
def git_identity(monkeypatch):
    """Deterministic identity and no user/system git config."""
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", "/dev/null")


@pytest.fixture
def projects_root(tmp_path, git_identity) -> Path:
    """projects/demo/repo cloned from a bare origin with one commit on main."""
    seed = tmp_path / "seed"
    seed.mkdir()
    git(seed, "init", "-q", "-b", "main")
    (seed / "README.md").write_text("# demo\n")
    git(seed, "add", "README.md")
    git(seed, "commit", "-q", "-m", "initial")

    origin = tmp_path / "origin.git"
    git(tmp_path, "clone", "-q", "--bare", str(seed), str(origin))

    root = tmp_path / "projects"
    (root / "demo").mkdir(parents=True)
    git(tmp_path, "clone", "-q", str(origin), str(root / "demo" / "repo"))
    return root

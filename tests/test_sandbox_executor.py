"""Tests for path confinement, env scrubbing and the bounded subprocess runner."""

import os
import sys

import pytest

from grove.config import AgentConfig
from grove.sandbox.config import SandboxConfig
from grove.sandbox.env_scrub import build_sanitized_env
from grove.sandbox.executor import (
    OUTPUT_LIMIT_EXIT_CODE,
    SPAWN_FAILURE_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    InvalidPath,
    PathEscapesWorkspace,
    SandboxedExecutor,
    run_command,
)


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "ws"
    root.mkdir()
    (root / "src").mkdir()
    (root / "src" / "app.py").write_text("print('hi')\n")
    return root


@pytest.fixture
def executor(workspace):
    return SandboxedExecutor(workspace)


class TestGuard:
    def test_relative_path_inside(self, executor, workspace):
        assert executor.guard("src/app.py") == workspace.resolve() / "src" / "app.py"

    def test_root_itself(self, executor, workspace):
        assert executor.guard(".") == workspace.resolve()

    def test_missing_file_allowed(self, executor, workspace):
        assert executor.guard("new/dir/file.txt") == workspace.resolve() / "new" / "dir" / "file.txt"

    def test_dotdot_escape(self, executor):
        with pytest.raises(PathEscapesWorkspace):
            executor.guard("../outside.txt")

    def test_dotdot_that_stays_inside(self, executor, workspace):
        assert executor.guard("src/../src/app.py") == workspace.resolve() / "src" / "app.py"

    def test_absolute_outside(self, executor):
        with pytest.raises(PathEscapesWorkspace):
            executor.guard("/etc/passwd")

    def test_absolute_inside(self, executor, workspace):
        target = workspace / "src" / "app.py"
        assert executor.guard(str(target)) == target.resolve()

    def test_sibling_with_common_prefix(self, executor, workspace):
        sibling = workspace.parent / (workspace.name + "-other")
        sibling.mkdir()
        with pytest.raises(PathEscapesWorkspace):
            executor.guard(str(sibling / "x"))

    def test_symlink_escape(self, executor, workspace, tmp_path):
        outside = tmp_path / "secret"
        outside.mkdir()
        os.symlink(outside, workspace / "link")
        with pytest.raises(PathEscapesWorkspace):
            executor.guard("link/key.pem")

    def test_symlink_inside(self, executor, workspace):
        os.symlink(workspace / "src", workspace / "alias")
        assert executor.guard("alias/app.py") == workspace.resolve() / "src" / "app.py"

    @pytest.mark.parametrize("bad", ["", "   ", "a\x00b"])
    def test_invalid_paths(self, executor, bad):
        with pytest.raises(InvalidPath):
            executor.guard(bad)

    def test_escape_error_message(self, executor):
        with pytest.raises(PathEscapesWorkspace, match="Path escapes workspace: ../x"):
            executor.guard("../x")


class TestFileOperations:
    async def test_read_write_roundtrip(self, executor, workspace):
        written = await executor.write_file("docs/notes.md", "hello")
        assert written == workspace.resolve() / "docs" / "notes.md"
        assert await executor.read_file("docs/notes.md") == "hello"

    async def test_write_outside_raises_before_touching_disk(self, executor, tmp_path):
        with pytest.raises(PathEscapesWorkspace):
            await executor.write_file("../evil.txt", "x")
        assert not (tmp_path / "evil.txt").exists()

    async def test_list_files(self, executor):
        (executor.guard("b.txt")).write_text("")
        assert await executor.list_files(".") == ["b.txt", "src/"]

    async def test_list_missing_directory(self, executor):
        assert await executor.list_files("nope") == []

    async def test_file_exists(self, executor):
        assert await executor.file_exists("src/app.py")
        assert not await executor.file_exists("src/missing.py")


class TestRunCommand:
    async def test_success(self, tmp_path):
        result = await run_command(sys.executable, ["-c", "print('out')"], cwd=tmp_path)
        assert result.ok
        assert result.stdout.strip() == "out"

    async def test_nonzero_exit(self, tmp_path):
        result = await run_command(
            sys.executable, ["-c", "import sys; sys.stderr.write('bad'); sys.exit(3)"], cwd=tmp_path
        )
        assert result.exit_code == 3
        assert result.stderr == "bad"

    async def test_timeout(self, tmp_path):
        result = await run_command(
            sys.executable, ["-c", "import time; time.sleep(10)"], cwd=tmp_path, timeout=0.5
        )
        assert result.timed_out
        assert result.exit_code == TIMEOUT_EXIT_CODE

    async def test_output_limit(self, tmp_path):
        result = await run_command(
            sys.executable,
            ["-c", "import sys\nwhile True: sys.stdout.write('x' * 4096)"],
            cwd=tmp_path,
            max_output=10_000,
        )
        assert result.truncated
        assert result.exit_code == OUTPUT_LIMIT_EXIT_CODE
        assert len(result.stdout) <= 10_000

    async def test_spawn_failure(self, tmp_path):
        result = await run_command("definitely-not-a-real-binary-xyz", cwd=tmp_path)
        assert result.exit_code == SPAWN_FAILURE_EXIT_CODE
        assert not result.ok

    async def test_executor_run_uses_root_as_cwd(self, executor, workspace):
        result = await executor.run(sys.executable, ["-c", "import os; print(os.getcwd())"])
        assert result.stdout.strip() == str(workspace.resolve())

    async def test_executor_run_rejects_escaping_cwd(self, executor):
        with pytest.raises(PathEscapesWorkspace):
            await executor.run("true", cwd="..")


class TestEnvScrub:
    def test_strips_listed_and_pattern_secrets(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-1")
        monkeypatch.setenv("MY_SERVICE_AUTH_TOKEN", "t")
        monkeypatch.setenv("HARMLESS", "ok")
        env = build_sanitized_env(SandboxConfig())
        assert "ANTHROPIC_API_KEY" not in env
        assert "MY_SERVICE_AUTH_TOKEN" not in env
        assert env["HARMLESS"] == "ok"

    def test_allowed_vars_survive(self, monkeypatch):
        monkeypatch.setenv("CUSTOM_API_KEY", "keep-me")
        config = SandboxConfig(allowed_env_vars=["CUSTOM_API_KEY"])
        assert build_sanitized_env(config)["CUSTOM_API_KEY"] == "keep-me"

    def test_extra_and_extra_strip(self, monkeypatch):
        monkeypatch.setenv("DROP_ME", "1")
        env = build_sanitized_env(SandboxConfig(), extra={"GIT_AUTHOR_NAME": "1 Agent"}, extra_strip=["DROP_ME"])
        assert "DROP_ME" not in env
        assert env["GIT_AUTHOR_NAME"] == "1 Agent"

    def test_does_not_mutate_os_environ(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "ghp")
        build_sanitized_env(SandboxConfig())
        assert os.environ["GITHUB_TOKEN"] == "ghp"

    async def test_commands_do_not_see_secrets(self, executor, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
        result = await executor.run(
            sys.executable, ["-c", "import os; print(os.environ.get('OPENAI_API_KEY', 'absent'))"]
        )
        assert result.stdout.strip() == "absent"

    async def test_commands_do_not_see_agent_credentials(self, executor, monkeypatch):
        for name in AgentConfig().credential_env_vars:
            monkeypatch.setenv(name, "sk-agent")
        result = await executor.run(
            sys.executable,
            ["-c", "import os; print(os.environ.get('ANTHROPIC_API_KEY', 'absent'))"],
        )
        assert result.stdout.strip() == "absent"

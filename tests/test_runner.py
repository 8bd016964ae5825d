"""Tests for the agent runner, using a shell script in place of the agent CLI."""

import asyncio
import json
import stat

import pytest

from grove.config import AgentConfig
from grove.runner import AgentRunner
from grove.workspace.provider import committer_env

FAKE_CLI = """\
#!/bin/sh
# Echo argv and env markers, then the task from stdin.
printf '%s\\n' "$@" > argv.txt
echo "# Output"
echo "secret=${OPENAI_API_KEY:-absent} autoupdate=${DISABLE_AUTOUPDATER:-unset}"
echo "author=${GIT_AUTHOR_NAME:-unset} key=${ANTHROPIC_API_KEY:-unset}"
cat
echo "to stderr" >&2
exit ${FAKE_EXIT:-0}
"""


@pytest.fixture
def fake_cli(tmp_path):
    path = tmp_path / "fake-agent"
    path.write_text(FAKE_CLI)
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "ws"
    ws.mkdir()
    return ws


@pytest.fixture
def runner(tmp_path, fake_cli):
    config = AgentConfig(cli_path=str(fake_cli), model="test-model")
    return AgentRunner(config, tmp_path / "sessions", asyncio.Queue())


async def _start(runner, workspace, **kwargs):
    params = dict(
        run_id="abc123",
        ticket_id=7,
        persona_id="dev-1",
        workspace_path=workspace,
        system_prompt="You are Dana.",
        task="## Task\nDo the thing.",
        allowed_tools=["Read", "Bash"],
    )
    params.update(kwargs)
    return await runner.start(**params)


class TestBuildCommand:
    def test_flags(self, runner):
        cmd = runner.build_command("PROMPT", ["Read", "Write"])
        assert cmd[1:] == [
            "-p",
            "--model",
            "test-model",
            "--allowedTools",
            "Read,Write",
            "--output-format",
            "text",
            "--no-session-persistence",
            "--append-system-prompt",
            "PROMPT",
        ]

    def test_extra_args_appended(self, tmp_path):
        runner = AgentRunner(AgentConfig(extra_args=["--verbose"]), tmp_path, asyncio.Queue())
        assert runner.build_command("P", [])[-1] == "--verbose"


class TestStart:
    async def test_completion_posted_on_exit(self, runner, workspace):
        handle = await _start(runner, workspace)
        completion = await asyncio.wait_for(runner.completion_queue.get(), timeout=10)

        assert handle.pid is not None
        assert completion.run_id == "abc123"
        assert completion.ticket_id == 7
        assert completion.persona_id == "dev-1"
        assert completion.exit_code == 0
        assert completion.output.startswith("# Output")
        assert "Do the thing." in completion.output
        assert completion.stderr_tail.strip() == "to stderr"

    async def test_session_files(self, runner, workspace):
        handle = await _start(runner, workspace)
        await runner.wait_all()

        session = handle.session_dir
        assert session.name == "7-abc123"
        assert (session / "system-prompt.txt").read_text() == "You are Dana."
        assert (session / "task.md").read_text() == "## Task\nDo the thing."

        invocation = json.loads((session / "invocation.json").read_text())
        assert invocation["cwd"] == str(workspace)
        assert invocation["allowed_tools"] == ["Read", "Bash"]
        assert invocation["argv"][-1] == "<system-prompt.txt>"

        events = [json.loads(line)["event"] for line in (session / "session.jsonl").read_text().splitlines()]
        assert events == ["started", "exited"]

    async def test_runs_in_workspace_with_prompt_argument(self, runner, workspace):
        await _start(runner, workspace)
        await runner.wait_all()
        argv = (workspace / "argv.txt").read_text().splitlines()
        assert argv[-2:] == ["--append-system-prompt", "You are Dana."]

    async def test_env_is_scrubbed_and_extended(self, runner, workspace, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-leak")
        await _start(runner, workspace)
        completion = await asyncio.wait_for(runner.completion_queue.get(), timeout=10)
        assert "secret=absent autoupdate=1" in completion.output

    async def test_agent_credentials_relayered(self, runner, workspace, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-agent")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-leak")
        await _start(runner, workspace)
        completion = await asyncio.wait_for(runner.completion_queue.get(), timeout=10)
        assert "key=sk-agent" in completion.output
        assert "secret=absent" in completion.output

    async def test_no_credentials_when_none_configured(self, tmp_path, fake_cli, workspace, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-agent")
        config = AgentConfig(cli_path=str(fake_cli), credential_env_vars=[])
        runner = AgentRunner(config, tmp_path / "sessions", asyncio.Queue())
        await _start(runner, workspace)
        completion = await asyncio.wait_for(runner.completion_queue.get(), timeout=10)
        assert "key=unset" in completion.output

    async def test_ticket_identity_in_env(self, runner, workspace):
        await _start(runner, workspace, env=committer_env(7))
        completion = await asyncio.wait_for(runner.completion_queue.get(), timeout=10)
        assert "author=7 Agent" in completion.output

    async def test_nonzero_exit_reported(self, runner, workspace, monkeypatch):
        monkeypatch.setenv("FAKE_EXIT", "3")
        await _start(runner, workspace)
        completion = await asyncio.wait_for(runner.completion_queue.get(), timeout=10)
        assert completion.exit_code == 3

    async def test_missing_cli_raises(self, tmp_path, workspace):
        runner = AgentRunner(AgentConfig(cli_path=str(tmp_path / "nope")), tmp_path / "s", asyncio.Queue())
        with pytest.raises(OSError):
            await _start(runner, workspace)

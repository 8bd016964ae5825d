"""Agent runner: launches one agent CLI process per dispatch.

The process is started in its own session (detached from the server's
process group) with the workspace as cwd.  Each run gets a session
directory::

    <sessions_dir>/<ticket>-<run_id>/
        system-prompt.txt   appended to the CLI's system prompt
        task.md             piped to the CLI on stdin
        invocation.json     argv (minus the prompt text), cwd, tools
        session.jsonl       started / exited events
        output.md           the CLI's stdout
        stderr.log          the CLI's stderr

There is no engine-side timeout and no cancellation path: when the process
exits, a watcher task reads ``output.md`` and puts an
:class:`AgentCompletion` on the completion queue.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path

from grove.config import AgentConfig
from grove.sandbox.config import SandboxConfig
from grove.sandbox.env_scrub import build_sanitized_env

logger = logging.getLogger(__name__)


@dataclass
class AgentCompletion:
    """Posted to the completion queue when an agent process exits."""

    run_id: str
    ticket_id: int
    persona_id: str
    output: str
    exit_code: int
    stderr_tail: str = ""


@dataclass
class AgentRunHandle:
    run_id: str
    pid: int | None
    session_dir: Path
    watcher: asyncio.Task | None = field(default=None, repr=False)


class AgentRunner:
    """Spawns agent CLI processes and reports their completion."""

    def __init__(
        self,
        config: AgentConfig,
        sessions_dir: str | Path,
        completion_queue: asyncio.Queue[AgentCompletion],
        *,
        sandbox: SandboxConfig | None = None,
    ):
        self.config = config
        self.sessions_dir = Path(sessions_dir)
        self.completion_queue = completion_queue
        self.sandbox = sandbox or SandboxConfig()
        self._watchers: set[asyncio.Task] = set()

    def build_command(self, system_prompt: str, allowed_tools: list[str]) -> list[str]:
        cmd = [
            self.config.cli_path,
            "-p",
            "--model",
            self.config.model,
            "--allowedTools",
            ",".join(allowed_tools),
            "--output-format",
            self.config.output_format,
            "--no-session-persistence",
            "--append-system-prompt",
            system_prompt,
        ]
        cmd.extend(self.config.extra_args)
        return cmd

    async def start(
        self,
        *,
        run_id: str,
        ticket_id: int,
        persona_id: str,
        workspace_path: Path,
        system_prompt: str,
        task: str,
        allowed_tools: list[str],
        env: dict[str, str] | None = None,
    ) -> AgentRunHandle:
        """Write the session files and spawn the agent. Returns once it is running.

        The agent gets the scrubbed environment plus the credentials named in
        ``AgentConfig.credential_env_vars``, ``extra_env`` and then ``env``
        (the ticket's git identity).

        Raises:
            OSError: The CLI could not be spawned.
        """
        session_dir = self.sessions_dir / f"{ticket_id}-{run_id}"
        session_dir.mkdir(parents=True, exist_ok=True)
        (session_dir / "system-prompt.txt").write_text(system_prompt, encoding="utf-8")
        task_file = session_dir / "task.md"
        task_file.write_text(task, encoding="utf-8")

        cmd = self.build_command(system_prompt, allowed_tools)
        (session_dir / "invocation.json").write_text(
            json.dumps(
                {
                    "run_id": run_id,
                    "ticket_id": ticket_id,
                    "persona_id": persona_id,
                    "argv": self.build_command("<system-prompt.txt>", allowed_tools),
                    "cwd": str(workspace_path),
                    "allowed_tools": allowed_tools,
                },
                indent=2,
            ),
            encoding="utf-8",
        )

        agent_env = {k: os.environ[k] for k in self.config.credential_env_vars if k in os.environ}
        agent_env.update(self.config.extra_env)
        if env:
            agent_env.update(env)
        proc_env = build_sanitized_env(self.sandbox, extra=agent_env)
        with (
            open(task_file, "rb") as stdin,
            open(session_dir / "output.md", "wb") as stdout,
            open(session_dir / "stderr.log", "wb") as stderr,
        ):
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(workspace_path),
                stdin=stdin,
                stdout=stdout,
                stderr=stderr,
                env=proc_env,
                start_new_session=True,
            )

        self._log_event(session_dir, "started", pid=proc.pid)
        logger.info(
            "Agent started: run=%s ticket=#%d persona=%s pid=%s", run_id, ticket_id, persona_id, proc.pid
        )

        handle = AgentRunHandle(run_id=run_id, pid=proc.pid, session_dir=session_dir)
        watcher = asyncio.create_task(
            self._watch(proc, handle, ticket_id, persona_id), name=f"agent-run-{run_id}"
        )
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)
        handle.watcher = watcher
        return handle

    async def _watch(
        self,
        proc: asyncio.subprocess.Process,
        handle: AgentRunHandle,
        ticket_id: int,
        persona_id: str,
    ) -> None:
        started = time.monotonic()
        exit_code = await proc.wait()
        duration = time.monotonic() - started

        output = (handle.session_dir / "output.md").read_text(encoding="utf-8", errors="replace")
        stderr = (handle.session_dir / "stderr.log").read_text(encoding="utf-8", errors="replace")
        self._log_event(handle.session_dir, "exited", exit_code=exit_code, duration_s=round(duration, 1))

        if exit_code != 0:
            logger.warning(
                "Agent run %s exited %d after %.0fs: %s", handle.run_id, exit_code, duration, stderr[-500:]
            )
        else:
            logger.info("Agent run %s finished in %.0fs", handle.run_id, duration)

        await self.completion_queue.put(
            AgentCompletion(
                run_id=handle.run_id,
                ticket_id=ticket_id,
                persona_id=persona_id,
                output=output.strip(),
                exit_code=exit_code,
                stderr_tail=stderr[-500:],
            )
        )

    async def wait_all(self) -> None:
        """Wait for every watched process to exit (tests and shutdown)."""
        while self._watchers:
            await asyncio.gather(*list(self._watchers), return_exceptions=True)

    async def stop(self) -> None:
        """Stop watching. Agent processes keep running on their own."""
        for watcher in list(self._watchers):
            watcher.cancel()
        await asyncio.gather(*list(self._watchers), return_exceptions=True)
        self._watchers.clear()

    @staticmethod
    def _log_event(session_dir: Path, event: str, **data) -> None:
        record = {"event": event, "ts": time.time(), **data}
        with open(session_dir / "session.jsonl", "a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")

"""Path-confined file and command access for a single workspace.

Every path handed to :class:`SandboxedExecutor` goes through :meth:`guard`,
which normalizes it against the workspace root, resolves symlinks (walking up
to the nearest existing ancestor for paths that do not exist yet) and rejects
anything that lands outside the root.  This is canonicalization only, not a
kernel sandbox: a command started via :meth:`run` can still touch whatever
the host user can.

:func:`run_command` is the one subprocess primitive in the package; git
wrappers and agent tool calls both go through it.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from grove.sandbox.config import SandboxConfig
from grove.sandbox.env_scrub import build_sanitized_env

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
OUTPUT_LIMIT_EXIT_CODE = 125
SPAWN_FAILURE_EXIT_CODE = 127

_READ_CHUNK = 64 * 1024


class InvalidPath(ValueError):
    """Raised for empty or malformed paths."""


class PathEscapesWorkspace(PermissionError):
    """Raised when a path resolves outside the workspace root."""

    def __init__(self, path: str, resolved: str):
        self.path = path
        self.resolved = resolved
        super().__init__(f"Path escapes workspace: {path} (resolves to {resolved})")


@dataclass
class RunResult:
    """Outcome of a bounded subprocess run."""

    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool = False
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


# ── Subprocess primitive ─────────────────────────────────────────────────────


def _kill_group(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        try:
            proc.kill()
        except ProcessLookupError:
            pass


async def run_command(
    cmd: str,
    args: Sequence[str] = (),
    *,
    cwd: str | os.PathLike,
    timeout: float = 30.0,
    max_output: int = 512 * 1024,
    env: dict[str, str] | None = None,
) -> RunResult:
    """Run ``cmd args...`` with a wall-clock timeout and an output cap.

    Never raises for process-level failures: a timeout yields exit code 124,
    exceeding ``max_output`` kills the process and yields 125, and a command
    that cannot be spawned yields 127 with the OS error in ``stderr``.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            cmd,
            *args,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            start_new_session=True,
        )
    except OSError as exc:
        return RunResult(stdout="", stderr=str(exc), exit_code=SPAWN_FAILURE_EXIT_CODE)

    out = bytearray()
    err = bytearray()
    truncated = False

    async def _pump(stream: asyncio.StreamReader, buf: bytearray) -> None:
        nonlocal truncated
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return
            room = max_output - (len(out) + len(err))
            if len(chunk) > room:
                buf.extend(chunk[: max(room, 0)])
                if not truncated:
                    truncated = True
                    _kill_group(proc)
                return
            buf.extend(chunk)

    async def _collect() -> int:
        await asyncio.gather(_pump(proc.stdout, out), _pump(proc.stderr, err))
        return await proc.wait()

    timed_out = False
    try:
        returncode = await asyncio.wait_for(_collect(), timeout=timeout)
    except asyncio.TimeoutError:
        timed_out = True
        _kill_group(proc)
        returncode = await proc.wait()

    if timed_out:
        exit_code = TIMEOUT_EXIT_CODE
        logger.warning("Command timed out after %ss: %s %s", timeout, cmd, " ".join(args))
    elif truncated:
        exit_code = OUTPUT_LIMIT_EXIT_CODE
        logger.warning("Command output exceeded %d bytes: %s", max_output, cmd)
    else:
        exit_code = returncode

    return RunResult(
        stdout=out.decode(errors="replace"),
        stderr=err.decode(errors="replace"),
        exit_code=exit_code,
        timed_out=timed_out,
        truncated=truncated,
    )


# ── Path canonicalization ────────────────────────────────────────────────────


def canonicalize(path: str) -> str:
    """Resolve symlinks in ``path``, tolerating missing trailing components.

    The nearest existing ancestor is resolved with ``realpath`` and the
    components that do not exist yet are re-appended unchanged.
    """
    missing: list[str] = []
    current = path
    while not os.path.lexists(current):
        parent, name = os.path.split(current)
        if parent == current:
            break
        missing.append(name)
        current = parent
    resolved = os.path.realpath(current)
    if missing:
        return os.path.join(resolved, *reversed(missing))
    return resolved


class SandboxedExecutor:
    """File and command access confined to one workspace root."""

    def __init__(
        self,
        root: str | os.PathLike,
        config: SandboxConfig | None = None,
        *,
        env: dict[str, str] | None = None,
    ):
        self.config = config or SandboxConfig()
        self.root = os.path.realpath(os.fspath(root))
        self.env = dict(env or {})

    def guard(self, path: str | os.PathLike) -> Path:
        """Return the canonical absolute form of ``path`` or raise.

        Raises:
            InvalidPath: Empty, whitespace-only, or NUL-containing path.
            PathEscapesWorkspace: The canonical path is outside the root.
        """
        raw = os.fspath(path)
        if not raw.strip():
            raise InvalidPath("Path must not be empty")
        if "\x00" in raw:
            raise InvalidPath(f"Path contains a NUL byte: {raw!r}")

        joined = os.path.normpath(os.path.join(self.root, raw))
        resolved = canonicalize(joined)
        if resolved != self.root and not resolved.startswith(self.root.rstrip(os.sep) + os.sep):
            raise PathEscapesWorkspace(raw, resolved)
        return Path(resolved)

    # ── File operations ──────────────────────────────────────────────────

    async def read_file(self, path: str) -> str:
        target = self.guard(path)
        return await asyncio.to_thread(target.read_text, encoding="utf-8")

    async def write_file(self, path: str, content: str) -> Path:
        """Write ``content`` to ``path``, creating parent directories."""
        target = self.guard(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)
        return target

    async def list_files(self, path: str = ".") -> list[str]:
        """List directory entries, directories suffixed with ``/``.

        A missing or unreadable directory yields an empty list.
        """
        target = self.guard(path)

        def _list() -> list[str]:
            try:
                with os.scandir(target) as it:
                    entries = [e.name + "/" if e.is_dir() else e.name for e in it]
            except OSError:
                return []
            return sorted(entries)

        return await asyncio.to_thread(_list)

    async def file_exists(self, path: str) -> bool:
        """Whether ``path`` exists. Path escapes still raise."""
        target = self.guard(path)
        try:
            return await asyncio.to_thread(target.exists)
        except OSError:
            return False

    # ── Commands ─────────────────────────────────────────────────────────

    def command_env(self, env: dict[str, str] | None = None) -> dict[str, str]:
        """Scrubbed host env + executor identity + per-call overrides."""
        merged = dict(self.env)
        if env:
            merged.update(env)
        return build_sanitized_env(self.config, extra=merged)

    async def run(
        self,
        cmd: str,
        args: Sequence[str] = (),
        *,
        cwd: str | None = None,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> RunResult:
        """Run a command inside the workspace. Only ``cwd`` validation raises."""
        workdir = self.guard(cwd) if cwd is not None else Path(self.root)
        return await run_command(
            cmd,
            args,
            cwd=workdir,
            timeout=timeout if timeout is not None else self.config.command_timeout,
            max_output=self.config.max_output_bytes,
            env=self.command_env(env),
        )

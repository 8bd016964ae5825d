"""Workspace confinement.

- Path canonicalization against a workspace root (symlink-aware)
- Bounded subprocess execution (timeout + output cap)
- Environment scrubbing for tool subprocesses
"""

from .config import SandboxConfig
from .env_scrub import build_sanitized_env
from .executor import (
    InvalidPath,
    PathEscapesWorkspace,
    RunResult,
    SandboxedExecutor,
    run_command,
)

__all__ = [
    "InvalidPath",
    "PathEscapesWorkspace",
    "RunResult",
    "SandboxConfig",
    "SandboxedExecutor",
    "build_sanitized_env",
    "run_command",
]

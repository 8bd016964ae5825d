"""Sandbox configuration model."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SandboxConfig(BaseModel):
    """Limits applied to every command run inside a workspace."""

    command_timeout: float = 30.0  # seconds
    max_output_bytes: int = 512 * 1024  # combined stdout + stderr

    # ── Environment scrubbing ────────────────────────────────────────────────
    # Env vars that must never reach agent tool subprocesses.
    secret_env_vars: list[str] = Field(
        default_factory=lambda: [
            "ANTHROPIC_API_KEY",
            "OPENAI_API_KEY",
            "GITHUB_TOKEN",
            "GH_TOKEN",
            "GROVE_API_KEY",
        ]
    )
    # Kept even when the name matches a secret pattern.
    allowed_env_vars: list[str] = Field(default_factory=lambda: ["SSH_AUTH_SOCK"])

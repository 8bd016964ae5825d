"""Configuration loading for Grove.

Reads ``<config_dir>/config.yaml``.  Pydantic models validate the schema;
a few environment variables override deployment paths.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from grove.models import PersonaRole
from grove.sandbox.config import SandboxConfig

logger = logging.getLogger(__name__)


# ── Config Models ────────────────────────────────────────────────────────────


class RuntimeConfig(BaseModel):
    projects_root: str = "./projects"  # holds <slug>/repo and <slug>/worktrees
    data_dir: str = "./.grove-data"  # SQLite db + agent session dirs
    default_branch: str = "main"
    git_timeout: float = 30.0  # seconds, per git subcommand


class AgentConfig(BaseModel):
    """How agent processes are launched."""

    cli_path: str = "claude"
    model: str = "sonnet"
    output_format: str = "text"
    extra_args: list[str] = Field(default_factory=list)
    extra_env: dict[str, str] = Field(default_factory=lambda: {"DISABLE_AUTOUPDATER": "1"})
    # host credentials the agent CLI itself needs; tool commands never see them
    credential_env_vars: list[str] = Field(default_factory=lambda: ["ANTHROPIC_API_KEY"])
    comment_history: int = 10  # recent comments included in the system prompt
    summary_length: int = 500  # chars of output quoted in the summary comment


class DocumentPolicy(BaseModel):
    """Versioning and quality heuristics for agent-authored documents."""

    research_version_cap: int = 3
    min_document_length: int = 500
    boilerplate_window: int = 200
    boilerplate_patterns: list[str] = Field(
        default_factory=lambda: [
            # \A: only the very start of the document counts, not every line
            r"\A\s*(sure|okay|ok|certainly|absolutely)[,!.]",
            r"\A\s*i('ve| have) (completed|finished|done|created|written|prepared)\b",
            r"\A\s*as an ai\b",
        ]
    )

    @field_validator("research_version_cap")
    @classmethod
    def _validate_cap(cls, v: int) -> int:
        if v < 3:
            raise ValueError("research_version_cap must allow v1, critique and revision (>= 3)")
        return v

    @field_validator("boilerplate_patterns")
    @classmethod
    def _validate_patterns(cls, v: list[str]) -> list[str]:
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid boilerplate pattern {pattern!r}: {exc}") from exc
        return v


def _default_tool_profiles() -> dict[PersonaRole, list[str]]:
    from grove.tools.registry import DEFAULT_TOOL_PROFILES

    return {role: list(names) for role, names in DEFAULT_TOOL_PROFILES.items()}


class GroveConfig(BaseModel):
    """Top-level Grove configuration (matches config.yaml)."""

    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    documents: DocumentPolicy = Field(default_factory=DocumentPolicy)
    tool_profiles: dict[PersonaRole, list[str]] = Field(default_factory=_default_tool_profiles)

    @field_validator("tool_profiles")
    @classmethod
    def _fill_missing_roles(cls, v: dict[PersonaRole, list[str]]) -> dict[PersonaRole, list[str]]:
        """Roles omitted from config keep their built-in profile."""
        merged = _default_tool_profiles()
        merged.update(v)
        return merged


# ── Config Loader ────────────────────────────────────────────────────────────


def load_config(config_dir: Path) -> GroveConfig:
    """Load Grove configuration from a config directory.

    Args:
        config_dir: Directory containing config.yaml.

    Returns:
        Validated GroveConfig.

    Raises:
        FileNotFoundError: If config.yaml doesn't exist.
        ValueError: If config validation fails.
    """
    config_path = config_dir / "config.yaml"
    if not config_path.exists():
        raise FileNotFoundError(f"Grove config not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    config = GroveConfig(**raw)

    # Environment variable overrides for deployment
    projects_root = os.environ.get("GROVE_PROJECTS_ROOT")
    if projects_root:
        config.runtime.projects_root = projects_root

    data_dir = os.environ.get("GROVE_DATA_DIR")
    if data_dir:
        config.runtime.data_dir = data_dir

    agent_cli = os.environ.get("GROVE_AGENT_CLI")
    if agent_cli:
        config.agent.cli_path = agent_cli

    logger.info("Loaded Grove config: projects_root=%s", config.runtime.projects_root)
    return config

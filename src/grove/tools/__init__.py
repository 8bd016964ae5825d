"""Agent operations and the role-based registry that gates them.

Workspace tools (file, bash, git) run through the workspace's
SandboxedExecutor; ticket tools read and update the ticket via the engine.
"""

from grove.tools.registry import (
    DEFAULT_TOOL_PROFILES,
    DuplicateToolError,
    ToolContext,
    ToolDefinition,
    ToolNotPermitted,
    ToolRegistry,
    UnknownToolError,
    build_default_registry,
)

__all__ = [
    "DEFAULT_TOOL_PROFILES",
    "DuplicateToolError",
    "ToolContext",
    "ToolDefinition",
    "ToolNotPermitted",
    "ToolRegistry",
    "UnknownToolError",
    "build_default_registry",
]

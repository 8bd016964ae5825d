"""Tool registry: which operations each persona role may invoke.

A static, typed table maps every :class:`PersonaRole` to an ordered
allow-list of operation names.  The registry is the single authority for
"may a persona with role Y call operation Z": the engine consults it before
dispatching an agent, when deriving the agent CLI's ``--allowedTools`` list,
and on every direct tool invocation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from pydantic import BaseModel, ValidationError

from grove.models import PersonaRole

if TYPE_CHECKING:
    from grove.lifecycle.engine import TicketLifecycleEngine
    from grove.models import Persona
    from grove.workspace.provider import Workspace

logger = logging.getLogger(__name__)


DEFAULT_TOOL_PROFILES: dict[PersonaRole, list[str]] = {
    PersonaRole.RESEARCHER: [
        "file_read",
        "file_list",
        "bash",  # read-only commands such as git log
        "git_status",
        "git_diff",
        "ticket_read",
        "comment_post",
        "apply_transparency",
        "list_my_tools",
    ],
    PersonaRole.DEVELOPER: [
        "file_read",
        "file_write",
        "file_edit",
        "file_list",
        "bash",
        "git_status",
        "git_diff",
        "git_commit",
        "git_push",
        "ticket_read",
        "ticket_update_state",
        "comment_post",
        "apply_transparency",
        "list_my_tools",
    ],
    PersonaRole.DESIGNER: [
        "file_read",
        "file_write",
        "file_edit",
        "file_list",
        "bash",
        "git_status",
        "git_diff",
        "ticket_read",
        "comment_post",
        "apply_transparency",
        "list_my_tools",
    ],
    PersonaRole.CRITIC: [
        "file_read",
        "file_list",
        "bash",
        "git_status",
        "git_diff",
        "ticket_read",
        "comment_post",
        "list_my_tools",
    ],
    PersonaRole.HACKER: [
        "file_read",
        "file_write",
        "file_edit",
        "file_list",
        "bash",
        "git_status",
        "git_diff",
        "git_commit",
        "git_push",
        "ticket_read",
        "ticket_update_state",
        "comment_post",
        "apply_transparency",
        "list_my_tools",
    ],
    PersonaRole.LEAD: [
        "file_read",
        "file_list",
        "bash",
        "git_status",
        "git_diff",
        "ticket_read",
        "ticket_update_state",
        "comment_post",
        "list_my_tools",
    ],
}


class DuplicateToolError(ValueError):
    """Two tools registered under the same name."""


class UnknownToolError(LookupError):
    """No tool registered under the requested name."""


class ToolNotPermitted(PermissionError):
    """The persona's role does not allow the requested tool."""


@dataclass
class ToolContext:
    """What a tool handler may touch: one ticket, one persona, one workspace."""

    ticket_id: int
    persona: Persona
    workspace: Workspace
    engine: TicketLifecycleEngine
    registry: ToolRegistry


ToolHandler = Callable[[ToolContext, Any], Awaitable[str]]


@dataclass
class ToolDefinition:
    name: str
    description: str
    params: type[BaseModel]
    handler: ToolHandler
    # Agent CLI tool names this operation unlocks (e.g. "Read", "Bash").
    agent_tools: tuple[str, ...] = field(default_factory=tuple)


class ToolRegistry:
    """Global tool table plus the role → allow-list profiles."""

    def __init__(self, profiles: dict[PersonaRole, list[str]] | None = None):
        source = profiles if profiles is not None else DEFAULT_TOOL_PROFILES
        self.profiles: dict[PersonaRole, list[str]] = {
            PersonaRole(role): list(names) for role, names in source.items()
        }
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            raise DuplicateToolError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def register_all(self, tools: list[ToolDefinition]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def has_profile(self, role: PersonaRole) -> bool:
        return role in self.profiles

    def get_tools_for_profile(self, role: PersonaRole) -> list[ToolDefinition]:
        """Registered tools on the role's allow-list, in allow-list order.

        Names on the allow-list with no registered tool are skipped.
        """
        return [self._tools[n] for n in self.profiles.get(role, []) if n in self._tools]

    def can_invoke(self, role: PersonaRole, name: str) -> bool:
        return name in self._tools and name in self.profiles.get(role, [])

    def agent_tools_for(self, role: PersonaRole) -> list[str]:
        """Agent CLI tool names unlocked by the role's profile, deduplicated in order."""
        seen: list[str] = []
        for tool in self.get_tools_for_profile(role):
            for cli_name in tool.agent_tools:
                if cli_name not in seen:
                    seen.append(cli_name)
        return seen

    async def invoke(self, ctx: ToolContext, name: str, arguments: dict[str, Any]) -> str:
        """Validate arguments and run a tool on behalf of ``ctx.persona``.

        Raises:
            UnknownToolError: No such tool.
            ToolNotPermitted: The persona's profile does not list it.
            ValueError: The arguments fail validation.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(f"Unknown tool: {name}")
        role = ctx.persona.profile
        if not self.can_invoke(role, name):
            raise ToolNotPermitted(f"Role {role.value} may not invoke {name}")
        try:
            params = tool.params.model_validate(arguments)
        except ValidationError as exc:
            raise ValueError(f"Invalid arguments for {name}: {exc}") from exc

        logger.info(
            "Tool %s invoked by %s (%s) on ticket #%d", name, ctx.persona.id, role.value, ctx.ticket_id
        )
        return await tool.handler(ctx, params)


def build_default_registry(profiles: dict[PersonaRole, list[str]] | None = None) -> ToolRegistry:
    """Registry with every built-in workspace and ticket tool registered."""
    from grove.tools.ticket_tools import TICKET_TOOLS
    from grove.tools.workspace_tools import WORKSPACE_TOOLS

    registry = ToolRegistry(profiles)
    registry.register_all(WORKSPACE_TOOLS)
    registry.register_all(TICKET_TOOLS)
    return registry

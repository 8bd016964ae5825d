"""Ticket tools: how an agent reads its ticket and talks back to it."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from grove.models import AuthorType, Comment, TicketState
from grove.tools.registry import ToolContext, ToolDefinition

logger = logging.getLogger(__name__)


class TicketReadParams(BaseModel):
    include_documents: bool = Field(default=True, description="Append the latest documents")


class TicketUpdateStateParams(BaseModel):
    state: TicketState = Field(description="Target state; agents may only request 'test'")


class CommentPostParams(BaseModel):
    content: str = Field(min_length=1, description="Comment body (markdown)")


class ListMyToolsParams(BaseModel):
    pass


async def ticket_read(ctx: ToolContext, params: TicketReadParams) -> str:
    store = ctx.engine.store
    ticket = await store.get_ticket(ctx.ticket_id)
    if ticket is None:
        raise LookupError(f"Ticket #{ctx.ticket_id} not found")

    lines = [
        f"# Ticket {ticket.id}: {ticket.title}",
        f"State: {ticket.state.value} | Type: {ticket.type.value}",
    ]
    if ticket.description:
        lines += ["", "## Description", ticket.description]
    if ticket.acceptance_criteria:
        lines += ["", "## Acceptance Criteria", ticket.acceptance_criteria]

    if params.include_documents:
        seen: set[str] = set()
        for doc in await store.get_documents(ctx.ticket_id):
            if doc.type.value in seen:
                continue
            seen.add(doc.type.value)
            lines += ["", f"## Document: {doc.type.value} (v{doc.version})", doc.content]
    return "\n".join(lines)


async def ticket_update_state(ctx: ToolContext, params: TicketUpdateStateParams) -> str:
    if params.state != TicketState.TEST:
        raise ValueError("Agents may only move a ticket from build to test")
    ticket = await ctx.engine.submit_for_test(ctx.ticket_id, actor=ctx.persona)
    return f"Ticket #{ticket.id} moved to {ticket.state.value}"


async def comment_post(ctx: ToolContext, params: CommentPostParams) -> str:
    comment = await ctx.engine.store.add_comment(
        Comment(
            ticket_id=ctx.ticket_id,
            author_type=AuthorType.AGENT,
            persona_id=ctx.persona.id,
            content=params.content,
        )
    )
    return f"Posted comment {comment.id}"


async def list_my_tools(ctx: ToolContext, params: ListMyToolsParams) -> str:
    tools = ctx.registry.get_tools_for_profile(ctx.persona.profile)
    return "\n".join(f"- {t.name}: {t.description}" for t in tools)


TICKET_TOOLS: list[ToolDefinition] = [
    ToolDefinition("ticket_read", "Read the ticket and its latest documents", TicketReadParams, ticket_read),
    ToolDefinition(
        "ticket_update_state", "Submit the ticket for testing", TicketUpdateStateParams, ticket_update_state
    ),
    ToolDefinition("comment_post", "Post a comment on the ticket", CommentPostParams, comment_post),
    ToolDefinition("list_my_tools", "List the tools available to you", ListMyToolsParams, list_my_tools),
]

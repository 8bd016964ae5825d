"""HTTP API: FastAPI routes over the ticket lifecycle engine.

Exceptions raised by the engine map to status codes by category:

- ``LookupError`` (unknown ticket, persona, project or tool) → 404
- ``InvalidTransition`` → 409
- ``PermissionError`` (path escapes the workspace, tool not permitted) → 403
- ``ProjectStructureViolation`` → 412
- ``ValueError`` (bad input, approval not ready) → 400
- ``GitCommandError`` (a git subcommand failed; detail names it and its stderr) → 502
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any, TypeVar

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from grove.lifecycle.engine import DispatchOptions
from grove.lifecycle.state_machine import InvalidTransition
from grove.models import Persona, PersonaRole, Project, TicketType
from grove.workspace.git_commands import GitCommandError
from grove.workspace.provider import ProjectStructureViolation

if TYPE_CHECKING:
    from grove.lifecycle.engine import TicketLifecycleEngine

logger = logging.getLogger(__name__)

router = APIRouter()

T = TypeVar("T")

# Set during server startup (see server.py)
_engine: TicketLifecycleEngine | None = None


def configure(engine: TicketLifecycleEngine) -> None:
    """Wire the routes to the lifecycle engine."""
    global _engine
    _engine = engine


def _get_engine() -> TicketLifecycleEngine:
    if _engine is None:
        raise HTTPException(status_code=503, detail="Engine not available")
    return _engine


def _status_for(exc: Exception) -> int | None:
    if isinstance(exc, GitCommandError):
        return 502
    if isinstance(exc, InvalidTransition):
        return 409
    if isinstance(exc, PermissionError):
        return 403
    if isinstance(exc, ProjectStructureViolation):
        return 412
    if isinstance(exc, LookupError):
        return 404
    if isinstance(exc, ValueError):
        return 400
    return None


async def _call(awaitable: Awaitable[T]) -> T:
    try:
        return await awaitable
    except HTTPException:
        raise
    except Exception as exc:
        status = _status_for(exc)
        if status is None:
            raise
        logger.info("Request failed (%d): %s", status, exc)
        raise HTTPException(status_code=status, detail=str(exc)) from exc


# ── Request bodies ───────────────────────────────────────────────────────────


class ProjectCreate(BaseModel):
    slug: str = Field(pattern=r"^[A-Za-z0-9_.-]+$")
    name: str
    remote_url: str | None = None
    default_branch: str = "main"
    build_command: str | None = None
    run_command: str | None = None


class TicketCreate(BaseModel):
    project_id: int
    title: str
    description: str = ""
    acceptance_criteria: str = ""
    type: TicketType = TicketType.FEATURE
    auto_dispatch: bool = True


class DispatchRequest(BaseModel):
    target_role: PersonaRole | None = None
    target_persona_id: str | None = None
    comment_text: str = ""
    post_comment: bool = False


class AgentCompleteRequest(BaseModel):
    persona_id: str
    output: str
    run_id: str | None = None


class ReturnFromTestRequest(BaseModel):
    reason: str


class ToolInvokeRequest(BaseModel):
    persona_id: str
    arguments: dict[str, Any] = Field(default_factory=dict)


# ── Projects & personas ──────────────────────────────────────────────────────


@router.post("/projects", status_code=201)
async def create_project(body: ProjectCreate):
    engine = _get_engine()
    if await engine.store.get_project_by_slug(body.slug):
        raise HTTPException(status_code=409, detail=f"Project {body.slug} already exists")
    project = await engine.store.create_project(Project(**body.model_dump()))
    return project.model_dump(mode="json")


@router.post("/personas", status_code=201)
async def upsert_persona(body: Persona):
    engine = _get_engine()
    persona = await engine.store.upsert_persona(body)
    return persona.model_dump(mode="json")


# ── Tickets ──────────────────────────────────────────────────────────────────


@router.post("/tickets", status_code=201)
async def create_ticket(body: TicketCreate):
    engine = _get_engine()
    ticket = await _call(
        engine.create_ticket(
            body.project_id,
            body.title,
            description=body.description,
            acceptance_criteria=body.acceptance_criteria,
            type=body.type,
            auto_dispatch=body.auto_dispatch,
        )
    )
    return ticket.model_dump(mode="json")


@router.get("/tickets/{ticket_id}")
async def get_ticket(ticket_id: int):
    engine = _get_engine()
    ticket = await _call(engine.get_ticket(ticket_id))
    comments = await engine.store.get_comments(ticket_id)
    return {
        **ticket.model_dump(mode="json"),
        "comments": [c.model_dump(mode="json") for c in comments],
    }


@router.get("/tickets/{ticket_id}/documents")
async def get_documents(ticket_id: int):
    engine = _get_engine()
    await _call(engine.get_ticket(ticket_id))
    docs = await engine.store.get_documents(ticket_id)
    return {"documents": [d.model_dump(mode="json") for d in docs]}


@router.post("/tickets/{ticket_id}/dispatch")
async def dispatch(ticket_id: int, body: DispatchRequest):
    engine = _get_engine()
    persona = await _call(
        engine.dispatch(
            ticket_id,
            target_role=body.target_role,
            target_persona_id=body.target_persona_id,
            comment_text=body.comment_text,
            options=DispatchOptions(post_comment=body.post_comment),
        )
    )
    return {"dispatched": True, "persona": persona.model_dump(mode="json")}


@router.post("/tickets/{ticket_id}/agent-complete")
async def agent_complete(ticket_id: int, body: AgentCompleteRequest):
    engine = _get_engine()
    outcome = await _call(engine.agent_complete(ticket_id, body.persona_id, body.output, run_id=body.run_id))
    return {
        "stored_as": outcome.stored_as,
        "reason": outcome.reason,
        "document": outcome.document.model_dump(mode="json") if outcome.document else None,
        "comment": outcome.comment.model_dump(mode="json") if outcome.comment else None,
    }


# ── Approvals ────────────────────────────────────────────────────────────────


@router.post("/tickets/{ticket_id}/approve-research")
async def approve_research(ticket_id: int):
    ticket = await _call(_get_engine().approve_research(ticket_id))
    return ticket.model_dump(mode="json")


@router.delete("/tickets/{ticket_id}/approve-research")
async def revoke_research(ticket_id: int):
    ticket = await _call(_get_engine().revoke_research_approval(ticket_id))
    return ticket.model_dump(mode="json")


@router.post("/tickets/{ticket_id}/approve-plan")
async def approve_plan(ticket_id: int):
    ticket = await _call(_get_engine().approve_plan(ticket_id))
    return ticket.model_dump(mode="json")


@router.delete("/tickets/{ticket_id}/approve-plan")
async def revoke_plan(ticket_id: int):
    ticket = await _call(_get_engine().revoke_plan_approval(ticket_id))
    return ticket.model_dump(mode="json")


# ── Test & ship ──────────────────────────────────────────────────────────────


@router.post("/tickets/{ticket_id}/submit-for-test")
async def submit_for_test(ticket_id: int):
    ticket = await _call(_get_engine().submit_for_test(ticket_id))
    return ticket.model_dump(mode="json")


@router.post("/tickets/{ticket_id}/return-from-test")
async def return_from_test(ticket_id: int, body: ReturnFromTestRequest):
    ticket = await _call(_get_engine().return_to_build(ticket_id, body.reason))
    return ticket.model_dump(mode="json")


@router.post("/tickets/{ticket_id}/ship")
async def ship(ticket_id: int):
    result = await _call(_get_engine().ship(ticket_id))
    return {"ok": result.ok, "merge_commit": result.merge_commit, "log": result.log}


# ── Tools ────────────────────────────────────────────────────────────────────


@router.post("/tickets/{ticket_id}/tools/{name}")
async def invoke_tool(ticket_id: int, name: str, body: ToolInvokeRequest):
    output = await _call(_get_engine().invoke_tool(ticket_id, body.persona_id, name, body.arguments))
    return {"tool": name, "output": output}

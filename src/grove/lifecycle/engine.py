"""Ticket lifecycle engine.

Drives a ticket through research → plan → build → test → ship:

- ``dispatch`` picks a persona (gated by the tool registry), resolves the
  ticket's workspace and starts an agent run;
- ``agent_complete`` classifies the agent's output into a versioned
  document or a plain comment and may trigger the next dispatch;
- approvals, revocations, submit/return and ship move the ticket through
  the explicit transition table in :mod:`grove.lifecycle.state_machine`.

Follow-up dispatches triggered by a transition run as detached tasks: the
transition is recorded first, and a failing dispatch is logged and never
retried.  Agent completions arrive on a queue consumed by :meth:`start`.
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any

from grove.config import AgentConfig, DocumentPolicy
from grove.lifecycle import prompts
from grove.lifecycle.quality import QualityGate
from grove.lifecycle.state_machine import (
    InvalidTransition,
    TicketEvent,
    can_transition,
    next_state,
)
from grove.models import (
    AgentRun,
    AgentRunStatus,
    AuditEvent,
    AuthorType,
    Comment,
    DocumentType,
    Persona,
    PersonaRole,
    Project,
    Ticket,
    TicketDocument,
    TicketState,
    TicketType,
    utcnow,
)
from grove.runner import AgentCompletion, AgentRunner
from grove.store import TicketStore
from grove.tools.registry import ToolContext, ToolNotPermitted, ToolRegistry
from grove.workspace.merge import BranchMerger, MergeResult
from grove.workspace.provider import WorkspaceProvider, branch_for, committer_env

logger = logging.getLogger(__name__)

# Which role handles a ticket when the caller does not name one.
DEFAULT_ROLE_FOR_STATE: dict[TicketState, PersonaRole] = {
    TicketState.RESEARCH: PersonaRole.RESEARCHER,
    TicketState.PLAN: PersonaRole.DEVELOPER,
    TicketState.BUILD: PersonaRole.DEVELOPER,
    TicketState.TEST: PersonaRole.DEVELOPER,
}

_DEFAULT_INSTRUCTIONS: dict[TicketState, str] = {
    TicketState.RESEARCH: prompts.RESEARCH_KICKOFF,
    TicketState.PLAN: prompts.PLAN_KICKOFF,
    TicketState.BUILD: prompts.BUILD_KICKOFF,
    TicketState.TEST: "Verify the implementation against the acceptance criteria.",
}

_WHITESPACE_RE = re.compile(r"\s+")


class TicketNotFound(LookupError):
    pass


class ApprovalNotReady(ValueError):
    """The document an approval depends on has not been produced yet."""


@dataclass
class DispatchOptions:
    post_comment: bool = False  # record comment_text as a human comment first


@dataclass
class CompletionOutcome:
    """How one agent output was recorded."""

    stored_as: str  # "document" or "comment"
    document: TicketDocument | None = None
    comment: Comment | None = None
    reason: str = ""
    follow_up: PersonaRole | str | None = None


@dataclass
class _Actor:
    type: AuthorType = AuthorType.HUMAN
    id: str | None = None
    name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


def summarize(text: str, limit: int = 500) -> str:
    """One-line summary: whitespace collapsed, cut at ``limit`` chars."""
    flat = _WHITESPACE_RE.sub(" ", text).strip()
    return flat if len(flat) <= limit else flat[:limit] + "..."


class TicketLifecycleEngine:
    """Owns every ticket state change and agent dispatch."""

    def __init__(
        self,
        store: TicketStore,
        registry: ToolRegistry,
        provider: WorkspaceProvider,
        runner: AgentRunner,
        merger: BranchMerger,
        *,
        policy: DocumentPolicy | None = None,
        agent_config: AgentConfig | None = None,
        completion_queue: asyncio.Queue[AgentCompletion] | None = None,
    ):
        self.store = store
        self.registry = registry
        self.provider = provider
        self.runner = runner
        self.merger = merger
        self.policy = policy or DocumentPolicy()
        self.agent_config = agent_config or AgentConfig()
        self.quality = QualityGate(self.policy)
        self.completion_queue = completion_queue or runner.completion_queue

        self._pending: set[asyncio.Task] = set()
        self._running = False
        self._task: asyncio.Task | None = None

    # ── Lookups ──────────────────────────────────────────────────────────

    async def get_ticket(self, ticket_id: int) -> Ticket:
        ticket = await self.store.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFound(f"Ticket #{ticket_id} not found")
        return ticket

    async def _get_project(self, project_id: int) -> Project:
        project = await self.store.get_project(project_id)
        if project is None:
            raise LookupError(f"Project {project_id} not found")
        return project

    async def _get_persona(self, persona_id: str) -> Persona:
        persona = await self.store.get_persona(persona_id)
        if persona is None:
            raise LookupError(f"Persona {persona_id} not found")
        return persona

    # ── Tickets ──────────────────────────────────────────────────────────

    async def create_ticket(
        self,
        project_id: int,
        title: str,
        *,
        description: str = "",
        acceptance_criteria: str = "",
        type: TicketType = TicketType.FEATURE,
        auto_dispatch: bool = True,
    ) -> Ticket:
        """Create a ticket in ``research`` and hand it to a researcher."""
        if not title.strip():
            raise ValueError("Ticket title must not be empty")
        await self._get_project(project_id)
        ticket = await self.store.create_ticket(
            Ticket(
                project_id=project_id,
                title=title.strip(),
                description=description,
                acceptance_criteria=acceptance_criteria,
                type=type,
            )
        )
        await self._audit(ticket.id, "ticket_created", _Actor(), detail=ticket.title)
        if auto_dispatch:
            self._schedule_dispatch(
                ticket.id, target_role=PersonaRole.RESEARCHER, comment_text=prompts.RESEARCH_KICKOFF
            )
        return ticket

    # ── Dispatch ─────────────────────────────────────────────────────────

    async def dispatch(
        self,
        ticket_id: int,
        *,
        target_role: PersonaRole | None = None,
        target_persona_id: str | None = None,
        comment_text: str = "",
        options: DispatchOptions | None = None,
    ) -> Persona:
        """Start an agent on a ticket and return the persona that got it.

        Raises:
            TicketNotFound / LookupError: Unknown ticket, project or persona.
            ToolNotPermitted: The persona's role may not work in this phase.
            ProjectStructureViolation: The project directory is malformed.
        """
        options = options or DispatchOptions()
        ticket = await self.get_ticket(ticket_id)
        if ticket.state == TicketState.SHIP:
            raise InvalidTransition(ticket.state, TicketEvent.MERGE)
        project = await self._get_project(ticket.project_id)

        persona = await self._resolve_persona(ticket, target_role, target_persona_id)
        profile = persona.profile
        if not self.registry.has_profile(profile):
            raise ToolNotPermitted(f"Role {profile.value} has no tool profile")
        if ticket.state == TicketState.BUILD and not self.registry.can_invoke(profile, "file_write"):
            raise ToolNotPermitted(
                f"{persona.name} ({profile.value}) cannot work in build: no file_write permission"
            )

        if options.post_comment and comment_text.strip():
            await self.store.add_comment(
                Comment(ticket_id=ticket.id, author_type=AuthorType.HUMAN, content=comment_text)
            )

        workspace = await self.provider.resolve(project.slug, ticket.id)

        run_id = uuid.uuid4().hex[:12]
        allowed_tools = self.registry.agent_tools_for(profile)
        await self.store.start_run(
            AgentRun(
                id=run_id,
                ticket_id=ticket.id,
                persona_id=persona.id,
                phase=ticket.state,
                tools=allowed_tools,
            )
        )
        await self.store.mark_agent_activity(ticket.id, persona.id)
        ticket.assignee_id = persona.id

        comments = await self.store.get_comments(ticket.id, limit=self.agent_config.comment_history)
        personas = {p.id: p for p in await self.store.list_personas(project.id)}
        system_prompt = prompts.build_system_prompt(
            persona, project, ticket, str(workspace.root_path), comments=comments, personas=personas
        )
        instructions = comment_text.strip() or _DEFAULT_INSTRUCTIONS[ticket.state]
        task = prompts.build_task(instructions, await self.store.get_documents(ticket.id))

        try:
            handle = await self.runner.start(
                run_id=run_id,
                ticket_id=ticket.id,
                persona_id=persona.id,
                workspace_path=workspace.root_path,
                system_prompt=system_prompt,
                task=task,
                allowed_tools=allowed_tools,
                env=workspace.git_env,
            )
        except OSError as exc:
            await self.store.finish_run(run_id, AgentRunStatus.FAILED, str(exc))
            raise
        await self.store.attach_process(run_id, handle.pid, str(handle.session_dir))

        await self._audit(
            ticket.id,
            "agent_dispatched",
            _Actor(AuthorType.SYSTEM),
            detail=f"{persona.name} ({persona.role.value})",
            metadata={"run_id": run_id, "phase": ticket.state.value, "tools": allowed_tools},
        )
        logger.info(
            "Dispatched %s (%s) to ticket #%d in %s", persona.id, persona.role.value, ticket.id, ticket.state.value
        )
        return persona

    async def _resolve_persona(
        self, ticket: Ticket, target_role: PersonaRole | None, target_persona_id: str | None
    ) -> Persona:
        if target_persona_id:
            return await self._get_persona(target_persona_id)
        role = target_role or DEFAULT_ROLE_FOR_STATE[ticket.state]
        persona = await self.store.find_persona_by_role(role, ticket.project_id)
        if persona is None:
            raise LookupError(f"No persona with role {role.value} for project {ticket.project_id}")
        return persona

    def _schedule_dispatch(self, ticket_id: int, **kwargs: Any) -> None:
        """Fire-and-forget follow-up dispatch."""
        task = asyncio.create_task(self._auto_dispatch(ticket_id, **kwargs), name=f"dispatch-{ticket_id}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _auto_dispatch(self, ticket_id: int, **kwargs: Any) -> None:
        try:
            await self.dispatch(ticket_id, **kwargs)
        except Exception:
            logger.exception("Auto-dispatch for ticket #%d failed (%s)", ticket_id, kwargs.get("target_role"))

    async def drain(self) -> None:
        """Wait for scheduled follow-up dispatches, including ones they schedule."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Agent completion ─────────────────────────────────────────────────

    async def agent_complete(
        self, ticket_id: int, persona_id: str, output: str, *, run_id: str | None = None
    ) -> CompletionOutcome:
        """Record an agent's output as a document or a comment.

        Raises:
            ValueError: Empty output.
            TicketNotFound / LookupError: Unknown ticket or persona.
        """
        if not output or not output.strip():
            raise ValueError("Agent output is empty")
        output = output.strip()
        ticket = await self.get_ticket(ticket_id)
        persona = await self._get_persona(persona_id)

        run = (
            await self.store.get_run(run_id)
            if run_id
            else await self.store.latest_running_run(ticket_id, persona_id)
        )
        if run is not None and run.status == AgentRunStatus.RUNNING:
            await self.store.finish_run(run.id, AgentRunStatus.COMPLETED)

        doc_type = self._document_type_for(ticket, persona)
        outcome: CompletionOutcome | None = None
        if doc_type is None:
            reason = f"no document for {persona.role.value} in {ticket.state.value}"
        elif ticket.assignee_id is not None and ticket.assignee_id != persona.id:
            reason = f"superseded: ticket is assigned to {ticket.assignee_id}"
        else:
            verdict = self.quality.check(output)
            if not verdict.accepted:
                reason = f"quality gate: {verdict.reason}"
            else:
                reason = ""
                outcome = await self._store_document(ticket, persona, doc_type, output)
                if outcome is None:
                    reason = f"{doc_type.value} version cap ({self.policy.research_version_cap}) reached"

        if outcome is None:
            await self.store.mark_agent_activity(ticket.id)
            comment = await self.store.add_comment(
                Comment(ticket_id=ticket.id, author_type=AuthorType.AGENT, persona_id=persona.id, content=output)
            )
            outcome = CompletionOutcome(stored_as="comment", comment=comment, reason=reason)
            logger.info("Ticket #%d: output from %s kept as comment (%s)", ticket.id, persona.id, reason)
        else:
            ticket.last_agent_activity = utcnow()
            await self.store.update_ticket(ticket)
            doc = outcome.document
            outcome.comment = await self.store.add_comment(
                Comment(
                    ticket_id=ticket.id,
                    author_type=AuthorType.AGENT,
                    persona_id=persona.id,
                    document_id=doc.id,
                    content=(
                        f"**{doc.type.value} v{doc.version}** saved.\n\n"
                        f"{summarize(output, self.agent_config.summary_length)}"
                    ),
                )
            )

        await self._audit(
            ticket.id,
            "agent_completed",
            _Actor(AuthorType.AGENT, persona.id, persona.name),
            detail=outcome.stored_as,
            metadata={
                "run_id": run.id if run else None,
                "document_type": outcome.document.type.value if outcome.document else None,
                "version": outcome.document.version if outcome.document else None,
                "reason": outcome.reason,
            },
        )
        return outcome

    def _document_type_for(self, ticket: Ticket, persona: Persona) -> DocumentType | None:
        if persona.role == PersonaRole.DESIGNER:
            return DocumentType.DESIGN
        if persona.role == PersonaRole.HACKER:
            return DocumentType.SECURITY_REVIEW
        if ticket.state == TicketState.RESEARCH:
            return DocumentType.RESEARCH
        if ticket.state == TicketState.PLAN:
            return DocumentType.IMPLEMENTATION_PLAN
        return None

    async def _store_document(
        self, ticket: Ticket, persona: Persona, doc_type: DocumentType, output: str
    ) -> CompletionOutcome | None:
        """Persist ``output`` as the next version. None when the version cap is hit."""
        latest = await self.store.latest_document(ticket.id, doc_type)
        now = utcnow()

        if doc_type == DocumentType.IMPLEMENTATION_PLAN:
            if latest is None:
                doc = await self.store.insert_document(
                    TicketDocument(
                        ticket_id=ticket.id, type=doc_type, version=1, content=output, author_persona_id=persona.id
                    )
                )
            else:
                latest.content = output
                latest.version += 1
                latest.author_persona_id = persona.id
                doc = await self.store.replace_document(latest)
            ticket.plan_completed_at = now
            ticket.plan_completed_by = persona.id
            return CompletionOutcome(stored_as="document", document=doc)

        version = latest.version + 1 if latest else 1
        follow_up: PersonaRole | str | None = None
        content = output

        if doc_type == DocumentType.RESEARCH:
            if version > self.policy.research_version_cap:
                return None
            if version == 1:
                follow_up = PersonaRole.CRITIC
            elif version == 2 and persona.role == PersonaRole.CRITIC:
                content = f"{latest.content}\n\n---\n\n## Critique ({persona.name})\n\n{output}"
                first = (await self.store.get_documents(ticket.id, doc_type))[-1]
                follow_up = first.author_persona_id
            ticket.research_completed_at = now
            ticket.research_completed_by = persona.id

        doc = await self.store.insert_document(
            TicketDocument(
                ticket_id=ticket.id, type=doc_type, version=version, content=content, author_persona_id=persona.id
            )
        )

        if isinstance(follow_up, PersonaRole):
            self._schedule_dispatch(ticket.id, target_role=follow_up, comment_text=prompts.RESEARCH_CRITIQUE)
        elif follow_up:
            self._schedule_dispatch(
                ticket.id, target_persona_id=follow_up, comment_text=prompts.RESEARCH_REVISION
            )
        return CompletionOutcome(stored_as="document", document=doc, follow_up=follow_up)

    # ── Approvals ────────────────────────────────────────────────────────

    async def approve_research(self, ticket_id: int) -> Ticket:
        ticket = await self.get_ticket(ticket_id)
        if ticket.research_approved_at is not None:
            return ticket
        if ticket.research_completed_at is None:
            raise ApprovalNotReady(f"Ticket #{ticket_id} has no completed research to approve")
        previous = ticket.state
        ticket.state = next_state(ticket.state, TicketEvent.APPROVE_RESEARCH)
        ticket.research_approved_at = utcnow()
        await self.store.update_ticket(ticket)
        await self._system_comment(ticket.id, f"Moved from **{previous.value}** to **{ticket.state.value}** — research approved")
        await self._audit(ticket.id, "research_approved", _Actor())
        self._schedule_dispatch(ticket.id, target_role=PersonaRole.DEVELOPER, comment_text=prompts.PLAN_KICKOFF)
        return ticket

    async def approve_plan(self, ticket_id: int) -> Ticket:
        ticket = await self.get_ticket(ticket_id)
        if ticket.plan_approved_at is not None:
            return ticket
        if ticket.research_approved_at is None:
            raise ApprovalNotReady(f"Ticket #{ticket_id}: research must be approved before the plan")
        if ticket.plan_completed_at is None:
            raise ApprovalNotReady(f"Ticket #{ticket_id} has no completed plan to approve")
        previous = ticket.state
        ticket.state = next_state(ticket.state, TicketEvent.APPROVE_PLAN)
        ticket.plan_approved_at = utcnow()
        await self.store.update_ticket(ticket)
        await self._system_comment(ticket.id, f"Moved from **{previous.value}** to **{ticket.state.value}** — plan approved")
        await self._audit(ticket.id, "plan_approved", _Actor())
        self._schedule_dispatch(ticket.id, target_role=PersonaRole.DEVELOPER, comment_text=prompts.BUILD_KICKOFF)
        return ticket

    async def revoke_research_approval(self, ticket_id: int) -> Ticket:
        """Clear research approval, moving a ``plan`` ticket back to ``research``.

        Clearing an approval that is not set is a no-op.

        Raises:
            InvalidTransition: The ticket is already in ``build`` or ``test``;
                the approval stays set.
        """
        ticket = await self.get_ticket(ticket_id)
        if ticket.research_approved_at is None:
            return ticket
        if ticket.state != TicketState.RESEARCH:
            ticket.state = next_state(ticket.state, TicketEvent.REVOKE_RESEARCH)
        ticket.research_approved_at = None
        await self.store.update_ticket(ticket)
        await self._system_comment(ticket.id, "Research approval revoked")
        await self._audit(ticket.id, "research_approval_revoked", _Actor())
        return ticket

    async def revoke_plan_approval(self, ticket_id: int) -> Ticket:
        """Clear plan approval, moving a ``build`` ticket back to ``plan``.

        Clearing an approval that is not set is a no-op.

        Raises:
            InvalidTransition: The ticket is already in ``test``; the approval
                stays set.
        """
        ticket = await self.get_ticket(ticket_id)
        if ticket.plan_approved_at is None:
            return ticket
        if ticket.state != TicketState.PLAN:
            ticket.state = next_state(ticket.state, TicketEvent.REVOKE_PLAN)
        ticket.plan_approved_at = None
        await self.store.update_ticket(ticket)
        await self._system_comment(ticket.id, "Plan approval revoked")
        await self._audit(ticket.id, "plan_approval_revoked", _Actor())
        return ticket

    # ── Test loop ────────────────────────────────────────────────────────

    async def submit_for_test(self, ticket_id: int, *, actor: Persona | None = None) -> Ticket:
        ticket = await self.get_ticket(ticket_id)
        ticket.state = next_state(ticket.state, TicketEvent.SUBMIT_FOR_TEST)
        await self.store.update_ticket(ticket)
        who = _Actor(AuthorType.AGENT, actor.id, actor.name) if actor else _Actor()
        await self._system_comment(ticket.id, "Moved from **build** to **test**")
        await self._audit(ticket.id, "submitted_for_test", who)
        return ticket

    async def return_to_build(self, ticket_id: int, reason: str) -> Ticket:
        """Send a ticket in ``test`` back to ``build`` and re-dispatch the developer."""
        if not reason or not reason.strip():
            raise ValueError("A reason is required to return a ticket from test")
        ticket = await self.get_ticket(ticket_id)
        ticket.state = next_state(ticket.state, TicketEvent.RETURN_TO_BUILD)
        ticket.returned_from_test = True
        ticket.return_reason = reason.strip()
        await self.store.update_ticket(ticket)
        await self.store.add_comment(
            Comment(
                ticket_id=ticket.id,
                author_type=AuthorType.HUMAN,
                content=f"**Returned from test:** {ticket.return_reason}",
            )
        )
        await self._audit(ticket.id, "returned_from_test", _Actor(), detail=ticket.return_reason)
        self._schedule_dispatch(
            ticket.id,
            target_role=PersonaRole.DEVELOPER,
            comment_text=prompts.RETURNED_FROM_TEST.format(reason=ticket.return_reason),
        )
        return ticket

    # ── Ship ─────────────────────────────────────────────────────────────

    async def ship(self, ticket_id: int) -> MergeResult:
        """Merge the ticket branch; the ticket moves to ``ship`` only on a real merge."""
        ticket = await self.get_ticket(ticket_id)
        if not can_transition(ticket.state, TicketEvent.MERGE):
            raise InvalidTransition(ticket.state, TicketEvent.MERGE)
        project = await self._get_project(ticket.project_id)

        repo = self.provider.verify_structure(project.slug)
        branch = branch_for(ticket.id)
        result = await self.merger.ship(
            repo,
            self.provider.worktree_path(project.slug, ticket.id),
            branch,
            f"merge {branch}: {ticket.title}",
            default_branch=project.default_branch,
            env=committer_env(ticket.id),
        )

        if result.ok and result.merge_commit:
            previous = ticket.state
            ticket.state = next_state(ticket.state, TicketEvent.MERGE)
            ticket.merged_at = utcnow()
            ticket.merge_commit = result.merge_commit
            await self.store.update_ticket(ticket)
            await self._system_comment(
                ticket.id,
                f"Moved from **{previous.value}** to **ship** — merged as `{result.merge_commit[:12]}`",
            )
            await self._audit(ticket.id, "ticket_shipped", _Actor(), metadata={"log": result.log})
            logger.info("Ticket #%d shipped: %s", ticket.id, result.merge_commit)
        else:
            await self._audit(ticket.id, "ship_failed", _Actor(), metadata={"log": result.log})
            logger.warning("Ship failed for ticket #%d: %s", ticket.id, result.log[-1] if result.log else "")
        return result

    # ── Direct tool invocation ───────────────────────────────────────────

    async def invoke_tool(
        self, ticket_id: int, persona_id: str, name: str, arguments: dict[str, Any]
    ) -> str:
        ticket = await self.get_ticket(ticket_id)
        persona = await self._get_persona(persona_id)
        project = await self._get_project(ticket.project_id)
        workspace = await self.provider.resolve(project.slug, ticket.id)
        ctx = ToolContext(
            ticket_id=ticket.id, persona=persona, workspace=workspace, engine=self, registry=self.registry
        )
        return await self.registry.invoke(ctx, name, arguments)

    # ── Completion consumer ──────────────────────────────────────────────

    async def start(self) -> None:
        """Start consuming agent completions."""
        self._running = True
        self._task = asyncio.create_task(self._consumer_loop(), name="completion-consumer")
        logger.info("Lifecycle engine started")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self.drain()
        logger.info("Lifecycle engine stopped")

    async def _consumer_loop(self) -> None:
        while self._running:
            try:
                completion = await asyncio.wait_for(self.completion_queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            try:
                await self.handle_completion(completion)
            except Exception:
                logger.exception("Error handling completion of run %s", completion.run_id)

    async def handle_completion(self, completion: AgentCompletion) -> CompletionOutcome | None:
        """Apply one queued completion. Runs no longer ``running`` are dropped."""
        run = await self.store.get_run(completion.run_id)
        if run is None or run.status != AgentRunStatus.RUNNING:
            logger.info("Dropping completion for run %s (not running)", completion.run_id)
            return None

        if not completion.output.strip():
            if completion.exit_code == 0:
                await self.store.finish_run(run.id, AgentRunStatus.COMPLETED)
            else:
                await self.store.finish_run(
                    run.id,
                    AgentRunStatus.FAILED,
                    completion.stderr_tail or f"exit code {completion.exit_code}",
                )
            await self._audit(
                completion.ticket_id,
                "agent_no_output",
                _Actor(AuthorType.SYSTEM),
                metadata={"run_id": run.id, "exit_code": completion.exit_code},
            )
            return None

        return await self.agent_complete(
            completion.ticket_id, completion.persona_id, completion.output, run_id=completion.run_id
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _system_comment(self, ticket_id: int, content: str) -> None:
        await self.store.add_comment(Comment(ticket_id=ticket_id, author_type=AuthorType.SYSTEM, content=content))

    async def _audit(
        self,
        ticket_id: int | None,
        event: str,
        actor: _Actor,
        *,
        detail: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.store.record_audit(
            AuditEvent(
                ticket_id=ticket_id,
                event=event,
                actor_type=actor.type,
                actor_id=actor.id,
                actor_name=actor.name,
                detail=detail,
                metadata=metadata or {},
            )
        )

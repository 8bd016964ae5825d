"""Ticket store: SQLite persistence for projects, tickets and agent runs.

Holds everything the lifecycle engine reads and writes: projects,
personas, tickets, versioned ticket documents, comments, the audit trail
and agent-run bookkeeping.  Each statement commits on its own; multi-step
sequences in the engine are not transactional.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

import aiosqlite

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

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    slug TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    remote_url TEXT,
    default_branch TEXT NOT NULL DEFAULT 'main',
    build_command TEXT,
    run_command TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS personas (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    role TEXT NOT NULL,
    project_id INTEGER REFERENCES projects(id),
    personality TEXT,
    tool_profile TEXT
);

-- AUTOINCREMENT: ticket ids name branches and worktrees, never reuse them
CREATE TABLE IF NOT EXISTS tickets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id),
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    acceptance_criteria TEXT NOT NULL DEFAULT '',
    type TEXT NOT NULL DEFAULT 'feature',
    state TEXT NOT NULL DEFAULT 'research',
    assignee_id TEXT,
    research_completed_at TEXT,
    research_completed_by TEXT,
    research_approved_at TEXT,
    plan_completed_at TEXT,
    plan_completed_by TEXT,
    plan_approved_at TEXT,
    returned_from_test INTEGER NOT NULL DEFAULT 0,
    return_reason TEXT,
    merged_at TEXT,
    merge_commit TEXT,
    comment_count INTEGER NOT NULL DEFAULT 0,
    last_agent_activity TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS ticket_documents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ticket_id INTEGER NOT NULL REFERENCES tickets(id),
    type TEXT NOT NULL,
    version INTEGER NOT NULL,
    content TEXT NOT NULL,
    author_persona_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS comments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ticket_id INTEGER NOT NULL REFERENCES tickets(id),
    author_type TEXT NOT NULL,
    persona_id TEXT,
    content TEXT NOT NULL,
    document_id INTEGER,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ticket_id INTEGER,
    event TEXT NOT NULL,
    actor_type TEXT NOT NULL,
    actor_id TEXT,
    actor_name TEXT,
    detail TEXT NOT NULL DEFAULT '',
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS agent_runs (
    id TEXT PRIMARY KEY,
    ticket_id INTEGER NOT NULL,
    persona_id TEXT NOT NULL,
    phase TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'running',
    tools TEXT NOT NULL DEFAULT '[]',
    session_dir TEXT,
    pid INTEGER,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    duration_ms INTEGER,
    error_message TEXT
);

CREATE INDEX IF NOT EXISTS idx_tickets_project ON tickets(project_id);
CREATE INDEX IF NOT EXISTS idx_documents_ticket ON ticket_documents(ticket_id, type, version);
CREATE INDEX IF NOT EXISTS idx_comments_ticket ON comments(ticket_id);
CREATE INDEX IF NOT EXISTS idx_audit_ticket ON audit_events(ticket_id);
CREATE INDEX IF NOT EXISTS idx_agent_runs_ticket ON agent_runs(ticket_id, status);
"""

_TICKET_TIMESTAMPS = (
    "research_completed_at",
    "research_approved_at",
    "plan_completed_at",
    "plan_approved_at",
    "merged_at",
    "last_agent_activity",
)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class TicketStore:
    """SQLite-backed ticket store with async access."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open database and create tables."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await self._db.executescript(SCHEMA)
        await self._db.commit()
        logger.info("Ticket store initialized: %s", self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Store not initialized; call initialize() first")
        return self._db

    # ── Projects ─────────────────────────────────────────────────────────

    async def create_project(self, project: Project) -> Project:
        cursor = await self.db.execute(
            """INSERT INTO projects
               (slug, name, remote_url, default_branch, build_command, run_command, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                project.slug,
                project.name,
                project.remote_url,
                project.default_branch,
                project.build_command,
                project.run_command,
                _ts(project.created_at),
            ),
        )
        await self.db.commit()
        project.id = cursor.lastrowid
        logger.info("Created project %s (id=%d)", project.slug, project.id)
        return project

    async def get_project(self, project_id: int) -> Project | None:
        cursor = await self.db.execute("SELECT * FROM projects WHERE id = ?", (project_id,))
        row = await cursor.fetchone()
        return self._row_to_project(row) if row else None

    async def get_project_by_slug(self, slug: str) -> Project | None:
        cursor = await self.db.execute("SELECT * FROM projects WHERE slug = ?", (slug,))
        row = await cursor.fetchone()
        return self._row_to_project(row) if row else None

    # ── Personas ─────────────────────────────────────────────────────────

    async def upsert_persona(self, persona: Persona) -> Persona:
        await self.db.execute(
            """INSERT INTO personas (id, name, role, project_id, personality, tool_profile)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
               name = excluded.name,
               role = excluded.role,
               project_id = excluded.project_id,
               personality = excluded.personality,
               tool_profile = excluded.tool_profile""",
            (
                persona.id,
                persona.name,
                persona.role.value,
                persona.project_id,
                persona.personality,
                persona.tool_profile.value if persona.tool_profile else None,
            ),
        )
        await self.db.commit()
        return persona

    async def get_persona(self, persona_id: str) -> Persona | None:
        cursor = await self.db.execute("SELECT * FROM personas WHERE id = ?", (persona_id,))
        row = await cursor.fetchone()
        return self._row_to_persona(row) if row else None

    async def find_persona_by_role(self, role: PersonaRole, project_id: int) -> Persona | None:
        """First persona with ``role`` in the project, falling back to global personas."""
        cursor = await self.db.execute(
            """SELECT * FROM personas
               WHERE role = ? AND (project_id = ? OR project_id IS NULL)
               ORDER BY project_id IS NULL, id LIMIT 1""",
            (role.value, project_id),
        )
        row = await cursor.fetchone()
        return self._row_to_persona(row) if row else None

    async def list_personas(self, project_id: int | None = None) -> list[Persona]:
        if project_id is None:
            cursor = await self.db.execute("SELECT * FROM personas ORDER BY id")
        else:
            cursor = await self.db.execute(
                "SELECT * FROM personas WHERE project_id = ? OR project_id IS NULL ORDER BY id",
                (project_id,),
            )
        rows = await cursor.fetchall()
        return [self._row_to_persona(r) for r in rows]

    # ── Tickets ──────────────────────────────────────────────────────────

    async def create_ticket(self, ticket: Ticket) -> Ticket:
        now = utcnow()
        ticket.created_at = now
        ticket.updated_at = now
        cursor = await self.db.execute(
            """INSERT INTO tickets
               (project_id, title, description, acceptance_criteria, type, state,
                assignee_id, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                ticket.project_id,
                ticket.title,
                ticket.description,
                ticket.acceptance_criteria,
                ticket.type.value,
                ticket.state.value,
                ticket.assignee_id,
                _ts(now),
                _ts(now),
            ),
        )
        await self.db.commit()
        ticket.id = cursor.lastrowid
        logger.info("Created ticket #%d: %s", ticket.id, ticket.title)
        return ticket

    async def get_ticket(self, ticket_id: int) -> Ticket | None:
        cursor = await self.db.execute("SELECT * FROM tickets WHERE id = ?", (ticket_id,))
        row = await cursor.fetchone()
        return self._row_to_ticket(row) if row else None

    async def update_ticket(self, ticket: Ticket) -> None:
        """Write back every mutable ticket field except the comment counter."""
        ticket.updated_at = utcnow()
        await self.db.execute(
            """UPDATE tickets SET
               title=?, description=?, acceptance_criteria=?, type=?, state=?, assignee_id=?,
               research_completed_at=?, research_completed_by=?, research_approved_at=?,
               plan_completed_at=?, plan_completed_by=?, plan_approved_at=?,
               returned_from_test=?, return_reason=?, merged_at=?, merge_commit=?,
               last_agent_activity=?, updated_at=?
               WHERE id=?""",
            (
                ticket.title,
                ticket.description,
                ticket.acceptance_criteria,
                ticket.type.value,
                ticket.state.value,
                ticket.assignee_id,
                _ts(ticket.research_completed_at),
                ticket.research_completed_by,
                _ts(ticket.research_approved_at),
                _ts(ticket.plan_completed_at),
                ticket.plan_completed_by,
                _ts(ticket.plan_approved_at),
                int(ticket.returned_from_test),
                ticket.return_reason,
                _ts(ticket.merged_at),
                ticket.merge_commit,
                _ts(ticket.last_agent_activity),
                _ts(ticket.updated_at),
                ticket.id,
            ),
        )
        await self.db.commit()

    async def mark_agent_activity(self, ticket_id: int, assignee_id: str | None = None) -> None:
        """Bump last_agent_activity, and the assignee when given, without touching state."""
        now = _ts(utcnow())
        if assignee_id is None:
            await self.db.execute(
                "UPDATE tickets SET last_agent_activity=?, updated_at=? WHERE id=?", (now, now, ticket_id)
            )
        else:
            await self.db.execute(
                "UPDATE tickets SET assignee_id=?, last_agent_activity=?, updated_at=? WHERE id=?",
                (assignee_id, now, now, ticket_id),
            )
        await self.db.commit()

    # ── Documents ────────────────────────────────────────────────────────

    async def get_documents(
        self, ticket_id: int, doc_type: DocumentType | None = None
    ) -> list[TicketDocument]:
        """Documents for a ticket, highest version first."""
        if doc_type is None:
            cursor = await self.db.execute(
                "SELECT * FROM ticket_documents WHERE ticket_id = ? ORDER BY version DESC, id DESC",
                (ticket_id,),
            )
        else:
            cursor = await self.db.execute(
                """SELECT * FROM ticket_documents WHERE ticket_id = ? AND type = ?
                   ORDER BY version DESC, id DESC""",
                (ticket_id, doc_type.value),
            )
        rows = await cursor.fetchall()
        return [self._row_to_document(r) for r in rows]

    async def latest_document(self, ticket_id: int, doc_type: DocumentType) -> TicketDocument | None:
        docs = await self.get_documents(ticket_id, doc_type)
        return docs[0] if docs else None

    async def insert_document(self, doc: TicketDocument) -> TicketDocument:
        now = utcnow()
        doc.created_at = now
        doc.updated_at = now
        cursor = await self.db.execute(
            """INSERT INTO ticket_documents
               (ticket_id, type, version, content, author_persona_id, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                doc.ticket_id,
                doc.type.value,
                doc.version,
                doc.content,
                doc.author_persona_id,
                _ts(now),
                _ts(now),
            ),
        )
        await self.db.commit()
        doc.id = cursor.lastrowid
        logger.info("Stored %s v%d for ticket #%d", doc.type.value, doc.version, doc.ticket_id)
        return doc

    async def replace_document(self, doc: TicketDocument) -> TicketDocument:
        """Overwrite an existing document row in place (content, version, author)."""
        doc.updated_at = utcnow()
        await self.db.execute(
            """UPDATE ticket_documents SET content = ?, version = ?, author_persona_id = ?,
               updated_at = ? WHERE id = ?""",
            (doc.content, doc.version, doc.author_persona_id, _ts(doc.updated_at), doc.id),
        )
        await self.db.commit()
        logger.info("Replaced %s for ticket #%d (now v%d)", doc.type.value, doc.ticket_id, doc.version)
        return doc

    # ── Comments ─────────────────────────────────────────────────────────

    async def add_comment(self, comment: Comment) -> Comment:
        """Append a comment and bump the ticket's comment counter."""
        cursor = await self.db.execute(
            """INSERT INTO comments
               (ticket_id, author_type, persona_id, content, document_id, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                comment.ticket_id,
                comment.author_type.value,
                comment.persona_id,
                comment.content,
                comment.document_id,
                _ts(comment.created_at),
            ),
        )
        await self.db.execute(
            "UPDATE tickets SET comment_count = comment_count + 1 WHERE id = ?",
            (comment.ticket_id,),
        )
        await self.db.commit()
        comment.id = cursor.lastrowid
        return comment

    async def get_comments(self, ticket_id: int, limit: int | None = None) -> list[Comment]:
        """Comments oldest first; with ``limit``, the most recent ``limit`` of them."""
        if limit is None:
            cursor = await self.db.execute(
                "SELECT * FROM comments WHERE ticket_id = ? ORDER BY id", (ticket_id,)
            )
            rows = await cursor.fetchall()
        else:
            cursor = await self.db.execute(
                "SELECT * FROM comments WHERE ticket_id = ? ORDER BY id DESC LIMIT ?",
                (ticket_id, limit),
            )
            rows = list(reversed(await cursor.fetchall()))
        return [self._row_to_comment(r) for r in rows]

    # ── Audit ────────────────────────────────────────────────────────────

    async def record_audit(self, event: AuditEvent) -> None:
        await self.db.execute(
            """INSERT INTO audit_events
               (ticket_id, event, actor_type, actor_id, actor_name, detail, metadata, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                event.ticket_id,
                event.event,
                event.actor_type.value,
                event.actor_id,
                event.actor_name,
                event.detail,
                json.dumps(event.metadata),
                _ts(event.created_at),
            ),
        )
        await self.db.commit()

    async def get_audit_events(self, ticket_id: int) -> list[AuditEvent]:
        cursor = await self.db.execute(
            "SELECT * FROM audit_events WHERE ticket_id = ? ORDER BY id", (ticket_id,)
        )
        rows = await cursor.fetchall()
        return [
            AuditEvent(
                id=r["id"],
                ticket_id=r["ticket_id"],
                event=r["event"],
                actor_type=AuthorType(r["actor_type"]),
                actor_id=r["actor_id"],
                actor_name=r["actor_name"],
                detail=r["detail"],
                metadata=json.loads(r["metadata"]),
                created_at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]

    # ── Agent Runs ───────────────────────────────────────────────────────

    async def start_run(self, run: AgentRun) -> int:
        """Record a new running run, abandoning other running runs on the ticket.

        Returns the number of runs abandoned.
        """
        now = _ts(utcnow())
        cursor = await self.db.execute(
            """UPDATE agent_runs SET status = 'abandoned', completed_at = ?,
               error_message = 'superseded by a newer dispatch'
               WHERE ticket_id = ? AND status = 'running'""",
            (now, run.ticket_id),
        )
        abandoned = cursor.rowcount
        await self.db.execute(
            """INSERT INTO agent_runs
               (id, ticket_id, persona_id, phase, status, tools, session_dir, pid, started_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                run.id,
                run.ticket_id,
                run.persona_id,
                run.phase.value,
                run.status.value,
                json.dumps(run.tools),
                run.session_dir,
                run.pid,
                _ts(run.started_at),
            ),
        )
        await self.db.commit()
        if abandoned:
            logger.info("Abandoned %d running run(s) on ticket #%d", abandoned, run.ticket_id)
        return abandoned

    async def attach_process(self, run_id: str, pid: int | None, session_dir: str) -> None:
        await self.db.execute(
            "UPDATE agent_runs SET pid = ?, session_dir = ? WHERE id = ?",
            (pid, session_dir, run_id),
        )
        await self.db.commit()

    async def get_run(self, run_id: str) -> AgentRun | None:
        cursor = await self.db.execute("SELECT * FROM agent_runs WHERE id = ?", (run_id,))
        row = await cursor.fetchone()
        return self._row_to_run(row) if row else None

    async def latest_running_run(self, ticket_id: int, persona_id: str) -> AgentRun | None:
        cursor = await self.db.execute(
            """SELECT * FROM agent_runs WHERE ticket_id = ? AND persona_id = ? AND status = 'running'
               ORDER BY started_at DESC LIMIT 1""",
            (ticket_id, persona_id),
        )
        row = await cursor.fetchone()
        return self._row_to_run(row) if row else None

    async def finish_run(
        self, run_id: str, status: AgentRunStatus, error_message: str | None = None
    ) -> AgentRun | None:
        """Move a run out of ``running``, recording its duration."""
        run = await self.get_run(run_id)
        if run is None:
            return None
        finished = utcnow()
        run.status = status
        run.completed_at = finished
        run.duration_ms = int((finished - run.started_at).total_seconds() * 1000)
        run.error_message = error_message
        await self.db.execute(
            """UPDATE agent_runs SET status = ?, completed_at = ?, duration_ms = ?, error_message = ?
               WHERE id = ?""",
            (status.value, _ts(finished), run.duration_ms, error_message, run_id),
        )
        await self.db.commit()
        return run

    async def abandon_stale_runs(self) -> int:
        """Mark every ``running`` run abandoned. Called once at startup."""
        cursor = await self.db.execute(
            """UPDATE agent_runs SET status = 'abandoned', completed_at = ?,
               error_message = 'process lost across restart' WHERE status = 'running'""",
            (_ts(utcnow()),),
        )
        await self.db.commit()
        return cursor.rowcount

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_project(row: aiosqlite.Row) -> Project:
        return Project(
            id=row["id"],
            slug=row["slug"],
            name=row["name"],
            remote_url=row["remote_url"],
            default_branch=row["default_branch"],
            build_command=row["build_command"],
            run_command=row["run_command"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_persona(row: aiosqlite.Row) -> Persona:
        return Persona(
            id=row["id"],
            name=row["name"],
            role=PersonaRole(row["role"]),
            project_id=row["project_id"],
            personality=row["personality"],
            tool_profile=PersonaRole(row["tool_profile"]) if row["tool_profile"] else None,
        )

    @staticmethod
    def _row_to_ticket(row: aiosqlite.Row) -> Ticket:
        stamps = {name: _dt(row[name]) for name in _TICKET_TIMESTAMPS}
        return Ticket(
            id=row["id"],
            project_id=row["project_id"],
            title=row["title"],
            description=row["description"],
            acceptance_criteria=row["acceptance_criteria"],
            type=TicketType(row["type"]),
            state=TicketState(row["state"]),
            assignee_id=row["assignee_id"],
            research_completed_by=row["research_completed_by"],
            plan_completed_by=row["plan_completed_by"],
            returned_from_test=bool(row["returned_from_test"]),
            return_reason=row["return_reason"],
            merge_commit=row["merge_commit"],
            comment_count=row["comment_count"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            **stamps,
        )

    @staticmethod
    def _row_to_document(row: aiosqlite.Row) -> TicketDocument:
        return TicketDocument(
            id=row["id"],
            ticket_id=row["ticket_id"],
            type=DocumentType(row["type"]),
            version=row["version"],
            content=row["content"],
            author_persona_id=row["author_persona_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_comment(row: aiosqlite.Row) -> Comment:
        return Comment(
            id=row["id"],
            ticket_id=row["ticket_id"],
            author_type=AuthorType(row["author_type"]),
            persona_id=row["persona_id"],
            content=row["content"],
            document_id=row["document_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_run(row: aiosqlite.Row) -> AgentRun:
        return AgentRun(
            id=row["id"],
            ticket_id=row["ticket_id"],
            persona_id=row["persona_id"],
            phase=TicketState(row["phase"]),
            status=AgentRunStatus(row["status"]),
            tools=json.loads(row["tools"]),
            session_dir=row["session_dir"],
            pid=row["pid"],
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=_dt(row["completed_at"]),
            duration_ms=row["duration_ms"],
            error_message=row["error_message"],
        )

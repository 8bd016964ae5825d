"""Core data models for Grove."""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ────────────────────────────────────────────────────────────────────


class TicketState(str, enum.Enum):
    """Ticket pipeline phases, in order."""

    RESEARCH = "research"
    PLAN = "plan"
    BUILD = "build"
    TEST = "test"
    SHIP = "ship"


class TicketType(str, enum.Enum):
    FEATURE = "feature"
    BUG = "bug"
    CHORE = "chore"


class PersonaRole(str, enum.Enum):
    RESEARCHER = "researcher"
    DEVELOPER = "developer"
    DESIGNER = "designer"
    CRITIC = "critic"
    HACKER = "hacker"
    LEAD = "lead"


class DocumentType(str, enum.Enum):
    RESEARCH = "research"
    IMPLEMENTATION_PLAN = "implementation_plan"
    DESIGN = "design"
    SECURITY_REVIEW = "security_review"


class AuthorType(str, enum.Enum):
    HUMAN = "human"
    AGENT = "agent"
    SYSTEM = "system"


class AgentRunStatus(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    ABANDONED = "abandoned"


# ── Records ──────────────────────────────────────────────────────────────────


class Project(BaseModel):
    id: int | None = None
    slug: str = Field(description="Directory name under projects_root")
    name: str
    remote_url: str | None = None
    default_branch: str = "main"
    build_command: str | None = None
    run_command: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Persona(BaseModel):
    """An agent identity. Its role decides which operations it may invoke."""

    id: str
    name: str
    role: PersonaRole
    project_id: int | None = Field(default=None, description="None = available to every project")
    personality: str | None = None
    tool_profile: PersonaRole | None = Field(
        default=None, description="Profile used for tool gating; defaults to the role"
    )

    @property
    def profile(self) -> PersonaRole:
        return self.tool_profile or self.role


class Ticket(BaseModel):
    id: int | None = None
    project_id: int
    title: str
    description: str = ""
    acceptance_criteria: str = ""
    type: TicketType = TicketType.FEATURE
    state: TicketState = TicketState.RESEARCH
    assignee_id: str | None = None

    research_completed_at: datetime | None = None
    research_completed_by: str | None = None
    research_approved_at: datetime | None = None
    plan_completed_at: datetime | None = None
    plan_completed_by: str | None = None
    plan_approved_at: datetime | None = None

    returned_from_test: bool = False
    return_reason: str | None = None
    merged_at: datetime | None = None
    merge_commit: str | None = None

    comment_count: int = 0
    last_agent_activity: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TicketDocument(BaseModel):
    id: int | None = None
    ticket_id: int
    type: DocumentType
    version: int
    content: str
    author_persona_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Comment(BaseModel):
    id: int | None = None
    ticket_id: int
    author_type: AuthorType
    persona_id: str | None = None
    content: str
    document_id: int | None = None
    created_at: datetime = Field(default_factory=utcnow)


class AuditEvent(BaseModel):
    id: int | None = None
    ticket_id: int | None = None
    event: str
    actor_type: AuthorType = AuthorType.SYSTEM
    actor_id: str | None = None
    actor_name: str | None = None
    detail: str = ""
    metadata: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class AgentRun(BaseModel):
    """One spawned agent process and its bookkeeping."""

    id: str
    ticket_id: int
    persona_id: str
    phase: TicketState
    status: AgentRunStatus = AgentRunStatus.RUNNING
    tools: list[str] = Field(default_factory=list)
    session_dir: str | None = None
    pid: int | None = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error_message: str | None = None

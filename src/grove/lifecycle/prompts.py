"""System prompt and task text handed to agent processes."""

from __future__ import annotations

from grove.models import (
    AuthorType,
    Comment,
    Persona,
    PersonaRole,
    Project,
    Ticket,
    TicketDocument,
)

ROLE_INSTRUCTIONS: dict[PersonaRole, str] = {
    PersonaRole.RESEARCHER: (
        "You are a researcher. Your stdout IS the research document: output ONLY structured "
        "markdown, no preamble or conversational wrapper.\n\n"
        "## How to research\n"
        "Investigate the codebase: read files, search code, understand the architecture. "
        "Reference specific file paths and line numbers.\n\n"
        "## What to include\n"
        "For every finding show what you looked at, what you found and how it affects the "
        "ticket. Include a \"Research Log\" section tracing your investigation path.\n\n"
        "## Style\n"
        "Be concise. Never say \"I've created a document\" or \"here's what I found\"; "
        "output the document directly. If a human answered questions from an earlier "
        "version, incorporate the answers."
    ),
    PersonaRole.DEVELOPER: (
        "You are a developer. You can read, write, and edit code in the workspace.\n"
        "Implement changes, fix bugs, or write implementation plans as requested.\n"
        "Make targeted changes and leave unrelated code alone."
    ),
    PersonaRole.DESIGNER: (
        "You are a designer. Review the UI/UX, suggest improvements, and analyze the design "
        "system. Reference specific components, CSS variables, and layout patterns. "
        "Your stdout is the design document."
    ),
    PersonaRole.CRITIC: (
        "You are a critic and devil's advocate. Challenge assumptions, find holes in "
        "reasoning, and stress-test proposals.\n"
        "You NEVER edit files or write code. You only read and comment.\n"
        "Be direct and specific: explain HOW something could fail and what to do about it."
    ),
    PersonaRole.HACKER: (
        "You are a security reviewer. Look for injection, path traversal, secret leakage, "
        "unsafe defaults and missing authorization. Cite files and lines. "
        "Your stdout is the security review."
    ),
    PersonaRole.LEAD: (
        "You are the tech lead. Keep the ticket moving: clarify scope, unblock others, and "
        "decide between competing approaches. Be brief."
    ),
}


def _comment_author(comment: Comment, personas: dict[str, Persona]) -> str:
    if comment.author_type == AuthorType.AGENT and comment.persona_id in personas:
        p = personas[comment.persona_id]
        return f"{p.name} ({p.role.value})"
    if comment.author_type == AuthorType.SYSTEM:
        return "System"
    return "Human"


def build_system_prompt(
    persona: Persona,
    project: Project,
    ticket: Ticket,
    workspace_path: str,
    *,
    comments: list[Comment] | None = None,
    personas: dict[str, Persona] | None = None,
) -> str:
    """Persona identity, role rules, workspace boundary, ticket and recent thread."""
    sections = [f'You are {persona.name}, working on project "{project.name}".']
    if persona.personality:
        sections += ["", "## Your Personality", persona.personality]

    sections += ["", ROLE_INSTRUCTIONS.get(persona.role, ROLE_INSTRUCTIONS[PersonaRole.DEVELOPER])]

    sections += [
        "",
        "## WORKSPACE BOUNDARY — HARD RULE",
        f"Your workspace is: {workspace_path}",
        f"You are ONLY allowed to read, write, or search files inside: {workspace_path}",
        "Do not use absolute paths to other directories and do not use ../ to leave it.",
    ]
    if project.build_command:
        sections.append(f"Build command: `{project.build_command}`")

    sections += ["", f"## Ticket: {ticket.id} — {ticket.title}"]
    sections.append(f"State: {ticket.state.value} | Type: {ticket.type.value}")
    if ticket.description:
        sections += ["", "### Description", ticket.description]
    if ticket.acceptance_criteria:
        sections += ["", "### Acceptance Criteria", ticket.acceptance_criteria]

    if comments:
        known = personas or {}
        sections += ["", "## Recent Conversation"]
        for comment in comments:
            sections += ["", f"**{_comment_author(comment, known)}** [{comment.author_type.value}]:", comment.content]

    sections += [
        "",
        "## Output",
        "Your entire stdout is recorded on the ticket: as a document when the phase calls for",
        "one, otherwise as a comment. Write well-formatted markdown.",
    ]
    return "\n".join(sections)


def build_task(instructions: str, documents: list[TicketDocument]) -> str:
    """The task (stdin) for one agent run: instructions plus the current documents."""
    parts = ["## Task", instructions.strip()]
    latest: dict[str, TicketDocument] = {}
    for doc in documents:
        current = latest.get(doc.type.value)
        if current is None or doc.version > current.version:
            latest[doc.type.value] = doc
    for doc in latest.values():
        parts += ["", f"## Current {doc.type.value} (v{doc.version})", doc.content]
    return "\n".join(parts)


# ── Auto-dispatch messages ───────────────────────────────────────────────────

RESEARCH_KICKOFF = (
    "Research this ticket. Investigate the codebase and produce the research document."
)
RESEARCH_CRITIQUE = (
    "Critique the current research document. Output ONLY your critique as markdown: gaps, "
    "wrong assumptions, risks and open questions. Do not repeat the document."
)
RESEARCH_REVISION = (
    "A critic reviewed your research. Produce the final research document that addresses "
    "the critique. Output the complete revised document, not a diff."
)
PLAN_KICKOFF = (
    "Research has been approved. Write the implementation plan: the files to change, the "
    "steps in order, and how each acceptance criterion will be verified."
)
BUILD_KICKOFF = (
    "The implementation plan has been approved. Begin coding the implementation now. "
    "Follow the plan step by step."
)
RETURNED_FROM_TEST = "Testing found problems and the ticket was returned to build:\n\n{reason}"

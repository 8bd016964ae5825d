"""Ticket lifecycle: transition table, quality gate, prompts and the engine."""

from .engine import (
    ApprovalNotReady,
    CompletionOutcome,
    DispatchOptions,
    TicketLifecycleEngine,
    TicketNotFound,
)
from .quality import QualityGate, QualityVerdict
from .state_machine import TRANSITIONS, InvalidTransition, TicketEvent, can_transition, next_state

__all__ = [
    "TRANSITIONS",
    "ApprovalNotReady",
    "CompletionOutcome",
    "DispatchOptions",
    "InvalidTransition",
    "QualityGate",
    "QualityVerdict",
    "TicketEvent",
    "TicketLifecycleEngine",
    "TicketNotFound",
    "can_transition",
    "next_state",
]

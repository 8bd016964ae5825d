"""Ticket state transitions.

Every phase change goes through :func:`next_state`; a (state, event) pair
missing from :data:`TRANSITIONS` is an invalid transition.
"""

from __future__ import annotations

import enum

from grove.models import TicketState


class TicketEvent(str, enum.Enum):
    APPROVE_RESEARCH = "approve_research"
    REVOKE_RESEARCH = "revoke_research"
    APPROVE_PLAN = "approve_plan"
    REVOKE_PLAN = "revoke_plan"
    SUBMIT_FOR_TEST = "submit_for_test"
    RETURN_TO_BUILD = "return_to_build"
    MERGE = "merge"


TRANSITIONS: dict[tuple[TicketState, TicketEvent], TicketState] = {
    (TicketState.RESEARCH, TicketEvent.APPROVE_RESEARCH): TicketState.PLAN,
    (TicketState.PLAN, TicketEvent.REVOKE_RESEARCH): TicketState.RESEARCH,
    (TicketState.PLAN, TicketEvent.APPROVE_PLAN): TicketState.BUILD,
    (TicketState.BUILD, TicketEvent.REVOKE_PLAN): TicketState.PLAN,
    (TicketState.BUILD, TicketEvent.SUBMIT_FOR_TEST): TicketState.TEST,
    (TicketState.TEST, TicketEvent.RETURN_TO_BUILD): TicketState.BUILD,
    (TicketState.BUILD, TicketEvent.MERGE): TicketState.SHIP,
    (TicketState.TEST, TicketEvent.MERGE): TicketState.SHIP,
}


class InvalidTransition(ValueError):
    def __init__(self, state: TicketState, event: TicketEvent):
        self.state = state
        self.event = event
        super().__init__(f"Cannot {event.value} a ticket in state {state.value}")


def next_state(state: TicketState, event: TicketEvent) -> TicketState:
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(state, event) from None


def can_transition(state: TicketState, event: TicketEvent) -> bool:
    return (state, event) in TRANSITIONS

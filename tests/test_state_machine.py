"""Tests for the ticket transition table."""

import pytest

from grove.lifecycle.state_machine import (
    TRANSITIONS,
    InvalidTransition,
    TicketEvent,
    can_transition,
    next_state,
)
from grove.models import TicketState


class TestTransitions:
    @pytest.mark.parametrize(
        "state,event,expected",
        [
            (TicketState.RESEARCH, TicketEvent.APPROVE_RESEARCH, TicketState.PLAN),
            (TicketState.PLAN, TicketEvent.REVOKE_RESEARCH, TicketState.RESEARCH),
            (TicketState.PLAN, TicketEvent.APPROVE_PLAN, TicketState.BUILD),
            (TicketState.BUILD, TicketEvent.REVOKE_PLAN, TicketState.PLAN),
            (TicketState.BUILD, TicketEvent.SUBMIT_FOR_TEST, TicketState.TEST),
            (TicketState.TEST, TicketEvent.RETURN_TO_BUILD, TicketState.BUILD),
            (TicketState.BUILD, TicketEvent.MERGE, TicketState.SHIP),
            (TicketState.TEST, TicketEvent.MERGE, TicketState.SHIP),
        ],
    )
    def test_allowed(self, state, event, expected):
        assert next_state(state, event) == expected
        assert can_transition(state, event)

    def test_table_is_exactly_the_allowed_edges(self):
        assert len(TRANSITIONS) == 8

    def test_everything_else_is_invalid(self):
        for state in TicketState:
            for event in TicketEvent:
                if (state, event) in TRANSITIONS:
                    continue
                assert not can_transition(state, event)
                with pytest.raises(InvalidTransition):
                    next_state(state, event)

    def test_ship_is_terminal(self):
        assert not any(can_transition(TicketState.SHIP, e) for e in TicketEvent)

    def test_error_carries_state_and_event(self):
        with pytest.raises(InvalidTransition) as exc_info:
            next_state(TicketState.RESEARCH, TicketEvent.MERGE)
        assert exc_info.value.state == TicketState.RESEARCH
        assert exc_info.value.event == TicketEvent.MERGE
        assert str(exc_info.value) == "Cannot merge a ticket in state research"

    def test_invalid_transition_is_a_value_error(self):
        assert issubclass(InvalidTransition, ValueError)

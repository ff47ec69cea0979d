import pytest

from sandbox.lifecycle import (
    REUSABLE_STATES,
    SessionStatus,
    assert_session_transition,
    parse_session_status,
)


def test_parse_session_status_rejects_invalid():
    with pytest.raises(RuntimeError, match="Invalid session status"):
        parse_session_status("weird")


def test_parse_session_status_round_trips_values():
    assert parse_session_status("cloning") == SessionStatus.CLONING


def test_new_session_must_start_provisioning():
    assert_session_transition(None, SessionStatus.PROVISIONING, reason="create")
    with pytest.raises(RuntimeError, match="Illegal session transition"):
        assert_session_transition(None, SessionStatus.READY, reason="test")


def test_provisioning_cannot_skip_to_ready():
    with pytest.raises(RuntimeError, match="Illegal session transition"):
        assert_session_transition(SessionStatus.PROVISIONING, SessionStatus.READY, reason="test")


def test_terminated_is_terminal():
    for target in (SessionStatus.PROVISIONING, SessionStatus.READY, SessionStatus.ERROR):
        with pytest.raises(RuntimeError, match="Illegal session transition"):
            assert_session_transition(SessionStatus.TERMINATED, target, reason="test")


@pytest.mark.parametrize("current", [s for s in SessionStatus if s != SessionStatus.TERMINATED])
def test_every_live_state_can_be_terminated(current):
    assert_session_transition(current, SessionStatus.TERMINATED, reason="delete")


@pytest.mark.parametrize("current", [SessionStatus.PROVISIONING, SessionStatus.CLONING, SessionStatus.STARTING])
def test_in_flight_states_can_fail(current):
    assert_session_transition(current, SessionStatus.ERROR, reason="failure")


def test_error_and_terminated_are_not_reusable():
    assert SessionStatus.ERROR not in REUSABLE_STATES
    assert SessionStatus.TERMINATED not in REUSABLE_STATES
    assert SessionStatus.READY in REUSABLE_STATES

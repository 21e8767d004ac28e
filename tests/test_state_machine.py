import pytest

from mockprep.core.errors import IllegalTransition
from mockprep.core.state_machine import SessionState, SessionStateMachine


def test_happy_path_records_history():
    seen = []
    sm = SessionStateMachine("iv-1", on_transition=lambda p, n, r: seen.append((p, n, r)))

    sm.transition(SessionState.CONNECTING, reason="user_start")
    sm.transition(SessionState.ACTIVE, reason="call_started")
    sm.transition(SessionState.FINISHED, reason="end:user")

    assert sm.state == SessionState.FINISHED
    assert sm.is_terminal
    assert [h["to"] for h in sm.history] == ["connecting", "active", "finished"]
    assert seen[-1] == (SessionState.ACTIVE, SessionState.FINISHED, "end:user")


def test_connect_can_fall_back_to_inactive():
    sm = SessionStateMachine()
    sm.transition(SessionState.CONNECTING)
    sm.transition(SessionState.INACTIVE)
    assert sm.state == SessionState.INACTIVE
    assert sm.can_transition(SessionState.CONNECTING)


@pytest.mark.parametrize("path, target", [
    ([], SessionState.ACTIVE),
    ([], SessionState.FINISHED),
    ([SessionState.CONNECTING, SessionState.ACTIVE], SessionState.CONNECTING),
    ([SessionState.CONNECTING, SessionState.ACTIVE, SessionState.FINISHED], SessionState.ACTIVE),
])
def test_illegal_transitions_raise(path, target):
    sm = SessionStateMachine()
    for state in path:
        sm.transition(state)
    with pytest.raises(IllegalTransition):
        sm.transition(target)


def test_illegal_transition_is_a_value_error():
    sm = SessionStateMachine()
    with pytest.raises(ValueError):
        sm.transition(SessionState.FINISHED)


def test_same_state_is_noop():
    calls = []
    sm = SessionStateMachine(on_transition=lambda *a: calls.append(a))
    sm.transition(SessionState.INACTIVE)
    assert sm.history == []
    assert calls == []


def test_callback_errors_do_not_block_transition():
    def boom(*_):
        raise RuntimeError("listener failed")

    sm = SessionStateMachine(on_transition=boom)
    sm.transition(SessionState.CONNECTING)
    assert sm.state == SessionState.CONNECTING

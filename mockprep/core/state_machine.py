"""
MockPrep — Session State Machine

Enforces the call lifecycle: INACTIVE → CONNECTING → ACTIVE → FINISHED.
All state transitions go through this module so illegitimate states
are impossible and every transition is logged.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from .errors import IllegalTransition

logger = logging.getLogger("mockprep.state")


class SessionState(str, Enum):
    """Strict session lifecycle states."""
    INACTIVE = "inactive"        # Not started (or connect gave up)
    CONNECTING = "connecting"    # Transport start in progress
    ACTIVE = "active"            # Call live, timers running
    FINISHED = "finished"        # Terminal for this session instance


# Legal state transitions. FINISHED is terminal; a retake is a new session.
_TRANSITIONS: Dict[SessionState, Set[SessionState]] = {
    SessionState.INACTIVE:   {SessionState.CONNECTING},
    SessionState.CONNECTING: {SessionState.ACTIVE, SessionState.INACTIVE},
    SessionState.ACTIVE:     {SessionState.FINISHED},
    SessionState.FINISHED:   set(),
}


class SessionStateMachine:
    """
    Enforces legal state transitions and notifies listeners.

    Usage:
        sm = SessionStateMachine(on_transition=my_callback)
        sm.transition(SessionState.CONNECTING)   # OK
        sm.transition(SessionState.ACTIVE)       # OK
        sm.transition(SessionState.CONNECTING)   # illegal from ACTIVE → raises
    """

    def __init__(
        self,
        session_id: str = "",
        on_transition: Optional[Callable[[SessionState, SessionState, str], None]] = None,
    ) -> None:
        self._session_id = session_id
        self._state = SessionState.INACTIVE
        self._on_transition = on_transition
        self._history: List[Dict] = []
        self._entered_at = time.time()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def history(self) -> List[Dict]:
        return list(self._history)

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self._state]

    def can_transition(self, target: SessionState) -> bool:
        return target == self._state or target in _TRANSITIONS[self._state]

    def transition(self, target: SessionState, reason: str = "") -> None:
        """
        Attempt a state transition. Raises IllegalTransition on illegal transitions.
        """
        if target == self._state:
            return  # same state is a no-op

        allowed = _TRANSITIONS.get(self._state, set())
        if target not in allowed:
            raise IllegalTransition(
                f"Illegal state transition: {self._state.value} → {target.value}. "
                f"Allowed from {self._state.value}: {sorted(s.value for s in allowed)}. "
                f"Reason: {reason}"
            )

        prev = self._state
        now = time.time()
        self._history.append({
            "from": prev.value,
            "to": target.value,
            "reason": reason,
            "timestamp": now,
            "duration_in_prev_ms": round((now - self._entered_at) * 1000, 1),
        })
        self._state = target
        self._entered_at = now

        logger.info(
            f"[{self._session_id}] STATE: {prev.value} → {target.value}"
            + (f" ({reason})" if reason else "")
        )

        if self._on_transition:
            try:
                self._on_transition(prev, target, reason)
            except Exception as e:
                logger.error(f"[{self._session_id}] State transition callback error: {e}")

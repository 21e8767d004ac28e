"""
MockPrep — Connection Health (Policy Layer)

Derives a coarse good / fair / poor signal from conversational cadence.
All health decisions live here — the orchestrator never decides what the
connection quality is; it reports raw signals and asks this module.

Health is advisory: it drives UI state and the manual reconnect
affordance, it never ends a session on its own.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from .events import TransportErrorKind
from .models import ConnectionHealth

logger = logging.getLogger("mockprep.health")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# Silence (seconds since the last transcript entry) before health degrades
FAIR_AFTER_S: float = 25.0
POOR_AFTER_S: float = 45.0

# Transport error kind → (notice level, user message, health override)
_ERROR_POLICY: Dict[TransportErrorKind, Tuple[str, str, Optional[ConnectionHealth]]] = {
    TransportErrorKind.AUDIO: (
        "error",
        "Microphone issue detected. Please check your microphone permissions.",
        ConnectionHealth.POOR,
    ),
    TransportErrorKind.PERMISSION: (
        "error",
        "Microphone issue detected. Please check your microphone permissions.",
        ConnectionHealth.POOR,
    ),
    TransportErrorKind.TIMEOUT: (
        "warning",
        "Connection timeout. Please try speaking again.",
        ConnectionHealth.FAIR,
    ),
    TransportErrorKind.QUOTA: (
        "error",
        "Voice service limit reached. Please try again later.",
        ConnectionHealth.POOR,
    ),
    TransportErrorKind.UNKNOWN: (
        "error",
        "Connection issue detected. Please try again.",
        None,
    ),
}


def classify_silence(
    elapsed: float,
    fair_after: float = FAIR_AFTER_S,
    poor_after: float = POOR_AFTER_S,
) -> ConnectionHealth:
    """elapsed > poor_after → poor, fair_after < elapsed ≤ poor_after → fair, else good."""
    if elapsed > poor_after:
        return ConnectionHealth.POOR
    if elapsed > fair_after:
        return ConnectionHealth.FAIR
    return ConnectionHealth.GOOD


class ConnectionHealthMonitor:
    """
    Tracks the raw liveness signals of one session and classifies them.

    The service layer supplies signals (activation, transcript arrivals,
    assistant speech, transport errors); this module makes decisions.
    """

    def __init__(
        self,
        session_id: str = "",
        fair_after: float = FAIR_AFTER_S,
        poor_after: float = POOR_AFTER_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_id = session_id
        self._fair_after = fair_after
        self._poor_after = poor_after
        self._clock = clock

        self._health = ConnectionHealth.GOOD
        self._activated_at: Optional[float] = None
        self._last_transcript_at: Optional[float] = None
        self._checked_at: Optional[float] = None

    @property
    def health(self) -> ConnectionHealth:
        return self._health

    # ── Signal setters (called by the orchestrator) ─────────────────────

    def mark_activated(self, timestamp: Optional[float] = None) -> None:
        """Session became ACTIVE — silence is measured from here until the first entry."""
        self._activated_at = timestamp if timestamp is not None else self._clock()
        self._last_transcript_at = None
        self._set(ConnectionHealth.GOOD, "activated")

    def report_transcript(self, captured_at: float) -> None:
        self._last_transcript_at = captured_at

    def report_assistant_speech(self) -> None:
        """The assistant started talking, so the channel is demonstrably alive."""
        self._set(ConnectionHealth.GOOD, "assistant_speech")

    def report_error(self, kind: TransportErrorKind) -> Tuple[str, str]:
        """Apply the error policy; returns (notice level, user message)."""
        level, message, override = _ERROR_POLICY.get(
            kind, _ERROR_POLICY[TransportErrorKind.UNKNOWN]
        )
        if override is not None:
            self._set(override, f"transport_error:{kind.value}")
        return level, message

    # ── Health check ────────────────────────────────────────────────────

    def silence_seconds(self, now: Optional[float] = None) -> float:
        now = now if now is not None else self._clock()
        if self._last_transcript_at is not None:
            reference = self._last_transcript_at
        elif self._activated_at is not None:
            reference = self._activated_at
        else:
            reference = now
        return max(0.0, now - reference)

    def evaluate(self, now: Optional[float] = None) -> ConnectionHealth:
        """Classify current silence and store the result."""
        now = now if now is not None else self._clock()
        self._checked_at = now
        health = classify_silence(
            self.silence_seconds(now), self._fair_after, self._poor_after
        )
        self._set(health, "cadence")
        return health

    def _set(self, health: ConnectionHealth, reason: str) -> None:
        if health == self._health:
            return
        prev = self._health
        self._health = health
        logger.info(f"[{self._session_id}] HEALTH: {prev.value} → {health.value} ({reason})")

    # ── Diagnostics ─────────────────────────────────────────────────────

    def diagnostics(self) -> Dict[str, Any]:
        return {
            "health": self._health.value,
            "silence_s": round(self.silence_seconds(), 1) if self._activated_at is not None else None,
            "checked_at": self._checked_at,
        }

"""
MockPrep — Collaborator Interfaces

Protocol definitions for the three collaborators the orchestrator drives:
  1. Transport  — the voice call (start/stop + event stream)
  2. Feedback   — assessment generation from a transcript
  3. Progress   — durable key-value snapshots keyed by session id

The orchestrator communicates through these protocols — never by reaching
into a collaborator's internals.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from .events import EventSource
from .models import FeedbackRequest, FeedbackResult, ProgressSnapshot, TransportSessionConfig


# ═══════════════════════════════════════════════════════════════════════════
# Transport: voice call channel
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class TransportAdapter(Protocol):
    """Owns the call; reports lifecycle and transcript through `events`."""

    @property
    def events(self) -> EventSource:
        """Typed event stream (CallStarted, CallEnded, TranscriptReceived, ...)."""
        ...

    async def start(self, config: TransportSessionConfig) -> None:
        """Start the call. Raises ConnectError when it cannot be established."""
        ...

    async def stop(self) -> None:
        """Hang up. Safe to call when no call is live."""
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Feedback: assessment generation
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class FeedbackService(Protocol):
    """Generates and stores feedback for a finished transcript."""

    async def create_feedback(self, request: FeedbackRequest) -> FeedbackResult:
        """Raises FeedbackServiceError on failure."""
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Progress: crash-recovery snapshots
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class ProgressStore(Protocol):
    """Keyed storage, one snapshot per session id. Last write wins."""

    def get(self, session_id: str) -> Optional[ProgressSnapshot]:
        ...

    def put(self, session_id: str, snapshot: ProgressSnapshot) -> None:
        """Full overwrite. Raises PersistenceError on failure."""
        ...

    def delete(self, session_id: str) -> None:
        ...

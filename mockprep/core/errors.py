"""
MockPrep — Error Taxonomy

Every failure the orchestrator handles maps to one of these types.
Call sites convert them into a user notice plus a defined state
transition (or an explicit non-transition for advisory failures).
"""

from __future__ import annotations

from typing import Optional


class MockPrepError(Exception):
    """Base class for all orchestrator errors."""


class ConnectError(MockPrepError):
    """Transport failed to establish a call. Retried, then surfaced."""

    def __init__(self, message: str, attempt: Optional[int] = None) -> None:
        super().__init__(message)
        self.attempt = attempt


class TransportRuntimeError(MockPrepError):
    """Audio / permission / quota / timeout error on a live call."""

    def __init__(self, message: str, kind: str = "unknown") -> None:
        super().__init__(message)
        self.kind = kind


class FeedbackServiceError(MockPrepError):
    """Finalize or recovery call failed. The snapshot is kept for retry."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(MockPrepError):
    """Snapshot read/write failed. Durability is advisory only."""


class IllegalTransition(MockPrepError, ValueError):
    """Raised by the state machine for transitions not in the table."""

"""
MockPrep — Data Models

Dataclasses for every piece of data flowing through the orchestrator.
Single source of truth for the shapes of sessions, snapshots and
feedback requests.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class ConnectionHealth(str, Enum):
    """Heuristic connection quality derived from transcript cadence."""
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class EndReason(str, Enum):
    """Why an active session finished."""
    USER = "user"          # user pressed end
    TIMEOUT = "timeout"    # hard time budget reached
    REMOTE = "remote"      # transport ended the call


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------

@dataclass
class TranscriptEntry:
    """One final utterance. Append-only, kept in arrival order."""
    role: str = "assistant"       # "user" | "assistant" | "system"
    content: str = ""
    captured_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_message(self) -> Dict[str, str]:
        """Shape expected by the feedback API: role + content only."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptEntry":
        return cls(
            role=str(data.get("role", "assistant")),
            content=str(data.get("content", "")),
            captured_at=float(data.get("captured_at", 0.0)),
        )


@dataclass
class TransportSessionConfig:
    """What the transport needs to start the interviewer call."""
    session_id: str
    user_name: str = ""
    questions: List[str] = field(default_factory=list)

    @property
    def formatted_questions(self) -> str:
        """Numbered question list injected into the interviewer prompt."""
        return "\n".join(f"{i}. {q}" for i, q in enumerate(self.questions, start=1))


# ---------------------------------------------------------------------------
# Progress snapshot (persisted)
# ---------------------------------------------------------------------------

@dataclass
class ProgressSnapshot:
    """Durable projection of a session, used for crash recovery."""
    session_id: str
    user_id: str
    transcript: List[TranscriptEntry] = field(default_factory=list)
    answered_count: int = 0
    total_questions: int = 0
    remaining_seconds: int = 0
    saved_at: float = field(default_factory=time.time)
    end_reason: Optional[EndReason] = None

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.saved_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "transcript": [e.to_dict() for e in self.transcript],
            "answered_count": self.answered_count,
            "total_questions": self.total_questions,
            "remaining_seconds": self.remaining_seconds,
            "saved_at": self.saved_at,
            "end_reason": self.end_reason.value if self.end_reason else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressSnapshot":
        reason = data.get("end_reason")
        return cls(
            session_id=str(data["session_id"]),
            user_id=str(data["user_id"]),
            transcript=[TranscriptEntry.from_dict(e) for e in data.get("transcript", [])],
            answered_count=int(data.get("answered_count", 0)),
            total_questions=int(data.get("total_questions", 0)),
            remaining_seconds=int(data.get("remaining_seconds", 0)),
            saved_at=float(data["saved_at"]),
            end_reason=EndReason(reason) if reason else None,
        )


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------

@dataclass
class FeedbackRequest:
    session_id: str
    user_id: str
    transcript: List[TranscriptEntry] = field(default_factory=list)
    feedback_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """JSON body for the feedback / recovery endpoints."""
        payload: Dict[str, Any] = {
            "interviewId": self.session_id,
            "userId": self.user_id,
            "messages": [e.to_message() for e in self.transcript],
        }
        if self.feedback_id:
            payload["feedbackId"] = self.feedback_id
        return payload


@dataclass
class FeedbackResult:
    success: bool = False
    feedback_id: Optional[str] = None


@dataclass
class FeedbackHandoff:
    """What the UI needs to navigate to the generated feedback."""
    session_id: str
    feedback_id: str
    recovered: bool = False

    @property
    def path(self) -> str:
        return f"/interview/{self.session_id}/feedback"


# ---------------------------------------------------------------------------
# UI-facing
# ---------------------------------------------------------------------------

@dataclass
class Notice:
    """A user-visible message (toast)."""
    level: str = "info"   # "info" | "success" | "warning" | "error"
    message: str = ""
    code: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RecoveryOffer:
    session_id: str
    answered_count: int
    total_questions: int
    entry_count: int
    saved_at: float
    age_seconds: float
    end_reason: Optional[EndReason] = None

    @property
    def prompt(self) -> str:
        return (
            f"We found an interrupted interview ({self.answered_count}/"
            f"{self.total_questions} questions completed). Would you like to "
            "generate feedback from your previous responses?"
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["end_reason"] = self.end_reason.value if self.end_reason else None
        d["prompt"] = self.prompt
        return d


@dataclass
class SessionView:
    """Read-only projection of the orchestrator for the UI layer."""
    session_id: str = ""
    status: str = "inactive"
    remaining_seconds: int = 0
    remaining_clock: str = "00:00"
    progress_percent: float = 0.0
    warning_shown: bool = False
    connection_health: str = ConnectionHealth.GOOD.value
    retry_count: int = 0
    can_reconnect: bool = False
    answered_count: int = 0
    total_questions: int = 0
    last_entry: Optional[Dict[str, Any]] = None
    is_speaking: bool = False
    end_reason: Optional[str] = None
    feedback_id: Optional[str] = None
    recovery_pending: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

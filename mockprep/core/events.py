"""
MockPrep — Transport Events

Typed events emitted by a transport adapter, plus the event source that
carries them. Each orchestrator owns its own EventSource subscription;
subscriptions are scoped resources (context managers) so teardown
happens on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Union

from .errors import TransportRuntimeError

logger = logging.getLogger("mockprep.events")


class TransportErrorKind(str, Enum):
    AUDIO = "audio"
    PERMISSION = "permission"
    QUOTA = "quota"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


def classify_error(message: str) -> TransportErrorKind:
    """Map a raw transport error message onto a coarse kind."""
    text = (message or "").lower()
    if "audio" in text or "voice" in text or "microphone" in text:
        return TransportErrorKind.AUDIO
    if "permission" in text or "notallowed" in text:
        return TransportErrorKind.PERMISSION
    if "timeout" in text or "timed out" in text:
        return TransportErrorKind.TIMEOUT
    if "quota" in text or "credit" in text:
        return TransportErrorKind.QUOTA
    return TransportErrorKind.UNKNOWN


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CallStarted:
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class CallEnded:
    reason: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class TranscriptReceived:
    role: str
    text: str
    is_final: bool = True
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class SpeechStarted:
    role: str = "assistant"
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class SpeechEnded:
    role: str = "assistant"
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class TransportFailure:
    kind: TransportErrorKind = TransportErrorKind.UNKNOWN
    message: str = ""
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "TransportFailure":
        message = str(exc)
        if isinstance(exc, TransportRuntimeError):
            try:
                return cls(kind=TransportErrorKind(exc.kind), message=message)
            except ValueError:
                pass
        return cls(kind=classify_error(message), message=message)


TransportEvent = Union[
    CallStarted, CallEnded, TranscriptReceived, SpeechStarted, SpeechEnded, TransportFailure
]

EventHandler = Callable[[TransportEvent], Any]


# ---------------------------------------------------------------------------
# Event source
# ---------------------------------------------------------------------------

class Subscription:
    """Handle returned by EventSource.subscribe(). Closing it detaches the handler."""

    def __init__(self, source: "EventSource", handler: EventHandler) -> None:
        self._source = source
        self._handler = handler
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._source._detach(self._handler)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class EventSource:
    """
    Ordered fan-out of transport events to subscribed handlers.

    Handlers may be sync or async; async handlers are awaited in order,
    so events are delivered in emission order.
    """

    def __init__(self, name: str = "") -> None:
        self._name = name
        self._handlers: List[EventHandler] = []

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: EventHandler) -> Subscription:
        self._handlers.append(handler)
        return Subscription(self, handler)

    def _detach(self, handler: EventHandler) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            pass

    async def emit(self, event: TransportEvent) -> None:
        for handler in list(self._handlers):
            try:
                cb = handler(event)
                if asyncio.iscoroutine(cb):
                    await cb
            except Exception as e:
                logger.error(
                    f"[{self._name}] Handler error for {type(event).__name__}: {e}",
                    exc_info=True,
                )

import asyncio
from dataclasses import replace
from typing import Any, Dict, List, Optional

import pytest

from mockprep.core.config import SessionConfig
from mockprep.core.errors import ConnectError
from mockprep.core.events import CallEnded, CallStarted, EventSource, TranscriptReceived
from mockprep.core.models import (
    FeedbackRequest,
    FeedbackResult,
    ProgressSnapshot,
    TranscriptEntry,
    TransportSessionConfig,
)
from mockprep.services.orchestrator import SessionOrchestrator
from mockprep.services.progress_store import InMemoryProgressStore


# 20 countdown seconds of 10 ms each; everything else near-instant
FAST = SessionConfig(
    duration_seconds=20,
    warning_lead_seconds=5,
    tick_seconds=0.01,
    max_retries=2,
    retry_backoff_seconds=0.0,
    reconnect_grace_seconds=0.0,
    health_poll_seconds=3600.0,
    health_fair_after_seconds=25.0,
    health_poor_after_seconds=45.0,
    autosave_debounce_seconds=0.01,
    autosave_interval_seconds=3600.0,
    recovery_max_age_seconds=1800.0,
    recovery_timeout_seconds=1.0,
    default_total_questions=10,
)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Scriptable transport. `failures` upcoming start() calls raise ConnectError."""

    def __init__(self, failures: int = 0, emit_started: bool = True, end_on_stop: bool = False) -> None:
        self.events = EventSource("fake")
        self.failures = failures
        self.emit_started = emit_started
        self.end_on_stop = end_on_stop
        self.start_calls = 0
        self.stop_calls = 0
        self.configs: List[TransportSessionConfig] = []
        self.retry_counts_seen: List[int] = []
        self.observer: Optional[SessionOrchestrator] = None

    async def start(self, config: TransportSessionConfig) -> None:
        self.start_calls += 1
        self.configs.append(config)
        if self.observer is not None:
            self.retry_counts_seen.append(self.observer.retry_count)
        if self.failures > 0:
            self.failures -= 1
            raise ConnectError("connection refused", attempt=self.start_calls)
        if self.emit_started:
            await self.events.emit(CallStarted())

    async def stop(self) -> None:
        self.stop_calls += 1
        if self.end_on_stop:
            await self.events.emit(CallEnded(reason="stopped"))

    async def say(self, role: str, text: str, is_final: bool = True) -> None:
        await self.events.emit(TranscriptReceived(role=role, text=text, is_final=is_final))

    async def hang_up(self) -> None:
        await self.events.emit(CallEnded(reason="remote"))


class FakeFeedbackService:
    def __init__(self, feedback_id: str = "fb-1", error: Optional[Exception] = None,
                 success: bool = True, hold: bool = False) -> None:
        self.feedback_id = feedback_id
        self.error = error
        self.success = success
        self.requests: List[FeedbackRequest] = []
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        if not hold:
            self.release.set()

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def create_feedback(self, request: FeedbackRequest) -> FeedbackResult:
        self.requests.append(request)
        self.started.set()
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return FeedbackResult(success=self.success, feedback_id=self.feedback_id if self.success else None)


class Recorder:
    """Collects everything the orchestrator reports to the UI layer."""

    def __init__(self) -> None:
        self.notices: List[Any] = []
        self.views: List[Any] = []
        self.handoffs: List[Any] = []
        self.paths: List[str] = []

    def codes(self) -> List[str]:
        return [n.code for n in self.notices]

    def messages(self) -> List[str]:
        return [n.message for n in self.notices]


def make_snapshot(session_id: str = "iv-1", user_id: str = "user-1", saved_at: float = 0.0,
                  entries: int = 3) -> ProgressSnapshot:
    transcript = []
    for i in range(entries):
        role = "assistant" if i % 2 == 0 else "user"
        transcript.append(TranscriptEntry(role=role, content=f"line {i}", captured_at=saved_at - 10 + i))
    return ProgressSnapshot(
        session_id=session_id,
        user_id=user_id,
        transcript=transcript,
        answered_count=(entries + 1) // 2,
        total_questions=5,
        remaining_seconds=300,
        saved_at=saved_at,
    )


async def settle(seconds: float = 0.05) -> None:
    await asyncio.sleep(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def feedback() -> FakeFeedbackService:
    return FakeFeedbackService()


@pytest.fixture
def store() -> InMemoryProgressStore:
    return InMemoryProgressStore()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
async def make_orchestrator(transport, feedback, store, recorder, clock):
    created: List[SessionOrchestrator] = []

    def factory(**overrides: Any) -> SessionOrchestrator:
        config_overrides: Dict[str, Any] = overrides.pop("config_overrides", {})
        kwargs: Dict[str, Any] = dict(
            session_id="iv-1",
            user_id="user-1",
            transport=transport,
            feedback_service=feedback,
            progress_store=store,
            user_name="Ada",
            questions=["Tell me about yourself.", "Why this role?", "Any questions?"],
            config=replace(FAST, **config_overrides),
            clock=clock,
            on_notice=recorder.notices.append,
            on_status=recorder.views.append,
            on_feedback_ready=recorder.handoffs.append,
            on_navigate=recorder.paths.append,
        )
        kwargs.update(overrides)
        orch = SessionOrchestrator(**kwargs)
        created.append(orch)
        return orch

    yield factory

    for orch in created:
        await orch.close()

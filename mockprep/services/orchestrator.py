"""
MockPrep — Session Orchestrator

================================================================================
ONE INTERVIEW ATTEMPT — CALL LIFECYCLE, TIME BUDGET, AUTOSAVE, FEEDBACK
================================================================================

`SessionOrchestrator` composes the collaborators of a single mock interview:

  1. Transport   — started with a bounded retry loop; its typed events drive
                   the state machine (INACTIVE → CONNECTING → ACTIVE → FINISHED).
  2. TimerSet    — countdown, warning and hard timeout. Exactly one live set;
                   any (re)start cancels the previous set first.
  3. Health      — background poll classifying silence as good / fair / poor.
                   Advisory only: it enables the manual reconnect, never ends
                   the session.
  4. Autosave    — debounced write after each assistant utterance plus an
                   unconditional interval write. Full overwrite, last write wins.
  5. Finalize    — on ACTIVE → FINISHED a finish task stops the transport and
                   sends the transcript to the Feedback Service; close()
                   cancels it. The snapshot is deleted only on success.
  6. Recovery    — on load, a fresh snapshot owned by this user is offered;
                   accepting sends it straight to feedback (voice never resumes).

Scheduling is single-threaded asyncio. The terminal transition happens
before any await, so a hard timeout racing a user end (or a duplicate
"ended" event) finds the session FINISHED and does nothing.
================================================================================
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import ExitStack
from typing import Any, Callable, List, Optional, Set

from ..core.config import SessionConfig, session_cfg
from ..core.errors import PersistenceError
from ..core.events import (
    CallEnded,
    CallStarted,
    SpeechEnded,
    SpeechStarted,
    TranscriptReceived,
    TransportEvent,
    TransportFailure,
)
from ..core.health import ConnectionHealthMonitor
from ..core.interfaces import FeedbackService, ProgressStore, TransportAdapter
from ..core.models import (
    ConnectionHealth,
    EndReason,
    FeedbackHandoff,
    FeedbackRequest,
    FeedbackResult,
    Notice,
    ProgressSnapshot,
    RecoveryOffer,
    SessionView,
    TranscriptEntry,
    TransportSessionConfig,
)
from ..core.state_machine import SessionState, SessionStateMachine
from ..core.timers import TimerSet, format_clock, progress_percent

logger = logging.getLogger("mockprep.orchestrator")


def _duration_phrase(seconds: int) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = seconds // 60
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds} seconds"


class SessionOrchestrator:
    """
    Owns one interview attempt end to end. A retake builds a new instance.

    Lifecycle:
        orch = SessionOrchestrator(session_id, user_id, transport, feedback, store)
        offer = orch.check_for_recovery()      # on load
        await orch.start_session()             # user presses "Call"
        ...                                    # transport events flow in
        await orch.end_session()               # or timeout / remote end
        await orch.close()
    """

    def __init__(
        self,
        session_id: str,
        user_id: str,
        transport: TransportAdapter,
        feedback_service: FeedbackService,
        progress_store: ProgressStore,
        recovery_service: Optional[FeedbackService] = None,
        user_name: str = "",
        questions: Optional[List[str]] = None,
        feedback_id: Optional[str] = None,
        config: SessionConfig = session_cfg,
        clock: Callable[[], float] = time.time,
        on_notice: Optional[Callable[[Notice], Any]] = None,
        on_status: Optional[Callable[[SessionView], Any]] = None,
        on_feedback_ready: Optional[Callable[[FeedbackHandoff], Any]] = None,
        on_navigate: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.session_id = session_id
        self.user_id = user_id
        self.user_name = user_name
        self.questions: List[str] = list(questions or [])

        self._cfg = config
        self._clock = clock
        self._transport = transport
        self._feedback = feedback_service
        self._recovery = recovery_service or feedback_service
        self._store = progress_store

        # Callbacks for the UI layer
        self._on_notice = on_notice
        self._on_status = on_status
        self._on_feedback_ready = on_feedback_ready
        self._on_navigate = on_navigate

        # State machine + policy layer
        self._sm = SessionStateMachine(session_id, on_transition=self._on_state_transition)
        self._health = ConnectionHealthMonitor(
            session_id,
            fair_after=config.health_fair_after_seconds,
            poor_after=config.health_poor_after_seconds,
            clock=clock,
        )

        # Session data
        self._transcript: List[TranscriptEntry] = []
        self._answered_count = 0
        self._retry_count = 0
        self._remaining = config.duration_seconds
        self._warning_shown = False
        self._is_speaking = False
        self._activated_at: Optional[float] = None
        self._end_reason: Optional[EndReason] = None
        self._feedback_id = feedback_id

        # Owned resources
        self._timers: Optional[TimerSet] = None
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._health_task: Optional[asyncio.Task] = None
        self._autosave_task: Optional[asyncio.Task] = None
        self._finish_task: Optional[asyncio.Task] = None
        self._callback_tasks: Set[asyncio.Task] = set()
        self._finished = asyncio.Event()
        self._connecting = False
        self._reconnecting = False
        self._transport_live = False
        self._closed = False

        # Recovery
        self._recovery_offer: Optional[RecoveryOffer] = None
        self._recovery_in_flight = False
        self._recovery_call: Optional[asyncio.Future] = None
        self._recovery_cancel_requested = False

        # Transport subscription, released in close()
        self._resources = ExitStack()
        self._resources.enter_context(transport.events.subscribe(self._on_transport_event))

        logger.info(f"[{session_id}] Orchestrator created (user={user_id})")

    async def __aenter__(self) -> "SessionOrchestrator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── Read-only state ─────────────────────────────────────────────────

    @property
    def status(self) -> SessionState:
        return self._sm.state

    @property
    def transcript(self) -> List[TranscriptEntry]:
        return list(self._transcript)

    @property
    def answered_count(self) -> int:
        return self._answered_count

    @property
    def total_questions(self) -> int:
        return len(self.questions) or self._cfg.default_total_questions

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def remaining_seconds(self) -> int:
        return self._remaining

    @property
    def warning_shown(self) -> bool:
        return self._warning_shown

    @property
    def connection_health(self) -> ConnectionHealth:
        return self._health.health

    @property
    def end_reason(self) -> Optional[EndReason]:
        return self._end_reason

    @property
    def feedback_id(self) -> Optional[str]:
        return self._feedback_id

    @property
    def recovery_pending(self) -> bool:
        return self._recovery_offer is not None or self._recovery_in_flight

    @property
    def timers(self) -> Optional[TimerSet]:
        return self._timers

    @property
    def can_reconnect(self) -> bool:
        return (
            self._sm.state == SessionState.ACTIVE
            and self._health.health == ConnectionHealth.POOR
            and self._retry_count < self._cfg.max_retries
            and not self._reconnecting
        )

    def view(self) -> SessionView:
        last = self._transcript[-1].to_dict() if self._transcript else None
        return SessionView(
            session_id=self.session_id,
            status=self._sm.state.value,
            remaining_seconds=self._remaining,
            remaining_clock=format_clock(self._remaining),
            progress_percent=progress_percent(self._cfg.duration_seconds, self._remaining),
            warning_shown=self._warning_shown,
            connection_health=self._health.health.value,
            retry_count=self._retry_count,
            can_reconnect=self.can_reconnect,
            answered_count=self._answered_count,
            total_questions=self.total_questions,
            last_entry=last,
            is_speaking=self._is_speaking,
            end_reason=self._end_reason.value if self._end_reason else None,
            feedback_id=self._feedback_id,
            recovery_pending=self.recovery_pending,
        )

    async def wait_finished(self, timeout: Optional[float] = None) -> None:
        """Block until the finish (and its feedback call, if any) completed."""
        await asyncio.wait_for(self._finished.wait(), timeout=timeout)

    # ── Action: start ───────────────────────────────────────────────────

    async def start_session(self) -> bool:
        """
        INACTIVE → CONNECTING, then connect with retry. The ACTIVE transition
        itself is driven by the transport's CallStarted event.
        """
        if self.recovery_pending:
            self._notice("warning", "Please wait while we process your recovery request.", "recovery_pending")
            return False
        if self._sm.state != SessionState.INACTIVE:
            logger.warning(f"[{self.session_id}] start_session ignored in state {self._sm.state.value}")
            return False

        self._retry_count = 0
        self._sm.transition(SessionState.CONNECTING, reason="user_start")

        if await self._connect():
            return True

        if self._sm.state == SessionState.CONNECTING:
            self._sm.transition(SessionState.INACTIVE, reason="connect_exhausted")
        self._notice(
            "error",
            "Failed to connect to voice service. Please check your microphone and internet connection.",
            "connect_failed",
        )
        return False

    async def _connect(self) -> bool:
        """Bounded retry loop: attempts 1..max_retries+1 with a fixed backoff."""
        max_retries = self._cfg.max_retries
        attempts = max_retries + 1
        config = TransportSessionConfig(
            session_id=self.session_id,
            user_name=self.user_name,
            questions=self.questions,
        )

        self._connecting = True
        try:
            for attempt in range(1, attempts + 1):
                logger.info(f"[{self.session_id}] Starting interview attempt {attempt}/{attempts}")
                try:
                    await self._transport.start(config)
                except Exception as e:
                    logger.warning(f"[{self.session_id}] Connect attempt {attempt} failed: {e}")
                    if attempt > max_retries:
                        break
                    self._retry_count = attempt
                    self._notice("info", f"Reconnecting... ({attempt}/{max_retries})", "retrying")
                    self._emit_status()
                    await asyncio.sleep(self._cfg.retry_backoff_seconds)
                    continue

                self._retry_count = 0
                self._transport_live = True
                self._emit_status()
                return True
        finally:
            self._connecting = False

        logger.error(f"[{self.session_id}] Failed to start interview after {attempts} attempts")
        return False

    # ── Action: end ─────────────────────────────────────────────────────

    async def end_session(self) -> None:
        """User-initiated disconnect."""
        if self._sm.state != SessionState.ACTIVE:
            logger.info(f"[{self.session_id}] end_session ignored in state {self._sm.state.value}")
            return
        logger.info(f"[{self.session_id}] Ending interview gracefully")
        await self._wait_for(self._finish(EndReason.USER))

    # ── Action: reconnect ───────────────────────────────────────────────

    async def reconnect(self) -> bool:
        """
        Stop the transport, wait a grace interval, re-run the connect loop.

        The session stays ACTIVE; the countdown pauses and resumes from the
        remaining budget once the transport reports CallStarted again.
        """
        if self._sm.state != SessionState.ACTIVE or self._reconnecting:
            return False

        self._reconnecting = True
        self._notice("info", "Attempting to improve connection...", "reconnecting")
        self._cancel_timers()
        await self._stop_transport()
        await asyncio.sleep(self._cfg.reconnect_grace_seconds)

        if self._sm.state != SessionState.ACTIVE:
            return False

        ok = await self._connect()

        if self._sm.state != SessionState.ACTIVE:
            # Session ended while reconnecting; drop the new call
            if ok:
                await self._stop_transport()
            return False

        if not ok:
            self._reconnecting = False
            self._notice("error", "Could not re-establish the call. Generating feedback from your answers.", "reconnect_failed")
            await self._wait_for(self._finish(EndReason.REMOTE))
            return False
        return True

    # ── Transport events ────────────────────────────────────────────────

    async def _on_transport_event(self, event: TransportEvent) -> None:
        if isinstance(event, CallStarted):
            self._handle_call_started()
        elif isinstance(event, CallEnded):
            await self._handle_call_ended(event)
        elif isinstance(event, TranscriptReceived):
            self._handle_transcript(event)
        elif isinstance(event, SpeechStarted):
            self._handle_speech(event.role, True)
        elif isinstance(event, SpeechEnded):
            self._handle_speech(event.role, False)
        elif isinstance(event, TransportFailure):
            self._handle_failure(event)

    def _handle_call_started(self) -> None:
        state = self._sm.state

        if state == SessionState.ACTIVE and self._reconnecting:
            self._reconnecting = False
            self._retry_count = 0
            self._health.mark_activated(self._clock())
            self._start_interview_timer(resume=True)
            self._notice("success", "Reconnected. Please continue.", "reconnected")
            self._emit_status()
            return

        if state != SessionState.CONNECTING:
            logger.debug(f"[{self.session_id}] Duplicate call start ignored ({state.value})")
            return

        self._sm.transition(SessionState.ACTIVE, reason="call_started")
        self._activated_at = self._clock()
        self._retry_count = 0
        self._health.mark_activated(self._activated_at)
        self._start_interview_timer()
        self._start_background_workers()

        greeting = f"Hello {self.user_name}!" if self.user_name else "Hello!"
        self._notice(
            "success",
            f"{greeting} Interview started. Speak clearly into your microphone.",
            "started",
        )
        self._emit_status()

    async def _handle_call_ended(self, event: CallEnded) -> None:
        if self._reconnecting:
            logger.info(f"[{self.session_id}] Call end during reconnect ignored")
            return

        state = self._sm.state
        if state == SessionState.ACTIVE:
            logger.info(f"[{self.session_id}] Call ended by transport ({event.reason or 'no reason'})")
            self._finish(EndReason.REMOTE)
        elif state == SessionState.CONNECTING and not self._connecting:
            self._sm.transition(SessionState.INACTIVE, reason="ended_before_start")
            self._notice("error", "The call ended before the interview started. Please try again.", "ended_early")
        else:
            logger.debug(f"[{self.session_id}] Call end ignored ({state.value})")

    def _handle_transcript(self, event: TranscriptReceived) -> None:
        if not event.is_final:
            return
        if self._sm.state not in (SessionState.CONNECTING, SessionState.ACTIVE):
            logger.debug(f"[{self.session_id}] Transcript after finish dropped")
            return

        entry = TranscriptEntry(role=event.role, content=event.text, captured_at=self._clock())
        self._transcript.append(entry)
        self._health.report_transcript(entry.captured_at)

        if entry.role == "assistant":
            self._answered_count += 1
            self._schedule_debounced_save()

        self._emit_status()

    def _handle_speech(self, role: str, started: bool) -> None:
        if role != "assistant":
            return
        self._is_speaking = started
        if started:
            self._health.report_assistant_speech()
        self._emit_status()

    def _handle_failure(self, event: TransportFailure) -> None:
        logger.warning(f"[{self.session_id}] Transport error ({event.kind.value}): {event.message}")
        level, message = self._health.report_error(event.kind)
        self._notice(level, message, f"transport_{event.kind.value}")
        self._emit_status()

    # ── Timers ──────────────────────────────────────────────────────────

    def _start_interview_timer(self, resume: bool = False) -> None:
        self._cancel_timers()
        if not resume:
            self._remaining = self._cfg.duration_seconds
            self._warning_shown = False

        self._timers = TimerSet(
            self.session_id,
            budget_seconds=self._cfg.duration_seconds,
            warning_lead_seconds=self._cfg.warning_lead_seconds,
            tick_seconds=self._cfg.tick_seconds,
            remaining_seconds=self._remaining,
            warning_shown=self._warning_shown,
            on_tick=self._on_tick,
            on_warning=self._on_time_warning,
            on_timeout=self._on_time_limit,
        )
        self._timers.start()

    def _cancel_timers(self) -> None:
        if self._timers is not None:
            self._timers.cancel()
            self._timers = None

    def _on_tick(self, remaining: int) -> None:
        self._remaining = remaining
        self._emit_status()

    def _on_time_warning(self, remaining: int) -> None:
        self._warning_shown = True
        self._notice(
            "warning",
            f"{_duration_phrase(self._cfg.warning_lead_seconds)} remaining! Please wrap up your responses.",
            "time_warning",
        )
        self._emit_status()

    def _on_time_limit(self) -> None:
        if self._sm.state != SessionState.ACTIVE:
            return
        logger.info(f"[{self.session_id}] Interview time limit reached — auto-disconnecting")
        self._finish(EndReason.TIMEOUT)

    # ── Background workers ──────────────────────────────────────────────

    def _start_background_workers(self) -> None:
        self._stop_background_workers()
        loop = asyncio.get_running_loop()
        self._health_task = loop.create_task(
            self._health_monitor(), name=f"health-{self.session_id}"
        )
        self._autosave_task = loop.create_task(
            self._autosave_worker(), name=f"autosave-{self.session_id}"
        )

    def _stop_background_workers(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        for task in (self._health_task, self._autosave_task):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()

    async def _health_monitor(self) -> None:
        """Every poll interval, classify silence since the last transcript entry."""
        logger.info(f"[{self.session_id}] Health monitor started")
        while self._sm.state == SessionState.ACTIVE:
            try:
                await asyncio.sleep(self._cfg.health_poll_seconds)
                if self._sm.state != SessionState.ACTIVE:
                    break
                if self._reconnecting:
                    continue

                prev = self._health.health
                health = self._health.evaluate()
                if health == ConnectionHealth.POOR and prev != ConnectionHealth.POOR:
                    self._notice("warning", "Long silence detected. Please check your connection.", "silence")
                if health != prev:
                    self._emit_status()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.debug(f"[{self.session_id}] Health monitor error: {e}")

        logger.info(f"[{self.session_id}] Health monitor stopped")

    async def _autosave_worker(self) -> None:
        """Unconditional periodic save, independent of transcript activity."""
        while self._sm.state == SessionState.ACTIVE:
            try:
                await asyncio.sleep(self._cfg.autosave_interval_seconds)
                if self._sm.state != SessionState.ACTIVE:
                    break
                self._autosave("interval")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.debug(f"[{self.session_id}] Autosave worker error: {e}")

    # ── Autosave ────────────────────────────────────────────────────────

    def _schedule_debounced_save(self) -> None:
        if self._sm.state != SessionState.ACTIVE:
            return
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = asyncio.get_running_loop().call_later(
            self._cfg.autosave_debounce_seconds, self._autosave, "debounce"
        )

    def _autosave(self, trigger: str) -> None:
        if trigger == "debounce":
            self._debounce_handle = None
        if self._sm.state != SessionState.ACTIVE:
            return
        if self._save_progress():
            logger.info(f"[{self.session_id}] Auto-saved interview progress ({trigger})")

    def _build_snapshot(self, end_reason: Optional[EndReason] = None) -> ProgressSnapshot:
        return ProgressSnapshot(
            session_id=self.session_id,
            user_id=self.user_id,
            transcript=list(self._transcript),
            answered_count=self._answered_count,
            total_questions=self.total_questions,
            remaining_seconds=self._remaining,
            saved_at=self._clock(),
            end_reason=end_reason,
        )

    def _save_progress(self, end_reason: Optional[EndReason] = None) -> bool:
        """Full overwrite of the snapshot. Failures are logged, never raised."""
        if not self._transcript:
            return False
        try:
            self._store.put(self.session_id, self._build_snapshot(end_reason))
        except PersistenceError as e:
            logger.warning(f"[{self.session_id}] Snapshot write failed (continuing): {e}")
            return False
        return True

    def _delete_progress(self) -> None:
        try:
            self._store.delete(self.session_id)
        except PersistenceError as e:
            logger.warning(f"[{self.session_id}] Snapshot delete failed: {e}")

    # ── Finish + finalize ───────────────────────────────────────────────

    def _finish(self, reason: EndReason) -> Optional[asyncio.Task]:
        """
        ACTIVE → FINISHED. Runs at most once per session.

        The transition and teardown happen synchronously; stopping the
        transport and the feedback call run in `_finish_task`, which
        close() cancels.
        """
        if self._sm.state != SessionState.ACTIVE:
            logger.debug(f"[{self.session_id}] finish({reason.value}) ignored in {self._sm.state.value}")
            return None

        self._end_reason = reason
        self._reconnecting = False
        self._sm.transition(SessionState.FINISHED, reason=f"end:{reason.value}")
        self._cancel_timers()
        self._stop_background_workers()
        self._is_speaking = False
        logger.info(
            f"[{self.session_id}] Session finished ({reason.value}) — "
            f"entries={len(self._transcript)}, answered={self._answered_count}, "
            f"remaining={self._remaining}s, health={self._health.diagnostics()}"
        )

        if self._transcript:
            self._save_progress(end_reason=reason)

        self._notice("info", self._end_message(reason), f"ended_{reason.value}")

        self._finish_task = asyncio.get_running_loop().create_task(
            self._wrap_up(), name=f"finish-{self.session_id}"
        )
        return self._finish_task

    async def _wrap_up(self) -> None:
        try:
            # remote ends too: the launcher stays up until stop()
            await self._stop_transport()

            if self._transcript:
                await self._finalize()
            else:
                logger.info(f"[{self.session_id}] No transcript — skipping feedback")
        finally:
            self._finished.set()
            if not self._closed:
                self._emit_status()

    @staticmethod
    async def _wait_for(task: Optional[asyncio.Task]) -> None:
        """Await a finish task without inheriting its cancellation."""
        if task is not None:
            await asyncio.wait([task])

    def _end_message(self, reason: EndReason) -> str:
        if reason == EndReason.TIMEOUT:
            limit = _duration_phrase(self._cfg.duration_seconds).replace(" minutes", "-minute")
            return f"Interview completed ({limit} time limit reached). Generating feedback..."
        if 0 < self._answered_count < self.total_questions:
            return (
                f"Interview ended at question {self._answered_count}/{self.total_questions}. "
                "Generating feedback..."
            )
        return "Interview completed. Generating your personalized feedback..."

    async def _finalize(self) -> None:
        request = FeedbackRequest(
            session_id=self.session_id,
            user_id=self.user_id,
            transcript=list(self._transcript),
            feedback_id=self._feedback_id,
        )
        logger.info(f"[{self.session_id}] Generating feedback for {len(request.transcript)} messages")

        result: Optional[FeedbackResult] = None
        try:
            result = await self._feedback.create_feedback(request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self.session_id}] Error generating feedback: {e}", exc_info=True)

        if result is None or not result.success or not result.feedback_id:
            # Snapshot stays in the store for manual recovery.
            self._notice(
                "error",
                "Feedback generation failed. Your responses were saved locally.",
                "feedback_failed",
            )
            self._fire(self._on_navigate, "/")
            return

        self._delete_progress()
        self._cancel_timers()
        self._feedback_id = result.feedback_id
        handoff = FeedbackHandoff(session_id=self.session_id, feedback_id=result.feedback_id)
        logger.info(f"[{self.session_id}] Feedback ready ({result.feedback_id})")
        self._fire(self._on_feedback_ready, handoff)
        self._fire(self._on_navigate, handoff.path)

    async def _stop_transport(self) -> None:
        if not self._transport_live:
            return
        self._transport_live = False
        try:
            await self._transport.stop()
        except Exception as e:
            logger.warning(f"[{self.session_id}] Transport stop failed: {e}")

    # ── Recovery ────────────────────────────────────────────────────────

    def check_for_recovery(self) -> Optional[RecoveryOffer]:
        """
        Look for an interrupted interview of this user. Returns an offer (and
        marks a decision pending) or None without touching the store.
        """
        if self._sm.state != SessionState.INACTIVE:
            return None
        if self._recovery_in_flight:
            logger.info(f"[{self.session_id}] Recovery already in progress")
            return None
        if self._recovery_offer is not None:
            return self._recovery_offer

        try:
            snapshot = self._store.get(self.session_id)
        except PersistenceError as e:
            logger.error(f"[{self.session_id}] Error loading saved progress: {e}")
            return None
        if snapshot is None:
            return None

        now = self._clock()
        age = snapshot.age(now)
        if age >= self._cfg.recovery_max_age_seconds:
            logger.info(f"[{self.session_id}] Saved progress too old to recover ({age:.0f}s)")
            return None
        if snapshot.user_id != self.user_id:
            logger.warning(f"[{self.session_id}] Saved progress belongs to another user — ignored")
            return None

        self._recovery_offer = RecoveryOffer(
            session_id=self.session_id,
            answered_count=snapshot.answered_count,
            total_questions=snapshot.total_questions,
            entry_count=len(snapshot.transcript),
            saved_at=snapshot.saved_at,
            age_seconds=round(age, 1),
            end_reason=snapshot.end_reason,
        )
        logger.info(
            f"[{self.session_id}] Interrupted interview found "
            f"({snapshot.answered_count}/{snapshot.total_questions}, {age:.0f}s old)"
        )
        self._emit_status()
        return self._recovery_offer

    async def accept_recovery(self) -> Optional[FeedbackHandoff]:
        """Send the saved transcript to feedback. Snapshot is deleted only on success."""
        if self._recovery_in_flight:
            self._notice("warning", "Please wait while we process your recovery request.", "recovery_pending")
            return None
        if self._recovery_offer is None and self.check_for_recovery() is None:
            return None

        try:
            snapshot = self._store.get(self.session_id)
        except PersistenceError as e:
            logger.error(f"[{self.session_id}] Error loading saved progress: {e}")
            self._notice("error", "Failed to recover interview. Please start a new one.", "recovery_failed")
            return None
        if snapshot is None:
            self._recovery_offer = None
            self._notice("error", "Saved interview is no longer available.", "recovery_missing")
            return None

        self._recovery_in_flight = True
        self._recovery_cancel_requested = False
        self._notice("info", "Recovering your previous interview...", "recovering")

        request = FeedbackRequest(
            session_id=self.session_id,
            user_id=self.user_id,
            transcript=snapshot.transcript,
            feedback_id=self._feedback_id,
        )
        call = asyncio.ensure_future(self._recovery.create_feedback(request))
        self._recovery_call = call

        try:
            result = await asyncio.wait_for(call, timeout=self._cfg.recovery_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"[{self.session_id}] Recovery request timed out")
            self._notice("error", "Recovery request timed out. Please try again.", "recovery_timeout")
            return None
        except asyncio.CancelledError:
            if not self._recovery_cancel_requested:
                raise
            logger.info(f"[{self.session_id}] Recovery request cancelled")
            self._notice("warning", "Recovery cancelled. Your saved interview is still available.", "recovery_cancelled")
            return None
        except Exception as e:
            logger.error(f"[{self.session_id}] Recovery error: {e}")
            self._notice("error", "Failed to recover interview. Please start a new one.", "recovery_failed")
            return None
        finally:
            self._recovery_in_flight = False
            self._recovery_call = None
            self._emit_status()

        if not result.success or not result.feedback_id:
            self._notice("error", "Failed to recover interview. Please start a new one.", "recovery_failed")
            return None

        self._delete_progress()
        self._recovery_offer = None
        self._feedback_id = result.feedback_id
        self._notice("success", "Interview recovered! Generating feedback...", "recovered")

        handoff = FeedbackHandoff(
            session_id=self.session_id, feedback_id=result.feedback_id, recovered=True
        )
        self._fire(self._on_feedback_ready, handoff)
        self._fire(self._on_navigate, handoff.path)
        self._emit_status()
        return handoff

    def decline_recovery(self) -> bool:
        """Explicit abandonment: the snapshot is deleted."""
        if self._recovery_in_flight:
            self._notice("warning", "Please wait while we process your recovery request.", "recovery_pending")
            return False
        self._delete_progress()
        self._recovery_offer = None
        logger.info(f"[{self.session_id}] Recovery declined — saved progress cleared")
        self._emit_status()
        return True

    def cancel_recovery(self) -> bool:
        """Abort an in-flight recovery request. The snapshot stays."""
        call = self._recovery_call
        if call is None or call.done():
            return False
        self._recovery_cancel_requested = True
        call.cancel()
        return True

    # ── Teardown ────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Release timers, workers, pending calls and the transport subscription."""
        if self._closed:
            return
        self._closed = True

        self._cancel_timers()
        self._stop_background_workers()

        # Covers a finish task cancelled before it stopped the call. An
        # interrupted session keeps its snapshot for the next load.
        await self._stop_transport()

        if self._recovery_call is not None and not self._recovery_call.done():
            self._recovery_cancel_requested = True
            self._recovery_call.cancel()

        for task in [self._health_task, self._autosave_task, self._finish_task,
                     *self._callback_tasks]:
            if task and not task.done() and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except (asyncio.CancelledError, Exception):
                    pass

        if self._sm.state == SessionState.FINISHED:
            self._finished.set()
        self._resources.close()
        logger.info(f"[{self.session_id}] Orchestrator closed ({self._sm.state.value})")

    # ── Helpers ─────────────────────────────────────────────────────────

    def _on_state_transition(self, prev: SessionState, new: SessionState, reason: str) -> None:
        self._emit_status()

    def _notice(self, level: str, message: str, code: str = "") -> None:
        log = logger.warning if level in ("warning", "error") else logger.info
        log(f"[{self.session_id}] NOTICE ({level}): {message}")
        self._fire(self._on_notice, Notice(level=level, message=message, code=code))

    def _emit_status(self) -> None:
        if self._on_status is not None:
            self._fire(self._on_status, self.view())

    def _fire(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        """Invoke a UI callback; coroutine results are scheduled, errors logged."""
        if callback is None:
            return
        try:
            result = callback(*args)
        except Exception as e:
            logger.error(f"[{self.session_id}] Callback error: {e}")
            return
        if asyncio.iscoroutine(result):
            try:
                task = asyncio.get_running_loop().create_task(result)
            except RuntimeError:
                result.close()  # no running loop
                return
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_tasks.discard)

import asyncio

import pytest

from conftest import FakeFeedbackService, FakeTransport, make_snapshot, settle

from mockprep.core.errors import FeedbackServiceError
from mockprep.core.events import SpeechStarted, TransportErrorKind, TransportFailure
from mockprep.core.models import ConnectionHealth, EndReason
from mockprep.core.state_machine import SessionState


# ── Connect + retry ─────────────────────────────────────────────────────────

async def test_start_reaches_active_and_greets(make_orchestrator, transport, recorder):
    orch = make_orchestrator()
    assert await orch.start_session()

    assert orch.status == SessionState.ACTIVE
    assert orch.retry_count == 0
    assert orch.remaining_seconds == 20
    assert orch.timers is not None and orch.timers.active
    assert "Hello Ada! Interview started. Speak clearly into your microphone." in recorder.messages()
    assert transport.configs[0].formatted_questions.startswith("1. Tell me about yourself.")


async def test_connect_fails_twice_then_succeeds(make_orchestrator, recorder):
    transport = FakeTransport(failures=2)
    orch = make_orchestrator(transport=transport)
    transport.observer = orch

    assert await orch.start_session()

    assert transport.retry_counts_seen == [0, 1, 2]
    assert orch.retry_count == 0
    assert orch.status == SessionState.ACTIVE
    assert "Reconnecting... (1/2)" in recorder.messages()
    assert "Reconnecting... (2/2)" in recorder.messages()


async def test_connect_exhausted_returns_to_inactive(make_orchestrator, store, recorder):
    transport = FakeTransport(failures=3)
    orch = make_orchestrator(transport=transport)

    assert not await orch.start_session()

    assert transport.start_calls == 3
    assert orch.status == SessionState.INACTIVE
    assert orch.timers is None
    assert len(store) == 0
    assert recorder.codes()[-1] == "connect_failed"


async def test_start_twice_is_rejected(make_orchestrator, transport):
    orch = make_orchestrator()
    await orch.start_session()
    assert not await orch.start_session()
    assert transport.start_calls == 1


async def test_call_ended_while_connecting_returns_to_inactive(make_orchestrator):
    transport = FakeTransport(emit_started=False)
    orch = make_orchestrator(transport=transport)
    assert await orch.start_session()
    assert orch.status == SessionState.CONNECTING

    await transport.hang_up()
    assert orch.status == SessionState.INACTIVE


# ── Transcript + autosave ───────────────────────────────────────────────────

async def test_transcript_keeps_arrival_order_with_duplicates(make_orchestrator, transport):
    orch = make_orchestrator()
    await orch.start_session()

    await transport.say("assistant", "Tell me about yourself.")
    await transport.say("user", "I build things.")
    await transport.say("user", "I build things.")
    await transport.say("user", "partial", is_final=False)
    await transport.say("assistant", "Why this role?")

    assert [(e.role, e.content) for e in orch.transcript] == [
        ("assistant", "Tell me about yourself."),
        ("user", "I build things."),
        ("user", "I build things."),
        ("assistant", "Why this role?"),
    ]
    assert orch.answered_count == 2
    assert orch.view().last_entry["content"] == "Why this role?"


async def test_assistant_entry_triggers_debounced_save(make_orchestrator, transport, store):
    orch = make_orchestrator()
    await orch.start_session()

    await transport.say("user", "hello")
    await settle()
    assert store.get("iv-1") is None

    await transport.say("assistant", "Tell me about yourself.")
    await settle()
    snap = store.get("iv-1")
    assert snap is not None
    assert snap.user_id == "user-1"
    assert len(snap.transcript) == 2
    assert snap.answered_count == 1
    assert snap.total_questions == 3
    assert snap.end_reason is None


async def test_interval_save_writes_latest_transcript(make_orchestrator, transport, store):
    orch = make_orchestrator(config_overrides={
        "autosave_interval_seconds": 0.02, "duration_seconds": 1000,
    })
    await orch.start_session()
    await transport.say("user", "still thinking")
    await settle(0.08)
    assert len(store.get("iv-1").transcript) == 1

    # user entries never trigger the debounced save
    await transport.say("user", "okay, so")
    await transport.say("user", "here is my answer")
    await settle(0.08)

    snap = store.get("iv-1")
    assert [(e.role, e.content) for e in snap.transcript] == [
        (e.role, e.content) for e in orch.transcript
    ]
    assert len(snap.transcript) == 3


async def test_status_view_reports_progress(make_orchestrator, transport, recorder):
    orch = make_orchestrator()
    await orch.start_session()
    await transport.events.emit(SpeechStarted(role="assistant"))

    view = orch.view()
    assert view.status == "active"
    assert view.is_speaking
    assert view.total_questions == 3
    assert view.remaining_clock == "00:20"
    assert view.to_dict()["connection_health"] == "good"
    assert recorder.views
    assert recorder.notices[0].to_dict()["level"] == "success"


# ── Timeout ─────────────────────────────────────────────────────────────────

async def test_three_answers_then_timeout_finishes_once(make_orchestrator, transport, feedback, store, recorder):
    orch = make_orchestrator()
    await orch.start_session()
    for q in ("Q1", "Q2", "Q3"):
        await transport.say("assistant", q)
        await transport.say("user", f"answer to {q}")

    await orch.wait_finished(timeout=2)
    await settle()

    assert orch.status == SessionState.FINISHED
    assert orch.end_reason == EndReason.TIMEOUT
    assert orch.remaining_seconds == 0
    assert orch.warning_shown
    assert feedback.calls == 1
    assert [e.content for e in feedback.requests[0].transcript][:2] == ["Q1", "answer to Q1"]
    assert transport.stop_calls == 1
    assert store.get("iv-1") is None
    assert orch.feedback_id == "fb-1"
    assert recorder.paths == ["/interview/iv-1/feedback"]
    assert recorder.codes().count("ended_timeout") == 1
    assert "Interview completed (20 seconds time limit reached). Generating feedback..." in recorder.messages()

    active = [v.remaining_seconds for v in recorder.views if v.status == "active"]
    assert active == sorted(active, reverse=True)

    # late events after the terminal transition are ignored
    await orch.end_session()
    await transport.hang_up()
    assert feedback.calls == 1


async def test_warning_message_in_minutes(make_orchestrator, recorder):
    orch = make_orchestrator(config_overrides={
        "duration_seconds": 180, "warning_lead_seconds": 120, "tick_seconds": 0.001,
    })
    await orch.start_session()
    await settle(0.1)
    assert "2 minutes remaining! Please wrap up your responses." in recorder.messages()


async def test_timeout_without_transcript_skips_feedback(make_orchestrator, feedback):
    orch = make_orchestrator()
    await orch.start_session()
    await orch.wait_finished(timeout=2)
    assert orch.end_reason == EndReason.TIMEOUT
    assert feedback.calls == 0


# ── Ending ──────────────────────────────────────────────────────────────────

async def test_user_end_mid_interview(make_orchestrator, transport, feedback, recorder):
    orch = make_orchestrator()
    await orch.start_session()
    await transport.say("assistant", "Tell me about yourself.")
    await transport.say("user", "Sure.")

    await orch.end_session()

    assert orch.status == SessionState.FINISHED
    assert orch.end_reason == EndReason.USER
    assert orch.timers is None
    assert transport.stop_calls == 1
    assert feedback.calls == 1
    assert "Interview ended at question 1/3. Generating feedback..." in recorder.messages()
    assert recorder.handoffs[0].feedback_id == "fb-1"


async def test_duplicate_remote_end_is_noop(make_orchestrator, transport, feedback):
    orch = make_orchestrator()
    await orch.start_session()
    await transport.say("assistant", "Q1")

    await transport.hang_up()
    await transport.hang_up()
    await orch.wait_finished(timeout=1)

    assert orch.end_reason == EndReason.REMOTE
    assert feedback.calls == 1
    assert transport.stop_calls == 1


async def test_remote_end_then_close_stops_transport_once(make_orchestrator, transport):
    orch = make_orchestrator()
    await orch.start_session()
    await transport.say("assistant", "Q1")

    await transport.hang_up()
    await orch.close()

    assert orch.status == SessionState.FINISHED
    assert transport.stop_calls == 1


async def test_close_cancels_feedback_after_remote_end(make_orchestrator, transport, store, recorder):
    held = FakeFeedbackService(hold=True)
    orch = make_orchestrator(feedback_service=held)
    await orch.start_session()
    await transport.say("assistant", "Q1")
    await transport.say("user", "A1")

    # dispatch returns while the feedback call is still pending
    await transport.hang_up()
    await asyncio.wait_for(held.started.wait(), timeout=1)

    await orch.close()
    held.release.set()
    await settle()

    assert recorder.handoffs == []
    assert recorder.paths == []
    assert orch.feedback_id is None
    assert store.get("iv-1").end_reason == EndReason.REMOTE
    assert transport.stop_calls == 1
    await orch.wait_finished(timeout=1)


async def test_finalize_failure_keeps_snapshot(make_orchestrator, transport, store, recorder):
    failing = FakeFeedbackService(error=FeedbackServiceError("LLM down"))
    orch = make_orchestrator(feedback_service=failing)
    await orch.start_session()
    await transport.say("assistant", "Q1")
    await transport.say("user", "A1")

    await orch.end_session()

    snap = store.get("iv-1")
    assert snap is not None
    assert snap.end_reason == EndReason.USER
    assert len(snap.transcript) == 2
    assert orch.feedback_id is None
    assert recorder.paths == ["/"]
    assert "feedback_failed" in recorder.codes()


async def test_unsuccessful_result_is_a_failure(make_orchestrator, transport, store):
    orch = make_orchestrator(feedback_service=FakeFeedbackService(success=False))
    await orch.start_session()
    await transport.say("assistant", "Q1")
    await orch.end_session()
    assert store.get("iv-1") is not None


async def test_timeout_during_finalize_is_noop(make_orchestrator, transport):
    slow = FakeFeedbackService(hold=True)
    orch = make_orchestrator(feedback_service=slow)
    await orch.start_session()
    await transport.say("assistant", "Q1")

    end = asyncio.create_task(orch.end_session())
    await slow.started.wait()
    await settle(0.3)  # past the hard timeout
    slow.release.set()
    await end

    assert orch.end_reason == EndReason.USER
    assert slow.calls == 1


# ── Health + transport errors ───────────────────────────────────────────────

async def test_silence_degrades_health_and_enables_reconnect(make_orchestrator, clock, recorder):
    orch = make_orchestrator(config_overrides={"health_poll_seconds": 0.01, "duration_seconds": 1000})
    await orch.start_session()
    assert not orch.can_reconnect

    clock.advance(50)
    await settle()

    assert orch.connection_health == ConnectionHealth.POOR
    assert orch.can_reconnect
    assert orch.status == SessionState.ACTIVE
    assert recorder.codes().count("silence") == 1


async def test_transport_error_is_advisory(make_orchestrator, transport, recorder):
    orch = make_orchestrator()
    await orch.start_session()
    await transport.events.emit(TransportFailure(TransportErrorKind.AUDIO, "audio track failed"))

    assert orch.status == SessionState.ACTIVE
    assert orch.connection_health == ConnectionHealth.POOR
    assert recorder.notices[-1].level == "error"
    assert "microphone" in recorder.notices[-1].message.lower()


# ── Reconnect ───────────────────────────────────────────────────────────────

async def test_reconnect_keeps_session_and_remaining_budget(make_orchestrator, store):
    transport = FakeTransport(end_on_stop=True)
    orch = make_orchestrator(transport=transport, config_overrides={"duration_seconds": 1000})
    await orch.start_session()
    await transport.say("assistant", "Q1")
    await settle()
    before = orch.remaining_seconds

    assert await orch.reconnect()

    assert orch.status == SessionState.ACTIVE
    assert transport.start_calls == 2
    assert transport.stop_calls == 1
    assert orch.remaining_seconds <= before
    assert orch.timers is not None and orch.timers.active
    assert [e.content for e in orch.transcript] == ["Q1"]


async def test_reconnect_failure_finishes_remote(make_orchestrator, feedback):
    transport = FakeTransport()
    orch = make_orchestrator(transport=transport)
    await orch.start_session()
    await transport.say("assistant", "Q1")

    transport.failures = 3
    assert not await orch.reconnect()

    assert orch.status == SessionState.FINISHED
    assert orch.end_reason == EndReason.REMOTE
    assert feedback.calls == 1


async def test_reconnect_only_when_active(make_orchestrator, transport):
    orch = make_orchestrator()
    assert not await orch.reconnect()
    assert transport.start_calls == 0


# ── Recovery ────────────────────────────────────────────────────────────────

async def test_recovery_accept_sends_saved_transcript(make_orchestrator, store, clock, recorder):
    recovery = FakeFeedbackService(feedback_id="fb-rec")
    store.put("iv-1", make_snapshot(saved_at=clock() - 600))
    orch = make_orchestrator(recovery_service=recovery)

    offer = orch.check_for_recovery()
    assert offer is not None
    assert offer.answered_count == 2 and offer.total_questions == 5
    assert "2/5 questions completed" in offer.prompt
    assert offer.to_dict()["entry_count"] == 3
    assert orch.recovery_pending

    handoff = await orch.accept_recovery()

    assert handoff is not None and handoff.recovered
    assert handoff.feedback_id == "fb-rec"
    assert [e.content for e in recovery.requests[0].transcript] == ["line 0", "line 1", "line 2"]
    assert store.get("iv-1") is None
    assert not orch.recovery_pending
    assert recorder.paths == ["/interview/iv-1/feedback"]


@pytest.mark.parametrize("age, owner", [(1800, "user-1"), (3600, "user-1"), (60, "someone-else")])
async def test_recovery_noop_when_stale_or_foreign(make_orchestrator, store, clock, age, owner):
    store.put("iv-1", make_snapshot(user_id=owner, saved_at=clock() - age))
    orch = make_orchestrator()

    assert orch.check_for_recovery() is None
    assert await orch.accept_recovery() is None
    assert store.get("iv-1") is not None
    assert not orch.recovery_pending


async def test_recovery_decline_deletes_snapshot(make_orchestrator, store, clock):
    store.put("iv-1", make_snapshot(saved_at=clock() - 60))
    orch = make_orchestrator()
    assert orch.check_for_recovery() is not None

    assert orch.decline_recovery()
    assert store.get("iv-1") is None
    assert await orch.start_session()


async def test_pending_offer_blocks_start(make_orchestrator, store, clock, transport, recorder):
    store.put("iv-1", make_snapshot(saved_at=clock() - 60))
    orch = make_orchestrator()
    orch.check_for_recovery()

    assert not await orch.start_session()
    assert transport.start_calls == 0
    assert "recovery_pending" in recorder.codes()


async def test_recovery_timeout_keeps_offer(make_orchestrator, store, clock, recorder):
    stuck = FakeFeedbackService(hold=True)
    store.put("iv-1", make_snapshot(saved_at=clock() - 60))
    orch = make_orchestrator(recovery_service=stuck, config_overrides={"recovery_timeout_seconds": 0.05})
    orch.check_for_recovery()

    assert await orch.accept_recovery() is None

    assert "recovery_timeout" in recorder.codes()
    assert store.get("iv-1") is not None
    assert orch.recovery_pending


async def test_recovery_failure_keeps_snapshot(make_orchestrator, store, clock, recorder):
    broken = FakeFeedbackService(error=FeedbackServiceError("HTTP 500"))
    store.put("iv-1", make_snapshot(saved_at=clock() - 60))
    orch = make_orchestrator(recovery_service=broken)
    orch.check_for_recovery()

    assert await orch.accept_recovery() is None
    assert store.get("iv-1") is not None
    assert "recovery_failed" in recorder.codes()


async def test_recovery_cancel_and_single_flight(make_orchestrator, store, clock, recorder):
    stuck = FakeFeedbackService(hold=True)
    store.put("iv-1", make_snapshot(saved_at=clock() - 60))
    orch = make_orchestrator(recovery_service=stuck)
    orch.check_for_recovery()

    first = asyncio.create_task(orch.accept_recovery())
    await stuck.started.wait()

    assert await orch.accept_recovery() is None
    assert orch.check_for_recovery() is None
    assert not orch.decline_recovery()
    assert stuck.calls == 1

    assert orch.cancel_recovery()
    assert await first is None
    assert "recovery_cancelled" in recorder.codes()
    assert store.get("iv-1") is not None
    assert not orch.cancel_recovery()


# ── Teardown ────────────────────────────────────────────────────────────────

async def test_close_releases_everything(make_orchestrator, transport, store):
    orch = make_orchestrator()
    await orch.start_session()
    await transport.say("assistant", "Q1")
    await settle()
    assert transport.events.handler_count == 1

    await orch.close()
    await orch.close()

    assert transport.events.handler_count == 0
    assert transport.stop_calls == 1
    assert orch.timers is None
    # interrupted session stays recoverable
    assert store.get("iv-1") is not None

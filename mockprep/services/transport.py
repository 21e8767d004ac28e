"""
MockPrep — Voice Transport Adapters

================================================================================
THE INTERVIEWER ON THE OTHER END OF THE CALL
================================================================================

Both adapters satisfy the TransportAdapter protocol: `start(config)`,
`stop()`, and a typed `events` source the orchestrator subscribes to.

  VisionAgentTransport — a Vision Agents interviewer that joins a Stream
      call as a participant (Gemini Realtime for listening + reasoning,
      ElevenLabs for the voice). SDK transcription events are mapped onto
      TranscriptReceived; join/finish onto CallStarted/CallEnded; SDK
      errors are classified into TransportFailure.

  ScriptedTransport — fallback when SDK keys are missing. Plays back a
      canned interview over the question plan so the whole flow (timers,
      autosave, feedback) can be exercised without a live call.
================================================================================
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Sequence, Tuple

from ..core.config import sdk_cfg, transport_cfg
from ..core.errors import ConnectError, TransportRuntimeError
from ..core.events import (
    CallEnded,
    CallStarted,
    EventSource,
    SpeechEnded,
    SpeechStarted,
    TranscriptReceived,
    TransportFailure,
    classify_error,
)
from ..core.models import TransportSessionConfig

logger = logging.getLogger("mockprep.transport")

INTERVIEWER_FIRST_MESSAGE = (
    "Hello! Thank you for taking the time to speak with me today. "
    "I'm excited to learn more about your background and experience."
)

INTERVIEWER_INSTRUCTIONS = """You are a professional job interviewer conducting real-time voice interviews for ANY job field. Your goal is to assess qualifications, experience, and fit for the specific role.

Interview Guidelines:
Follow the structured question flow:
{questions}

Engage naturally & react appropriately:
- Listen actively and acknowledge responses before moving forward
- Ask brief follow-up questions when responses need more detail
- Keep conversation flowing smoothly while maintaining control
- Adapt to ANY job field (business, creative, technical, professional, etc.)

Be professional, yet warm and welcoming:
- Use official yet friendly language
- Keep responses concise like real conversation
- Avoid robotic phrasing and sound natural

Conclude properly:
- Thank the candidate for their time
- Inform them about next steps in the process
- End on a positive, professional note"""


def build_instructions(config: TransportSessionConfig) -> str:
    questions = config.formatted_questions or "1. Tell me about yourself."
    return INTERVIEWER_INSTRUCTIONS.format(questions=questions)


# SDK event types (imported lazily at runtime)
_sdk_event_types_loaded = False
_RealtimeUserSpeechTranscriptionEvent = None
_RealtimeAgentSpeechTranscriptionEvent = None


def _load_sdk_event_types() -> None:
    """Lazy-load SDK event types to avoid import errors."""
    global _sdk_event_types_loaded
    global _RealtimeUserSpeechTranscriptionEvent
    global _RealtimeAgentSpeechTranscriptionEvent

    if _sdk_event_types_loaded:
        return

    from vision_agents.core.llm.events import (
        RealtimeAgentSpeechTranscriptionEvent,
        RealtimeUserSpeechTranscriptionEvent,
    )
    _RealtimeUserSpeechTranscriptionEvent = RealtimeUserSpeechTranscriptionEvent
    _RealtimeAgentSpeechTranscriptionEvent = RealtimeAgentSpeechTranscriptionEvent
    _sdk_event_types_loaded = True


# ═══════════════════════════════════════════════════════════════════════════
# Vision Agents interviewer
# ═══════════════════════════════════════════════════════════════════════════

class VisionAgentTransport:
    """
    One interviewer agent per session; `start` may be called again after
    `stop` (reconnect).

    Lifecycle:
        transport = VisionAgentTransport()
        transport.events.subscribe(handler)
        await transport.start(TransportSessionConfig(session_id, user_name, questions))
        ...
        await transport.stop()
    """

    def __init__(self, call_type: str = transport_cfg.call_type) -> None:
        self._call_type = call_type
        self._events = EventSource("vision-agent")
        self._session_id = ""
        self._launcher: Any = None
        self._agent_session: Any = None
        self._agent: Any = None
        self._join_ready = asyncio.Event()
        self._join_error: Optional[str] = None
        self._stopping = False

    @property
    def events(self) -> EventSource:
        return self._events

    @property
    def is_live(self) -> bool:
        return self._agent is not None and not self._stopping

    # ── Start: create Agent, join call ──────────────────────────────────

    async def start(self, config: TransportSessionConfig) -> None:
        """Boot the interviewer agent and join the call. Raises ConnectError."""
        self._session_id = config.session_id
        self._join_ready = asyncio.Event()
        self._join_error = None
        self._stopping = False

        try:
            from vision_agents.core import Agent, User
            from vision_agents.core.agents import AgentLauncher
            from vision_agents.plugins import elevenlabs, gemini, getstream

            _load_sdk_event_types()
        except ImportError as e:
            logger.warning(f"[{self._session_id}] SDK import failed: {e}")
            raise ConnectError(f"Voice SDK unavailable: {e}") from e

        instructions = build_instructions(config)

        # ── Agent factory ───────────────────────────────────────────────
        async def create_agent(**kwargs: Any) -> Agent:
            return Agent(
                edge=getstream.Edge(),
                agent_user=User(
                    name=transport_cfg.agent_name,
                    id=f"mockprep-{config.session_id[:8]}",
                ),
                instructions=instructions,
                llm=gemini.Realtime(),
                tts=elevenlabs.TTS(model_id=transport_cfg.tts_model_id),
            )

        # ── Join call handler ───────────────────────────────────────────
        async def join_call(agent: Agent, call_type: str, call_id: str, **kwargs: Any) -> None:
            try:
                await agent.create_user()
                call = await agent.create_call(call_type, call_id)

                logger.info(f"[{self._session_id}] Agent joining call {call_id}...")

                async with agent.join(call, participant_wait_timeout=0):
                    logger.info(f"[{self._session_id}] Agent joined call {call_id}")
                    self._agent = agent
                    agent.subscribe(self._on_sdk_event)
                    self._join_ready.set()

                    await self._say(INTERVIEWER_FIRST_MESSAGE)
                    await agent.finish()  # Block until call ends
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if not self._join_ready.is_set():
                    self._join_error = str(exc)
                    self._join_ready.set()
                    raise
                logger.error(f"[{self._session_id}] Agent call error: {exc}")
                await self._events.emit(TransportFailure.from_exception(exc))
            finally:
                self._agent = None

            if not self._stopping:
                await self._events.emit(CallEnded(reason="agent_finished"))

        # ── Launch ──────────────────────────────────────────────────────
        try:
            self._launcher = AgentLauncher(
                create_agent=create_agent,
                join_call=join_call,
                agent_idle_timeout=transport_cfg.agent_idle_timeout_seconds,
            )
            await self._launcher.start()
            self._agent_session = await self._launcher.start_session(
                call_id=config.session_id,
                call_type=self._call_type,
            )
            await asyncio.wait_for(
                self._join_ready.wait(), timeout=transport_cfg.join_timeout_seconds
            )
        except asyncio.TimeoutError as e:
            await self._teardown()
            raise ConnectError("Agent join timed out") from e
        except Exception as e:
            logger.error(f"[{self._session_id}] Transport start failed: {e}", exc_info=True)
            await self._teardown()
            raise ConnectError(str(e)[:200]) from e

        if self._join_error:
            await self._teardown()
            raise ConnectError(self._join_error)

        logger.info(f"[{self._session_id}] Interviewer live in call '{config.session_id}'")
        await self._events.emit(CallStarted())

    async def _say(self, text: str) -> None:
        if not self._agent:
            return
        await self._events.emit(SpeechStarted(role="assistant"))
        try:
            await self._agent.say(text)
        except Exception as e:
            logger.error(f"[{self._session_id}] Agent say failed: {e}")
            await self._events.emit(TransportFailure.from_exception(e))
        finally:
            await self._events.emit(SpeechEnded(role="assistant"))

    # ── SDK Event Handler ───────────────────────────────────────────────

    async def _on_sdk_event(self, event: Any) -> None:
        """Map Agent event-bus events onto the typed transport events."""
        try:
            if _RealtimeUserSpeechTranscriptionEvent and isinstance(
                event, _RealtimeUserSpeechTranscriptionEvent
            ):
                text = getattr(event, "text", "").strip()
                if text:
                    logger.info(f"[{self._session_id}] User speech: {text[:80]}")
                    await self._events.emit(TranscriptReceived(role="user", text=text))

            elif _RealtimeAgentSpeechTranscriptionEvent and isinstance(
                event, _RealtimeAgentSpeechTranscriptionEvent
            ):
                text = getattr(event, "text", "").strip()
                if text:
                    logger.info(f"[{self._session_id}] Agent speech: {text[:80]}")
                    await self._events.emit(SpeechStarted(role="assistant"))
                    await self._events.emit(TranscriptReceived(role="assistant", text=text))
                    await self._events.emit(SpeechEnded(role="assistant"))

            else:
                event_type = getattr(event, "type", type(event).__name__)
                error = getattr(event, "error", None)
                if error is not None or "error" in str(event_type).lower():
                    message = str(error or getattr(event, "message", event_type))
                    await self._events.emit(TransportFailure.from_exception(
                        TransportRuntimeError(message, kind=classify_error(message).value)
                    ))

        except Exception as e:
            logger.debug(f"[{self._session_id}] SDK event handler error: {e}")

    # ── Stop: tear down agent ───────────────────────────────────────────

    async def stop(self) -> None:
        """Hang up. Safe to call when no call is live."""
        self._stopping = True
        await self._teardown()
        logger.info(f"[{self._session_id}] Transport stopped")

    async def _teardown(self) -> None:
        try:
            if self._launcher is not None and self._agent_session is not None:
                await self._launcher.close_session(
                    session_id=self._agent_session.agent.id, wait=True
                )
        except Exception as e:
            logger.debug(f"[{self._session_id}] Agent session close: {e}")

        try:
            if self._launcher is not None:
                await self._launcher.stop()
        except Exception as e:
            logger.debug(f"[{self._session_id}] Launcher stop: {e}")

        self._agent = None
        self._launcher = None
        self._agent_session = None


# ═══════════════════════════════════════════════════════════════════════════
# Scripted interviewer (no keys needed)
# ═══════════════════════════════════════════════════════════════════════════

_CANNED_ANSWERS = (
    "In my last role I owned that area end to end and shipped it with a small team.",
    "I usually start by clarifying the goal, then break the problem into smaller steps.",
    "We disagreed at first, so I set up a short call and we agreed on a trial approach.",
    "I'd say my strongest skill is communicating trade-offs to non-technical people.",
)


class ScriptedTransport:
    """
    Lightweight fallback that plays back a simulated interview.
    No SDK, no Stream call, no API keys needed.
    """

    def __init__(
        self,
        script: Optional[Sequence[Tuple[str, str]]] = None,
        turn_seconds: float = transport_cfg.scripted_turn_seconds,
        end_when_done: bool = True,
    ) -> None:
        self._script = list(script) if script is not None else None
        self._turn_seconds = turn_seconds
        self._end_when_done = end_when_done
        self._events = EventSource("scripted")
        self._session_id = ""
        self._active = False
        self._task: Optional[asyncio.Task] = None

    @property
    def events(self) -> EventSource:
        return self._events

    @property
    def is_live(self) -> bool:
        return self._active

    def build_script(self, config: TransportSessionConfig) -> List[Tuple[str, str]]:
        """Greeting, one question/answer pair per planned question, closing line."""
        questions = config.questions or ["Tell me about yourself."]
        script: List[Tuple[str, str]] = [("assistant", INTERVIEWER_FIRST_MESSAGE)]
        for i, question in enumerate(questions):
            script.append(("assistant", question))
            script.append(("user", _CANNED_ANSWERS[i % len(_CANNED_ANSWERS)]))
        script.append((
            "assistant",
            "Thank you for your time today. We'll be in touch about next steps.",
        ))
        return script

    async def start(self, config: TransportSessionConfig) -> None:
        if self._active:
            return
        self._session_id = config.session_id
        script = self._script if self._script is not None else self.build_script(config)
        self._active = True
        logger.info(f"[{self._session_id}] Scripted interviewer started ({len(script)} turns)")
        await self._events.emit(CallStarted())
        self._task = asyncio.create_task(
            self._script_worker(script), name=f"scripted-{self._session_id}"
        )

    async def stop(self) -> None:
        self._active = False
        task, self._task = self._task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, Exception):
                pass
        logger.info(f"[{self._session_id}] Scripted interviewer stopped")

    async def _script_worker(self, script: List[Tuple[str, str]]) -> None:
        for role, text in script:
            try:
                await asyncio.sleep(self._turn_seconds)
                if not self._active:
                    return
                if role == "assistant":
                    await self._events.emit(SpeechStarted(role="assistant"))
                await self._events.emit(TranscriptReceived(role=role, text=text))
                if role == "assistant":
                    await self._events.emit(SpeechEnded(role="assistant"))
            except asyncio.CancelledError:
                return
            except Exception as e:
                logger.debug(f"[{self._session_id}] Script error: {e}")

        if self._active and self._end_when_done:
            self._active = False
            self._task = None
            await self._events.emit(CallEnded(reason="script_complete"))


def create_transport(scripted: Optional[bool] = None) -> Any:
    """Live interviewer when all SDK keys are set, scripted fallback otherwise."""
    if scripted is None:
        scripted = not sdk_cfg.has_all_keys
    if scripted:
        logger.info("SDK keys missing — using scripted interviewer")
        return ScriptedTransport()
    return VisionAgentTransport()

"""
MockPrep — Session Timer Set

One TimerSet owns the three schedules of an active session:

  countdown — repeating tick, remaining_seconds D → 0 (floored at 0)
  warning   — one-shot at D − W, flips warning_shown
  timeout   — one-shot at D, forces the session to finish

All three are loop.call_later() handles. The orchestrator holds at most one
TimerSet and cancels it before creating another, so two countdowns can
never run for the same session.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger("mockprep.timers")


def progress_percent(budget_seconds: int, remaining_seconds: int) -> float:
    """Share of the time budget used, clamped to [0, 100]."""
    if budget_seconds <= 0:
        return 100.0
    used = (budget_seconds - remaining_seconds) / budget_seconds * 100
    return round(min(100.0, max(0.0, used)), 1)


def format_clock(seconds: int) -> str:
    """MM:SS"""
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


class TimerSet:
    """
    Countdown + warning + hard-timeout for one session.

    `remaining_seconds` may be smaller than the budget when a session
    resumes after a reconnect; the warning is then only scheduled if it
    has not already been shown.
    """

    def __init__(
        self,
        session_id: str,
        budget_seconds: int,
        warning_lead_seconds: int,
        tick_seconds: float = 1.0,
        remaining_seconds: Optional[int] = None,
        warning_shown: bool = False,
        on_tick: Optional[Callable[[int], None]] = None,
        on_warning: Optional[Callable[[int], None]] = None,
        on_timeout: Optional[Callable[[], None]] = None,
    ) -> None:
        self.session_id = session_id
        self.budget_seconds = budget_seconds
        self.warning_lead_seconds = warning_lead_seconds
        self.tick_seconds = tick_seconds
        self._remaining = budget_seconds if remaining_seconds is None else max(0, remaining_seconds)
        self._warning_shown = warning_shown
        self._on_tick = on_tick
        self._on_warning = on_warning
        self._on_timeout = on_timeout

        self.countdown_handle: Optional[asyncio.TimerHandle] = None
        self.warning_handle: Optional[asyncio.TimerHandle] = None
        self.timeout_handle: Optional[asyncio.TimerHandle] = None
        self._started = False
        self._cancelled = False
        self._timed_out = False

    @property
    def remaining_seconds(self) -> int:
        return self._remaining

    @property
    def warning_shown(self) -> bool:
        return self._warning_shown

    @property
    def timed_out(self) -> bool:
        return self._timed_out

    @property
    def active(self) -> bool:
        return self._started and not self._cancelled and not self._timed_out

    # ── Lifecycle ───────────────────────────────────────────────────────

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        loop = asyncio.get_running_loop()

        if self._remaining > 0:
            self.countdown_handle = loop.call_later(self.tick_seconds, self._tick)

        if not self._warning_shown and self.warning_lead_seconds > 0:
            lead = max(0, self._remaining - self.warning_lead_seconds)
            self.warning_handle = loop.call_later(lead * self.tick_seconds, self._warn)

        self.timeout_handle = loop.call_later(
            self._remaining * self.tick_seconds, self._timeout
        )
        logger.info(
            f"[{self.session_id}] Timers started — remaining={self._remaining}s, "
            f"warning_at={self.warning_lead_seconds}s left"
        )

    def cancel(self) -> None:
        """Cancel all three handles. Safe to call repeatedly."""
        if self._cancelled:
            return
        self._cancelled = True
        for handle in (self.countdown_handle, self.warning_handle, self.timeout_handle):
            if handle is not None:
                handle.cancel()
        self.countdown_handle = None
        self.warning_handle = None
        self.timeout_handle = None
        logger.debug(f"[{self.session_id}] Timers cancelled at remaining={self._remaining}s")

    # ── Callbacks (run on the event loop) ───────────────────────────────

    def _tick(self) -> None:
        self.countdown_handle = None
        if self._cancelled or self._timed_out:
            return
        self._remaining = max(0, self._remaining - 1)
        if self._remaining > 0:
            self.countdown_handle = asyncio.get_running_loop().call_later(
                self.tick_seconds, self._tick
            )
        self._notify(self._on_tick, self._remaining)

    def _warn(self) -> None:
        self.warning_handle = None
        if self._cancelled or self._warning_shown:
            return
        self._warning_shown = True
        logger.info(f"[{self.session_id}] Time warning — {self._remaining}s remaining")
        self._notify(self._on_warning, self._remaining)

    def _timeout(self) -> None:
        self.timeout_handle = None
        if self._cancelled or self._timed_out:
            return
        self._timed_out = True
        self._remaining = 0
        for handle in (self.countdown_handle, self.warning_handle):
            if handle is not None:
                handle.cancel()
        self.countdown_handle = None
        self.warning_handle = None
        logger.info(f"[{self.session_id}] Time limit reached")
        self._notify(self._on_tick, 0)
        self._notify(self._on_timeout)

    def _notify(self, callback: Optional[Callable], *args: int) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"[{self.session_id}] Timer callback error: {e}", exc_info=True)

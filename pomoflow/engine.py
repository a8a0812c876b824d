"""Countdown engine: the single owner of "seconds remaining".

The engine decrements once per elapsed whole second, measured against a
monotonic reference timestamp rather than counted from tick callbacks. Tick
sources only prompt the engine to look at the clock; a late or starved tick
source therefore delays the display, never the countdown itself.

Listeners are plain callables registered with ``on_update``, ``on_complete``,
``on_pause`` and ``on_resume``. They run synchronously, in whichever thread
caused the change, while the engine lock is held: signals for one segment are
delivered in the order the state changed. Listeners may call back into the
engine (the lock is re-entrant).
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from pomoflow.models import RunState, SessionKind, TimerSnapshot
from pomoflow.ticker import TickSource, make_tick_source

log = logging.getLogger(__name__)

UpdateListener = Callable[[int], None]
CompleteListener = Callable[[SessionKind], None]
StateListener = Callable[[], None]


class CountdownEngine:
    """Owns ``TimerState``; everything else reads snapshots or listens."""

    def __init__(
        self,
        tick_source: Optional[TickSource] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tick_source = tick_source if tick_source is not None else make_tick_source()
        self._clock = clock
        self._lock = threading.RLock()

        self._seconds_remaining = 0
        self._run_state = RunState.IDLE
        self._kind = SessionKind.FOCUS
        self._reference: Optional[float] = None
        self._generation = 0
        self._has_started = False

        self._update_listeners: list[UpdateListener] = []
        self._complete_listeners: list[CompleteListener] = []
        self._pause_listeners: list[StateListener] = []
        self._resume_listeners: list[StateListener] = []

    # ----- Listeners -----
    def on_update(self, fn: UpdateListener) -> UpdateListener:
        self._update_listeners.append(fn)
        return fn

    def on_complete(self, fn: CompleteListener) -> CompleteListener:
        self._complete_listeners.append(fn)
        return fn

    def on_pause(self, fn: StateListener) -> StateListener:
        self._pause_listeners.append(fn)
        return fn

    def on_resume(self, fn: StateListener) -> StateListener:
        self._resume_listeners.append(fn)
        return fn

    # ----- Read side -----
    @property
    def lock(self) -> threading.RLock:
        """Re-entrant lock guarding timer state.

        Hosts that must make several engine calls atomically hold it too, which
        keeps a single lock order with the listeners that run under it.
        """
        return self._lock

    @property
    def tick_source(self) -> TickSource:
        return self._tick_source

    @property
    def has_started(self) -> bool:
        """True once any segment has been started on this engine."""
        return self._has_started

    def snapshot(self) -> TimerSnapshot:
        with self._lock:
            return TimerSnapshot(
                seconds_remaining=self._seconds_remaining,
                run_state=self._run_state,
                kind=self._kind,
            )

    # ----- Commands -----
    def start(self, initial_seconds: int, kind: SessionKind) -> None:
        """Begin counting down from ``initial_seconds``. No-op if running."""
        with self._lock:
            if self._run_state == RunState.RUNNING:
                log.debug("start() ignored: already running.")
                return
            if initial_seconds <= 0:
                log.debug("start() ignored: nothing to count down.")
                return
            self._seconds_remaining = int(initial_seconds)
            self._kind = SessionKind(kind)
            self._has_started = True
            self._begin_ticking()
            self._emit_update()

    def pause(self) -> None:
        with self._lock:
            if self._run_state != RunState.RUNNING:
                return
            # Settle whole seconds that already elapsed before freezing.
            if self._advance():
                return
            self._stop_ticking()
            self._run_state = RunState.PAUSED
            self._emit(self._pause_listeners)

    def resume(self) -> None:
        with self._lock:
            if self._run_state != RunState.PAUSED or self._seconds_remaining <= 0:
                return
            self._begin_ticking()
            self._emit(self._resume_listeners)

    def reset(self, seconds: int, kind: SessionKind) -> None:
        """Stop unconditionally and load ``seconds`` of ``kind``, idle."""
        with self._lock:
            self._stop_ticking()
            self._seconds_remaining = max(0, int(seconds))
            self._kind = SessionKind(kind)
            self._run_state = RunState.IDLE
            self._emit_update()

    def sync(self) -> None:
        """Apply elapsed time now and reissue the authoritative value."""
        with self._lock:
            if not self._has_started or self._run_state != RunState.RUNNING:
                return
            if self._advance():
                return
            self._emit_update()

    # ----- Internals -----
    def _begin_ticking(self) -> None:
        self._run_state = RunState.RUNNING
        self._reference = self._clock()
        self._generation += 1
        generation = self._generation
        self._tick_source.start(lambda: self._tick(generation))

    def _stop_ticking(self) -> None:
        self._generation += 1
        self._reference = None
        self._tick_source.stop()

    def _tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._run_state != RunState.RUNNING:
                return
            self._advance()

    def _advance(self) -> bool:
        """Consume elapsed whole seconds. Returns True if the segment ended."""
        assert self._reference is not None
        elapsed = int(self._clock() - self._reference)
        if elapsed < 1:
            return False
        self._seconds_remaining -= min(elapsed, self._seconds_remaining)
        # Carry the fractional second over to the next tick.
        self._reference += elapsed
        if elapsed > 1:
            log.debug("Caught up %d seconds in one tick.", elapsed)
        self._emit_update()
        if self._seconds_remaining == 0:
            self._stop_ticking()
            self._run_state = RunState.IDLE
            log.debug("%s segment complete.", self._kind.value)
            self._emit(self._complete_listeners, self._kind)
            return True
        return False

    def _emit_update(self) -> None:
        self._emit(self._update_listeners, self._seconds_remaining)

    def _emit(self, listeners: list, *args: object) -> None:
        for fn in list(listeners):
            try:
                fn(*args)
            except Exception:
                log.exception("Timer listener %r failed.", fn)

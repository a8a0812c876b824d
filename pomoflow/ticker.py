"""Tick sources that drive the countdown engine.

A tick source only says "look at the clock now". It never carries time itself:
the engine measures elapsed seconds against a monotonic reference, so a source
that fires late, early, or in a burst cannot skew the countdown.

Exactly one source is active per engine. ``ThreadTickSource`` is preferred
because its ticks keep arriving while the host loop is busy or blocked;
``PollingTickSource`` is the fallback where the host loop calls :meth:`pump`.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Protocol

from pomoflow.models import TickSourceKind

log = logging.getLogger(__name__)

TICK_INTERVAL = 0.25  # seconds between clock checks

TickCallback = Callable[[], None]


class TickSource(Protocol):
    """Something that calls a callback repeatedly until stopped."""

    @property
    def active(self) -> bool: ...

    def start(self, callback: TickCallback) -> None: ...

    def stop(self) -> None: ...


class PollingTickSource:
    """Fires the callback whenever the host calls :meth:`pump`."""

    def __init__(self) -> None:
        self._callback: Optional[TickCallback] = None

    @property
    def active(self) -> bool:
        return self._callback is not None

    def start(self, callback: TickCallback) -> None:
        self._callback = callback

    def stop(self) -> None:
        self._callback = None

    def pump(self) -> None:
        callback = self._callback
        if callback is not None:
            callback()


class ThreadTickSource:
    """Fires the callback from a daemon thread every ``interval`` seconds."""

    def __init__(self, interval: float = TICK_INTERVAL) -> None:
        self.interval = interval
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    @property
    def active(self) -> bool:
        return self._stop_event is not None

    def start(self, callback: TickCallback) -> None:
        self.stop()
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._run,
            args=(callback, stop_event),
            name="pomoflow-tick",
            daemon=True,
        )
        self._stop_event = stop_event
        self._thread = thread
        thread.start()

    def stop(self) -> None:
        # No join: the caller may be the tick thread itself, or hold a lock the
        # tick thread is waiting on. A tick already in flight is discarded by
        # the engine's generation check.
        if self._stop_event is not None:
            self._stop_event.set()
        self._stop_event = None
        self._thread = None

    def _run(self, callback: TickCallback, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval):
            try:
                callback()
            except Exception:
                log.exception("Tick callback failed.")


def make_tick_source(kind: TickSourceKind = TickSourceKind.THREAD) -> TickSource:
    """Build the preferred tick source, falling back to polling."""
    if kind == TickSourceKind.POLL:
        return PollingTickSource()
    try:
        source = ThreadTickSource()
        # Check that the runtime can actually spawn threads.
        trial = threading.Thread(target=lambda: None, daemon=True)
        trial.start()
        trial.join()
        return source
    except RuntimeError:
        log.warning("Background ticking unavailable; falling back to polling.")
        return PollingTickSource()

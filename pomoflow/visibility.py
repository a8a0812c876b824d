"""Foreground/background reconciliation for the countdown engine.

In a terminal the host is "backgrounded" by job control: Ctrl-Z (SIGTSTP)
suspends the process and ``fg`` (SIGCONT) brings it back. While suspended no
tick fires at all, so on return the engine is asked to settle elapsed time and
reissue its authoritative value.
"""

from __future__ import annotations

import logging
import os
import signal
import time
from typing import Callable, Optional

from pomoflow.engine import CountdownEngine

log = logging.getLogger(__name__)

GAP_LOG_THRESHOLD = 5.0  # seconds


class VisibilityReconciler:
    """Triggers an engine re-read when the host returns to the foreground."""

    def __init__(
        self, engine: CountdownEngine, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.engine = engine
        self._clock = clock
        self._visible = True
        self._hidden_since: Optional[float] = None
        self._foreground_pending = False

    @property
    def visible(self) -> bool:
        return self._visible

    def on_background(self) -> None:
        self._visible = False
        self._hidden_since = self._clock()

    def on_foreground(self) -> None:
        hidden_since = self._hidden_since
        self._visible = True
        self._hidden_since = None
        self._foreground_pending = False
        if not self.engine.has_started:
            return
        if hidden_since is not None:
            gap = self._clock() - hidden_since
            if gap > GAP_LOG_THRESHOLD:
                log.info("Host was in the background for %.1fs; syncing timer.", gap)
        self.engine.sync()

    def request_foreground(self) -> None:
        """Note a return to the foreground without touching the engine.

        Safe to call from a signal handler. The host loop applies it with
        ``reconcile()``.
        """
        self._foreground_pending = True

    def reconcile(self) -> None:
        if self._foreground_pending:
            self.on_foreground()


def install_job_control_hooks(reconciler: VisibilityReconciler) -> Callable[[], None]:
    """Route SIGTSTP/SIGCONT to the reconciler. Returns an uninstall function.

    The SIGCONT handler runs on the main thread, possibly while it holds the
    engine lock, so it only flags the return. Call ``reconciler.reconcile()``
    from the host loop to sync the engine.

    On platforms without job control signals this installs nothing.
    """
    if not (hasattr(signal, "SIGTSTP") and hasattr(signal, "SIGCONT")):
        return lambda: None

    def _on_stop(signum, frame) -> None:
        reconciler.on_background()
        # Let the default handler actually suspend us.
        signal.signal(signal.SIGTSTP, signal.SIG_DFL)
        os.kill(os.getpid(), signal.SIGTSTP)

    def _on_continue(signum, frame) -> None:
        signal.signal(signal.SIGTSTP, _on_stop)
        reconciler.request_foreground()

    previous_stop = signal.signal(signal.SIGTSTP, _on_stop)
    previous_cont = signal.signal(signal.SIGCONT, _on_continue)

    def _uninstall() -> None:
        signal.signal(signal.SIGTSTP, previous_stop)
        signal.signal(signal.SIGCONT, previous_cont)

    return _uninstall

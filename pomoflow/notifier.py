"""Completion notifications: terminal bell, on-screen panel, desktop popup."""

from __future__ import annotations

import logging
import threading

from plyer import notification as plyer_notification  # type: ignore[import-untyped]

from pomoflow import display
from pomoflow.models import SessionKind

log = logging.getLogger(__name__)

APP_NAME = "pomoflow"

MESSAGES: dict[SessionKind, tuple[str, str]] = {
    SessionKind.FOCUS: ("Pomodoro complete!", "Great work! Time for a break."),
    SessionKind.SHORT_BREAK: ("Break complete!", "Ready to get back to work?"),
    SessionKind.LONG_BREAK: (
        "Long break complete!",
        "Refreshed and ready for the next session!",
    ),
}


class NotificationDispatcher:
    """Fires every available channel once per call; failures only degrade."""

    def __init__(
        self,
        sound_enabled: bool = True,
        system_enabled: bool = True,
        timeout: int = 5,
    ) -> None:
        self.sound_enabled = sound_enabled
        self.system_enabled = system_enabled
        self.timeout = timeout

    def notify(self, kind: SessionKind) -> None:
        title, body = MESSAGES.get(kind, MESSAGES[SessionKind.FOCUS])
        if self.sound_enabled:
            self._play_sound()
        self._show_panel(title, body)
        if self.system_enabled:
            self._send_system(title, body)

    def _play_sound(self) -> None:
        # A bell only reaches the user on an interactive terminal.
        if not display.console.is_terminal:
            log.debug("No terminal attached; skipping audible alert.")
            return
        try:
            display.console.print("\a", end="")
        except OSError:
            log.debug("Audible alert failed.", exc_info=True)

    def _show_panel(self, title: str, body: str) -> None:
        try:
            display.print_nudge(f"{title}\n{body}")
        except OSError:
            log.debug("Could not draw completion panel.", exc_info=True)

    def _send_system(self, title: str, body: str) -> None:
        """Send a desktop notification in a non-blocking way."""

        def _do() -> None:
            try:
                plyer_notification.notify(
                    title=title, message=body, app_name=APP_NAME, timeout=self.timeout
                )
            except Exception:
                # plyer raises NotImplementedError or backend errors on
                # platforms without a notification service.
                log.debug("Desktop notification unavailable.", exc_info=True)

        threading.Thread(target=_do, name="pomoflow-notify", daemon=True).start()

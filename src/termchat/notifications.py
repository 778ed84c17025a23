from __future__ import annotations

import shutil
import subprocess
import sys
from typing import TextIO

from loguru import logger


class NotificationError(Exception):
    pass


class Notifier:
    """Desktop notifications for live messages in chats that are not on screen.

    Disabled is a no-op. With the terminal bell enabled a BEL character is
    written instead of raising a desktop notification.
    """

    def __init__(
        self,
        *,
        enabled: bool = False,
        use_terminal_bell: bool = False,
        timeout_seconds: int = 60,
        bell_stream: TextIO | None = None,
    ):
        self._enabled = enabled
        self._use_terminal_bell = use_terminal_bell
        self._timeout_seconds = timeout_seconds
        self._bell_stream = bell_stream if bell_stream is not None else sys.stdout

    @property
    def enabled(self) -> bool:
        return self._enabled

    def notify(self, title: str, body: str) -> None:
        if not self._enabled:
            return
        if self._use_terminal_bell:
            self._bell_stream.write("\a")
            self._bell_stream.flush()
            return

        executable = shutil.which("notify-send")
        if executable is None:
            raise NotificationError("notify-send not found; set UseTerminalBell or disable notifications")
        try:
            subprocess.Popen(
                [executable, "--expire-time", str(self._timeout_seconds * 1000), title, body],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as ex:
            raise NotificationError(f"Desktop notification failed: {ex}") from ex
        logger.debug(f"Notification sent: {title}")

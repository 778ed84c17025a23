from __future__ import annotations

import os
import shlex
import subprocess
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TextIO

from loguru import logger

from termchat.models import Chat, Message, SessionStatus
from termchat.services.chat_formatter import ChatFormatter


class ConsoleUi:
    """Line-oriented renderer for the interactive prompt."""

    def __init__(
        self,
        *,
        line_prefix: str = "chat> ",
        show_command: str = "jp2a --color",
        out: TextIO | None = None,
    ):
        self._line_prefix = line_prefix
        self._formatter = ChatFormatter(line_prefix=line_prefix)
        self._show_command = shlex.split(show_command)
        self._out = out if out is not None else sys.stdout
        self._write_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="termchat-viewer")
        self._chats: dict[str, Chat] = {}
        self._selected_chat_id: str | None = None
        self._last_unread_summary: str | None = None
        self._last_status_line: str | None = None

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def new_message(self, message: Message) -> None:
        self._write(self._formatter.format_message(message))

    def new_screen(self, chat_id: str, messages: list[Message]) -> None:
        self._selected_chat_id = chat_id
        lines = [self._formatter.format_screen_header(self._chats.get(chat_id), chat_id)]
        if not messages:
            lines.append(f"{self._line_prefix}(no messages)")
        lines.extend(self._formatter.format_message(m) for m in messages)
        self._write(*lines)

    def set_chats(self, chats: list[Chat]) -> None:
        self._chats = {chat.id: chat for chat in chats}
        summary = self._formatter.format_unread_summary(chats)
        if summary is not None and summary != self._last_unread_summary:
            self._write(summary)
        self._last_unread_summary = summary

    def show_chats(self, chats: list[Chat]) -> None:
        self._chats = {chat.id: chat for chat in chats}
        if not chats:
            self._write(f"{self._line_prefix}No chats yet.")
            return
        self._write(
            f"{self._line_prefix}Chats:",
            *(
                self._formatter.format_chat_list_entry(chat, selected_chat_id=self._selected_chat_id)
                for chat in chats
            ),
        )

    def print_error(self, error: str | Exception) -> None:
        self._write(f"{self._line_prefix}Error: {error}")

    def print_text(self, text: str) -> None:
        self._write(*(f"{self._line_prefix}{line}" for line in text.splitlines() or [""]))

    def print_file(self, path: str) -> None:
        self._executor.submit(self._run_show_command, path)

    def open_file(self, path: str) -> None:
        self._executor.submit(self._run_opener, path)

    def set_status(self, status: SessionStatus) -> None:
        line = self._formatter.format_status(status)
        if line != self._last_status_line:
            self._last_status_line = line
            self._write(line)

    def get_writer(self) -> TextIO:
        return self._out

    def _write(self, *lines: str) -> None:
        with self._write_lock:
            for line in lines:
                print(line, file=self._out)
            self._out.flush()

    def _run_show_command(self, path: str) -> None:
        if not self._show_command:
            self.print_error("No ShowCommand configured")
            return
        try:
            completed = subprocess.run(
                [*self._show_command, path],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as ex:
            logger.warning(f"Show command failed for {path}: {ex}")
            self.print_error(f"Could not run {self._show_command[0]}: {ex}")
            return
        if completed.returncode != 0:
            self.print_error(completed.stderr.strip() or f"{self._show_command[0]} exited with {completed.returncode}")
            return
        with self._write_lock:
            self._out.write(completed.stdout)
            self._out.flush()

    def _run_opener(self, path: str) -> None:
        try:
            if sys.platform == "win32":
                os.startfile(path)  # type: ignore[attr-defined]
            else:
                opener = "open" if sys.platform == "darwin" else "xdg-open"
                subprocess.Popen(
                    [opener, path],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
        except OSError as ex:
            logger.warning(f"Could not open {path}: {ex}")
            self.print_error(f"Could not open {path}: {ex}")

from __future__ import annotations

from typing import Protocol, TextIO, runtime_checkable

from termchat.models import Chat, Message, SessionStatus


@runtime_checkable
class UiHandler(Protocol):
    """Render surface the session manager drives.

    Every method must return promptly; slow work (external viewers, openers)
    belongs on the UI's own threads.
    """

    def new_message(self, message: Message) -> None: ...

    def new_screen(self, chat_id: str, messages: list[Message]) -> None: ...

    def set_chats(self, chats: list[Chat]) -> None: ...

    def show_chats(self, chats: list[Chat]) -> None: ...

    def print_error(self, error: str | Exception) -> None: ...

    def print_text(self, text: str) -> None: ...

    def print_file(self, path: str) -> None: ...

    def open_file(self, path: str) -> None: ...

    def set_status(self, status: SessionStatus) -> None: ...

    def get_writer(self) -> TextIO: ...

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol, runtime_checkable

from termchat.events import BackendEvent
from termchat.models import Message


class BackendCommandError(Exception):
    """A backend rejected or failed to carry out a command."""


@runtime_checkable
class Backend(Protocol):
    async def start(self, events: asyncio.Queue[BackendEvent]) -> None:
        """Attach the shared event queue. Must not block on the network."""
        ...

    async def stop(self) -> None:
        ...

    async def send_command(self, name: str, params: list[str]) -> None:
        """Carry out a normalized command (connect, disconnect, logout, send, read, backlog).

        Outcomes that change visible state arrive later as events on the queue
        passed to `start`; failures raise `BackendCommandError`.
        """
        ...

    async def download_attachment(self, message: Message, destination: Path) -> None:
        """Fetch the attachment bytes referenced by `message.media` into `destination`."""
        ...


def create_backend(
    backend_name: str,
    *,
    session_path: str,
    pairing_delay_seconds: float = 0.5,
) -> Backend:
    """Factory: create a Backend by name."""
    name = backend_name.strip().lower()
    if name == "loopback":
        from termchat.backends.loopback_backend import LoopbackBackend
        return LoopbackBackend(session_path=session_path, pairing_delay_seconds=pairing_delay_seconds)
    raise ValueError(f"Unknown backend: {backend_name!r}. Supported: 'loopback'")

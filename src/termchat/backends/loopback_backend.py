from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

import httpx
from loguru import logger

from termchat.backend import BackendCommandError
from termchat.backends.media_download import save_media
from termchat.events import (
    BackendEvent,
    BatteryChanged,
    ChatsSnapshot,
    Connected,
    ContactsSnapshot,
    Disconnected,
    MessageReceived,
    PairingCode,
    PairingSucceeded,
)
from termchat.models import CONTACT_SUFFIX, Chat, Contact, Message

ECHO_CONTACT_ID = f"echo{CONTACT_SUFFIX}"


class LoopbackBackend:
    """Offline backend that pairs locally and echoes what it is sent.

    Credentials live in a small JSON blob at `session_path`; logging out deletes
    that file and nothing else.
    """

    def __init__(
        self,
        *,
        session_path: str,
        pairing_delay_seconds: float = 0.5,
        clock: Callable[[], float] = time.time,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._session_path = Path(session_path)
        self._pairing_delay_seconds = max(0.0, pairing_delay_seconds)
        self._clock = clock
        self._transport = transport
        self._events: asyncio.Queue[BackendEvent] | None = None
        self._connected = False
        self._self_id = ""

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def has_credentials(self) -> bool:
        return self._session_path.exists()

    async def start(self, events: asyncio.Queue[BackendEvent]) -> None:
        self._events = events
        logger.debug(f"Loopback backend started (session={self._session_path})")

    async def stop(self) -> None:
        self._connected = False
        self._events = None

    async def send_command(self, name: str, params: list[str]) -> None:
        if self._events is None:
            raise BackendCommandError("Backend is not started")

        if name == "connect":
            await self._connect()
        elif name == "disconnect":
            if self._connected:
                self._connected = False
                self._emit(Disconnected(reason="requested"))
        elif name == "logout":
            self._connected = False
            self._session_path.unlink(missing_ok=True)
            self._self_id = ""
            logger.info(f"Removed loopback credentials at {self._session_path}")
        elif name == "send":
            self._require_connected()
            if len(params) < 2:
                raise BackendCommandError("send requires a chat id and text")
            await self._send_text(params[0], " ".join(params[1:]))
        elif name == "read":
            self._require_connected()
            logger.debug(f"Loopback read receipt for {params[0] if params else '-'}")
        elif name == "backlog":
            self._require_connected()
            # The loopback service keeps no history beyond what was already delivered.
            logger.debug(f"Loopback backlog request for {params[0] if params else '-'}")
        else:
            raise BackendCommandError(f"Unsupported command: {name}")

    async def download_attachment(self, message: Message, destination: Path) -> None:
        if message.media is None or not message.media.link:
            raise BackendCommandError(f"Message {message.id} has no attachment")
        try:
            await save_media(message.media.link, destination, transport=self._transport)
        except (OSError, httpx.HTTPError) as ex:
            raise BackendCommandError(f"Download of {message.id} failed: {ex}") from ex

    async def _connect(self) -> None:
        if self._connected:
            self._emit(Connected())
            return

        credentials = self._load_credentials()
        if credentials is None:
            code = f"loopback:{uuid4().hex}"
            self._emit(PairingCode(code=code))
            await asyncio.sleep(self._pairing_delay_seconds)
            credentials = {
                "device_id": f"{uuid4().hex[:12]}{CONTACT_SUFFIX}",
                "paired_at": datetime.now(UTC).isoformat(timespec="seconds"),
            }
            self._save_credentials(credentials)
            self._emit(PairingSucceeded())

        self._self_id = str(credentials.get("device_id", ""))
        self._connected = True
        self._emit(Connected())
        self._emit(ContactsSnapshot(contacts=(Contact(id=ECHO_CONTACT_ID, name="Echo", short="echo"),)))
        self._emit(ChatsSnapshot(chats=(Chat(id=ECHO_CONTACT_ID, name="Echo", last_message=int(self._clock())),)))
        self._emit(BatteryChanged(charge=100, loading=True, powersave=False))

    async def _send_text(self, chat_id: str, text: str) -> None:
        now = int(self._clock())
        self._emit(
            MessageReceived(
                Message(
                    id=uuid4().hex.upper(),
                    chat_id=chat_id,
                    contact_id=self._self_id,
                    timestamp=now,
                    from_me=True,
                    text=text,
                )
            )
        )
        if chat_id == ECHO_CONTACT_ID:
            self._emit(
                MessageReceived(
                    Message(
                        id=uuid4().hex.upper(),
                        chat_id=chat_id,
                        contact_id=ECHO_CONTACT_ID,
                        contact_name="Echo",
                        contact_short="echo",
                        timestamp=now,
                        text=f"Echo: {text}",
                    )
                )
            )

    def _require_connected(self) -> None:
        if not self._connected:
            raise BackendCommandError("Not connected")

    def _emit(self, event: BackendEvent) -> None:
        if self._events is not None:
            self._events.put_nowait(event)

    def _load_credentials(self) -> dict | None:
        if not self._session_path.exists():
            return None
        try:
            with open(self._session_path) as f:
                parsed = json.load(f)
        except (OSError, json.JSONDecodeError) as ex:
            logger.warning(f"Ignoring unreadable loopback credentials {self._session_path}: {ex}")
            return None
        return parsed if isinstance(parsed, dict) else None

    def _save_credentials(self, credentials: dict) -> None:
        self._session_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._session_path, "w") as f:
            json.dump(credentials, f, ensure_ascii=True)

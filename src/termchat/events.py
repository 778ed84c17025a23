"""Typed events delivered to the session control loop.

Backends emit the connection, message and snapshot events. The session
manager re-injects results of its own background tasks (command completion,
downloads, pairing timeout) through the same queue.
"""

from __future__ import annotations

from dataclasses import dataclass

from termchat.models import Chat, Contact, Message


@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class Disconnected:
    reason: str = ""


@dataclass(frozen=True)
class LoggedOut:
    reason: str = ""


@dataclass(frozen=True)
class PairingCode:
    code: str


@dataclass(frozen=True)
class PairingSucceeded:
    pass


@dataclass(frozen=True)
class PairingFailed:
    reason: str = ""


@dataclass(frozen=True)
class PairingTimedOut:
    attempt: int


@dataclass(frozen=True)
class ConnectFailed:
    error: str


@dataclass(frozen=True)
class BackendError:
    error: str


@dataclass(frozen=True)
class MessageReceived:
    message: Message


@dataclass(frozen=True)
class BatteryChanged:
    charge: int
    loading: bool = False
    powersave: bool = False


@dataclass(frozen=True)
class LastSeenChanged:
    text: str


@dataclass(frozen=True)
class ContactsSnapshot:
    contacts: tuple[Contact, ...]


@dataclass(frozen=True)
class ChatsSnapshot:
    chats: tuple[Chat, ...]


@dataclass(frozen=True)
class CommandCompleted:
    name: str
    params: tuple[str, ...] = ()


@dataclass(frozen=True)
class CommandFailed:
    name: str
    error: str


@dataclass(frozen=True)
class AttachmentDownloaded:
    message_id: str
    path: str
    action: str


BackendEvent = (
    Connected
    | Disconnected
    | LoggedOut
    | PairingCode
    | PairingSucceeded
    | PairingFailed
    | PairingTimedOut
    | ConnectFailed
    | BackendError
    | MessageReceived
    | BatteryChanged
    | LastSeenChanged
    | ContactsSnapshot
    | ChatsSnapshot
    | CommandCompleted
    | CommandFailed
    | AttachmentDownloaded
)

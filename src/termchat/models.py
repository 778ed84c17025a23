from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

# Identifier namespaces used by the messaging service.
CONTACT_SUFFIX = "@s.whatsapp.net"
GROUP_SUFFIX = "@g.us"
STATUS_BROADCAST_ID = "status@broadcast"


def strip_known_suffixes(identifier: str) -> str:
    return identifier.removesuffix(CONTACT_SUFFIX).removesuffix(GROUP_SUFFIX)


def is_group_id(identifier: str) -> bool:
    return identifier.endswith(GROUP_SUFFIX)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTED = "connected"


@dataclass(frozen=True)
class MediaDescriptor:
    """Backend-neutral reference to an attachment.

    `data1`..`data3` carry opaque key/hash material the backend needs to fetch
    and decrypt the attachment bytes later.
    """

    link: str
    mime_type: str = ""
    data1: bytes | None = None
    data2: bytes | None = None
    data3: bytes | None = None


@dataclass(frozen=True)
class Message:
    id: str
    chat_id: str
    contact_id: str = ""
    contact_name: str = ""
    contact_short: str = ""
    timestamp: int = 0
    from_me: bool = False
    forwarded: bool = False
    text: str = ""
    media: MediaDescriptor | None = None


@dataclass(frozen=True)
class Chat:
    id: str
    is_group: bool = False
    name: str = ""
    unread: int = 0
    last_message: int = 0


@dataclass(frozen=True)
class Contact:
    id: str
    name: str = ""
    short: str = ""


@dataclass(frozen=True)
class SessionStatus:
    connected: bool = False
    battery_charge: int = 0
    battery_loading: bool = False
    battery_powersave: bool = False
    last_seen: str = ""
    state: ConnectionState = ConnectionState.DISCONNECTED


@dataclass(frozen=True)
class Command:
    name: str
    params: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def of(cls, name: str, *params: str) -> Command:
        return cls(name=name, params=tuple(params))

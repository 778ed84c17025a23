from __future__ import annotations

import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger

from termchat.models import Chat, Contact, MediaDescriptor, Message, is_group_id, strip_known_suffixes

DB_VERSION = 1

_MESSAGE_COLUMNS = (
    "id, chat_id, contact_id, contact_name, contact_short, timestamp, from_me, forwarded, text, "
    "media_link, media_type, media_data1, media_data2, media_data3"
)

_MEDIA_BLOB_COLUMNS = ("media_data1", "media_data2", "media_data3")


class StoreError(Exception):
    """Raised when the backing database fails; lookups that miss never raise."""


class MessageStore:
    """Deduplicating store for messages, chats and contacts.

    Every public method takes the same lock, so readers on other threads never
    observe a half-applied insert (message row plus chat/contact derivation).
    """

    def __init__(self, db_path: str):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._initialize_schema()
        self._update_database_version()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- writes ---------------------------------------------------------

    def insert(self, message: Message) -> bool:
        """Store a message; returns False if its id was already present."""
        contact_name = message.contact_name
        contact_short = message.contact_short
        with self._lock:
            try:
                if message.from_me:
                    contact_name = contact_name or "Me"
                    contact_short = contact_short or "Me"
                else:
                    contact_name = contact_name or self._resolve_display_name(message.contact_id)
                    contact_short = contact_short or self._resolve_short_name(message.contact_id)
                media = message.media
                cursor = self._conn.execute(
                    f"""
                    INSERT INTO messages ({_MESSAGE_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    (
                        message.id,
                        message.chat_id,
                        message.contact_id,
                        contact_name,
                        contact_short,
                        int(message.timestamp),
                        1 if message.from_me else 0,
                        1 if message.forwarded else 0,
                        message.text,
                        media.link if media else "",
                        media.mime_type if media else "",
                        media.data1 if media else None,
                        media.data2 if media else None,
                        media.data3 if media else None,
                    ),
                )
                is_new = cursor.rowcount == 1
                if is_new:
                    self._advance_chat(message.chat_id, int(message.timestamp))
                    self._backfill_contact(message)
                self._conn.commit()
            except sqlite3.Error as ex:
                self._conn.rollback()
                raise StoreError(f"Failed to store message {message.id}: {ex}") from ex
        if not is_new:
            logger.debug(f"Duplicate message ignored: {message.id}")
        return is_new

    def upsert_chat(self, chat: Chat) -> None:
        with self._lock:
            self._write(
                """
                INSERT INTO chats (id, is_group, name, unread, last_message)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    is_group = excluded.is_group,
                    name = CASE WHEN excluded.name != '' THEN excluded.name ELSE chats.name END,
                    unread = excluded.unread,
                    last_message = MAX(chats.last_message, excluded.last_message)
                """,
                (chat.id, 1 if chat.is_group else 0, chat.name, max(0, chat.unread), int(chat.last_message)),
                what=f"chat {chat.id}",
            )

    def upsert_contact(self, contact: Contact) -> None:
        with self._lock:
            self._write(
                """
                INSERT INTO contacts (id, name, short)
                VALUES (?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    name = CASE WHEN excluded.name != '' THEN excluded.name ELSE contacts.name END,
                    short = CASE WHEN excluded.short != '' THEN excluded.short ELSE contacts.short END
                """,
                (contact.id, contact.name, contact.short),
                what=f"contact {contact.id}",
            )

    def mark_unread(self, chat_id: str) -> None:
        with self._lock:
            self._write(
                "UPDATE chats SET unread = unread + 1 WHERE id = ?",
                (chat_id,),
                what=f"unread count of {chat_id}",
            )

    def reset_unread(self, chat_id: str) -> None:
        with self._lock:
            self._write(
                "UPDATE chats SET unread = 0 WHERE id = ?",
                (chat_id,),
                what=f"unread count of {chat_id}",
            )

    def rename_chat(self, chat_id: str, name: str) -> bool:
        with self._lock:
            cursor = self._write(
                "UPDATE chats SET name = ? WHERE id = ?",
                (name.strip(), chat_id),
                what=f"name of {chat_id}",
            )
            return cursor.rowcount > 0

    # -- reads ----------------------------------------------------------

    def list_chats(self) -> list[Chat]:
        with self._lock:
            rows = self._read(
                """
                SELECT id, is_group, name, unread, last_message
                FROM chats
                ORDER BY last_message DESC, rowid ASC
                """,
            )
            return [self._row_to_chat(row) for row in rows]

    def get_chat(self, chat_id: str) -> Chat | None:
        with self._lock:
            rows = self._read(
                "SELECT id, is_group, name, unread, last_message FROM chats WHERE id = ? LIMIT 1",
                (chat_id,),
            )
            return self._row_to_chat(rows[0]) if rows else None

    def list_messages(self, chat_id: str) -> list[Message]:
        with self._lock:
            rows = self._read(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages
                WHERE chat_id = ?
                ORDER BY timestamp ASC, rowid ASC
                """,
                (chat_id,),
            )
            return [self._row_to_message(row) for row in rows]

    def get_message(self, message_id: str) -> Message | None:
        with self._lock:
            rows = self._read(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ? LIMIT 1",
                (message_id,),
            )
            return self._row_to_message(rows[0]) if rows else None

    def count_messages(self, chat_id: str) -> int:
        with self._lock:
            rows = self._read("SELECT COUNT(*) AS c FROM messages WHERE chat_id = ?", (chat_id,))
            return int(rows[0]["c"])

    def get_contact(self, contact_id: str) -> Contact | None:
        with self._lock:
            rows = self._read("SELECT id, name, short FROM contacts WHERE id = ? LIMIT 1", (contact_id,))
            if not rows:
                return None
            return Contact(id=rows[0]["id"], name=rows[0]["name"], short=rows[0]["short"])

    def describe(self, message_id: str) -> str:
        with self._lock:
            message = self.get_message(message_id)
            if message is None:
                return f"Message not found: {message_id}"
            chat = self.get_chat(message.chat_id)
            chat_name = chat.name if chat is not None else self._resolve_short_name(message.chat_id)

        sent_at = datetime.fromtimestamp(message.timestamp, UTC).isoformat(timespec="seconds")
        lines = [
            f"Message: {message.id}",
            f"- Chat: {chat_name} (id={message.chat_id})",
            f"- Sender: {message.contact_name} / {message.contact_short} (id={message.contact_id or '-'})",
            f"- Timestamp: {sent_at} ({message.timestamp})",
            f"- From me: {'yes' if message.from_me else 'no'} | Forwarded: {'yes' if message.forwarded else 'no'}",
        ]
        if message.media is not None:
            lines.append(f"- Media: {message.media.mime_type or 'unknown type'} ({message.media.link})")
        return "\n".join(lines)

    def resolve_display_name(self, contact_id: str) -> str:
        with self._lock:
            return self._resolve_display_name(contact_id)

    def resolve_short_name(self, contact_id: str) -> str:
        with self._lock:
            return self._resolve_short_name(contact_id)

    # -- internals (caller holds the lock) ------------------------------

    def _resolve_display_name(self, contact_id: str) -> str:
        contact = self._lookup_contact(contact_id)
        if contact is not None:
            if contact["name"]:
                return contact["name"]
            if contact["short"]:
                return contact["short"]
        return strip_known_suffixes(contact_id)

    def _resolve_short_name(self, contact_id: str) -> str:
        contact = self._lookup_contact(contact_id)
        if contact is not None:
            if contact["short"]:
                return contact["short"]
            if contact["name"]:
                return contact["name"]
        return strip_known_suffixes(contact_id)

    def _lookup_contact(self, contact_id: str) -> sqlite3.Row | None:
        if not contact_id:
            return None
        rows = self._read("SELECT name, short FROM contacts WHERE id = ? LIMIT 1", (contact_id,))
        return rows[0] if rows else None

    def _advance_chat(self, chat_id: str, timestamp: int) -> None:
        self._conn.execute(
            """
            INSERT INTO chats (id, is_group, name, unread, last_message)
            VALUES (?, ?, '', 0, ?)
            ON CONFLICT (id) DO UPDATE SET last_message = MAX(chats.last_message, excluded.last_message)
            """,
            (chat_id, 1 if is_group_id(chat_id) else 0, timestamp),
        )

    def _backfill_contact(self, message: Message) -> None:
        if message.from_me or not message.contact_id:
            return
        if not message.contact_name and not message.contact_short:
            return
        if self._lookup_contact(message.contact_id) is not None:
            return
        self._conn.execute(
            "INSERT INTO contacts (id, name, short) VALUES (?, ?, ?)",
            (message.contact_id, message.contact_name, message.contact_short),
        )
        logger.debug(f"Learned contact name for {message.contact_id} from message {message.id}")

    def _write(self, query: str, params: tuple[Any, ...], *, what: str) -> sqlite3.Cursor:
        try:
            cursor = self._conn.execute(query, params)
            self._conn.commit()
            return cursor
        except sqlite3.Error as ex:
            self._conn.rollback()
            raise StoreError(f"Failed to update {what}: {ex}") from ex

    def _read(self, query: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        try:
            return self._conn.execute(query, params).fetchall()
        except sqlite3.Error as ex:
            raise StoreError(f"Failed to read from message store: {ex}") from ex

    def _row_to_chat(self, row: sqlite3.Row) -> Chat:
        name = row["name"] or self._resolve_short_name(row["id"])
        return Chat(
            id=row["id"],
            is_group=bool(row["is_group"]),
            name=name,
            unread=int(row["unread"]),
            last_message=int(row["last_message"]),
        )

    def _row_to_message(self, row: sqlite3.Row) -> Message:
        media = None
        if row["media_link"] or row["media_type"]:
            media = MediaDescriptor(
                link=row["media_link"],
                mime_type=row["media_type"],
                data1=row["media_data1"],
                data2=row["media_data2"],
                data3=row["media_data3"],
            )
        return Message(
            id=row["id"],
            chat_id=row["chat_id"],
            contact_id=row["contact_id"],
            contact_name=row["contact_name"],
            contact_short=row["contact_short"],
            timestamp=int(row["timestamp"]),
            from_me=bool(row["from_me"]),
            forwarded=bool(row["forwarded"]),
            text=row["text"],
            media=media,
        )

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS version (
                dbversion INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS chats (
                id TEXT PRIMARY KEY,
                is_group INTEGER NOT NULL DEFAULT 0 CHECK (is_group IN (0, 1)),
                name TEXT NOT NULL DEFAULT '',
                unread INTEGER NOT NULL DEFAULT 0,
                last_message INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                chat_id TEXT NOT NULL,
                contact_id TEXT NOT NULL DEFAULT '',
                contact_name TEXT NOT NULL DEFAULT '',
                contact_short TEXT NOT NULL DEFAULT '',
                timestamp INTEGER NOT NULL DEFAULT 0,
                from_me INTEGER NOT NULL DEFAULT 0 CHECK (from_me IN (0, 1)),
                forwarded INTEGER NOT NULL DEFAULT 0 CHECK (forwarded IN (0, 1)),
                text TEXT NOT NULL DEFAULT '',
                media_link TEXT NOT NULL DEFAULT '',
                media_type TEXT NOT NULL DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS contacts (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                short TEXT NOT NULL DEFAULT ''
            );

            CREATE INDEX IF NOT EXISTS idx_messages_chat_timestamp
                ON messages(chat_id, timestamp);
            CREATE INDEX IF NOT EXISTS idx_chats_last_message
                ON chats(last_message);
            """
        )
        self._conn.commit()

    def _update_database_version(self) -> None:
        row = self._conn.execute("SELECT dbversion FROM version LIMIT 1").fetchone()
        current = int(row["dbversion"]) if row is not None else 0
        if current >= DB_VERSION:
            return

        existing_cols = {r[1] for r in self._conn.execute("PRAGMA table_info(messages)").fetchall()}
        if current < 1:
            for column in _MEDIA_BLOB_COLUMNS:
                if column not in existing_cols:
                    self._conn.execute(f"ALTER TABLE messages ADD COLUMN {column} BLOB")

        self._conn.execute("DELETE FROM version")
        self._conn.execute("INSERT INTO version (dbversion) VALUES (?)", (DB_VERSION,))
        self._conn.commit()
        logger.debug(f"Message store schema at version {DB_VERSION} ({self._db_path})")

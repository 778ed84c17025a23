from __future__ import annotations

from datetime import datetime

from termchat.models import Chat, Message, SessionStatus, strip_known_suffixes


class ChatFormatter:
    def __init__(self, *, line_prefix: str, short_id_len: int = 8, time_format: str = "%H:%M:%S"):
        self._line_prefix = line_prefix
        self._short_id_len = short_id_len
        self._time_format = time_format

    def short_id(self, value: str) -> str:
        if len(value) <= self._short_id_len:
            return value
        return value[: self._short_id_len]

    def sender_label(self, message: Message) -> str:
        if message.from_me:
            return "Me"
        return message.contact_short or message.contact_name or strip_known_suffixes(message.contact_id)

    def format_message(self, message: Message) -> str:
        stamp = datetime.fromtimestamp(message.timestamp).strftime(self._time_format)
        forwarded = "(fwd) " if message.forwarded else ""
        body = message.text
        if message.media is not None:
            kind = message.media.mime_type or "attachment"
            media_tag = f"[{kind}: /show {message.id}]"
            body = f"{media_tag} {body}".rstrip()
        return f"{self._line_prefix}[{stamp}] {self.sender_label(message)}: {forwarded}{body}"

    def format_screen_header(self, chat: Chat | None, chat_id: str) -> str:
        name = chat.name if chat is not None and chat.name else strip_known_suffixes(chat_id)
        return f"{self._line_prefix}--- {name} ({chat_id}) ---"

    def format_chat_list_entry(self, chat: Chat, *, selected_chat_id: str | None) -> str:
        marker = "*" if chat.id == selected_chat_id else " "
        unread = f" ({chat.unread} unread)" if chat.unread > 0 else ""
        group = " [group]" if chat.is_group else ""
        return f"{self._line_prefix}{marker} {chat.name}{group} (id={chat.id}){unread}"

    def format_unread_summary(self, chats: list[Chat]) -> str | None:
        unread = [f"{chat.name} ({chat.unread})" for chat in chats if chat.unread > 0]
        if not unread:
            return None
        return f"{self._line_prefix}Unread: {', '.join(unread)}"

    def format_status(self, status: SessionStatus) -> str:
        parts = [status.state.value.replace("_", " ")]
        if status.battery_charge > 0:
            battery = f"battery {status.battery_charge}%"
            if status.battery_loading:
                battery += " (charging)"
            if status.battery_powersave:
                battery += " (powersave)"
            parts.append(battery)
        if status.last_seen:
            parts.append(f"last seen {status.last_seen}")
        return f"{self._line_prefix}Status: {' | '.join(parts)}"

from __future__ import annotations

from termchat.models import Command

# Commands whose trailing text is kept verbatim as one parameter, keyed by the
# number of plain parameters in front of it.
_FREE_TEXT_COMMANDS = {"send": 1, "rename": 0}


def parse_command_line(line: str, *, cmd_prefix: str) -> Command | None:
    """Parse `<prefix><name> [params...]`; returns None for plain text."""
    trimmed = line.strip()
    if not cmd_prefix or not trimmed.startswith(cmd_prefix):
        return None
    head = trimmed[len(cmd_prefix):].split(maxsplit=1)
    if not head:
        return None
    name = head[0].lower()
    rest = head[1] if len(head) > 1 else ""
    leading = _FREE_TEXT_COMMANDS.get(name)
    if leading is None:
        return Command(name=name, params=tuple(rest.split()))
    return Command(name=name, params=tuple(rest.split(maxsplit=leading)))


def parse_input_line(
    line: str,
    *,
    cmd_prefix: str,
    selected_chat_id: str | None,
) -> tuple[Command | None, str | None]:
    """Turn one line of prompt input into a command.

    Plain text becomes a `send` to the selected chat. Returns (command, error);
    both are None for blank input.
    """
    trimmed = line.strip()
    if not trimmed:
        return None, None

    command = parse_command_line(trimmed, cmd_prefix=cmd_prefix)
    if command is not None:
        return command, None
    if trimmed == cmd_prefix:
        return None, f"Type {cmd_prefix}help for a list of commands"

    if not selected_chat_id:
        return None, f"No receiver selected; use {cmd_prefix}select <chat-id> first"
    return Command.of("send", selected_chat_id, trimmed), None

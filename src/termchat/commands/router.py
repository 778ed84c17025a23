from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from termchat.models import Command

CommandHandler = Callable[[tuple[str, ...]], None]


@dataclass(frozen=True)
class CommandSpec:
    name: str
    handler: CommandHandler
    usage: str = ""
    min_params: int = 0
    aliases: tuple[str, ...] = ()


class CommandRouter:
    """Name-based dispatch for prompt commands.

    Handlers run on the control loop and must not block; anything slow is
    scheduled by the handler itself.
    """

    def __init__(
        self,
        *,
        on_usage: Callable[[str, str], None],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_usage = on_usage
        self._on_unknown = on_unknown
        self._specs: dict[str, CommandSpec] = {}
        self._ordered: list[CommandSpec] = []

    def register(
        self,
        name: str,
        handler: CommandHandler,
        *,
        usage: str = "",
        min_params: int = 0,
        aliases: tuple[str, ...] = (),
    ) -> None:
        spec = CommandSpec(name=name, handler=handler, usage=usage, min_params=min_params, aliases=aliases)
        for key in (name, *aliases):
            if key in self._specs:
                raise ValueError(f"Command already registered: {key}")
            self._specs[key] = spec
        self._ordered.append(spec)

    def usages(self) -> list[tuple[str, str]]:
        return [(spec.name, spec.usage) for spec in self._ordered]

    def handle(self, command: Command) -> bool:
        """Run the handler for `command`. Returns False for unknown names."""
        spec = self._specs.get(command.name.lower())
        if spec is None:
            self._on_unknown(command.name)
            return False
        if len(command.params) < spec.min_params:
            self._on_usage(spec.name, spec.usage)
            return True
        spec.handler(command.params)
        return True

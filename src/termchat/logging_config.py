import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"
_STDERR_FORMAT = "<level>{level:<8}</level> | <cyan>{name}</cyan> - <level>{message}</level>"


@runtime_checkable
class LogSink(Protocol):
    def attach(self, level: str) -> int: ...
    def label(self, level: str) -> str: ...


def _module_filter(only: str | None):
    if not only:
        return None
    return lambda record: record["name"] == only or record["name"].startswith(f"{only}.")


class StderrSink:
    """Log lines on stderr. They interleave with the transcript, so this is opt-in."""

    def __init__(self, only: str | None = None, colorize: bool | None = None):
        self._only = only
        self._colorize = colorize

    def attach(self, level: str) -> int:
        return logger.add(
            sys.stderr,
            level=level,
            format=_STDERR_FORMAT,
            colorize=self._colorize,
            filter=_module_filter(self._only),
        )

    def label(self, level: str) -> str:
        scope = f", {self._only}" if self._only else ""
        return f"stderr ({level}{scope})"


class RotatingFileSink:
    def __init__(
        self,
        path: str = "termchat.log",
        rotation: str = "5 MB",
        retention: int = 3,
        compression: str | None = None,
        only: str | None = None,
    ):
        self._path = Path(path).expanduser()
        self._rotation = rotation
        self._retention = retention
        self._compression = compression
        self._only = only

    def attach(self, level: str) -> int:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        return logger.add(
            str(self._path),
            level=level,
            format=_FILE_FORMAT,
            rotation=self._rotation,
            retention=self._retention,
            compression=self._compression,
            filter=_module_filter(self._only),
        )

    def label(self, level: str) -> str:
        scope = f", {self._only}" if self._only else ""
        return f"file ({self._path}, {level}{scope})"


_SINK_TYPES: dict[str, type] = {
    "console": StderrSink,
    "stderr": StderrSink,
    "file": RotatingFileSink,
}

_DEFAULT_SINKS = [
    {"type": "file", "path": "termchat.log"},
]


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace all loguru sinks with those named in `LogConsumers`.

    Each entry needs a `type` (`file`, `console`/`stderr`); `level` overrides
    the global level and the remaining keys go to the sink. Returns one label
    per attached sink.
    """
    logger.remove()

    labels: list[str] = []
    for entry in consumers if consumers is not None else _DEFAULT_SINKS:
        sink_type = str(entry.get("type", "")).lower()
        sink_cls = _SINK_TYPES.get(sink_type)
        if sink_cls is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue

        sink_level = str(entry.get("level", level)).upper()
        options = {k: v for k, v in entry.items() if k not in ("type", "level")}
        sink = sink_cls(**options)
        sink.attach(sink_level)
        labels.append(sink.label(sink_level))

    return labels

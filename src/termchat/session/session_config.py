from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class SessionConfig:
    cmd_prefix: str = "/"
    download_path: Path = field(default_factory=lambda: Path.home() / "Downloads")
    preview_path: Path = field(default_factory=lambda: Path.home() / "Downloads")
    backlog_msg_quantity: int = 10
    pairing_timeout_seconds: float = 120.0
    recency_window_seconds: int = 30

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

SESSION_PATH_ENV_VAR = "TERMCHAT_SESSION_PATH"
STORE_DB_PATH_ENV_VAR = "TERMCHAT_STORE_DB_PATH"

_DEFAULT_ATTACHMENT_DIR = str(Path.home() / "Downloads")


@dataclass
class AppConfig:
    backend_name: str
    store_db_path: str
    session_path: str
    download_path: str
    preview_path: str
    cmd_prefix: str
    show_command: str
    enable_notifications: bool
    use_terminal_bell: bool
    notification_timeout: int
    backlog_msg_quantity: int
    pairing_timeout_seconds: float
    recency_window_seconds: int
    auto_connect: bool
    log_level: str
    log_consumers: list | None


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        backend_name=str(config.get("Backend", "loopback")).strip().lower(),
        store_db_path=os.environ.get(STORE_DB_PATH_ENV_VAR)
        or str(config.get("StoreDbPath", ".termchat/messages.db")),
        session_path=os.environ.get(SESSION_PATH_ENV_VAR)
        or str(config.get("SessionPath", ".termchat/session.json")),
        download_path=str(Path(str(config.get("DownloadPath", _DEFAULT_ATTACHMENT_DIR))).expanduser()),
        preview_path=str(Path(str(config.get("PreviewPath", _DEFAULT_ATTACHMENT_DIR))).expanduser()),
        cmd_prefix=str(config.get("CmdPrefix", "/")),
        show_command=str(config.get("ShowCommand", "jp2a --color")),
        enable_notifications=_to_bool(config.get("EnableNotifications", False), default=False),
        use_terminal_bell=_to_bool(config.get("UseTerminalBell", False), default=False),
        notification_timeout=int(config.get("NotificationTimeout", 60)),
        backlog_msg_quantity=int(config.get("BacklogMsgQuantity", 10)),
        pairing_timeout_seconds=float(config.get("PairingTimeoutSeconds", 120)),
        recency_window_seconds=int(config.get("RecencyWindowSeconds", 30)),
        auto_connect=_to_bool(config.get("AutoConnect", True), default=True),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_data_path(path: str) -> Path:
    resolved = Path(path).expanduser()
    if not resolved.is_absolute():
        resolved = Path.cwd() / resolved
    return resolved

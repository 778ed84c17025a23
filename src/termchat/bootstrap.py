from __future__ import annotations

from dataclasses import dataclass

from termchat.app_config import AppConfig, resolve_data_path
from termchat.backend import Backend, create_backend
from termchat.console_ui import ConsoleUi
from termchat.logging_config import setup_logging
from termchat.notifications import Notifier
from termchat.session import SessionConfig, SessionManager
from termchat.store import MessageStore

LINE_PREFIX = "chat> "


@dataclass
class AppRuntime:
    session: SessionManager
    store: MessageStore
    backend: Backend
    ui: ConsoleUi
    log_descriptions: list[str]

    def close(self) -> None:
        self.ui.close()
        self.store.close()


def bootstrap_runtime(app: AppConfig) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    store = MessageStore(str(resolve_data_path(app.store_db_path)))
    backend = create_backend(app.backend_name, session_path=str(resolve_data_path(app.session_path)))
    ui = ConsoleUi(line_prefix=LINE_PREFIX, show_command=app.show_command)
    notifier = Notifier(
        enabled=app.enable_notifications,
        use_terminal_bell=app.use_terminal_bell,
        timeout_seconds=app.notification_timeout,
    )
    session = SessionManager(
        store=store,
        backend=backend,
        ui=ui,
        notifier=notifier,
        config=SessionConfig(
            cmd_prefix=app.cmd_prefix,
            download_path=resolve_data_path(app.download_path),
            preview_path=resolve_data_path(app.preview_path),
            backlog_msg_quantity=app.backlog_msg_quantity,
            pairing_timeout_seconds=app.pairing_timeout_seconds,
            recency_window_seconds=app.recency_window_seconds,
        ),
    )

    return AppRuntime(
        session=session,
        store=store,
        backend=backend,
        ui=ui,
        log_descriptions=log_descriptions,
    )

from __future__ import annotations

import asyncio
import contextlib
import mimetypes
import time
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

from loguru import logger

from termchat.backend import Backend
from termchat.commands.router import CommandRouter
from termchat.events import (
    AttachmentDownloaded,
    BackendError,
    BackendEvent,
    BatteryChanged,
    ChatsSnapshot,
    CommandCompleted,
    CommandFailed,
    ConnectFailed,
    Connected,
    ContactsSnapshot,
    Disconnected,
    LastSeenChanged,
    LoggedOut,
    MessageReceived,
    PairingCode,
    PairingFailed,
    PairingSucceeded,
    PairingTimedOut,
)
from termchat.models import Command, ConnectionState, Message, SessionStatus
from termchat.notifications import NotificationError, Notifier
from termchat.session.session_config import SessionConfig
from termchat.store import MessageStore
from termchat.ui import UiHandler

_ATTACHMENT_ACTIONS = ("download", "open", "show")


class SessionManager:
    """Single control loop between the UI, the backend and the message store.

    Commands from the UI and events from the backend arrive on two queues and
    are handled one at a time on the loop task, which is the only writer of the
    store and of the connection state. Backend calls and downloads run as
    separate tasks and report back through the event queue.
    """

    def __init__(
        self,
        *,
        store: MessageStore,
        backend: Backend,
        ui: UiHandler,
        notifier: Notifier | None = None,
        config: SessionConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._backend = backend
        self._ui = ui
        self._notifier = notifier or Notifier(enabled=False)
        self._config = config or SessionConfig()
        self._clock = clock

        self._commands: asyncio.Queue[Command] = asyncio.Queue()
        self._events: asyncio.Queue[BackendEvent] = asyncio.Queue()
        self._stop_requested = asyncio.Event()
        self._running = False

        self._state = ConnectionState.DISCONNECTED
        self._status = SessionStatus()
        self._selected_chat_id: str | None = None
        self._tasks: set[asyncio.Task] = set()
        self._pairing_task: asyncio.Task | None = None
        self._connect_task: asyncio.Task | None = None
        self._pairing_attempt = 0
        self._backlog_baseline: dict[str, int] = {}

        self._router = CommandRouter(on_usage=self._print_usage, on_unknown=self._on_unknown_command)
        self._register_commands()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def selected_chat_id(self) -> str | None:
        return self._selected_chat_id

    @property
    def events(self) -> asyncio.Queue[BackendEvent]:
        return self._events

    @property
    def is_running(self) -> bool:
        return self._running

    def post_command(self, command: Command) -> None:
        self._commands.put_nowait(command)

    def stop(self) -> None:
        self._stop_requested.set()

    async def run(self) -> None:
        if self._running:
            raise RuntimeError("Session manager is already running")
        self._running = True

        await self._backend.start(self._events)
        self._ui.set_status(self._status)
        self._ui.set_chats(self._store.list_chats())

        next_command: asyncio.Task | None = None
        next_event: asyncio.Task | None = None
        stop_wait = asyncio.create_task(self._stop_requested.wait())
        try:
            while not self._stop_requested.is_set():
                if next_command is None:
                    next_command = asyncio.create_task(self._commands.get())
                if next_event is None:
                    next_event = asyncio.create_task(self._events.get())

                done, _ = await asyncio.wait(
                    {next_command, next_event, stop_wait},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if next_command in done:
                    command = next_command.result()
                    next_command = None
                    self._process_command(command)
                if next_event in done:
                    event = next_event.result()
                    next_event = None
                    self._process_event(event)
        finally:
            for task in (next_command, next_event, stop_wait):
                if task is not None:
                    task.cancel()
            await self._shutdown()
            self._running = False

    async def _shutdown(self) -> None:
        self._cancel_pairing_timer()
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        try:
            await self._backend.stop()
        except Exception as ex:
            logger.warning(f"Backend stop failed: {ex}")
        logger.info("Session manager stopped")

    # -- loop dispatch -------------------------------------------------------

    def _process_command(self, command: Command) -> None:
        logger.debug(f"Command: {command.name} ({len(command.params)} params)")
        try:
            self._router.handle(command)
        except Exception as ex:
            logger.exception(f"Command {command.name!r} failed")
            self._ui.print_error(f"{command.name} failed: {ex}")

    def _process_event(self, event: BackendEvent) -> None:
        try:
            self._handle_event(event)
        except Exception as ex:
            logger.exception(f"Handling {type(event).__name__} failed")
            self._ui.print_error(ex)

    def _handle_event(self, event: BackendEvent) -> None:
        match event:
            case MessageReceived(message=message):
                self._on_message(message)
            case Connected():
                self._on_connected()
            case Disconnected(reason=reason):
                if reason:
                    logger.info(f"Backend disconnected: {reason}")
                self._set_state(ConnectionState.DISCONNECTED)
            case LoggedOut(reason=reason):
                self._set_state(ConnectionState.DISCONNECTED)
                self._ui.print_text(f"Logged out: {reason}")
            case PairingCode(code=code):
                self._on_pairing_code(code)
            case PairingSucceeded():
                self._on_pairing_succeeded()
            case PairingFailed(reason=reason):
                self._set_state(ConnectionState.DISCONNECTED)
                self._ui.print_error(f"Pairing failed: {reason or 'no code was scanned'}")
            case PairingTimedOut(attempt=attempt):
                self._on_pairing_timed_out(attempt)
            case ConnectFailed(error=error):
                self._on_connect_failed(error)
            case BackendError(error=error):
                self._ui.print_error(error)
                self._set_state(ConnectionState.DISCONNECTED)
            case BatteryChanged(charge=charge, loading=loading, powersave=powersave):
                self._update_status(battery_charge=charge, battery_loading=loading, battery_powersave=powersave)
            case LastSeenChanged(text=text):
                self._update_status(last_seen=text)
            case ContactsSnapshot(contacts=contacts):
                for contact in contacts:
                    self._store.upsert_contact(contact)
                self._ui.set_chats(self._store.list_chats())
            case ChatsSnapshot(chats=chats):
                for chat in chats:
                    self._store.upsert_chat(chat)
                self._ui.set_chats(self._store.list_chats())
            case CommandCompleted(name=name, params=params):
                self._on_command_completed(name, params)
            case CommandFailed(name=name, error=error):
                self._on_command_failed(name, error)
            case AttachmentDownloaded(message_id=message_id, path=path, action=action):
                self._finish_attachment(action, Path(path), message_id)
            case _:
                logger.warning(f"Ignoring unexpected event: {event!r}")

    # -- connection lifecycle ------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        if state != ConnectionState.AWAITING_PAIRING:
            self._cancel_pairing_timer()
        logger.info(f"Connection state: {previous.value} -> {state.value}")

        was_connected = self._status.connected
        self._status = replace(self._status, connected=state == ConnectionState.CONNECTED, state=state)
        self._ui.set_status(self._status)
        if was_connected != self._status.connected:
            self._ui.print_text("connected" if self._status.connected else "disconnected")

    def _update_status(self, **changes) -> None:
        self._status = replace(self._status, **changes)
        self._ui.set_status(self._status)

    def _on_connected(self) -> None:
        # A Connected may be queued behind a disconnect or logout the user already issued.
        if self._state == ConnectionState.DISCONNECTED:
            logger.info("Ignoring connection confirmed after the attempt was abandoned")
            return
        self._cancel_pairing_timer()
        self._set_state(ConnectionState.CONNECTED)
        self._ui.set_chats(self._store.list_chats())

    def _on_pairing_succeeded(self) -> None:
        if self._state not in (ConnectionState.CONNECTING, ConnectionState.AWAITING_PAIRING):
            logger.info(f"Ignoring pairing success while {self._state.value}")
            return
        self._cancel_pairing_timer()
        self._ui.print_text("Pairing succeeded")
        self._set_state(ConnectionState.CONNECTED)

    def _on_pairing_code(self, code: str) -> None:
        if self._state not in (ConnectionState.CONNECTING, ConnectionState.AWAITING_PAIRING):
            logger.warning(f"Ignoring pairing code while {self._state.value}")
            return
        self._set_state(ConnectionState.AWAITING_PAIRING)
        writer = self._ui.get_writer()
        writer.write(f"Pair this client with the code below:\n{code}\n")
        writer.flush()
        if self._pairing_task is None:
            self._pairing_attempt += 1
            self._pairing_task = asyncio.create_task(
                self._pairing_timeout(self._pairing_attempt),
                name="termchat-pairing-timeout",
            )

    async def _pairing_timeout(self, attempt: int) -> None:
        await asyncio.sleep(self._config.pairing_timeout_seconds)
        self._events.put_nowait(PairingTimedOut(attempt=attempt))

    def _cancel_pairing_timer(self) -> None:
        if self._pairing_task is not None:
            self._pairing_task.cancel()
            self._pairing_task = None

    def _on_pairing_timed_out(self, attempt: int) -> None:
        if self._state != ConnectionState.AWAITING_PAIRING or attempt != self._pairing_attempt:
            logger.debug(f"Stale pairing timeout (attempt {attempt}) ignored")
            return
        self._pairing_task = None
        self._cancel_connect()
        self._set_state(ConnectionState.DISCONNECTED)
        self._ui.print_error(
            f"Pairing timed out after {self._config.pairing_timeout_seconds:.0f}s; "
            f"use {self._config.cmd_prefix}login to try again"
        )
        self._dispatch("disconnect")

    def _start_connect(self) -> None:
        task = asyncio.create_task(self._run_backend_command("connect", ()), name="termchat-connect")
        self._track(task)
        task.add_done_callback(self._forget_connect_task)
        self._connect_task = task

    def _forget_connect_task(self, task: asyncio.Task) -> None:
        if self._connect_task is task:
            self._connect_task = None

    def _cancel_connect(self) -> None:
        if self._connect_task is not None:
            logger.info("Cancelling connection attempt in progress")
            self._connect_task.cancel()
            self._connect_task = None

    def _on_connect_failed(self, error: str) -> None:
        self._set_state(ConnectionState.DISCONNECTED)
        self._ui.print_error(f"Connection failed: {error}")

    # -- inbound messages ----------------------------------------------------

    def _on_message(self, message: Message) -> None:
        is_new = self._store.insert(message)

        if message.chat_id == self._selected_chat_id:
            if is_new:
                self._ui.new_message(self._store.get_message(message.id) or message)
            else:
                self._ui.new_screen(message.chat_id, self._store.list_messages(message.chat_id))

        age = self._clock() - message.timestamp
        if (
            is_new
            and not message.from_me
            and message.chat_id != self._selected_chat_id
            and age <= self._config.recency_window_seconds
        ):
            self._store.mark_unread(message.chat_id)
            self._notify(message)

        self._ui.set_chats(self._store.list_chats())

    def _notify(self, message: Message) -> None:
        title = self._store.resolve_short_name(message.contact_id or message.chat_id)
        body = message.text or (message.media.mime_type if message.media else "") or "(attachment)"
        try:
            self._notifier.notify(title, body)
        except NotificationError as ex:
            self._ui.print_error(ex)

    # -- background work -----------------------------------------------------

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _dispatch(self, name: str, params: tuple[str, ...] = ()) -> None:
        self._track(asyncio.create_task(self._run_backend_command(name, params), name=f"termchat-{name}"))

    async def _run_backend_command(self, name: str, params: tuple[str, ...]) -> None:
        try:
            await self._backend.send_command(name, list(params))
        except Exception as ex:
            logger.warning(f"Backend command {name!r} failed: {ex}")
            self._events.put_nowait(CommandFailed(name=name, error=str(ex)))
            return
        self._events.put_nowait(CommandCompleted(name=name, params=params))

    async def _run_download(self, message: Message, destination: Path, action: str) -> None:
        try:
            await self._backend.download_attachment(message, destination)
        except Exception as ex:
            logger.warning(f"Attachment download for {message.id} failed: {ex}")
            self._events.put_nowait(CommandFailed(name=action, error=str(ex)))
            return
        self._events.put_nowait(AttachmentDownloaded(message_id=message.id, path=str(destination), action=action))

    def _on_command_completed(self, name: str, params: tuple[str, ...]) -> None:
        if name == "logout":
            self._ui.print_text("Successfully logged out")
        elif name == "backlog" and params:
            chat_id = params[0]
            before = self._backlog_baseline.pop(chat_id, 0)
            added = self._store.count_messages(chat_id) - before
            if added > 0:
                self._ui.print_text(f"Loaded {added} additional messages")
            else:
                self._ui.print_text("No additional messages found")
            if chat_id == self._selected_chat_id:
                self._ui.new_screen(chat_id, self._store.list_messages(chat_id))
        else:
            logger.debug(f"Backend command {name!r} completed")

    def _on_command_failed(self, name: str, error: str) -> None:
        if name == "connect":
            self._on_connect_failed(error)
        elif name == "logout":
            self._ui.print_error(f"Logout failed: {error}")
        elif name in _ATTACHMENT_ACTIONS:
            self._ui.print_error(f"Attachment {name} failed: {error}")
        else:
            if name == "backlog":
                self._backlog_baseline.clear()
            self._ui.print_error(f"{name} failed: {error}")

    # -- commands ------------------------------------------------------------

    def _register_commands(self) -> None:
        register = self._router.register
        register("login", self._cmd_login, aliases=("connect",))
        register("disconnect", self._cmd_disconnect)
        register("logout", self._cmd_logout)
        register("select", self._cmd_select, usage="<chat-id>", min_params=1)
        register("send", self._cmd_send, usage="<chat-id> <message text>", min_params=2)
        register("read", self._cmd_read, usage="-> only works in a chat")
        register("backlog", self._cmd_backlog, usage="-> only works in a chat")
        register("info", self._cmd_info, usage="<message-id>", min_params=1)
        register("download", self._cmd_download, usage="<message-id>", min_params=1)
        register("open", self._cmd_open, usage="<message-id>", min_params=1)
        register("show", self._cmd_show, usage="<message-id>", min_params=1)
        register("rename", self._cmd_rename, usage="<name> -> only works in a chat", min_params=1)
        register("chats", self._cmd_chats)
        register("help", self._cmd_help, aliases=("commands",))
        register("quit", self._cmd_quit, aliases=("exit",))

    def _print_usage(self, name: str, usage: str) -> None:
        self._ui.print_text(f"Usage: {self._config.cmd_prefix}{name} {usage}".rstrip())

    def _on_unknown_command(self, name: str) -> None:
        self._ui.print_text(f"Unknown command: {name} (try {self._config.cmd_prefix}help)")

    def _require_connection(self) -> bool:
        if self._state == ConnectionState.CONNECTED:
            return True
        self._ui.print_error(f"Not connected; use {self._config.cmd_prefix}login first")
        return False

    def _require_selected_chat(self, name: str, usage: str) -> str | None:
        if self._selected_chat_id is None:
            self._print_usage(name, usage)
        return self._selected_chat_id

    def _cmd_login(self, params: tuple[str, ...]) -> None:
        if self._state == ConnectionState.CONNECTED:
            self._ui.print_text("Already connected")
            return
        if self._state in (ConnectionState.CONNECTING, ConnectionState.AWAITING_PAIRING):
            self._ui.print_text("Login already in progress")
            return
        self._set_state(ConnectionState.CONNECTING)
        self._ui.print_text("Connecting...")
        self._start_connect()

    def _cmd_disconnect(self, params: tuple[str, ...]) -> None:
        self._cancel_connect()
        self._set_state(ConnectionState.DISCONNECTED)
        self._dispatch("disconnect")

    def _cmd_logout(self, params: tuple[str, ...]) -> None:
        # Local state is cleared first; a failing wipe is reported when it completes.
        self._cancel_connect()
        self._set_state(ConnectionState.DISCONNECTED)
        self._dispatch("logout")

    def _cmd_select(self, params: tuple[str, ...]) -> None:
        chat_id = params[0]
        self._selected_chat_id = chat_id
        self._ui.new_screen(chat_id, self._store.list_messages(chat_id))

    def _cmd_send(self, params: tuple[str, ...]) -> None:
        if not self._require_connection():
            return
        chat_id, text = params[0], " ".join(params[1:])
        self._dispatch("send", (chat_id, text))

    def _cmd_read(self, params: tuple[str, ...]) -> None:
        chat_id = self._require_selected_chat("read", "-> only works in a chat")
        if chat_id is None:
            return
        self._store.reset_unread(chat_id)
        self._ui.set_chats(self._store.list_chats())
        if self._state == ConnectionState.CONNECTED:
            self._dispatch("read", (chat_id,))

    def _cmd_backlog(self, params: tuple[str, ...]) -> None:
        chat_id = self._require_selected_chat("backlog", "-> only works in a chat")
        if chat_id is None or not self._require_connection():
            return
        self._backlog_baseline[chat_id] = self._store.count_messages(chat_id)
        self._ui.print_text("Retrieving message history...")
        self._dispatch("backlog", (chat_id, str(self._config.backlog_msg_quantity)))

    def _cmd_info(self, params: tuple[str, ...]) -> None:
        self._ui.print_text(self._store.describe(params[0]))

    def _cmd_download(self, params: tuple[str, ...]) -> None:
        self._start_attachment("download", params[0], self._config.download_path)

    def _cmd_open(self, params: tuple[str, ...]) -> None:
        self._start_attachment("open", params[0], self._config.download_path)

    def _cmd_show(self, params: tuple[str, ...]) -> None:
        self._start_attachment("show", params[0], self._config.preview_path)

    def _cmd_rename(self, params: tuple[str, ...]) -> None:
        chat_id = self._require_selected_chat("rename", "<name> -> only works in a chat")
        if chat_id is None:
            return
        name = " ".join(params)
        if not self._store.rename_chat(chat_id, name):
            self._ui.print_error(f"Unknown chat: {chat_id}")
            return
        self._ui.print_text(f"Chat renamed to {name}")
        self._ui.set_chats(self._store.list_chats())

    def _cmd_chats(self, params: tuple[str, ...]) -> None:
        self._ui.show_chats(self._store.list_chats())

    def _cmd_help(self, params: tuple[str, ...]) -> None:
        lines = ["Available commands:"]
        for name, usage in self._router.usages():
            lines.append(f"- {self._config.cmd_prefix}{name} {usage}".rstrip())
        lines.append(f"Text without the {self._config.cmd_prefix} prefix is sent to the selected chat.")
        self._ui.print_text("\n".join(lines))

    def _cmd_quit(self, params: tuple[str, ...]) -> None:
        self.stop()

    # -- attachments ---------------------------------------------------------

    def _start_attachment(self, action: str, message_id: str, directory: Path) -> None:
        message = self._store.get_message(message_id)
        if message is None:
            self._ui.print_error(f"Message not found: {message_id}")
            return
        if message.media is None:
            self._ui.print_error(f"Message {message_id} has no attachment")
            return

        destination = directory / f"{message_id}{_extension_for(message.media.mime_type)}"
        if destination.exists():
            self._finish_attachment(action, destination, message_id)
            return
        if not self._require_connection():
            return
        self._ui.print_text(f"Downloading {message_id}...")
        self._track(
            asyncio.create_task(
                self._run_download(message, destination, action),
                name=f"termchat-{action}-{message_id}",
            )
        )

    def _finish_attachment(self, action: str, path: Path, message_id: str) -> None:
        logger.info(f"Attachment {message_id} ready at {path} ({action})")
        if action == "open":
            self._ui.open_file(str(path))
        elif action == "show":
            self._ui.print_file(str(path))
        else:
            self._ui.print_text(f"Downloaded {message_id} to {path}")


def _extension_for(mime_type: str) -> str:
    base = mime_type.split(";", 1)[0].strip().lower()
    if not base:
        return ""
    return mimetypes.guess_extension(base) or ""

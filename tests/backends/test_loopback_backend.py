import asyncio
import json
import shutil
import unittest
from pathlib import Path
from uuid import uuid4

import httpx

from termchat.backend import Backend, BackendCommandError, create_backend
from termchat.backends.loopback_backend import ECHO_CONTACT_ID, LoopbackBackend
from termchat.events import (
    BatteryChanged,
    ChatsSnapshot,
    Connected,
    ContactsSnapshot,
    MessageReceived,
    PairingCode,
    PairingSucceeded,
)
from termchat.models import MediaDescriptor, Message

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


class LoopbackBackendTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"{self.__class__.__name__.lower()}-{uuid4().hex}"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        self._session_path = self._tmp_dir / "session.json"

    def tearDown(self) -> None:
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def _backend(self, transport: httpx.AsyncBaseTransport | None = None) -> LoopbackBackend:
        return LoopbackBackend(
            session_path=str(self._session_path),
            pairing_delay_seconds=0,
            clock=lambda: 1_700_000_000,
            transport=transport,
        )

    def test_factory_creates_loopback(self) -> None:
        backend = create_backend("Loopback", session_path=str(self._session_path))
        self.assertIsInstance(backend, LoopbackBackend)
        self.assertIsInstance(backend, Backend)
        with self.assertRaises(ValueError):
            create_backend("carrier-pigeon", session_path=str(self._session_path))

    def test_first_connect_pairs_and_stores_credentials(self) -> None:
        backend = self._backend()

        async def scenario() -> list:
            events: asyncio.Queue = asyncio.Queue()
            await backend.start(events)
            await backend.send_command("connect", [])
            return _drain(events)

        events = asyncio.run(scenario())
        kinds = [type(e) for e in events]
        self.assertEqual(
            [PairingCode, PairingSucceeded, Connected, ContactsSnapshot, ChatsSnapshot, BatteryChanged],
            kinds,
        )
        self.assertTrue(events[0].code.startswith("loopback:"))
        self.assertTrue(backend.is_connected)
        with open(self._session_path) as f:
            self.assertIn("device_id", json.load(f))

    def test_connect_with_stored_credentials_skips_pairing(self) -> None:
        self._session_path.write_text(json.dumps({"device_id": "me@s.whatsapp.net"}))
        backend = self._backend()

        async def scenario() -> list:
            events: asyncio.Queue = asyncio.Queue()
            await backend.start(events)
            await backend.send_command("connect", [])
            return _drain(events)

        events = asyncio.run(scenario())
        self.assertNotIn(PairingCode, [type(e) for e in events])
        self.assertIsInstance(events[0], Connected)

    def test_send_echoes_and_echo_contact_replies(self) -> None:
        backend = self._backend()

        async def scenario() -> list:
            events: asyncio.Queue = asyncio.Queue()
            await backend.start(events)
            await backend.send_command("connect", [])
            _drain(events)
            await backend.send_command("send", [ECHO_CONTACT_ID, "hello there"])
            return _drain(events)

        events = asyncio.run(scenario())
        self.assertEqual(2, len(events))
        sent, reply = events[0].message, events[1].message
        self.assertIsInstance(events[0], MessageReceived)
        self.assertTrue(sent.from_me)
        self.assertEqual("hello there", sent.text)
        self.assertFalse(reply.from_me)
        self.assertEqual("Echo: hello there", reply.text)
        self.assertNotEqual(sent.id, reply.id)

    def test_send_to_other_chat_only_echoes(self) -> None:
        backend = self._backend()

        async def scenario() -> list:
            events: asyncio.Queue = asyncio.Queue()
            await backend.start(events)
            await backend.send_command("connect", [])
            _drain(events)
            await backend.send_command("send", ["bob@s.whatsapp.net", "hi"])
            return _drain(events)

        events = asyncio.run(scenario())
        self.assertEqual(1, len(events))
        self.assertEqual("bob@s.whatsapp.net", events[0].message.chat_id)

    def test_commands_requiring_connection_fail_when_offline(self) -> None:
        backend = self._backend()

        async def scenario() -> None:
            await backend.start(asyncio.Queue())
            for name, params in (("send", ["bob@s.whatsapp.net", "hi"]), ("read", ["x"]), ("backlog", ["x"])):
                with self.assertRaises(BackendCommandError):
                    await backend.send_command(name, params)
            with self.assertRaises(BackendCommandError):
                await backend.send_command("teleport", [])

        asyncio.run(scenario())

    def test_commands_before_start_fail(self) -> None:
        with self.assertRaises(BackendCommandError):
            asyncio.run(self._backend().send_command("connect", []))

    def test_logout_removes_only_credentials(self) -> None:
        history = self._tmp_dir / "messages.db"
        history.write_bytes(b"history")
        backend = self._backend()

        async def scenario() -> None:
            await backend.start(asyncio.Queue())
            await backend.send_command("connect", [])
            await backend.send_command("logout", [])

        asyncio.run(scenario())
        self.assertFalse(self._session_path.exists())
        self.assertFalse(backend.is_connected)
        self.assertTrue(history.exists())

    def test_download_copies_local_media(self) -> None:
        source = self._tmp_dir / "source.bin"
        source.write_bytes(b"local bytes")
        destination = self._tmp_dir / "out" / "m1.bin"
        message = Message(id="m1", chat_id="c", media=MediaDescriptor(link=str(source)))

        asyncio.run(self._backend().download_attachment(message, destination))
        self.assertEqual(b"local bytes", destination.read_bytes())

    def test_download_fetches_remote_media(self) -> None:
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, content=b"\x89PNG")

        destination = self._tmp_dir / "m2.png"
        message = Message(id="m2", chat_id="c", media=MediaDescriptor(link="https://media.example/m2", mime_type="image/png"))

        asyncio.run(self._backend(httpx.MockTransport(handler)).download_attachment(message, destination))
        self.assertEqual(["https://media.example/m2"], requested)
        self.assertEqual(b"\x89PNG", destination.read_bytes())

    def test_download_http_error_is_backend_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        message = Message(id="m3", chat_id="c", media=MediaDescriptor(link="https://media.example/gone"))

        with self.assertRaises(BackendCommandError):
            asyncio.run(self._backend(transport).download_attachment(message, self._tmp_dir / "m3"))

    def test_download_without_media_fails(self) -> None:
        with self.assertRaises(BackendCommandError):
            asyncio.run(self._backend().download_attachment(Message(id="m4", chat_id="c"), self._tmp_dir / "m4"))


if __name__ == "__main__":
    unittest.main()

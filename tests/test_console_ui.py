import io
import unittest
from datetime import datetime

from termchat.console_ui import ConsoleUi
from termchat.models import Chat, ConnectionState, MediaDescriptor, Message, SessionStatus
from termchat.services.chat_formatter import ChatFormatter


class ChatFormatterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.formatter = ChatFormatter(line_prefix="chat> ")

    def test_format_message(self) -> None:
        ts = int(datetime(2024, 5, 1, 9, 30, 15).timestamp())
        line = self.formatter.format_message(
            Message(id="m1", chat_id="c", contact_id="bob@s.whatsapp.net", contact_short="Bob", timestamp=ts, text="hi")
        )
        self.assertEqual("chat> [09:30:15] Bob: hi", line)

    def test_sender_falls_back_to_identifier_and_me(self) -> None:
        self.assertEqual("4915550001", self.formatter.sender_label(Message(id="m", chat_id="c", contact_id="4915550001@s.whatsapp.net")))
        self.assertEqual("Me", self.formatter.sender_label(Message(id="m", chat_id="c", from_me=True)))

    def test_media_and_forwarded_markers(self) -> None:
        line = self.formatter.format_message(
            Message(
                id="pic1",
                chat_id="c",
                contact_short="Bob",
                forwarded=True,
                text="look",
                media=MediaDescriptor(link="x", mime_type="image/jpeg"),
            )
        )
        self.assertIn("(fwd) [image/jpeg: /show pic1] look", line)

    def test_chat_list_entry_and_unread_summary(self) -> None:
        chats = [Chat(id="a", name="Alice", unread=2), Chat(id="g@g.us", name="Team", is_group=True)]
        self.assertEqual(
            "chat> * Alice (id=a) (2 unread)",
            self.formatter.format_chat_list_entry(chats[0], selected_chat_id="a"),
        )
        self.assertEqual("chat>   Team [group] (id=g@g.us)", self.formatter.format_chat_list_entry(chats[1], selected_chat_id="a"))
        self.assertEqual("chat> Unread: Alice (2)", self.formatter.format_unread_summary(chats))
        self.assertIsNone(self.formatter.format_unread_summary(chats[1:]))

    def test_format_status(self) -> None:
        status = SessionStatus(
            connected=True,
            battery_charge=80,
            battery_loading=True,
            last_seen="today",
            state=ConnectionState.CONNECTED,
        )
        self.assertEqual("chat> Status: connected | battery 80% (charging) | last seen today", self.formatter.format_status(status))
        self.assertEqual(
            "chat> Status: awaiting pairing",
            self.formatter.format_status(SessionStatus(state=ConnectionState.AWAITING_PAIRING)),
        )


class ConsoleUiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.out = io.StringIO()
        self.ui = ConsoleUi(line_prefix="chat> ", show_command="", out=self.out)

    def tearDown(self) -> None:
        self.ui.close()

    def test_new_screen_uses_known_chat_name(self) -> None:
        self.ui.set_chats([Chat(id="a@s.whatsapp.net", name="Alice")])
        self.ui.new_screen("a@s.whatsapp.net", [])
        lines = self.out.getvalue().splitlines()
        self.assertIn("chat> --- Alice (a@s.whatsapp.net) ---", lines)
        self.assertIn("chat> (no messages)", lines)

    def test_unread_summary_printed_only_on_change(self) -> None:
        chats = [Chat(id="a", name="Alice", unread=1)]
        self.ui.set_chats(chats)
        self.ui.set_chats(chats)
        self.assertEqual(1, self.out.getvalue().count("Unread: Alice (1)"))

    def test_status_printed_only_on_change(self) -> None:
        self.ui.set_status(SessionStatus())
        self.ui.set_status(SessionStatus())
        self.ui.set_status(SessionStatus(connected=True, state=ConnectionState.CONNECTED))
        output = self.out.getvalue()
        self.assertEqual(1, output.count("Status: disconnected"))
        self.assertEqual(1, output.count("Status: connected"))

    def test_print_text_prefixes_each_line(self) -> None:
        self.ui.print_text("one\ntwo")
        self.ui.print_error("boom")
        self.assertEqual(["chat> one", "chat> two", "chat> Error: boom"], self.out.getvalue().splitlines())

    def test_show_chats(self) -> None:
        self.ui.show_chats([])
        self.ui.show_chats([Chat(id="a", name="Alice")])
        lines = self.out.getvalue().splitlines()
        self.assertEqual(["chat> No chats yet.", "chat> Chats:", "chat>   Alice (id=a)"], lines)


if __name__ == "__main__":
    unittest.main()

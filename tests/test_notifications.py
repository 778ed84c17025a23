import io
import unittest
from unittest.mock import patch

from termchat.notifications import NotificationError, Notifier


class NotifierTests(unittest.TestCase):
    def test_disabled_is_noop(self) -> None:
        stream = io.StringIO()
        with patch("termchat.notifications.subprocess.Popen") as popen:
            Notifier(enabled=False, bell_stream=stream).notify("Bob", "hi")
        popen.assert_not_called()
        self.assertEqual("", stream.getvalue())

    def test_terminal_bell(self) -> None:
        stream = io.StringIO()
        Notifier(enabled=True, use_terminal_bell=True, bell_stream=stream).notify("Bob", "hi")
        self.assertEqual("\a", stream.getvalue())

    def test_desktop_notification(self) -> None:
        with (
            patch("termchat.notifications.shutil.which", return_value="/usr/bin/notify-send"),
            patch("termchat.notifications.subprocess.Popen") as popen,
        ):
            Notifier(enabled=True, timeout_seconds=5).notify("Bob", "hi")
        args = popen.call_args.args[0]
        self.assertEqual(["/usr/bin/notify-send", "--expire-time", "5000", "Bob", "hi"], args)

    def test_missing_notifier_raises(self) -> None:
        with patch("termchat.notifications.shutil.which", return_value=None):
            with self.assertRaises(NotificationError):
                Notifier(enabled=True).notify("Bob", "hi")


if __name__ == "__main__":
    unittest.main()

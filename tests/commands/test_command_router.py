import unittest

from termchat.commands.router import CommandRouter
from termchat.models import Command


class CommandRouterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.calls: list[tuple[str, tuple[str, ...]]] = []
        self.usages: list[tuple[str, str]] = []
        self.unknown: list[str] = []
        self.router = CommandRouter(
            on_usage=lambda name, usage: self.usages.append((name, usage)),
            on_unknown=self.unknown.append,
        )
        self.router.register("login", lambda params: self.calls.append(("login", params)), aliases=("connect",))
        self.router.register(
            "select",
            lambda params: self.calls.append(("select", params)),
            usage="<chat-id>",
            min_params=1,
        )

    def test_dispatches_by_name_and_alias(self) -> None:
        self.assertTrue(self.router.handle(Command.of("login")))
        self.assertTrue(self.router.handle(Command.of("CONNECT")))
        self.assertEqual([("login", ()), ("login", ())], self.calls)

    def test_missing_params_report_usage(self) -> None:
        self.assertTrue(self.router.handle(Command.of("select")))
        self.assertEqual([("select", "<chat-id>")], self.usages)
        self.assertEqual([], self.calls)

    def test_unknown_command(self) -> None:
        self.assertFalse(self.router.handle(Command.of("warp", "9")))
        self.assertEqual(["warp"], self.unknown)

    def test_duplicate_registration_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.router.register("connect", lambda params: None)

    def test_usages_in_registration_order(self) -> None:
        self.assertEqual([("login", ""), ("select", "<chat-id>")], self.router.usages())


if __name__ == "__main__":
    unittest.main()

import asyncio
import unittest

import httpx
from tenacity import stop_after_attempt, wait_none

from termchat.backends.media_download import fetch_media, is_remote_link


class MediaDownloadTests(unittest.TestCase):
    def test_is_remote_link(self) -> None:
        self.assertTrue(is_remote_link("https://example.com/a.jpg"))
        self.assertTrue(is_remote_link("http://example.com/a.jpg"))
        self.assertFalse(is_remote_link("/tmp/a.jpg"))
        self.assertFalse(is_remote_link("file:///tmp/a.jpg"))

    def test_fetch_retries_transport_errors(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, content=b"payload")

        async def scenario() -> bytes:
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                fast_fetch = fetch_media.retry_with(wait=wait_none())
                return await fast_fetch(client, "https://example.com/file")

        self.assertEqual(b"payload", asyncio.run(scenario()))
        self.assertEqual(3, calls["n"])

    def test_fetch_gives_up_after_max_attempts(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        async def scenario() -> bytes:
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                fast_fetch = fetch_media.retry_with(wait=wait_none(), stop=stop_after_attempt(2))
                return await fast_fetch(client, "https://example.com/file")

        with self.assertRaises(httpx.ReadTimeout):
            asyncio.run(scenario())

    def test_http_status_errors_are_not_retried(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(500)

        async def scenario() -> bytes:
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await fetch_media.retry_with(wait=wait_none())(client, "https://example.com/file")

        with self.assertRaises(httpx.HTTPStatusError):
            asyncio.run(scenario())
        self.assertEqual(1, calls["n"])


if __name__ == "__main__":
    unittest.main()

import asyncio
import unittest
from io import BytesIO
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
from PIL import Image

from imagebot.app import ImageBotClient, MessageHandler
from imagebot.errors import BackendReportedError
from imagebot.model import ImageResult
from imagebot.reply import APOLOGY, MAX_MESSAGE_LENGTH, PROCESSING_TEXT

CHANNEL_ID = 1001


def png_bytes():
    buf = BytesIO()
    Image.new("RGB", (4, 4), "red").save(buf, "PNG")
    return buf.getvalue()


class FakeBackend:
    def __init__(self, results):
        self.results = list(results)
        self.requests = []

    async def submit(self, request):
        self.requests.append(request)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def aclose(self):
        pass


def make_message(content, channel_id=CHANNEL_ID, bot=False):
    message = MagicMock()
    message.id = 42
    message.content = content
    message.author.bot = bot
    message.channel.id = channel_id
    placeholder = MagicMock()
    placeholder.edit = AsyncMock()
    message.reply = AsyncMock(return_value=placeholder)
    return message, placeholder


class TestMessageHandler(unittest.IsolatedAsyncioTestCase):

    def make_handler(self, results, attempts=3):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        self.addAsyncCleanup(http.aclose)
        backend = FakeBackend(results)
        handler = MessageHandler(backend, {CHANNEL_ID}, attempts=attempts, http=http)
        return handler, backend

    async def test_ignores_bots(self):
        handler, backend = self.make_handler([])
        message, _ = make_message("a cat", bot=True)

        await handler.handle(message)

        message.reply.assert_not_awaited()
        self.assertEqual(backend.requests, [])

    async def test_ignores_other_channels(self):
        handler, backend = self.make_handler([])
        message, _ = make_message("a cat", channel_id=999)

        await handler.handle(message)

        message.reply.assert_not_awaited()

    async def test_ignores_blank_messages(self):
        handler, _ = self.make_handler([])
        message, _ = make_message("   ")

        await handler.handle(message)

        message.reply.assert_not_awaited()

    async def test_translation_error_is_replied_verbatim(self):
        handler, backend = self.make_handler([])
        message, _ = make_message("a cat !sparkly")

        await handler.handle(message)

        message.reply.assert_awaited_once()
        text = message.reply.await_args.args[0]
        self.assertIn("!sparkly", text)
        self.assertIn("!anime", text)
        self.assertEqual(backend.requests, [])

    async def test_all_succeed(self):
        results = [ImageResult(content=png_bytes()) for _ in range(3)]
        handler, backend = self.make_handler(results)
        message, placeholder = make_message("a cat !anime")

        await handler.handle(message)

        message.reply.assert_awaited_once_with(PROCESSING_TEXT)
        placeholder.edit.assert_awaited_once()
        kwargs = placeholder.edit.await_args.kwargs
        self.assertEqual(kwargs["content"], "")
        self.assertEqual(len(kwargs["attachments"]), 3)
        self.assertEqual(len(backend.requests), 3)
        self.assertEqual(backend.requests[0].style_preset, "anime")

    async def test_partial_failure_keeps_images(self):
        results = [
            ImageResult(content=png_bytes()),
            BackendReportedError("NSFW content detected"),
            ImageResult(content=png_bytes()),
        ]
        handler, _ = self.make_handler(results)
        message, placeholder = make_message("a cat")

        await handler.handle(message)

        kwargs = placeholder.edit.await_args.kwargs
        self.assertEqual(len(kwargs["attachments"]), 2)
        error_lines = [line for line in kwargs["content"].splitlines() if line.startswith("> ")]
        self.assertEqual(error_lines, ["> Got an error from the backend: NSFW content detected"])

    async def test_all_fail(self):
        results = [BackendReportedError("down"), BackendReportedError("down")]
        handler, _ = self.make_handler(results, attempts=2)
        message, placeholder = make_message("a cat")

        await handler.handle(message)

        kwargs = placeholder.edit.await_args.kwargs
        self.assertNotIn("attachments", kwargs)
        lines = kwargs["content"].splitlines()
        self.assertEqual(lines[0], APOLOGY)
        self.assertEqual(lines[1:], ["> Got an error from the backend: down"] * 2)

    async def test_reply_failure_is_logged(self):
        handler, _ = self.make_handler([ImageResult(content=png_bytes())], attempts=1)
        message, _ = make_message("a cat")
        message.reply.side_effect = RuntimeError("discord unavailable")

        with self.assertLogs("imagebot.app", level="ERROR"):
            await handler.handle(message)

    async def test_reply_failure_cancels_attempts(self):
        counts = {"finished": 0, "cancelled": 0}

        class SlowBackend(FakeBackend):
            async def submit(self, request):
                try:
                    await asyncio.sleep(0.2)
                except asyncio.CancelledError:
                    counts["cancelled"] += 1
                    raise
                counts["finished"] += 1
                return ImageResult(content=png_bytes())

        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        self.addAsyncCleanup(http.aclose)
        handler = MessageHandler(SlowBackend([]), {CHANNEL_ID}, attempts=3, http=http)
        message, _ = make_message("a cat")

        async def forbidden(*args, **kwargs):
            await asyncio.sleep(0.05)
            raise RuntimeError("Forbidden")

        message.reply.side_effect = forbidden

        with self.assertLogs("imagebot.app", level="ERROR"):
            await handler.handle(message)
        await asyncio.sleep(0.3)

        self.assertEqual(counts, {"finished": 0, "cancelled": 3})

    async def test_long_errors_fit_in_one_message(self):
        html = "<html><body>" + "Service Unavailable " * 75 + "</body></html>"
        results = [BackendReportedError(html) for _ in range(3)]
        handler, _ = self.make_handler(results)
        message, placeholder = make_message("a cat")

        await handler.handle(message)

        content = placeholder.edit.await_args.kwargs["content"]
        self.assertLessEqual(len(content), MAX_MESSAGE_LENGTH)
        lines = content.splitlines()
        self.assertEqual(lines[0], APOLOGY)
        self.assertEqual(len(lines), 4)
        self.assertTrue(all(line.startswith("> ") for line in lines[1:]))


class TestImageBotClient(unittest.IsolatedAsyncioTestCase):

    async def test_close_runs_after_handler_failure(self):
        handler = MagicMock()
        handler.aclose = AsyncMock(side_effect=RuntimeError("already closed"))
        client = ImageBotClient(handler)

        with patch("discord.Client.close", new_callable=AsyncMock) as base_close:
            with self.assertRaises(RuntimeError):
                await client.close()

        base_close.assert_awaited_once()


if __name__ == "__main__":
    unittest.main()

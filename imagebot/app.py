# imagebot/app.py

import asyncio
import logging
from typing import AbstractSet, Optional

import discord
import httpx

from config.settings import load_bot_config, settings

from .backend_client import ImageBackend, build_backend
from .errors import TranslationError
from .fanout import generate
from .prompt_parse import DEFAULT_MODIFIERS, ModifierTable, translate, with_defaults
from .reply import (
    PROCESSING_TEXT,
    collect_attachments,
    format_error_block,
    format_partial_failure,
)

logger = logging.getLogger(__name__)


class MessageHandler:
    """Routes one chat message through translate -> fan-out -> reply."""

    def __init__(
        self,
        backend: ImageBackend,
        allowed_channels: AbstractSet[int],
        attempts: int = 3,
        modifiers: ModifierTable = DEFAULT_MODIFIERS,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.backend = backend
        self.allowed_channels = frozenset(allowed_channels)
        self.attempts = attempts
        self.modifiers = modifiers
        self.http = http or httpx.AsyncClient(timeout=60)

    def accepts(self, message: discord.Message) -> bool:
        if message.author.bot:
            return False
        if message.channel.id not in self.allowed_channels:
            return False
        return bool(message.content.strip())

    async def handle(self, message: discord.Message) -> None:
        if not self.accepts(message):
            return
        try:
            await self.process(message)
        except Exception:
            logger.exception("[Handler] Failed to handle message %s", message.id)

    async def process(self, message: discord.Message) -> None:
        logger.debug("[Handler] Received message from %s: %s", message.author, message.content)

        try:
            request = translate(message.content, self.modifiers)
        except TranslationError as e:
            logger.info("[Handler] Rejected message %s: %s", message.id, e)
            await message.reply(str(e))
            return

        generation = asyncio.create_task(generate(self.backend, request, self.attempts))
        try:
            reply_msg = await message.reply(PROCESSING_TEXT)
            outcome = await generation
        finally:
            if not generation.done():
                generation.cancel()

        files, render_errors = await collect_attachments(outcome, self.http)
        errors = outcome.errors + render_errors

        if files:
            content = format_partial_failure(errors, outcome.attempts) if errors else ""
            await reply_msg.edit(content=content, attachments=files)
        else:
            await reply_msg.edit(content=format_error_block(errors))

    async def aclose(self) -> None:
        await self.backend.aclose()
        await self.http.aclose()


class ImageBotClient(discord.Client):
    def __init__(self, handler: MessageHandler):
        intents = discord.Intents.default()
        intents.guild_messages = True
        intents.message_content = True
        super().__init__(intents=intents, max_messages=100)
        self.handler = handler

    async def on_ready(self) -> None:
        logger.info("%s is connected", self.user)

    async def on_message(self, message: discord.Message) -> None:
        await self.handler.handle(message)

    async def close(self) -> None:
        try:
            await self.handler.aclose()
        finally:
            await super().close()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_bot_config(settings.BOT_CONFIG_PATH)
    discord_token = settings.require("DISCORD_TOKEN")

    handler = MessageHandler(
        backend=build_backend(settings),
        allowed_channels=set(config.allowed_channels),
        attempts=config.attempts,
        modifiers=with_defaults(DEFAULT_MODIFIERS, negative_prompt=config.negative_prompt),
    )
    client = ImageBotClient(handler)
    logger.info("Listening on %d channel(s), %d attempt(s) per message", len(config.allowed_channels), config.attempts)
    client.run(discord_token, log_handler=None)


if __name__ == "__main__":
    main()

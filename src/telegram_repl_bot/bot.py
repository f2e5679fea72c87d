"""Telegram update dispatch and bot lifecycle."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from contextlib import suppress
from pathlib import Path

from .repl import (
    BackendUnavailableError,
    ProcessSupervisor,
    ReplClient,
    ReplError,
    get_codec,
    open_client,
    render,
)
from .settings import BotSettings
from .telegram import Message, TelegramClient, TelegramError, Update

logger = logging.getLogger(__name__)

# Telegram commands
COMMAND_START = "/start"
COMMAND_RESET = "/reset"
COMMAND_PUBLICS = "/publics"

# Telegram messages
MESSAGE_WELCOME = "Welcome!"
MESSAGE_FAILED_TO_RESET = "Failed to reset REPL."
MESSAGE_NO_OUTPUT = "(no output)"
MESSAGE_UNPROCESSABLE = "Error: couldn't process your message."


class UpdateHandler:
    """Turns one Telegram update into REPL calls and a reply."""

    def __init__(
        self, settings: BotSettings, telegram: TelegramClient, repl: ReplClient
    ) -> None:
        self.settings = settings
        self.telegram = telegram
        self.repl = repl

    def is_allowed(self, username: str | None) -> bool:
        return username is not None and username in self.settings.allowed_ids

    async def handle(self, update: Update) -> None:
        message = update.effective_message
        if message is None:
            logger.warning("Received update has no message")
            return

        username = message.from_user.username if message.from_user else None
        if not self.is_allowed(username):
            logger.warning("Received an update from an unauthorized user: @%s", username)
            reply = f"Your id: @{username} is not allowed to use this bot."
        else:
            try:
                await asyncio.to_thread(self.telegram.send_chat_action, message.chat.id)
            except TelegramError as e:
                logger.warning("Failed to send chat action: %s", e)
            reply = await self.reply_for(message)

        try:
            await asyncio.to_thread(
                self.telegram.send_message, message.chat.id, reply or MESSAGE_NO_OUTPUT
            )
        except TelegramError as e:
            logger.error("Failed to send message: %s", e)

    async def reply_for(self, message: Message) -> str:
        """Build the reply text for an authorized message."""
        if message.text is not None:
            text = message.text
            if text == COMMAND_START:
                return MESSAGE_WELCOME
            if text == COMMAND_RESET:
                try:
                    return render(await self.repl.reset())
                except ReplError as e:
                    logger.error("Failed to reset REPL: %s", e)
                    return MESSAGE_FAILED_TO_RESET
            if text == COMMAND_PUBLICS:
                try:
                    return render(await self.repl.publics())
                except ReplError as e:
                    return f"Error: {e}"
            try:
                return render(await self.repl.eval(text))
            except ReplError as e:
                return f"Error: {e}"

        if message.document is not None:
            return await self._load_document(message.document.file_id)

        return MESSAGE_UNPROCESSABLE

    async def _load_document(self, file_id: str) -> str:
        try:
            path = await asyncio.to_thread(self._download, file_id)
        except (TelegramError, OSError) as e:
            return f"Failed to download the document: {e}"

        try:
            return render(await self.repl.load_file(path))
        except ReplError as e:
            return f"Failed to load file: {e}"
        finally:
            try:
                os.remove(path)
            except OSError as e:
                logger.warning("Failed to delete file %s: %s", path, e)

    def _download(self, file_id: str) -> Path:
        """Download an uploaded file into the temp dir (blocking)."""
        file = self.telegram.get_file(file_id)
        url = self.telegram.file_url(file)
        # Keep the last path segment so the REPL sees a meaningful file name
        dest = self.settings.temp_dir / url.rsplit("/", 1)[-1]
        return self.telegram.download(url, dest)


async def poll_updates(
    telegram: TelegramClient, handler: UpdateHandler, interval: int
) -> None:
    """Long-poll for updates and handle them one at a time, forever."""
    offset = 0
    while True:
        try:
            updates = await asyncio.to_thread(telegram.get_updates, offset, interval)
        except TelegramError as e:
            logger.error("Error while receiving updates: %s", e)
            await asyncio.sleep(interval)
            continue

        for update in updates:
            offset = max(offset, update.update_id + 1)
            try:
                await handler.handle(update)
            except Exception as e:
                # One bad update must not stop the loop
                logger.exception("Failed to handle update %d: %s", update.update_id, e)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):  # Windows
            loop.add_signal_handler(sig, stop.set)


async def run(settings: BotSettings, *, telegram: TelegramClient | None = None) -> int:
    """Connect to the REPL, serve Telegram updates until a signal arrives.

    Returns the process exit status.
    """
    supervisor = ProcessSupervisor(settings, get_codec(settings.protocol))
    try:
        repl = await open_client(settings, supervisor)
    except BackendUnavailableError as e:
        logger.critical("Cannot continue without a REPL: %s", e)
        return 1

    telegram = telegram or TelegramClient(settings.api_token)
    try:
        me = await asyncio.to_thread(telegram.get_me)
        logger.info("Starting bot: @%s (%s)", me.username, me.first_name)
        # getUpdates does not work while a webhook is set
        await asyncio.to_thread(telegram.delete_webhook)
    except TelegramError as e:
        logger.critical("Failed to start bot: %s", e)
        await repl.shutdown()
        await supervisor.stop()
        return 1

    stop = asyncio.Event()
    _install_signal_handlers(stop)

    handler = UpdateHandler(settings, telegram, repl)
    poller = asyncio.create_task(poll_updates(telegram, handler, settings.monitor_interval))
    waiter = asyncio.create_task(stop.wait())
    await asyncio.wait({poller, waiter}, return_when=asyncio.FIRST_COMPLETED)

    logger.info("Shutting down...")
    # Waits for an in-flight exchange to finish before closing
    await repl.shutdown()
    waiter.cancel()
    poller.cancel()
    try:
        with suppress(asyncio.CancelledError):
            await poller
    finally:
        await supervisor.stop()
    return 1

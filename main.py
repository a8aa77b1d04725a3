"""Courier entry point — run the bot on the transport chosen in ``config``.

Registers a couple of example subscribers, starts long polling or the
webhook listener, and shuts the transport down cleanly on SIGINT/SIGTERM.
"""

import asyncio
import re
import signal

import config
from bot.dispatcher import UpdateCategory
from bot.polling import PollingOptions
from bot.telegram import TelegramBot
from bot.webhook import WebhookOptions
from core.logger import CourierLogger
from sdk.exceptions import BotError
from sdk.models import Message

logger = CourierLogger.get_logger()


def register_handlers(bot: TelegramBot) -> None:
    """Attach the example subscribers used by the stock runner."""

    async def greet(message: Message, match: re.Match[str]) -> None:
        logger.info("/start received", extra={"chat_id": message.chat.id, "command": match.group(0)})
        try:
            await asyncio.to_thread(bot.client.send_message, message.chat.id, "👋 Hello! I am up and listening.")
        except BotError as exc:
            logger.warning("Could not answer /start", extra={"chat_id": message.chat.id, "error": str(exc)})

    def log_message(message: Message) -> None:
        logger.info("Message received", extra={"chat_id": message.chat.id, "message_id": message.message_id})

    def log_error(error: Exception) -> None:
        logger.warning("Transport error", extra={"error": str(error), "error_type": type(error).__name__})

    bot.on_text(r"^/start\b", greet)
    bot.on(UpdateCategory.MESSAGE, log_message)
    bot.on(UpdateCategory.POLLING_ERROR, log_error)
    bot.on(UpdateCategory.WEBHOOK_ERROR, log_error)


async def run() -> None:
    """Start the configured transport and block until a stop signal arrives.

    Raises:
        EnvironmentError: If ``BOT_TOKEN`` is not set.
    """
    if not config.BOT_TOKEN:
        raise EnvironmentError("BOT_TOKEN environment variable is not set or is empty.")

    bot = TelegramBot.from_config()
    register_handlers(bot)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # Windows event loops
            pass

    if config.TRANSPORT == "webhook":
        await bot.open_webhook(WebhookOptions.from_config())
    else:
        await bot.start_polling(PollingOptions.from_config())
    logger.info("Courier bot is running", extra={"transport": bot.transport_mode.value})

    try:
        await stop.wait()
    finally:
        await bot.shutdown()


if __name__ == "__main__":
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass

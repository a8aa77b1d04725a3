"""TelegramBot — the application-facing bot object.

Owns one :class:`~bot.dispatcher.UpdateDispatcher`, and lazily one
:class:`~bot.polling.PollingEngine` and one :class:`~bot.webhook.WebhookReceiver`
that are reused across activations.  Polling and the webhook are mutually
exclusive: activating one while the other is active fails with
:class:`~sdk.exceptions.ConfigurationError` and leaves the active transport
untouched.  All transitions are serialised, and every coroutine returns
only once the transport has fully reached the requested state.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import re
from typing import Any

from core.logger import CourierLogger
from sdk.client import TelegramClient
from sdk.exceptions import ConfigurationError
from sdk.models import Update
from bot.dispatcher import Callback, ReplyListener, UpdateCategory, UpdateDispatcher
from bot.polling import PollingEngine, PollingOptions
from bot.webhook import WebhookOptions, WebhookReceiver

logger = CourierLogger.get_logger()


class TransportMode(str, enum.Enum):
    NONE = "none"
    POLLING = "polling"
    WEBHOOK = "webhook"


class TelegramBot:
    """Update ingestion and dispatch for one bot token.

    Usage::

        bot = TelegramBot(TelegramClient(token))
        bot.on_text(r"^/start", greet)
        bot.on(UpdateCategory.CALLBACK_QUERY, handle_button)
        await bot.start_polling(timeout=30)
        ...
        await bot.stop_polling()

    Args:
        client: Request layer used by the polling engine.
        only_first_match: Stop text matching after the first hit.
    """

    def __init__(self, client: TelegramClient, only_first_match: bool = False) -> None:
        self.client = client
        self.dispatcher = UpdateDispatcher(only_first_match=only_first_match)
        self._polling: PollingEngine | None = None
        self._webhook: WebhookReceiver | None = None
        self._transition = asyncio.Lock()

    @classmethod
    def from_config(cls) -> TelegramBot:
        """Build a bot from the environment-derived :mod:`config` values."""
        import config  # deferred so importing this module never loads .env

        client = TelegramClient(config.BOT_TOKEN, api_url=config.API_BASE_URL)
        return cls(client, only_first_match=config.ONLY_FIRST_MATCH)

    # ── transport state ──────────────────────────────────────────────────

    @property
    def transport_mode(self) -> TransportMode:
        if self.is_polling():
            return TransportMode.POLLING
        if self.has_open_webhook():
            return TransportMode.WEBHOOK
        return TransportMode.NONE

    @property
    def polling(self) -> PollingEngine | None:
        return self._polling

    @property
    def webhook(self) -> WebhookReceiver | None:
        return self._webhook

    def is_polling(self) -> bool:
        return self._polling.is_polling() if self._polling is not None else False

    def has_open_webhook(self) -> bool:
        return self._webhook.is_open() if self._webhook is not None else False

    # ── polling ──────────────────────────────────────────────────────────

    async def start_polling(self, options: PollingOptions | None = None, **overrides: Any) -> None:
        """Start long polling, restarting a running loop by default.

        Keyword *overrides* replace fields of *options* (``timeout``,
        ``interval``, ``restart``, ``params``, ``delete_webhook``).

        Raises:
            ConfigurationError: If a webhook is open or no token is set.
        """
        options = dataclasses.replace(options or PollingOptions(), **overrides)
        async with self._transition:
            if self.has_open_webhook():
                raise ConfigurationError("Polling and WebHook are mutually exclusive")
            if self._polling is None:
                self._polling = PollingEngine(self.client, self.dispatcher)
            self.dispatcher.bind_loop(asyncio.get_running_loop())
            await self._polling.start(options)

    async def stop_polling(self) -> None:
        """Stop polling after the in-flight request; no-op when stopped."""
        async with self._transition:
            if self._polling is None:
                return
            await self._polling.stop()

    # ── webhook ──────────────────────────────────────────────────────────

    async def open_webhook(self, options: WebhookOptions | None = None, **overrides: Any) -> None:
        """Open the webhook listener; no-op when already open.

        Raises:
            ConfigurationError: If polling is active, or the TLS material
                or address is unusable.
        """
        async with self._transition:
            if self.is_polling():
                raise ConfigurationError("WebHook and Polling are mutually exclusive")
            if self._webhook is None:
                self._webhook = WebhookReceiver(self.dispatcher)
            if options is not None or overrides:
                options = dataclasses.replace(options or self._webhook.options, **overrides)
            self.dispatcher.bind_loop(asyncio.get_running_loop())
            await self._webhook.open(options)

    async def close_webhook(self) -> None:
        """Close the listener once in-flight requests finish; no-op when closed."""
        async with self._transition:
            if self._webhook is None:
                return
            await self._webhook.close()

    # ── dispatch surface ─────────────────────────────────────────────────

    def process_update(self, update: Update | dict[str, Any]) -> UpdateCategory | None:
        """Dispatch an update obtained through a custom ingestion path."""
        return self.dispatcher.process_update(update)

    def on(self, category: UpdateCategory | str, callback: Callback) -> None:
        self.dispatcher.on(category, callback)

    def off(self, category: UpdateCategory | str, callback: Callback) -> bool:
        return self.dispatcher.off(category, callback)

    def on_text(self, pattern: str | re.Pattern[str], callback: Callback) -> None:
        self.dispatcher.on_text(pattern, callback)

    def on_reply_to_message(self, chat_id: int | str, message_id: int, callback: Callback) -> int:
        return self.dispatcher.on_reply_to_message(chat_id, message_id, callback)

    def remove_reply_listener(self, listener_id: int) -> ReplyListener | None:
        return self.dispatcher.remove_reply_listener(listener_id)

    async def shutdown(self) -> None:
        """Stop whichever transport is active and wait for async subscribers."""
        await self.stop_polling()
        await self.close_webhook()
        await self.dispatcher.drain()
        logger.info("Bot shut down")

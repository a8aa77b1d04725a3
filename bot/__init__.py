"""Update ingestion and dispatch — transports, dispatcher, and the bot facade.

This package may import from ``core/`` and ``sdk/`` only; ``config`` is read
lazily by the ``from_config`` constructors.
"""

from bot.dispatcher import (
    MESSAGE_TYPES,
    ReplyListener,
    TextMatcher,
    UpdateCategory,
    UpdateDispatcher,
)
from bot.polling import Backoff, PollingEngine, PollingOptions, PollingState
from bot.telegram import TelegramBot, TransportMode
from bot.webhook import WebhookOptions, WebhookReceiver

__all__ = [
    # Facade
    "TelegramBot",
    "TransportMode",
    # Dispatcher
    "UpdateDispatcher",
    "UpdateCategory",
    "MESSAGE_TYPES",
    "TextMatcher",
    "ReplyListener",
    # Polling
    "PollingEngine",
    "PollingOptions",
    "PollingState",
    "Backoff",
    # Webhook
    "WebhookReceiver",
    "WebhookOptions",
]

"""Telegram Bot API SDK — Pydantic models, the request client, and exceptions.

The :class:`TelegramClient` class is the single outbound seam: every
request goes through :meth:`TelegramClient.call`.

Usage::

    from sdk import TelegramClient, RemoteAPIError
    from sdk.models import Message, Update
"""

from sdk.client import TelegramClient
from sdk.exceptions import (
    BotError,
    ConfigurationError,
    MalformedResponseError,
    RemoteAPIError,
)

__all__ = [
    "TelegramClient",
    "BotError",
    "ConfigurationError",
    "MalformedResponseError",
    "RemoteAPIError",
]

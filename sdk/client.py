"""TelegramClient -- the request layer every Bot API call goes through.

All calls funnel into :meth:`TelegramClient.call`, which POSTs a JSON
payload with ``requests``, unwraps the ``{"ok": …, "result": …}`` envelope
and maps failures onto :mod:`sdk.exceptions`.  :meth:`TelegramClient.acall`
offloads the same blocking call via :func:`asyncio.to_thread` so the event
loop is never blocked; the polling engine uses it for ``getUpdates``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Union

import requests

from sdk.exceptions import ConfigurationError, MalformedResponseError, RemoteAPIError

_sdk_logger = logging.getLogger("sdk.client")


class TelegramClient:
    """Client-side service layer for the Telegram Bot API.

    Only the endpoints this package relies on get a named wrapper; anything
    else is reachable through :meth:`call` directly.
    """

    _DEFAULT_TIMEOUT: int = 10
    _DEFAULT_API_URL: str = "https://api.telegram.org"

    def __init__(
        self,
        token: str | None,
        api_url: str = _DEFAULT_API_URL,
        timeout: int = _DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        """Create a new client for the bot identified by *token*.

        Args:
            token: Bot token issued by BotFather.  May be ``None``; every
                call then fails with :class:`ConfigurationError`.
            api_url: API root, useful for proxying and testing.
            timeout: Default request timeout in seconds.
            session: Optional :class:`requests.Session` for connection reuse.
        """
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    def build_url(self, endpoint: str) -> str:
        """Return the full URL for *endpoint*."""
        return f"{self._api_url}/bot{self._token}/{endpoint.lstrip('/')}"

    # ------------------------------------------------------------------
    #  Core request
    # ------------------------------------------------------------------

    def call(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """POST *params* to *endpoint* and return the unwrapped ``result``.

        Raises:
            ConfigurationError: If no bot token was configured.
            MalformedResponseError: If the body is not a JSON API envelope.
            RemoteAPIError: If the API answers ``ok: false`` or a non-2xx status.
            requests.RequestException: On transport-level failures.
        """
        if not self._token:
            raise ConfigurationError("Telegram Bot Token not provided!")

        payload = {key: value for key, value in (params or {}).items() if value is not None}
        _sdk_logger.debug("HTTP request", extra={"endpoint": endpoint, "params": sorted(payload)})
        response = self._session.post(
            self.build_url(endpoint),
            json=payload,
            timeout=timeout if timeout is not None else self._timeout,
        )

        try:
            body = response.json()
        except ValueError:
            raise MalformedResponseError(
                f"Error parsing Telegram response: {response.text[:200]!r}",
                response=response.text,
            )
        if not isinstance(body, dict) or not isinstance(body.get("ok"), bool):
            raise MalformedResponseError("Response is not a Bot API envelope", response=response.text)

        if not body["ok"] or not response.ok:
            raise RemoteAPIError(response.status_code, body)
        return body.get("result")

    async def acall(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Run :meth:`call` inside a thread to keep the event loop free."""
        return await asyncio.to_thread(self.call, endpoint, params, timeout)

    # ------------------------------------------------------------------
    #  Endpoint wrappers
    # ------------------------------------------------------------------

    def get_me(self) -> Dict[str, Any]:
        """Return basic information about the bot as a ``User`` dict."""
        return self.call("getMe")

    def get_updates(
        self,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
        timeout: Optional[int] = 0,
        allowed_updates: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Receive incoming updates using long polling.

        The HTTP timeout is stretched past the server-side hold *timeout* so
        an idle long-poll is never mistaken for a network failure.
        """
        payload: Dict[str, Any] = {
            "offset": offset,
            "limit": limit,
            "timeout": timeout,
            "allowed_updates": allowed_updates,
        }
        return self.call("getUpdates", payload, timeout=(timeout or 0) + self._timeout)

    def set_webhook(
        self,
        url: str,
        max_connections: Optional[int] = None,
        allowed_updates: Optional[List[str]] = None,
        drop_pending_updates: Optional[bool] = None,
        secret_token: Optional[str] = None,
    ) -> bool:
        """Register *url* as the outgoing webhook for this bot."""
        payload: Dict[str, Any] = {
            "url": url,
            "max_connections": max_connections,
            "allowed_updates": allowed_updates,
            "drop_pending_updates": drop_pending_updates,
            "secret_token": secret_token,
        }
        return self.call("setWebhook", payload)

    def delete_webhook(self, drop_pending_updates: Optional[bool] = None) -> bool:
        """Remove webhook integration so ``getUpdates`` can be used."""
        return self.call("deleteWebhook", {"drop_pending_updates": drop_pending_updates})

    def get_webhook_info(self) -> Dict[str, Any]:
        """Return the current webhook status."""
        return self.call("getWebhookInfo")

    def send_message(
        self,
        chat_id: Union[int, str],
        text: str,
        parse_mode: Optional[str] = None,
        reply_to_message_id: Optional[int] = None,
        reply_markup: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send a text message and return the sent ``Message`` dict."""
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "reply_to_message_id": reply_to_message_id,
            "reply_markup": reply_markup,
        }
        return self.call("sendMessage", payload)

"""Tests for TelegramClient and the exception hierarchy."""

import sys
import os
from unittest.mock import MagicMock

import pytest
import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sdk.client import TelegramClient
from sdk.exceptions import (
    BotError,
    ConfigurationError,
    MalformedResponseError,
    RemoteAPIError,
)


def _response(body=None, status_code: int = 200, text: str = "") -> MagicMock:
    """Build a fake :class:`requests.Response`."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    resp.text = text
    if isinstance(body, Exception):
        resp.json.side_effect = body
    else:
        resp.json.return_value = body
    return resp


def _client(resp: MagicMock | None = None, token: str | None = "123:abc") -> TelegramClient:
    session = MagicMock()
    if resp is not None:
        session.post.return_value = resp
    return TelegramClient(token, api_url="https://api.example.com/", session=session)


# ── Exceptions ───────────────────────────────────────────────────────────────


class TestExceptions:
    """Validate the error taxonomy."""

    def test_remote_api_error_attributes(self) -> None:
        exc = RemoteAPIError(403, {"ok": False, "error_code": 403, "description": "Forbidden"})
        assert exc.status_code == 403
        assert exc.error_code == 403
        assert exc.description == "Forbidden"
        assert exc.code == "ETELEGRAM"
        assert "403" in str(exc)
        assert "Forbidden" in str(exc)

    def test_remote_api_error_default_body(self) -> None:
        exc = RemoteAPIError(500)
        assert exc.response_body == {}
        assert exc.retry_after is None
        assert "Unknown error" in str(exc)

    def test_retry_after_is_read_from_parameters(self) -> None:
        exc = RemoteAPIError(429, {"ok": False, "description": "Too Many Requests", "parameters": {"retry_after": 7}})
        assert exc.retry_after == 7

    def test_codes(self) -> None:
        assert ConfigurationError("x").code == "EFATAL"
        assert MalformedResponseError("x").code == "EPARSE"
        assert str(ConfigurationError("no token")) == "EFATAL: no token"

    def test_hierarchy(self) -> None:
        for cls in (ConfigurationError, MalformedResponseError, RemoteAPIError):
            assert issubclass(cls, BotError)
        assert issubclass(BotError, Exception)


# ── Construction ─────────────────────────────────────────────────────────────


class TestClientInit:
    """Validate client initialisation."""

    def test_api_url_strip(self) -> None:
        c = TelegramClient("123:abc", api_url="https://api.example.com/")
        assert c.build_url("getMe") == "https://api.example.com/bot123:abc/getMe"

    def test_default_timeout(self) -> None:
        c = TelegramClient("123:abc")
        assert c._timeout == 10

    def test_has_token(self) -> None:
        assert TelegramClient("123:abc").has_token is True
        assert TelegramClient(None).has_token is False
        assert TelegramClient("").has_token is False


# ── call ─────────────────────────────────────────────────────────────────────


class TestCall:
    """Validate envelope unwrapping and error mapping in call()."""

    def test_success_returns_result(self) -> None:
        c = _client(_response({"ok": True, "result": {"id": 1}}))
        assert c.call("getMe") == {"id": 1}

    def test_none_params_are_dropped(self) -> None:
        c = _client(_response({"ok": True, "result": []}))
        c.call("getUpdates", {"offset": None, "timeout": 5})
        payload = c._session.post.call_args.kwargs["json"]
        assert payload == {"timeout": 5}

    def test_missing_token_raises_configuration_error(self) -> None:
        c = _client(token=None)
        with pytest.raises(ConfigurationError):
            c.call("getMe")
        c._session.post.assert_not_called()

    def test_ok_false_raises_remote_error(self) -> None:
        c = _client(_response({"ok": False, "error_code": 401, "description": "Unauthorized"}, status_code=401))
        with pytest.raises(RemoteAPIError) as exc_info:
            c.call("getMe")
        assert exc_info.value.status_code == 401
        assert exc_info.value.description == "Unauthorized"

    def test_non_json_raises_malformed(self) -> None:
        c = _client(_response(ValueError("No JSON"), text="<html>bad gateway</html>", status_code=502))
        with pytest.raises(MalformedResponseError) as exc_info:
            c.call("getMe")
        assert "bad gateway" in exc_info.value.response

    def test_missing_ok_flag_raises_malformed(self) -> None:
        c = _client(_response({"result": []}))
        with pytest.raises(MalformedResponseError):
            c.call("getUpdates")

    def test_network_error_propagates(self) -> None:
        c = _client()
        c._session.post.side_effect = requests.ConnectionError("offline")
        with pytest.raises(requests.ConnectionError):
            c.call("getMe")

    def test_explicit_timeout_is_forwarded(self) -> None:
        c = _client(_response({"ok": True, "result": []}))
        c.call("getUpdates", {}, timeout=42)
        assert c._session.post.call_args.kwargs["timeout"] == 42

    @pytest.mark.asyncio
    async def test_acall_runs_call(self) -> None:
        c = _client(_response({"ok": True, "result": True}))
        assert await c.acall("deleteWebhook") is True


# ── Endpoint wrappers ────────────────────────────────────────────────────────


class TestEndpointMethods:
    """Spot-check the named endpoint wrappers."""

    def test_get_updates_stretches_http_timeout(self) -> None:
        c = _client(_response({"ok": True, "result": []}))
        assert c.get_updates(offset=10, timeout=30) == []
        kwargs = c._session.post.call_args.kwargs
        assert kwargs["json"] == {"offset": 10, "timeout": 30}
        assert kwargs["timeout"] == 40

    def test_send_message_payload(self) -> None:
        c = _client(_response({"ok": True, "result": {"message_id": 1}}))
        assert c.send_message(chat_id=42, text="hello") == {"message_id": 1}
        args, kwargs = c._session.post.call_args
        assert args[0].endswith("/sendMessage")
        assert kwargs["json"] == {"chat_id": 42, "text": "hello"}

    def test_webhook_management(self) -> None:
        c = _client(_response({"ok": True, "result": True}))
        assert c.set_webhook("https://example.com/hook", secret_token="s3cret") is True
        assert c._session.post.call_args.kwargs["json"] == {"url": "https://example.com/hook", "secret_token": "s3cret"}
        assert c.delete_webhook() is True
        assert c._session.post.call_args.args[0].endswith("/deleteWebhook")

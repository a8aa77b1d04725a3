"""Exception hierarchy for the Courier Telegram SDK and transports."""

from typing import Any, Dict, Optional


class BotError(Exception):
    """Base class for every error raised by this package.

    Attributes:
        code: Short machine-readable error code (``EFATAL``, ``EPARSE``,
            ``ETELEGRAM``).
    """

    code: str = "EBOT"

    def __init__(self, message: str) -> None:
        super().__init__(f"{self.code}: {message}")


class ConfigurationError(BotError):
    """Missing credential, conflicting transports or unreadable TLS material.

    Never retried; raised to the caller of the offending lifecycle call.
    """

    code = "EFATAL"


class MalformedResponseError(BotError):
    """A response (or pushed request) body that is not a valid API envelope.

    Attributes:
        response: The raw body text, when available.
    """

    code = "EPARSE"

    def __init__(self, message: str, response: Optional[str] = None) -> None:
        """Initialise with a description and the offending body."""
        super().__init__(message)
        self.response = response


class RemoteAPIError(BotError):
    """Logical failure reported by the Telegram Bot API (``ok: false``).

    Attributes:
        status_code: HTTP status code returned by the API.
        response_body: Raw response body as a dict, when available.
        error_code: ``error_code`` from the body (falls back to the status).
        description: ``description`` from the body.
        retry_after: Seconds the API asked us to wait, if it said so.
    """

    code = "ETELEGRAM"

    def __init__(self, status_code: int, response_body: Optional[Dict[str, Any]] = None) -> None:
        """Initialise with the HTTP status code and optional body."""
        self.status_code = status_code
        self.response_body = response_body or {}
        self.error_code = self.response_body.get("error_code", status_code)
        self.description = self.response_body.get("description", "Unknown error")
        parameters = self.response_body.get("parameters") or {}
        self.retry_after: Optional[int] = parameters.get("retry_after")
        super().__init__(f"API error {self.error_code}: {self.description}")

"""Inbound webhook receiver.

Serves a threaded werkzeug WSGI server on a background thread.  Every
request except the health check is treated as a pushed update: the body is
parsed as JSON, answered, and handed to the dispatcher.  TLS material is
loaded before the socket is bound, so a bad key or certificate fails
:meth:`WebhookReceiver.open` without ever listening.

Connections carry a single request (HTTP/1.0, no keep-alive) and are
counted from accept, so closing waits for a client that is still sending
headers.  Clients that stall mid-request are dropped after a timeout.
"""

from __future__ import annotations

import asyncio
import dataclasses
import hmac
import json
import os
import ssl
import tempfile
import threading
from typing import Any, Callable, Iterable

from werkzeug.serving import ThreadedWSGIServer, WSGIRequestHandler
from werkzeug.wrappers import Request, Response

from core.logger import CourierLogger
from sdk.exceptions import ConfigurationError, MalformedResponseError
from bot.dispatcher import UpdateCategory, UpdateDispatcher

logger = CourierLogger.get_logger()

SECRET_TOKEN_HEADER = "X-Telegram-Bot-Api-Secret-Token"


@dataclasses.dataclass(frozen=True)
class WebhookOptions:
    """Listener settings.

    Attributes:
        host: Interface to bind.
        port: Port to bind (``0`` picks a free one).
        key_path: PEM private key; requires *cert_path*.
        cert_path: PEM certificate chain; requires *key_path*.
        pfx_path: PKCS#12 bundle holding key and certificates.
        pfx_password: Passphrase for *pfx_path*.
        health_path: Path that always answers ``200``.
        path: When set, pushes to any other path are refused with ``401``.
        secret_token: When set, must match the secret-token request header.
    """

    host: str = "0.0.0.0"
    port: int = 8443
    key_path: str | None = None
    cert_path: str | None = None
    pfx_path: str | None = None
    pfx_password: str | None = None
    health_path: str = "/healthz"
    path: str | None = None
    secret_token: str | None = None

    @property
    def uses_tls(self) -> bool:
        return bool(self.pfx_path or self.key_path or self.cert_path)

    @classmethod
    def from_config(cls) -> WebhookOptions:
        """Build options from the environment-derived :mod:`config` values."""
        import config  # deferred so importing this module never loads .env

        return cls(
            host=config.WEBHOOK_HOST,
            port=config.WEBHOOK_PORT,
            key_path=config.WEBHOOK_KEY,
            cert_path=config.WEBHOOK_CERT,
            pfx_path=config.WEBHOOK_PFX,
            pfx_password=config.WEBHOOK_PFX_PASSWORD,
            health_path=config.WEBHOOK_HEALTH_PATH,
            path=config.WEBHOOK_PATH,
            secret_token=config.WEBHOOK_SECRET_TOKEN,
        )


# ── TLS material ─────────────────────────────────────────────────────────────


def load_ssl_context(options: WebhookOptions) -> ssl.SSLContext | None:
    """Return a server :class:`ssl.SSLContext`, or ``None`` for plain HTTP.

    Raises:
        ConfigurationError: If the material is incomplete or unreadable.
    """
    if not options.uses_tls:
        return None

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        if options.pfx_path:
            _load_pkcs12(context, options.pfx_path, options.pfx_password)
        elif options.key_path and options.cert_path:
            context.load_cert_chain(certfile=options.cert_path, keyfile=options.key_path)
        else:
            raise ConfigurationError("Both a key and a certificate are required for HTTPS")
    except (OSError, ssl.SSLError, ValueError) as exc:
        logger.error("Failed to load TLS material", extra={"error": str(exc)})
        raise ConfigurationError(f"Failed to load TLS material: {exc}") from exc
    return context


def _load_pkcs12(context: ssl.SSLContext, pfx_path: str, password: str | None) -> None:
    """Load a PKCS#12 bundle into *context*.

    :mod:`ssl` only reads PEM files, so the bundle is converted and written
    to a private temporary file that is removed straight after loading.
    """
    from cryptography.hazmat.primitives.serialization import (
        Encoding,
        NoEncryption,
        PrivateFormat,
        pkcs12,
    )

    with open(pfx_path, "rb") as fh:
        data = fh.read()
    key, cert, extra_certs = pkcs12.load_key_and_certificates(
        data, password.encode() if password else None,
    )
    if key is None or cert is None:
        raise ValueError(f"PKCS#12 bundle {pfx_path!r} has no key or certificate")

    pem = cert.public_bytes(Encoding.PEM)
    pem += b"".join(extra.public_bytes(Encoding.PEM) for extra in extra_certs or [])
    pem += key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())

    fd, pem_path = tempfile.mkstemp(suffix=".pem")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(pem)
        context.load_cert_chain(certfile=pem_path)
    finally:
        os.unlink(pem_path)


# ── Server ───────────────────────────────────────────────────────────────────


class _PushRequestHandler(WSGIRequestHandler):
    """Serve exactly one request per connection.

    Without keep-alive a connection and a request are the same thing, so
    the server can track in-flight work per accepted connection.
    """

    protocol_version = "HTTP/1.0"
    # Seconds a client may stall mid-request before the connection is dropped.
    timeout: float | None = 10.0


class _PushServer(ThreadedWSGIServer):
    """Threaded WSGI server that reports each connection from accept to close.

    *on_accept* runs on the serving thread before the worker thread starts,
    so once :meth:`shutdown` returns every accepted connection is counted.
    """

    def __init__(
        self,
        host: str,
        port: int,
        app: Callable[..., Iterable[bytes]],
        on_accept: Callable[[], None],
        on_done: Callable[[], None],
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self._on_accept = on_accept
        self._on_done = on_done
        super().__init__(host, port, app, handler=_PushRequestHandler, ssl_context=ssl_context)

    def process_request(self, request: Any, client_address: Any) -> None:
        self._on_accept()
        try:
            super().process_request(request, client_address)
        except BaseException:
            self._on_done()
            raise

    def process_request_thread(self, request: Any, client_address: Any) -> None:
        try:
            super().process_request_thread(request, client_address)
        finally:
            self._on_done()


# ── Receiver ─────────────────────────────────────────────────────────────────


class WebhookReceiver:
    """HTTP(S) listener for pushed updates.

    Args:
        dispatcher: Receives every successfully parsed update.  May be
            ``None``; updates are then acknowledged and dropped.
        options: Default listener settings for :meth:`open`.
    """

    def __init__(
        self,
        dispatcher: UpdateDispatcher | None = None,
        options: WebhookOptions | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._options = options or WebhookOptions()
        self._server: _PushServer | None = None
        self._thread: threading.Thread | None = None
        self._in_flight = 0
        self._idle = threading.Condition()
        self._transition = asyncio.Lock()

    @property
    def options(self) -> WebhookOptions:
        return self._options

    @property
    def port(self) -> int | None:
        """Port actually bound, or ``None`` while closed."""
        return self._server.server_port if self._server is not None else None

    def is_open(self) -> bool:
        return self._server is not None

    # ── lifecycle ────────────────────────────────────────────────────────

    async def open(self, options: WebhookOptions | None = None) -> None:
        """Bind and start serving; a no-op when already open.

        Raises:
            ConfigurationError: If TLS material cannot be loaded or the
                address cannot be bound.
        """
        async with self._transition:
            if self._server is not None:
                logger.debug("Webhook already open")
                return
            if options is not None:
                self._options = options
            opts = self._options

            ssl_context = load_ssl_context(opts)
            try:
                server = _PushServer(
                    opts.host, opts.port, self.wsgi_app,
                    on_accept=self._enter, on_done=self._leave, ssl_context=ssl_context,
                )
            except (OSError, SystemExit) as exc:
                # werkzeug reports bind failures by exiting.
                raise ConfigurationError(f"Cannot bind webhook listener on {opts.host}:{opts.port}") from exc

            self._server = server
            self._thread = threading.Thread(target=server.serve_forever, name="courier-webhook", daemon=True)
            self._thread.start()
            logger.info(
                "Webhook listening",
                extra={"host": opts.host, "port": server.server_port, "tls": ssl_context is not None, "health_path": opts.health_path},
            )

    async def close(self) -> None:
        """Stop accepting connections and wait for accepted ones to finish."""
        async with self._transition:
            server = self._server
            if server is None:
                return
            await asyncio.to_thread(self._shutdown, server)
            self._server = None
            self._thread = None
            logger.info("Webhook closed")

    def _shutdown(self, server: _PushServer) -> None:
        server.shutdown()
        server.server_close()
        with self._idle:
            self._idle.wait_for(lambda: self._in_flight == 0)
        if self._thread is not None:
            self._thread.join()

    # ── request handling ─────────────────────────────────────────────────

    def _enter(self) -> None:
        with self._idle:
            self._in_flight += 1

    def _leave(self) -> None:
        with self._idle:
            self._in_flight -= 1
            self._idle.notify_all()

    def wsgi_app(self, environ: dict[str, Any], start_response: Any) -> Iterable[bytes]:
        """WSGI entry point."""
        return self.handle(Request(environ))(environ, start_response)

    def handle(self, request: Request) -> Response:
        """Answer one inbound request."""
        opts = self._options
        if request.path == opts.health_path:
            return Response("OK", status=200, mimetype="text/plain")

        if opts.path is not None and request.path != opts.path:
            logger.warning("Webhook push to unexpected path", extra={"path": request.path})
            return Response(status=401)
        if request.method != "POST":
            return Response(status=405, headers={"Allow": "POST"})
        if opts.secret_token is not None:
            supplied = request.headers.get(SECRET_TOKEN_HEADER, "")
            if not hmac.compare_digest(supplied, opts.secret_token):
                logger.warning("Webhook push with bad secret token", extra={"path": request.path})
                return Response(status=401)

        body = request.get_data()
        try:
            raw = json.loads(body)
        except ValueError as exc:
            self._report_error(MalformedResponseError(f"Webhook body is not JSON: {exc}", response=body[:200].decode("utf-8", "replace")))
            return Response(status=400)
        if not isinstance(raw, dict):
            self._report_error(MalformedResponseError("Webhook body is not an object", response=body[:200].decode("utf-8", "replace")))
            return Response(status=400)

        self._dispatch(raw)
        return Response(status=200)

    def _dispatch(self, raw: dict[str, Any]) -> None:
        if self._dispatcher is None:
            logger.debug("Webhook update received with no dispatcher attached", extra={"update_id": raw.get("update_id")})
            return
        try:
            self._dispatcher.process_update(raw)
        except Exception as exc:
            logger.exception("Webhook dispatch failed", extra={"update_id": raw.get("update_id")})
            self._report_error(exc)

    def _report_error(self, error: Exception) -> None:
        logger.warning("Webhook error", extra={"error": str(error), "error_type": type(error).__name__})
        if self._dispatcher is not None:
            self._dispatcher.emit_error(UpdateCategory.WEBHOOK_ERROR, error)

"""Long-polling engine.

Runs a single sequential ``getUpdates`` loop as one :mod:`asyncio` task.
Each successful batch is handed to the :class:`~bot.dispatcher.UpdateDispatcher`
in array order, after which the acknowledgement cursor (``offset``) moves
to ``max(update_id) + 1``.  Failed cycles leave the cursor untouched, are
published on the ``polling_error`` channel, and are retried after a capped
exponential backoff.  Stopping never aborts an in-flight request: the loop
finishes its current cycle and does not start another.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
from typing import Any, Mapping

from core.logger import CourierLogger
from sdk.client import TelegramClient
from sdk.exceptions import ConfigurationError, MalformedResponseError
from bot.dispatcher import UpdateCategory, UpdateDispatcher

logger = CourierLogger.get_logger()


class PollingState(str, enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclasses.dataclass(frozen=True)
class PollingOptions:
    """Settings for one polling run.

    Attributes:
        timeout: Seconds the API may hold a ``getUpdates`` call open.
        interval: Seconds to wait between two successful cycles.
        restart: Restart a running loop with these options (``True``) or
            leave it alone (``False``).
        params: Extra ``getUpdates`` parameters (``limit``,
            ``allowed_updates``, …).  A ``timeout`` here overrides the field.
        delete_webhook: Call ``deleteWebhook`` once before the first fetch.
    """

    timeout: int = 10
    interval: float = 0.3
    restart: bool = True
    params: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    delete_webhook: bool = True

    @classmethod
    def from_config(cls) -> PollingOptions:
        """Build options from the environment-derived :mod:`config` values."""
        import config  # deferred so importing this module never loads .env

        params: dict[str, Any] = {}
        if config.POLLING_LIMIT is not None:
            params["limit"] = config.POLLING_LIMIT
        if config.POLLING_ALLOWED_UPDATES:
            params["allowed_updates"] = list(config.POLLING_ALLOWED_UPDATES)
        return cls(timeout=config.POLLING_TIMEOUT, interval=config.POLLING_INTERVAL, params=params)


class Backoff:
    """Capped exponential delay between failed polling cycles.

    Delays run ``initial``, ``initial * factor``, … up to ``maximum``.  A
    ``retry_after`` hint on the error raises the delay to at least that
    value, still capped at ``maximum``.  The delay is grown step by step
    and clamped each time, so any number of consecutive failures is safe.
    """

    def __init__(self, initial: float = 1.0, maximum: float = 30.0, factor: float = 2.0) -> None:
        self.initial = initial
        self.maximum = maximum
        self.factor = factor
        self.failures = 0
        self._delay = min(maximum, initial)

    def next_delay(self, error: BaseException | None = None) -> float:
        delay = self._delay
        self._delay = min(self.maximum, self._delay * self.factor)
        self.failures += 1
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            delay = min(self.maximum, max(delay, float(retry_after)))
        return delay

    def reset(self) -> None:
        self.failures = 0
        self._delay = min(self.maximum, self.initial)


class PollingEngine:
    """Cancellable long-poll loop feeding an :class:`UpdateDispatcher`.

    One engine runs at most one loop task at a time, so there is never more
    than one outstanding ``getUpdates`` request.
    """

    # Added to the hold timeout so an idle long-poll is not a network error.
    HTTP_GRACE: float = 10.0

    def __init__(
        self,
        client: TelegramClient,
        dispatcher: UpdateDispatcher,
        backoff: Backoff | None = None,
    ) -> None:
        self._client = client
        self._dispatcher = dispatcher
        self._backoff = backoff or Backoff()
        self._state = PollingState.STOPPED
        self._offset: int | None = None
        self._options: PollingOptions | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._transition = asyncio.Lock()

    # ── introspection ────────────────────────────────────────────────────

    @property
    def state(self) -> PollingState:
        return self._state

    @property
    def offset(self) -> int | None:
        """Next ``update_id`` to request, or ``None`` before the first batch."""
        return self._offset

    @property
    def options(self) -> PollingOptions | None:
        return self._options

    def is_polling(self) -> bool:
        return (
            self._task is not None
            and not self._task.done()
            and self._state is PollingState.RUNNING
        )

    # ── lifecycle ────────────────────────────────────────────────────────

    async def start(self, options: PollingOptions | None = None) -> None:
        """Start the loop, or restart it when ``options.restart`` is set.

        Raises:
            ConfigurationError: If the client has no bot token.
        """
        options = options or PollingOptions()
        async with self._transition:
            if self._task is not None and not self._task.done():
                if not options.restart:
                    logger.debug("Polling already running, restart not requested")
                    return
                logger.info("Restarting polling loop")
                await self._stop_locked()

            if not self._client.has_token:
                raise ConfigurationError("Telegram Bot Token not provided!")

            self._state = PollingState.STARTING
            self._options = options
            if self._offset is None and options.params.get("offset") is not None:
                self._offset = int(options.params["offset"])
            self._backoff.reset()
            self._stop_event = asyncio.Event()
            self._task = asyncio.create_task(self._run(options, self._stop_event), name="courier-polling")
            self._state = PollingState.RUNNING
            logger.info("Polling started", extra={"timeout": options.timeout, "interval": options.interval, "offset": self._offset})

    async def stop(self) -> None:
        """Stop after the current cycle; a no-op when already stopped."""
        async with self._transition:
            await self._stop_locked()

    async def _stop_locked(self) -> None:
        task = self._task
        if task is None or task.done():
            self._task = None
            self._state = PollingState.STOPPED
            return

        self._state = PollingState.STOPPING
        if self._stop_event is not None:
            self._stop_event.set()
        logger.info("Stopping polling, waiting for the current cycle", extra={"offset": self._offset})
        try:
            await asyncio.shield(task)
        finally:
            if task.done():
                self._task = None
                self._state = PollingState.STOPPED
        logger.info("Polling stopped", extra={"offset": self._offset})

    # ── loop ─────────────────────────────────────────────────────────────

    async def _run(self, options: PollingOptions, stop_event: asyncio.Event) -> None:
        if options.delete_webhook and not stop_event.is_set():
            try:
                await self._client.acall("deleteWebhook")
            except Exception as exc:
                self._report_error(exc, endpoint="deleteWebhook")

        while not stop_event.is_set():
            params = self._request_params(options)
            try:
                result = await self._client.acall(
                    "getUpdates", params, timeout=params["timeout"] + self.HTTP_GRACE,
                )
                if not isinstance(result, list):
                    raise MalformedResponseError("getUpdates result is not an array", response=repr(result))
            except Exception as exc:
                self._report_error(exc, endpoint="getUpdates")
                delay = self._backoff.next_delay(exc)
                logger.debug("Backing off after polling error", extra={"delay": delay, "failures": self._backoff.failures})
                await self._wait(stop_event, delay)
                continue

            self._backoff.reset()
            self._fan_out(result)
            await self._wait(stop_event, options.interval)

    def _request_params(self, options: PollingOptions) -> dict[str, Any]:
        params: dict[str, Any] = {"timeout": options.timeout}
        params.update(options.params)
        params["offset"] = self._offset
        return params

    def _fan_out(self, updates: list[Any]) -> None:
        """Hand a batch to the dispatcher, then advance the cursor."""
        if updates:
            logger.debug("Received updates", extra={"count": len(updates), "offset": self._offset})
        ids: list[int] = []
        for update in updates:
            if isinstance(update, dict) and isinstance(update.get("update_id"), int):
                ids.append(update["update_id"])
            try:
                self._dispatcher.process_update(update)
            except Exception:
                logger.exception("Dispatch failed", extra={"update_id": update.get("update_id") if isinstance(update, dict) else None})
        if ids:
            self._offset = max(self._offset or 0, max(ids) + 1)

    def _report_error(self, error: Exception, endpoint: str) -> None:
        logger.warning(
            "Polling request failed",
            extra={"endpoint": endpoint, "offset": self._offset, "error": str(error), "error_type": type(error).__name__},
        )
        if not self._dispatcher.emit_error(UpdateCategory.POLLING_ERROR, error):
            logger.error("Unhandled polling error", extra={"endpoint": endpoint, "error": str(error)})

    @staticmethod
    async def _wait(stop_event: asyncio.Event, delay: float) -> None:
        """Sleep for *delay* seconds, waking early when a stop is requested."""
        if delay <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

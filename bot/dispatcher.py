"""Update dispatcher — classification and fan-out of incoming updates.

Routes each incoming Telegram update to the subscribers registered for its
category, runs text-pattern matchers and reply listeners for messages, and
isolates every subscriber so one failing callback never stops the others.

Subscribers may be plain callables (invoked inline) or coroutine functions
(scheduled as tasks, never awaited by the dispatcher).  All listener tables
are guarded by one lock and iterated over snapshots, so registration from
one thread may race freely with dispatch from another.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import dataclasses
import enum
import inspect
import itertools
import re
import threading
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from core.logger import CourierLogger
from sdk.models import Message, Update

logger = CourierLogger.get_logger()

Callback = Callable[..., Any]


# ── Categories ───────────────────────────────────────────────────────────────

class UpdateCategory(str, enum.Enum):
    """Every notification channel the dispatcher can publish on."""

    MESSAGE = "message"

    # Message subtypes
    TEXT = "text"
    AUDIO = "audio"
    DOCUMENT = "document"
    PHOTO = "photo"
    STICKER = "sticker"
    VIDEO = "video"
    VOICE = "voice"
    CONTACT = "contact"
    LOCATION = "location"
    NEW_CHAT_MEMBERS = "new_chat_members"
    LEFT_CHAT_MEMBER = "left_chat_member"
    NEW_CHAT_TITLE = "new_chat_title"
    NEW_CHAT_PHOTO = "new_chat_photo"
    DELETE_CHAT_PHOTO = "delete_chat_photo"
    GROUP_CHAT_CREATED = "group_chat_created"

    EDITED_MESSAGE = "edited_message"
    EDITED_MESSAGE_TEXT = "edited_message_text"
    EDITED_MESSAGE_CAPTION = "edited_message_caption"
    CHANNEL_POST = "channel_post"
    CHANNEL_POST_TEXT = "channel_post_text"
    CHANNEL_POST_CAPTION = "channel_post_caption"
    EDITED_CHANNEL_POST = "edited_channel_post"
    EDITED_CHANNEL_POST_TEXT = "edited_channel_post_text"
    EDITED_CHANNEL_POST_CAPTION = "edited_channel_post_caption"

    INLINE_QUERY = "inline_query"
    CHOSEN_INLINE_RESULT = "chosen_inline_result"
    CALLBACK_QUERY = "callback_query"

    # Transport failures
    POLLING_ERROR = "polling_error"
    WEBHOOK_ERROR = "webhook_error"


# Message keys that each trigger a subtype notification when populated.
MESSAGE_TYPES: tuple[UpdateCategory, ...] = (
    UpdateCategory.TEXT,
    UpdateCategory.AUDIO,
    UpdateCategory.DOCUMENT,
    UpdateCategory.PHOTO,
    UpdateCategory.STICKER,
    UpdateCategory.VIDEO,
    UpdateCategory.VOICE,
    UpdateCategory.CONTACT,
    UpdateCategory.LOCATION,
    UpdateCategory.NEW_CHAT_MEMBERS,
    UpdateCategory.LEFT_CHAT_MEMBER,
    UpdateCategory.NEW_CHAT_TITLE,
    UpdateCategory.NEW_CHAT_PHOTO,
    UpdateCategory.DELETE_CHAT_PHOTO,
    UpdateCategory.GROUP_CHAT_CREATED,
)

# Update fields in priority order; the first populated one wins.
UPDATE_FIELDS: tuple[str, ...] = (
    "message",
    "edited_message",
    "channel_post",
    "edited_channel_post",
    "inline_query",
    "chosen_inline_result",
    "callback_query",
)

# Branches that publish the category plus derived ``_text`` / ``_caption``.
_DERIVED_BRANCHES: dict[str, tuple[UpdateCategory, UpdateCategory, UpdateCategory]] = {
    "edited_message": (
        UpdateCategory.EDITED_MESSAGE,
        UpdateCategory.EDITED_MESSAGE_TEXT,
        UpdateCategory.EDITED_MESSAGE_CAPTION,
    ),
    "channel_post": (
        UpdateCategory.CHANNEL_POST,
        UpdateCategory.CHANNEL_POST_TEXT,
        UpdateCategory.CHANNEL_POST_CAPTION,
    ),
    "edited_channel_post": (
        UpdateCategory.EDITED_CHANNEL_POST,
        UpdateCategory.EDITED_CHANNEL_POST_TEXT,
        UpdateCategory.EDITED_CHANNEL_POST_CAPTION,
    ),
}


# ── Listener records ─────────────────────────────────────────────────────────

@dataclasses.dataclass(frozen=True, slots=True)
class TextMatcher:
    """A compiled pattern tested against every incoming message text."""
    pattern: re.Pattern[str]
    callback: Callback


@dataclasses.dataclass(frozen=True, slots=True)
class ReplyListener:
    """Waits for replies to one message in one chat."""
    id: int
    chat_id: int | str
    message_id: int
    callback: Callback


def _normalize_id(value: int | str) -> int | str:
    """Coerce numeric identifiers (``"42"``) to ``int``; keep ``@usernames``."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return value


# ── Notification channel ─────────────────────────────────────────────────────

class NotificationChannel:
    """Ordered subscriber list for one :class:`UpdateCategory`."""

    def __init__(self, category: UpdateCategory, lock: threading.RLock) -> None:
        self.category = category
        self._lock = lock
        self._subscribers: list[Callback] = []

    def subscribe(self, callback: Callback) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callback) -> bool:
        """Remove the first registration of *callback*; ``False`` if absent."""
        with self._lock:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                return False
            return True

    def snapshot(self) -> tuple[Callback, ...]:
        with self._lock:
            return tuple(self._subscribers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)


# ── Dispatcher ───────────────────────────────────────────────────────────────

class UpdateDispatcher:
    """Classify updates and fan them out to registered subscribers.

    Args:
        only_first_match: Stop text matching after the first matcher whose
            pattern matches.  Otherwise every matching pattern fires.
    """

    def __init__(self, only_first_match: bool = False) -> None:
        self.only_first_match = only_first_match
        self._lock = threading.RLock()
        self._channels: dict[UpdateCategory, NotificationChannel] = {
            category: NotificationChannel(category, self._lock) for category in UpdateCategory
        }
        self._text_matchers: list[TextMatcher] = []
        self._reply_listeners: list[ReplyListener] = []
        self._reply_ids = itertools.count(1)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    # ── registration ─────────────────────────────────────────────────────

    def bind_loop(self, loop: asyncio.AbstractEventLoop | None) -> None:
        """Event loop that runs coroutine subscribers dispatched off-loop."""
        self._loop = loop

    def channel(self, category: UpdateCategory | str) -> NotificationChannel:
        """Return the channel for *category* (enum member or its value)."""
        return self._channels[UpdateCategory(category)]

    def on(self, category: UpdateCategory | str, callback: Callback) -> None:
        self.channel(category).subscribe(callback)

    def off(self, category: UpdateCategory | str, callback: Callback) -> bool:
        return self.channel(category).unsubscribe(callback)

    def on_text(self, pattern: str | re.Pattern[str], callback: Callback) -> None:
        """Register *callback* for message texts matching *pattern*.

        Matchers are tested in registration order with :meth:`re.Pattern.search`;
        the callback receives ``(message, match)``.
        """
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        with self._lock:
            self._text_matchers.append(TextMatcher(pattern=compiled, callback=callback))

    def on_reply_to_message(self, chat_id: int | str, message_id: int, callback: Callback) -> int:
        """Register *callback* for replies to *message_id* in *chat_id*.

        Returns the listener id used by :meth:`remove_reply_listener`.
        """
        with self._lock:
            listener = ReplyListener(
                id=next(self._reply_ids),
                chat_id=_normalize_id(chat_id),
                message_id=int(message_id),
                callback=callback,
            )
            self._reply_listeners.append(listener)
        logger.debug("Reply listener registered", extra={"listener_id": listener.id, "chat_id": chat_id, "message_id": message_id})
        return listener.id

    def remove_reply_listener(self, listener_id: int) -> ReplyListener | None:
        """Remove and return the listener with *listener_id*, or ``None``."""
        with self._lock:
            for index, listener in enumerate(self._reply_listeners):
                if listener.id == listener_id:
                    return self._reply_listeners.pop(index)
        return None

    def text_matchers(self) -> tuple[TextMatcher, ...]:
        with self._lock:
            return tuple(self._text_matchers)

    def reply_listeners(self) -> tuple[ReplyListener, ...]:
        with self._lock:
            return tuple(self._reply_listeners)

    # ── publishing ───────────────────────────────────────────────────────

    def publish(self, category: UpdateCategory, *args: Any) -> int:
        """Invoke every subscriber of *category*; return how many there were."""
        subscribers = self._channels[category].snapshot()
        for callback in subscribers:
            self._invoke(callback, *args, category=category)
        return len(subscribers)

    def emit_error(self, category: UpdateCategory, error: BaseException) -> bool:
        """Publish a transport error; ``False`` when nobody is listening."""
        return self.publish(category, error) > 0

    # ── dispatch ─────────────────────────────────────────────────────────

    def process_update(self, raw: Update | dict[str, Any]) -> UpdateCategory | None:
        """Classify one update and notify its subscribers.

        Returns the branch category that was published, or ``None`` when the
        update was malformed or carried no known payload.
        """
        if isinstance(raw, Update):
            update = raw
        else:
            try:
                update = Update.model_validate(raw)
            except ValidationError as exc:
                update_id = raw.get("update_id") if isinstance(raw, dict) else None
                logger.warning("Ignoring malformed update", extra={"update_id": update_id, "error": str(exc)})
                return None

        for field in UPDATE_FIELDS:
            payload = getattr(update, field)
            if payload is None:
                continue
            logger.debug("Dispatching update", extra={"update_id": update.update_id, "category": field})
            if field == "message":
                self._dispatch_message(payload)
                return UpdateCategory.MESSAGE
            if field in _DERIVED_BRANCHES:
                category, text_category, caption_category = _DERIVED_BRANCHES[field]
                self.publish(category, payload)
                if payload.text:
                    self.publish(text_category, payload)
                if payload.caption:
                    self.publish(caption_category, payload)
                return category
            category = UpdateCategory(field)
            self.publish(category, payload)
            return category

        logger.debug("Update has no known payload — skipping", extra={"update_id": update.update_id})
        return None

    def _dispatch_message(self, message: Message) -> None:
        self.publish(UpdateCategory.MESSAGE, message)
        for category in MESSAGE_TYPES:
            if getattr(message, category.value, None):
                self.publish(category, message)

        if message.text:
            self._run_text_matchers(message)

        if message.reply_to_message is not None:
            self._run_reply_listeners(message, message.reply_to_message)

    def _run_text_matchers(self, message: Message) -> None:
        text = message.text or ""
        for matcher in self.text_matchers():
            match = matcher.pattern.search(text)
            if match is None:
                continue
            logger.debug("Text matcher fired", extra={"message_id": message.message_id, "pattern": matcher.pattern.pattern})
            self._invoke(matcher.callback, message, match)
            if self.only_first_match:
                break

    def _run_reply_listeners(self, message: Message, original: Message) -> None:
        chat_id = _normalize_id(message.chat.id)
        for listener in self.reply_listeners():
            if listener.chat_id == chat_id and listener.message_id == original.message_id:
                self._invoke(listener.callback, message)

    # ── subscriber isolation ─────────────────────────────────────────────

    def _invoke(self, callback: Callback, *args: Any, category: UpdateCategory | None = None) -> None:
        try:
            result = callback(*args)
        except Exception:
            logger.exception("Subscriber raised", extra={"category": category, "callback": getattr(callback, "__qualname__", repr(callback))})
            return
        if inspect.isawaitable(result):
            self._schedule(result)

    def _schedule(self, awaitable: Awaitable[Any]) -> None:
        """Run a coroutine subscriber without waiting for it."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None:
            task = running.create_task(_as_coroutine(awaitable))
            self._tasks.add(task)
            task.add_done_callback(self._task_done)
        elif self._loop is not None and self._loop.is_running():
            future = asyncio.run_coroutine_threadsafe(_as_coroutine(awaitable), self._loop)
            future.add_done_callback(_report_future)
        else:
            # No loop anywhere: a synchronous caller injected the update.
            try:
                asyncio.run(_as_coroutine(awaitable))
            except Exception:
                logger.exception("Async subscriber raised")

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async subscriber raised", exc_info=exc)

    async def drain(self) -> None:
        """Wait for coroutine subscribers scheduled on the current loop."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def _as_coroutine(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


def _report_future(future: concurrent.futures.Future[Any]) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Async subscriber raised", exc_info=exc)

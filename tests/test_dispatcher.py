"""Tests for UpdateDispatcher classification, matchers and reply listeners."""

import sys
import os
import asyncio
import threading
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from bot.dispatcher import MESSAGE_TYPES, UpdateCategory, UpdateDispatcher
from sdk.models import Message, Update


def _message(update_id: int = 1, **fields) -> dict:
    body = {"message_id": 10, "chat": {"id": 1}}
    body.update(fields)
    return {"update_id": update_id, "message": body}


class _Recorder:
    """Subscribe to a set of categories and record (category, args) pairs."""

    def __init__(self, dispatcher: UpdateDispatcher, categories) -> None:
        self.events: list[tuple[UpdateCategory, tuple]] = []
        for category in categories:
            dispatcher.on(category, self._make(category))

    def _make(self, category):
        def record(*args):
            self.events.append((category, args))
        return record

    @property
    def categories(self) -> list[UpdateCategory]:
        return [category for category, _ in self.events]


# ── Branch selection ─────────────────────────────────────────────────────────


class TestProcessUpdate:
    """Validate which notifications an update produces."""

    def test_text_message(self) -> None:
        d = UpdateDispatcher()
        rec = _Recorder(d, UpdateCategory)
        assert d.process_update(_message(text="hi")) is UpdateCategory.MESSAGE
        assert rec.categories == [UpdateCategory.MESSAGE, UpdateCategory.TEXT]
        message = rec.events[0][1][0]
        assert isinstance(message, Message)
        assert message.text == "hi"

    def test_photo_with_caption(self) -> None:
        d = UpdateDispatcher()
        rec = _Recorder(d, UpdateCategory)
        d.process_update(_message(photo=[{"file_id": "p", "width": 1, "height": 1}], caption="look"))
        assert rec.categories == [UpdateCategory.MESSAGE, UpdateCategory.PHOTO]

    def test_multiple_subtypes_follow_fixed_order(self) -> None:
        d = UpdateDispatcher()
        rec = _Recorder(d, UpdateCategory)
        d.process_update(_message(
            text="hello",
            location={"latitude": 1.0, "longitude": 2.0},
            document={"file_id": "d"},
        ))
        assert rec.categories == [
            UpdateCategory.MESSAGE,
            UpdateCategory.TEXT,
            UpdateCategory.DOCUMENT,
            UpdateCategory.LOCATION,
        ]

    def test_service_messages(self) -> None:
        d = UpdateDispatcher()
        rec = _Recorder(d, UpdateCategory)
        d.process_update(_message(new_chat_members=[{"id": 5}], new_chat_title="Team"))
        assert rec.categories == [
            UpdateCategory.MESSAGE,
            UpdateCategory.NEW_CHAT_MEMBERS,
            UpdateCategory.NEW_CHAT_TITLE,
        ]

    def test_false_flags_do_not_fire(self) -> None:
        d = UpdateDispatcher()
        rec = _Recorder(d, UpdateCategory)
        d.process_update(_message(delete_chat_photo=False, group_chat_created=True))
        assert rec.categories == [UpdateCategory.MESSAGE, UpdateCategory.GROUP_CHAT_CREATED]

    def test_message_types_order(self) -> None:
        assert MESSAGE_TYPES[0] is UpdateCategory.TEXT
        assert MESSAGE_TYPES[-1] is UpdateCategory.GROUP_CHAT_CREATED
        assert len(MESSAGE_TYPES) == 15

    @pytest.mark.parametrize(
        "field, base, text_cat, caption_cat",
        [
            ("edited_message", UpdateCategory.EDITED_MESSAGE, UpdateCategory.EDITED_MESSAGE_TEXT, UpdateCategory.EDITED_MESSAGE_CAPTION),
            ("channel_post", UpdateCategory.CHANNEL_POST, UpdateCategory.CHANNEL_POST_TEXT, UpdateCategory.CHANNEL_POST_CAPTION),
            ("edited_channel_post", UpdateCategory.EDITED_CHANNEL_POST, UpdateCategory.EDITED_CHANNEL_POST_TEXT, UpdateCategory.EDITED_CHANNEL_POST_CAPTION),
        ],
    )
    def test_derived_text_and_caption(self, field, base, text_cat, caption_cat) -> None:
        d = UpdateDispatcher()
        rec = _Recorder(d, UpdateCategory)

        assert d.process_update({"update_id": 1, field: {"message_id": 1, "chat": {"id": 1}, "text": "t"}}) is base
        assert rec.categories == [base, text_cat]

        rec.events.clear()
        d.process_update({"update_id": 2, field: {"message_id": 2, "chat": {"id": 1}, "caption": "c"}})
        assert rec.categories == [base, caption_cat]

        rec.events.clear()
        d.process_update({"update_id": 3, field: {"message_id": 3, "chat": {"id": 1}}})
        assert rec.categories == [base]

    def test_edited_message_runs_no_matchers(self) -> None:
        d = UpdateDispatcher()
        cb = MagicMock()
        d.on_text(r".*", cb)
        d.process_update({"update_id": 1, "edited_message": {"message_id": 1, "chat": {"id": 1}, "text": "x"}})
        cb.assert_not_called()

    @pytest.mark.parametrize(
        "field, payload, category",
        [
            ("inline_query", {"id": "q1", "from": {"id": 1}, "query": "cats"}, UpdateCategory.INLINE_QUERY),
            ("chosen_inline_result", {"result_id": "r1", "from": {"id": 1}, "query": "cats"}, UpdateCategory.CHOSEN_INLINE_RESULT),
            ("callback_query", {"id": "c1", "from": {"id": 1}, "data": "ok"}, UpdateCategory.CALLBACK_QUERY),
        ],
    )
    def test_single_notification_branches(self, field, payload, category) -> None:
        d = UpdateDispatcher()
        rec = _Recorder(d, UpdateCategory)
        assert d.process_update({"update_id": 1, field: payload}) is category
        assert rec.categories == [category]

    def test_first_populated_field_wins(self) -> None:
        d = UpdateDispatcher()
        rec = _Recorder(d, UpdateCategory)
        d.process_update({
            "update_id": 1,
            "message": {"message_id": 1, "chat": {"id": 1}},
            "callback_query": {"id": "c1", "from": {"id": 1}},
        })
        assert UpdateCategory.CALLBACK_QUERY not in rec.categories

    def test_unknown_update_is_a_no_op(self) -> None:
        d = UpdateDispatcher()
        rec = _Recorder(d, UpdateCategory)
        assert d.process_update({"update_id": 9, "poll": {"id": "p"}}) is None
        assert rec.events == []

    @pytest.mark.parametrize(
        "raw",
        [
            {},
            {"update_id": "not-a-number"},
            {"update_id": 1, "message": {"text": "no id or chat"}},
            [1, 2, 3],
        ],
    )
    def test_malformed_update_is_a_no_op(self, raw) -> None:
        d = UpdateDispatcher()
        rec = _Recorder(d, UpdateCategory)
        assert d.process_update(raw) is None
        assert rec.events == []

    def test_accepts_model_instance(self) -> None:
        d = UpdateDispatcher()
        rec = _Recorder(d, [UpdateCategory.TEXT])
        d.process_update(Update.model_validate(_message(text="hey")))
        assert rec.categories == [UpdateCategory.TEXT]


# ── Subscriber management ────────────────────────────────────────────────────


class TestSubscribers:
    """Validate registration, removal and isolation."""

    def test_subscribers_run_in_registration_order(self) -> None:
        d = UpdateDispatcher()
        order: list[str] = []
        d.on("message", lambda m: order.append("a"))
        d.on(UpdateCategory.MESSAGE, lambda m: order.append("b"))
        d.process_update(_message())
        assert order == ["a", "b"]

    def test_off(self) -> None:
        d = UpdateDispatcher()
        cb = MagicMock()
        d.on(UpdateCategory.MESSAGE, cb)
        assert d.off(UpdateCategory.MESSAGE, cb) is True
        assert d.off(UpdateCategory.MESSAGE, cb) is False
        d.process_update(_message())
        cb.assert_not_called()

    def test_unknown_category_raises(self) -> None:
        d = UpdateDispatcher()
        with pytest.raises(ValueError):
            d.on("not_a_category", MagicMock())

    def test_failing_subscriber_does_not_stop_others(self) -> None:
        d = UpdateDispatcher()
        later = MagicMock()
        d.on(UpdateCategory.MESSAGE, MagicMock(side_effect=RuntimeError("boom")))
        d.on(UpdateCategory.MESSAGE, later)
        text = MagicMock()
        d.on(UpdateCategory.TEXT, text)
        d.process_update(_message(text="hi"))
        later.assert_called_once()
        text.assert_called_once()

    def test_emit_error_reports_listeners(self) -> None:
        d = UpdateDispatcher()
        err = RuntimeError("down")
        assert d.emit_error(UpdateCategory.POLLING_ERROR, err) is False
        cb = MagicMock()
        d.on(UpdateCategory.POLLING_ERROR, cb)
        assert d.emit_error(UpdateCategory.POLLING_ERROR, err) is True
        cb.assert_called_once_with(err)

    def test_concurrent_registration_and_dispatch(self) -> None:
        d = UpdateDispatcher()
        seen: list[int] = []
        d.on(UpdateCategory.MESSAGE, lambda m: seen.append(m.message_id))
        stop = threading.Event()

        def churn() -> None:
            while not stop.is_set():
                cb = lambda m: None  # noqa: E731
                d.on(UpdateCategory.MESSAGE, cb)
                d.on_text(r"x", cb)
                d.off(UpdateCategory.MESSAGE, cb)
                lid = d.on_reply_to_message(1, 1, cb)
                d.remove_reply_listener(lid)

        worker = threading.Thread(target=churn)
        worker.start()
        try:
            for i in range(200):
                d.process_update({"update_id": i, "message": {"message_id": i, "chat": {"id": 1}, "text": "x"}})
        finally:
            stop.set()
            worker.join()
        assert seen == list(range(200))


# ── Text matchers ────────────────────────────────────────────────────────────


class TestTextMatchers:
    """Validate onText semantics."""

    def test_every_match_fires_by_default(self) -> None:
        d = UpdateDispatcher()
        first, second, miss = MagicMock(), MagicMock(), MagicMock()
        d.on_text(r"^/echo (.+)$", first)
        d.on_text(r"^/zzz", miss)
        d.on_text(r"echo", second)
        d.process_update(_message(text="/echo hi"))

        msg, match = first.call_args.args
        assert match.group(1) == "hi"
        assert msg.text == "/echo hi"
        second.assert_called_once()
        miss.assert_not_called()

    def test_only_first_match(self) -> None:
        d = UpdateDispatcher(only_first_match=True)
        first, second = MagicMock(), MagicMock()
        d.on_text(r"^/echo (.+)$", first)
        d.on_text(r"echo", second)
        d.process_update(_message(text="/echo hi"))
        first.assert_called_once()
        second.assert_not_called()

    def test_only_first_match_skips_non_matching(self) -> None:
        d = UpdateDispatcher(only_first_match=True)
        miss, hit = MagicMock(), MagicMock()
        d.on_text(r"^nope$", miss)
        d.on_text(r"hi", hit)
        d.process_update(_message(text="hi"))
        miss.assert_not_called()
        hit.assert_called_once()

    def test_failing_matcher_does_not_stop_later_matchers(self) -> None:
        d = UpdateDispatcher()
        later = MagicMock()
        d.on_text(r"hi", MagicMock(side_effect=ValueError("bad")))
        d.on_text(r"hi", later)
        d.process_update(_message(text="hi"))
        later.assert_called_once()

    def test_matchers_ignore_captions(self) -> None:
        d = UpdateDispatcher()
        cb = MagicMock()
        d.on_text(r".*", cb)
        d.process_update(_message(caption="photo caption", photo=[{"file_id": "p", "width": 1, "height": 1}]))
        cb.assert_not_called()


# ── Reply listeners ──────────────────────────────────────────────────────────


class TestReplyListeners:
    """Validate onReplyToMessage semantics."""

    @staticmethod
    def _reply(update_id: int, chat_id, to_id: int) -> dict:
        return {
            "update_id": update_id,
            "message": {
                "message_id": 100 + update_id,
                "chat": {"id": chat_id},
                "text": "answer",
                "reply_to_message": {"message_id": to_id, "chat": {"id": chat_id}},
            },
        }

    def test_listener_fires_for_every_reply(self) -> None:
        d = UpdateDispatcher()
        cb = MagicMock()
        d.on_reply_to_message(1, 5, cb)
        d.process_update(self._reply(1, 1, 5))
        d.process_update(self._reply(2, 1, 5))
        assert cb.call_count == 2
        assert cb.call_args.args[0].reply_to_message.message_id == 5

    def test_listener_ignores_other_chats_and_messages(self) -> None:
        d = UpdateDispatcher()
        cb = MagicMock()
        d.on_reply_to_message(1, 5, cb)
        d.process_update(self._reply(1, 2, 5))
        d.process_update(self._reply(2, 1, 6))
        cb.assert_not_called()

    def test_string_chat_id_matches_numeric_chat(self) -> None:
        d = UpdateDispatcher()
        cb = MagicMock()
        d.on_reply_to_message("-100200", 5, cb)
        d.process_update(self._reply(1, -100200, 5))
        cb.assert_called_once()

    def test_ids_are_unique_and_increasing(self) -> None:
        d = UpdateDispatcher()
        ids = [d.on_reply_to_message(1, i, MagicMock()) for i in range(3)]
        assert ids == sorted(ids)
        assert len(set(ids)) == 3

    def test_remove_returns_entry_then_none(self) -> None:
        d = UpdateDispatcher()
        cb = MagicMock()
        lid = d.on_reply_to_message(1, 5, cb)
        removed = d.remove_reply_listener(lid)
        assert removed is not None
        assert (removed.id, removed.chat_id, removed.message_id, removed.callback) == (lid, 1, 5, cb)
        assert d.remove_reply_listener(lid) is None
        d.process_update(self._reply(1, 1, 5))
        cb.assert_not_called()

    def test_removing_unknown_id(self) -> None:
        assert UpdateDispatcher().remove_reply_listener(999) is None

    def test_all_matching_listeners_fire(self) -> None:
        d = UpdateDispatcher()
        a, b = MagicMock(), MagicMock()
        d.on_reply_to_message(1, 5, a)
        d.on_reply_to_message(1, 5, b)
        d.process_update(self._reply(1, 1, 5))
        a.assert_called_once()
        b.assert_called_once()


# ── Async subscribers ────────────────────────────────────────────────────────


class TestAsyncSubscribers:
    """Coroutine subscribers are scheduled, never awaited inline."""

    @pytest.mark.asyncio
    async def test_scheduled_on_running_loop(self) -> None:
        d = UpdateDispatcher()
        seen: list[str] = []

        async def on_text(message: Message) -> None:
            await asyncio.sleep(0)
            seen.append(message.text)

        d.on(UpdateCategory.TEXT, on_text)
        d.process_update(_message(text="async"))
        assert seen == []
        await d.drain()
        assert seen == ["async"]

    @pytest.mark.asyncio
    async def test_async_failure_is_contained(self) -> None:
        d = UpdateDispatcher()

        async def broken(message: Message) -> None:
            raise RuntimeError("async boom")

        d.on(UpdateCategory.MESSAGE, broken)
        d.process_update(_message())
        await d.drain()

    @pytest.mark.asyncio
    async def test_dispatch_from_another_thread_uses_bound_loop(self) -> None:
        d = UpdateDispatcher()
        d.bind_loop(asyncio.get_running_loop())
        done = asyncio.Event()

        async def on_message(message: Message) -> None:
            done.set()

        d.on(UpdateCategory.MESSAGE, on_message)
        await asyncio.to_thread(d.process_update, _message())
        await asyncio.wait_for(done.wait(), timeout=2)

    def test_no_loop_runs_to_completion(self) -> None:
        d = UpdateDispatcher()
        seen: list[int] = []

        async def on_message(message: Message) -> None:
            seen.append(message.message_id)

        d.on(UpdateCategory.MESSAGE, on_message)
        d.process_update(_message())
        assert seen == [10]


# ── End to end ───────────────────────────────────────────────────────────────


class TestStartCommand:
    """The canonical /start scenario."""

    def test_start_command(self) -> None:
        d = UpdateDispatcher()
        rec = _Recorder(d, [UpdateCategory.MESSAGE, UpdateCategory.TEXT])
        matched = MagicMock()
        d.on_text(r"^/start", matched)

        d.process_update({"update_id": 100, "message": {"message_id": 5, "chat": {"id": 1}, "text": "/start"}})

        assert rec.categories == [UpdateCategory.MESSAGE, UpdateCategory.TEXT]
        message, match = matched.call_args.args
        assert message.message_id == 5
        assert match.group(0) == "/start"

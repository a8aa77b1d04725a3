"""Pydantic data models for the Telegram Bot API update payloads.

Only the objects that arrive inside an incoming update are modelled here.
Every model accepts unknown keys (``extra="allow"``) and keeps identifiers
optional wherever the dispatcher can do without them, so that partial or
newer payloads still validate and reach subscribers intact.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class User(BaseModel):
    """This object represents a Telegram user or bot."""

    id: int
    is_bot: Optional[bool] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class Chat(BaseModel):
    """This object represents a chat."""

    id: int
    type: Optional[str] = None
    title: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class MessageEntity(BaseModel):
    """One special entity in a text message (hashtag, command, URL, …)."""

    type: str
    offset: int
    length: int
    url: Optional[str] = None
    user: Optional["User"] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class PhotoSize(BaseModel):
    """One size of a photo or a file / sticker thumbnail."""

    file_id: str
    file_unique_id: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class Audio(BaseModel):
    """An audio file to be treated as music."""

    file_id: str
    duration: Optional[int] = None
    performer: Optional[str] = None
    title: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class Document(BaseModel):
    """A general file (as opposed to photos, voice messages and audio files)."""

    file_id: str
    thumb: Optional["PhotoSize"] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class Sticker(BaseModel):
    """A sticker."""

    file_id: str
    width: Optional[int] = None
    height: Optional[int] = None
    emoji: Optional[str] = None
    set_name: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class Video(BaseModel):
    """A video file."""

    file_id: str
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[int] = None
    mime_type: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class Voice(BaseModel):
    """A voice note."""

    file_id: str
    duration: Optional[int] = None
    mime_type: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class Contact(BaseModel):
    """A phone contact."""

    phone_number: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    user_id: Optional[int] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class Location(BaseModel):
    """A point on the map."""

    longitude: float
    latitude: float

    model_config = {"populate_by_name": True, "extra": "allow"}


class Message(BaseModel):
    """This object represents a message.

    ``reply_to_message`` is itself a :class:`Message`; the Bot API never
    nests another reply inside it, so the chain is at most one level deep.
    """

    message_id: int
    chat: "Chat"
    date: Optional[int] = None
    from_field: Optional["User"] = Field(None, alias="from")
    sender_chat: Optional["Chat"] = None
    forward_from: Optional["User"] = None
    forward_date: Optional[int] = None
    reply_to_message: Optional["Message"] = None
    edit_date: Optional[int] = None
    text: Optional[str] = None
    entities: Optional[List["MessageEntity"]] = None
    caption: Optional[str] = None
    audio: Optional["Audio"] = None
    document: Optional["Document"] = None
    photo: Optional[List["PhotoSize"]] = None
    sticker: Optional["Sticker"] = None
    video: Optional["Video"] = None
    voice: Optional["Voice"] = None
    contact: Optional["Contact"] = None
    location: Optional["Location"] = None
    new_chat_members: Optional[List["User"]] = None
    left_chat_member: Optional["User"] = None
    new_chat_title: Optional[str] = None
    new_chat_photo: Optional[List["PhotoSize"]] = None
    delete_chat_photo: Optional[bool] = None
    group_chat_created: Optional[bool] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class InlineQuery(BaseModel):
    """An incoming inline query."""

    id: str
    from_field: Optional["User"] = Field(None, alias="from")
    query: str = ""
    offset: str = ""
    location: Optional["Location"] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class ChosenInlineResult(BaseModel):
    """A result of an inline query that was chosen by the user."""

    result_id: str
    from_field: Optional["User"] = Field(None, alias="from")
    query: str = ""
    inline_message_id: Optional[str] = None
    location: Optional["Location"] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class CallbackQuery(BaseModel):
    """An incoming callback query from an inline keyboard button."""

    id: str
    from_field: Optional["User"] = Field(None, alias="from")
    message: Optional["Message"] = None
    inline_message_id: Optional[str] = None
    chat_instance: Optional[str] = None
    data: Optional[str] = None
    game_short_name: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class Update(BaseModel):
    """An incoming update. At most **one** of the optional payloads is present."""

    update_id: int
    message: Optional["Message"] = None
    edited_message: Optional["Message"] = None
    channel_post: Optional["Message"] = None
    edited_channel_post: Optional["Message"] = None
    inline_query: Optional["InlineQuery"] = None
    chosen_inline_result: Optional["ChosenInlineResult"] = None
    callback_query: Optional["CallbackQuery"] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class WebhookInfo(BaseModel):
    """Current status of a webhook as reported by ``getWebhookInfo``."""

    url: str
    has_custom_certificate: bool = False
    pending_update_count: int = 0
    last_error_date: Optional[int] = None
    last_error_message: Optional[str] = None
    max_connections: Optional[int] = None
    allowed_updates: Optional[List[str]] = None

    model_config = {"populate_by_name": True, "extra": "allow"}

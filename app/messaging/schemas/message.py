from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.constants import MAX_MARK_READ_IDS, MESSAGE_MAX_LENGTH
from app.core.datetime_utils import UTCDatetime
from app.messaging.models.message import MessageType

Direction = Literal["older", "newer"]


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError("Message content cannot be blank")
    return value


class MessageCreate(BaseModel):
    conversation_id: UUID
    content: str = Field(..., min_length=1, max_length=MESSAGE_MAX_LENGTH)
    reply_to_id: UUID | None = None

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        return _require_text(v)


class MessageUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=MESSAGE_MAX_LENGTH)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        return _require_text(v)


class SenderInfo(BaseModel):
    id: UUID
    name: str
    avatar_url: str | None = None


class ReplyPreview(BaseModel):
    id: UUID
    content: str
    sender_name: str


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    sender: SenderInfo
    content: str
    message_type: MessageType
    reply_to_id: UUID | None = None
    reply_to: ReplyPreview | None = None
    is_edited: bool = False
    created_at: UTCDatetime
    updated_at: UTCDatetime

    model_config = ConfigDict(from_attributes=True)


class MessageListResponse(BaseModel):
    messages: list[MessageResponse]
    next_cursor: str | None = None
    has_more: bool = False


class MarkReadRequest(BaseModel):
    message_ids: list[UUID] | None = Field(None, max_length=MAX_MARK_READ_IDS)


class MarkReadResponse(BaseModel):
    marked_count: int


class UnreadCount(BaseModel):
    conversation_id: UUID
    count: int


class UnreadCountsResponse(BaseModel):
    counts: list[UnreadCount]
    total: int


class UserSearchResult(BaseModel):
    id: UUID
    name: str
    email: str
    avatar_url: str | None = None

    model_config = ConfigDict(from_attributes=True)


class TypingUser(BaseModel):
    user_id: UUID
    name: str

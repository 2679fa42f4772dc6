from uuid import UUID

from pydantic import BaseModel, Field

from app.core.constants import CONVERSATION_NAME_MAX_LENGTH, MAX_MEMBERS_PER_REQUEST
from app.core.datetime_utils import UTCDatetime
from app.messaging.schemas.message import MessageResponse


class ConversationCreate(BaseModel):
    participant_ids: list[UUID] = Field(default_factory=list, max_length=MAX_MEMBERS_PER_REQUEST)
    name: str | None = Field(None, max_length=CONVERSATION_NAME_MAX_LENGTH)
    is_group: bool = False


class ConversationUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=CONVERSATION_NAME_MAX_LENGTH)


class AddMembersRequest(BaseModel):
    member_ids: list[UUID] = Field(..., min_length=1, max_length=MAX_MEMBERS_PER_REQUEST)


class AdminOnlyUpdate(BaseModel):
    admin_only: bool


class ParticipantInfo(BaseModel):
    user_id: UUID
    name: str
    avatar_url: str | None = None
    is_admin: bool = False
    joined_at: UTCDatetime
    last_read_at: UTCDatetime | None = None


class ConversationDetail(BaseModel):
    id: UUID
    name: str | None = None
    is_group: bool
    created_by: UUID | None = None
    creator_name: str | None = None
    admin_only_messages: bool = False
    created_at: UTCDatetime
    updated_at: UTCDatetime
    participants: list[ParticipantInfo]
    last_message: MessageResponse | None = None
    unread_count: int = 0


class ConversationListResponse(BaseModel):
    conversations: list[ConversationDetail]
    next_cursor: str | None = None
    has_more: bool = False

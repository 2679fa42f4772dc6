from uuid import UUID

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from app.auth.dependencies import get_current_user
from app.auth.models.user import User
from app.core.constants import (
    CONVERSATION_MESSAGES_PAGE_SIZE,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    USER_SEARCH_LIMIT,
)
from app.core.redis import get_optional_redis
from app.db.session import get_db
from app.messaging.dependencies import get_access_control, get_participating_conversation_id
from app.messaging.schemas.conversation import (
    AddMembersRequest,
    AdminOnlyUpdate,
    ConversationCreate,
    ConversationDetail,
    ConversationListResponse,
    ConversationUpdate,
)
from app.messaging.schemas.message import (
    Direction,
    MarkReadRequest,
    MarkReadResponse,
    MessageCreate,
    MessageListResponse,
    MessageResponse,
    MessageUpdate,
    TypingUser,
    UnreadCountsResponse,
    UserSearchResult,
)
from app.messaging.services.access_control import AccessControl
from app.messaging.services.conversation_service import ConversationService
from app.messaging.services.membership_events import publish_membership_change
from app.messaging.services.message_service import MessageService
from app.messaging.services.read_receipt_service import ReadReceiptService
from app.messaging.services.typing_service import TypingIndicatorService
from app.messaging.services.user_directory import UserDirectory

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/users/search", response_model=list[UserSearchResult])
def search_users(
    q: str = Query(..., max_length=100),
    limit: int = Query(USER_SEARCH_LIMIT, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[UserSearchResult]:
    return UserDirectory(db).search_users(q, current_user.id, limit=limit)


@router.post("/conversations", response_model=ConversationDetail, status_code=201)
def create_conversation(
    data: ConversationCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
    redis: Redis | None = Depends(get_optional_redis),
) -> ConversationDetail:
    service = ConversationService(db, access)
    conversation = service.create_conversation(
        current_user.id, data.participant_ids, name=data.name, is_group=data.is_group
    )
    background_tasks.add_task(publish_membership_change, redis, conversation.id)
    return conversation


@router.get("/conversations", response_model=ConversationListResponse)
def list_conversations(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    cursor: str | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
) -> ConversationListResponse:
    service = ConversationService(db, access)
    return service.list_conversations(current_user.id, limit=limit, cursor=cursor)


@router.get("/conversations/{conversation_id}", response_model=ConversationDetail)
def get_conversation(
    conversation_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
) -> ConversationDetail:
    service = ConversationService(db, access)
    return service.get_conversation(conversation_id, current_user.id)


@router.patch("/conversations/{conversation_id}", response_model=ConversationDetail)
def update_conversation(
    conversation_id: UUID,
    data: ConversationUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
) -> ConversationDetail:
    service = ConversationService(db, access)
    return service.update_conversation(conversation_id, current_user.id, name=data.name)


@router.post("/conversations/{conversation_id}/members", response_model=ConversationDetail)
def add_members(
    conversation_id: UUID,
    data: AddMembersRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
    redis: Redis | None = Depends(get_optional_redis),
) -> ConversationDetail:
    service = ConversationService(db, access)
    conversation = service.add_members(conversation_id, current_user.id, data.member_ids)
    background_tasks.add_task(publish_membership_change, redis, conversation_id)
    return conversation


@router.delete(
    "/conversations/{conversation_id}/members/{member_id}",
    response_model=ConversationDetail | None,
)
def remove_member(
    conversation_id: UUID,
    member_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
    redis: Redis | None = Depends(get_optional_redis),
) -> ConversationDetail | None:
    service = ConversationService(db, access)
    conversation = service.remove_member(conversation_id, current_user.id, member_id)
    background_tasks.add_task(publish_membership_change, redis, conversation_id)
    return conversation


@router.post("/conversations/{conversation_id}/leave", status_code=204)
def leave_conversation(
    conversation_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
    redis: Redis | None = Depends(get_optional_redis),
) -> Response:
    service = ConversationService(db, access)
    service.leave_conversation(conversation_id, current_user.id)
    background_tasks.add_task(publish_membership_change, redis, conversation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/conversations/{conversation_id}/admins/{member_id}",
    response_model=ConversationDetail,
)
def make_admin(
    conversation_id: UUID,
    member_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
) -> ConversationDetail:
    service = ConversationService(db, access)
    return service.make_admin(conversation_id, current_user.id, member_id)


@router.delete(
    "/conversations/{conversation_id}/admins/{member_id}",
    response_model=ConversationDetail,
)
def revoke_admin(
    conversation_id: UUID,
    member_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
) -> ConversationDetail:
    service = ConversationService(db, access)
    return service.revoke_admin(conversation_id, current_user.id, member_id)


@router.patch("/conversations/{conversation_id}/admin-only", response_model=ConversationDetail)
def set_admin_only_messaging(
    conversation_id: UUID,
    data: AdminOnlyUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
) -> ConversationDetail:
    service = ConversationService(db, access)
    return service.set_admin_only_messaging(conversation_id, current_user.id, data.admin_only)


@router.post("/messages", response_model=MessageResponse, status_code=201)
def send_message(
    data: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
) -> MessageResponse:
    service = MessageService(db, access)
    return service.send_message(
        current_user.id, data.conversation_id, data.content, reply_to_id=data.reply_to_id
    )


@router.get("/conversations/{conversation_id}/messages", response_model=MessageListResponse)
def list_messages(
    conversation_id: UUID,
    limit: int = Query(CONVERSATION_MESSAGES_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    cursor: str | None = None,
    direction: Direction = Query("older"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
) -> MessageListResponse:
    service = MessageService(db, access)
    return service.list_messages(
        conversation_id, current_user.id, limit=limit, cursor=cursor, direction=direction
    )


@router.patch("/messages/{message_id}", response_model=MessageResponse)
def edit_message(
    message_id: UUID,
    data: MessageUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
) -> MessageResponse:
    service = MessageService(db, access)
    return service.edit_message(message_id, current_user.id, data.content)


@router.delete("/messages/{message_id}", status_code=204)
def delete_message(
    message_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
) -> Response:
    service = MessageService(db, access)
    service.delete_message(message_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/conversations/{conversation_id}/read", response_model=MarkReadResponse)
def mark_read(
    conversation_id: UUID,
    data: MarkReadRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
) -> MarkReadResponse:
    service = ReadReceiptService(db, access)
    marked = service.mark_read(
        conversation_id, current_user.id, data.message_ids if data else None
    )
    return MarkReadResponse(marked_count=marked)


@router.get("/unread-counts", response_model=UnreadCountsResponse)
def unread_counts(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    access: AccessControl = Depends(get_access_control),
) -> UnreadCountsResponse:
    service = ReadReceiptService(db, access)
    return service.unread_counts(current_user.id)


@router.post("/conversations/{conversation_id}/typing", status_code=204)
async def set_typing(
    conversation_id: UUID = Depends(get_participating_conversation_id),
    current_user: User = Depends(get_current_user),
    redis: Redis | None = Depends(get_optional_redis),
) -> Response:
    if redis is not None:
        try:
            await TypingIndicatorService(redis).set_typing(
                conversation_id, current_user.id, current_user.name
            )
        except RedisError:
            logger.warning("redis_unavailable_during_typing", conversation_id=str(conversation_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/conversations/{conversation_id}/typing", response_model=list[TypingUser])
async def get_typing(
    conversation_id: UUID = Depends(get_participating_conversation_id),
    current_user: User = Depends(get_current_user),
    redis: Redis | None = Depends(get_optional_redis),
) -> list[TypingUser]:
    if redis is None:
        return []
    try:
        return await TypingIndicatorService(redis).get_typing(conversation_id, current_user.id)
    except RedisError:
        logger.warning("redis_unavailable_during_typing", conversation_id=str(conversation_id))
        return []

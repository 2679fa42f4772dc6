import logging
from collections.abc import Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.constants import (
    CONVERSATION_MESSAGES_PAGE_SIZE,
    DELETED_MESSAGE_PLACEHOLDER,
    REPLY_PREVIEW_MAX_LENGTH,
)
from app.core.datetime_utils import utc_now
from app.core.exceptions import BadRequestError, ForbiddenError, NotFoundError
from app.db.guard import storage_operation
from app.messaging.models.conversation import Conversation
from app.messaging.models.message import Message, MessageType
from app.messaging.schemas.message import (
    Direction,
    MessageListResponse,
    MessageResponse,
    ReplyPreview,
)
from app.messaging.services.access_control import AccessControl
from app.messaging.services.pagination import after, before, decode_cursor, encode_cursor
from app.messaging.services.read_receipt_service import ReadReceiptService
from app.messaging.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)


def build_message_responses(
    messages: Sequence[Message], directory: UserDirectory
) -> list[MessageResponse]:
    """Attach sender display data and reply previews, resolving users in one query."""
    user_ids = {m.sender_id for m in messages}
    user_ids.update(m.reply_to.sender_id for m in messages if m.reply_to is not None)
    profiles = directory.profiles(user_ids)

    responses = []
    for message in messages:
        preview = None
        parent = message.reply_to
        if parent is not None:
            content = (
                DELETED_MESSAGE_PLACEHOLDER
                if parent.is_deleted
                else parent.content[:REPLY_PREVIEW_MAX_LENGTH]
            )
            preview = ReplyPreview(
                id=parent.id,
                content=content,
                sender_name=profiles[parent.sender_id].name,
            )
        responses.append(
            MessageResponse(
                id=message.id,
                conversation_id=message.conversation_id,
                sender=profiles[message.sender_id].as_sender(),
                content=message.content,
                message_type=message.message_type,
                reply_to_id=message.reply_to_id,
                reply_to=preview,
                is_edited=message.is_edited,
                created_at=message.created_at,
                updated_at=message.updated_at,
            )
        )
    return responses


class MessageService:
    def __init__(
        self, db: Session, access: AccessControl, directory: UserDirectory | None = None
    ) -> None:
        self.db = db
        self.access = access
        self.directory = directory or UserDirectory(db)
        self.receipts = ReadReceiptService(db, access)

    @storage_operation("send_message")
    def send_message(
        self,
        sender_id: UUID,
        conversation_id: UUID,
        content: str,
        reply_to_id: UUID | None = None,
    ) -> MessageResponse:
        conversation = self.db.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found", resource="conversation")

        self.access.verify_participant(conversation_id, sender_id)

        if conversation.is_group and conversation.admin_only_messages:
            participant = self.access.get_active_participant(conversation_id, sender_id)
            if participant is None or not participant.is_admin:
                raise ForbiddenError("Only admins can send messages in this group")

        if reply_to_id is not None:
            parent = self.db.get(Message, reply_to_id)
            if (
                parent is None
                or parent.conversation_id != conversation_id
                or parent.is_deleted
            ):
                raise BadRequestError(
                    "Reply target is not a message in this conversation", field="reply_to_id"
                )

        now = utc_now()
        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            message_type=MessageType.TEXT,
            reply_to_id=reply_to_id,
            created_at=now,
            updated_at=now,
        )
        self.db.add(message)
        self.db.flush()

        # The sender has trivially read their own message
        self.receipts.insert_receipts([message.id], sender_id, now)
        conversation.touch(now)

        self.db.commit()
        self.db.refresh(message)

        logger.debug("Message %s sent to %s by %s", message.id, conversation_id, sender_id)
        return build_message_responses([message], self.directory)[0]

    @storage_operation("edit_message")
    def edit_message(self, message_id: UUID, actor_id: UUID, content: str) -> MessageResponse:
        message = self._get_live_message(message_id)
        if message.sender_id != actor_id:
            raise ForbiddenError("You can only edit your own messages")
        if message.message_type != MessageType.TEXT:
            raise ForbiddenError("System messages cannot be edited")

        message.content = content
        message.is_edited = True
        message.updated_at = utc_now()

        self.db.commit()
        self.db.refresh(message)
        return build_message_responses([message], self.directory)[0]

    @storage_operation("delete_message")
    def delete_message(self, message_id: UUID, actor_id: UUID) -> None:
        message = self._get_live_message(message_id)
        if message.sender_id != actor_id:
            raise ForbiddenError("You can only delete your own messages")
        if message.message_type != MessageType.TEXT:
            raise ForbiddenError("System messages cannot be deleted")

        message.soft_delete(utc_now())
        self.db.commit()
        logger.info("Message %s deleted by %s", message_id, actor_id)

    @storage_operation("list_messages")
    def list_messages(
        self,
        conversation_id: UUID,
        requester_id: UUID,
        limit: int = CONVERSATION_MESSAGES_PAGE_SIZE,
        cursor: str | None = None,
        direction: Direction = "older",
    ) -> MessageListResponse:
        """One page of a conversation, always returned oldest first.

        ``older`` walks back from the newest message (or from the cursor);
        ``newer`` walks forward from the first message (or from the cursor).
        ``next_cursor`` continues in the same direction and is only set when
        more messages exist.
        """
        if self.db.get(Conversation, conversation_id) is None:
            raise NotFoundError("Conversation not found", resource="conversation")
        self.access.verify_participant(conversation_id, requester_id)

        query = self.db.query(Message).filter(
            Message.conversation_id == conversation_id,
            Message.is_deleted == False,  # noqa: E712
        )

        if cursor:
            boundary, boundary_id = decode_cursor(cursor)
            edge = before if direction == "older" else after
            query = query.filter(edge(Message.created_at, Message.id, boundary, boundary_id))

        if direction == "older":
            query = query.order_by(Message.created_at.desc(), Message.id.desc())
        else:
            query = query.order_by(Message.created_at.asc(), Message.id.asc())

        rows = query.limit(limit + 1).all()
        has_more = len(rows) > limit
        page = rows[:limit]
        if direction == "older":
            page.reverse()

        next_cursor = None
        if has_more and page:
            anchor = page[0] if direction == "older" else page[-1]
            next_cursor = encode_cursor(anchor.created_at, anchor.id)

        return MessageListResponse(
            messages=build_message_responses(page, self.directory),
            next_cursor=next_cursor,
            has_more=has_more,
        )

    def _get_live_message(self, message_id: UUID) -> Message:
        message = self.db.get(Message, message_id)
        if message is None or message.is_deleted:
            raise NotFoundError("Message not found", resource="message")
        return message

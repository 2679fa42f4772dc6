import logging
from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.constants import DEFAULT_PAGE_SIZE
from app.core.datetime_utils import utc_now
from app.core.exceptions import BadRequestError, NotFoundError
from app.db.guard import storage_operation
from app.messaging.models.conversation import Conversation, direct_key_for
from app.messaging.models.conversation_participant import (
    ConversationParticipant,
    ParticipantStatus,
)
from app.messaging.models.message import Message, MessageType
from app.messaging.schemas.conversation import (
    ConversationDetail,
    ConversationListResponse,
    ParticipantInfo,
)
from app.messaging.services.access_control import AccessControl
from app.messaging.services.message_service import build_message_responses
from app.messaging.services.pagination import before, decode_cursor, encode_cursor
from app.messaging.services.read_receipt_service import ReadReceiptService
from app.messaging.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)


class ConversationService:
    """Conversation lifecycle and membership.

    Every mutation runs as one transaction: the change itself, the system
    message describing it and the ``updated_at`` bump commit together, and
    the participant cache entry is dropped afterwards.
    """

    def __init__(
        self, db: Session, access: AccessControl, directory: UserDirectory | None = None
    ) -> None:
        self.db = db
        self.access = access
        self.directory = directory or UserDirectory(db)
        self.receipts = ReadReceiptService(db, access)

    @storage_operation("create_conversation")
    def create_conversation(
        self,
        creator_id: UUID,
        participant_ids: Sequence[UUID],
        name: str | None = None,
        is_group: bool = False,
    ) -> ConversationDetail:
        members = [creator_id] + [
            uid for uid in dict.fromkeys(participant_ids) if uid != creator_id
        ]
        if len(self.directory.active_user_ids(members)) != len(members):
            raise BadRequestError(
                "One or more participants do not exist or are inactive",
                field="participant_ids",
            )

        clean_name = name.strip() if name else None
        direct_key = None
        if is_group:
            if not clean_name:
                raise BadRequestError("Group conversations need a name", field="name")
        else:
            if len(members) != 2:
                raise BadRequestError(
                    "A direct conversation needs exactly one other participant",
                    field="participant_ids",
                )
            direct_key = direct_key_for(members[0], members[1])
            existing = self._find_direct_conversation(direct_key)
            if existing is not None:
                return self.get_conversation(existing.id, creator_id)

        now = utc_now()
        conversation = Conversation(
            name=clean_name,
            is_group=is_group,
            direct_key=direct_key,
            created_by=creator_id,
            created_at=now,
            updated_at=now,
        )
        self.db.add(conversation)
        try:
            self.db.flush()
        except IntegrityError:
            # Another request created the same pair first
            self.db.rollback()
            existing = self._find_direct_conversation(direct_key) if direct_key else None
            if existing is None:
                raise
            logger.info("Reusing concurrently created direct conversation %s", existing.id)
            return self.get_conversation(existing.id, creator_id)

        for uid in members:
            self.db.add(
                ConversationParticipant(
                    conversation_id=conversation.id,
                    user_id=uid,
                    status=ParticipantStatus.ACTIVE,
                    is_admin=uid == creator_id,
                    joined_at=now,
                )
            )

        text = f'Group "{clean_name}" created' if is_group else "Conversation started"
        self._append_system_message(conversation, creator_id, text, now)

        self.db.commit()
        self.access.invalidate(conversation.id)

        logger.info(
            "Conversation %s created by %s with %d members",
            conversation.id,
            creator_id,
            len(members),
        )
        return self.get_conversation(conversation.id, creator_id)

    @storage_operation("update_conversation")
    def update_conversation(
        self, conversation_id: UUID, actor_id: UUID, name: str | None = None
    ) -> ConversationDetail:
        conversation = self._get_conversation_row(conversation_id)
        self.access.verify_admin(conversation_id, actor_id)

        if name is None:
            return self.get_conversation(conversation_id, actor_id)

        clean_name = name.strip()
        if not clean_name:
            raise BadRequestError("Conversation name cannot be blank", field="name")
        if clean_name == conversation.name:
            return self.get_conversation(conversation_id, actor_id)

        now = utc_now()
        conversation.name = clean_name
        actor = self.directory.profile(actor_id)
        self._append_system_message(
            conversation, actor_id, f'{actor.name} renamed the conversation to "{clean_name}"', now
        )

        self.db.commit()
        self.access.invalidate(conversation_id)
        return self.get_conversation(conversation_id, actor_id)

    @storage_operation("add_members")
    def add_members(
        self, conversation_id: UUID, actor_id: UUID, member_ids: Sequence[UUID]
    ) -> ConversationDetail:
        conversation = self._get_conversation_row(conversation_id)
        self.access.verify_admin(conversation_id, actor_id)

        if not conversation.is_group:
            raise BadRequestError("Members can only be added to group conversations")

        ids = list(dict.fromkeys(member_ids))
        if len(self.directory.active_user_ids(ids)) != len(ids):
            raise BadRequestError(
                "One or more users do not exist or are inactive", field="member_ids"
            )

        existing = {
            p.user_id: p
            for p in self.db.query(ConversationParticipant)
            .filter(
                ConversationParticipant.conversation_id == conversation_id,
                ConversationParticipant.user_id.in_(ids),
            )
            .all()
        }

        now = utc_now()
        added: list[UUID] = []
        for uid in ids:
            participant = existing.get(uid)
            if participant is None:
                self.db.add(
                    ConversationParticipant(
                        conversation_id=conversation_id,
                        user_id=uid,
                        status=ParticipantStatus.ACTIVE,
                        is_admin=False,
                        joined_at=now,
                    )
                )
                added.append(uid)
            elif not participant.is_active:
                participant.rejoin(now)
                added.append(uid)

        if added:
            profiles = self.directory.profiles(added)
            names = ", ".join(profiles[uid].name for uid in added)
            self._append_system_message(conversation, actor_id, f"{names} joined the group", now)

        self.db.commit()
        self.access.invalidate(conversation_id)

        logger.info("Added %d members to %s", len(added), conversation_id)
        return self.get_conversation(conversation_id, actor_id)

    @storage_operation("remove_member")
    def remove_member(
        self, conversation_id: UUID, actor_id: UUID, member_id: UUID
    ) -> ConversationDetail | None:
        """Remove a member, or let a member leave when ``actor_id == member_id``.

        Returns the updated conversation, or ``None`` when the actor left and
        can no longer see it.
        """
        conversation = self._get_conversation_row(conversation_id)
        leaving = actor_id == member_id
        if leaving:
            self.access.verify_participant(conversation_id, actor_id)
        else:
            self.access.verify_admin(conversation_id, actor_id)

        participant = self.access.get_active_participant(conversation_id, member_id)
        if participant is None:
            raise NotFoundError("Member not found in this conversation", resource="participant")

        now = utc_now()
        participant.leave(now)
        if not conversation.is_group:
            # Frees the pair so a fresh direct conversation can be started
            conversation.direct_key = None

        member = self.directory.profile(member_id)
        noun = "group" if conversation.is_group else "conversation"
        text = (
            f"{member.name} left the {noun}"
            if leaving
            else f"{member.name} was removed from the {noun}"
        )
        self._append_system_message(conversation, actor_id, text, now)

        self.db.commit()
        self.access.invalidate(conversation_id)

        logger.info("User %s removed from %s by %s", member_id, conversation_id, actor_id)
        if leaving:
            return None
        return self.get_conversation(conversation_id, actor_id)

    def leave_conversation(self, conversation_id: UUID, user_id: UUID) -> None:
        self.remove_member(conversation_id, user_id, user_id)

    @storage_operation("make_admin")
    def make_admin(
        self, conversation_id: UUID, actor_id: UUID, member_id: UUID
    ) -> ConversationDetail:
        conversation = self._get_conversation_row(conversation_id)
        self.access.verify_admin(conversation_id, actor_id)

        participant = self.access.get_active_participant(conversation_id, member_id)
        if participant is None:
            raise NotFoundError("Member not found in this conversation", resource="participant")
        if participant.is_admin:
            return self.get_conversation(conversation_id, actor_id)

        participant.is_admin = True
        member = self.directory.profile(member_id)
        self._append_system_message(
            conversation, actor_id, f"{member.name} is now an admin", utc_now()
        )

        self.db.commit()
        return self.get_conversation(conversation_id, actor_id)

    @storage_operation("revoke_admin")
    def revoke_admin(
        self, conversation_id: UUID, actor_id: UUID, member_id: UUID
    ) -> ConversationDetail:
        conversation = self._get_conversation_row(conversation_id)
        self.access.verify_admin(conversation_id, actor_id)

        if actor_id == member_id:
            raise BadRequestError("You cannot revoke your own admin rights")

        participant = self.access.get_active_participant(conversation_id, member_id)
        if participant is None:
            raise NotFoundError("Member not found in this conversation", resource="participant")
        if not participant.is_admin:
            raise BadRequestError("This member is not an admin")

        participant.is_admin = False
        member = self.directory.profile(member_id)
        self._append_system_message(
            conversation, actor_id, f"{member.name} is no longer an admin", utc_now()
        )

        self.db.commit()
        return self.get_conversation(conversation_id, actor_id)

    @storage_operation("set_admin_only_messaging")
    def set_admin_only_messaging(
        self, conversation_id: UUID, actor_id: UUID, admin_only: bool
    ) -> ConversationDetail:
        conversation = self._get_conversation_row(conversation_id)
        self.access.verify_admin(conversation_id, actor_id)

        if not conversation.is_group:
            raise BadRequestError("Only group conversations can restrict messaging")
        if conversation.admin_only_messages == admin_only:
            return self.get_conversation(conversation_id, actor_id)

        conversation.admin_only_messages = admin_only
        text = (
            "Only admins can now send messages in this group"
            if admin_only
            else "All members can now send messages in this group"
        )
        self._append_system_message(conversation, actor_id, text, utc_now())

        self.db.commit()
        return self.get_conversation(conversation_id, actor_id)

    @storage_operation("get_conversation")
    def get_conversation(self, conversation_id: UUID, requester_id: UUID) -> ConversationDetail:
        conversation = self._get_conversation_row(conversation_id)
        self.access.verify_participant(conversation_id, requester_id)
        return self._build_detail(conversation, requester_id)

    @storage_operation("list_conversations")
    def list_conversations(
        self, user_id: UUID, limit: int = DEFAULT_PAGE_SIZE, cursor: str | None = None
    ) -> ConversationListResponse:
        """Conversations the user actively belongs to, most recently active first."""
        query = self.db.query(Conversation).join(
            ConversationParticipant,
            (ConversationParticipant.conversation_id == Conversation.id)
            & (ConversationParticipant.user_id == user_id)
            & (ConversationParticipant.status == ParticipantStatus.ACTIVE),
        )
        if cursor:
            boundary, boundary_id = decode_cursor(cursor)
            query = query.filter(
                before(Conversation.updated_at, Conversation.id, boundary, boundary_id)
            )

        rows = (
            query.order_by(Conversation.updated_at.desc(), Conversation.id.desc())
            .limit(limit + 1)
            .all()
        )
        has_more = len(rows) > limit
        page = rows[:limit]

        next_cursor = None
        if has_more and page:
            next_cursor = encode_cursor(page[-1].updated_at, page[-1].id)

        return ConversationListResponse(
            conversations=[self._build_detail(c, user_id) for c in page],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    def _get_conversation_row(self, conversation_id: UUID) -> Conversation:
        conversation = self.db.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found", resource="conversation")
        return conversation

    def _find_direct_conversation(self, direct_key: str) -> Conversation | None:
        return self.db.query(Conversation).filter(Conversation.direct_key == direct_key).first()

    def _append_system_message(
        self, conversation: Conversation, actor_id: UUID, content: str, at: datetime
    ) -> None:
        self.db.add(
            Message(
                conversation_id=conversation.id,
                sender_id=actor_id,
                content=content,
                message_type=MessageType.SYSTEM,
                created_at=at,
                updated_at=at,
            )
        )
        conversation.touch(at)

    def _build_detail(self, conversation: Conversation, requester_id: UUID) -> ConversationDetail:
        participants = (
            self.db.query(ConversationParticipant)
            .filter(
                ConversationParticipant.conversation_id == conversation.id,
                ConversationParticipant.status == ParticipantStatus.ACTIVE,
            )
            .order_by(ConversationParticipant.joined_at)
            .all()
        )
        last_message = (
            self.db.query(Message)
            .filter(
                Message.conversation_id == conversation.id,
                Message.is_deleted == False,  # noqa: E712
            )
            .order_by(Message.created_at.desc(), Message.id.desc())
            .first()
        )

        user_ids = {p.user_id for p in participants}
        if conversation.created_by is not None:
            user_ids.add(conversation.created_by)
        profiles = self.directory.profiles(user_ids)

        return ConversationDetail(
            id=conversation.id,
            name=conversation.name,
            is_group=conversation.is_group,
            created_by=conversation.created_by,
            creator_name=(
                profiles[conversation.created_by].name if conversation.created_by else None
            ),
            admin_only_messages=conversation.admin_only_messages,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            participants=[
                ParticipantInfo(
                    user_id=p.user_id,
                    name=profiles[p.user_id].name,
                    avatar_url=profiles[p.user_id].avatar_url,
                    is_admin=p.is_admin,
                    joined_at=p.joined_at,
                    last_read_at=p.last_read_at,
                )
                for p in participants
            ],
            last_message=(
                build_message_responses([last_message], self.directory)[0]
                if last_message
                else None
            ),
            unread_count=self.receipts.unread_count(conversation.id, requester_id),
        )

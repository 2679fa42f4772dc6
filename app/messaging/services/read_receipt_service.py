"""Read receipts and unread aggregation."""

import logging
from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import and_, exists, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from app.core.datetime_utils import utc_now
from app.db.guard import storage_operation
from app.messaging.models.conversation_participant import (
    ConversationParticipant,
    ParticipantStatus,
)
from app.messaging.models.message import Message
from app.messaging.models.read_receipt import MessageReadReceipt
from app.messaging.schemas.message import UnreadCount, UnreadCountsResponse
from app.messaging.services.access_control import AccessControl

logger = logging.getLogger(__name__)

_receipts = MessageReadReceipt.__table__


def _not_read_by(user_id: UUID) -> ColumnElement[bool]:
    return ~exists().where(
        MessageReadReceipt.message_id == Message.id,
        MessageReadReceipt.user_id == user_id,
    )


class ReadReceiptService:
    def __init__(self, db: Session, access: AccessControl) -> None:
        self.db = db
        self.access = access

    @storage_operation("mark_read")
    def mark_read(
        self,
        conversation_id: UUID,
        user_id: UUID,
        message_ids: Sequence[UUID] | None = None,
    ) -> int:
        """Record receipts and move the read bookmark.

        With explicit ids, only messages of this conversation written by
        someone else are receipted; unknown or foreign ids are ignored. With
        no ids (or an empty list), every message the user has not read yet is
        receipted. Returns the number of receipts actually inserted.
        """
        self.access.require_conversation(conversation_id)
        self.access.verify_participant(conversation_id, user_id)

        query = self.db.query(Message.id).filter(
            Message.conversation_id == conversation_id,
            Message.sender_id != user_id,
            Message.is_deleted == False,  # noqa: E712
        )
        if message_ids:
            query = query.filter(Message.id.in_(set(message_ids)))
        else:
            query = query.filter(_not_read_by(user_id))

        candidate_ids = [row[0] for row in query.all()]
        now = utc_now()
        inserted = self.insert_receipts(candidate_ids, user_id, now)

        self.db.query(ConversationParticipant).filter(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
        ).update({ConversationParticipant.last_read_at: now}, synchronize_session="fetch")

        self.db.commit()
        logger.debug(
            "Marked %d messages read in %s for %s", inserted, conversation_id, user_id
        )
        return inserted

    def insert_receipts(self, message_ids: Sequence[UUID], user_id: UUID, at=None) -> int:
        """Insert receipts, skipping ones that already exist. Does not commit."""
        if not message_ids:
            return 0
        at = at or utc_now()
        dialect = self.db.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = (
            insert(_receipts)
            .values(
                [
                    {"message_id": message_id, "user_id": user_id, "created_at": at}
                    for message_id in dict.fromkeys(message_ids)
                ]
            )
            .on_conflict_do_nothing(index_elements=["message_id", "user_id"])
        )
        result = self.db.execute(stmt)
        return int(result.rowcount or 0)  # type: ignore[attr-defined]

    def unread_count(self, conversation_id: UUID, user_id: UUID) -> int:
        """Unread messages for one conversation. No access check."""
        count = (
            self.db.query(func.count(Message.id))
            .filter(
                Message.conversation_id == conversation_id,
                Message.sender_id != user_id,
                Message.is_deleted == False,  # noqa: E712
                _not_read_by(user_id),
            )
            .scalar()
        )
        return int(count or 0)

    @storage_operation("unread_counts")
    def unread_counts(self, user_id: UUID) -> UnreadCountsResponse:
        """Per-conversation unread breakdown plus the total across them."""
        active_ids = [
            row[0]
            for row in self.db.query(ConversationParticipant.conversation_id)
            .filter(
                ConversationParticipant.user_id == user_id,
                ConversationParticipant.status == ParticipantStatus.ACTIVE,
            )
            .all()
        ]
        if not active_ids:
            return UnreadCountsResponse(counts=[], total=0)

        rows = (
            self.db.query(Message.conversation_id, func.count(Message.id))
            .join(
                ConversationParticipant,
                and_(
                    ConversationParticipant.conversation_id == Message.conversation_id,
                    ConversationParticipant.user_id == user_id,
                    ConversationParticipant.status == ParticipantStatus.ACTIVE,
                ),
            )
            .filter(
                Message.sender_id != user_id,
                Message.is_deleted == False,  # noqa: E712
                _not_read_by(user_id),
            )
            .group_by(Message.conversation_id)
            .all()
        )
        by_conversation = {conversation_id: int(count) for conversation_id, count in rows}

        counts = [
            UnreadCount(conversation_id=cid, count=by_conversation.get(cid, 0))
            for cid in active_ids
        ]
        return UnreadCountsResponse(counts=counts, total=sum(c.count for c in counts))

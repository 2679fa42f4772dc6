"""Participant and admin verification for conversations."""

import logging
from typing import cast
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.exceptions import ForbiddenError, NotFoundError
from app.messaging.models.conversation import Conversation
from app.messaging.models.conversation_participant import (
    ConversationParticipant,
    ParticipantStatus,
)
from app.messaging.services.participant_cache import ParticipantCache

logger = logging.getLogger(__name__)


class AccessControl:
    def __init__(self, db: Session, cache: ParticipantCache) -> None:
        self.db = db
        self.cache = cache

    def active_participant_ids(self, conversation_id: UUID) -> frozenset[UUID]:
        """Active member ids, served from the cache when possible."""
        members = self.cache.get(conversation_id)
        if members is None:
            rows = (
                self.db.query(ConversationParticipant.user_id)
                .filter(
                    ConversationParticipant.conversation_id == conversation_id,
                    ConversationParticipant.status == ParticipantStatus.ACTIVE,
                )
                .all()
            )
            members = frozenset(row[0] for row in rows)
            self.cache.put(conversation_id, members)
        return members

    def require_conversation(self, conversation_id: UUID) -> Conversation:
        conversation = self.db.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found", resource="conversation")
        return conversation

    def verify_participant(self, conversation_id: UUID, user_id: UUID) -> None:
        if user_id not in self.active_participant_ids(conversation_id):
            logger.debug("User %s is not a participant of %s", user_id, conversation_id)
            raise ForbiddenError("You are not a participant in this conversation")

    def verify_admin(self, conversation_id: UUID, user_id: UUID) -> ConversationParticipant:
        # Admin status is never cached: always read the row
        participant = self.get_active_participant(conversation_id, user_id)
        if participant is None:
            raise ForbiddenError("You are not a participant in this conversation")
        if not participant.is_admin:
            raise ForbiddenError("Only admins can perform this action")
        return participant

    def get_active_participant(
        self, conversation_id: UUID, user_id: UUID
    ) -> ConversationParticipant | None:
        participant = (
            self.db.query(ConversationParticipant)
            .filter(
                ConversationParticipant.conversation_id == conversation_id,
                ConversationParticipant.user_id == user_id,
                ConversationParticipant.status == ParticipantStatus.ACTIVE,
            )
            .first()
        )
        return cast(ConversationParticipant | None, participant)

    def invalidate(self, conversation_id: UUID) -> None:
        self.cache.delete(conversation_id)

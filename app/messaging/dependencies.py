from typing import cast
from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.auth.dependencies import get_current_user
from app.auth.models.user import User
from app.db.session import get_db
from app.messaging.services.access_control import AccessControl
from app.messaging.services.participant_cache import ParticipantCache


def get_participant_cache(request: Request) -> ParticipantCache:
    """The application's shared cache, created alongside the app."""
    return cast(ParticipantCache, request.app.state.participant_cache)


def get_access_control(
    db: Session = Depends(get_db),
    cache: ParticipantCache = Depends(get_participant_cache),
) -> AccessControl:
    return AccessControl(db, cache)


def get_participating_conversation_id(
    conversation_id: UUID,
    current_user: User = Depends(get_current_user),
    access: AccessControl = Depends(get_access_control),
) -> UUID:
    """Path conversation the caller is an active member of.

    Sync so the storage lookups run in the threadpool for async endpoints.
    """
    access.require_conversation(conversation_id)
    access.verify_participant(conversation_id, current_user.id)
    return conversation_id

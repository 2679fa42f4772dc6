"""User directory adapter used for display data and active-status checks."""

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.auth.models.user import User
from app.core.constants import UNKNOWN_USER_NAME, USER_SEARCH_LIMIT, USER_SEARCH_MIN_LENGTH
from app.messaging.schemas.message import SenderInfo, UserSearchResult


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass(frozen=True)
class UserProfile:
    id: UUID
    name: str
    avatar_url: str | None = None

    def as_sender(self) -> SenderInfo:
        return SenderInfo(id=self.id, name=self.name, avatar_url=self.avatar_url)


class UserDirectory:
    def __init__(self, db: Session) -> None:
        self.db = db

    def active_user_ids(self, user_ids: Iterable[UUID]) -> set[UUID]:
        """Return the subset of ids that exist and belong to active accounts."""
        ids = set(user_ids)
        if not ids:
            return set()
        rows = (
            self.db.query(User.id)
            .filter(User.id.in_(ids), User.is_active == True)  # noqa: E712
            .all()
        )
        return {row[0] for row in rows}

    def profiles(self, user_ids: Iterable[UUID]) -> dict[UUID, UserProfile]:
        """Display data for every requested id; unknown ids get a placeholder."""
        ids = set(user_ids)
        found: dict[UUID, UserProfile] = {}
        if ids:
            rows = (
                self.db.query(User.id, User.name, User.avatar_url)
                .filter(User.id.in_(ids))
                .all()
            )
            found = {uid: UserProfile(id=uid, name=name, avatar_url=avatar) for uid, name, avatar in rows}
        for missing in ids - found.keys():
            found[missing] = UserProfile(id=missing, name=UNKNOWN_USER_NAME)
        return found

    def profile(self, user_id: UUID) -> UserProfile:
        return self.profiles([user_id])[user_id]

    def search_users(
        self, query: str, current_user_id: UUID, limit: int = USER_SEARCH_LIMIT
    ) -> list[UserSearchResult]:
        query = query.strip()
        if len(query) < USER_SEARCH_MIN_LENGTH:
            return []

        pattern = f"%{_escape_like(query)}%"
        users = (
            self.db.query(User)
            .filter(
                User.id != current_user_id,
                User.is_active == True,  # noqa: E712
                or_(
                    User.name.ilike(pattern, escape="\\"),
                    User.email.ilike(pattern, escape="\\"),
                ),
            )
            .order_by(User.name)
            .limit(limit)
            .all()
        )

        return [
            UserSearchResult(id=u.id, name=u.name, email=u.email, avatar_url=u.avatar_url)
            for u in users
        ]

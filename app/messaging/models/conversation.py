import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.datetime_utils import utc_now
from app.db.session import Base


def direct_key_for(first: uuid.UUID, second: uuid.UUID) -> str:
    """Order-independent key identifying the 1:1 conversation of a user pair."""
    low, high = sorted((first, second))
    return f"{low}:{high}"


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (Index("ix_conversations_updated_at", "updated_at"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True, default=None)
    is_group: Mapped[bool] = mapped_column(Boolean, default=False)
    admin_only_messages: Mapped[bool] = mapped_column(Boolean, default=False)

    # Set only while both members of a 1:1 conversation are active; NULLs never collide
    direct_key: Mapped[str | None] = mapped_column(
        String(80), nullable=True, default=None, unique=True
    )

    created_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    participants = relationship(
        "ConversationParticipant", back_populates="conversation", cascade="all, delete-orphan"
    )
    messages = relationship(
        "Message",
        back_populates="conversation",
        order_by="Message.created_at",
        cascade="all, delete-orphan",
    )

    def touch(self, at: datetime | None = None) -> None:
        self.updated_at = at or utc_now()

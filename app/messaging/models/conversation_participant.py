import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.datetime_utils import utc_now
from app.db.session import Base


class ParticipantStatus(str, enum.Enum):
    ACTIVE = "active"
    LEFT = "left"


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"
    __table_args__ = (Index("ix_conv_participants_user_status", "user_id", "status"),)

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )

    status: Mapped[ParticipantStatus] = mapped_column(
        Enum(
            ParticipantStatus,
            name="participant_status",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        default=ParticipantStatus.ACTIVE,
    )
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)

    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    left_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, default=None)
    last_read_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, default=None)

    conversation = relationship("Conversation", back_populates="participants")

    @property
    def is_active(self) -> bool:
        return self.status == ParticipantStatus.ACTIVE

    def leave(self, at: datetime) -> None:
        self.status = ParticipantStatus.LEFT
        self.left_at = at
        self.is_admin = False

    def rejoin(self, at: datetime) -> None:
        self.status = ParticipantStatus.ACTIVE
        self.left_at = None
        self.is_admin = False
        self.joined_at = at

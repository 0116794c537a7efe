from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campus_chat.db.base import Base


class SessionStatus(str, Enum):
    """Lifecycle of a chat session. ``ENDED`` and ``RATED`` are terminal."""
    ACTIVE = "active"
    ENDED = "ended"
    RATED = "rated"


class ChatSession(Base):
    """Model representing an anonymous chat session between two users."""
    __tablename__ = "chat_sessions"
    __table_args__ = (
        CheckConstraint("user1_id <> user2_id", name="distinct_participants"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user1_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)  # requester
    user2_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)  # counterpart
    status: Mapped[str] = mapped_column(String(10), default=SessionStatus.ACTIVE.value)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    messages = relationship("ChatMessage", back_populates="chat_session", order_by="ChatMessage.created_at")

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE.value

    @property
    def participant_ids(self) -> tuple[int, int]:
        return self.user1_id, self.user2_id

    def partner_of(self, user_id: int) -> Optional[int]:
        """Return the other participant, or None if ``user_id`` is not in this session."""
        if user_id == self.user1_id:
            return self.user2_id
        if user_id == self.user2_id:
            return self.user1_id
        return None

    def __repr__(self) -> str:
        return f"<ChatSession {self.id} {self.user1_id}<->{self.user2_id} {self.status}>"

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campus_chat.db.base import Base


class ChatMessage(Base):
    """Model representing a message in an anonymous chat."""
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("chat_sessions.id"), index=True)
    sender_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    chat_session = relationship("ChatSession", back_populates="messages")

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return self.created_at, self.id

    def __repr__(self) -> str:
        return f"<ChatMessage {self.id} session={self.session_id} sender={self.sender_id}>"

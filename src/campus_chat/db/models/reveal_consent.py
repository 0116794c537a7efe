from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from campus_chat.db.base import Base


class RevealConsent(Base):
    """
    Persisted reveal handshake for one chat session.

    Consent columns are None until the participant decides. The dismissed
    flags record which participant has closed the outcome card.
    """
    __tablename__ = "reveal_consents"

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("chat_sessions.id"), unique=True)
    proposer_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    user1_consent: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    user2_consent: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    user1_dismissed: Mapped[bool] = mapped_column(Boolean, default=False)
    user2_dismissed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_declined(self) -> bool:
        return self.user1_consent is False or self.user2_consent is False

    @property
    def is_accepted(self) -> bool:
        return self.user1_consent is True and self.user2_consent is True

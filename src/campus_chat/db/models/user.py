from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from campus_chat.db.base import Base


class Gender(str, Enum):
    """Matching attribute chosen during onboarding."""
    DUDE = "dude"
    GIRL = "girl"

    def opposite(self) -> "Gender":
        return Gender.GIRL if self is Gender.DUDE else Gender.DUDE


class User(Base):
    """User profile: verified email, alias, gender and presence."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    telegram_user_id: Mapped[Optional[int]] = mapped_column(BigInteger, unique=True, index=True, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)

    # Onboarding
    alias: Mapped[str] = mapped_column(String(32), default="")
    alias_locked: Mapped[bool] = mapped_column(Boolean, default=False)
    gender: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)  # dude, girl

    # Presence
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    last_active: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Set while the user holds an active chat session
    active_session_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Identity fields, disclosed only through a mutual reveal
    real_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    details: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def is_onboarded(self) -> bool:
        return bool(self.email and self.gender and self.alias)

    def __repr__(self) -> str:
        return f"<User {self.id} ({self.alias or 'no alias'})>"

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from campus_chat.db.base import Base


class Rating(Base):
    """A participant's rating of a finished chat session."""
    __tablename__ = "ratings"
    __table_args__ = (
        UniqueConstraint("session_id", "rater_id", name="uq_ratings_session_rater"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("chat_sessions.id"))
    rater_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    rating: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

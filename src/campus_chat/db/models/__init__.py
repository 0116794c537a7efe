from campus_chat.db.models.user import User, Gender
from campus_chat.db.models.chat_session import ChatSession, SessionStatus
from campus_chat.db.models.chat_message import ChatMessage
from campus_chat.db.models.rating import Rating
from campus_chat.db.models.reveal_consent import RevealConsent

__all__ = [
    "User",
    "Gender",
    "ChatSession",
    "SessionStatus",
    "ChatMessage",
    "Rating",
    "RevealConsent",
]

from .base import BaseRepository
from .user import user_repo, IdentityCard
from .chat_message_repo import chat_message_repo
from .rating_repo import rating_repo
from .reveal_repo import reveal_repo
from . import chat_session_repo

__all__ = [
    "BaseRepository",
    "IdentityCard",
    "user_repo",
    "chat_message_repo",
    "rating_repo",
    "reveal_repo",
    "chat_session_repo",
]

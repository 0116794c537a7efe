"""
Error taxonomy for matchmaking and chat sessions.

Every error carries a short ``notice`` that the chat surface can show the
user as a transient message. Store failures are translated into
``PersistenceError`` at the repository boundary; everything else is raised
by the matching layer itself.
"""


class ChatError(Exception):
    """Base class for errors surfaced to the user as a transient notice."""

    notice = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, notice: str | None = None):
        super().__init__(message or self.notice)
        if notice is not None:
            self.notice = notice


class AuthRequired(ChatError):
    notice = "Please verify your college email first. Send /start."


class NoCandidates(ChatError):
    notice = "Nobody is online right now. Try again later!"


class NoFreshCandidates(ChatError):
    notice = "No new users available. Try again later for fresh matches!"


class CounterpartBusy(ChatError):
    notice = "They just got matched with someone else. Try again!"


class PersistenceError(ChatError):
    notice = "Could not reach the server. Please try again."


class InvalidTransition(ChatError):
    notice = "That action is not available right now."


class EmptyContent(ChatError):
    notice = "Type something first."


class SessionNotActive(ChatError):
    notice = "This chat has already ended."


class NotAParticipant(ChatError):
    notice = "You are not part of this chat."


class InvalidEmail(ChatError):
    notice = "That does not look like a college email."


class ProfileLocked(ChatError):
    notice = "That part of your profile can no longer be changed."


class InvalidRating(ChatError):
    notice = "Pick one of the rating options."


class RevealNotAccepted(ChatError):
    notice = "Identities stay hidden until you both agree to reveal."

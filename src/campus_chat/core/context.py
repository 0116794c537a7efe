from dataclasses import dataclass

from campus_chat.db.models.user import Gender


@dataclass(frozen=True)
class SessionContext:
    """
    The authenticated caller, resolved once and passed to every operation.

    Built by ``campus_chat.matching.onboarding.resolve_context`` after the
    user has verified an email and finished onboarding.
    """
    user_id: int
    gender: Gender
    alias: str

    @property
    def wanted_gender(self) -> Gender:
        return self.gender.opposite()

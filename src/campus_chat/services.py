import random
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_chat.core.config import Settings, get_settings
from campus_chat.core.feed import ChangeFeed
from campus_chat.db.models import User
from campus_chat.db.repositories import user_repo
from campus_chat.db.utils.session_management import transaction
from campus_chat.matching.channel import ChatChannel
from campus_chat.matching.coordinator import SessionCoordinator
from campus_chat.matching.matchmaker import Matchmaker
from campus_chat.matching.onboarding import Onboarding
from campus_chat.matching.presence import PresenceTracker
from campus_chat.matching.responders import AutoResponder, CannedResponsePolicy, ResponsePolicy
from campus_chat.matching.reveal import RevealHandshake


@dataclass
class ChatServices:
    """Everything a client needs, wired to one store and one change feed."""
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    feed: ChangeFeed
    presence: PresenceTracker
    matchmaker: Matchmaker
    coordinator: SessionCoordinator
    channel: ChatChannel
    reveal: RevealHandshake
    onboarding: Onboarding
    response_policy: ResponsePolicy
    rng: random.Random = field(default_factory=random.Random)

    def presence_tracker(self) -> PresenceTracker:
        """A fresh tracker for one view; start and stop it with the view."""
        return PresenceTracker(self.session_factory, self.feed, self.settings.presence_refresh_seconds)

    def auto_responder(self) -> AutoResponder:
        return AutoResponder(self.channel, self.response_policy, delay=self.settings.auto_reply_delay_seconds)

    async def get_user(self, user_id: int) -> User | None:
        async with transaction(self.session_factory) as session:
            return await user_repo.get(session, user_id)


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings | None = None,
    rng: random.Random | None = None,
    feed: ChangeFeed | None = None,
) -> ChatServices:
    """Wire the matching layer together."""
    settings = settings or get_settings()
    rng = rng or random.Random()
    feed = feed or ChangeFeed()

    presence = PresenceTracker(session_factory, feed, settings.presence_refresh_seconds)
    channel = ChatChannel(session_factory, feed)
    return ChatServices(
        settings=settings,
        session_factory=session_factory,
        feed=feed,
        presence=presence,
        matchmaker=Matchmaker(session_factory, presence, settings, rng=rng),
        coordinator=SessionCoordinator(session_factory, feed, channel, settings),
        channel=channel,
        reveal=RevealHandshake(session_factory, feed),
        onboarding=Onboarding(session_factory, settings.college_email_domains, rng=rng),
        response_policy=CannedResponsePolicy(rng=rng),
        rng=rng,
    )

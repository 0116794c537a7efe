"""
Counterpart selection.

A search reads a bounded pool of online users of the wanted gender, drops
anyone the requester was paired with inside the recent-pair window, and
draws one of the rest at random, weighted by how long they have been
online. Nothing is reserved: two searches can pick the same counterpart,
and the session coordinator's conditional write settles who gets them.
"""
import random
from datetime import datetime, timedelta
from typing import Callable, Sequence, Tuple, TypeVar

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_chat.core.config import Settings
from campus_chat.core.context import SessionContext
from campus_chat.core.errors import NoCandidates, NoFreshCandidates
from campus_chat.db.models import User
from campus_chat.db.repositories import chat_session_repo
from campus_chat.db.utils.session_management import transaction, with_retry
from campus_chat.matching.presence import PresenceTracker

T = TypeVar("T")

# Weights are integers in hundredths of a unit so a seeded draw is exact.
WEIGHT_SCALE = 100
MIN_WEIGHT = 1
MAX_WEIGHT = 5 * WEIGHT_SCALE
SECONDS_PER_WEIGHT_UNIT = 2 * 3600  # one unit per two hours online


def compute_weight(last_active: datetime | None, now: datetime) -> int:
    """
    Weight a candidate by time since they came online.

    Half a unit per hour, capped at five units so an account that is always
    on cannot dominate. Brand-new arrivals keep the minimum weight rather
    than zero.
    """
    if last_active is None:
        return MIN_WEIGHT
    elapsed = max(int((now - last_active).total_seconds()), 0)
    weight = elapsed * WEIGHT_SCALE // SECONDS_PER_WEIGHT_UNIT
    return max(MIN_WEIGHT, min(weight, MAX_WEIGHT))


def weighted_choice(weighted: Sequence[Tuple[T, int]], rng: random.Random) -> T:
    """
    Pick one item with probability proportional to its integer weight.

    Draws ``r`` uniformly from ``1..total`` and subtracts each weight in
    order; the first item that brings ``r`` to zero or below wins, so ties
    go to the earlier item.
    """
    if not weighted:
        raise ValueError("weighted_choice needs at least one candidate")

    total = sum(weight for _, weight in weighted)
    if total <= 0:
        return weighted[0][0]

    remaining = rng.randrange(total) + 1
    for item, weight in weighted:
        remaining -= weight
        if remaining <= 0:
            return item
    return weighted[-1][0]


class Matchmaker:
    """Selects an eligible, not-recently-paired counterpart for a requester."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        presence: PresenceTracker,
        settings: Settings,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.presence = presence
        self.settings = settings
        self.rng = rng or random.Random()
        self.clock = clock

    @with_retry(max_attempts=3, base_delay=0.2, max_delay=2.0)
    async def _recent_partner_ids(self, user_id: int, since: datetime) -> set[int]:
        async with transaction(self.session_factory) as session:
            return await chat_session_repo.get_recent_partner_ids(
                session, user_id, since, limit=self.settings.recent_session_scan_limit
            )

    async def find_match(self, ctx: SessionContext) -> User:
        """
        Find a counterpart of the opposite gender for ``ctx``.

        Raises:
            NoCandidates: nobody eligible is online
            NoFreshCandidates: everyone eligible was paired with the requester recently
            PersistenceError: the store could not be read
        """
        wanted = ctx.wanted_gender
        logger.info(f"Starting matchmaking for user {ctx.user_id} (looking for {wanted.value})")

        pool = await self.presence.candidates(ctx.user_id, wanted, self.settings.match_candidate_limit)
        logger.debug(f"Potential matches found: {len(pool)}")
        if not pool:
            raise NoCandidates(
                f"no online {wanted.value} candidates for user {ctx.user_id}",
                notice=f"No {wanted.value}s online right now. Try again later!",
            )

        now = self.clock()
        since = now - timedelta(hours=self.settings.recent_pair_window_hours)
        recent = await self._recent_partner_ids(ctx.user_id, since)
        available = [user for user in pool if user.id not in recent]
        logger.debug(f"Available matches after excluding {len(recent)} recent partners: {len(available)}")
        if not available:
            raise NoFreshCandidates(f"all {len(pool)} candidates were paired with user {ctx.user_id} recently")

        weighted = [(user, compute_weight(user.last_active, now)) for user in available]
        selected = weighted_choice(weighted, self.rng)
        logger.info(f"Selected match {selected.id} ({selected.alias}) for user {ctx.user_id}")
        return selected

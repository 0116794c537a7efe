#!/usr/bin/env python3
"""
Create online test users so a single developer can get matched.

    python scripts/seed_dev_users.py --gender girl --count 3
"""
import argparse
import asyncio
import random
from datetime import datetime

from dotenv import load_dotenv
from loguru import logger

from campus_chat.core.aliases import generate_alias
from campus_chat.core.config import get_settings
from campus_chat.db.base import create_engine, create_session_factory, init_models
from campus_chat.db.models import Gender
from campus_chat.db.repositories import user_repo
from campus_chat.db.utils.session_management import transaction


async def seed_dev_users(gender: Gender, count: int, seed: int | None = None) -> list[int]:
    """Insert ``count`` onboarded, online users of ``gender`` and return their ids."""
    settings = get_settings()
    engine = create_engine(settings.db_url)
    await init_models(engine)
    session_factory = create_session_factory(engine)
    rng = random.Random(seed)
    domain = settings.college_email_domains[0]
    stamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")

    created = []
    try:
        async with transaction(session_factory) as session:
            for index in range(count):
                user = await user_repo.upsert_profile(session, {
                    "email": f"test.{gender.value}.{stamp}.{index}@{domain}",
                    "gender": gender.value,
                    "alias": generate_alias(rng),
                    "alias_locked": True,
                    "real_name": f"Test {gender.value.title()} {index + 1}",
                    "details": "Seeded development user",
                })
                await user_repo.set_online(session, user.id, True)
                created.append(user.id)
                logger.info(f"Created test user {user.id} ({user.alias})")
    finally:
        await engine.dispose()
    return created


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--gender", choices=[g.value for g in Gender], default=Gender.GIRL.value)
    parser.add_argument("--count", type=int, default=1)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()

    load_dotenv()
    ids = asyncio.run(seed_dev_users(Gender(args.gender), args.count, args.seed))
    logger.info(f"Seeded {len(ids)} users: {ids}")


if __name__ == "__main__":
    main()

import random

ADJECTIVES = [
    "Cosmic", "Mystic", "Chaotic", "Neon", "Quantum",
    "Glitchy", "Cursed", "Electric", "Rogue", "Midnight",
    "Savage", "Turbo", "Stellar", "Velvet", "Reckless",
]

NOUNS = [
    "Taco", "Potato", "Mango", "Penguin", "Wizard",
    "Ninja", "Donut", "Cactus", "Raccoon", "Goblin",
    "Slayer", "Comet", "Bandit", "Sprite", "Cyclone",
]

MAX_ALIAS_LENGTH = 32


def generate_alias(rng: random.Random | None = None) -> str:
    """Build a random display name such as ``NeonPenguin``."""
    rng = rng or random
    return f"{rng.choice(ADJECTIVES)}{rng.choice(NOUNS)}"

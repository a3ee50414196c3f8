"""Game configuration constants and settings."""

import os

from dotenv import load_dotenv

load_dotenv()

TIMEZONE = os.getenv("TIMEZONE", "Asia/Taipei")
DATABASE_PATH = os.getenv("DATABASE_PATH", "faction_terminal.db")

RACES = {
    "corruptor": {"name": "Corruptor", "hp": 200, "atk": 20, "def": 10},
    "esper": {"name": "Esper", "hp": 150, "atk": 15, "def": 15},
    "human": {"name": "Human", "hp": 100, "atk": 10, "def": 10},
}

FACTIONS = {
    "yelu": {"name": "Yelu", "color": 0xB22222},
    "association": {"name": "Association", "color": 0x2563EB},
    "wanderer": {"name": "Wanderer", "color": 0xF5C518},
}

# Only these factions accumulate season score
SCORED_FACTIONS = ("yelu", "association")
WANDERER = "wanderer"

# Item restriction sentinels meaning "anyone"
ANY_RACE = ("all", "none")
ANY_FACTION = (WANDERER, "none")

BATTLE_PREPARATION_MINUTES = 30
REWARD_CHUNK_SIZE = 400
TRANSACTION_ATTEMPTS = 5

ROSTER_CACHE_TTL_SECONDS = int(os.getenv("ROSTER_CACHE_TTL_SECONDS", str(60 * 60)))

TURN_TICK_MINUTES = 5
LOG_ARCHIVE_MINUTES = 15


def admin_user_ids() -> set:
    """Discord user ids allowed to run administrative operations."""
    raw = os.getenv("ADMIN_USER_IDS", "")
    ids = {part.strip() for part in raw.split(",") if part.strip()}
    owner = os.getenv("BOT_OWNER_ID")
    if owner:
        ids.add(owner)
    return ids

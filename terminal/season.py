"""Seasonal faction contest: contributions, weighting and rollover."""

import logging
import math
from typing import Any, Dict, List, Optional

from .auth import Caller, require_admin
from .config import SCORED_FACTIONS, WANDERER
from .errors import game_action, NotFoundError
from .models import ActionResult, FactionTally, Season
from .storage import (
    DocumentStore, Transaction, SEASONS, SEASON_ARCHIVE, CURRENT_SEASON, SERVER_TIMESTAMP,
    Increment, ArrayUnion,
)
from .timeutils import archive_key

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def empty_season() -> Season:
    return Season(
        id=CURRENT_SEASON,
        start_date=SERVER_TIMESTAMP,
        factions={faction_id: FactionTally() for faction_id in SCORED_FACTIONS},
    )


def faction_weights(season: Season) -> Dict[str, Dict[str, Any]]:
    """Weight each faction by total active players over its own active players.

    A faction with no active players (or a season with none at all) has
    weight 1. The weighted score is the rounded product.
    """
    counts = {f: len(season.tally(f).active_players) for f in SCORED_FACTIONS}
    total = sum(counts.values())
    result = {}
    for faction_id in SCORED_FACTIONS:
        tally = season.tally(faction_id)
        count = counts[faction_id]
        weight = total / count if count > 0 and total > 0 else 1
        result[faction_id] = {
            "raw_score": tally.raw_score,
            "active_players": count,
            "weight": weight,
            "weighted_score": _round_half_up(tally.raw_score * weight),
        }
    return result


async def contribute(txn: Transaction, user_id: str, faction_id: str, honor_points: int,
                     faction_contribution: Optional[str] = None) -> Optional[str]:
    """Add honor to the season inside the caller's transaction.

    Wanderers contribute to the faction they name but are never counted as
    that faction's active players. Returns the credited faction, if any.
    """
    target = faction_contribution if faction_id == WANDERER else faction_id
    if honor_points <= 0 or target not in SCORED_FACTIONS:
        return None

    if await txn.get(SEASONS, CURRENT_SEASON) is None:
        txn.set(SEASONS, CURRENT_SEASON, empty_season().to_dict())

    changes = {f"factions.{target}.raw_score": Increment(honor_points)}
    if faction_id != WANDERER:
        changes[f"factions.{target}.active_players"] = ArrayUnion(user_id)
    txn.update(SEASONS, CURRENT_SEASON, changes)
    return target


class SeasonLogic:
    """Reads and rolls over the current season."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def ensure_current_season(self):
        """Seed an empty current season if none exists."""
        async def body(txn):
            if await txn.get(SEASONS, CURRENT_SEASON) is None:
                txn.set(SEASONS, CURRENT_SEASON, empty_season().to_dict())
                logger.info("Seeded an empty current season")

        await self.store.run_transaction(body)

    async def get_current_season(self) -> Optional[Season]:
        data = await self.store.get(SEASONS, CURRENT_SEASON)
        return Season.from_dict(data) if data else None

    @game_action("Could not load the faction conflict.")
    async def get_conflict_data(self) -> ActionResult:
        season = await self.get_current_season()
        if season is None:
            raise NotFoundError("No season is running.")
        return ActionResult(True, "Current faction standings.", data={
            "start_date": season.start_date,
            "factions": faction_weights(season),
        })

    @game_action("Season reset failed, please try again later.")
    async def reset_season(self, caller: Caller) -> ActionResult:
        """Archive the current season and start a fresh one, atomically."""
        require_admin(caller)
        archive_id = archive_key()

        async def body(txn):
            data = await txn.get(SEASONS, CURRENT_SEASON)
            if data is None:
                raise NotFoundError("No season is running.")
            season = Season.from_dict(data)
            weights = faction_weights(season)

            archive = {
                "id": archive_id,
                "season_id": season.id,
                "start_date": season.start_date,
                "archived_at": SERVER_TIMESTAMP,
                "factions": {
                    faction_id: {
                        "raw_score": season.tally(faction_id).raw_score,
                        "weighted_score": weights[faction_id]["weighted_score"],
                        "active_players": list(season.tally(faction_id).active_players),
                    }
                    for faction_id in SCORED_FACTIONS
                },
            }
            txn.set(SEASON_ARCHIVE, archive_id, archive)
            txn.set(SEASONS, CURRENT_SEASON, empty_season().to_dict())
            return weights

        weights = await self.store.run_transaction(body)
        logger.info(f"Season archived as {archive_id} by {caller.user_id}")
        standings = ", ".join(f"{f}: {w['weighted_score']}" for f, w in weights.items())
        return ActionResult(
            True,
            f"Season archived as {archive_id}. Final weighted scores: {standings}.",
            f"🏁 The season has ended! Final weighted scores: {standings}.",
            data={"archive_id": archive_id, "factions": weights},
        )

    async def get_archived_seasons(self) -> List[Dict[str, Any]]:
        """Archived seasons, newest first."""
        archives = await self.store.query(SEASON_ARCHIVE)
        return sorted(archives, key=lambda a: a.get("archived_at") or "", reverse=True)

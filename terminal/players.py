"""Player registration, admin edits and the roster."""

import logging
from typing import Any, Dict, List, Optional

from .auth import Caller, require_admin
from .cache import TTLCache
from .config import RACES, FACTIONS, SCORED_FACTIONS, WANDERER
from .errors import game_action, MissingFieldError, NotFoundError, PreconditionError
from .models import ActionResult, ActivityLog, User
from .storage import DocumentStore, USERS, SERVER_TIMESTAMP, activity_logs_path

logger = logging.getLogger(__name__)

REGISTRATION_OPEN = "registration_open"
MAINTENANCE = "maintenance"
ROSTER_KEY = "roster"

# Fields an admin may edit directly
EDITABLE_FIELDS = ("approved", "role_name", "faction_id", "race_id", "titles")


class PlayerLogic:
    """Handles player characters."""

    def __init__(self, store: DocumentStore, cache: Optional[TTLCache] = None):
        self.store = store
        self.cache = cache

    async def get_user(self, user_id: str) -> Optional[User]:
        data = await self.store.get(USERS, user_id)
        return User.from_dict(data) if data else None

    async def is_registration_open(self) -> bool:
        return await self.store.get_state(REGISTRATION_OPEN) != "0"

    async def is_maintenance(self) -> bool:
        return await self.store.get_state(MAINTENANCE) == "1"

    @game_action("Registration failed, please try again later.")
    async def register_player(self, user_id: str, role_name: str, faction_id: str, race_id: str) -> ActionResult:
        """Create an unapproved character with the race's base stats."""
        if not role_name:
            raise MissingFieldError("Your character needs a name.")
        if race_id not in RACES:
            raise PreconditionError(f"Unknown race {race_id}.")
        if faction_id not in FACTIONS:
            raise PreconditionError(f"Unknown faction {faction_id}.")
        if not await self.is_registration_open():
            raise PreconditionError("Registration is closed right now.")

        race = RACES[race_id]
        user = User(
            id=user_id, role_name=role_name, faction_id=faction_id, race_id=race_id,
            attributes={"hp": race["hp"], "atk": race["atk"], "def": race["def"]},
            registration_date=SERVER_TIMESTAMP,
        )

        async def body(txn):
            if await txn.get(USERS, user_id):
                raise PreconditionError("You already have a character.")
            txn.set(USERS, user_id, user.to_dict())
            txn.add(activity_logs_path(user_id), {
                "user_id": user_id,
                "description": f"Registered as {role_name}",
                "change": f"{FACTIONS[faction_id]['name']} {race['name']}",
                "timestamp": SERVER_TIMESTAMP,
            })

        await self.store.run_transaction(body)
        logger.info(f"Registered {user_id} as {role_name} ({faction_id}/{race_id})")
        return ActionResult(
            True,
            f"Welcome, **{role_name}**! An administrator will approve your character soon.",
        )

    @game_action("Updating the player failed, please try again later.")
    async def update_user(self, caller: Caller, user_id: str, changes: Dict[str, Any]) -> ActionResult:
        require_admin(caller)
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise PreconditionError(f"These fields cannot be edited: {', '.join(sorted(unknown))}")
        if "race_id" in changes and changes["race_id"] not in RACES:
            raise PreconditionError(f"Unknown race {changes['race_id']}.")
        if "faction_id" in changes and changes["faction_id"] not in FACTIONS:
            raise PreconditionError(f"Unknown faction {changes['faction_id']}.")

        async def body(txn):
            if not await txn.get(USERS, user_id):
                raise NotFoundError("That player could not be found.")
            txn.update(USERS, user_id, dict(changes))

        await self.store.run_transaction(body)
        if self.cache is not None:
            self.cache.invalidate(ROSTER_KEY)
        return ActionResult(True, f"Updated {', '.join(sorted(changes))} for <@{user_id}>.")

    async def get_roster(self) -> Dict[str, List[Dict[str, Any]]]:
        """Approved players by faction, highest honor first."""
        if self.cache is not None:
            cached = self.cache.get(ROSTER_KEY)
            if cached is not None:
                return cached

        users = [User.from_dict(d) for d in await self.store.query(USERS, lambda d: d.get("approved"))]
        users.sort(key=lambda u: u.honor_points, reverse=True)
        roster = {faction_id: [] for faction_id in (*SCORED_FACTIONS, WANDERER)}
        for user in users:
            roster.setdefault(user.faction_id, []).append({
                "id": user.id,
                "role_name": user.role_name,
                "race_id": user.race_id,
                "honor_points": user.honor_points,
            })

        if self.cache is not None:
            self.cache.set(ROSTER_KEY, roster)
        return roster

    async def get_activity_log(self, user_id: str, limit: int = 10) -> List[ActivityLog]:
        """Most recent activity entries for a user."""
        documents = await self.store.query(activity_logs_path(user_id))
        logs = [ActivityLog.from_dict(d) for d in documents]
        logs.sort(key=lambda log: log.timestamp or "", reverse=True)
        return logs[:limit]

    @game_action("Could not change the maintenance flag.")
    async def set_maintenance(self, caller: Caller, enabled: bool) -> ActionResult:
        require_admin(caller)
        await self.store.set_state(MAINTENANCE, "1" if enabled else "0")
        logger.info(f"Maintenance {'enabled' if enabled else 'disabled'} by {caller.user_id}")
        return ActionResult(True, f"Maintenance mode is now {'on' if enabled else 'off'}.")

    @game_action("Could not change the registration flag.")
    async def set_registration_open(self, caller: Caller, enabled: bool) -> ActionResult:
        require_admin(caller)
        await self.store.set_state(REGISTRATION_OPEN, "1" if enabled else "0")
        return ActionResult(True, f"Registration is now {'open' if enabled else 'closed'}.")

"""Reward distribution to explicit users or to everyone matching a filter."""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .auth import Caller, require_admin
from .config import REWARD_CHUNK_SIZE, SCORED_FACTIONS, WANDERER
from .errors import game_action, GameError, NotFoundError, InsufficientCurrencyError
from .models import (
    ActionResult, CombatEncounter, CombatLog, Item, Participant, RewardBundle, Title, User,
    PLAYER_ATTACK,
)
from .storage import (
    DocumentStore, USERS, ITEMS, TITLES, ENCOUNTERS, SERVER_TIMESTAMP,
    combat_logs_path, activity_logs_path,
)
from .titles import TitleEngine

logger = logging.getLogger(__name__)

_DAMAGE_IN_MESSAGE = re.compile(r"for (\d+) damage|dealt (\d+) damage", re.IGNORECASE)


def _compare(actual: int, op: Optional[str], value: Optional[int]) -> bool:
    """Strict comparison; no operator means no constraint, no value means 0."""
    if op == ">":
        return actual > (value or 0)
    if op == "<":
        return actual < (value or 0)
    return True


@dataclass
class RewardFilter:
    """Conditions combined with AND over the approved users."""
    faction_id: Optional[str] = None
    race_id: Optional[str] = None
    honor_points_op: Optional[str] = None
    honor_points_val: Optional[int] = None
    currency_op: Optional[str] = None
    currency_val: Optional[int] = None
    task_count_op: Optional[str] = None
    task_count_val: Optional[int] = None
    battle_id: Optional[str] = None
    damage_threshold: Optional[int] = None

    @property
    def by_battle_damage(self) -> bool:
        return bool(self.battle_id) and self.damage_threshold is not None

    def matches(self, user: User) -> bool:
        if self.faction_id and user.faction_id != self.faction_id:
            return False
        if self.race_id and user.race_id != self.race_id:
            return False
        return (_compare(user.honor_points, self.honor_points_op, self.honor_points_val)
                and _compare(user.currency, self.currency_op, self.currency_val)
                and _compare(len(user.tasks), self.task_count_op, self.task_count_val))


def attribute_log(log: CombatLog, roster: Dict[str, Participant]) -> Tuple[Optional[str], int]:
    """Return (user_id, damage) for a combat log entry.

    Entries written before user ids were recorded fall back to matching the
    message prefix against participant names, longest name first, and to
    reading the damage number out of the message.
    """
    user_id = log.user_id
    if not user_id:
        for candidate, participant in sorted(roster.items(), key=lambda kv: -len(kv[1].role_name)):
            if participant.role_name and log.message.startswith(participant.role_name):
                user_id = candidate
                break

    damage = log.damage or 0
    if not damage:
        match = _DAMAGE_IN_MESSAGE.search(log.message)
        if match:
            damage = int(match.group(1) or match.group(2))
    return user_id, damage


class RewardEngine:
    """Grants reward bundles, one transaction per user."""

    def __init__(self, store: DocumentStore, titles: Optional[TitleEngine] = None,
                 chunk_size: int = REWARD_CHUNK_SIZE):
        self.store = store
        self.titles = titles or TitleEngine(store)
        self.chunk_size = chunk_size

    async def battle_damage(self, battle_id: str, log_types=None) -> Dict[str, int]:
        """Total damage per user id in a battle's combat logs."""
        battle_data = await self.store.get(ENCOUNTERS, battle_id)
        roster = CombatEncounter.from_dict(battle_data).participants if battle_data else {}
        totals: Dict[str, int] = {}
        for document in await self.store.query(combat_logs_path(battle_id)):
            log = CombatLog.from_dict(document)
            if log_types and log.type not in log_types:
                continue
            user_id, damage = attribute_log(log, roster)
            if user_id and damage > 0:
                totals[user_id] = totals.get(user_id, 0) + damage
        return totals

    async def resolve_targets(self, target_user_ids: Optional[List[str]] = None,
                              filters: Optional[RewardFilter] = None) -> List[str]:
        if target_user_ids:
            return list(dict.fromkeys(target_user_ids))

        users = [User.from_dict(d) for d in await self.store.query(USERS, lambda d: d.get("approved"))]
        if filters is None:
            return [user.id for user in users]

        if filters.by_battle_damage:
            totals = await self.battle_damage(filters.battle_id, log_types=(PLAYER_ATTACK,))
            pool = {uid for uid, total in totals.items() if total > filters.damage_threshold}
            users = [user for user in users if user.id in pool]

        return [user.id for user in users if filters.matches(user)]

    @game_action("Reward distribution failed, please try again later.")
    async def distribute(self, caller: Caller, rewards: RewardBundle,
                         target_user_ids: Optional[List[str]] = None,
                         filters: Optional[RewardFilter] = None,
                         battle: Optional[CombatEncounter] = None) -> ActionResult:
        """Grant ``rewards`` to every resolved target.

        A user whose grant fails is logged and skipped; the rest carry on.
        Passing ``battle`` also records participation and knock-outs.
        """
        require_admin(caller)
        if rewards.is_empty() and battle is None:
            return ActionResult(False, "There is nothing to hand out.")

        user_ids = await self.resolve_targets(target_user_ids, filters)
        if not user_ids:
            return ActionResult(True, "No players matched the reward conditions.",
                                data={"processed_count": 0, "processed_users": [], "failed_user_ids": []})

        all_titles = await self.titles.load_titles()
        labels = await self._labels(rewards)

        processed: List[Dict[str, str]] = []
        failed: List[str] = []
        for start in range(0, len(user_ids), self.chunk_size):
            chunk = user_ids[start:start + self.chunk_size]
            for user_id in chunk:
                try:
                    user = await self._grant(user_id, rewards, labels, all_titles, battle)
                    processed.append({"id": user.id, "role_name": user.role_name})
                except GameError as e:
                    logger.warning(f"Reward for {user_id} skipped: {e.message}")
                    failed.append(user_id)
                except Exception as e:
                    logger.warning(f"Reward for {user_id} failed: {e}", exc_info=True)
                    failed.append(user_id)
            logger.info(f"Rewarded {len(processed)}/{len(user_ids)} users so far")

        return ActionResult(
            True,
            f"Rewards sent to {len(processed)} players.",
            data={"processed_count": len(processed), "processed_users": processed, "failed_user_ids": failed},
        )

    async def _labels(self, rewards: RewardBundle) -> Dict[str, str]:
        labels = {}
        if rewards.item_id:
            data = await self.store.get(ITEMS, rewards.item_id)
            if not data:
                raise NotFoundError("The reward item could not be found.")
            labels["item"] = Item.from_dict(data).name
        if rewards.title_id:
            data = await self.store.get(TITLES, rewards.title_id)
            if not data:
                raise NotFoundError("The reward title could not be found.")
            labels["title"] = Title.from_dict(data).name
        return labels

    async def _grant(self, user_id: str, rewards: RewardBundle, labels: Dict[str, str],
                     all_titles: List[Title], battle: Optional[CombatEncounter]) -> User:
        async def body(txn):
            data = await txn.get(USERS, user_id)
            if not data:
                raise NotFoundError(f"User {user_id} could not be found.")
            user = User.from_dict(data)
            changes = []

            if rewards.honor_points:
                user.honor_points += rewards.honor_points
                changes.append(f"Honor {rewards.honor_points:+d}")
            if rewards.currency:
                if user.currency + rewards.currency < 0:
                    raise InsufficientCurrencyError(f"{user.role_name} cannot afford the deduction.")
                user.currency += rewards.currency
                if rewards.currency > 0:
                    user.total_currency_earned += rewards.currency
                changes.append(f"Currency {rewards.currency:+d}")
            if rewards.item_id:
                # granting an item the user already owns is a no-op
                if user.item_count(rewards.item_id) < 1:
                    user.items[rewards.item_id] = 1
                    changes.append(f"Item: {labels['item']}")
            if rewards.title_id and rewards.title_id not in user.titles:
                user.titles.append(rewards.title_id)
                changes.append(f"Title: {labels['title']}")

            if battle is not None:
                if battle.id not in user.participated_battle_ids:
                    user.participated_battle_ids.append(battle.id)
                participant = battle.participants.get(user_id)
                if participant is not None and participant.hp <= 0:
                    user.hp_zero_count += 1

            txn.update(USERS, user_id, {
                "honor_points": user.honor_points,
                "currency": user.currency,
                "total_currency_earned": user.total_currency_earned,
                "items": user.items,
                "titles": user.titles,
                "participated_battle_ids": user.participated_battle_ids,
                "hp_zero_count": user.hp_zero_count,
            })
            txn.add(activity_logs_path(user_id), {
                "user_id": user_id,
                "description": rewards.log_message or "Received a reward",
                "change": ", ".join(changes) or "Recorded",
                "timestamp": SERVER_TIMESTAMP,
            })
            await self.titles.award(txn, user, all_titles, battle.id if battle else None)
            return user

        return await self.store.run_transaction(body)

    async def damage_stats(self, battle_id: str) -> List[Dict]:
        """Per-user damage for a battle, highest first."""
        totals = await self.battle_damage(battle_id)
        stats = []
        for user_id, total in totals.items():
            data = await self.store.get(USERS, user_id)
            user = User.from_dict(data) if data else None
            stats.append({
                "user_id": user_id,
                "role_name": user.role_name if user else user_id,
                "faction_id": user.faction_id if user else WANDERER,
                "total_damage": total,
            })
        stats.sort(key=lambda s: s["total_damage"], reverse=True)
        return stats

    @game_action("Could not hand out battle damage rewards.")
    async def award_battle_damage_rewards(self, caller: Caller, battle_id: str, preview: bool = False,
                                          threshold_title_id: Optional[str] = None,
                                          damage_threshold: int = 0,
                                          faction_rewards: Optional[Dict[str, RewardBundle]] = None) -> ActionResult:
        """Reward a battle's heavy hitters.

        Everyone at or above ``damage_threshold`` gets the threshold title, and
        the top damage dealer of each faction gets that faction's MVP bundle.
        """
        require_admin(caller)
        battle_data = await self.store.get(ENCOUNTERS, battle_id)
        if not battle_data:
            raise NotFoundError("That battlefield could not be found.")
        battle = CombatEncounter.from_dict(battle_data)

        stats = await self.damage_stats(battle_id)
        if preview:
            return ActionResult(True, f"{len(stats)} players dealt damage in {battle.name}.",
                                data={"stats": stats})

        all_titles = await self.titles.load_titles()
        messages = []

        if threshold_title_id:
            bundle = RewardBundle(title_id=threshold_title_id,
                                  log_message=f"Dealt at least {damage_threshold} damage in {battle.name}")
            labels = await self._labels(bundle)
            granted = 0
            for entry in stats:
                if entry["total_damage"] < damage_threshold:
                    continue
                try:
                    await self._grant(entry["user_id"], bundle, labels, all_titles, None)
                    granted += 1
                except GameError as e:
                    logger.warning(f"Threshold title for {entry['user_id']} skipped: {e.message}")
                    messages.append(f"Could not reward {entry['role_name']}: {e.message}")
            messages.append(f"{granted} players earned {labels['title']}.")

        for faction_id, bundle in (faction_rewards or {}).items():
            if bundle.is_empty():
                continue
            top = next((entry for entry in stats if _damage_bucket(entry["faction_id"]) == faction_id), None)
            if top is None:
                messages.append(f"No MVP for {faction_id}.")
                continue
            if not bundle.log_message:
                bundle.log_message = f"MVP of {battle.name}"
            try:
                await self._grant(top["user_id"], bundle, await self._labels(bundle), all_titles, None)
                messages.append(f"{faction_id} MVP: {top['role_name']} ({top['total_damage']} damage).")
            except GameError as e:
                logger.warning(f"MVP reward for {top['user_id']} skipped: {e.message}")
                messages.append(f"Could not reward {top['role_name']}: {e.message}")

        return ActionResult(True, "\n".join(messages) or "Nothing to award.", data={"stats": stats})


def _damage_bucket(faction_id: str) -> str:
    return faction_id if faction_id in SCORED_FACTIONS else WANDERER

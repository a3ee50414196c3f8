"""Automatic title awards.

A title's trigger is stored as a plain dict tagged by ``type``. Each tag maps to
a frozen dataclass, and every trigger class has exactly one evaluator.
"""

import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional

from .models import CombatLog, Title, User, ITEM_USED
from .storage import (
    DocumentStore, Transaction, TITLES, USERS, SERVER_TIMESTAMP, ArrayUnion,
    combat_logs_path, activity_logs_path,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HonorPointsTrigger:
    value: int


@dataclass(frozen=True)
class CurrencyTrigger:
    value: int


@dataclass(frozen=True)
class TasksSubmittedTrigger:
    value: int


@dataclass(frozen=True)
class BattlesParticipatedTrigger:
    value: int


@dataclass(frozen=True)
class BattlesHpZeroTrigger:
    value: int


@dataclass(frozen=True)
class ItemUsedTrigger:
    item_id: str
    value: int


@dataclass(frozen=True)
class ItemDamageTrigger:
    """Count of a battle's item logs for ``item_id`` with damage >= threshold."""
    item_id: str
    damage_threshold: int
    value: int


TRIGGER_TYPES = {
    "honor_points": HonorPointsTrigger,
    "currency": CurrencyTrigger,
    "tasks_submitted": TasksSubmittedTrigger,
    "battles_participated": BattlesParticipatedTrigger,
    "battles_hp_zero": BattlesHpZeroTrigger,
    "item_used": ItemUsedTrigger,
    "item_damage": ItemDamageTrigger,
}


def trigger_from_dict(data: Optional[Dict[str, Any]]):
    """Parse a stored trigger, or return None when it is absent or unknown."""
    if not data:
        return None
    cls = TRIGGER_TYPES.get(data.get("type"))
    if cls is None:
        return None
    try:
        kwargs = {f.name: data[f.name] for f in fields(cls)}
    except KeyError:
        return None
    return cls(**kwargs)


class _Context:
    """Per-evaluation state; battle logs are loaded at most once."""

    def __init__(self, store: DocumentStore, battle_id: Optional[str]):
        self.store = store
        self.battle_id = battle_id
        self._logs = None

    async def battle_logs(self) -> List[CombatLog]:
        if self._logs is None:
            documents = await self.store.query(combat_logs_path(self.battle_id)) if self.battle_id else []
            self._logs = [CombatLog.from_dict(d) for d in documents]
        return self._logs


async def _honor_points(trigger, user, context):
    return user.honor_points >= trigger.value


async def _currency(trigger, user, context):
    return user.currency >= trigger.value


async def _tasks_submitted(trigger, user, context):
    return len(user.tasks) >= trigger.value


async def _battles_participated(trigger, user, context):
    return len(user.participated_battle_ids) >= trigger.value


async def _battles_hp_zero(trigger, user, context):
    return user.hp_zero_count >= trigger.value


async def _item_used(trigger, user, context):
    return user.item_use_count.get(trigger.item_id, 0) >= trigger.value


async def _item_damage(trigger, user, context):
    if not context.battle_id:
        return False
    qualifying = [
        log for log in await context.battle_logs()
        if log.type == ITEM_USED and log.item_id == trigger.item_id
        and (log.damage or 0) >= trigger.damage_threshold
    ]
    return len(qualifying) >= trigger.value


_EVALUATORS = {
    HonorPointsTrigger: _honor_points,
    CurrencyTrigger: _currency,
    TasksSubmittedTrigger: _tasks_submitted,
    BattlesParticipatedTrigger: _battles_participated,
    BattlesHpZeroTrigger: _battles_hp_zero,
    ItemUsedTrigger: _item_used,
    ItemDamageTrigger: _item_damage,
}

_unhandled = set(TRIGGER_TYPES.values()) - set(_EVALUATORS)
if _unhandled:
    raise RuntimeError(f"Trigger types without an evaluator: {sorted(c.__name__ for c in _unhandled)}")


class TitleEngine:
    """Finds and awards titles a user has newly qualified for."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def load_titles(self) -> List[Title]:
        return [Title.from_dict(d) for d in await self.store.query(TITLES)]

    async def evaluate(self, user: User, all_titles: List[Title], battle_id: Optional[str] = None) -> List[Title]:
        """Return automatic titles the user qualifies for but does not own."""
        context = _Context(self.store, battle_id)
        owned = set(user.titles)
        awarded = []
        for title in all_titles:
            if title.is_manual or title.id in owned or not title.trigger:
                continue
            trigger = trigger_from_dict(title.trigger)
            if trigger is None:
                logger.warning(f"Title {title.id} has an unreadable trigger: {title.trigger}")
                continue
            if await _EVALUATORS[type(trigger)](trigger, user, context):
                awarded.append(title)
        return awarded

    async def award(self, txn: Transaction, user: User, all_titles: List[Title],
                    battle_id: Optional[str] = None) -> List[Title]:
        """Queue newly earned titles and their activity log onto ``txn``."""
        earned = await self.evaluate(user, all_titles, battle_id)
        if not earned:
            return []
        user.titles.extend(title.id for title in earned)
        txn.update(USERS, user.id, {"titles": ArrayUnion(*[title.id for title in earned])})
        txn.add(activity_logs_path(user.id), {
            "user_id": user.id,
            "description": "Reached a new milestone!",
            "change": "Titles earned: " + ", ".join(title.name for title in earned),
            "timestamp": SERVER_TIMESTAMP,
        })
        logger.info(f"User {user.id} earned titles {[title.id for title in earned]}")
        return earned

    async def check_user(self, user_id: str, battle_id: Optional[str] = None) -> List[Title]:
        """Run the title check for one user in its own transaction."""
        all_titles = await self.load_titles()

        async def body(txn):
            data = await txn.get(USERS, user_id)
            if not data:
                return []
            return await self.award(txn, User.from_dict(data), all_titles, battle_id)

        return await self.store.run_transaction(body)

"""Battle rules: encounter lifecycle, player actions and the turn tick."""

import logging
import random
from dataclasses import asdict
from typing import Dict, List, Optional, Sequence

from .auth import Caller, require_admin
from .config import BATTLE_PREPARATION_MINUTES, WANDERER, ANY_FACTION, ANY_RACE
from .dice import evaluate_formula
from .effects import EffectResolver
from .errors import (
    game_action, MissingFieldError, NotFoundError, PreconditionError, WrongStatusError,
    CooldownActiveError, TargetNotFoundError, TargetAlreadyDefeatedError,
)
from .models import (
    ActionResult, CombatEncounter, CombatLog, Item, Monster, Participant, RewardBundle,
    Skill, User, AttributeEffect,
    PREPARING, ACTIVE, ENDED, CLOSED, PLAYER_ATTACK, ITEM_USED, SKILL_USED,
)
from .rewards import RewardEngine
from .storage import (
    DocumentStore, Transaction, USERS, ITEMS, SKILLS, ENCOUNTERS, SERVER_TIMESTAMP,
    combat_logs_path, activity_logs_path, battle_buffer_key, new_id,
)
from .timeutils import isoformat, now, minutes_from_now

logger = logging.getLogger(__name__)


async def _load_user(txn: Transaction, user_id: str) -> User:
    data = await txn.get(USERS, user_id)
    if not data:
        raise NotFoundError("Your character could not be found. Register first.")
    return User.from_dict(data)


async def _load_battle(txn: Transaction, battle_id: str) -> CombatEncounter:
    data = await txn.get(ENCOUNTERS, battle_id)
    if not data:
        raise NotFoundError("That battlefield could not be found.")
    return CombatEncounter.from_dict(data)


def _require_active(battle: CombatEncounter):
    if battle.status != ACTIVE:
        raise WrongStatusError(f"{battle.name} is not in progress.")


def _battle_changes(battle: CombatEncounter) -> Dict:
    return {
        "monsters": [asdict(monster) for monster in battle.monsters],
        "participants": {user_id: asdict(p) for user_id, p in battle.participants.items()},
    }


class CombatLogic:
    """Handles encounters and everything players do inside them."""

    def __init__(self, store: DocumentStore, rng: Optional[random.Random] = None,
                 rewards: Optional[RewardEngine] = None):
        self.store = store
        self.rng = rng or random.Random()
        self.resolver = EffectResolver(self.rng)
        self.rewards = rewards or RewardEngine(store)

    async def get_battle(self, battle_id: str) -> Optional[CombatEncounter]:
        data = await self.store.get(ENCOUNTERS, battle_id)
        return CombatEncounter.from_dict(data) if data else None

    async def list_battles(self, statuses: Sequence[str] = (PREPARING, ACTIVE)) -> List[CombatEncounter]:
        documents = await self.store.query(ENCOUNTERS, lambda d: d.get("status") in statuses)
        return [CombatEncounter.from_dict(d) for d in documents]

    def effective_attack(self, user: User, equipped: Sequence[Item]) -> int:
        """Base attack plus every add/dice atk bonus on the equipped items."""
        effects = [e for item in equipped for e in item.effects
                   if isinstance(e, AttributeEffect) and e.attribute == "atk"]
        attributes = self.resolver.apply_attributes(effects, {"atk": user.attributes.get("atk", 0)})
        return int(attributes["atk"])

    # ---- lifecycle ----

    @game_action("Could not create the battle.")
    async def create_battle(self, caller: Caller, name: str, monsters: List[Dict],
                            rewards: Optional[RewardBundle] = None) -> ActionResult:
        """Create a battle in preparation with the given monsters."""
        require_admin(caller)
        if not name:
            raise MissingFieldError("A battle needs a name.")
        if not monsters:
            raise MissingFieldError("A battle needs at least one monster.")

        battle = CombatEncounter(
            id=new_id(),
            name=name,
            monsters=[self._new_monster(m) for m in monsters],
            start_time=SERVER_TIMESTAMP,
            preparation_end_time=minutes_from_now(BATTLE_PREPARATION_MINUTES),
            end_of_battle_rewards=rewards if rewards and not rewards.is_empty() else None,
        )
        await self.store.set(ENCOUNTERS, battle.id, battle.to_dict())
        logger.info(f"Battle {battle.id} ({name}) created by {caller.user_id}")
        return ActionResult(
            True,
            f"Battle **{name}** created. Preparation ends in {BATTLE_PREPARATION_MINUTES} minutes.",
            f"A new battle is being prepared: **{name}**!",
            data={"battle_id": battle.id},
        )

    def _new_monster(self, definition: Dict) -> Monster:
        if not definition.get("name") or definition.get("hp") is None:
            raise MissingFieldError("Every monster needs a name and hp.")
        hp = int(definition["hp"])
        return Monster(id=new_id(), name=definition["name"], hp=hp, original_hp=hp, atk=str(definition.get("atk", "0")))

    @game_action("Could not add the monster.")
    async def add_monster(self, caller: Caller, battle_id: str, monster: Dict) -> ActionResult:
        require_admin(caller)
        new_monster = self._new_monster(monster)

        async def body(txn):
            battle = await _load_battle(txn, battle_id)
            if battle.status not in (PREPARING, ACTIVE):
                raise WrongStatusError(f"{battle.name} has already ended.")
            battle.monsters.append(new_monster)
            txn.update(ENCOUNTERS, battle_id, {"monsters": [asdict(m) for m in battle.monsters]})
            return battle

        battle = await self.store.run_transaction(body)
        return ActionResult(
            True, f"{new_monster.name} joined {battle.name}.",
            f"**{new_monster.name}** has appeared in {battle.name}!",
            data={"monster_id": new_monster.id},
        )

    async def _move_status(self, battle_id: str, new_status: str, allowed_from: Sequence[str],
                           extra: Optional[Dict] = None) -> CombatEncounter:
        async def body(txn):
            battle = await _load_battle(txn, battle_id)
            if battle.status not in allowed_from:
                raise WrongStatusError(f"{battle.name} is {battle.status} and cannot become {new_status}.")
            txn.update(ENCOUNTERS, battle_id, {"status": new_status, **(extra or {})})
            battle.status = new_status
            return battle

        return await self.store.run_transaction(body)

    @game_action("Could not start the battle.")
    async def start_battle(self, caller: Caller, battle_id: str) -> ActionResult:
        require_admin(caller)
        battle = await self._move_status(battle_id, ACTIVE, (PREPARING,))
        logger.info(f"Battle {battle_id} started")
        return ActionResult(True, f"{battle.name} has started.", f"⚔️ **{battle.name}** has begun!")

    @game_action("Could not end the battle.")
    async def end_battle(self, caller: Caller, battle_id: str) -> ActionResult:
        """End a battle and settle participation and end-of-battle rewards."""
        require_admin(caller)
        battle = await self._move_status(battle_id, ENDED, (PREPARING, ACTIVE), {"end_time": SERVER_TIMESTAMP})
        logger.info(f"Battle {battle_id} ended with {len(battle.participants)} participants")

        if not battle.participants:
            return ActionResult(True, f"{battle.name} has ended. Nobody took part.",
                                f"**{battle.name}** has ended.")

        bundle = battle.end_of_battle_rewards or RewardBundle()
        if not bundle.log_message:
            bundle.log_message = f"Took part in {battle.name}"
        settled = await self.rewards.distribute(
            caller, bundle, target_user_ids=list(battle.participants), battle=battle
        )
        if not settled.success:
            return ActionResult(False, f"{battle.name} ended but settling rewards failed: {settled.message}")

        return ActionResult(
            True,
            f"{battle.name} has ended. {settled.message}",
            f"**{battle.name}** has ended. Thank you to all {len(battle.participants)} fighters!",
            data=settled.data,
        )

    @game_action("Could not close the battle.")
    async def close_battle(self, caller: Caller, battle_id: str) -> ActionResult:
        require_admin(caller)
        battle = await self._move_status(battle_id, CLOSED, (ENDED,))
        return ActionResult(True, f"{battle.name} is closed.")

    @game_action("Could not advance the turn.")
    async def advance_turn(self, battle_id: str) -> ActionResult:
        """Tick one turn: expire buffs and count down skill cooldowns."""
        async def body(txn):
            battle = await _load_battle(txn, battle_id)
            _require_active(battle)
            battle.turn += 1
            for participant in battle.participants.values():
                remaining = []
                for buff in participant.active_buffs:
                    buff.turns_left -= 1
                    if buff.turns_left > 0:
                        remaining.append(buff)
                participant.active_buffs = remaining
                participant.skill_cooldowns = {
                    skill_id: max(0, turns - 1) for skill_id, turns in participant.skill_cooldowns.items()
                }
            txn.update(ENCOUNTERS, battle_id, {"turn": battle.turn, **_battle_changes(battle)})
            return battle

        battle = await self.store.run_transaction(body)
        return ActionResult(True, f"{battle.name} is now on turn {battle.turn}.", data={"turn": battle.turn})

    # ---- player actions ----

    @game_action("Attack failed, please try again later.")
    async def perform_attack(self, user_id: str, battle_id: str, target_monster_id: str,
                             equipped_item_ids: Sequence[str] = (),
                             supported_faction: Optional[str] = None) -> ActionResult:
        """Hit a monster with base attack plus equipped bonuses.

        The monster's counter-attack is rolled and reported but not applied
        to the participant's hp.
        """
        async def body(txn):
            user = await _load_user(txn, user_id)
            battle = await _load_battle(txn, battle_id)
            _require_active(battle)

            target = battle.find_monster(target_monster_id)
            if target is None:
                raise TargetNotFoundError()
            if target.hp <= 0:
                raise TargetAlreadyDefeatedError(f"{target.name} has already been defeated.")

            participant = battle.participants.get(user_id) or Participant.for_user(user)
            if participant.hp <= 0:
                raise PreconditionError("You have no HP left and cannot act in this battle.")

            equipped = []
            for item_id in equipped_item_ids:
                if user.item_count(item_id) < 1:
                    raise PreconditionError("You can only equip items you own.")
                data = await txn.get(ITEMS, item_id)
                if data:
                    equipped.append(Item.from_dict(data))

            damage = self.effective_attack(user, equipped)
            target.hp = max(0, target.hp - damage)
            counter = evaluate_formula(target.atk, self.rng)

            participant.equipped_items = list(equipped_item_ids)
            if user.faction_id == WANDERER and supported_faction:
                participant.supported_faction = supported_faction
            battle.participants[user_id] = participant
            txn.update(ENCOUNTERS, battle_id, _battle_changes(battle))

            message = (f"{user.role_name} attacked {target.name} for {damage} damage; "
                       f"{target.name} struck back for {counter}.")
            if target.hp == 0:
                message += f" {target.name} has been defeated!"
            log = CombatLog(
                id=new_id(), encounter_id=battle_id, message=message, turn=battle.turn,
                type=PLAYER_ATTACK, user_id=user_id, user_faction=user.faction_id,
                damage=damage, timestamp=SERVER_TIMESTAMP,
            )
            txn.set(combat_logs_path(battle_id), log.id, log.to_dict())
            return ActionResult(True, message, data={
                "monster_damage": damage,
                "player_damage": counter,
                "monster_hp": target.hp,
            })

        return await self.store.run_transaction(body)

    @game_action("Using the item failed, please try again later.")
    async def use_battle_item(self, user_id: str, battle_id: str, item_id: str,
                              target_monster_id: Optional[str] = None) -> ActionResult:
        """Use one item from the inventory inside a battle."""
        async def body(txn):
            user = await _load_user(txn, user_id)
            battle = await _load_battle(txn, battle_id)
            _require_active(battle)
            if user.item_count(item_id) < 1:
                raise PreconditionError("You do not have that item.")
            item_data = await txn.get(ITEMS, item_id)
            if not item_data:
                raise NotFoundError("That item could not be found.")
            item = Item.from_dict(item_data)

            participant = battle.participants.get(user_id) or Participant.for_user(user)
            outcome = self.resolver.resolve(
                item.effects, participant, battle.monsters, target_monster_id, source=item.id
            )
            battle.participants[user_id] = participant

            items = dict(user.items)
            items[item_id] -= 1
            if items[item_id] <= 0:
                del items[item_id]
            use_count = dict(user.item_use_count)
            use_count[item_id] = use_count.get(item_id, 0) + 1
            txn.update(USERS, user_id, {"items": items, "item_use_count": use_count})
            txn.update(ENCOUNTERS, battle_id, _battle_changes(battle))

            message = " ".join([f"{user.role_name} used {item.name}."] + outcome.fragments)
            log = CombatLog(
                id=new_id(), encounter_id=battle_id, message=message, turn=battle.turn,
                type=ITEM_USED, user_id=user_id, user_faction=user.faction_id, item_id=item_id,
                damage=outcome.total_damage or None, timestamp=SERVER_TIMESTAMP,
            )
            txn.set(combat_logs_path(battle_id), log.id, log.to_dict())
            txn.add(activity_logs_path(user_id), {
                "user_id": user_id,
                "description": f"Used {item.name} in {battle.name}",
                "change": f"{item.name} -1",
                "timestamp": SERVER_TIMESTAMP,
            })
            return log, outcome

        log, outcome = await self.store.run_transaction(body)
        await self._mirror(log)
        return ActionResult(True, log.message, data={"damage": outcome.total_damage, "log_id": log.id})

    @game_action("Using the skill failed, please try again later.")
    async def use_skill(self, user_id: str, battle_id: str, skill_id: str,
                        target_monster_id: Optional[str] = None) -> ActionResult:
        """Use a skill. Skill effects always apply; the skill then cools down."""
        async def body(txn):
            user = await _load_user(txn, user_id)
            battle = await _load_battle(txn, battle_id)
            _require_active(battle)

            participant = battle.participants.get(user_id)
            if participant is None:
                raise PreconditionError("Join the battle with an attack before using skills.")
            if participant.hp <= 0:
                raise PreconditionError("You have no HP left and cannot act in this battle.")

            skill_data = await txn.get(SKILLS, skill_id)
            if not skill_data:
                raise NotFoundError("That skill could not be found.")
            skill = Skill.from_dict(skill_data)
            if participant.skill_cooldowns.get(skill_id, 0) > 0:
                raise CooldownActiveError(
                    f"{skill.name} is cooling down for {participant.skill_cooldowns[skill_id]} more turns."
                )
            if skill.faction_id not in ANY_FACTION and skill.faction_id != user.faction_id:
                raise PreconditionError(f"{skill.name} belongs to another faction.")
            if skill.race_id not in ANY_RACE and skill.race_id != user.race_id:
                raise PreconditionError(f"{skill.name} belongs to another race.")

            outcome = self.resolver.resolve(
                skill.effects, participant, battle.monsters, target_monster_id,
                always_apply=True, source=skill.id,
            )
            if skill.cooldown > 0:
                participant.skill_cooldowns[skill_id] = skill.cooldown
            txn.update(ENCOUNTERS, battle_id, _battle_changes(battle))

            message = " ".join([f"{user.role_name} used {skill.name}."] + outcome.fragments)
            log = CombatLog(
                id=new_id(), encounter_id=battle_id, message=message, turn=battle.turn,
                type=SKILL_USED, user_id=user_id, user_faction=user.faction_id,
                damage=outcome.total_damage or None, timestamp=SERVER_TIMESTAMP,
            )
            txn.set(combat_logs_path(battle_id), log.id, log.to_dict())
            return log, outcome

        log, outcome = await self.store.run_transaction(body)
        await self._mirror(log)
        return ActionResult(True, log.message, data={"damage": outcome.total_damage, "log_id": log.id})

    async def _mirror(self, log: CombatLog):
        """Copy a committed log into the battle buffer for the archival job."""
        entry = log.to_dict()
        entry["timestamp"] = isoformat(now())
        try:
            await self.store.push_buffer(battle_buffer_key(log.encounter_id), entry)
        except Exception as e:
            # the combat log itself is already committed
            logger.warning(f"Could not buffer log {log.id} for battle {log.encounter_id}: {e}")

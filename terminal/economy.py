"""Shop, permanent stat boosts and crafting."""

import logging
from dataclasses import asdict
from typing import List

from .config import ANY_FACTION, ANY_RACE
from .errors import game_action, NotFoundError, PreconditionError, InsufficientCurrencyError
from .models import (
    ActionResult, AttributeEffect, CombatEncounter, CraftRecipe, Item, User,
    ADD, EQUIPMENT, SPECIAL, STAT_BOOST, PREPARING, ACTIVE,
)
from .storage import DocumentStore, USERS, ITEMS, RECIPES, ENCOUNTERS, SERVER_TIMESTAMP, activity_logs_path

logger = logging.getLogger(__name__)


def _activity(user_id: str, description: str, change: str) -> dict:
    return {"user_id": user_id, "description": description, "change": change, "timestamp": SERVER_TIMESTAMP}


def _consume(items: dict, item_id: str, amount: int = 1) -> dict:
    remaining = dict(items)
    remaining[item_id] = remaining.get(item_id, 0) - amount
    if remaining[item_id] <= 0:
        del remaining[item_id]
    return remaining


class EconomyLogic:
    """Handles buying, using and crafting items outside of battle."""

    def __init__(self, store: DocumentStore):
        self.store = store

    @game_action("Purchase failed, please try again later.")
    async def buy_item(self, user_id: str, item_id: str) -> ActionResult:
        async def body(txn):
            user_data = await txn.get(USERS, user_id)
            if not user_data:
                raise NotFoundError("Your character could not be found. Register first.")
            item_data = await txn.get(ITEMS, item_id)
            if not item_data or not item_data.get("is_published"):
                raise NotFoundError("That item could not be found; it may have been delisted.")
            user, item = User.from_dict(user_data), Item.from_dict(item_data)

            if user.currency < item.price:
                raise InsufficientCurrencyError(
                    f"{item.name} costs {item.price} but you only have {user.currency}."
                )
            if item.race_id not in ANY_RACE and item.race_id != user.race_id:
                raise PreconditionError(f"{item.name} is not available to your race.")
            if item.faction_id not in ANY_FACTION and item.faction_id != user.faction_id:
                raise PreconditionError(f"{item.name} is not available to your faction.")

            items = dict(user.items)
            items[item_id] = items.get(item_id, 0) + 1
            txn.update(USERS, user_id, {"currency": user.currency - item.price, "items": items})
            txn.add(activity_logs_path(user_id), _activity(
                user_id, f"Bought {item.name}", f"Currency -{item.price}, {item.name} +1"
            ))
            return user.currency - item.price, item

        balance, item = await self.store.run_transaction(body)
        return ActionResult(True, f"You bought **{item.name}**. Remaining currency: {balance}.",
                            data={"currency": balance})

    @game_action("Using the item failed, please try again later.")
    async def use_item(self, user_id: str, item_id: str) -> ActionResult:
        """Consume a stat boost item and keep its add effects for good."""
        async def body(txn):
            user_data = await txn.get(USERS, user_id)
            if not user_data:
                raise NotFoundError("Your character could not be found. Register first.")
            user = User.from_dict(user_data)
            if user.item_count(item_id) < 1:
                raise PreconditionError("You do not have that item.")
            item_data = await txn.get(ITEMS, item_id)
            if not item_data:
                raise NotFoundError("That item could not be found.")
            item = Item.from_dict(item_data)
            if item.item_type != STAT_BOOST:
                raise PreconditionError(f"{item.name} can only be used in battle.")

            boosts = [e for e in item.effects if isinstance(e, AttributeEffect) and e.operator == ADD]
            if not boosts:
                raise PreconditionError(f"{item.name} has no permanent effect.")

            attributes = dict(user.attributes)
            for effect in boosts:
                attributes[effect.attribute] = attributes.get(effect.attribute, 0) + effect.value
            use_count = dict(user.item_use_count)
            use_count[item_id] = use_count.get(item_id, 0) + 1

            txn.update(USERS, user_id, {
                "attributes": attributes,
                "items": _consume(user.items, item_id),
                "item_use_count": use_count,
            })
            summary = ", ".join(f"{e.attribute.upper()} {e.value:+g}" for e in boosts)
            txn.add(activity_logs_path(user_id), _activity(user_id, f"Used {item.name}", summary))
            return item, summary

        item, summary = await self.store.run_transaction(body)
        return ActionResult(True, f"You used **{item.name}**: {summary}.")

    async def get_craft_recipes(self) -> List[CraftRecipe]:
        documents = await self.store.query(RECIPES, lambda d: d.get("is_published"))
        return [CraftRecipe.from_dict(d) for d in documents]

    @game_action("Crafting failed, please try again later.")
    async def craft_item(self, user_id: str, recipe_id: str) -> ActionResult:
        """Combine one base equipment and one special material into the target."""
        async def body(txn):
            recipe_data = await txn.get(RECIPES, recipe_id)
            if not recipe_data or not recipe_data.get("is_published"):
                raise NotFoundError("That recipe could not be found.")
            recipe = CraftRecipe.from_dict(recipe_data)

            user_data = await txn.get(USERS, user_id)
            if not user_data:
                raise NotFoundError("Your character could not be found. Register first.")
            user = User.from_dict(user_data)

            base_data = await txn.get(ITEMS, recipe.base_item_id)
            material_data = await txn.get(ITEMS, recipe.material_item_id)
            target_data = await txn.get(ITEMS, recipe.target_item_id)
            if not base_data or not material_data or not target_data:
                raise NotFoundError(f"{recipe.name} refers to an item that no longer exists.")
            base, material, target = (Item.from_dict(d) for d in (base_data, material_data, target_data))

            if base.item_type != EQUIPMENT or material.item_type != SPECIAL:
                raise PreconditionError(f"{recipe.name} needs an equipment base and a special material.")
            if target.item_type != EQUIPMENT or target.is_published:
                raise PreconditionError(f"{target.name} cannot be crafted.")
            if user.item_count(base.id) < 1 or user.item_count(material.id) < 1:
                raise PreconditionError(f"You need {base.name} and {material.name} to craft {target.name}.")

            items = _consume(_consume(user.items, base.id), material.id)
            items[target.id] = items.get(target.id, 0) + 1
            txn.update(USERS, user_id, {"items": items})
            txn.add(activity_logs_path(user_id), _activity(
                user_id, f"Crafted {target.name}", f"{base.name} -1, {material.name} -1, {target.name} +1"
            ))
            return target

        target = await self.store.run_transaction(body)
        await self._unequip_everywhere(user_id)
        return ActionResult(True, f"You crafted **{target.name}**!")

    async def _unequip_everywhere(self, user_id: str):
        """Clear the user's equipment in open battles after the inventory changed."""
        battles = await self.store.query(
            ENCOUNTERS,
            lambda d: d.get("status") in (PREPARING, ACTIVE) and user_id in d.get("participants", {}),
        )
        for battle_data in battles:
            battle_id = battle_data["id"]

            async def body(txn):
                data = await txn.get(ENCOUNTERS, battle_id)
                if not data:
                    return
                battle = CombatEncounter.from_dict(data)
                participant = battle.participants.get(user_id)
                if participant is None or not participant.equipped_items:
                    return
                participant.equipped_items = []
                txn.update(ENCOUNTERS, battle_id, {
                    "participants": {uid: asdict(p) for uid, p in battle.participants.items()},
                })

            try:
                await self.store.run_transaction(body)
            except Exception as e:
                logger.warning(f"Could not clear equipment for {user_id} in battle {battle_id}: {e}")

"""Admin maintenance of items, skills, titles, task types and recipes."""

import logging
from typing import Any, Dict

from .auth import Caller, require_admin
from .errors import game_action, MissingFieldError, NotFoundError, PreconditionError
from .models import ActionResult, CraftRecipe, Item, Skill, TaskType, Title, User
from .storage import (
    DocumentStore, USERS, ITEMS, SKILLS, TITLES, TASK_TYPES, RECIPES, SERVER_TIMESTAMP,
    ArrayUnion, activity_logs_path,
)
from .titles import trigger_from_dict

logger = logging.getLogger(__name__)

_MODELS = {
    ITEMS: Item,
    SKILLS: Skill,
    TITLES: Title,
    TASK_TYPES: TaskType,
    RECIPES: CraftRecipe,
}


class CatalogLogic:
    """Creates, updates and deletes catalog documents."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def _upsert(self, caller: Caller, collection: str, data: Dict[str, Any]) -> ActionResult:
        require_admin(caller)
        doc_id = data.get("id")
        if not doc_id:
            raise MissingFieldError("Every catalog entry needs an id.")

        async def body(txn):
            existing = await txn.get(collection, doc_id) or {}
            merged = {**existing, **data}
            try:
                model = _MODELS[collection].from_dict(merged)
            except TypeError as e:
                raise MissingFieldError(f"Incomplete {collection} entry: {e}") from e
            if collection == TITLES:
                self._check_title(model)
            txn.set(collection, doc_id, model.to_dict())
            return model, bool(existing)

        model, existed = await self.store.run_transaction(body)
        logger.info(f"{collection}/{doc_id} {'updated' if existed else 'created'} by {caller.user_id}")
        return ActionResult(True, f"{'Updated' if existed else 'Created'} **{model.name}**.", data={"id": doc_id})

    @staticmethod
    def _check_title(title: Title):
        if title.is_manual:
            title.trigger = None
        elif title.trigger and trigger_from_dict(title.trigger) is None:
            raise PreconditionError(f"Unrecognised title trigger: {title.trigger}")

    async def _delete(self, caller: Caller, collection: str, doc_id: str) -> ActionResult:
        require_admin(caller)

        async def body(txn):
            if not await txn.get(collection, doc_id):
                raise NotFoundError(f"Nothing to delete at {collection}/{doc_id}.")
            txn.delete(collection, doc_id)

        await self.store.run_transaction(body)
        logger.info(f"{collection}/{doc_id} deleted by {caller.user_id}")
        return ActionResult(True, f"Deleted {doc_id}.")

    @game_action("Saving the item failed.")
    async def upsert_item(self, caller: Caller, data: Dict[str, Any]) -> ActionResult:
        return await self._upsert(caller, ITEMS, data)

    @game_action("Deleting the item failed.")
    async def delete_item(self, caller: Caller, item_id: str) -> ActionResult:
        return await self._delete(caller, ITEMS, item_id)

    @game_action("Saving the skill failed.")
    async def upsert_skill(self, caller: Caller, data: Dict[str, Any]) -> ActionResult:
        return await self._upsert(caller, SKILLS, data)

    @game_action("Deleting the skill failed.")
    async def delete_skill(self, caller: Caller, skill_id: str) -> ActionResult:
        return await self._delete(caller, SKILLS, skill_id)

    @game_action("Saving the title failed.")
    async def upsert_title(self, caller: Caller, data: Dict[str, Any]) -> ActionResult:
        return await self._upsert(caller, TITLES, data)

    @game_action("Deleting the title failed.")
    async def delete_title(self, caller: Caller, title_id: str) -> ActionResult:
        return await self._delete(caller, TITLES, title_id)

    @game_action("Saving the task type failed.")
    async def upsert_task_type(self, caller: Caller, data: Dict[str, Any]) -> ActionResult:
        return await self._upsert(caller, TASK_TYPES, data)

    @game_action("Deleting the task type failed.")
    async def delete_task_type(self, caller: Caller, task_type_id: str) -> ActionResult:
        return await self._delete(caller, TASK_TYPES, task_type_id)

    @game_action("Saving the recipe failed.")
    async def upsert_recipe(self, caller: Caller, data: Dict[str, Any]) -> ActionResult:
        return await self._upsert(caller, RECIPES, data)

    @game_action("Deleting the recipe failed.")
    async def delete_recipe(self, caller: Caller, recipe_id: str) -> ActionResult:
        return await self._delete(caller, RECIPES, recipe_id)

    @game_action("Granting the title failed.")
    async def grant_manual_title(self, caller: Caller, user_id: str, title_id: str) -> ActionResult:
        """Hand a manual title to one player."""
        require_admin(caller)

        async def body(txn):
            user_data = await txn.get(USERS, user_id)
            if not user_data:
                raise NotFoundError("That player could not be found.")
            title_data = await txn.get(TITLES, title_id)
            if not title_data:
                raise NotFoundError("That title could not be found.")
            user, title = User.from_dict(user_data), Title.from_dict(title_data)
            if title.id in user.titles:
                raise PreconditionError(f"{user.role_name} already holds {title.name}.")
            txn.update(USERS, user_id, {"titles": ArrayUnion(title.id)})
            txn.add(activity_logs_path(user_id), {
                "user_id": user_id,
                "description": "Granted a title by an administrator",
                "change": f"Title: {title.name}",
                "timestamp": SERVER_TIMESTAMP,
            })
            return user, title

        user, title = await self.store.run_transaction(body)
        return ActionResult(True, f"{user.role_name} now holds **{title.name}**.",
                            f"🎖️ {user.role_name} has been awarded the title **{title.name}**!")

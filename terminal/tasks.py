"""Task submissions and their review."""

import logging
from typing import List, Optional

from .auth import Caller, require_admin
from .errors import game_action, MissingFieldError, NotFoundError, PreconditionError, WrongStatusError
from .models import ActionResult, Task, TaskType, User, PENDING, APPROVED, REJECTED
from .season import contribute
from .storage import DocumentStore, Transaction, USERS, TASKS, TASK_TYPES, SERVER_TIMESTAMP, activity_logs_path, new_id
from .titles import TitleEngine

logger = logging.getLogger(__name__)


def _pay_out(txn: Transaction, user: User, task_type: TaskType, task: Task):
    """Queue the amounts recorded on ``task`` for ``user`` and mirror them on the snapshot."""
    user.honor_points += task.honor_points_awarded
    user.currency += task.currency_awarded
    user.total_currency_earned += task.currency_awarded
    if task_type.item_awarded and user.item_count(task_type.item_awarded) < 1:
        user.items[task_type.item_awarded] = 1
    if task_type.title_awarded and task_type.title_awarded not in user.titles:
        user.titles.append(task_type.title_awarded)
    if task_type.category == "main":
        user.submitted_main_quest = True

    txn.update(USERS, user.id, {
        "honor_points": user.honor_points,
        "currency": user.currency,
        "total_currency_earned": user.total_currency_earned,
        "items": user.items,
        "titles": user.titles,
        "submitted_main_quest": user.submitted_main_quest,
    })


class TaskLogic:
    """Handles task submissions."""

    def __init__(self, store: DocumentStore, titles: Optional[TitleEngine] = None):
        self.store = store
        self.titles = titles or TitleEngine(store)

    async def get_task_types(self) -> List[TaskType]:
        return [TaskType.from_dict(d) for d in await self.store.query(TASK_TYPES)]

    async def get_pending_tasks(self) -> List[Task]:
        return [Task.from_dict(d) for d in await self.store.query(TASKS, lambda d: d.get("status") == PENDING)]

    @game_action("Submitting the task failed, please try again later.")
    async def submit_task(self, user_id: str, task_type_id: str, submission_url: str, title: str,
                          faction_contribution: Optional[str] = None) -> ActionResult:
        """Record a submission; tasks without review pay out immediately."""
        if not submission_url or not title:
            raise MissingFieldError("A submission needs a title and a link.")

        duplicates = await self.store.query(TASKS, lambda d: d.get("submission_url") == submission_url)
        if duplicates:
            raise PreconditionError("That link has already been submitted.")
        all_titles = await self.titles.load_titles()

        async def body(txn):
            user_data = await txn.get(USERS, user_id)
            if not user_data:
                raise NotFoundError("Your character could not be found. Register first.")
            type_data = await txn.get(TASK_TYPES, task_type_id)
            if not type_data:
                raise NotFoundError("That task type could not be found.")
            user, task_type = User.from_dict(user_data), TaskType.from_dict(type_data)

            if task_type.single_submission and any(t.get("task_type_id") == task_type_id for t in user.tasks):
                raise PreconditionError(f"{task_type.name} can only be submitted once.")

            task = Task(
                id=new_id(), user_id=user_id, user_name=user.role_name, user_faction_id=user.faction_id,
                task_type_id=task_type_id, title=title, submission_url=submission_url,
                honor_points_awarded=task_type.honor_points, currency_awarded=task_type.currency,
                faction_contribution=faction_contribution, submission_date=SERVER_TIMESTAMP,
            )
            user.tasks.append({"task_id": task.id, "task_type_id": task_type_id})
            txn.update(USERS, user_id, {"tasks": user.tasks})

            if task_type.requires_approval:
                change = "Awaiting review"
            else:
                task.status = APPROVED
                _pay_out(txn, user, task_type, task)
                await contribute(txn, user_id, user.faction_id, task.honor_points_awarded, faction_contribution)
                change = f"Honor +{task.honor_points_awarded}, Currency +{task.currency_awarded}"

            txn.set(TASKS, task.id, task.to_dict())
            txn.add(activity_logs_path(user_id), {
                "user_id": user_id,
                "description": f"Submitted {task_type.name}: {title}",
                "change": change,
                "timestamp": SERVER_TIMESTAMP,
            })
            await self.titles.award(txn, user, all_titles)
            return task

        task = await self.store.run_transaction(body)

        if task.status == PENDING:
            return ActionResult(True, f"**{title}** was submitted and is waiting for review.",
                                data={"task_id": task.id})
        return ActionResult(
            True,
            f"**{title}** completed! Honor +{task.honor_points_awarded}, Currency +{task.currency_awarded}.",
            data={"task_id": task.id},
        )

    @game_action("Updating the task failed, please try again later.")
    async def update_task_status(self, caller: Caller, task_id: str, status: str) -> ActionResult:
        """Approve or reject a pending task."""
        require_admin(caller)
        if status not in (APPROVED, REJECTED):
            raise MissingFieldError("Status must be approved or rejected.")
        all_titles = await self.titles.load_titles()

        async def body(txn):
            task_data = await txn.get(TASKS, task_id)
            if not task_data:
                raise NotFoundError("That task could not be found.")
            task = Task.from_dict(task_data)
            if task.status != PENDING:
                raise WrongStatusError(f"That task was already {task.status}.")

            if status == REJECTED:
                txn.update(TASKS, task_id, {"status": REJECTED})
                return task

            user_data = await txn.get(USERS, task.user_id)
            if not user_data:
                raise NotFoundError("The submitting player no longer exists.")
            type_data = await txn.get(TASK_TYPES, task.task_type_id)
            if not type_data:
                raise NotFoundError("That task type could not be found.")
            user, task_type = User.from_dict(user_data), TaskType.from_dict(type_data)

            _pay_out(txn, user, task_type, task)
            await contribute(txn, user.id, user.faction_id, task.honor_points_awarded, task.faction_contribution)
            txn.update(TASKS, task_id, {"status": APPROVED})
            txn.add(activity_logs_path(user.id), {
                "user_id": user.id,
                "description": f"Task approved: {task.title}",
                "change": f"Honor +{task.honor_points_awarded}, Currency +{task.currency_awarded}",
                "timestamp": SERVER_TIMESTAMP,
            })
            await self.titles.award(txn, user, all_titles)
            return task

        task = await self.store.run_transaction(body)
        logger.info(f"Task {task_id} {status} by {caller.user_id}")
        return ActionResult(True, f"**{task.title}** by {task.user_name} was {status}.")

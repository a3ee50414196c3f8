"""Moves buffered battle logs into the battle's combat log collection."""

import logging
from typing import Dict, List

from .auth import Caller, require_admin
from .errors import game_action
from .models import ActionResult
from .rewards import RewardEngine
from .storage import DocumentStore, combat_logs_path, battle_buffer_key, new_id

logger = logging.getLogger(__name__)

_BUFFER_PREFIX = battle_buffer_key("")


class LogArchiver:
    """Drains the battle log buffer."""

    def __init__(self, store: DocumentStore, rewards: RewardEngine = None):
        self.store = store
        self.rewards = rewards or RewardEngine(store)

    async def _archive(self, battle_id: str) -> int:
        async def write_all(entries: List[Dict]):
            if not entries:
                return 0

            async def body(txn):
                for entry in entries:
                    # same id as the log written by the action, so rewriting is harmless
                    log_id = entry.get("id") or new_id()
                    txn.set(combat_logs_path(battle_id), log_id, {**entry, "id": log_id})
                return len(entries)

            return await self.store.run_transaction(body)

        count = await self.store.drain_buffer(battle_buffer_key(battle_id), write_all)
        if count:
            logger.info(f"Archived {count} buffered logs for battle {battle_id}")
        return count

    @game_action("Archiving the battle logs failed.")
    async def archive_battle_logs(self, caller: Caller, battle_id: str) -> ActionResult:
        require_admin(caller)
        count = await self._archive(battle_id)
        stats = await self.rewards.damage_stats(battle_id)
        return ActionResult(True, f"Archived {count} log entries.", data={"archived": count, "stats": stats})

    async def archive_pending(self) -> int:
        """Archive every battle that has buffered logs."""
        total = 0
        for key in await self.store.buffer_keys():
            if not key.startswith(_BUFFER_PREFIX):
                continue
            battle_id = key[len(_BUFFER_PREFIX):]
            try:
                total += await self._archive(battle_id)
            except Exception as e:
                logger.error(f"Archiving logs for battle {battle_id} failed: {e}", exc_info=True)
        return total

"""Periodic drivers: battle turn ticks and buffered log archival."""

import logging

from discord.ext import commands, tasks

from .archive import LogArchiver
from .combat import CombatLogic
from .config import LOG_ARCHIVE_MINUTES, TURN_TICK_MINUTES
from .models import ACTIVE
from .storage import DocumentStore

logger = logging.getLogger(__name__)


class BattleScheduler:
    """Advances active battles and archives their logs on a timer."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.store = DocumentStore()
        self.combat = CombatLogic(self.store)
        self.archiver = LogArchiver(self.store, self.combat.rewards)

        self.turn_tick.start()
        self.archive_logs.start()

    def cog_unload(self):
        """Clean shutdown of the scheduler."""
        self.turn_tick.cancel()
        self.archive_logs.cancel()

    @tasks.loop(minutes=TURN_TICK_MINUTES)
    async def turn_tick(self):
        """Advance every active battle by one turn."""
        battles = await self.combat.list_battles(statuses=(ACTIVE,))
        for battle in battles:
            result = await self.combat.advance_turn(battle.id)
            if not result.success:
                logger.error(f"Turn tick failed for battle {battle.id}: {result.message}")
        if battles:
            logger.info(f"Advanced {len(battles)} active battle(s)")

    @tasks.loop(minutes=LOG_ARCHIVE_MINUTES)
    async def archive_logs(self):
        """Move buffered combat logs into their battles."""
        archived = await self.archiver.archive_pending()
        if archived:
            logger.info(f"Archived {archived} buffered combat log(s)")

    @turn_tick.before_loop
    async def before_turn_tick(self):
        await self.bot.wait_until_ready()
        await self.store.initialize()
        logger.info("Battle turn scheduler initialized")

    @archive_logs.before_loop
    async def before_archive_logs(self):
        await self.bot.wait_until_ready()
        await self.store.initialize()


async def setup(bot: commands.Bot):
    """Setup function to add the scheduler to the bot."""
    scheduler = BattleScheduler(bot)
    # Store reference so it doesn't get garbage collected
    bot.battle_scheduler = scheduler

"""Player slash commands for the faction terminal."""

import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from .auth import caller_for
from .cache import TTLCache
from .combat import CombatLogic
from .config import FACTIONS, RACES, ROSTER_CACHE_TTL_SECONDS, SCORED_FACTIONS
from .economy import EconomyLogic
from .models import ActionResult, Item, Title
from .notifications import NotificationManager
from .players import PlayerLogic
from .season import SeasonLogic
from .storage import DocumentStore, ITEMS, TITLES
from .tasks import TaskLogic
from .view import TerminalView

logger = logging.getLogger(__name__)

FACTION_CHOICES = [app_commands.Choice(name=f["name"], value=key) for key, f in FACTIONS.items()]
RACE_CHOICES = [app_commands.Choice(name=r["name"], value=key) for key, r in RACES.items()]
SCORED_CHOICES = [app_commands.Choice(name=FACTIONS[key]["name"], value=key) for key in SCORED_FACTIONS]


class TerminalCommands(commands.Cog):
    """Cog containing all player slash commands."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.store = DocumentStore()
        self.view = TerminalView()
        self.notifications = NotificationManager(bot, self.store)
        self.players = PlayerLogic(self.store, TTLCache(ROSTER_CACHE_TTL_SECONDS))
        self.combat = CombatLogic(self.store)
        self.economy = EconomyLogic(self.store)
        self.tasks = TaskLogic(self.store)
        self.season = SeasonLogic(self.store)

    async def cog_load(self):
        """Initialize the database when the cog loads."""
        await self.store.initialize()
        await self.season.ensure_current_season()

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        """Block players (not admins) while maintenance mode is on."""
        if not await self.players.is_maintenance():
            return True
        return caller_for(interaction.user.id).is_admin

    async def _respond(self, interaction: discord.Interaction, result: ActionResult):
        if result.success:
            await interaction.followup.send(embed=self.view.format_success(result.message), ephemeral=True)
            if result.public_message:
                await self.notifications.send_public_message(interaction, content=result.public_message)
        else:
            await interaction.followup.send(embed=self.view.format_error(result.message), ephemeral=True)

    @app_commands.command(name="register", description="Create your character")
    @app_commands.describe(name="Character name", faction="Faction to join", race="Character race")
    @app_commands.choices(faction=FACTION_CHOICES, race=RACE_CHOICES)
    async def register(self, interaction: discord.Interaction, name: str,
                       faction: app_commands.Choice[str], race: app_commands.Choice[str]):
        await interaction.response.defer(ephemeral=True)
        result = await self.players.register_player(str(interaction.user.id), name, faction.value, race.value)
        await self._respond(interaction, result)

    @app_commands.command(name="profile", description="Show your character")
    async def profile(self, interaction: discord.Interaction, player: Optional[discord.Member] = None):
        await interaction.response.defer(ephemeral=True)
        target_id = str(player.id) if player else str(interaction.user.id)
        user = await self.players.get_user(target_id)
        if user is None:
            await interaction.followup.send(embed=self.view.format_error("No character found."), ephemeral=True)
            return
        titles = {d["id"]: Title.from_dict(d) for d in await self.store.query(TITLES)}
        items = {d["id"]: Item.from_dict(d) for d in await self.store.query(ITEMS)}
        await interaction.followup.send(embed=self.view.format_profile(user, titles, items), ephemeral=True)

    @app_commands.command(name="activity", description="Show your recent activity")
    async def activity(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        logs = await self.players.get_activity_log(str(interaction.user.id))
        await interaction.followup.send(embed=self.view.format_activity(logs), ephemeral=True)

    @app_commands.command(name="shop", description="List items for sale")
    async def shop(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        items = [Item.from_dict(d) for d in await self.store.query(ITEMS, lambda d: d.get("is_published"))]
        await interaction.followup.send(embed=self.view.format_shop(items), ephemeral=True)

    @app_commands.command(name="buy", description="Buy an item")
    @app_commands.describe(item_id="Id of the item, see /shop")
    async def buy(self, interaction: discord.Interaction, item_id: str):
        await interaction.response.defer(ephemeral=True)
        await self._respond(interaction, await self.economy.buy_item(str(interaction.user.id), item_id))

    @app_commands.command(name="use", description="Use a stat boost item")
    async def use(self, interaction: discord.Interaction, item_id: str):
        await interaction.response.defer(ephemeral=True)
        await self._respond(interaction, await self.economy.use_item(str(interaction.user.id), item_id))

    @app_commands.command(name="recipes", description="List crafting recipes")
    async def recipes(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        recipes = await self.economy.get_craft_recipes()
        items = {d["id"]: Item.from_dict(d) for d in await self.store.query(ITEMS)}
        await interaction.followup.send(embed=self.view.format_recipes(recipes, items), ephemeral=True)

    @app_commands.command(name="craft", description="Craft an item from a recipe")
    async def craft(self, interaction: discord.Interaction, recipe_id: str):
        await interaction.response.defer(ephemeral=True)
        await self._respond(interaction, await self.economy.craft_item(str(interaction.user.id), recipe_id))

    @app_commands.command(name="submit", description="Submit a task")
    @app_commands.describe(
        task_type_id="Which task you completed",
        link="Link to your submission",
        title="Short title for the submission",
        support="Faction to support (wanderers only)",
    )
    @app_commands.choices(support=SCORED_CHOICES)
    async def submit(self, interaction: discord.Interaction, task_type_id: str, link: str, title: str,
                     support: Optional[app_commands.Choice[str]] = None):
        await interaction.response.defer(ephemeral=True)
        result = await self.tasks.submit_task(
            str(interaction.user.id), task_type_id, link, title, support.value if support else None
        )
        await self._respond(interaction, result)

    @submit.autocomplete("task_type_id")
    async def task_type_autocomplete(self, interaction: discord.Interaction, current: str):
        task_types = await self.tasks.get_task_types()
        return [
            app_commands.Choice(name=t.name, value=t.id)
            for t in task_types if current.lower() in t.name.lower()
        ][:25]

    @app_commands.command(name="battles", description="List open battles")
    async def battles(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        battles = await self.combat.list_battles()
        if not battles:
            await interaction.followup.send("No battles are open right now.", ephemeral=True)
            return
        for battle in battles[:5]:
            await interaction.followup.send(embed=self.view.format_battle(battle), ephemeral=True)

    @app_commands.command(name="attack", description="Attack a monster")
    @app_commands.describe(
        battle_id="Battle id, see /battles",
        monster_id="Monster id, see /battles",
        equipment="Comma separated ids of equipped items",
        support="Faction to support (wanderers only)",
    )
    @app_commands.choices(support=SCORED_CHOICES)
    async def attack(self, interaction: discord.Interaction, battle_id: str, monster_id: str,
                     equipment: Optional[str] = None, support: Optional[app_commands.Choice[str]] = None):
        await interaction.response.defer(ephemeral=True)
        equipped = [part.strip() for part in (equipment or "").split(",") if part.strip()]
        battle = await self.combat.get_battle(battle_id)
        monster = battle.find_monster(monster_id) if battle else None
        if battle and monster is None:
            # allow the short id shown in /battles
            monster = next((m for m in battle.monsters if m.id.startswith(monster_id)), None)
        result = await self.combat.perform_attack(
            str(interaction.user.id), battle_id, monster.id if monster else monster_id,
            equipped, support.value if support else None,
        )
        await self._respond(interaction, result)

    @app_commands.command(name="item", description="Use an item in battle")
    async def item(self, interaction: discord.Interaction, battle_id: str, item_id: str,
                   monster_id: Optional[str] = None):
        await interaction.response.defer(ephemeral=True)
        result = await self.combat.use_battle_item(str(interaction.user.id), battle_id, item_id, monster_id)
        await self._respond(interaction, result)

    @app_commands.command(name="skill", description="Use a skill in battle")
    async def skill(self, interaction: discord.Interaction, battle_id: str, skill_id: str,
                    monster_id: Optional[str] = None):
        await interaction.response.defer(ephemeral=True)
        result = await self.combat.use_skill(str(interaction.user.id), battle_id, skill_id, monster_id)
        await self._respond(interaction, result)

    @app_commands.command(name="conflict", description="Show the faction standings")
    async def conflict(self, interaction: discord.Interaction):
        await interaction.response.defer()
        result = await self.season.get_conflict_data()
        if not result.success:
            await interaction.followup.send(embed=self.view.format_error(result.message))
            return
        await interaction.followup.send(embed=self.view.format_conflict(result.data["factions"]))

    @app_commands.command(name="roster", description="Show every approved character")
    async def roster(self, interaction: discord.Interaction):
        await interaction.response.defer()
        roster = await self.players.get_roster()
        await interaction.followup.send(embed=self.view.format_roster(roster))


async def setup(bot: commands.Bot):
    """Setup function to add the cog to the bot."""
    await bot.add_cog(TerminalCommands(bot))

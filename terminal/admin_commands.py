"""Admin slash commands: battles, rewards, season, review and catalog."""

import json
import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from .archive import LogArchiver
from .auth import caller_for
from .catalog import CatalogLogic
from .combat import CombatLogic
from .commands import FACTION_CHOICES, RACE_CHOICES
from .models import ActionResult, RewardBundle, APPROVED, REJECTED
from .notifications import NotificationManager, PUBLIC_CHANNEL
from .players import PlayerLogic
from .rewards import RewardEngine, RewardFilter
from .season import SeasonLogic
from .storage import DocumentStore
from .tasks import TaskLogic
from .view import TerminalView

logger = logging.getLogger(__name__)

COMPARISON_CHOICES = [
    app_commands.Choice(name="greater than", value=">"),
    app_commands.Choice(name="less than", value="<"),
]

CATALOG_CHOICES = [
    app_commands.Choice(name="item", value="item"),
    app_commands.Choice(name="skill", value="skill"),
    app_commands.Choice(name="title", value="title"),
    app_commands.Choice(name="task type", value="task_type"),
    app_commands.Choice(name="recipe", value="recipe"),
]


def parse_monsters(text: str):
    """Parse ``Name:hp:atk;Name:hp:atk`` into monster dicts."""
    monsters = []
    for chunk in text.split(";"):
        parts = [part.strip() for part in chunk.split(":")]
        if len(parts) < 2 or not parts[0]:
            continue
        monsters.append({"name": parts[0], "hp": int(parts[1]), "atk": parts[2] if len(parts) > 2 else "0"})
    return monsters


def reward_filter(choices: dict, values: dict) -> RewardFilter:
    """Build a RewardFilter from command options; unset choices are None."""
    def picked(name):
        choice = choices.get(name)
        return choice.value if choice else None

    return RewardFilter(
        faction_id=picked("faction"),
        race_id=picked("race"),
        honor_points_op=picked("honor_op"), honor_points_val=values.get("honor_value"),
        currency_op=picked("currency_op"), currency_val=values.get("currency_value"),
        task_count_op=picked("task_op"), task_count_val=values.get("task_value"),
        battle_id=values.get("battle_id"), damage_threshold=values.get("damage_threshold"),
    )


class AdminCommands(commands.Cog):
    """Admin-only commands. Every engine call re-checks the caller's role."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.store = DocumentStore()
        self.view = TerminalView()
        self.notifications = NotificationManager(bot, self.store)
        self.rewards = RewardEngine(self.store)
        self.combat = CombatLogic(self.store, rewards=self.rewards)
        self.season = SeasonLogic(self.store)
        self.tasks = TaskLogic(self.store)
        self.players = PlayerLogic(self.store)
        self.catalog = CatalogLogic(self.store)
        self.archiver = LogArchiver(self.store, self.rewards)

    async def cog_load(self):
        await self.store.initialize()

    async def _respond(self, interaction: discord.Interaction, result: ActionResult):
        if result.success:
            await interaction.followup.send(embed=self.view.format_success(result.message), ephemeral=True)
            if result.public_message:
                await self.notifications.send_public_message(interaction, content=result.public_message)
        else:
            await interaction.followup.send(embed=self.view.format_error(result.message), ephemeral=True)

    # ---- battles ----

    @app_commands.command(name="admin_battle_create", description="[ADMIN] Create a battle")
    @app_commands.describe(
        name="Battle name",
        monsters="Monsters as Name:hp:atk separated by ';' e.g. Husk:50:5+1d4",
        honor="Honor for every participant when the battle ends",
        currency="Currency for every participant when the battle ends",
    )
    async def battle_create(self, interaction: discord.Interaction, name: str, monsters: str,
                            honor: int = 0, currency: int = 0):
        await interaction.response.defer(ephemeral=True)
        try:
            parsed = parse_monsters(monsters)
        except ValueError:
            await interaction.followup.send(embed=self.view.format_error("Monster hp must be a number."), ephemeral=True)
            return
        rewards = RewardBundle(honor_points=honor, currency=currency)
        result = await self.combat.create_battle(caller_for(interaction.user.id), name, parsed, rewards)
        await self._respond(interaction, result)

    @app_commands.command(name="admin_battle_start", description="[ADMIN] Start a battle")
    async def battle_start(self, interaction: discord.Interaction, battle_id: str):
        await interaction.response.defer(ephemeral=True)
        await self._respond(interaction, await self.combat.start_battle(caller_for(interaction.user.id), battle_id))

    @app_commands.command(name="admin_battle_add_monster", description="[ADMIN] Add a monster to a battle")
    async def battle_add_monster(self, interaction: discord.Interaction, battle_id: str, name: str,
                                 hp: int, atk: str = "0"):
        await interaction.response.defer(ephemeral=True)
        result = await self.combat.add_monster(
            caller_for(interaction.user.id), battle_id, {"name": name, "hp": hp, "atk": atk}
        )
        await self._respond(interaction, result)

    @app_commands.command(name="admin_battle_end", description="[ADMIN] End a battle and settle rewards")
    async def battle_end(self, interaction: discord.Interaction, battle_id: str):
        await interaction.response.defer(ephemeral=True)
        await self._respond(interaction, await self.combat.end_battle(caller_for(interaction.user.id), battle_id))

    @app_commands.command(name="admin_battle_close", description="[ADMIN] Close an ended battle")
    async def battle_close(self, interaction: discord.Interaction, battle_id: str):
        await interaction.response.defer(ephemeral=True)
        await self._respond(interaction, await self.combat.close_battle(caller_for(interaction.user.id), battle_id))

    @app_commands.command(name="admin_battle_archive", description="[ADMIN] Archive buffered battle logs")
    async def battle_archive(self, interaction: discord.Interaction, battle_id: str):
        await interaction.response.defer(ephemeral=True)
        result = await self.archiver.archive_battle_logs(caller_for(interaction.user.id), battle_id)
        await self._respond(interaction, result)

    @app_commands.command(name="admin_battle_damage", description="[ADMIN] Preview or hand out damage rewards")
    @app_commands.describe(
        preview="Only show the damage table",
        title_id="Title for everyone at or above the threshold",
        threshold="Damage needed for the title",
        mvp_honor="Honor for each faction's top damage dealer",
        mvp_currency="Currency for each faction's top damage dealer",
    )
    async def battle_damage(self, interaction: discord.Interaction, battle_id: str, preview: bool = True,
                            title_id: Optional[str] = None, threshold: int = 0,
                            mvp_honor: int = 0, mvp_currency: int = 0):
        await interaction.response.defer(ephemeral=True)
        mvp = RewardBundle(honor_points=mvp_honor, currency=mvp_currency)
        result = await self.rewards.award_battle_damage_rewards(
            caller_for(interaction.user.id), battle_id, preview=preview,
            threshold_title_id=title_id, damage_threshold=threshold,
            faction_rewards={faction: RewardBundle(**vars(mvp)) for faction in ("yelu", "association", "wanderer")},
        )
        if result.success and preview:
            battle = await self.combat.get_battle(battle_id)
            embed = self.view.format_damage_stats(battle.name if battle else battle_id, result.data["stats"])
            await interaction.followup.send(embed=embed, ephemeral=True)
            return
        await self._respond(interaction, result)

    # ---- rewards, season, review ----

    @app_commands.command(name="admin_rewards", description="[ADMIN] Send rewards to players")
    @app_commands.describe(
        user_ids="Comma separated user ids; leave empty to use the filters",
        task_op="Compare the number of submitted tasks",
        task_value="Task count to compare against",
        message="Text for the players' activity log",
    )
    @app_commands.choices(faction=FACTION_CHOICES, race=RACE_CHOICES,
                          honor_op=COMPARISON_CHOICES, currency_op=COMPARISON_CHOICES,
                          task_op=COMPARISON_CHOICES)
    async def rewards_send(self, interaction: discord.Interaction, message: str,
                           honor: int = 0, currency: int = 0,
                           item_id: Optional[str] = None, title_id: Optional[str] = None,
                           user_ids: Optional[str] = None,
                           faction: Optional[app_commands.Choice[str]] = None,
                           race: Optional[app_commands.Choice[str]] = None,
                           honor_op: Optional[app_commands.Choice[str]] = None, honor_value: Optional[int] = None,
                           currency_op: Optional[app_commands.Choice[str]] = None, currency_value: Optional[int] = None,
                           task_op: Optional[app_commands.Choice[str]] = None, task_value: Optional[int] = None,
                           battle_id: Optional[str] = None, damage_threshold: Optional[int] = None):
        await interaction.response.defer(ephemeral=True)
        bundle = RewardBundle(honor_points=honor, currency=currency, item_id=item_id,
                              title_id=title_id, log_message=message)
        filters = reward_filter(
            {"faction": faction, "race": race, "honor_op": honor_op, "currency_op": currency_op, "task_op": task_op},
            {"honor_value": honor_value, "currency_value": currency_value, "task_value": task_value,
             "battle_id": battle_id, "damage_threshold": damage_threshold},
        )
        targets = [part.strip() for part in (user_ids or "").split(",") if part.strip()]
        result = await self.rewards.distribute(caller_for(interaction.user.id), bundle, targets, filters)
        await self._respond(interaction, result)

    @app_commands.command(name="admin_season_reset", description="[ADMIN] Archive the season and start a new one")
    async def season_reset(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        await self._respond(interaction, await self.season.reset_season(caller_for(interaction.user.id)))

    @app_commands.command(name="admin_task_review", description="[ADMIN] Approve or reject a task")
    @app_commands.choices(status=[
        app_commands.Choice(name="approve", value=APPROVED),
        app_commands.Choice(name="reject", value=REJECTED),
    ])
    async def task_review(self, interaction: discord.Interaction, task_id: str, status: app_commands.Choice[str]):
        await interaction.response.defer(ephemeral=True)
        result = await self.tasks.update_task_status(caller_for(interaction.user.id), task_id, status.value)
        await self._respond(interaction, result)

    @app_commands.command(name="admin_tasks_pending", description="[ADMIN] List tasks waiting for review")
    async def tasks_pending(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        if not caller_for(interaction.user.id).is_admin:
            await interaction.followup.send("❌ This command is restricted to administrators.", ephemeral=True)
            return
        pending = await self.tasks.get_pending_tasks()
        lines = [f"`{t.id}` {t.user_name}: [{t.title}]({t.submission_url})" for t in pending[:20]]
        await interaction.followup.send("\n".join(lines) or "Nothing to review.", ephemeral=True)

    # ---- players and catalog ----

    @app_commands.command(name="admin_approve", description="[ADMIN] Approve a registered character")
    async def approve(self, interaction: discord.Interaction, player: discord.Member):
        await interaction.response.defer(ephemeral=True)
        result = await self.players.update_user(caller_for(interaction.user.id), str(player.id), {"approved": True})
        await self._respond(interaction, result)

    @app_commands.command(name="admin_title_grant", description="[ADMIN] Grant a manual title")
    async def title_grant(self, interaction: discord.Interaction, player: discord.Member, title_id: str):
        await interaction.response.defer(ephemeral=True)
        result = await self.catalog.grant_manual_title(caller_for(interaction.user.id), str(player.id), title_id)
        await self._respond(interaction, result)

    @app_commands.command(name="admin_catalog_save", description="[ADMIN] Create or update a catalog entry")
    @app_commands.describe(kind="What to save", data="The entry as JSON, including its id")
    @app_commands.choices(kind=CATALOG_CHOICES)
    async def catalog_save(self, interaction: discord.Interaction, kind: app_commands.Choice[str], data: str):
        await interaction.response.defer(ephemeral=True)
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            await interaction.followup.send(embed=self.view.format_error(f"Invalid JSON: {e}"), ephemeral=True)
            return
        upsert = getattr(self.catalog, f"upsert_{kind.value}")
        await self._respond(interaction, await upsert(caller_for(interaction.user.id), payload))

    @app_commands.command(name="admin_catalog_delete", description="[ADMIN] Delete a catalog entry")
    @app_commands.choices(kind=CATALOG_CHOICES)
    async def catalog_delete(self, interaction: discord.Interaction, kind: app_commands.Choice[str], entry_id: str):
        await interaction.response.defer(ephemeral=True)
        delete = getattr(self.catalog, f"delete_{kind.value}")
        await self._respond(interaction, await delete(caller_for(interaction.user.id), entry_id))

    @app_commands.command(name="admin_maintenance", description="[ADMIN] Turn maintenance mode on or off")
    async def maintenance(self, interaction: discord.Interaction, enabled: bool):
        await interaction.response.defer(ephemeral=True)
        await self._respond(interaction, await self.players.set_maintenance(caller_for(interaction.user.id), enabled))

    @app_commands.command(name="admin_registration", description="[ADMIN] Open or close registration")
    async def registration(self, interaction: discord.Interaction, is_open: bool):
        await interaction.response.defer(ephemeral=True)
        result = await self.players.set_registration_open(caller_for(interaction.user.id), is_open)
        await self._respond(interaction, result)

    @app_commands.command(name="admin_setchannel", description="[ADMIN] Set the channel for public game messages")
    @app_commands.describe(channel="The channel where public game messages should be sent")
    async def set_channel(self, interaction: discord.Interaction, channel: discord.TextChannel):
        if not caller_for(interaction.user.id).is_admin:
            await interaction.response.send_message("❌ This command is restricted to administrators.", ephemeral=True)
            return
        if not channel.permissions_for(interaction.guild.me).send_messages:
            await interaction.response.send_message(
                f"❌ I don't have permission to send messages in {channel.mention}.", ephemeral=True
            )
            return
        await self.store.set_state(PUBLIC_CHANNEL, str(channel.id))
        await interaction.response.send_message(
            embed=self.view.format_success(f"Public game messages will now be sent to {channel.mention}"),
            ephemeral=True,
        )


async def setup(bot: commands.Bot):
    """Setup function to add the admin cog to the bot."""
    await bot.add_cog(AdminCommands(bot))

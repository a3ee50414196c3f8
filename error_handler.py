"""Error reporting for the Faction Terminal bot."""

import logging
import traceback
from datetime import datetime, timedelta, timezone
from typing import Dict

import discord
from discord import app_commands
from discord.ext import commands


logger = logging.getLogger(__name__)


class ErrorHandler:
    """Reports errors to the bot owner, at most once per error type per cooldown."""

    def __init__(self, bot: commands.Bot, owner_id: int, notification_cooldown: int = 300):
        self.bot = bot
        self.owner_id = owner_id
        self.error_counts: Dict[str, int] = {}
        self.last_notification: Dict[str, datetime] = {}
        self.notification_cooldown = notification_cooldown

    def should_notify(self, error_type: str, now: datetime = None) -> bool:
        """Count an error and decide whether the owner hears about it."""
        now = now or datetime.now(timezone.utc)
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1
        last = self.last_notification.get(error_type)
        if last is not None and now - last <= timedelta(seconds=self.notification_cooldown):
            return False
        self.last_notification[error_type] = now
        return True

    async def notify_owner(self, title: str, description: str, error: Exception = None):
        """Send a DM notification to the bot owner."""
        if not self.owner_id:
            logger.warning(f"No BOT_OWNER_ID configured; not reporting: {title}")
            return
        try:
            owner = self.bot.get_user(self.owner_id) or await self.bot.fetch_user(self.owner_id)

            embed = discord.Embed(
                title=f"🚨 {title}",
                description=description,
                color=0xff0000,
                timestamp=datetime.now(timezone.utc)
            )

            if error:
                embed.add_field(name="Error Details", value=f"```{str(error)[:1000]}```", inline=False)
                tb = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
                embed.add_field(name="Traceback", value=f"```{tb[-1000:]}```", inline=False)

            embed.set_footer(text="Faction Terminal Error Handler")

            await owner.send(embed=embed)
            logger.info(f"Sent error notification to owner: {title}")

        except discord.HTTPException as e:
            logger.error(f"Failed to send error notification: {e}")

    async def handle_interaction_error(self, interaction: discord.Interaction, error: Exception):
        """Handle slash command interaction errors."""
        command_name = interaction.command.name if interaction.command else "unknown"

        if isinstance(error, app_commands.CommandOnCooldown):
            await self._reply(interaction, f"🕒 Command is on cooldown. Try again in {error.retry_after:.1f} seconds.")
            return
        if isinstance(error, app_commands.CheckFailure):
            # maintenance mode blocks player commands through the cog check
            await self._reply(interaction, "🛠️ The terminal is under maintenance. Please try again later.")
            return

        error_type = type(getattr(error, "original", error)).__name__
        if self.should_notify(error_type):
            user = f"{interaction.user.display_name} ({interaction.user.id})"
            guild = f"{interaction.guild.name} ({interaction.guild.id})" if interaction.guild else "DM"
            description = (
                f"**Command:** /{command_name}\n"
                f"**User:** {user}\n"
                f"**Guild:** {guild}\n"
                f"**Error Count:** {self.error_counts[error_type]} (since restart)"
            )
            await self.notify_owner(f"Slash Command Error: {error_type}", description, error)

        logger.error(f"Interaction error in {command_name}: {error}", exc_info=error)

        await self._reply(interaction, "An error occurred while processing your command. The bot owner has been notified.")

    async def _reply(self, interaction: discord.Interaction, message: str):
        embed = discord.Embed(title="❌ Command Error", description=message, color=0xff0000)
        try:
            if not interaction.response.is_done():
                await interaction.response.send_message(embed=embed, ephemeral=True)
            else:
                await interaction.followup.send(embed=embed, ephemeral=True)
        except discord.HTTPException as followup_error:
            logger.error(f"Failed to send error message to user: {followup_error}")

    async def send_startup_notification(self):
        """Send notification when bot starts successfully."""
        if not self.owner_id:
            return
        try:
            owner = self.bot.get_user(self.owner_id) or await self.bot.fetch_user(self.owner_id)
            embed = discord.Embed(
                title="✅ Faction Terminal Started",
                description=f"Bot is online and ready in {len(self.bot.guilds)} guild(s)",
                color=0x00ff00,
                timestamp=datetime.now(timezone.utc)
            )
            await owner.send(embed=embed)
            logger.info("Sent startup notification to owner")
        except discord.HTTPException as e:
            logger.error(f"Failed to send startup notification: {e}")

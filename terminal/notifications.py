"""Public announcements for the faction terminal."""

import logging

import discord

from .storage import DocumentStore

logger = logging.getLogger(__name__)

PUBLIC_CHANNEL = "public_channel"


class NotificationManager:
    """Sends public messages to the configured announcement channel."""

    def __init__(self, bot, store: DocumentStore):
        self.bot = bot
        self.store = store

    async def _channel(self, interaction: discord.Interaction):
        configured = await self.store.get_state(PUBLIC_CHANNEL)
        if configured:
            channel = self.bot.get_channel(int(configured))
            if channel:
                return channel
            logger.warning(f"Configured channel {configured} not accessible, clearing setting")
            await self.store.set_state(PUBLIC_CHANNEL, "")
        return interaction.channel

    async def send_public_message(self, interaction: discord.Interaction, content=None, embed=None):
        """Send a public message to the configured channel or the current one."""
        try:
            channel = await self._channel(interaction)
            await channel.send(content=content, embed=embed)
        except discord.HTTPException as e:
            logger.warning(f"Failed to send public message: {e}")
            try:
                await interaction.followup.send(content=content, embed=embed)
            except discord.HTTPException as followup_error:
                logger.error(f"Could not deliver public message at all: {followup_error}")

"""Main entry point for the Faction Terminal Discord bot."""

import os
import sys
import asyncio
import logging

import discord
from discord.ext import commands
from dotenv import load_dotenv

from error_handler import ErrorHandler

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('faction_terminal.log')
    ]
)
logger = logging.getLogger(__name__)

EXTENSIONS = (
    ('terminal.commands', True),
    ('terminal.admin_commands', False),
    ('terminal.scheduler', False),
)


def load_token() -> str:
    """Load the bot token from the environment or .env file."""
    load_dotenv()

    token = os.getenv('DISCORD_TOKEN')
    if not token:
        logger.error("DISCORD_TOKEN is not set. Add it to your environment or .env file.")
        sys.exit(1)
    return token


class FactionTerminalBot(commands.Bot):
    """The main Faction Terminal bot class."""

    def __init__(self):
        intents = discord.Intents.default()
        intents.message_content = False  # We only use slash commands

        super().__init__(
            command_prefix='!',  # Unused but required
            intents=intents,
            description="A Discord terminal for a two-faction seasonal role-play game"
        )

        owner_id = int(os.getenv('BOT_OWNER_ID', '0'))
        self.error_handler = ErrorHandler(self, owner_id)
        self.tree.on_error = self.on_app_command_error

    async def setup_hook(self):
        """Load extensions and sync slash commands."""
        logger.info("Setting up Faction Terminal bot...")

        for name, required in EXTENSIONS:
            try:
                await self.load_extension(name)
                logger.info(f"Loaded {name}")
            except Exception as e:
                await self.error_handler.notify_owner(f"Failed to load {name}", str(e), e)
                logger.error(f"Failed to load {name}: {e}")
                if required:
                    raise

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} command(s)")
        except Exception as e:
            await self.error_handler.notify_owner("Failed to sync commands", str(e), e)
            logger.error(f"Failed to sync commands: {e}")

    async def on_ready(self):
        """Called when the bot is ready."""
        logger.info(f"Faction Terminal bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guild(s)")

        try:
            activity = discord.Game(name="Faction Terminal | /conflict")
            await self.change_presence(activity=activity)
            await self.error_handler.send_startup_notification()
        except Exception as e:
            logger.error(f"Error in on_ready: {e}")

    async def on_app_command_error(self, interaction, error):
        """Handle application command errors."""
        await self.error_handler.handle_interaction_error(interaction, error)

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors."""
        exc_type, exc_value, exc_traceback = sys.exc_info()
        logger.error(f"Bot error in event {event}", exc_info=True)
        if exc_value:
            context = {"event": event, "args": str(args)[:500]}
            await self.error_handler.notify_owner(f"Bot Error in {event}", str(context), exc_value)

    async def close(self):
        """Clean shutdown."""
        logger.info("Shutting down Faction Terminal bot...")
        await self.error_handler.notify_owner("Bot Shutdown", "Faction Terminal bot is shutting down normally")
        await super().close()


async def main():
    """Main function to run the bot."""
    token = load_token()
    bot = FactionTerminalBot()
    try:
        await bot.start(token)
    except Exception as e:
        logger.error(f"Bot crashed: {e}", exc_info=True)
        await bot.error_handler.notify_owner("Bot Crashed", "Fatal error while running", e)
        raise
    finally:
        if not bot.is_closed():
            await bot.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

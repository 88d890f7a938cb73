# Main File

import asyncio
import logging
import signal
import sys
from datetime import datetime
from pathlib import Path

import discord

from coach.config import ConfigurationError, load_environment, load_settings
from coach.constructor import ServerManagerType
from coach.context import Context
from coach.server.constructor import construct_server_manager
from coach.services.constructor import construct_services_manager
from coach.services.logger import LogChannel
from coach.services.voice_session_manager.manager import CRASH_MESSAGE, SHUTDOWN_MESSAGE

# Configure Python's built-in logging for server initialization
# (before AsyncLoggingService is available)
logs_dir = Path("logs")
logs_dir.mkdir(parents=True, exist_ok=True)
timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
log_file = logs_dir / f"app_{timestamp}.log"

# Configure logging to output to both console and file
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_file, mode="a", encoding="utf-8"),
    ],
    force=True,
)

load_environment()

# -------------------------------------------------------------- #
# Discord Bot Setup
# -------------------------------------------------------------- #

intents = discord.Intents.default()
intents.voice_states = True
intents.members = True  # Required for member join logs and voice channel member lists
intents.message_content = True  # Required for the !join and !leave text commands

bot = discord.Bot(intents=intents)

SHUTDOWN_TIMEOUT_SECONDS = 30.0


# -------------------------------------------------------------- #
# Event Handler System
# -------------------------------------------------------------- #
#
# Each cog registers a filter and a handler. Filters decide whether the handler
# runs; handlers pass through to the next one unless registered with
# pass_through=False or they return False.
#


class MessageEventHandler:
    """Handler for message events with a filter-based architecture."""

    def __init__(self):
        self.handlers = []

    def register_handler(self, filter_func, handler_func, pass_through: bool = True):
        """Register a message event handler with a filter.

        Args:
            filter_func: Async function that takes a message and returns bool
                        (True if handler should process the message)
            handler_func: Async function that processes the message
            pass_through: If True, continue to next handler after this one.
                         If False, stop propagation after this handler.
        """
        self.handlers.append(
            {"filter": filter_func, "handler": handler_func, "pass_through": pass_through}
        )

    async def process_message(self, message: discord.Message):
        """Process a message through all registered handlers."""
        for handler_info in self.handlers:
            try:
                if await handler_info["filter"](message):
                    result = await handler_info["handler"](message)

                    if not handler_info["pass_through"] or result is False:
                        break
            except Exception as e:
                # Log error but continue to next handler
                logging.error(f"Error in message handler: {e}", exc_info=True)


# Create global message event handler
message_event_handler = MessageEventHandler()


async def load_cogs(context: Context):
    """Load all cog extensions with context.

    Args:
        context: The application context instance
    """
    from cogs.voice import setup as setup_voice

    voice_cog = setup_voice(context)
    message_event_handler.register_handler(
        filter_func=voice_cog.filter_message,
        handler_func=voice_cog.handle_message,
        pass_through=True,
    )
    await context.services_manager.logging_service.info("✓ Loaded cogs.voice")
    await context.services_manager.logging_service.info("✓ Registered voice message handler")


# -------------------------------------------------------------- #
# Events
# -------------------------------------------------------------- #


@bot.event
async def on_message(message: discord.Message):
    """Route every message through the registered handlers."""
    await message_event_handler.process_message(message)


@bot.event
async def on_ready():
    """Called when the bot is ready and connected to Discord."""
    logger = bot.context.services_manager.logging_service

    await logger.info(f"Logged in as {bot.user.name} (ID: {bot.user.id})", LogChannel.DISCORD)
    await logger.info(f"Connected to {len(bot.guilds)} guild(s):", LogChannel.DISCORD)
    for guild in bot.guilds:
        await logger.info(f"  ✓ {guild.name} (ID: {guild.id})", LogChannel.DISCORD)


@bot.event
async def on_application_command_error(
    ctx: discord.ApplicationContext, error: discord.DiscordException
):
    """Handle errors in application commands."""
    logger = bot.context.services_manager.logging_service
    await logger.error(f"Error in command {ctx.command.name}: {error}", LogChannel.DISCORD)

    if isinstance(error, discord.CheckFailure):
        await ctx.respond("❌ You don't have permission to use this command.", ephemeral=True)
    else:
        await ctx.respond(f"❌ An error occurred: {str(error)}", ephemeral=True)


@bot.event
async def on_guild_join(guild: discord.Guild):
    """Called when the bot joins a new guild (server)."""
    logger = bot.context.services_manager.logging_service
    await logger.info(f"Bot joined new guild: '{guild.name}' (ID: {guild.id})", LogChannel.DISCORD)


@bot.event
async def on_member_join(member: discord.Member):
    logger = bot.context.services_manager.logging_service
    await logger.info(f"User {member} joined server: {member.guild.name}", LogChannel.DISCORD)


# -------------------------------------------------------------- #
# Lifecycle
# -------------------------------------------------------------- #


async def shutdown(context: Context, announcement: str) -> None:
    """Shut every service down, then close the Discord client."""
    if context.services_manager is not None:
        await context.services_manager.shutdown_all(
            timeout=SHUTDOWN_TIMEOUT_SECONDS, announcement=announcement
        )
    elif context.server_manager is not None:
        await context.server_manager.disconnect_all()

    if not bot.is_closed():
        await bot.close()


def install_signal_handlers(loop: asyncio.AbstractEventLoop, stop_event: asyncio.Event) -> None:
    def request_shutdown(signal_name: str) -> None:
        logging.info(f"Received {signal_name}, shutting down")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown, sig.name)
        except NotImplementedError:
            logging.warning(f"Cannot install handler for {sig.name} on this platform")


# -------------------------------------------------------------- #
# Run Bot
# -------------------------------------------------------------- #


async def main() -> int:
    """Start every service and run the bot until a signal or a crash.

    Returns:
        Process exit code: 0 after a signal, 1 after a crash or bad configuration
    """
    try:
        settings = load_settings()
    except ConfigurationError as e:
        print(str(e), file=sys.stderr)
        return 1

    # We need to print to console initially since logging service isn't set up yet
    print("=" * 40)
    print("Syncing services...")

    context = Context(settings)
    context.set_bot(bot)
    bot.context = context

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    faults: list[BaseException] = []

    def handle_loop_exception(_loop: asyncio.AbstractEventLoop, details: dict) -> None:
        exception = details.get("exception")
        logging.error(
            f"Unhandled exception in event loop: {details.get('message')}", exc_info=exception
        )
        faults.append(exception or RuntimeError(details.get("message", "unknown error")))
        stop_event.set()

    loop.set_exception_handler(handle_loop_exception)
    install_signal_handlers(loop, stop_event)

    try:
        servers_manager = construct_server_manager(ServerManagerType.PRODUCTION, context)
        context.set_server_manager(servers_manager)
        await servers_manager.connect_all()
        print("[OK] Connected all servers.")

        services_manager = construct_services_manager(
            ServerManagerType.PRODUCTION, context=context, log_file=f"coach_{timestamp}.log"
        )
        context.set_services_manager(services_manager)
        await services_manager.initialize_all()
    except Exception as e:
        logging.critical(f"Startup failed: {e}", exc_info=True)
        await shutdown(context, CRASH_MESSAGE)
        return 1

    logger = services_manager.logging_service
    await logger.info("[OK] Initialized all services.")
    await load_cogs(context)

    # -------------------------------------------------------------- #
    # Start Discord Bot
    # -------------------------------------------------------------- #

    bot_task = asyncio.create_task(bot.start(settings.discord_token), name="discord-bot")
    stop_task = asyncio.create_task(stop_event.wait(), name="stop-signal")
    await asyncio.wait({bot_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

    crashed = bool(faults)
    if bot_task.done() and not bot_task.cancelled() and bot_task.exception() is not None:
        crashed = True
        await logger.critical(f"Bot stopped with an error: {bot_task.exception()}", LogChannel.BOT)

    if crashed:
        await logger.critical("Crash detected, attempting graceful shutdown", LogChannel.BOT)
    else:
        await logger.info("Shutting down gracefully", LogChannel.BOT)

    await shutdown(context, CRASH_MESSAGE if crashed else SHUTDOWN_MESSAGE)

    stop_task.cancel()
    if not bot_task.done():
        bot_task.cancel()
    await asyncio.gather(bot_task, stop_task, return_exceptions=True)

    return 1 if crashed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

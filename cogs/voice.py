import logging

import discord
from discord.ext import commands

from coach.context import Context
from coach.services.voice_session_manager.manager import (
    JOIN_MESSAGE,
    LEFT_MESSAGE,
    NOT_IN_CHANNEL_MESSAGE,
)

logger = logging.getLogger(__name__)

JOIN_COMMAND = "!join"
LEAVE_COMMAND = "!leave"
NOT_IN_VOICE_MESSAGE = "You must be in a voice channel to use this command."


# -------------------------------------------------------------- #
# Cog
# -------------------------------------------------------------- #


class Voice(commands.Cog):
    """Voice based commands."""

    def __init__(self, context: Context):
        self.context = context
        self.bot = context.bot
        self.server = context.server_manager
        self.services = context.services_manager

    # -------------------------------------------------------------- #
    # Utils
    # -------------------------------------------------------------- #

    @staticmethod
    def find_user_vc(author) -> discord.VoiceChannel | None:
        """Find the voice channel a member is in.

        Args:
            author: Member who issued the command

        Returns:
            Voice channel if the member is connected, None otherwise
        """
        voice = getattr(author, "voice", None)
        return voice.channel if voice else None

    async def join(self, voice_channel: discord.VoiceChannel) -> str | None:
        """Join a voice channel.

        Returns:
            None on success, otherwise an error message for the user
        """
        try:
            await self.services.voice_session_manager.join_channel(voice_channel)
        except discord.DiscordException as e:
            logger.error(f"Failed to join voice channel {voice_channel.id}: {e}")
            return f"Failed to connect to voice channel: {e}"
        except RuntimeError as e:
            return str(e)
        return None

    async def leave(self, guild: discord.Guild) -> str:
        left = await self.services.voice_session_manager.leave_guild(guild)
        return LEFT_MESSAGE if left else NOT_IN_CHANNEL_MESSAGE

    # -------------------------------------------------------------- #
    # Text Commands
    # -------------------------------------------------------------- #

    async def filter_message(self, message: discord.Message) -> bool:
        """Filter to determine if this cog should handle the message.

        This cog handles `!join` and `!leave` sent by a non-bot member of a guild.
        """
        if message.author.bot:
            return False

        if not message.guild:
            return False

        return message.content.strip() in (JOIN_COMMAND, LEAVE_COMMAND)

    async def handle_message(self, message: discord.Message) -> bool:
        """Run a text command.

        Returns:
            True to pass through to next handler
        """
        command = message.content.strip()

        if command == JOIN_COMMAND:
            voice_channel = self.find_user_vc(message.author)
            if voice_channel is None:
                return True

            await message.reply(JOIN_MESSAGE)
            error = await self.join(voice_channel)
            if error:
                await message.reply(error)

        elif command == LEAVE_COMMAND:
            await message.reply(await self.leave(message.guild))

        return True

    # -------------------------------------------------------------- #
    # Listeners
    # -------------------------------------------------------------- #

    async def on_voice_state_update(self, member, before, after):
        """Forward voice state changes to the voice session manager.

        Args:
            member: The member whose voice state has changed
            before: The previous voice state
            after: The new voice state
        """
        await self.services.voice_session_manager.handle_voice_state_update(member, before, after)

    # -------------------------------------------------------------- #
    # Slash Commands
    # -------------------------------------------------------------- #

    @commands.slash_command(name="join", description="Bring the coach into your voice channel")
    async def join_command(self, ctx: discord.ApplicationContext) -> None:
        await ctx.defer()

        voice_channel = self.find_user_vc(ctx.author)
        if not voice_channel:
            await ctx.edit(content=f"❌ {NOT_IN_VOICE_MESSAGE}")
            return

        await ctx.edit(content="⏳ Connecting to voice channel...")
        error = await self.join(voice_channel)
        if error:
            await ctx.edit(content=f"❌ {error}")
            return

        await ctx.edit(content=JOIN_MESSAGE)

    @commands.slash_command(name="leave", description="Send the coach out of the voice channel")
    async def leave_command(self, ctx: discord.ApplicationContext) -> None:
        await ctx.defer()

        if ctx.guild is None:
            await ctx.edit(content="❌ This command can only be used in a guild.")
            return

        await ctx.edit(content=await self.leave(ctx.guild))


def setup(context: Context):
    """Setup function for the Voice cog.

    Args:
        context: The application context instance

    Returns:
        The initialized Voice cog instance
    """
    voice = Voice(context)
    context.bot.add_cog(voice)

    # -------------------------------------------------------------- #
    # Add listeners
    # -------------------------------------------------------------- #

    context.bot.add_listener(voice.on_voice_state_update, "on_voice_state_update")
    return voice

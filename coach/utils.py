import logging

import discord

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Util Functions
# -------------------------------------------------------------- #


def mention(user_id: int | str) -> str:
    """Format a Discord user mention."""
    return f"<@{user_id}>"


def is_human_member(member) -> bool:
    """Check that a member is a real participant rather than a bot account."""
    return member is not None and not getattr(member, "bot", False)


def human_members(channel) -> list:
    """Return the non-bot members currently connected to a voice channel."""
    if channel is None:
        return []
    return [member for member in channel.members if is_human_member(member)]


# -------------------------------------------------------------- #
# Bot Utils
# -------------------------------------------------------------- #


class BotUtils:
    """Utility class for Discord bot operations."""

    @staticmethod
    async def send_channel_message(channel, message: str) -> bool:
        """
        Send a text message to a channel.

        Voice channels accept text messages through their built-in chat, so the
        voice channel itself is a valid target.

        Args:
            channel: Any messageable Discord channel
            message: Message content to send

        Returns:
            True if message was sent successfully, False otherwise
        """
        if channel is None:
            return False

        try:
            await channel.send(message)
            return True

        except discord.Forbidden:
            logger.warning(f"Missing permission to send messages in channel {channel.id}")
            return False
        except discord.HTTPException as e:
            logger.error(f"HTTP error sending message to channel {channel.id}: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error sending message to channel {channel.id}: {e}")
            return False

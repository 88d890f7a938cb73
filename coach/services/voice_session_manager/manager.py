import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import discord

from coach.services.logger import LogChannel
from coach.services.manager import Manager
from coach.services.session_registry.manager import ChannelSession
from coach.services.trigger.parser import extract_assistant_query
from coach.services.voice_receiver.sink import SpeakerRoutingSink
from coach.utils import BotUtils, human_members, is_human_member, mention

if TYPE_CHECKING:
    from coach.context import Context

JOIN_MESSAGE = "On my way to help the boys!"
LEFT_MESSAGE = "Left the voice channel!"
NOT_IN_CHANNEL_MESSAGE = "I am not in a voice channel."
SHUTDOWN_MESSAGE = ":wave: Gotta go, I'm shutting down. You got this on your own, sport."
CRASH_MESSAGE = ":warning: I'm crashing out! You got this on your own, sport."

# -------------------------------------------------------------- #
# Voice Session Manager Service
# -------------------------------------------------------------- #


class VoiceSessionManagerService(Manager):
    """
    Drives the voice pipeline from platform events.

    Joining a channel starts recording with a routing sink and a capture loop
    for every member already present. Voice state updates add and remove
    speakers; when the last member leaves, the channel is torn down. Every
    transcript is echoed to the channel chat, checked for the wake word, and
    answered out loud when the assistant replies.
    """

    def __init__(self, context: "Context", connect_timeout: float = 10.0):
        super().__init__(context)
        self.connect_timeout = connect_timeout
        self._shutdown_started = False

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info("VoiceSessionManagerService initialized")

    async def on_close(self) -> None:
        await self.shutdown(None)

    # -------------------------------------------------------------- #
    # Joining and Leaving
    # -------------------------------------------------------------- #

    async def join_channel(self, voice_channel: discord.VoiceChannel) -> ChannelSession:
        """
        Connect to a voice channel and start listening to everyone in it.

        Raises:
            discord.DiscordException: If the voice connection cannot be established
            RuntimeError: If the bot is shutting down
        """
        if self.context.is_shutting_down():
            raise RuntimeError("Bot is shutting down")

        registry = self.services.session_registry
        guild = voice_channel.guild

        existing = registry.get_channel(voice_channel.id)
        if existing is not None and existing.voice_client and existing.voice_client.is_connected():
            return existing

        other = registry.get_channel_for_guild(guild.id)
        if other is not None:
            await self.teardown_channel(other)

        voice_client = guild.voice_client
        if voice_client is None or not voice_client.is_connected():
            voice_client = await voice_channel.connect(timeout=self.connect_timeout, reconnect=True)
        elif voice_client.channel.id != voice_channel.id:
            await voice_client.move_to(voice_channel)

        channel_session = registry.get_or_create_channel(voice_channel.id, guild.id)
        channel_session.voice_channel = voice_channel
        channel_session.voice_client = voice_client
        channel_session.receiver = SpeakerRoutingSink(asyncio.get_running_loop())

        voice_client.start_recording(
            channel_session.receiver,
            self._recording_finished,
            channel_session.channel_id,
            sync_start=False,
        )
        await self.services.logging_service.info(
            f"Joined voice channel '{voice_channel.name}' in guild '{guild.name}'",
            LogChannel.DISCORD,
        )

        for member in human_members(voice_channel):
            self.track_speaker(channel_session, member)

        return channel_session

    async def leave_guild(self, guild: discord.Guild) -> bool:
        """
        Leave whatever voice channel the bot is in for a guild.

        Returns:
            True if a channel was left, False if the bot was not connected
        """
        channel_session = self.services.session_registry.get_channel_for_guild(guild.id)
        if channel_session is not None:
            await self.teardown_channel(channel_session)
            return True

        voice_client = guild.voice_client
        if voice_client is not None and voice_client.is_connected():
            await self._safely(
                "disconnect voice client", lambda: voice_client.disconnect(force=True)
            )
            return True
        return False

    async def teardown_channel(
        self, channel_session: ChannelSession, disconnect: bool = True
    ) -> None:
        """Stop recording, release every speaker and drop the voice connection."""
        voice_client = channel_session.voice_client
        receiver = channel_session.receiver

        if voice_client is not None and getattr(voice_client, "recording", False):
            await self._safely_sync("stop recording", voice_client.stop_recording)
        if receiver is not None:
            await self._safely_sync("close receiver", receiver.close)

        await self._safely(
            "release channel speakers",
            lambda: self.services.session_registry.remove_channel(channel_session.channel_id),
        )

        if disconnect and voice_client is not None and voice_client.is_connected():
            await self._safely(
                "disconnect voice client", lambda: voice_client.disconnect(force=True)
            )

        await self.services.logging_service.info(
            f"Left voice channel {channel_session.channel_id}", LogChannel.DISCORD
        )

    # -------------------------------------------------------------- #
    # Membership
    # -------------------------------------------------------------- #

    def track_speaker(self, channel_session: ChannelSession, member) -> None:
        """Register a member as a speaker and make sure its capture loop runs."""
        speaker = self.services.session_registry.get_or_create_speaker(
            channel_session.channel_id, channel_session.guild_id, member.id, member.voice
        )
        self.services.capture_manager.start(channel_session, speaker)

    async def handle_voice_state_update(self, member, before, after) -> None:
        """React to a member joining, leaving, moving or changing mute state."""
        if self.context.is_shutting_down():
            return

        registry = self.services.session_registry
        before_id = before.channel.id if before.channel else None
        after_id = after.channel.id if after.channel else None

        if self._is_bot_user(member):
            if before_id is not None and before_id != after_id:
                channel_session = registry.get_channel(before_id)
                if channel_session is not None:
                    await self.services.logging_service.warning(
                        f"Disconnected from voice channel {before_id}", LogChannel.DISCORD
                    )
                    await self.teardown_channel(channel_session, disconnect=after_id is None)
            return

        if not is_human_member(member):
            return

        if before_id == after_id:
            if after_id is not None:
                speaker = registry.get_speaker(after_id, member.id)
                if speaker is not None:
                    speaker.voice_state = after
            return

        if before_id is not None:
            channel_session = registry.get_channel(before_id)
            if channel_session is not None:
                await self._remove_member(channel_session, member, before.channel)

        if after_id is not None:
            channel_session = registry.get_channel(after_id)
            if channel_session is not None:
                await self.services.logging_service.info(
                    f"{member.display_name} joined '{after.channel.name}'", LogChannel.DISCORD
                )
                self.track_speaker(channel_session, member)

    async def _remove_member(self, channel_session: ChannelSession, member, channel) -> None:
        await self.services.session_registry.remove_speaker(channel_session.channel_id, member.id)
        await self.services.logging_service.info(
            f"{member.display_name} left '{channel.name}'", LogChannel.DISCORD
        )

        remaining = [m for m in human_members(channel) if m.id != member.id]
        if not remaining:
            await self.services.logging_service.info(
                f"No one left in '{channel.name}', leaving", LogChannel.DISCORD
            )
            await self.teardown_channel(channel_session)

    # -------------------------------------------------------------- #
    # Transcripts
    # -------------------------------------------------------------- #

    async def handle_transcript(self, channel_id: int, speaker_id: int, transcript: str) -> None:
        """Echo a transcript and answer it if it is addressed to the coach."""
        if self.context.is_shutting_down():
            return

        logging_service = self.services.logging_service
        channel_session = self.services.session_registry.get_channel(channel_id)
        if channel_session is None:
            return

        try:
            await BotUtils.send_channel_message(
                channel_session.voice_channel, f"{mention(speaker_id)} said: {transcript}"
            )

            query = extract_assistant_query(transcript)
            if query is None:
                return

            await logging_service.info(f"Coach asked by {speaker_id}: {query}", LogChannel.BOT)
            reply = await self.services.assistant_manager.query(query)
            if reply is None:
                return

            await BotUtils.send_channel_message(
                channel_session.voice_channel, f"{mention(speaker_id)} (AI): {reply}"
            )

            voice_client = channel_session.voice_client
            if voice_client is None or not voice_client.is_connected():
                return
            await self.services.playback_manager.speak(reply, voice_client)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await logging_service.error(
                f"Failed to handle transcript from {speaker_id}: {e}", LogChannel.BOT
            )

    # -------------------------------------------------------------- #
    # Shutdown
    # -------------------------------------------------------------- #

    async def shutdown(self, announcement: str | None) -> None:
        """
        Leave every voice channel. Runs once; later calls do nothing.

        Args:
            announcement: Text posted to each joined channel first, if given
        """
        if self._shutdown_started:
            return
        self._shutdown_started = True

        registry = self.services.session_registry
        channel_sessions = list(registry.channels.values())

        for channel_session in channel_sessions:
            if announcement:
                await self._safely(
                    "post announcement",
                    lambda cs=channel_session: BotUtils.send_channel_message(
                        cs.voice_channel, announcement
                    ),
                )
            voice_client = channel_session.voice_client
            if voice_client is not None and getattr(voice_client, "recording", False):
                await self._safely_sync("stop recording", voice_client.stop_recording)
            if channel_session.receiver is not None:
                await self._safely_sync("close receiver", channel_session.receiver.close)

        await self._safely("close sessions", registry.close_all)

        voice_clients = [cs.voice_client for cs in channel_sessions if cs.voice_client is not None]
        bot = self.context.bot
        if bot is not None:
            voice_clients.extend(vc for vc in bot.voice_clients if vc not in voice_clients)

        for voice_client in voice_clients:
            await self._safely(
                "disconnect voice client", lambda vc=voice_client: vc.disconnect(force=True)
            )

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    def _is_bot_user(self, member) -> bool:
        bot = self.context.bot
        return bot is not None and bot.user is not None and member.id == bot.user.id

    async def _recording_finished(self, _sink: SpeakerRoutingSink, channel_id: int) -> None:
        await self.services.logging_service.debug(
            f"Recording stopped for channel {channel_id}", LogChannel.DISCORD
        )

    async def _safely(self, label: str, step: Callable[[], Awaitable[Any]]) -> None:
        try:
            await step()
        except Exception as e:
            await self.services.logging_service.warning(f"Failed to {label}: {e}", LogChannel.BOT)

    async def _safely_sync(self, label: str, step: Callable[[], Any]) -> None:
        try:
            step()
        except Exception as e:
            await self.services.logging_service.warning(f"Failed to {label}: {e}", LogChannel.BOT)

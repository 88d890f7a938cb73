"""
Session state registry.

Tracks every joined voice channel, the speakers being listened to inside each
channel, and the transcription session (if any) in flight for each speaker.
The registry is the only owner of this state; other services look sessions up
through it instead of keeping their own references.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from coach.services.logger import LogChannel
from coach.services.manager import Manager

if TYPE_CHECKING:
    from coach.context import Context
    from coach.services.transcription_manager.session import TranscriptionSession
    from coach.services.voice_receiver.sink import SpeakerRoutingSink

# -------------------------------------------------------------- #
# Session Models
# -------------------------------------------------------------- #


@dataclass
class SpeakerSession:
    speaker_id: int
    # Platform voice state, refreshed in place on mute/deafen changes. Not owned.
    voice_state: Any = None
    transcription: TranscriptionSession | None = None
    capture_task: asyncio.Task | None = None


@dataclass
class ChannelSession:
    channel_id: int
    guild_id: int
    speakers: dict[int, SpeakerSession] = field(default_factory=dict)
    voice_channel: Any = None
    voice_client: Any = None
    receiver: SpeakerRoutingSink | None = None


# -------------------------------------------------------------- #
# Session Registry Service
# -------------------------------------------------------------- #


class SessionRegistryService(Manager):
    """Owns ChannelSession and SpeakerSession state for the whole process."""

    def __init__(self, context: Context, close_timeout: float = 2.0):
        super().__init__(context)
        self.close_timeout = close_timeout
        self.channels: dict[int, ChannelSession] = {}

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info("SessionRegistryService initialized")

    # -------------------------------------------------------------- #
    # Lookups
    # -------------------------------------------------------------- #

    def get_channel(self, channel_id: int) -> ChannelSession | None:
        return self.channels.get(channel_id)

    def get_channel_for_guild(self, guild_id: int) -> ChannelSession | None:
        for channel in self.channels.values():
            if channel.guild_id == guild_id:
                return channel
        return None

    def get_speaker(self, channel_id: int, speaker_id: int) -> SpeakerSession | None:
        channel = self.channels.get(channel_id)
        if channel is None:
            return None
        return channel.speakers.get(speaker_id)

    # -------------------------------------------------------------- #
    # Mutations
    # -------------------------------------------------------------- #

    def get_or_create_channel(self, channel_id: int, guild_id: int) -> ChannelSession:
        channel = self.channels.get(channel_id)
        if channel is None:
            channel = ChannelSession(channel_id=channel_id, guild_id=guild_id)
            self.channels[channel_id] = channel
        return channel

    def get_or_create_speaker(
        self, channel_id: int, guild_id: int, speaker_id: int, voice_state: Any = None
    ) -> SpeakerSession:
        """Return the speaker, creating it (and its channel) if needed.

        An existing speaker keeps its transcription and capture task; only the
        voice state is replaced.
        """
        channel = self.get_or_create_channel(channel_id, guild_id)
        speaker = channel.speakers.get(speaker_id)
        if speaker is None:
            speaker = SpeakerSession(speaker_id=speaker_id, voice_state=voice_state)
            channel.speakers[speaker_id] = speaker
        else:
            speaker.voice_state = voice_state
        return speaker

    def attach_transcription(
        self, channel_id: int, speaker_id: int, session: TranscriptionSession
    ) -> bool:
        """Record the in-flight transcription for a speaker. False if the speaker is gone."""
        speaker = self.get_speaker(channel_id, speaker_id)
        if speaker is None:
            return False
        speaker.transcription = session
        return True

    def detach_transcription(
        self, channel_id: int, speaker_id: int, session: TranscriptionSession
    ) -> None:
        """Forget a finished transcription, only if it is still the current one."""
        speaker = self.get_speaker(channel_id, speaker_id)
        if speaker is not None and speaker.transcription is session:
            speaker.transcription = None

    async def remove_speaker(self, channel_id: int, speaker_id: int) -> SpeakerSession | None:
        """
        Stop tracking a speaker.

        The speaker is removed from the registry before any cleanup runs, so no
        reference survives even if closing the transcription fails. The channel
        entry is dropped once its last speaker is gone.

        Returns:
            The removed speaker, or None if it was not tracked
        """
        channel = self.channels.get(channel_id)
        if channel is None:
            return None

        speaker = channel.speakers.pop(speaker_id, None)
        if not channel.speakers:
            self.channels.pop(channel_id, None)

        if speaker is None:
            return None

        await self._release_speaker(speaker)
        await self.services.logging_service.debug(
            f"Removed speaker {speaker_id} from channel {channel_id}", LogChannel.BOT
        )
        return speaker

    async def remove_channel(self, channel_id: int) -> ChannelSession | None:
        """Drop a channel and release every speaker in it."""
        channel = self.channels.pop(channel_id, None)
        if channel is None:
            return None

        speakers = list(channel.speakers.values())
        channel.speakers.clear()
        for speaker in speakers:
            await self._release_speaker(speaker)
        return channel

    async def close_all(self) -> None:
        """Release every speaker in every channel and empty the registry. Shutdown only."""
        channels = list(self.channels.values())
        self.channels.clear()

        for channel in channels:
            speakers = list(channel.speakers.values())
            channel.speakers.clear()
            for speaker in speakers:
                await self._release_speaker(speaker)

    async def on_close(self) -> None:
        await self.close_all()

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _release_speaker(self, speaker: SpeakerSession) -> None:
        transcription, speaker.transcription = speaker.transcription, None
        capture_task, speaker.capture_task = speaker.capture_task, None

        if capture_task is not None and not capture_task.done():
            if capture_task is not asyncio.current_task():
                capture_task.cancel()
                await asyncio.wait({capture_task}, timeout=self.close_timeout)

        if transcription is not None:
            try:
                await asyncio.wait_for(transcription.close(), timeout=self.close_timeout)
            except asyncio.TimeoutError:
                await self.services.logging_service.warning(
                    f"Timed out closing transcription for speaker {speaker.speaker_id}",
                    LogChannel.STT,
                )
            except Exception as e:
                await self.services.logging_service.warning(
                    f"Failed to close transcription for speaker {speaker.speaker_id}: {e}",
                    LogChannel.STT,
                )

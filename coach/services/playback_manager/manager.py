import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Any

from coach.server.services import SynthesizedAudio
from coach.services.logger import LogChannel
from coach.services.manager import Manager
from coach.services.playback_manager.pcm import mono_to_stereo, quantize_to_pcm16

if TYPE_CHECKING:
    from coach.context import Context

logger = logging.getLogger(__name__)

# Extra time allowed on top of the clip length before playback is abandoned
PLAYBACK_GRACE_SECONDS = 10.0

# -------------------------------------------------------------- #
# Playback Operation
# -------------------------------------------------------------- #


@dataclass
class PlaybackOperation:
    """One spoken reply, from synthesis until the player goes idle."""

    channel_id: int
    text: str
    voice_client: Any
    audio: SynthesizedAudio | None = None
    source: Any = None
    finished: asyncio.Future | None = None
    speaking: bool = False

    @property
    def duration_seconds(self) -> float:
        if self.audio is None or not self.audio.sample_rate:
            return 0.0
        return len(self.audio.samples) / self.audio.sample_rate


def _resolve_playback(future: asyncio.Future, error: Exception | None) -> None:
    if not future.done():
        future.set_result(error)


# -------------------------------------------------------------- #
# Playback Manager Service
# -------------------------------------------------------------- #


class PlaybackManagerService(Manager):
    """
    Speaks assistant replies into voice channels.

    Replies for the same channel are played one after another; a reply that
    arrives while another is playing waits its turn. Every exit path stops the
    player, kills the ffmpeg process and clears the channel's speaking flag.
    """

    def __init__(self, context: "Context", speaker_id: int = 0, speed: float = 1.4):
        super().__init__(context)
        self.speaker_id = speaker_id
        self.speed = speed
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}
        self._speaking: set[int] = set()
        self._active: dict[int, PlaybackOperation] = {}

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info(
            f"PlaybackManagerService initialized (speaker={self.speaker_id}, speed={self.speed})"
        )

    async def on_close(self) -> None:
        """Abort anything still playing."""
        for operation in list(self._active.values()):
            if operation.finished is not None:
                _resolve_playback(operation.finished, None)
            self._release(operation)

    # -------------------------------------------------------------- #
    # Playback
    # -------------------------------------------------------------- #

    def is_speaking(self, channel_id: int) -> bool:
        return channel_id in self._speaking

    async def speak(self, text: str, voice_client) -> bool:
        """
        Synthesize text and play it on a connected voice client.

        Args:
            text: Reply to speak
            voice_client: Connected py-cord VoiceClient of the target channel

        Returns:
            True if playback ran to completion, False on any failure
        """
        channel_id = voice_client.channel.id
        lock = self._locks.setdefault(channel_id, asyncio.Lock())
        self._lock_users[channel_id] = self._lock_users.get(channel_id, 0) + 1

        try:
            async with lock:
                operation = PlaybackOperation(
                    channel_id=channel_id, text=text, voice_client=voice_client
                )
                return await self._play(operation)
        finally:
            # Drop the lock once no reply for this channel is playing or waiting
            self._lock_users[channel_id] -= 1
            if not self._lock_users[channel_id]:
                del self._lock_users[channel_id]
                del self._locks[channel_id]

    async def _play(self, operation: PlaybackOperation) -> bool:
        logging_service = self.services.logging_service
        voice_client = operation.voice_client

        operation.speaking = True
        self._speaking.add(operation.channel_id)
        self._active[operation.channel_id] = operation

        try:
            operation.audio = await self.server.synthesis_client.generate(
                operation.text, self.speaker_id, self.speed
            )
            await logging_service.debug(
                f"Synthesized {operation.duration_seconds:.2f}s of audio "
                f"at {operation.audio.sample_rate} Hz",
                LogChannel.TTS,
            )

            mono_pcm = quantize_to_pcm16(operation.audio.samples)
            stereo_pcm = mono_to_stereo(mono_pcm)
            operation.source = self.services.ffmpeg_service_manager.create_playback_source(
                stereo_pcm, operation.audio.sample_rate
            )

            if not voice_client.is_connected():
                raise RuntimeError("Voice client is no longer connected")

            loop = asyncio.get_running_loop()
            operation.finished = loop.create_future()
            voice_client.play(
                operation.source,
                after=partial(self._on_playback_finished, loop, operation.finished),
            )

            error = await asyncio.wait_for(
                operation.finished, timeout=operation.duration_seconds + PLAYBACK_GRACE_SECONDS
            )
            if error is not None:
                await logging_service.error(f"Playback failed: {error}", LogChannel.FFMPEG)
                return False

            await logging_service.debug(
                f"Finished speaking in channel {operation.channel_id}", LogChannel.DISCORD
            )
            return True

        except asyncio.CancelledError:
            raise
        except Exception as e:
            await logging_service.error(
                f"Could not speak reply in channel {operation.channel_id}: {e}", LogChannel.TTS
            )
            return False
        finally:
            self._release(operation)

    @staticmethod
    def _on_playback_finished(
        loop: asyncio.AbstractEventLoop, future: asyncio.Future, error: Exception | None
    ) -> None:
        # Called from py-cord's player thread
        if not loop.is_closed():
            loop.call_soon_threadsafe(_resolve_playback, future, error)

    def _release(self, operation: PlaybackOperation) -> None:
        if operation.source is not None:
            try:
                if operation.voice_client.is_playing():
                    operation.voice_client.stop()
            except Exception as e:
                logger.debug(f"Could not stop player for channel {operation.channel_id}: {e}")
            self.services.ffmpeg_service_manager.release_source(operation.source)
            operation.source = None

        operation.speaking = False
        self._speaking.discard(operation.channel_id)
        if self._active.get(operation.channel_id) is operation:
            del self._active[operation.channel_id]

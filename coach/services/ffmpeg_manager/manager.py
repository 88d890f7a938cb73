import asyncio
import io
import logging
import subprocess
from typing import TYPE_CHECKING

import discord

if TYPE_CHECKING:
    from coach.context import Context

from coach.services.logger import LogChannel
from coach.services.manager import BaseFFmpegServiceManager

logger = logging.getLogger(__name__)

# Discord voice output format
PLAYBACK_SAMPLE_RATE = 48000
PLAYBACK_CHANNELS = 2

# -------------------------------------------------------------- #
# FFmpeg Handler
# -------------------------------------------------------------- #


class FFmpegHandler:
    def __init__(self, ffmpeg_service_manager: BaseFFmpegServiceManager, ffmpeg_path: str):
        self.ffmpeg_service_manager = ffmpeg_service_manager
        self.ffmpeg_path = ffmpeg_path

    async def validate_ffmpeg(self) -> bool:
        """Validate that FFmpeg is installed and accessible."""
        try:
            loop = asyncio.get_running_loop()
            result = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: subprocess.run(
                        [self.ffmpeg_path, "-version"],
                        capture_output=True,
                        timeout=5,
                        text=True,
                    ),
                ),
                timeout=6.0,
            )
            return result.returncode == 0
        except (OSError, subprocess.SubprocessError, asyncio.TimeoutError):
            return False

    @staticmethod
    def build_pcm_input_options(sample_rate: int, channels: int = PLAYBACK_CHANNELS) -> str:
        """Input options describing raw interleaved s16le PCM on stdin."""
        return f"-f s16le -ar {sample_rate} -ac {channels}"


# -------------------------------------------------------------- #
# FFmpeg Manager Service
# -------------------------------------------------------------- #


class FFmpegManagerService(BaseFFmpegServiceManager):
    """Service for managing FFmpeg operations."""

    def __init__(self, context: "Context", ffmpeg_path: str):
        super().__init__(context)

        self.ffmpeg_path = ffmpeg_path
        self.handler = FFmpegHandler(self, ffmpeg_path)
        self._active_sources: set = set()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("FFmpegManagerService initialized")

        if await self.handler.validate_ffmpeg():
            await self.services.logging_service.info(
                f"FFmpeg validated at path: {self.ffmpeg_path}", LogChannel.FFMPEG
            )
        else:
            await self.services.logging_service.warning(
                f"FFmpeg validation failed at path: {self.ffmpeg_path}", LogChannel.FFMPEG
            )

    async def on_close(self):
        """Kill any ffmpeg process still attached to a playback source."""
        sources = list(self._active_sources)
        for source in sources:
            self.release_source(source)
        if sources:
            await self.services.logging_service.info(
                f"Released {len(sources)} FFmpeg playback source(s)", LogChannel.FFMPEG
            )

    # -------------------------------------------------------------- #
    # Playback Sources
    # -------------------------------------------------------------- #

    def get_ffmpeg_path(self) -> str:
        return self.ffmpeg_path

    def create_playback_source(
        self, stereo_pcm: bytes, sample_rate: int
    ) -> discord.FFmpegOpusAudio:
        """
        Spawn ffmpeg to resample stereo PCM to 48 kHz and encode it as Opus.

        Args:
            stereo_pcm: Interleaved 16-bit little-endian stereo samples
            sample_rate: Rate the samples were generated at

        Returns:
            Audio source ready for VoiceClient.play
        """
        if not stereo_pcm:
            raise ValueError("No audio to play")

        source = discord.FFmpegOpusAudio(
            io.BytesIO(stereo_pcm),
            pipe=True,
            executable=self.ffmpeg_path,
            before_options=self.handler.build_pcm_input_options(sample_rate),
            options="-loglevel error",
        )
        self._active_sources.add(source)
        return source

    def release_source(self, source) -> None:
        """Terminate the ffmpeg process behind a source. Safe to call more than once."""
        self._active_sources.discard(source)
        try:
            source.cleanup()
        except Exception as e:
            logger.warning(f"Failed to clean up playback source: {e}")

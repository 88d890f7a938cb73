from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from coach.context import Context


# -------------------------------------------------------------- #
# Services Manager Class
# -------------------------------------------------------------- #


class ServicesManager:
    """Manager for handling multiple service instances."""

    def __init__(
        self,
        context: Context,
        logging_service: BaseAsyncLoggingService,
        ffmpeg_service_manager: BaseFFmpegServiceManager,
        session_registry: Any,
        transcription_manager: Any,
        capture_manager: Any,
        assistant_manager: Any,
        playback_manager: Any,
        voice_session_manager: Any,
    ):
        self.context = context
        self.server = context.server_manager

        self.logging_service = logging_service
        self.ffmpeg_service_manager = ffmpeg_service_manager

        # Session state
        self.session_registry = session_registry

        # Speech in
        self.transcription_manager = transcription_manager
        self.capture_manager = capture_manager

        # Speech out
        self.assistant_manager = assistant_manager
        self.playback_manager = playback_manager

        # Orchestration
        self.voice_session_manager = voice_session_manager

        self._shutdown_complete = False

    async def initialize_all(self) -> None:
        """Initialize all service managers."""

        # Logging
        await self.logging_service.on_start(self)

        # Services managers
        await self.ffmpeg_service_manager.on_start(self)
        await self.session_registry.on_start(self)
        await self.assistant_manager.on_start(self)
        await self.playback_manager.on_start(self)
        await self.transcription_manager.on_start(self)
        await self.capture_manager.on_start(self)

        # Orchestration
        await self.voice_session_manager.on_start(self)

    async def shutdown_all(self, timeout: float = 30.0, announcement: str | None = None) -> None:
        """
        Best-effort shutdown of every service.

        Every phase runs in isolation with its own share of the timeout, so a
        phase that fails or hangs never prevents the later phases from running.

        Args:
            timeout: Total time allowed in seconds
            announcement: Optional text posted to each joined channel before leaving
        """
        if self._shutdown_complete:
            return
        self._shutdown_complete = True

        await self.logging_service.info("=" * 60)
        await self.logging_service.info("Starting shutdown of all services...")

        if self.context:
            self.context.mark_shutdown_started()
            await self.logging_service.info("✓ Shutdown flag set - no new operations will start")

        # Phase 1: Announce and leave every voice channel
        await self._run_phase(
            "Phase 1: Leaving voice channels",
            lambda: self.voice_session_manager.shutdown(announcement),
            timeout * 0.3,
        )

        # Phase 2: Stop capture loops
        await self._run_phase(
            "Phase 2: Stopping capture loops", self.capture_manager.on_close, timeout * 0.1
        )

        # Phase 3: Close transcription sessions and pending transcript handlers
        await self._run_phase(
            "Phase 3: Closing transcription sessions",
            self.transcription_manager.on_close,
            timeout * 0.15,
        )
        await self._run_phase(
            "Phase 3: Clearing session registry", self.session_registry.close_all, timeout * 0.15
        )

        # Phase 4: Stop playback
        await self._run_phase(
            "Phase 4: Stopping playback", self.playback_manager.on_close, timeout * 0.1
        )
        await self._run_phase(
            "Phase 4: Closing assistant manager", self.assistant_manager.on_close, timeout * 0.05
        )
        await self._run_phase(
            "Phase 4: Closing FFmpeg manager", self.ffmpeg_service_manager.on_close, timeout * 0.05
        )

        # Phase 5: Disconnect servers (releases the TTS engine)
        if self.context and self.context.server_manager:
            await self._run_phase(
                "Phase 5: Disconnecting from all servers",
                self.context.server_manager.disconnect_all,
                timeout * 0.1,
            )

        await self.logging_service.info("✓ Shutdown completed")
        await self.logging_service.info("=" * 60)

        # Phase 6: Always flush and close logging
        try:
            await asyncio.wait_for(self.logging_service.on_close(), timeout=5.0)
        except (asyncio.TimeoutError, Exception):
            pass

    async def _run_phase(
        self, label: str, step: Callable[[], Awaitable[Any]], timeout: float
    ) -> bool:
        await self.logging_service.info(f"{label}...")
        try:
            await asyncio.wait_for(step(), timeout=timeout)
        except asyncio.TimeoutError:
            await self.logging_service.error(f"⚠️  {label} timed out after {timeout:.1f}s")
            return False
        except Exception as e:
            await self.logging_service.error(f"⚠️  {label} failed: {e}")
            return False

        await self.logging_service.info(f"✓ {label} done")
        return True


# -------------------------------------------------------------- #
# Base Service Manager Class
# -------------------------------------------------------------- #


class Manager(ABC):
    """Base class for all manager services."""

    def __init__(self, context: Context):
        self.context = context
        self.server = context.server_manager
        self.services = None

        # check if server has been initialized
        if self.server is not None and not self.server._initialized:
            raise RuntimeError(
                "ServerManager must be initialized before creating Manager instances."
            )

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        """Actions to perform on manager start."""
        self.services = services

    async def on_close(self) -> None:
        """Actions to perform on manager close."""
        pass


# -------------------------------------------------------------- #
# Specialized Manager Classes
# -------------------------------------------------------------- #


class BaseAsyncLoggingService(Manager):
    """Specialized manager for asynchronous logging services."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def log(self, message: str, level: str = "INFO", channel: str | None = None) -> None:
        """Log a message asynchronously."""
        pass

    @abstractmethod
    async def debug(self, message: str, channel: str | None = None) -> None:
        """Log a debug message asynchronously."""
        pass

    @abstractmethod
    async def info(self, message: str, channel: str | None = None) -> None:
        """Log an info message asynchronously."""
        pass

    @abstractmethod
    async def warning(self, message: str, channel: str | None = None) -> None:
        """Log a warning message asynchronously."""
        pass

    @abstractmethod
    async def error(self, message: str, channel: str | None = None) -> None:
        """Log an error message asynchronously."""
        pass

    @abstractmethod
    async def critical(self, message: str, channel: str | None = None) -> None:
        """Log a critical message asynchronously."""
        pass


class BaseFFmpegServiceManager(Manager):
    """Specialized manager for FFmpeg services."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    def get_ffmpeg_path(self) -> str:
        """Get the FFmpeg executable path."""
        pass

    @abstractmethod
    def create_playback_source(self, stereo_pcm: bytes, sample_rate: int) -> Any:
        """
        Wrap interleaved stereo s16le PCM in a playable audio source.

        Args:
            stereo_pcm: Interleaved 16-bit little-endian stereo samples
            sample_rate: Rate the samples were generated at

        Returns:
            Audio source that resamples to 48 kHz and encodes Opus
        """
        pass

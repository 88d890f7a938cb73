from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from coach.context import Context

from coach.config import CoachSettings
from coach.constructor import ServerManagerType
from coach.services.assistant_manager.manager import AssistantManagerService
from coach.services.capture_manager.manager import UtteranceCaptureManagerService
from coach.services.ffmpeg_manager.manager import FFmpegManagerService
from coach.services.logger import AsyncLoggingService
from coach.services.manager import ServicesManager
from coach.services.playback_manager.manager import PlaybackManagerService
from coach.services.session_registry.manager import SessionRegistryService
from coach.services.transcription_manager.manager import TranscriptionManagerService
from coach.services.voice_session_manager.manager import VoiceSessionManagerService

# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Services Manager
# -------------------------------------------------------------- #


def construct_services_manager(
    service_type: ServerManagerType,
    context: "Context",
    log_file: str | None = None,
    use_timestamp_logs: bool = True,
    console_output: bool = True,
) -> ServicesManager:
    """Construct and return a service manager instance based on the service type.

    Args:
        service_type: Type of server manager (PRODUCTION or TESTING)
        context: Context instance carrying settings and the connected server manager
        log_file: Specific log file name (optional, overrides use_timestamp_logs)
        use_timestamp_logs: If True and log_file is None, creates timestamped log files
        console_output: Echo log lines to stdout
    """
    if service_type not in (ServerManagerType.PRODUCTION, ServerManagerType.TESTING):
        raise ValueError(f"Unsupported service type: {service_type}")

    settings = context.settings
    if settings is None:
        if service_type != ServerManagerType.TESTING:
            raise ValueError("Settings must be loaded before constructing services.")
        settings = CoachSettings(
            discord_token="test-token",
            deepgram_api_key="test-key",
            openai_api_url="http://localhost",
            openai_api_key="test-key",
            openai_model="test-model",
        )

    # create logger
    logging_service = AsyncLoggingService(
        context=context,
        log_dir=settings.log_dir,
        log_file=log_file,
        use_timestamp=use_timestamp_logs,
        console_output=console_output,
        min_level=settings.log_level,
        channels=settings.log_channels,
    )

    # -------------------------------------------------------------- #
    # Service Managers Setup
    # -------------------------------------------------------------- #

    ffmpeg_service_manager = FFmpegManagerService(context=context, ffmpeg_path=settings.ffmpeg_path)
    session_registry = SessionRegistryService(context=context)

    # -------------------------------------------------------------- #
    # Speech In
    # -------------------------------------------------------------- #

    transcription_manager = TranscriptionManagerService(context=context)
    capture_manager = UtteranceCaptureManagerService(
        context=context, silence_duration_ms=settings.silence_duration_ms
    )

    # -------------------------------------------------------------- #
    # Speech Out
    # -------------------------------------------------------------- #

    assistant_manager = AssistantManagerService(
        context=context, model=settings.openai_model, system_prompt=settings.system_prompt
    )
    playback_manager = PlaybackManagerService(
        context=context, speaker_id=settings.tts_speaker_id, speed=settings.tts_speed
    )

    # -------------------------------------------------------------- #
    # Orchestration
    # -------------------------------------------------------------- #

    voice_session_manager = VoiceSessionManagerService(context=context)

    return ServicesManager(
        context=context,
        logging_service=logging_service,
        ffmpeg_service_manager=ffmpeg_service_manager,
        session_registry=session_registry,
        transcription_manager=transcription_manager,
        capture_manager=capture_manager,
        assistant_manager=assistant_manager,
        playback_manager=playback_manager,
        voice_session_manager=voice_session_manager,
    )

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from coach.config import CoachSettings
    from coach.context import Context

from coach.server.common import chat_completions, deepgram, sherpa_tts
from coach.server.server import ServerManager

# -------------------------------------------------------------- #
# Constructor for Production Server Manager
# -------------------------------------------------------------- #


def load_transcription_client(settings: "CoachSettings") -> deepgram.DeepgramClient:
    """Load and return the Deepgram live transcription client."""
    return deepgram.construct_deepgram_client(
        api_key=settings.deepgram_api_key, model=settings.deepgram_model
    )


def load_assistant_client(settings: "CoachSettings") -> chat_completions.ChatCompletionsClient:
    """Load and return the chat completions client."""
    return chat_completions.construct_chat_completions_client(
        endpoint=settings.openai_api_url,
        api_key=settings.openai_api_key,
        timeout=settings.assistant_timeout_seconds,
    )


def load_synthesis_client(settings: "CoachSettings") -> sherpa_tts.SherpaOnnxSpeechSynthesizer:
    """Load and return the shared TTS engine handler."""
    return sherpa_tts.construct_speech_synthesizer(
        model_dir=settings.tts_model_dir,
        model_name=settings.tts_model_name,
        num_threads=settings.tts_num_threads,
    )


def construct_server_manager(context: "Context") -> ServerManager:
    """
    Construct and return a ServerManager instance.

    Args:
        context: Context instance carrying the loaded settings

    Returns:
        Configured ServerManager instance
    """
    settings = context.settings
    if settings is None:
        raise ValueError("Settings must be loaded before constructing the server manager.")

    return ServerManager(
        context=context,
        transcription_client=load_transcription_client(settings),
        assistant_client=load_assistant_client(settings),
        synthesis_client=load_synthesis_client(settings),
    )

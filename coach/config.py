"""
Runtime configuration for the voice coach bot.

Settings are read from the process environment (populated from ``.env.local``
and ``.env`` by python-dotenv) into a single ``CoachSettings`` instance that is
stored on the application ``Context``.
"""

import os
import platform
from collections.abc import Mapping
from dataclasses import dataclass, field

from dotenv import load_dotenv

REQUIRED_ENV_VARS = (
    "DISCORD_TOKEN",
    "DEEPGRAM_API_KEY",
    "OPENAI_API_URL",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
)

DEFAULT_SYSTEM_PROMPT = (
    "You are a coach for a team playing Age of Empires II. "
    "You will be asked strategy questions and you should respond quickly "
    "with two or three sentences."
)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# -------------------------------------------------------------- #
# Errors
# -------------------------------------------------------------- #


class ConfigurationError(Exception):
    """Base class for fatal startup configuration problems."""


class MissingConfigurationError(ConfigurationError):
    """Raised when one or more required environment variables are absent."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required environment variables: {', '.join(missing)}")


class InvalidConfigurationError(ConfigurationError):
    """Raised when an optional setting is present but cannot be parsed."""


# -------------------------------------------------------------- #
# Settings
# -------------------------------------------------------------- #


@dataclass
class CoachSettings:
    discord_token: str
    deepgram_api_key: str
    openai_api_url: str
    openai_api_key: str
    openai_model: str

    deepgram_model: str = "nova"
    silence_duration_ms: int = 2000

    tts_model_dir: str = "models/tts/vits-piper-en_GB-alan-medium"
    tts_model_name: str = "en_GB-alan-medium.onnx"
    tts_speaker_id: int = 0
    tts_speed: float = 1.4
    tts_num_threads: int = 1

    ffmpeg_path: str = "ffmpeg"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    assistant_timeout_seconds: float = 30.0

    log_level: str = "INFO"
    log_channels: list[str] = field(default_factory=list)
    log_dir: str = "logs"


def load_environment() -> None:
    """Populate os.environ from .env.local, falling back to .env."""
    load_dotenv(dotenv_path=".env.local")
    load_dotenv(dotenv_path=".env")


def _resolve_ffmpeg_path(environ: Mapping[str, str]) -> str:
    if platform.system().lower().startswith("win") or os.name == "nt":
        ffmpeg_env = environ.get("WINDOWS_FFMPEG_PATH")
    else:
        ffmpeg_env = environ.get("MAC_FFMPEG_PATH")
    return ffmpeg_env or "ffmpeg"


def _parse_number(environ: Mapping[str, str], key: str, default, cast):
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise InvalidConfigurationError(f"Invalid value for {key}: {raw!r}") from e


def _parse_log_channels(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [channel.strip().upper() for channel in raw.split(",") if channel.strip()]


def load_settings(environ: Mapping[str, str] | None = None) -> CoachSettings:
    """
    Build settings from the environment.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Populated CoachSettings

    Raises:
        MissingConfigurationError: If any required variable is unset or empty
        InvalidConfigurationError: If an optional numeric setting is malformed
    """
    if environ is None:
        environ = os.environ

    missing = [key for key in REQUIRED_ENV_VARS if not environ.get(key)]
    if missing:
        raise MissingConfigurationError(missing)

    log_level = environ.get("LOG_LEVEL", "INFO").strip().upper()
    if log_level == "WARN":
        log_level = "WARNING"
    if log_level not in LOG_LEVELS:
        raise InvalidConfigurationError(f"Invalid value for LOG_LEVEL: {log_level!r}")

    silence_duration_ms = _parse_number(environ, "SILENCE_DURATION_MS", 2000, int)
    if silence_duration_ms <= 0:
        raise InvalidConfigurationError("SILENCE_DURATION_MS must be positive")

    return CoachSettings(
        discord_token=environ["DISCORD_TOKEN"],
        deepgram_api_key=environ["DEEPGRAM_API_KEY"],
        openai_api_url=environ["OPENAI_API_URL"].rstrip("/"),
        openai_api_key=environ["OPENAI_API_KEY"],
        openai_model=environ["OPENAI_MODEL"],
        deepgram_model=environ.get("DEEPGRAM_MODEL") or "nova",
        silence_duration_ms=silence_duration_ms,
        tts_model_dir=environ.get("TTS_MODEL_DIR") or CoachSettings.tts_model_dir,
        tts_model_name=environ.get("TTS_MODEL_NAME") or CoachSettings.tts_model_name,
        tts_speaker_id=_parse_number(environ, "TTS_SPEAKER_ID", 0, int),
        tts_speed=_parse_number(environ, "TTS_SPEED", 1.4, float),
        tts_num_threads=_parse_number(environ, "TTS_NUM_THREADS", 1, int),
        ffmpeg_path=_resolve_ffmpeg_path(environ),
        system_prompt=environ.get("COACH_SYSTEM_PROMPT") or DEFAULT_SYSTEM_PROMPT,
        assistant_timeout_seconds=_parse_number(
            environ, "ASSISTANT_TIMEOUT_SECONDS", 30.0, float
        ),
        log_level=log_level,
        log_channels=_parse_log_channels(environ.get("LOG_CHANNELS")),
        log_dir=environ.get("LOG_DIR") or "logs",
    )

"""
Unit tests for settings loading.
"""

import pytest

from coach.config import (
    DEFAULT_SYSTEM_PROMPT,
    InvalidConfigurationError,
    MissingConfigurationError,
    load_settings,
)

REQUIRED = {
    "DISCORD_TOKEN": "discord",
    "DEEPGRAM_API_KEY": "deepgram",
    "OPENAI_API_URL": "https://api.example.com/v1/",
    "OPENAI_API_KEY": "openai",
    "OPENAI_MODEL": "gpt-test",
}


@pytest.mark.unit
class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings(dict(REQUIRED))

        assert settings.discord_token == "discord"
        assert settings.openai_api_url == "https://api.example.com/v1"
        assert settings.deepgram_model == "nova"
        assert settings.silence_duration_ms == 2000
        assert settings.tts_speed == 1.4
        assert settings.tts_speaker_id == 0
        assert settings.system_prompt == DEFAULT_SYSTEM_PROMPT
        assert settings.log_level == "INFO"
        assert settings.log_channels == []

    def test_missing_variables_are_all_listed(self):
        environ = dict(REQUIRED)
        del environ["DISCORD_TOKEN"]
        environ["OPENAI_MODEL"] = ""

        with pytest.raises(MissingConfigurationError) as exc_info:
            load_settings(environ)

        assert exc_info.value.missing == ["DISCORD_TOKEN", "OPENAI_MODEL"]
        assert str(exc_info.value) == (
            "Missing required environment variables: DISCORD_TOKEN, OPENAI_MODEL"
        )

    def test_optional_overrides(self):
        environ = {
            **REQUIRED,
            "DEEPGRAM_MODEL": "nova-2",
            "SILENCE_DURATION_MS": "1500",
            "TTS_SPEED": "1.0",
            "TTS_SPEAKER_ID": "3",
            "LOG_LEVEL": "warn",
            "LOG_CHANNELS": "stt, openai",
            "COACH_SYSTEM_PROMPT": "Be brief.",
        }

        settings = load_settings(environ)

        assert settings.deepgram_model == "nova-2"
        assert settings.silence_duration_ms == 1500
        assert settings.tts_speed == 1.0
        assert settings.tts_speaker_id == 3
        assert settings.log_level == "WARNING"
        assert settings.log_channels == ["STT", "OPENAI"]
        assert settings.system_prompt == "Be brief."

    def test_malformed_number(self):
        with pytest.raises(InvalidConfigurationError):
            load_settings({**REQUIRED, "TTS_SPEED": "fast"})

    def test_non_positive_silence(self):
        with pytest.raises(InvalidConfigurationError):
            load_settings({**REQUIRED, "SILENCE_DURATION_MS": "0"})

    def test_unknown_log_level(self):
        with pytest.raises(InvalidConfigurationError):
            load_settings({**REQUIRED, "LOG_LEVEL": "LOUD"})

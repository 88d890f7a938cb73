"""
Unit tests for AsyncLoggingService.
"""

import pytest

from coach.context import Context
from coach.services.logger import AsyncLoggingService, LogChannel


def _make_logger(tmp_path, **kwargs) -> AsyncLoggingService:
    return AsyncLoggingService(
        Context(), log_dir=str(tmp_path), log_file="test.log", console_output=False, **kwargs
    )


@pytest.mark.unit
class TestLogFiltering:
    def test_min_level(self, tmp_path):
        logger = _make_logger(tmp_path, min_level="WARNING")

        assert not logger.is_enabled("INFO")
        assert logger.is_enabled("WARNING")
        assert logger.is_enabled("CRITICAL")

    def test_channel_filter_keeps_untagged_messages(self, tmp_path):
        logger = _make_logger(tmp_path, channels=["stt"])

        assert logger.is_enabled("INFO", LogChannel.STT)
        assert not logger.is_enabled("INFO", LogChannel.OPENAI)
        assert logger.is_enabled("INFO")

    def test_no_channel_filter_keeps_everything(self, tmp_path):
        logger = _make_logger(tmp_path)

        assert logger.is_enabled("INFO", LogChannel.TTS)

    def test_format_includes_channel(self, tmp_path):
        logger = _make_logger(tmp_path)

        line = logger.format_message("hello", "INFO", LogChannel.DISCORD)

        assert line.endswith("[INFO] [DISCORD] hello")


@pytest.mark.unit
class TestLogWriting:
    async def test_messages_are_written_on_close(self, tmp_path, mock_services):
        logger = _make_logger(tmp_path, min_level="INFO", channels=["BOT"])
        await logger.on_start(mock_services)

        await logger.info("kept", LogChannel.BOT)
        await logger.info("dropped", LogChannel.STT)
        await logger.debug("too quiet", LogChannel.BOT)
        await logger.on_close()

        content = (tmp_path / "test.log").read_text()
        assert "[INFO] [BOT] kept" in content
        assert "dropped" not in content
        assert "too quiet" not in content

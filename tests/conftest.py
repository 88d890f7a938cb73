"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides
fixtures and configuration that can be used across all tests.
"""

import asyncio
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from coach.config import CoachSettings
from coach.constructor import ServerManagerType
from coach.context import Context
from coach.server.constructor import construct_server_manager
from coach.services.constructor import construct_services_manager

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """Apply a 30 second timeout to every test not marked as slow."""
    for item in items:
        if "slow" not in item.keywords:
            item.add_marker(pytest.mark.timeout(30))


# ============================================================================
# Helpers
# ============================================================================


async def _wait_for_condition(
    predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01
) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition was not met in time")
        await asyncio.sleep(interval)


# ============================================================================
# Settings and Context Fixtures
# ============================================================================


@pytest.fixture
def coach_settings(tmp_path) -> CoachSettings:
    """Settings with short silence detection and logs under tmp_path."""
    return CoachSettings(
        discord_token="test-token",
        deepgram_api_key="test-deepgram-key",
        openai_api_url="http://localhost:9999/v1",
        openai_api_key="test-openai-key",
        openai_model="test-model",
        silence_duration_ms=50,
        log_level="DEBUG",
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture
def context(coach_settings: CoachSettings) -> Context:
    return Context(settings=coach_settings)


@pytest.fixture
async def server_manager(context: Context):
    """Connected server manager backed by in-memory test servers."""
    manager = construct_server_manager(ServerManagerType.TESTING, context)
    context.set_server_manager(manager)
    await manager.connect_all()
    yield manager
    await manager.disconnect_all()


@pytest.fixture
async def services_manager(context: Context, server_manager):
    """Fully initialized services manager wired to the test servers."""
    services = construct_services_manager(
        ServerManagerType.TESTING, context=context, log_file="test.log", console_output=False
    )
    context.set_services_manager(services)
    await services.initialize_all()
    yield services
    await services.shutdown_all(timeout=5.0)


# ============================================================================
# Mock Service Fixtures
# ============================================================================


@pytest.fixture
def mock_logging_service() -> MagicMock:
    """Logging service whose methods record calls instead of writing."""
    logging_service = MagicMock()
    for method in ("log", "debug", "info", "warning", "error", "critical"):
        setattr(logging_service, method, AsyncMock())
    return logging_service


@pytest.fixture
def mock_services(mock_logging_service: MagicMock) -> MagicMock:
    """Services manager stand-in exposing only a mock logging service."""
    services = MagicMock()
    services.logging_service = mock_logging_service
    return services


# ============================================================================
# Mock Discord Fixtures
# ============================================================================


def _make_member(member_id: int, name: str = "Player", bot: bool = False) -> MagicMock:
    member = MagicMock()
    member.id = member_id
    member.bot = bot
    member.display_name = name
    member.voice = MagicMock()
    return member


@pytest.fixture
def mock_discord_bot() -> MagicMock:
    """Create a mock Discord bot instance."""
    bot = MagicMock()
    bot.user = MagicMock()
    bot.user.name = "CoachBot"
    bot.user.id = 123456789
    bot.guilds = []
    bot.voice_clients = []
    return bot


@pytest.fixture
def mock_guild() -> MagicMock:
    guild = MagicMock()
    guild.id = 111222333
    guild.name = "Test Guild"
    guild.voice_client = None
    return guild


@pytest.fixture
def mock_voice_channel(mock_guild: MagicMock) -> MagicMock:
    """Voice channel with one human member and one bot member."""
    channel = MagicMock()
    channel.id = 444555666
    channel.name = "Test Voice Channel"
    channel.guild = mock_guild
    channel.members = [_make_member(42, "Alice"), _make_member(99, "OtherBot", bot=True)]
    channel.send = AsyncMock()
    return channel


@pytest.fixture
def mock_voice_client(mock_voice_channel: MagicMock) -> MagicMock:
    """Connected voice client whose playback finishes immediately."""
    voice_client = MagicMock()
    voice_client.channel = mock_voice_channel
    voice_client.is_connected.return_value = True
    voice_client.is_playing.return_value = False
    voice_client.recording = True
    voice_client.disconnect = AsyncMock()
    voice_client.move_to = AsyncMock()
    voice_client.play.side_effect = lambda source, after=None: after(None)
    mock_voice_channel.connect = AsyncMock(return_value=voice_client)
    return voice_client


@pytest.fixture
def make_member() -> Callable[..., MagicMock]:
    """Factory for mock guild members."""
    return _make_member


@pytest.fixture
def wait_until():
    """Async helper that polls a predicate until it holds."""
    return _wait_for_condition

"""
Constructor for Testing Server Manager.

This module provides functions to construct a ServerManager instance
with in-memory implementations for testing purposes.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from coach.context import Context

from coach.server.server import ServerManager
from coach.server.testing.assistant import MockAssistantClient
from coach.server.testing.synthesis import MockSpeechSynthesizer
from coach.server.testing.transcription import MockTranscriptionClient

# -------------------------------------------------------------- #
# Constructor for Testing Server Manager
# -------------------------------------------------------------- #


def construct_server_manager(context: "Context") -> ServerManager:
    """
    Construct and return a ServerManager instance for testing.

    This creates a ServerManager with all in-memory/mock implementations:
    - Mock live transcription server
    - Mock chat completions server
    - Sine tone speech synthesizer

    Args:
        context: Context instance to pass to ServerManager

    Returns:
        Configured ServerManager instance with test implementations
    """
    return ServerManager(
        context=context,
        transcription_client=MockTranscriptionClient(),
        assistant_client=MockAssistantClient(),
        synthesis_client=MockSpeechSynthesizer(),
    )

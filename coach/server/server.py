"""
Server service handlers for external services.

This module provides the manager that owns the connections to the
transcription service, the assistant service and the speech synthesis engine.
"""

import logging
from typing import TYPE_CHECKING

from coach.server.services import (
    AssistantServerHandler,
    SpeechSynthesisServerHandler,
    TranscriptionServerHandler,
)

if TYPE_CHECKING:
    from coach.context import Context

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Server Manager
# -------------------------------------------------------------- #


class ServerManager:
    """Manager for handling multiple server instances."""

    def __init__(
        self,
        context: "Context",
        transcription_client: TranscriptionServerHandler,
        assistant_client: AssistantServerHandler,
        synthesis_client: SpeechSynthesisServerHandler,
    ):
        self.context = context
        self._initialized = False
        self._transcription_client = transcription_client
        self._assistant_client = assistant_client
        self._synthesis_client = synthesis_client

        self._servers = {
            "transcription": transcription_client,
            "assistant": assistant_client,
            "synthesis": synthesis_client,
        }

    # ------------------------------------------------------ #
    # Server Management
    # ------------------------------------------------------ #

    async def connect_all(self) -> None:
        """Connect to all servers."""
        logger.info("=" * 60)
        logger.info("[ServerManager] Connecting all servers...")

        for server in self._servers.values():
            logger.info(f"[ServerManager] Connecting to '{server.name}' server...")
            await server.connect()
            logger.info(f"[ServerManager] Executing startup actions for '{server.name}' server...")
            await server.on_startup()
            logger.info(f"[ServerManager] '{server.name}' server is ready.")

        self._initialized = True
        logger.info("[ServerManager] All servers connected successfully.")
        logger.info("=" * 60)

    async def disconnect_all(self) -> None:
        """Disconnect from all servers. A failing server does not stop the others."""
        logger.info("=" * 60)
        logger.info("[ServerManager] Disconnecting all servers...")

        for server in self._servers.values():
            try:
                logger.info(f"[ServerManager] Closing '{server.name}' server...")
                await server.on_close()
                logger.info(f"[ServerManager] Disconnecting from '{server.name}' server...")
                await server.disconnect()
                logger.info(f"[ServerManager] '{server.name}' server disconnected.")
            except Exception as e:
                logger.warning(f"[ServerManager] Failed to disconnect '{server.name}': {e}")

        self._initialized = False
        logger.info("[ServerManager] All servers disconnected.")
        logger.info("=" * 60)

    async def health_check_all(self) -> dict[str, bool]:
        """
        Check health of all registered servers.

        Returns:
            Dictionary mapping server names to health status
        """
        results = {}
        for name, server in self._servers.items():
            results[name] = await server.health_check()
        return results

    def list_servers(self) -> list[str]:
        """Get list of all registered server names."""
        return list(self._servers.keys())

    # ------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------ #

    @property
    def transcription_client(self) -> TranscriptionServerHandler:
        """Get the live transcription client."""
        return self._transcription_client

    @property
    def assistant_client(self) -> AssistantServerHandler:
        """Get the chat completion client."""
        return self._assistant_client

    @property
    def synthesis_client(self) -> SpeechSynthesisServerHandler:
        """Get the speech synthesis engine."""
        return self._synthesis_client

    @property
    def is_initialized(self) -> bool:
        """Check if the server manager is initialized."""
        return self._initialized

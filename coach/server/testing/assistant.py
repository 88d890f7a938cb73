"""
Mock chat completions client for testing.
"""

import logging
from typing import Any

from coach.server.services import AssistantServerHandler

logger = logging.getLogger(__name__)


class MockAssistantClient(AssistantServerHandler):
    """Mock chat completions client that returns canned replies."""

    def __init__(self, name: str = "test_assistant", api_key: str | None = "test-key"):
        super().__init__(name, "mock://assistant")
        self._api_key = api_key
        self.reply: str | None = "Build more villagers."
        self.response_override: Any = None
        self.raise_error: Exception | None = None
        self.requests: list[dict[str, Any]] = []

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        self._connected = True
        logger.info(f"[{self.name}] Connected to mock assistant server")

    async def disconnect(self) -> None:
        self._connected = False
        logger.info(f"[{self.name}] Disconnected from mock assistant server")

    async def health_check(self) -> bool:
        return self._connected

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    @property
    def has_credentials(self) -> bool:
        return bool(self._api_key)

    async def create_chat_completion(self, payload: dict[str, Any]) -> Any:
        if not self._connected:
            raise RuntimeError("Not connected to mock assistant server")

        self.requests.append(payload)
        if self.raise_error is not None:
            raise self.raise_error
        if self.response_override is not None:
            return self.response_override

        return {"choices": [{"index": 0, "message": {"role": "assistant", "content": self.reply}}]}

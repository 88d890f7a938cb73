"""OpenAI-compatible chat completions client implementation."""

import logging
from typing import Any

import aiohttp

from coach.server.services import AssistantServerHandler

logger = logging.getLogger(__name__)


class ChatCompletionsError(Exception):
    """Raised when the chat completions endpoint answers with a non-success status."""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"Chat completion request failed with status {status}: {body[:200]}")


class ChatCompletionsClient(AssistantServerHandler):
    """Client for any server exposing ``POST <base>/chat/completions``."""

    def __init__(
        self,
        endpoint: str,
        api_key: str | None,
        name: str = "chat_completions",
        timeout: float = 30.0,
    ):
        """
        Initialize the chat completions client.

        Args:
            endpoint: Base URL, e.g. https://api.openai.com/v1
            api_key: Bearer token sent with every request
            name: Name of the client
            timeout: Total request timeout in seconds
        """
        super().__init__(name, endpoint.rstrip("/"))
        self._api_key = api_key
        self.timeout = timeout
        self.session: aiohttp.ClientSession | None = None

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Create the HTTP session."""
        self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        self._connected = True
        logger.info(f"Chat completions client ready at {self.endpoint}")

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
        self._connected = False
        logger.info("Disconnected from chat completions server")

    async def health_check(self) -> bool:
        return self.session is not None and not self.session.closed

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    @property
    def completions_url(self) -> str:
        return f"{self.endpoint}/chat/completions"

    @property
    def has_credentials(self) -> bool:
        return bool(self._api_key) and bool(self.endpoint)

    async def create_chat_completion(self, payload: dict[str, Any]) -> Any:
        """
        Submit a chat completion request.

        Args:
            payload: JSON request body

        Returns:
            Decoded JSON response body

        Raises:
            RuntimeError: If the client is not connected
            ChatCompletionsError: On a non-2xx response
            aiohttp.ClientError: On transport failures or an undecodable body
        """
        if not self.session:
            raise RuntimeError("Not connected to chat completions server")

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        async with self.session.post(
            self.completions_url, json=payload, headers=headers
        ) as response:
            if response.status < 200 or response.status >= 300:
                body = await response.text()
                raise ChatCompletionsError(response.status, body)

            return await response.json(content_type=None)


def construct_chat_completions_client(
    endpoint: str, api_key: str | None, timeout: float = 30.0
) -> ChatCompletionsClient:
    """Construct a chat completions client."""
    return ChatCompletionsClient(endpoint=endpoint, api_key=api_key, timeout=timeout)

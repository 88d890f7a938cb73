import asyncio
from typing import TYPE_CHECKING, Any

import aiohttp

from coach.server.common.chat_completions import ChatCompletionsError
from coach.services.logger import LogChannel
from coach.services.manager import Manager

if TYPE_CHECKING:
    from coach.context import Context

# -------------------------------------------------------------- #
# Assistant Manager Service
# -------------------------------------------------------------- #


class AssistantManagerService(Manager):
    """Single-turn question answering against an OpenAI-compatible chat endpoint."""

    def __init__(self, context: "Context", model: str, system_prompt: str):
        super().__init__(context)
        self.model = model
        self.system_prompt = system_prompt

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info(
            f"AssistantManagerService initialized (model={self.model})"
        )

    # -------------------------------------------------------------- #
    # Query
    # -------------------------------------------------------------- #

    def build_payload(self, text: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": text},
            ],
        }

    async def query(self, text: str) -> str | None:
        """
        Ask the assistant a question.

        Args:
            text: The user's question

        Returns:
            The reply text, or None if no usable reply was produced
        """
        logger = self.services.logging_service
        client = self.server.assistant_client

        if not client.has_credentials:
            await logger.error("Assistant credentials are not configured", LogChannel.OPENAI)
            return None

        await logger.debug(f"Querying assistant: {text}", LogChannel.OPENAI)

        try:
            response = await client.create_chat_completion(self.build_payload(text))
        except ChatCompletionsError as e:
            await logger.error(
                f"Assistant request failed with status {e.status}: {e.body[:500]}",
                LogChannel.OPENAI,
            )
            return None
        except (aiohttp.ClientError, ValueError, RuntimeError) as e:
            await logger.error(f"Assistant request failed: {e}", LogChannel.OPENAI)
            return None
        except asyncio.TimeoutError:
            await logger.error("Assistant request timed out", LogChannel.OPENAI)
            return None

        reply = self._extract_reply(response)
        if reply is None:
            await logger.error(
                f"Malformed assistant response: {str(response)[:500]}", LogChannel.OPENAI
            )
            return None

        await logger.debug(f"Assistant reply: {reply}", LogChannel.OPENAI)
        return reply

    @staticmethod
    def _extract_reply(response: Any) -> str | None:
        try:
            content = response["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return None

        if not isinstance(content, str) or not content.strip():
            return None
        return content.strip()

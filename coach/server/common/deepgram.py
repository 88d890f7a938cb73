"""Deepgram live transcription client implementation."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from urllib.parse import urlencode

import aiohttp

from coach.server.services import (
    LiveTranscriptionConnection,
    TranscriptionConnectionError,
    TranscriptionEvent,
    TranscriptionEventType,
    TranscriptionServerHandler,
)

logger = logging.getLogger(__name__)

DEEPGRAM_LISTEN_ENDPOINT = "wss://api.deepgram.com/v1/listen"

# Deepgram message "type" field -> event type
_MESSAGE_TYPES = {
    "Results": TranscriptionEventType.RESULT,
    "Metadata": TranscriptionEventType.METADATA,
    "SpeechStarted": TranscriptionEventType.METADATA,
    "UtteranceEnd": TranscriptionEventType.METADATA,
    "Error": TranscriptionEventType.ERROR,
    "Warning": TranscriptionEventType.WARNING,
}


@dataclass
class LiveTranscriptionOptions:
    """Query parameters sent when opening a live stream."""

    model: str = "nova"
    smart_format: bool = True
    encoding: str = "linear16"
    sample_rate: int = 48000
    channels: int = 2

    def to_query(self) -> dict[str, str]:
        return {
            "model": self.model,
            "smart_format": str(self.smart_format).lower(),
            "encoding": self.encoding,
            "sample_rate": str(self.sample_rate),
            "channels": str(self.channels),
        }


# -------------------------------------------------------------- #
# Live Connection
# -------------------------------------------------------------- #


class DeepgramLiveConnection(LiveTranscriptionConnection):
    """One websocket to the Deepgram listen endpoint."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_key: str,
        options: LiveTranscriptionOptions,
        endpoint: str = DEEPGRAM_LISTEN_ENDPOINT,
        open_timeout: float = 10.0,
    ):
        self._session = session
        self._api_key = api_key
        self.options = options
        self.endpoint = endpoint
        self.open_timeout = open_timeout
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._closed = False

    @property
    def url(self) -> str:
        return f"{self.endpoint}?{urlencode(self.options.to_query())}"

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed and not self._closed

    async def open(self) -> None:
        if self._closed:
            raise TranscriptionConnectionError("Connection already closed")

        headers = {"Authorization": f"Token {self._api_key}"}
        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(self.url, headers=headers),
                timeout=self.open_timeout,
            )
        except aiohttp.WSServerHandshakeError as e:
            raise TranscriptionConnectionError(
                f"Deepgram rejected the connection (status {e.status}): {e.message}"
            ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TranscriptionConnectionError(f"Failed to connect to Deepgram: {e}") from e

    async def send(self, chunk: bytes) -> None:
        if not self.is_open:
            raise RuntimeError("Not connected to Deepgram")
        await self._ws.send_bytes(chunk)

    async def finalize(self) -> None:
        if not self.is_open:
            return
        await self._ws.send_str(json.dumps({"type": "CloseStream"}))

    async def events(self) -> AsyncIterator[TranscriptionEvent]:
        if self._ws is None:
            return

        async for message in self._ws:
            if message.type == aiohttp.WSMsgType.TEXT:
                yield self._parse_message(message.data)
            elif message.type == aiohttp.WSMsgType.ERROR:
                yield TranscriptionEvent(TranscriptionEventType.ERROR, self._ws.exception())
            elif message.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING):
                break

        yield TranscriptionEvent(TranscriptionEventType.CLOSE, self._ws.close_code)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._ws is not None and not self._ws.closed:
            await self._ws.close()

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    @staticmethod
    def _parse_message(raw: str) -> TranscriptionEvent:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return TranscriptionEvent(
                TranscriptionEventType.WARNING, f"Unparseable message: {raw[:200]}"
            )

        if not isinstance(data, dict):
            return TranscriptionEvent(
                TranscriptionEventType.WARNING, f"Unexpected message: {raw[:200]}"
            )

        event_type = _MESSAGE_TYPES.get(data.get("type"))
        if event_type is None:
            # Older API versions omit the type field on results
            event_type = (
                TranscriptionEventType.RESULT
                if "channel" in data
                else TranscriptionEventType.METADATA
            )
        return TranscriptionEvent(event_type, data)


# -------------------------------------------------------------- #
# Server Handler
# -------------------------------------------------------------- #


class DeepgramClient(TranscriptionServerHandler):
    """Client for the Deepgram streaming speech-to-text API."""

    def __init__(
        self,
        api_key: str,
        options: LiveTranscriptionOptions | None = None,
        name: str = "deepgram",
        endpoint: str = DEEPGRAM_LISTEN_ENDPOINT,
    ):
        super().__init__(name, endpoint)
        self._api_key = api_key
        self.options = options or LiveTranscriptionOptions()
        self.session: aiohttp.ClientSession | None = None

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Create the HTTP session used for every live connection."""
        self.session = aiohttp.ClientSession()
        self._connected = True
        logger.info(f"Deepgram client ready (model={self.options.model})")

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
        self._connected = False
        logger.info("Disconnected from Deepgram")

    async def health_check(self) -> bool:
        return self.session is not None and not self.session.closed

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    def open_stream(self) -> DeepgramLiveConnection:
        if not self.session:
            raise RuntimeError("Not connected to Deepgram")

        return DeepgramLiveConnection(
            session=self.session,
            api_key=self._api_key,
            options=self.options,
            endpoint=self.endpoint,
        )


def construct_deepgram_client(api_key: str, model: str = "nova") -> DeepgramClient:
    """Construct a Deepgram client configured for py-cord's decoded voice frames."""
    return DeepgramClient(api_key=api_key, options=LiveTranscriptionOptions(model=model))

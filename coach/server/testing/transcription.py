"""
Mock live transcription client for testing.

This module provides an in-memory stand-in for the Deepgram streaming API so
transcription sessions can be exercised without network access.
"""

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator

from coach.server.services import (
    LiveTranscriptionConnection,
    TranscriptionConnectionError,
    TranscriptionEvent,
    TranscriptionEventType,
    TranscriptionServerHandler,
)

logger = logging.getLogger(__name__)


def build_result_payload(transcript: str) -> dict:
    """Build a result payload shaped like a Deepgram ``Results`` message."""
    return {
        "type": "Results",
        "is_final": True,
        "channel": {"alternatives": [{"transcript": transcript, "confidence": 0.99}]},
    }


class MockLiveTranscriptionConnection(LiveTranscriptionConnection):
    """Mock connection that records audio and emits scripted results."""

    def __init__(
        self,
        transcript: str | None = None,
        emit_after_chunks: int | None = 1,
        fail_open: bool = False,
    ):
        """
        Initialize mock connection.

        Args:
            transcript: Transcript to emit, or None to never produce a result
            emit_after_chunks: Emit the transcript after this many chunks.
                               None emits only when the stream is finalized.
            fail_open: Raise TranscriptionConnectionError from open()
        """
        self.transcript = transcript
        self.emit_after_chunks = emit_after_chunks
        self.fail_open = fail_open

        self.open_gate = asyncio.Event()
        self.open_gate.set()

        self.sent_chunks: list[bytes] = []
        self.finalized = False
        self.close_calls = 0
        self._opened = False
        self._closed = False
        self._emitted = False
        self._events: asyncio.Queue = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    async def open(self) -> None:
        await self.open_gate.wait()
        if self.fail_open:
            raise TranscriptionConnectionError("Mock connection refused")
        self._opened = True
        await self._events.put(TranscriptionEvent(TranscriptionEventType.OPEN))

    async def send(self, chunk: bytes) -> None:
        if not self.is_open:
            raise RuntimeError("Not connected to mock transcription server")

        self.sent_chunks.append(chunk)
        if self.emit_after_chunks is not None and len(self.sent_chunks) >= self.emit_after_chunks:
            self._emit_result()

    async def finalize(self) -> None:
        self.finalized = True
        self._emit_result()
        await self._events.put(TranscriptionEvent(TranscriptionEventType.CLOSE, 1000))

    async def events(self) -> AsyncIterator[TranscriptionEvent]:
        while True:
            event = await self._events.get()
            yield event
            if event.type == TranscriptionEventType.CLOSE:
                return

    async def close(self) -> None:
        self.close_calls += 1
        if self._closed:
            return
        self._closed = True
        await self._events.put(TranscriptionEvent(TranscriptionEventType.CLOSE, 1000))

    # -------------------------------------------------------------- #
    # Test Helper Methods
    # -------------------------------------------------------------- #

    def push_event(self, event: TranscriptionEvent) -> None:
        """Inject an arbitrary event into the stream."""
        self._events.put_nowait(event)

    def _emit_result(self) -> None:
        if self._emitted or self.transcript is None:
            return
        self._emitted = True
        self._events.put_nowait(
            TranscriptionEvent(TranscriptionEventType.RESULT, build_result_payload(self.transcript))
        )


class MockTranscriptionClient(TranscriptionServerHandler):
    """Mock live transcription client for testing."""

    def __init__(self, name: str = "test_transcription"):
        """
        Initialize mock transcription client.

        Args:
            name: Name of the client
        """
        super().__init__(name, "mock://transcription")
        self.default_transcript: str | None = None
        self.emit_after_chunks: int | None = 1
        self.queued_transcripts: deque[str | None] = deque()
        self.connections: list[MockLiveTranscriptionConnection] = []

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        self._connected = True
        logger.info(f"[{self.name}] Connected to mock transcription server")

    async def disconnect(self) -> None:
        self._connected = False
        logger.info(f"[{self.name}] Disconnected from mock transcription server")

    async def health_check(self) -> bool:
        return self._connected

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    def open_stream(self) -> MockLiveTranscriptionConnection:
        if not self._connected:
            raise RuntimeError("Not connected to mock transcription server")

        transcript = self.default_transcript
        if self.queued_transcripts:
            transcript = self.queued_transcripts.popleft()
        connection = MockLiveTranscriptionConnection(
            transcript=transcript, emit_after_chunks=self.emit_after_chunks
        )
        self.connections.append(connection)
        return connection

    # -------------------------------------------------------------- #
    # Test Helper Methods
    # -------------------------------------------------------------- #

    def queue_transcript(self, transcript: str | None) -> None:
        """Queue the transcript produced by the next opened stream."""
        self.queued_transcripts.append(transcript)

    def reset(self) -> None:
        self.default_transcript = None
        self.queued_transcripts.clear()
        self.connections = []

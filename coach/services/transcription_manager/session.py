import asyncio
from collections.abc import AsyncIterable, Callable

from coach.server.services import (
    LiveTranscriptionConnection,
    TranscriptionEvent,
    TranscriptionEventType,
)
from coach.services.logger import LogChannel
from coach.services.manager import BaseAsyncLoggingService

# -------------------------------------------------------------- #
# Transcription Session
# -------------------------------------------------------------- #


class TranscriptionSession:
    """
    Streams one utterance to the transcription service.

    The connection is opened in the background while audio is already
    flowing; frames that arrive before it is ready are dropped. The first
    non-empty transcript is handed to ``on_transcript`` and the connection is
    closed right away, so later results for the same utterance are ignored.
    Connection errors are logged and never raised.
    """

    def __init__(
        self,
        channel_id: int,
        speaker_id: int,
        connection: LiveTranscriptionConnection,
        on_transcript: Callable[[str], None],
        logging_service: BaseAsyncLoggingService,
        finalize_grace: float = 3.0,
        close_timeout: float = 2.0,
    ):
        self.channel_id = channel_id
        self.speaker_id = speaker_id
        self.connection = connection
        self.on_transcript = on_transcript
        self.logging_service = logging_service
        self.finalize_grace = finalize_grace
        self.close_timeout = close_timeout

        self.ready = False
        self.sent_chunks = 0
        self.dropped_chunks = 0
        self.result_received = False
        self.transcript: str | None = None
        self.closed = False

        self._open_task: asyncio.Task | None = None
        self._receive_task: asyncio.Task | None = None
        self._finished = asyncio.Event()

    # -------------------------------------------------------------- #
    # Lifecycle
    # -------------------------------------------------------------- #

    async def run(self, stream: AsyncIterable[bytes]) -> None:
        """Pump the utterance into the connection until the stream ends or a result arrives."""
        self._open_task = asyncio.create_task(self._open())
        try:
            async for chunk in stream:
                if self.closed:
                    break

                if not self.ready:
                    self.dropped_chunks += 1
                    if self.dropped_chunks == 1:
                        await self.logging_service.warning(
                            f"Connection for speaker {self.speaker_id} not ready, dropping audio",
                            LogChannel.STT,
                        )
                    continue

                try:
                    await self.connection.send(chunk)
                except Exception as e:
                    await self.logging_service.error(
                        f"Failed to send audio for speaker {self.speaker_id}: {e}", LogChannel.STT
                    )
                    break
                self.sent_chunks += 1

            if not self.closed and self.sent_chunks and not self.result_received:
                await self._finalize()
        finally:
            if self.dropped_chunks > 1:
                await self.logging_service.debug(
                    f"Dropped {self.dropped_chunks} chunks for speaker {self.speaker_id} "
                    "before the connection opened",
                    LogChannel.STT,
                )
            await self.close()

    def mark_finished(self, _task: asyncio.Task | None = None) -> None:
        """Record that the task running this session is done, whatever the outcome."""
        self._finished.set()

    async def wait_finished(self) -> None:
        await self._finished.wait()

    async def close(self) -> None:
        """Close the connection. Idempotent, bounded, never raises."""
        if self.closed:
            return
        self.closed = True
        self.ready = False

        current = asyncio.current_task()
        for task in (self._open_task, self._receive_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

        try:
            await asyncio.wait_for(self.connection.close(), timeout=self.close_timeout)
        except asyncio.TimeoutError:
            await self.logging_service.warning(
                f"Timed out closing connection for speaker {self.speaker_id}", LogChannel.STT
            )
        except Exception as e:
            await self.logging_service.warning(
                f"Error closing connection for speaker {self.speaker_id}: {e}", LogChannel.STT
            )

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _open(self) -> None:
        try:
            await self.connection.open()
        except Exception as e:
            await self.logging_service.error(
                f"Could not open transcription stream for speaker {self.speaker_id}: {e}",
                LogChannel.STT,
            )
            return

        if self.closed:
            return

        self.ready = True
        await self.logging_service.debug(
            f"Transcription stream open for speaker {self.speaker_id}", LogChannel.STT
        )
        self._receive_task = asyncio.create_task(self._receive())

    async def _receive(self) -> None:
        try:
            async for event in self.connection.events():
                if await self._handle_event(event):
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self.logging_service.error(
                f"Transcription stream failed for speaker {self.speaker_id}: {e}", LogChannel.STT
            )
            return

        if self.result_received:
            await self.close()

    async def _handle_event(self, event: TranscriptionEvent) -> bool:
        """Process one event. Returns True when no further events are wanted."""
        if event.type == TranscriptionEventType.RESULT:
            transcript = event.extract_transcript()
            if transcript is None:
                await self.logging_service.warning(
                    f"Malformed transcription result for speaker {self.speaker_id}", LogChannel.STT
                )
                return False

            transcript = transcript.strip()
            if not transcript or self.result_received:
                return False

            self.result_received = True
            self.transcript = transcript
            await self.logging_service.info(
                f"Transcript from {self.speaker_id}: {transcript}", LogChannel.STT
            )
            self.on_transcript(transcript)
            return True

        if event.type == TranscriptionEventType.ERROR:
            await self.logging_service.error(
                f"Transcription error for speaker {self.speaker_id}: {event.payload}",
                LogChannel.STT,
            )
        elif event.type == TranscriptionEventType.WARNING:
            await self.logging_service.warning(
                f"Transcription warning for speaker {self.speaker_id}: {event.payload}",
                LogChannel.STT,
            )
        elif event.type == TranscriptionEventType.METADATA:
            await self.logging_service.debug(
                f"Transcription metadata for speaker {self.speaker_id}", LogChannel.STT
            )
        elif event.type == TranscriptionEventType.CLOSE:
            await self.logging_service.debug(
                f"Transcription stream closed for speaker {self.speaker_id} "
                f"(code={event.payload})",
                LogChannel.STT,
            )
            return True

        return False

    async def _finalize(self) -> None:
        """Flush the service after the utterance ended without a result, then wait briefly."""
        try:
            await self.connection.finalize()
        except Exception as e:
            await self.logging_service.warning(
                f"Failed to finalize stream for speaker {self.speaker_id}: {e}", LogChannel.STT
            )
            return

        if self._receive_task is not None and not self._receive_task.done():
            await asyncio.wait({self._receive_task}, timeout=self.finalize_grace)

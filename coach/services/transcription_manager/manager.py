import asyncio
from contextlib import suppress
from functools import partial
from typing import TYPE_CHECKING

from coach.services.logger import LogChannel
from coach.services.manager import Manager
from coach.services.transcription_manager.session import TranscriptionSession

if TYPE_CHECKING:
    from coach.context import Context
    from coach.services.session_registry.manager import ChannelSession, SpeakerSession
    from coach.services.voice_receiver.sink import UtteranceStream

# -------------------------------------------------------------- #
# Transcription Manager Service
# -------------------------------------------------------------- #


class TranscriptionManagerService(Manager):
    """Creates one TranscriptionSession per utterance and routes its transcript onward."""

    def __init__(self, context: "Context", finalize_grace: float = 3.0, close_timeout: float = 2.0):
        super().__init__(context)
        self.finalize_grace = finalize_grace
        self.close_timeout = close_timeout
        self._session_tasks: set[asyncio.Task] = set()
        self._handler_tasks: set[asyncio.Task] = set()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info("TranscriptionManagerService initialized")

    async def on_close(self) -> None:
        """Cancel running sessions and any transcript handlers still in flight."""
        tasks = list(self._session_tasks) + list(self._handler_tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError, Exception):
                await asyncio.wait_for(task, timeout=self.close_timeout)

    # -------------------------------------------------------------- #
    # Sessions
    # -------------------------------------------------------------- #

    async def start_session(
        self,
        channel_session: "ChannelSession",
        speaker_session: "SpeakerSession",
        stream: "UtteranceStream",
    ) -> TranscriptionSession | None:
        """
        Open a transcription session for one utterance and start streaming.

        Args:
            channel_session: Channel the speaker is in
            speaker_session: Speaker whose utterance is being captured
            stream: Utterance audio, ended by silence

        Returns:
            The running session, or None if it could not be created
        """
        if self.context.is_shutting_down():
            return None

        channel_id = channel_session.channel_id
        speaker_id = speaker_session.speaker_id
        registry = self.services.session_registry

        try:
            connection = self.server.transcription_client.open_stream()
        except Exception as e:
            await self.services.logging_service.error(
                f"Could not create transcription stream for speaker {speaker_id}: {e}",
                LogChannel.STT,
            )
            return None

        session = TranscriptionSession(
            channel_id=channel_id,
            speaker_id=speaker_id,
            connection=connection,
            on_transcript=partial(self._dispatch_transcript, channel_id, speaker_id),
            logging_service=self.services.logging_service,
            finalize_grace=self.finalize_grace,
            close_timeout=self.close_timeout,
        )

        if not registry.attach_transcription(channel_id, speaker_id, session):
            await session.close()
            return None

        task = asyncio.create_task(self._run_session(session, stream))
        self._session_tasks.add(task)
        task.add_done_callback(self._session_tasks.discard)
        task.add_done_callback(session.mark_finished)
        return session

    async def _run_session(self, session: TranscriptionSession, stream: "UtteranceStream") -> None:
        try:
            await session.run(stream)
        except asyncio.CancelledError:
            await session.close()
            raise
        except Exception as e:
            await self.services.logging_service.error(
                f"Transcription session for speaker {session.speaker_id} failed: {e}",
                LogChannel.STT,
            )
            await session.close()
        finally:
            self.services.session_registry.detach_transcription(
                session.channel_id, session.speaker_id, session
            )

    # -------------------------------------------------------------- #
    # Transcript Dispatch
    # -------------------------------------------------------------- #

    def _dispatch_transcript(self, channel_id: int, speaker_id: int, transcript: str) -> None:
        task = asyncio.create_task(
            self.services.voice_session_manager.handle_transcript(
                channel_id, speaker_id, transcript
            )
        )
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)

    @property
    def active_session_count(self) -> int:
        return len(self._session_tasks)

import asyncio
from contextlib import suppress
from typing import TYPE_CHECKING

from coach.services.logger import LogChannel
from coach.services.manager import Manager

if TYPE_CHECKING:
    from coach.context import Context
    from coach.services.session_registry.manager import ChannelSession, SpeakerSession

# -------------------------------------------------------------- #
# Utterance Capture Manager Service
# -------------------------------------------------------------- #


class UtteranceCaptureManagerService(Manager):
    """
    Runs one capture loop per tracked speaker.

    Each loop subscribes a silence-bounded utterance stream on the channel's
    receiver, hands it to a new transcription session once audio arrives,
    waits for the silence timeout and for that utterance's session to
    finish, then subscribes again. A loop ends only when it is cancelled
    (speaker removed) or the receiver closes.
    """

    def __init__(self, context: "Context", silence_duration_ms: int = 2000):
        super().__init__(context)
        self.silence_duration_ms = silence_duration_ms
        self.speaking: set[int] = set()
        self._tasks: set[asyncio.Task] = set()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info(
            f"UtteranceCaptureManagerService initialized "
            f"(silence={self.silence_duration_ms}ms)"
        )

    async def on_close(self) -> None:
        """Cancel every capture loop."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError, Exception):
                await task

    # -------------------------------------------------------------- #
    # Capture Loops
    # -------------------------------------------------------------- #

    def start(
        self, channel_session: "ChannelSession", speaker_session: "SpeakerSession"
    ) -> asyncio.Task | None:
        """
        Start the capture loop for a speaker unless one is already running.

        Returns:
            The speaker's capture task, or None if the channel has no receiver
        """
        existing = speaker_session.capture_task
        if existing is not None and not existing.done():
            return existing

        if channel_session.receiver is None or channel_session.receiver.closed:
            return None

        task = asyncio.create_task(
            self._capture_loop(channel_session, speaker_session),
            name=f"capture-{channel_session.channel_id}-{speaker_session.speaker_id}",
        )
        speaker_session.capture_task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def is_speaking(self, speaker_id: int) -> bool:
        return speaker_id in self.speaking

    async def _capture_loop(
        self, channel_session: "ChannelSession", speaker_session: "SpeakerSession"
    ) -> None:
        receiver = channel_session.receiver
        speaker_id = speaker_session.speaker_id
        logger = self.services.logging_service
        stream = None

        try:
            while not receiver.closed:
                stream = receiver.subscribe(speaker_id, self.silence_duration_ms)

                if not await stream.wait_started():
                    continue

                self.speaking.add(speaker_id)
                await logger.info(f"{speaker_id} started speaking", LogChannel.DISCORD)

                session = await self.services.transcription_manager.start_session(
                    channel_session, speaker_session, stream
                )

                await stream.wait_ended()
                self.speaking.discard(speaker_id)
                await logger.info(f"{speaker_id} stopped speaking", LogChannel.DISCORD)

                # A session still finalizing holds back the next utterance
                if session is not None:
                    await session.wait_finished()
        finally:
            self.speaking.discard(speaker_id)
            if stream is not None:
                receiver.unsubscribe(speaker_id, stream)

"""
Per-speaker audio routing on top of py-cord's recording API.

py-cord decodes voice packets on its own thread and hands every frame to
``Sink.write``. ``SpeakerRoutingSink`` moves each frame onto the event loop and
pushes it into the ``UtteranceStream`` currently subscribed for that speaker.
A stream ends on its own once no frame has arrived for the configured silence
duration; frames for speakers without a subscriber are dropped.
"""

import asyncio
import logging

import discord

logger = logging.getLogger(__name__)

# py-cord delivers decoded 48 kHz, 16-bit, stereo PCM
CAPTURE_SAMPLE_RATE = 48000
CAPTURE_CHANNELS = 2

_END_OF_STREAM = None

# -------------------------------------------------------------- #
# Utterance Stream
# -------------------------------------------------------------- #


class UtteranceStream:
    """One utterance worth of raw frames from one speaker, ended by silence."""

    def __init__(
        self, speaker_id: int, silence_duration_ms: int, loop: asyncio.AbstractEventLoop
    ):
        self.speaker_id = speaker_id
        self.silence_duration = silence_duration_ms / 1000
        self.chunk_count = 0

        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._started = asyncio.Event()
        self._ended = asyncio.Event()
        self._silence_timer: asyncio.TimerHandle | None = None

    @property
    def has_data(self) -> bool:
        return self.chunk_count > 0

    @property
    def ended(self) -> bool:
        return self._ended.is_set()

    def push(self, frame: bytes) -> None:
        """Append a frame and restart the silence timer. Must run on the event loop."""
        if self.ended:
            return

        self._queue.put_nowait(frame)
        self.chunk_count += 1
        self._started.set()

        if self._silence_timer is not None:
            self._silence_timer.cancel()
        self._silence_timer = self._loop.call_later(self.silence_duration, self.close)

    def close(self) -> None:
        """End the stream. Safe to call more than once."""
        if self.ended:
            return

        if self._silence_timer is not None:
            self._silence_timer.cancel()
            self._silence_timer = None

        self._ended.set()
        self._started.set()
        self._queue.put_nowait(_END_OF_STREAM)

    async def wait_started(self) -> bool:
        """Wait for the first frame. Returns False if the stream ended without any."""
        await self._started.wait()
        return self.has_data

    async def wait_ended(self) -> None:
        await self._ended.wait()

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        frame = await self._queue.get()
        if frame is _END_OF_STREAM:
            # keep the sentinel for any other reader
            self._queue.put_nowait(_END_OF_STREAM)
            raise StopAsyncIteration
        return frame


# -------------------------------------------------------------- #
# Routing Sink
# -------------------------------------------------------------- #


class SpeakerRoutingSink(discord.sinks.Sink):
    """py-cord sink that fans decoded frames out to per-speaker utterance streams."""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        super().__init__()
        self.loop = loop
        self.closed = False
        self._streams: dict[int, UtteranceStream] = {}

    # -------------------------------------------------------------- #
    # Subscriptions (event loop only)
    # -------------------------------------------------------------- #

    def subscribe(self, speaker_id: int, silence_duration_ms: int) -> UtteranceStream:
        """Open a fresh utterance stream for a speaker, ending any previous one."""
        previous = self._streams.get(speaker_id)
        if previous is not None:
            previous.close()

        stream = UtteranceStream(speaker_id, silence_duration_ms, self.loop)
        if self.closed:
            stream.close()
        else:
            self._streams[speaker_id] = stream
        return stream

    def unsubscribe(self, speaker_id: int, stream: UtteranceStream | None = None) -> None:
        current = self._streams.get(speaker_id)
        if current is None or (stream is not None and current is not stream):
            return
        del self._streams[speaker_id]
        current.close()

    def close(self) -> None:
        """End every stream and stop routing. Safe to call more than once."""
        self.closed = True
        self.finished = True
        streams = list(self._streams.values())
        self._streams.clear()
        for stream in streams:
            stream.close()

    # -------------------------------------------------------------- #
    # py-cord Sink Interface (decoder thread)
    # -------------------------------------------------------------- #

    def write(self, data, user) -> None:
        if self.closed or self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self._route, user, bytes(data))

    def cleanup(self) -> None:
        self.finished = True
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.close)

    def _route(self, user, frame: bytes) -> None:
        speaker_id = getattr(user, "id", user)
        stream = self._streams.get(speaker_id)
        if stream is None or stream.ended:
            return
        stream.push(frame)

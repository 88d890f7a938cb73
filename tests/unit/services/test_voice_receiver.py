"""
Unit tests for per-speaker audio routing.
"""

import asyncio

import pytest

from coach.services.voice_receiver.sink import SpeakerRoutingSink, UtteranceStream


async def _drain(stream: UtteranceStream) -> list[bytes]:
    return [frame async for frame in stream]


async def _flush_callbacks() -> None:
    # call_soon_threadsafe callbacks run on the next loop iteration
    await asyncio.sleep(0)
    await asyncio.sleep(0)


@pytest.mark.unit
class TestUtteranceStream:
    async def test_stream_ends_after_silence(self):
        stream = UtteranceStream(42, silence_duration_ms=30, loop=asyncio.get_running_loop())

        stream.push(b"a")
        stream.push(b"b")

        assert await asyncio.wait_for(_drain(stream), timeout=1.0) == [b"a", b"b"]
        assert stream.ended
        assert stream.chunk_count == 2

    async def test_each_frame_restarts_the_silence_timer(self):
        stream = UtteranceStream(42, silence_duration_ms=50, loop=asyncio.get_running_loop())

        for _ in range(4):
            stream.push(b"x")
            await asyncio.sleep(0.03)

        assert not stream.ended
        await asyncio.wait_for(stream.wait_ended(), timeout=1.0)

    async def test_wait_started_reports_empty_stream(self):
        stream = UtteranceStream(42, silence_duration_ms=30, loop=asyncio.get_running_loop())

        stream.close()

        assert await stream.wait_started() is False
        assert await _drain(stream) == []

    async def test_close_is_idempotent_and_drops_later_frames(self):
        stream = UtteranceStream(42, silence_duration_ms=30, loop=asyncio.get_running_loop())

        stream.push(b"a")
        stream.close()
        stream.close()
        stream.push(b"late")

        assert await _drain(stream) == [b"a"]
        assert stream.chunk_count == 1


@pytest.mark.unit
class TestSpeakerRoutingSink:
    async def test_frames_are_routed_by_speaker(self):
        sink = SpeakerRoutingSink(asyncio.get_running_loop())
        alice = sink.subscribe(42, 1000)
        bob = sink.subscribe(43, 1000)

        sink.write(b"from-alice", 42)
        sink.write(b"from-bob", 43)
        sink.write(b"from-nobody", 44)
        await _flush_callbacks()

        assert alice.chunk_count == 1
        assert bob.chunk_count == 1
        sink.close()

    async def test_user_objects_are_resolved_to_ids(self, make_member):
        sink = SpeakerRoutingSink(asyncio.get_running_loop())
        stream = sink.subscribe(42, 1000)

        sink.write(b"frame", make_member(42))
        await _flush_callbacks()

        assert stream.has_data
        sink.close()

    async def test_resubscribe_ends_previous_stream(self):
        sink = SpeakerRoutingSink(asyncio.get_running_loop())
        first = sink.subscribe(42, 1000)
        second = sink.subscribe(42, 1000)

        assert first.ended
        assert not second.ended
        sink.close()

    async def test_unsubscribe_ignores_stale_stream(self):
        sink = SpeakerRoutingSink(asyncio.get_running_loop())
        first = sink.subscribe(42, 1000)
        second = sink.subscribe(42, 1000)

        sink.unsubscribe(42, first)
        assert not second.ended

        sink.unsubscribe(42, second)
        assert second.ended

    async def test_close_ends_every_stream(self):
        sink = SpeakerRoutingSink(asyncio.get_running_loop())
        streams = [sink.subscribe(speaker_id, 1000) for speaker_id in (1, 2, 3)]

        sink.close()
        sink.close()

        assert all(stream.ended for stream in streams)
        assert sink.subscribe(4, 1000).ended

    async def test_cleanup_from_recorder_closes_streams(self):
        sink = SpeakerRoutingSink(asyncio.get_running_loop())
        stream = sink.subscribe(42, 1000)

        sink.cleanup()
        await _flush_callbacks()

        assert sink.finished
        assert stream.ended

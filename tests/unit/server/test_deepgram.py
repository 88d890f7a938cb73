"""
Unit tests for the Deepgram live transcription client.
"""

import json
from urllib.parse import parse_qs, urlparse

import pytest

from coach.server.common.deepgram import (
    DeepgramClient,
    DeepgramLiveConnection,
    LiveTranscriptionOptions,
    construct_deepgram_client,
)
from coach.server.services import TranscriptionEvent, TranscriptionEventType


@pytest.mark.unit
class TestLiveTranscriptionOptions:
    def test_query_matches_decoded_voice_frames(self):
        client = construct_deepgram_client(api_key="key", model="nova-2")
        connection = DeepgramLiveConnection(
            session=None, api_key="key", options=client.options, endpoint=client.endpoint
        )

        url = urlparse(connection.url)
        query = {key: values[0] for key, values in parse_qs(url.query).items()}

        assert url.netloc == "api.deepgram.com"
        assert query == {
            "model": "nova-2",
            "smart_format": "true",
            "encoding": "linear16",
            "sample_rate": "48000",
            "channels": "2",
        }

    def test_defaults(self):
        assert LiveTranscriptionOptions().model == "nova"


@pytest.mark.unit
class TestMessageParsing:
    def test_result_message(self):
        raw = json.dumps(
            {"type": "Results", "channel": {"alternatives": [{"transcript": "hey coach"}]}}
        )

        event = DeepgramLiveConnection._parse_message(raw)

        assert event.type == TranscriptionEventType.RESULT
        assert event.extract_transcript() == "hey coach"

    def test_result_without_type_field(self):
        raw = json.dumps({"channel": {"alternatives": [{"transcript": "gg"}]}})

        assert DeepgramLiveConnection._parse_message(raw).type == TranscriptionEventType.RESULT

    @pytest.mark.parametrize(
        "message_type, expected",
        [
            ("Metadata", TranscriptionEventType.METADATA),
            ("SpeechStarted", TranscriptionEventType.METADATA),
            ("Error", TranscriptionEventType.ERROR),
            ("Warning", TranscriptionEventType.WARNING),
        ],
    )
    def test_other_message_types(self, message_type, expected):
        raw = json.dumps({"type": message_type})

        assert DeepgramLiveConnection._parse_message(raw).type == expected

    def test_unparseable_message_becomes_warning(self):
        event = DeepgramLiveConnection._parse_message("{not json")

        assert event.type == TranscriptionEventType.WARNING

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            {},
            {"channel": {}},
            {"channel": {"alternatives": []}},
            {"channel": {"alternatives": [{"transcript": 5}]}},
        ],
    )
    def test_malformed_results_have_no_transcript(self, payload):
        event = TranscriptionEvent(TranscriptionEventType.RESULT, payload)

        assert event.extract_transcript() is None


@pytest.mark.unit
class TestDeepgramClient:
    def test_open_stream_requires_connection(self):
        client = DeepgramClient(api_key="key")

        with pytest.raises(RuntimeError):
            client.open_stream()

    async def test_connect_and_disconnect(self):
        client = DeepgramClient(api_key="key")

        await client.connect()
        connection = client.open_stream()
        assert await client.health_check()
        assert not connection.is_open

        await client.disconnect()
        assert not await client.health_check()

    async def test_send_before_open_fails(self):
        client = DeepgramClient(api_key="key")
        await client.connect()
        connection = client.open_stream()

        try:
            with pytest.raises(RuntimeError):
                await connection.send(b"frame")
            await connection.finalize()
            await connection.close()
            await connection.close()
        finally:
            await client.disconnect()

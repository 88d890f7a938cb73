"""
Mock speech synthesis engine for testing.
"""

import logging

import numpy as np

from coach.server.services import SpeechSynthesisServerHandler, SynthesizedAudio

logger = logging.getLogger(__name__)


class MockSpeechSynthesizer(SpeechSynthesisServerHandler):
    """Produces a short sine tone instead of speech."""

    def __init__(self, name: str = "test_synthesis", sample_rate: int = 22050):
        super().__init__(name)
        self.sample_rate = sample_rate
        self.raise_error: Exception | None = None
        self.requests: list[tuple[str, int, float]] = []
        self.load_count = 0
        self.release_count = 0

    async def connect(self) -> None:
        self.load_count += 1
        self._connected = True

    async def disconnect(self) -> None:
        if not self._connected:
            return
        self.release_count += 1
        self._connected = False

    async def health_check(self) -> bool:
        return self._connected

    async def generate(
        self, text: str, speaker_id: int = 0, speed: float = 1.0
    ) -> SynthesizedAudio:
        if not self._connected:
            raise RuntimeError("TTS engine is not loaded")

        self.requests.append((text, speaker_id, speed))
        if self.raise_error is not None:
            raise self.raise_error

        duration = 0.1
        t = np.arange(int(self.sample_rate * duration)) / self.sample_rate
        samples = (0.5 * np.sin(2 * np.pi * 440 * t)).astype(np.float32)
        return SynthesizedAudio(samples=samples, sample_rate=self.sample_rate)

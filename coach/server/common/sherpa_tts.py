"""sherpa-onnx offline text-to-speech engine."""

import asyncio
import logging
import os

import numpy as np
import sherpa_onnx

from coach.server.services import SpeechSynthesisServerHandler, SynthesizedAudio

logger = logging.getLogger(__name__)


class SherpaOnnxSpeechSynthesizer(SpeechSynthesisServerHandler):
    """
    Wraps a single shared ``sherpa_onnx.OfflineTts`` instance.

    The engine is loaded once in ``connect`` and released once in
    ``disconnect``. ``generate`` is stateless and runs on the default executor
    so inference never blocks the event loop.
    """

    def __init__(
        self,
        model_dir: str,
        model_name: str,
        name: str = "sherpa_onnx_tts",
        num_threads: int = 1,
        provider: str = "cpu",
        noise_scale: float = 0.667,
        noise_scale_w: float = 0.8,
        length_scale: float = 1.0,
        max_num_sentences: int = 1,
    ):
        super().__init__(name)
        self.model_dir = model_dir
        self.model_name = model_name
        self.num_threads = num_threads
        self.provider = provider
        self.noise_scale = noise_scale
        self.noise_scale_w = noise_scale_w
        self.length_scale = length_scale
        self.max_num_sentences = max_num_sentences
        self._tts: sherpa_onnx.OfflineTts | None = None

    # -------------------------------------------------------------- #
    # Configuration
    # -------------------------------------------------------------- #

    def build_config(self) -> sherpa_onnx.OfflineTtsConfig:
        """Build the VITS (piper) model configuration."""
        vits = sherpa_onnx.OfflineTtsVitsModelConfig(
            model=os.path.join(self.model_dir, self.model_name),
            lexicon="",
            tokens=os.path.join(self.model_dir, "tokens.txt"),
            data_dir=os.path.join(self.model_dir, "espeak-ng-data"),
            noise_scale=self.noise_scale,
            noise_scale_w=self.noise_scale_w,
            length_scale=self.length_scale,
        )
        model = sherpa_onnx.OfflineTtsModelConfig(
            vits=vits,
            num_threads=self.num_threads,
            provider=self.provider,
            debug=False,
        )
        return sherpa_onnx.OfflineTtsConfig(
            model=model,
            max_num_sentences=self.max_num_sentences,
        )

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Load the TTS model."""
        if self._tts is not None:
            return

        config = self.build_config()
        if not config.validate():
            raise RuntimeError(f"Invalid sherpa-onnx TTS configuration for {self.model_dir}")

        loop = asyncio.get_running_loop()
        self._tts = await loop.run_in_executor(None, sherpa_onnx.OfflineTts, config)
        self._connected = True
        logger.info(f"Loaded TTS model {self.model_name} ({self._tts.num_speakers} speakers)")

    async def disconnect(self) -> None:
        """Release the TTS model."""
        if self._tts is None:
            return
        self._tts = None
        self._connected = False
        logger.info("Released TTS model")

    async def health_check(self) -> bool:
        return self._tts is not None

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def generate(
        self, text: str, speaker_id: int = 0, speed: float = 1.0
    ) -> SynthesizedAudio:
        if self._tts is None:
            raise RuntimeError("TTS engine is not loaded")

        tts = self._tts
        loop = asyncio.get_running_loop()
        audio = await loop.run_in_executor(
            None, lambda: tts.generate(text, sid=speaker_id, speed=speed)
        )

        samples = np.asarray(audio.samples, dtype=np.float32)
        if samples.size == 0:
            raise RuntimeError(f"TTS engine produced no audio for: {text[:80]!r}")

        return SynthesizedAudio(samples=samples, sample_rate=int(audio.sample_rate))


def construct_speech_synthesizer(
    model_dir: str, model_name: str, num_threads: int = 1
) -> SherpaOnnxSpeechSynthesizer:
    """Construct the piper voice used for spoken replies."""
    return SherpaOnnxSpeechSynthesizer(
        model_dir=model_dir, model_name=model_name, num_threads=num_threads
    )

"""Sample format conversion for synthesized speech."""

import numpy as np


def quantize_to_pcm16(samples) -> bytes:
    """
    Convert float samples in [-1, 1] to 16-bit signed little-endian PCM.

    Values are clamped first. Negative samples scale by 32768 and the rest by
    32767, so -1.0 maps to -32768 and 1.0 to 32767. Fractions are truncated.
    """
    audio = np.clip(np.nan_to_num(np.asarray(samples, dtype=np.float64)), -1.0, 1.0)
    scaled = np.where(audio < 0, audio * 32768.0, audio * 32767.0)
    return scaled.astype("<i2").tobytes()


def mono_to_stereo(mono_pcm: bytes) -> bytes:
    """Duplicate each 16-bit mono sample into interleaved left/right channels."""
    mono = np.frombuffer(mono_pcm, dtype="<i2")
    return np.repeat(mono, 2).tobytes()

from dataclasses import dataclass
from typing import Literal

import numpy as np

AudioEncoding = Literal["pcm_s16le", "pcm_f32le"]

LEVEL_WINDOW_SAMPLES = 256
LEVEL_MIN_DECIBELS = -100.0
LEVEL_MAX_DECIBELS = -30.0


@dataclass(frozen=True)
class CaptureConstraints:
    sample_rate: int = 16000
    channels: int = 1


@dataclass(frozen=True)
class AudioFrame:
    seq: int
    pcm: bytes
    sample_count: int


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Clamp float samples to [-1, 1] and scale them to little-endian int16.

    Negative samples scale by 32768 and positive ones by 32767 so that both
    ends of the range map onto the full int16 range without overflow.
    """
    clipped = np.clip(samples.astype(np.float32, copy=False), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return scaled.astype("<i2").tobytes()


def float_to_pcm32f(samples: np.ndarray) -> bytes:
    clipped = np.clip(samples.astype(np.float32, copy=False), -1.0, 1.0)
    return clipped.astype("<f4").tobytes()


def encode_samples(samples: np.ndarray, encoding: AudioEncoding) -> bytes:
    if encoding == "pcm_f32le":
        return float_to_pcm32f(samples)
    return float_to_pcm16(samples)


def normalized_level(
    samples: np.ndarray,
    min_decibels: float = LEVEL_MIN_DECIBELS,
    max_decibels: float = LEVEL_MAX_DECIBELS,
) -> float:
    """Average spectral magnitude of ``samples`` scaled to [0, 1].

    Blackman-windowed FFT magnitudes in dB are mapped linearly from
    ``[min_decibels, max_decibels]`` and averaged over the frequency bins.
    """
    if samples.size < 2:
        return 0.0
    window = np.blackman(samples.size)
    spectrum = np.fft.rfft(samples.astype(np.float64) * window)[: samples.size // 2]
    magnitudes = np.abs(spectrum) / samples.size
    with np.errstate(divide="ignore"):
        decibels = 20.0 * np.log10(magnitudes)
    scaled = (decibels - min_decibels) / (max_decibels - min_decibels)
    return float(np.clip(np.nan_to_num(scaled, neginf=0.0), 0.0, 1.0).mean())

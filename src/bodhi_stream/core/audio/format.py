from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np
import soundfile as sf

from bodhi_stream.errors import ConfigError

PCM16_SAMPLE_WIDTH = 2


@dataclass(frozen=True, slots=True)
class PcmBuffer:
    """PCM16 little-endian samples in a single (interleaved) channel ordering."""

    data: bytes
    sample_rate_hz: int
    channels: int = 1

    def __post_init__(self) -> None:
        if self.sample_rate_hz <= 0:
            raise ConfigError("sample_rate_hz must be > 0")
        if self.channels <= 0:
            raise ConfigError("channels must be > 0")
        if len(self.data) % PCM16_SAMPLE_WIDTH:
            raise ConfigError("PCM16 data length must be a multiple of 2 bytes")

    @property
    def num_samples(self) -> int:
        return len(self.data) // PCM16_SAMPLE_WIDTH

    @property
    def duration_s(self) -> float:
        return self.num_samples / self.channels / self.sample_rate_hz


def interleave_channels(channels: Sequence[np.ndarray]) -> np.ndarray:
    """Mono passes through; stereo alternates ch0[i], ch1[i]."""
    if len(channels) == 0:
        raise ConfigError("at least one channel is required")
    if len(channels) == 1:
        return np.asarray(channels[0]).reshape(-1)
    if len(channels) > 2:
        raise ConfigError("only mono or stereo input is supported")

    left = np.asarray(channels[0]).reshape(-1)
    right = np.asarray(channels[1]).reshape(-1)
    if left.shape != right.shape:
        raise ConfigError("stereo channels must have the same length")

    out = np.empty(left.size * 2, dtype=np.result_type(left, right))
    out[0::2] = left
    out[1::2] = right
    return out


def float32_to_pcm16le_bytes(samples: np.ndarray) -> bytes:
    samples = np.asarray(samples, dtype=np.float32)
    clipped = np.clip(samples, -1.0, 1.0)
    int16 = (clipped * 32767.0).astype("<i2")
    return int16.tobytes()


def load_wav_file(path: Path) -> PcmBuffer:
    """Decode a mono or stereo WAV file into interleaved PCM16.

    16-bit integer data is passed through untouched. Other integer widths and
    float WAVs are read as float32 and requantized with `float32_to_pcm16le_bytes`.
    """
    try:
        info = sf.info(str(path))
        if info.channels > 2:
            raise ConfigError("only mono or stereo WAV files are supported")
        if info.subtype == "PCM_16":
            samples, sample_rate = sf.read(str(path), dtype="int16", always_2d=True)
            data = samples.astype("<i2", copy=False).tobytes()
        else:
            samples, sample_rate = sf.read(str(path), dtype="float32", always_2d=True)
            data = float32_to_pcm16le_bytes(samples.reshape(-1))
    except sf.LibsndfileError as exc:
        raise ConfigError(f"cannot decode WAV file {path}: {exc}") from exc

    # Rows are frames, so row-major flattening yields ch0, ch1, ch0, ...
    return PcmBuffer(data=data, sample_rate_hz=sample_rate, channels=info.channels)

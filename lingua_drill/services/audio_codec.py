from __future__ import annotations
import base64
import binascii
from dataclasses import dataclass

import numpy as np

from lingua_drill.errors import DecodeError, FormatError
from lingua_drill.settings import settings

_PCM16_SCALE = 32768.0


@dataclass(frozen=True, slots=True)
class SampleBuffer:
    samples: np.ndarray  # float32, shape (frames, channels)
    sample_rate: int
    channels: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        return self.frames / float(self.sample_rate) if self.sample_rate else 0.0

    def __len__(self):
        return self.frames


def decode(payload: str) -> bytes:
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise DecodeError(f"invalid base64 audio payload: {e}") from e


def encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def pcm16_to_sample_buffer(data: bytes, sample_rate: int | None = None, channels: int | None = None) -> SampleBuffer:
    if sample_rate is None:
        sample_rate = settings.tts_sample_rate
    if channels is None:
        channels = settings.tts_channels
    if sample_rate < 1:
        raise FormatError(f"sample rate must be positive, got {sample_rate}")
    if channels < 1:
        raise FormatError(f"channel count must be positive, got {channels}")
    if len(data) % 2:
        raise FormatError(f"PCM16 payload has odd byte length {len(data)}")
    ints = np.frombuffer(data, dtype="<i2")
    frames = len(ints) // channels
    # trailing partial frame is dropped
    ints = ints[: frames * channels].reshape(frames, channels)
    samples = (ints.astype(np.float32) / _PCM16_SCALE).astype(np.float32)
    return SampleBuffer(samples=samples, sample_rate=sample_rate, channels=channels)


def decode_speech(payload: str, sample_rate: int | None = None, channels: int | None = None) -> SampleBuffer:
    return pcm16_to_sample_buffer(decode(payload), sample_rate, channels)

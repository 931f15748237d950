from __future__ import annotations
import io
import time
import wave
from enum import Enum
from typing import Callable, Optional

import numpy as np
from kivy.logger import Logger

from lingua_drill.errors import CaptureUnavailable
from lingua_drill.models.state import AudioClip
from lingua_drill.services.dispatch import ClockScheduler
from lingua_drill.settings import settings


class CaptureState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPED = "stopped"


def rms_energy(block) -> float:
    arr = np.asarray(block)
    if arr.size == 0:
        return 0.0
    if arr.dtype.kind in "iu":
        x = arr.astype(np.float64) / 32768.0
    else:
        x = arr.astype(np.float64)
    return float(np.sqrt(np.mean(np.square(x))))


def pcm16_to_wav(pcm: bytes, sample_rate: int, channels: int) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as w:
        w.setnchannels(channels)
        w.setsampwidth(2)
        w.setframerate(sample_rate)
        w.writeframes(pcm)
    return buf.getvalue()


class _InputHandle:
    def __init__(self, stream, sample_rate: int, channels: int):
        self._stream = stream
        self.sample_rate = sample_rate
        self.channels = channels
        self._chunks: list[bytes] = []
        self._latest = None

    def _on_block(self, indata, frames, time_info, status):
        block = indata.copy()
        self._chunks.append(block.tobytes())
        self._latest = block

    def latest_block(self):
        return self._latest

    def close(self) -> bytes:
        try:
            self._stream.stop()
            self._stream.close()
        except Exception as e:
            Logger.debug(f"Capture: closing input failed: {e}")
        return b"".join(self._chunks)


class SoundDeviceMicrophone:
    def __init__(self, sample_rate: int | None = None, channels: int | None = None, device=None):
        self.sample_rate = sample_rate or settings.capture_sample_rate
        self.channels = channels or settings.capture_channels
        self._device = device

    def open(self) -> _InputHandle:
        try:
            import sounddevice as sd
        except OSError as e:
            raise CaptureUnavailable(f"no audio backend: {e}") from e

        handle = _InputHandle(None, self.sample_rate, self.channels)
        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                device=self._device,
                callback=handle._on_block,
            )
            stream.start()
        except (sd.PortAudioError, OSError, ValueError) as e:
            raise CaptureUnavailable(f"could not open microphone: {e}") from e
        handle._stream = stream
        return handle


class SpeechCapture:
    """Records one utterance and decides by itself when the speaker is done.

    Idle -> Recording -> Stopped. A sampling tick (~60 Hz) measures RMS energy
    of the latest input block. After speech has been heard once, a trailing
    silence longer than `silence_ms` finishes the clip and hands it to the
    caller. If nothing crosses the threshold within `no_speech_ms`, the clip is
    thrown away and the caller is not called.
    """

    def __init__(self, source=None, scheduler: ClockScheduler | None = None,
                 clock: Callable[[], float] = time.monotonic,
                 threshold: float | None = None, silence_ms: int | None = None,
                 no_speech_ms: int | None = None, tick_hz: int | None = None):
        self._source = source or SoundDeviceMicrophone()
        self._scheduler = scheduler or ClockScheduler()
        self._clock = clock
        self.threshold = settings.vad_threshold if threshold is None else threshold
        self.silence_ms = settings.vad_silence_ms if silence_ms is None else silence_ms
        self.no_speech_ms = settings.vad_no_speech_ms if no_speech_ms is None else no_speech_ms
        self._tick_interval = 1.0 / (tick_hz or settings.vad_tick_hz)

        self.state = CaptureState.IDLE
        self._handle = None
        self._tick_event = None
        self._on_finished: Optional[Callable[[AudioClip], None]] = None
        self._started_at = 0.0
        self._last_speech = 0.0
        self._speech_detected = False

    @property
    def is_recording(self) -> bool:
        return self.state is CaptureState.RECORDING

    def start(self, on_finished: Callable[[AudioClip], None]):
        if self.state is CaptureState.RECORDING:
            self.stop(discard=True)
        try:
            handle = self._source.open()
        except CaptureUnavailable as e:
            self.state = CaptureState.IDLE
            Logger.warning(f"Capture: microphone unavailable: {e}")
            raise

        self._handle = handle
        self._on_finished = on_finished
        now = self._clock()
        self._started_at = now
        self._last_speech = now
        self._speech_detected = False
        self.state = CaptureState.RECORDING
        self._tick_event = self._scheduler.schedule_interval(self._tick, self._tick_interval)
        Logger.info("Capture: recording started")

    def stop(self, discard: bool = False):
        if self.state is not CaptureState.RECORDING:
            return
        self._finish(deliver=not discard)

    def _tick(self, dt=None):
        if self.state is not CaptureState.RECORDING:
            return False
        now = self._clock()
        block = self._handle.latest_block()
        if block is not None and rms_energy(block) > self.threshold:
            self._speech_detected = True
            self._last_speech = now

        if self._speech_detected and (now - self._last_speech) * 1000 > self.silence_ms:
            Logger.info("Capture: trailing silence, stopping")
            self._finish(deliver=True)
            return False
        if not self._speech_detected and (now - self._started_at) * 1000 > self.no_speech_ms:
            Logger.info("Capture: no speech detected, discarding")
            self._finish(deliver=False)
            return False

    def _finish(self, deliver: bool):
        if self._tick_event is not None:
            self._tick_event.cancel()
            self._tick_event = None
        handle, self._handle = self._handle, None
        callback, self._on_finished = self._on_finished, None
        pcm = handle.close() if handle is not None else b""
        self.state = CaptureState.STOPPED
        if deliver and callback is not None:
            clip = AudioClip(pcm16_to_wav(pcm, handle.sample_rate, handle.channels), "audio/wav")
            callback(clip)

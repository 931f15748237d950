from __future__ import annotations
from typing import Callable, Optional

from kivy.logger import Logger

from lingua_drill.errors import AudioPayloadError
from lingua_drill.services.audio_codec import SampleBuffer, decode_speech
from lingua_drill.services.dispatch import ClockScheduler, ThreadDispatcher


class StreamHandle:
    """One outbound clip. `on_ended` fires exactly once: natural end or stop."""

    def __init__(self, on_ended: Optional[Callable[[], None]] = None):
        self._stream = None
        self._on_ended = on_ended
        self.active = True

    def stop(self):
        if not self.active:
            return
        self.active = False
        if self._stream is not None:
            try:
                self._stream.stop()
            except Exception as e:
                Logger.warning(f"Playback: stopping stream failed: {e}")
        self._fire()

    def _completed(self):
        if not self.active:
            return
        self.active = False
        self._fire()

    def _fire(self):
        cb, self._on_ended = self._on_ended, None
        if cb is not None:
            cb()


class _SoundDeviceStream:
    def __init__(self, stream):
        self._stream = stream
        self._closed = False

    def start(self):
        self._stream.start()

    def stop(self):
        if self._closed:
            return
        self._closed = True
        self._stream.abort()
        self._stream.close()

    def _finished(self, on_finished):
        if not self._closed:
            self._closed = True
            try:
                self._stream.close()
            except Exception as e:
                Logger.debug(f"Playback: close after end failed: {e}")
        on_finished()


class SoundDeviceSink:
    def __init__(self, scheduler: ClockScheduler | None = None, device=None):
        self._scheduler = scheduler or ClockScheduler()
        self._device = device

    def open(self, buffer: SampleBuffer, on_finished: Callable[[], None]):
        import sounddevice as sd

        data = buffer.samples
        pos = [0]

        def callback(outdata, frames, time_info, status):
            start = pos[0]
            chunk = data[start:start + frames]
            n = len(chunk)
            outdata[:n] = chunk
            pos[0] = start + n
            if n < frames:
                outdata[n:] = 0
                raise sd.CallbackStop

        holder = {}

        def finished():
            # PortAudio thread -> loop thread
            self._scheduler.schedule_once(lambda dt: holder["stream"]._finished(on_finished), 0)

        raw = sd.OutputStream(
            samplerate=buffer.sample_rate,
            channels=buffer.channels,
            dtype="float32",
            device=self._device,
            callback=callback,
            finished_callback=finished,
        )
        holder["stream"] = _SoundDeviceStream(raw)
        return holder["stream"]


class PlaybackController:
    """Owns the single audible stream and the request-id counter for speak requests."""

    def __init__(self, sink=None, scheduler: ClockScheduler | None = None):
        self._sink = sink or SoundDeviceSink(scheduler)
        self._current: Optional[StreamHandle] = None
        self._request_id = 0

    # ---- request ids (supersession) ----
    def next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    @property
    def latest_request_id(self) -> int:
        return self._request_id

    def is_current(self, request_id: int) -> bool:
        return request_id == self._request_id

    # ---- streams ----
    @property
    def is_playing(self) -> bool:
        return self._current is not None and self._current.active

    def play(self, buffer: SampleBuffer, on_ended: Optional[Callable[[], None]] = None) -> StreamHandle:
        self.stop()
        handle = StreamHandle(on_ended)
        handle._stream = self._sink.open(buffer, lambda: self._stream_finished(handle))
        try:
            handle._stream.start()
        except Exception:
            handle.active = False
            raise
        self._current = handle
        Logger.debug(f"Playback: started {buffer.frames} frames @ {buffer.sample_rate} Hz")
        return handle

    def stop(self):
        handle, self._current = self._current, None
        if handle is not None:
            handle.stop()

    def _stream_finished(self, handle: StreamHandle):
        if self._current is handle:
            self._current = None
        handle._completed()


class SpeechPlayer:
    """Text in, audio out. Only the most recently issued request may touch playback state."""

    def __init__(self, content, controller: PlaybackController | None = None,
                 dispatcher: ThreadDispatcher | None = None,
                 sample_rate: int | None = None, channels: int | None = None):
        self._content = content
        self.controller = controller or PlaybackController()
        self._dispatcher = dispatcher or ThreadDispatcher()
        self._sample_rate = sample_rate
        self._channels = channels

    def speak(self, text: str, on_playing: Optional[Callable[[bool], None]] = None) -> int:
        ctl = self.controller
        request_id = ctl.next_request_id()
        ctl.stop()

        def notify(flag: bool):
            if on_playing is not None:
                on_playing(flag)

        notify(True)

        def synthesize():
            payload = self._content.synthesize_speech(text)
            if not payload:
                return None
            return decode_speech(payload, self._sample_rate, self._channels)

        def ended():
            if ctl.is_current(request_id):
                notify(False)

        def done(buffer):
            if not ctl.is_current(request_id):
                Logger.debug(f"Playback: dropping stale speech request {request_id}")
                return
            if buffer is None:
                notify(False)
                return
            try:
                ctl.play(buffer, on_ended=ended)
            except Exception as e:
                Logger.error(f"Playback: could not open output: {e}")
                notify(False)

        def failed(err):
            if isinstance(err, AudioPayloadError):
                Logger.warning(f"Playback: bad audio for {text[:40]!r}: {err}")
            else:
                Logger.warning(f"Playback: speech synthesis failed: {err}")
            if ctl.is_current(request_id):
                notify(False)

        self._dispatcher.submit(synthesize, on_result=done, on_error=failed)
        return request_id

    def stop(self):
        # supersede anything still in flight
        self.controller.next_request_id()
        self.controller.stop()

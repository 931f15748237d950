import numpy as np
import pytest

from conftest import FakeSink
from lingua_drill.services.audio_codec import SampleBuffer
from lingua_drill.services.tts import PlaybackController, SpeechPlayer


def _buffer(frames):
    return SampleBuffer(np.zeros((frames, 1), dtype=np.float32), 24000, 1)


def test_new_clip_ends_the_previous_one_first(sink, controller):
    order = []
    sink_events = sink.events

    controller.play(_buffer(10), on_ended=lambda: order.append(("ended", 10)))
    controller.play(_buffer(20), on_ended=lambda: order.append(("ended", 20)))

    assert sink_events == [("start", 10), ("stop", 10), ("start", 20)]
    assert order == [("ended", 10)]
    assert controller.is_playing


def test_natural_end_fires_once(sink, controller):
    ended = []
    controller.play(_buffer(10), on_ended=lambda: ended.append(1))
    stream = sink.streams[-1]

    stream.finish()
    stream.finish()
    controller.stop()

    assert ended == [1]
    assert not controller.is_playing


def test_stop_after_stop_fires_once(controller):
    ended = []
    controller.play(_buffer(10), on_ended=lambda: ended.append(1))
    controller.stop()
    controller.stop()
    assert ended == [1]


def test_stop_when_idle_is_noop():
    sink = FakeSink()
    controller = PlaybackController(sink=sink)
    controller.stop()
    assert sink.events == []
    assert not controller.is_playing


def test_late_finish_of_replaced_stream_keeps_current(sink, controller):
    controller.play(_buffer(10))
    first = sink.streams[0]
    controller.play(_buffer(20))
    first.finish()
    assert controller.is_playing


def test_request_ids_increase(controller):
    a = controller.next_request_id()
    b = controller.next_request_id()
    assert b > a
    assert controller.is_current(b)
    assert not controller.is_current(a)
    assert controller.latest_request_id == b


def test_speak_plays_synthesized_audio(player, dispatcher, sink, content):
    flags = []
    player.speak("hello", on_playing=flags.append)
    assert flags == [True]
    assert sink.streams == []

    dispatcher.complete()
    assert len(sink.streams) == 1
    assert sink.streams[0].started
    assert ("synthesize_speech", ("hello",)) in content.calls

    sink.streams[0].finish()
    assert flags == [True, False]


def test_out_of_order_replies_only_play_the_latest(player, dispatcher, sink):
    first_flags, second_flags = [], []
    player.speak("one", on_playing=first_flags.append)
    second = player.speak("two", on_playing=second_flags.append)

    # "two" returns first, then the stale "one" arrives
    dispatcher.complete(1)
    dispatcher.complete(0)

    assert len(sink.streams) == 1
    assert player.controller.is_current(second)
    assert first_flags == [True]
    assert second_flags == [True]


def test_stop_supersedes_in_flight_request(player, dispatcher, sink):
    flags = []
    player.speak("one", on_playing=flags.append)
    player.stop()
    dispatcher.complete()
    assert sink.streams == []
    assert flags == [True]


def test_speak_while_playing_stops_current_clip(player, dispatcher, sink):
    player.speak("one")
    dispatcher.complete()
    player.speak("two")
    assert sink.streams[0].stopped
    dispatcher.complete()
    assert len(sink.streams) == 2


def test_empty_payload_reports_not_playing(player, dispatcher, sink, content):
    content.speech = None
    flags = []
    player.speak("quiet", on_playing=flags.append)
    dispatcher.complete()
    assert sink.streams == []
    assert flags == [True, False]


def test_undecodable_payload_is_dropped(player, dispatcher, sink, content):
    content.speech = "@@not-base64@@"
    flags = []
    player.speak("broken", on_playing=flags.append)
    dispatcher.complete()
    assert sink.streams == []
    assert flags == [True, False]


def test_synthesis_failure_reports_not_playing(player, dispatcher, content):
    content.fail.add("synthesize_speech")
    flags = []
    player.speak("x", on_playing=flags.append)
    dispatcher.complete()
    assert flags == [True, False]


class _BrokenStream:
    def start(self):
        raise OSError("device busy")

    def stop(self):
        pass


class _BrokenSink:
    def open(self, buffer, on_finished):
        return _BrokenStream()


def test_failed_start_leaves_controller_idle():
    controller = PlaybackController(sink=_BrokenSink())
    with pytest.raises(OSError):
        controller.play(_buffer(10))
    assert not controller.is_playing


def test_failed_start_reports_not_playing(content, dispatcher):
    player = SpeechPlayer(content, controller=PlaybackController(sink=_BrokenSink()), dispatcher=dispatcher)
    flags = []
    player.speak("hello", on_playing=flags.append)
    dispatcher.complete()
    assert flags == [True, False]
    assert not player.controller.is_playing

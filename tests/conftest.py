import os
import tempfile

# Kivy reads these on first import; keep it quiet and away from sys.argv
os.environ.setdefault("KIVY_NO_ARGS", "1")
os.environ.setdefault("KIVY_NO_CONSOLELOG", "1")
os.environ.setdefault("KIVY_NO_FILELOG", "1")
os.environ.setdefault("KIVY_HOME", tempfile.mkdtemp(prefix="kivy_home_"))

import numpy as np
import pytest

from lingua_drill.errors import CaptureUnavailable, GenerationFailure
from lingua_drill.models.content import (
    ArticleData, FollowUpAnswer, PronunciationResult, SentenceFeedback,
    WordExtras, WordUnit, WritingFeedback,
)
from lingua_drill.persistence.progress_store import ProgressStore
from lingua_drill.services.audio_codec import encode
from lingua_drill.services.recorder import SpeechCapture
from lingua_drill.services.tts import PlaybackController, SpeechPlayer


class _Event:
    def __init__(self, scheduler, callback, interval):
        self._scheduler = scheduler
        self.callback = callback
        self.interval = interval
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    def __init__(self):
        self.once = []
        self.intervals = []

    def schedule_once(self, callback, timeout=0):
        ev = _Event(self, callback, timeout)
        self.once.append(ev)
        return ev

    def schedule_interval(self, callback, interval):
        ev = _Event(self, callback, interval)
        self.intervals.append(ev)
        return ev

    @property
    def active_intervals(self):
        return [ev for ev in self.intervals if not ev.cancelled]

    def tick(self):
        for ev in self.active_intervals:
            if ev.callback(ev.interval) is False:
                ev.cancel()

    def run_once(self):
        pending, self.once = self.once, []
        for ev in pending:
            if not ev.cancelled:
                ev.callback(0)


class ManualDispatcher:
    """Holds submitted jobs until the test completes them, in any order."""

    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args, on_result=None, on_error=None):
        self.jobs.append((fn, args, on_result, on_error))

    @property
    def pending(self):
        return len(self.jobs)

    def names(self):
        return [getattr(fn, "__name__", str(fn)) for fn, *_ in self.jobs]

    def complete(self, index=0):
        fn, args, on_result, on_error = self.jobs.pop(index)
        try:
            value = fn(*args)
        except Exception as e:
            if on_error is not None:
                on_error(e)
            return
        if on_result is not None:
            on_result(value)

    def complete_named(self, name):
        self.complete(self.names().index(name))

    def run_all(self):
        while self.jobs:
            self.complete(0)

    def drop_all(self):
        self.jobs.clear()


class FakeStream:
    def __init__(self, sink, buffer, on_finished):
        self.sink = sink
        self.buffer = buffer
        self.on_finished = on_finished
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True
        self.sink.events.append(("start", self.buffer.frames))

    def stop(self):
        self.stopped = True
        self.sink.events.append(("stop", self.buffer.frames))

    def finish(self):
        self.on_finished()


class FakeSink:
    def __init__(self):
        self.streams = []
        self.events = []

    def open(self, buffer, on_finished):
        stream = FakeStream(self, buffer, on_finished)
        self.streams.append(stream)
        return stream


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance_ms(self, ms):
        self.now += ms / 1000.0


class FakeInput:
    def __init__(self, sample_rate=16000, channels=1):
        self.sample_rate = sample_rate
        self.channels = channels
        self.blocks = []
        self.closed = False

    def feed(self, block):
        self.blocks.append(np.asarray(block, dtype=np.int16))

    def latest_block(self):
        return self.blocks[-1] if self.blocks else None

    def close(self):
        self.closed = True
        return b"".join(b.tobytes() for b in self.blocks)


class FakeMicrophone:
    def __init__(self):
        self.opened = []
        self.fail = False

    def open(self):
        if self.fail:
            raise CaptureUnavailable("permission denied")
        handle = FakeInput()
        self.opened.append(handle)
        return handle

    @property
    def current(self):
        return self.opened[-1]


def loud_block(n=1024, amplitude=8000):
    return np.full(n, amplitude, dtype=np.int16)


def quiet_block(n=1024):
    return np.zeros(n, dtype=np.int16)


def pcm_payload(frames=240):
    samples = (np.sin(np.linspace(0, 20, frames)) * 12000).astype("<i2")
    return encode(samples.tobytes())


class FakeContent:
    def __init__(self):
        self.calls = []
        self.speech = pcm_payload()
        self.sentence_verdicts = []
        self.pronunciation_scores = []
        self.vocabulary_batches = []
        self.fail = set()
        self.extras = WordExtras(synonyms=["light"], antonyms=[], roots=[])
        self.article = ArticleData(title="Light", content="Plants turn light into food.", translation="")

    def _call(self, name, *args):
        self.calls.append((name, args))
        if name in self.fail:
            raise GenerationFailure(f"{name} failed")

    def synthesize_speech(self, text):
        self._call("synthesize_speech", text)
        return self.speech

    def grade_sentence(self, word, sentence):
        self._call("grade_sentence", word, sentence)
        ok = self.sentence_verdicts.pop(0) if self.sentence_verdicts else True
        return SentenceFeedback(
            is_correct=ok,
            corrected_sentence=None if ok else f"{sentence} (fixed)",
            explanation="Excellent usage!" if ok else "1. **Grammar**: verb form",
            explanation_translation="",
        )

    def grade_pronunciation(self, clip, target_text):
        self._call("grade_pronunciation", clip, target_text)
        score = self.pronunciation_scores.pop(0) if self.pronunciation_scores else 80
        return PronunciationResult(score=score, feedback="ok")

    def answer_follow_up(self, word, sentence, feedback, history, question):
        self._call("answer_follow_up", word, sentence, feedback, history, question)
        return FollowUpAnswer(content=f"About {word}: yes.", translation="")

    def generate_word_extras(self, word):
        self._call("generate_word_extras", word)
        return self.extras

    def generate_article(self, theme, words):
        self._call("generate_article", theme, words)
        return self.article

    def review_writing(self, theme, text):
        self._call("review_writing", theme, text)
        return WritingFeedback(score=6, critique="Good start.", improved_version=text)

    def chat_with_tutor(self, theme, text, critique, history, question):
        self._call("chat_with_tutor", theme, text, critique, history, question)
        return "Keep practising."

    def generate_word_details(self, word, theme, difficulty):
        self._call("generate_word_details", word, theme, difficulty)
        return make_word(word, f"The word {word} appears here.")

    def generate_vocabulary(self, theme, difficulty, exclude=None):
        self._call("generate_vocabulary", theme, difficulty, list(exclude or []))
        batch = self.vocabulary_batches.pop(0) if self.vocabulary_batches else ["orbit", "comet"]
        return [make_word(w, f"The {w} is bright.") for w in batch]

    def names(self):
        return [name for name, _ in self.calls]


def make_word(word="photosynthesis", sentence="Plants use photosynthesis to make food."):
    return WordUnit(
        word=word,
        phonetic="/ˌfəʊtəʊˈsɪnθəsɪs/",
        definition="the process plants use to turn light into energy",
        translation="光合作用",
        example_sentence=sentence,
        syllables="pho-to-syn-the-sis",
        part_of_speech="noun",
    )


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def dispatcher():
    return ManualDispatcher()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def microphone():
    return FakeMicrophone()


@pytest.fixture
def content():
    return FakeContent()


@pytest.fixture
def controller(sink):
    return PlaybackController(sink=sink)


@pytest.fixture
def player(content, controller, dispatcher):
    return SpeechPlayer(content, controller=controller, dispatcher=dispatcher)


@pytest.fixture
def capture(microphone, scheduler, clock):
    return SpeechCapture(source=microphone, scheduler=scheduler, clock=clock,
                         threshold=0.015, silence_ms=1200, no_speech_ms=8000, tick_hz=60)


@pytest.fixture
def store(tmp_path):
    return ProgressStore(tmp_path / "progress")


@pytest.fixture
def words():
    return [
        make_word(),
        make_word("chlorophyll", "Chlorophyll makes leaves green."),
        make_word("stomata", "Stomata let the leaf breathe."),
    ]

"""Per-word drill: Learn -> Drill (copy x2, recall x1) -> CopySentence -> MakeSentence.

All methods run on the loop thread. Collaborator calls go through the
dispatcher and come back as callbacks; every callback carries the token that
was current when the call was issued and is dropped if the learner has moved
on (other word, other step, or the drill was closed).
"""
from __future__ import annotations
import datetime as _dt
import uuid
from typing import Callable, Optional

from kivy.logger import Logger

from lingua_drill.errors import CaptureUnavailable
from lingua_drill.models.content import PronunciationResult, SentenceFeedback, WordExtras, WordUnit
from lingua_drill.models.state import AudioClip, ChatMessage, DrillState, MistakeKind, MistakeRecord, Step
from lingua_drill.services.dispatch import ThreadDispatcher
from lingua_drill.services.recorder import SpeechCapture
from lingua_drill.services.text_compare import (
    Diagnosis, diagnose_mismatch, sentences_match, syllable_split_points, words_match,
)
from lingua_drill.services.tts import SpeechPlayer
from lingua_drill.settings import settings

POINTS_COPY = 1
POINTS_RECALL = 3
POINTS_COPY_SENTENCE = 5
POINTS_SENTENCE = 10
POINTS_PRONUNCIATION = 5
REPETITIONS = 3
RECALL_REPETITION = 2

MSG_SPELLING = "Incorrect spelling. Try again!"
MSG_NO_MIC = "Could not access microphone. Please check permissions."
MSG_PRONUNCIATION_FAILED = "Failed to analyze pronunciation. Please try again."
MSG_CHECK_FAILED = "Could not check your sentence. Please try again."
MSG_ASK_FAILED = "Could not get an answer. Please try again."


class WordDrill:
    def __init__(self, words: list[WordUnit], content, *,
                 player: SpeechPlayer | None = None,
                 recorder: SpeechCapture | None = None,
                 dispatcher: ThreadDispatcher | None = None,
                 on_points: Optional[Callable[[int], None]] = None,
                 on_mistake: Optional[Callable[[MistakeRecord], None]] = None,
                 on_complete: Optional[Callable[[], None]] = None,
                 today: Optional[Callable[[], str]] = None,
                 pass_score: int | None = None):
        if not words:
            raise ValueError("a drill needs at least one word")
        self.words: list[WordUnit] = list(words)
        self.state = DrillState()
        self._content = content
        self._dispatcher = dispatcher or ThreadDispatcher()
        self._player = player or SpeechPlayer(content, dispatcher=self._dispatcher)
        self._recorder = recorder or SpeechCapture()
        self._on_points = on_points
        self._on_mistake = on_mistake
        self._on_complete = on_complete
        self._today = today or (lambda: _dt.date.today().isoformat())
        self.pass_score = settings.pronunciation_pass_score if pass_score is None else pass_score

        self._active = True
        self.completed = False
        # bumped on word change / close; step epoch bumped on every step change
        self._word_token = 0
        self._step_epoch = 0
        self.points_earned = 0
        self.notice: Optional[str] = None
        self._reset_transient()

    # ---- read-only views ----
    @property
    def current_word(self) -> WordUnit:
        return self.words[self.state.current_index]

    @property
    def step(self) -> Step:
        return self.state.step

    @property
    def repetition_count(self) -> int:
        return self.state.repetition_count

    @property
    def is_hidden_mode(self) -> bool:
        return self.state.step is Step.DRILL and self.state.repetition_count >= RECALL_REPETITION

    @property
    def is_recording(self) -> bool:
        return self._recorder.is_recording

    @property
    def copy_hint(self) -> Optional[str]:
        return self.copy_error.message if self.copy_error else None

    @property
    def progress(self) -> float:
        return (self.state.current_index + 1) / len(self.words)

    # ---- lifecycle ----
    def start(self):
        self._fetch_extras()
        self._on_enter()

    def close(self):
        if not self._active:
            return
        self._active = False
        self._word_token += 1
        self._recorder.stop(discard=True)
        self._player.stop()
        self.is_playing = False

    def _reset_transient(self):
        self.current_input = ""
        self.sentence_input = ""
        self.word_error: Optional[str] = None
        self.copy_error: Optional[Diagnosis] = None
        self.feedback: Optional[SentenceFeedback] = None
        self.chat_history: list[ChatMessage] = []
        self.pronunciation_result: Optional[PronunciationResult] = None
        self.is_playing = False
        self.is_checking = False
        self.is_asking = False
        self.is_analyzing = False
        self.splits: set[int] = set()
        self.stress: set[int] = set()

    def _clear_downstream(self):
        self.current_input = ""
        self.sentence_input = ""
        self.word_error = None
        self.copy_error = None
        self.feedback = None
        self.chat_history = []
        self.is_checking = False
        self.is_asking = False
        self.pronunciation_result = None

    def _set_step(self, step: Step):
        self.state.step = step
        self._step_epoch += 1

    def _on_enter(self):
        """Auto-play for the step just entered."""
        unit = self.current_word
        step = self.state.step
        if step is Step.LEARN:
            self.play_audio(unit.word)
        elif step is Step.DRILL:
            if self.state.repetition_count in (0, RECALL_REPETITION):
                self.play_audio(unit.word)
        elif step is Step.COPY_SENTENCE:
            self.play_audio(unit.example_sentence)

    def _change_word(self, index: int, step: Step):
        self._word_token += 1
        self._recorder.stop(discard=True)
        self.stop_audio()
        self.state.current_index = index
        self.state.reset_word()
        self._set_step(step)
        self._reset_transient()
        self.notice = None
        Logger.debug(f"Drill: word {index + 1}/{len(self.words)} {self.current_word.word!r} at {step.value}")
        self._fetch_extras()
        self._on_enter()

    def _is_current(self, word_token: int, step_epoch: int | None = None) -> bool:
        if not self._active or word_token != self._word_token:
            return False
        return step_epoch is None or step_epoch == self._step_epoch

    # ---- scoring / mistakes ----
    def _award(self, points: int):
        self.points_earned += points
        if self._on_points is not None:
            self._on_points(points)

    def _record_mistake(self, kind: MistakeKind, user_input: str, correction: Optional[str],
                        explanation: Optional[str] = None, context: Optional[str] = None):
        unit = self.current_word
        record = MistakeRecord(
            id=uuid.uuid4().hex,
            kind=kind,
            date=self._today(),
            word=unit.word,
            user_input=user_input,
            correction=correction,
            explanation=explanation,
            translation=unit.translation,
            context=context,
        )
        if self._on_mistake is not None:
            self._on_mistake(record)

    # ---- audio ----
    def play_audio(self, text: str):
        if not self._active or not text:
            return
        self._player.speak(text, on_playing=self._set_playing)

    def _set_playing(self, flag: bool):
        if self._active:
            self.is_playing = flag

    def stop_audio(self):
        self._player.stop()
        self.is_playing = False

    def toggle_recording(self, target_text: str):
        if self._recorder.is_recording:
            self.stop_recording()
        else:
            self.start_recording(target_text)

    def start_recording(self, target_text: str) -> bool:
        if not self._active:
            return False
        self.pronunciation_result = None
        token = self._word_token
        try:
            self._recorder.start(lambda clip: self._analyze_audio(clip, target_text, token))
        except CaptureUnavailable:
            self.notice = MSG_NO_MIC
            return False
        return True

    def stop_recording(self, discard: bool = False):
        self._recorder.stop(discard=discard)

    def _analyze_audio(self, clip: AudioClip, target_text: str, token: int):
        if not self._is_current(token):
            return
        self.is_analyzing = True

        def done(result: PronunciationResult):
            if not self._is_current(token):
                Logger.debug("Drill: dropping stale pronunciation result")
                return
            self.is_analyzing = False
            self.pronunciation_result = result
            if result.score >= self.pass_score and not self.state.pronunciation_points_awarded:
                self.state.pronunciation_points_awarded = True
                self._award(POINTS_PRONUNCIATION)

        def failed(err):
            Logger.warning(f"Drill: pronunciation analysis failed: {err}")
            if self._is_current(token):
                self.is_analyzing = False
                self.notice = MSG_PRONUNCIATION_FAILED

        self._dispatcher.submit(self._content.grade_pronunciation, clip, target_text,
                                on_result=done, on_error=failed)

    # ---- extras ----
    def _fetch_extras(self):
        unit = self.current_word
        if unit.extras is not None:
            return
        token, index = self._word_token, self.state.current_index

        def done(extras: WordExtras):
            if not self._is_current(token):
                return
            if self.words[index].word == unit.word:
                self.words[index] = self.words[index].with_extras(extras)

        def failed(err):
            Logger.warning(f"Drill: could not fetch extras for {unit.word!r}: {err}")

        self._dispatcher.submit(self._content.generate_word_extras, unit.word,
                                on_result=done, on_error=failed)

    # ---- syllables ----
    def toggle_split(self, index: int):
        self.splits ^= {index}

    def toggle_stress(self, index: int):
        self.stress ^= {index}

    def reveal_syllables(self):
        if self.current_word.syllables:
            self.splits = syllable_split_points(self.current_word.syllables)

    # ---- submissions ----
    def submit_word(self, text: str) -> bool:
        if not self._active or self.state.step is not Step.DRILL:
            return False
        unit = self.current_word
        self.current_input = text
        if words_match(text, unit.word):
            count = self.state.repetition_count
            # back in Drill after finishing it: no second round of points
            if count < REPETITIONS:
                self._award(POINTS_COPY if count < RECALL_REPETITION else POINTS_RECALL)
                self.state.repetition_count = count + 1
            self.current_input = ""
            self.word_error = None
            if self.state.repetition_count >= REPETITIONS:
                self._set_step(Step.COPY_SENTENCE)
            self._on_enter()
            return True

        self.word_error = MSG_SPELLING
        self.play_audio(unit.word)
        self._record_mistake(MistakeKind.SPELLING, text, unit.word, context=unit.definition)
        return False

    def submit_copy(self, text: str) -> bool:
        if not self._active or self.state.step is not Step.COPY_SENTENCE:
            return False
        target = self.current_word.example_sentence
        self.current_input = text
        if sentences_match(text, target):
            self._award(POINTS_COPY_SENTENCE)
            self.current_input = ""
            self.copy_error = None
            self._set_step(Step.MAKE_SENTENCE)
            self._on_enter()
            return True
        # not a vocabulary mistake, nothing is logged
        self.copy_error = diagnose_mismatch(text, target)
        return False

    def submit_sentence(self, text: str) -> bool:
        if not self._active or self.state.step is not Step.MAKE_SENTENCE:
            return False
        if not text.strip() or self.is_checking:
            return False
        unit = self.current_word
        self.sentence_input = text
        self.is_checking = True
        token, epoch = self._word_token, self._step_epoch

        def done(feedback: SentenceFeedback):
            if not self._is_current(token, epoch):
                Logger.debug("Drill: dropping stale sentence feedback")
                return
            self.is_checking = False
            self.feedback = feedback
            if feedback.is_correct:
                if not self.state.sentence_points_awarded:
                    self.state.sentence_points_awarded = True
                    self._award(POINTS_SENTENCE)
            else:
                self._record_mistake(
                    MistakeKind.GRAMMAR, text, feedback.corrected_sentence,
                    explanation=feedback.explanation, context=f"Target word: {unit.word}",
                )

        def failed(err):
            Logger.warning(f"Drill: sentence check failed: {err}")
            if self._is_current(token, epoch):
                self.is_checking = False
                self.notice = MSG_CHECK_FAILED

        self._dispatcher.submit(self._content.grade_sentence, unit.word, text,
                                on_result=done, on_error=failed)
        return True

    def retry_sentence(self):
        # the points flag survives retries
        self._step_epoch += 1
        self.sentence_input = ""
        self.feedback = None
        self.is_checking = False
        self.is_asking = False
        self.chat_history = []

    def ask_follow_up(self, question: str) -> bool:
        if not self._active or not question.strip() or self.is_asking or self.feedback is None:
            return False
        unit = self.current_word
        previous = list(self.chat_history)
        self.chat_history.append(ChatMessage("user", question))
        self.is_asking = True
        token, epoch = self._word_token, self._step_epoch

        def done(answer):
            if not self._is_current(token, epoch):
                return
            self.is_asking = False
            self.chat_history.append(ChatMessage("ai", answer.content, answer.translation))

        def failed(err):
            Logger.warning(f"Drill: follow-up question failed: {err}")
            if self._is_current(token, epoch):
                self.is_asking = False
                self.notice = MSG_ASK_FAILED

        self._dispatcher.submit(self._content.answer_follow_up, unit.word, self.sentence_input,
                                self.feedback, previous, question, on_result=done, on_error=failed)
        return True

    # ---- navigation ----
    def advance(self) -> bool:
        if not self._active:
            return False
        step = self.state.step
        if step is Step.LEARN:
            self.state.repetition_count = 0
            self._set_step(Step.DRILL)
        elif step is Step.DRILL:
            self._set_step(Step.COPY_SENTENCE)
        elif step is Step.COPY_SENTENCE:
            self._set_step(Step.MAKE_SENTENCE)
        else:
            if self.feedback is None:
                return False
            return self.next_word()
        self.word_error = None
        self.copy_error = None
        self.current_input = ""
        self._on_enter()
        return True

    def next_word(self) -> bool:
        if self.state.current_index < len(self.words) - 1:
            self._change_word(self.state.current_index + 1, Step.LEARN)
            return True
        self.completed = True
        self.close()
        if self._on_complete is not None:
            self._on_complete()
        return True

    def go_back(self) -> bool:
        if not self._active:
            return False
        step = self.state.step
        if step is Step.LEARN:
            if self.state.current_index == 0:
                return False
            # lands on the previous word's last step, not its first
            self._change_word(self.state.current_index - 1, Step.MAKE_SENTENCE)
            return True
        previous = {
            Step.DRILL: Step.LEARN,
            Step.COPY_SENTENCE: Step.DRILL,
            Step.MAKE_SENTENCE: Step.COPY_SENTENCE,
        }[step]
        self._set_step(previous)
        self._clear_downstream()
        self._on_enter()
        return True

    def jump_to(self, index: int) -> bool:
        if not self._active or not 0 <= index < len(self.words):
            return False
        self._change_word(index, Step.LEARN)
        return True

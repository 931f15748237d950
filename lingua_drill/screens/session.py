from __future__ import annotations
import datetime as _dt
import re
import uuid
from enum import Enum
from typing import Callable, Optional

from kivy.logger import Logger

from lingua_drill.errors import CaptureUnavailable
from lingua_drill.models.content import ArticleData, PronunciationResult, WordUnit, WritingFeedback
from lingua_drill.models.state import AudioClip, ChatMessage, HistoryEntry, MistakeRecord
from lingua_drill.persistence.progress_store import ProgressStore
from lingua_drill.screens.learn import MSG_NO_MIC, MSG_PRONUNCIATION_FAILED, WordDrill
from lingua_drill.services.dispatch import ThreadDispatcher
from lingua_drill.services.recorder import SpeechCapture
from lingua_drill.services.tts import SpeechPlayer
from lingua_drill.settings import settings

POINTS_ARTICLE_READING = 15
POINTS_ARTICLE_COMPLETE = 20
MAX_WRITING_POINTS = 100

_WORD_SEPARATORS = re.compile(r"[,\s\u3000\uff0c\u3001\u2013\u2014-]+")


class Stage(str, Enum):
    WORD_LEARNING = "word_learning"
    ARTICLE_GENERATION = "article_generation"
    ARTICLE_STUDY = "article_study"
    FREE_WRITING = "free_writing"
    FINISHED = "finished"


def parse_word_list(text: str) -> list[str]:
    seen, out = set(), []
    for w in _WORD_SEPARATORS.split(text or ""):
        w = w.strip()
        if w and w not in seen:
            seen.add(w)
            out.append(w)
    return out


def merge_word_lists(*lists: list[WordUnit]) -> list[WordUnit]:
    merged: dict[str, WordUnit] = {}
    for units in lists:
        for unit in units:
            merged[unit.word] = unit
    return list(merged.values())


class ArticleReading:
    """Read-aloud practice on the generated article."""

    def __init__(self, article: ArticleData, content, player: SpeechPlayer, recorder: SpeechCapture,
                 dispatcher: ThreadDispatcher, on_points: Callable[[int], None], pass_score: int):
        self.article = article
        self._content = content
        self._player = player
        self._recorder = recorder
        self._dispatcher = dispatcher
        self._on_points = on_points
        self.pass_score = pass_score
        self.is_playing = False
        self.is_analyzing = False
        self.pronunciation_result: Optional[PronunciationResult] = None
        self.notice: Optional[str] = None
        self._active = True

    @property
    def is_recording(self) -> bool:
        return self._recorder.is_recording

    def toggle_play(self):
        if not self._active:
            return
        if self.is_playing:
            self._player.stop()
            self.is_playing = False
            return
        self._player.speak(f"{self.article.title}. {self.article.content}", on_playing=self._set_playing)

    def _set_playing(self, flag: bool):
        if self._active:
            self.is_playing = flag

    def toggle_recording(self):
        if not self._active:
            return
        if self._recorder.is_recording:
            self._recorder.stop()
            return
        self.pronunciation_result = None
        try:
            self._recorder.start(self._analyze)
        except CaptureUnavailable:
            self.notice = MSG_NO_MIC

    def _analyze(self, clip: AudioClip):
        if not self._active:
            return
        self.is_analyzing = True

        def done(result: PronunciationResult):
            if not self._active:
                return
            self.is_analyzing = False
            self.pronunciation_result = result
            # every passing reading earns the bonus
            if result.score >= self.pass_score:
                self._on_points(POINTS_ARTICLE_READING)

        def failed(err):
            Logger.warning(f"Session: article reading analysis failed: {err}")
            if self._active:
                self.is_analyzing = False
                self.notice = MSG_PRONUNCIATION_FAILED

        self._dispatcher.submit(self._content.grade_pronunciation, clip, self.article.content,
                                on_result=done, on_error=failed)

    def close(self):
        self._active = False
        self._recorder.stop(discard=True)
        self._player.stop()
        self.is_playing = False


class FreeWriting:
    def __init__(self, theme: str, words: list[WordUnit], content, dispatcher: ThreadDispatcher,
                 on_points: Callable[[int], None], store: ProgressStore, username: str):
        self.theme = theme
        self.words = words
        self._content = content
        self._dispatcher = dispatcher
        self._on_points = on_points
        self._store = store
        self._username = username
        self.text = ""
        self.feedback: Optional[WritingFeedback] = None
        self.chat_history: list[ChatMessage] = []
        self.is_reviewing = False
        self.is_chatting = False
        self.notice: Optional[str] = None
        self._active = True
        notebook = set(store.get_notebook(username))
        self.saved_words: set[str] = {w.word for w in words if w.word in notebook}

    def submit(self, text: str) -> bool:
        if not self._active or not text.strip() or self.is_reviewing:
            return False
        self.text = text
        self.is_reviewing = True

        def done(feedback: WritingFeedback):
            if not self._active:
                return
            self.is_reviewing = False
            self.feedback = feedback
            self._on_points(min(len(text.split()), MAX_WRITING_POINTS))

        def failed(err):
            Logger.warning(f"Session: writing review failed: {err}")
            if self._active:
                self.is_reviewing = False
                self.notice = "Could not review your writing. Please try again."

        self._dispatcher.submit(self._content.review_writing, self.theme, text, on_result=done, on_error=failed)
        return True

    def chat(self, question: str) -> bool:
        if not self._active or not question.strip() or self.is_chatting or self.feedback is None:
            return False
        previous = list(self.chat_history)
        self.chat_history.append(ChatMessage("user", question))
        self.is_chatting = True

        def done(answer: str):
            if not self._active:
                return
            self.is_chatting = False
            self.chat_history.append(ChatMessage("ai", answer))

        def failed(err):
            Logger.warning(f"Session: tutor chat failed: {err}")
            if self._active:
                self.is_chatting = False
                self.notice = "Could not get an answer. Please try again."

        self._dispatcher.submit(self._content.chat_with_tutor, self.theme, self.text, self.feedback.critique,
                                previous, question, on_result=done, on_error=failed)
        return True

    def toggle_saved_word(self, word: str) -> bool:
        notebook = self._store.get_notebook(self._username)
        if word in self.saved_words:
            self.saved_words.discard(word)
            notebook = [w for w in notebook if w != word]
        else:
            self.saved_words.add(word)
            if word not in notebook:
                notebook.append(word)
        self._store.save_notebook(self._username, notebook)
        return word in self.saved_words

    def close(self):
        self._active = False
        self.is_reviewing = False
        self.is_chatting = False


class LearningSession:
    """Word list -> per-word drill -> article study -> free writing."""

    def __init__(self, username: str, theme: str, words: list[WordUnit], content, store: ProgressStore, *,
                 difficulty: str = "B2", player: SpeechPlayer | None = None,
                 recorder: SpeechCapture | None = None, dispatcher: ThreadDispatcher | None = None,
                 today: Optional[Callable[[], str]] = None):
        self.username = username
        self.theme = theme or "Custom Session"
        self.difficulty = difficulty
        self.words = merge_word_lists(words)
        if not self.words:
            raise ValueError("You need at least one word to start.")
        self._content = content
        self._store = store
        self._dispatcher = dispatcher or ThreadDispatcher()
        self._player = player or SpeechPlayer(content, dispatcher=self._dispatcher)
        self._recorder = recorder or SpeechCapture()
        self._today = today or (lambda: _dt.date.today().isoformat())

        self.stage = Stage.WORD_LEARNING
        self.points = 0
        self.drill: Optional[WordDrill] = None
        self.article: Optional[ArticleData] = None
        self.reading: Optional[ArticleReading] = None
        self.writing: Optional[FreeWriting] = None

    def start(self):
        self._store.add_history(self.username, HistoryEntry(
            id=uuid.uuid4().hex,
            date=self._today(),
            theme=self.theme,
            difficulty=self.difficulty,
            words=[w.word for w in self.words],
        ))
        self.drill = WordDrill(
            self.words, self._content,
            player=self._player, recorder=self._recorder, dispatcher=self._dispatcher,
            on_points=self.add_points, on_mistake=self._record_mistake,
            on_complete=self._words_complete, today=self._today,
        )
        self.drill.start()
        Logger.info(f"Session: started {self.theme!r} with {len(self.words)} words")

    def add_points(self, points: int):
        self.points += points
        self._store.save_points(self.username, self._store.get_points(self.username) + points)

    def _record_mistake(self, record: MistakeRecord):
        self._store.add_mistake(self.username, record)

    def _words_complete(self):
        self.stage = Stage.ARTICLE_GENERATION
        if self.article is not None:
            self._open_article(self.article)
            return

        def failed(err):
            Logger.warning(f"Session: article generation failed, skipping to writing: {err}")
            if self.stage is Stage.ARTICLE_GENERATION:
                self._open_writing()

        self._dispatcher.submit(self._content.generate_article, self.theme, [w.word for w in self.words],
                                on_result=self._open_article, on_error=failed)

    def _open_article(self, article: ArticleData):
        if self.stage is not Stage.ARTICLE_GENERATION:
            return
        self.article = article
        self.reading = ArticleReading(
            article, self._content, self._player, self._recorder, self._dispatcher,
            self.add_points, settings.pronunciation_pass_score,
        )
        self.stage = Stage.ARTICLE_STUDY

    def complete_article(self):
        if self.stage is not Stage.ARTICLE_STUDY:
            return
        if self.reading is not None:
            self.reading.close()
        self.add_points(POINTS_ARTICLE_COMPLETE)
        self._open_writing()

    def _open_writing(self):
        self.writing = FreeWriting(self.theme, self.words, self._content, self._dispatcher,
                                   self.add_points, self._store, self.username)
        self.stage = Stage.FREE_WRITING

    def finish(self):
        if self.drill is not None:
            self.drill.close()
        if self.reading is not None:
            self.reading.close()
        if self.writing is not None:
            self.writing.close()
        self.stage = Stage.FINISHED
        Logger.info(f"Session: finished with {self.points} points")

"""Builds the word list for a lesson before it starts.

Words come from a theme, from a typed list, from a past history entry or from
selected review words. `learned` holds batches already set aside for the
lesson; `words` is the batch currently on show. Every word ever offered for
the theme is remembered so new batches never repeat it.
"""
from __future__ import annotations
import datetime as _dt
from typing import Callable, Optional

from kivy.logger import Logger

from lingua_drill.models.content import WordUnit
from lingua_drill.models.state import HistoryEntry
from lingua_drill.persistence.progress_store import ProgressStore
from lingua_drill.screens.session import LearningSession, merge_word_lists, parse_word_list
from lingua_drill.services.dispatch import ThreadDispatcher
from lingua_drill.services.recorder import SpeechCapture
from lingua_drill.services.tts import SpeechPlayer

CUSTOM_THEME = "Custom Session"
GENERAL_THEME = "General"
DEFAULT_DIFFICULTY = "B2"

MSG_GENERATE_FAILED = "Failed to generate lesson. Please try again."
MSG_DETAILS_FAILED = "Failed to fetch details for some words."
MSG_NO_WORDS = "You need at least one word to start."


class LessonBuilder:
    def __init__(self, username: str, content, store: ProgressStore, *,
                 dispatcher: ThreadDispatcher | None = None,
                 player: SpeechPlayer | None = None,
                 recorder: SpeechCapture | None = None,
                 today: Optional[Callable[[], str]] = None):
        self.username = username
        self._content = content
        self._store = store
        self._dispatcher = dispatcher or ThreadDispatcher()
        self._player = player
        self._recorder = recorder
        self._today = today or (lambda: _dt.date.today().isoformat())

        self.theme = ""
        self.difficulty = DEFAULT_DIFFICULTY
        self.words: list[WordUnit] = []
        self.learned: list[WordUnit] = []
        self.seen: set[str] = set()
        self.is_loading = False
        self.notice: Optional[str] = None
        # bumped by every new request; replies carrying an older value are dropped
        self._request = 0

    @property
    def total(self) -> int:
        return len(merge_word_lists(self.learned, self.words))

    def _remember(self, units: list[WordUnit]):
        self.seen.update(u.word.lower() for u in units)

    def _submit(self, fn, *args, on_result: Callable, failure: str) -> bool:
        self._request += 1
        request = self._request
        self.is_loading = True
        self.notice = None

        def done(value):
            if request != self._request:
                return
            self.is_loading = False
            on_result(value)

        def failed(err):
            Logger.warning(f"Lesson: {getattr(fn, '__name__', fn)} failed: {err}")
            if request == self._request:
                self.is_loading = False
                self.notice = failure

        self._dispatcher.submit(fn, *args, on_result=done, on_error=failed)
        return True

    def _fetch_details(self, words: list[str], theme: str, difficulty: str) -> list[WordUnit]:
        return [self._content.generate_word_details(w, theme, difficulty) for w in words]

    # ---- sources ----
    def generate(self, theme: str, difficulty: str) -> bool:
        self.theme, self.difficulty = theme, difficulty
        self.words, self.learned, self.seen = [], [], set()

        def apply(units):
            self._remember(units)
            self.words = list(units)

        return self._submit(self._content.generate_vocabulary, theme, difficulty, [],
                            on_result=apply, failure=MSG_GENERATE_FAILED)

    def start_custom(self, text: str) -> bool:
        words = parse_word_list(text)
        if not words:
            return False
        self.theme, self.difficulty = CUSTOM_THEME, DEFAULT_DIFFICULTY
        self.words, self.learned, self.seen = [], [], set()

        def apply(units):
            self._remember(units)
            self.words = list(units)

        return self._submit(self._fetch_details, words, GENERAL_THEME, DEFAULT_DIFFICULTY,
                            on_result=apply, failure=MSG_DETAILS_FAILED)

    def add_custom(self, text: str) -> bool:
        words = parse_word_list(text)
        if not words:
            return False

        def apply(units):
            self._remember(units)
            self.words = merge_word_lists(self.words, units)

        return self._submit(self._fetch_details, words, self.theme or GENERAL_THEME, self.difficulty,
                            on_result=apply, failure=MSG_DETAILS_FAILED)

    def regenerate(self) -> bool:
        """Replace the batch on show with words not offered before."""
        if not self.theme:
            return False

        def apply(units):
            self._remember(units)
            self.words = list(units)

        return self._submit(self._content.generate_vocabulary, self.theme, self.difficulty, sorted(self.seen),
                            on_result=apply, failure=MSG_GENERATE_FAILED)

    def add_batch(self) -> bool:
        if not self.words:
            return False
        self.learned = merge_word_lists(self.learned, self.words)
        return self.regenerate()

    def continue_theme(self) -> bool:
        """Keep this theme's words as learned and fetch a fresh batch for the next lesson."""
        if not self.theme:
            return False
        self.learned = merge_word_lists(self.learned, self.words)
        self._remember(self.words)
        self.words = []
        return self.regenerate()

    def load_history(self, entry: HistoryEntry) -> bool:
        if not entry.words:
            return False
        self.theme, self.difficulty = entry.theme, entry.difficulty or DEFAULT_DIFFICULTY
        self.words, self.learned = [], []

        def apply(units):
            self._remember(units)
            self.words = list(units)

        return self._submit(self._fetch_details, list(entry.words), entry.theme or GENERAL_THEME, self.difficulty,
                            on_result=apply, failure=MSG_DETAILS_FAILED)

    def practice_review(self, units: list[WordUnit]) -> bool:
        if not units:
            return False
        self._request += 1
        self.is_loading = False
        self.words, self.learned = list(units), []
        self._remember(units)
        return True

    def remove_word(self, index: int) -> bool:
        if not 0 <= index < len(self.words):
            return False
        del self.words[index]
        return True

    # ---- hand-off ----
    def start_session(self) -> Optional[LearningSession]:
        words = merge_word_lists(self.learned, self.words)
        if not words:
            self.notice = MSG_NO_WORDS
            return None
        session = LearningSession(
            self.username, self.theme or CUSTOM_THEME, words, self._content, self._store,
            difficulty=self.difficulty, player=self._player, recorder=self._recorder,
            dispatcher=self._dispatcher, today=self._today,
        )
        session.start()
        return session

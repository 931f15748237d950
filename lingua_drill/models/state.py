from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional


class Step(str, Enum):
    LEARN = "learn"
    DRILL = "drill"
    COPY_SENTENCE = "copy_sentence"
    MAKE_SENTENCE = "make_sentence"


class MistakeKind(str, Enum):
    SPELLING = "spelling"
    GRAMMAR = "grammar"


@dataclass(slots=True)
class DrillState:
    current_index: int = 0
    step: Step = Step.LEARN
    # completed copy/recall repetitions inside Drill (0..3)
    repetition_count: int = 0
    sentence_points_awarded: bool = False
    pronunciation_points_awarded: bool = False

    def reset_word(self):
        self.step = Step.LEARN
        self.repetition_count = 0
        self.sentence_points_awarded = False
        self.pronunciation_points_awarded = False


@dataclass(slots=True)
class MistakeRecord:
    id: str
    kind: MistakeKind
    date: str
    word: str
    user_input: str
    correction: Optional[str] = None
    explanation: Optional[str] = None
    translation: Optional[str] = None
    context: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MistakeRecord":
        return cls(
            id=str(data.get("id", "")),
            kind=MistakeKind(data.get("kind", MistakeKind.SPELLING.value)),
            date=str(data.get("date", "")),
            word=str(data.get("word", "")),
            user_input=str(data.get("user_input", "")),
            correction=data.get("correction"),
            explanation=data.get("explanation"),
            translation=data.get("translation"),
            context=data.get("context"),
        )


@dataclass(slots=True)
class ChatMessage:
    role: str  # "user" | "ai"
    content: str
    translation: Optional[str] = None


@dataclass(slots=True)
class HistoryEntry:
    id: str
    date: str
    theme: str
    difficulty: str
    words: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class AudioClip:
    data: bytes
    mime_type: str = "audio/wav"

    def __len__(self):
        return len(self.data)

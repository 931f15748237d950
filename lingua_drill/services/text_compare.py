from __future__ import annotations
import re
from dataclasses import dataclass

from lingua_drill.models.content import RootAssociation

_PUNCT = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()]")
_BOLD = re.compile(r"(\*\*.*?\*\*)")


def normalize_for_exact_match(s: str) -> str:
    return (s or "").strip().lower()


def words_match(user_input: str, target: str) -> bool:
    return normalize_for_exact_match(user_input) == normalize_for_exact_match(target)


def normalize_for_sentence_match(s: str) -> str:
    return _PUNCT.sub("", (s or "").lower()).strip()


def sentences_match(user_input: str, target: str) -> bool:
    return normalize_for_sentence_match(user_input) == normalize_for_sentence_match(target)


# ---- mismatch diagnosis ----
@dataclass(frozen=True)
class Diagnosis:
    @property
    def message(self) -> str:
        return "The sentence is not quite right."


@dataclass(frozen=True)
class MissingWord(Diagnosis):
    expected: str

    @property
    def message(self) -> str:
        return f'Missing word: It seems you stopped before "{self.expected}".'


@dataclass(frozen=True)
class Typo(Diagnosis):
    actual: str
    expected: str

    @property
    def message(self) -> str:
        return f'Typo detected: You wrote "{self.actual}" but expected "{self.expected}".'


@dataclass(frozen=True)
class ExtraWords(Diagnosis):
    @property
    def message(self) -> str:
        return "Extra words detected: The sentence is longer than expected."


@dataclass(frozen=True)
class GenericMismatch(Diagnosis):
    pass


def _tokens(s: str) -> list[str]:
    return _PUNCT.sub(" ", (s or "").lower()).split()


def diagnose_mismatch(user_input: str, target: str) -> Diagnosis:
    # first divergence only, no alignment
    got = _tokens(user_input)
    want = _tokens(target)
    for i, expected in enumerate(want):
        if i >= len(got):
            return MissingWord(expected)
        if got[i] != expected:
            return Typo(got[i], expected)
    if len(got) > len(want):
        return ExtraWords()
    return GenericMismatch()


# ---- display helpers ----
def split_bold_segments(text: str) -> list[tuple[bool, str]]:
    if not text:
        return []
    out = []
    for i, part in enumerate(_BOLD.split(text)):
        if not part:
            continue
        if i % 2:
            out.append((True, part[2:-2]))
        else:
            out.append((False, part))
    return out


def syllable_split_points(syllables: str) -> set[int]:
    parts = (syllables or "").lower().split("-")
    points, pos = set(), 0
    for part in parts[:-1]:
        pos += len(part)
        points.add(pos - 1)
    return points


def render_root_tree(root: RootAssociation) -> str:
    lines = [f"{root.root} (Root/Prefix)", f"│  Meaning: {root.meaning}", "│"]
    related = root.related_words
    for i, word in enumerate(related):
        last = i == len(related) - 1
        lines.append(f"{'└─' if last else '├─'} {word}")
        if not last:
            lines.append("│")
    return "\n".join(lines)

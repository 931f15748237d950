"""Payloads exchanged with the content-generation service.

Field names follow Python conventions; aliases match the camelCase JSON the
service produces so replies can be validated directly.
"""
from __future__ import annotations
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RootAssociation(_Payload):
    root: str
    meaning: str
    related_words: list[str] = Field(default_factory=list)


class WordExtras(_Payload):
    synonyms: list[str] = Field(default_factory=list)
    antonyms: list[str] = Field(default_factory=list)
    roots: list[RootAssociation] = Field(default_factory=list)


class WordUnit(_Payload):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    word: str
    phonetic: str = ""
    definition: str = ""
    definition_translation: str = ""
    translation: str = ""
    example_sentence: str = ""
    example_translation: str = ""
    syllables: str = ""
    part_of_speech: str = ""
    extras: Optional[WordExtras] = None

    def with_extras(self, extras: WordExtras) -> "WordUnit":
        return self.model_copy(update={"extras": extras})


class SentenceFeedback(_Payload):
    is_correct: bool
    corrected_sentence: Optional[str] = None
    explanation: str = ""
    explanation_translation: str = ""


class PronunciationResult(_Payload):
    score: int = Field(ge=0, le=100)
    feedback: str = ""
    feedback_translation: str = ""
    details: str = ""
    details_translation: str = ""


class FollowUpAnswer(_Payload):
    content: str
    translation: str = ""


class ArticleData(_Payload):
    title: str
    content: str
    translation: str = ""


class WritingFeedback(_Payload):
    score: int = Field(ge=0, le=9)
    critique: str = ""
    critique_translation: str = ""
    improved_version: str = ""
    improved_version_translation: str = ""

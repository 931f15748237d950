from __future__ import annotations
from typing import Any, Optional

import httpx
from kivy.logger import Logger
from pydantic import TypeAdapter, ValidationError

from lingua_drill.errors import GenerationFailure
from lingua_drill.models.content import (
    ArticleData, FollowUpAnswer, PronunciationResult, SentenceFeedback,
    WordExtras, WordUnit, WritingFeedback,
)
from lingua_drill.models.state import AudioClip, ChatMessage
from lingua_drill.services.audio_codec import encode
from lingua_drill.settings import settings


class ContentService:
    """Content generation and grading collaborator.

    Every call blocks; callers run them through a dispatcher. Failures raise
    GenerationFailure.
    """

    def synthesize_speech(self, text: str) -> Optional[str]:
        raise NotImplementedError

    def grade_sentence(self, word: str, sentence: str) -> SentenceFeedback:
        raise NotImplementedError

    def grade_pronunciation(self, clip: AudioClip, target_text: str) -> PronunciationResult:
        raise NotImplementedError

    def answer_follow_up(self, word: str, sentence: str, feedback: SentenceFeedback,
                         history: list[ChatMessage], question: str) -> FollowUpAnswer:
        raise NotImplementedError

    def generate_word_extras(self, word: str) -> WordExtras:
        raise NotImplementedError

    def generate_article(self, theme: str, words: list[str]) -> ArticleData:
        raise NotImplementedError

    def review_writing(self, theme: str, text: str) -> WritingFeedback:
        raise NotImplementedError

    def chat_with_tutor(self, theme: str, text: str, critique: str,
                        history: list[ChatMessage], question: str) -> str:
        raise NotImplementedError

    def generate_word_details(self, word: str, theme: str, difficulty: str) -> WordUnit:
        raise NotImplementedError

    def generate_vocabulary(self, theme: str, difficulty: str, exclude: list[str] | None = None) -> list[WordUnit]:
        raise NotImplementedError


# ---- response schemas (Gemini REST flavour) ----
def _str(description: str | None = None) -> dict:
    out: dict[str, Any] = {"type": "STRING"}
    if description:
        out["description"] = description
    return out


def _obj(properties: dict, required: list[str] | None = None) -> dict:
    return {"type": "OBJECT", "properties": properties, "required": required or list(properties)}


_WORD_SCHEMA = _obj({
    "word": _str(),
    "phonetic": _str(),
    "definition": _str(),
    "definitionTranslation": _str(),
    "translation": _str("meaning of the word itself"),
    "exampleSentence": _str(),
    "exampleTranslation": _str(),
    "syllables": _str("word split by hyphens, e.g. com-put-er"),
    "partOfSpeech": _str("e.g. noun, verb, adj"),
})
_EXTRAS_SCHEMA = _obj({
    "synonyms": {"type": "ARRAY", "items": _str()},
    "antonyms": {"type": "ARRAY", "items": _str()},
    "roots": {"type": "ARRAY", "items": _obj({
        "root": _str("e.g. 'bi-' or '-spect'"),
        "meaning": _str(),
        "relatedWords": {"type": "ARRAY", "items": _str()},
    })},
})
_SENTENCE_SCHEMA = _obj({
    "isCorrect": {"type": "BOOLEAN"},
    "correctedSentence": _str(),
    "explanation": _str(),
    "explanationTranslation": _str(),
}, required=["isCorrect", "explanation", "explanationTranslation"])
_PRONUNCIATION_SCHEMA = _obj({
    "score": {"type": "INTEGER"},
    "feedback": _str(),
    "feedbackTranslation": _str(),
    "details": _str(),
    "detailsTranslation": _str(),
})
_ANSWER_SCHEMA = _obj({"content": _str(), "translation": _str()})
_ARTICLE_SCHEMA = _obj({"title": _str(), "content": _str(), "translation": _str()})
_WRITING_SCHEMA = _obj({
    "score": {"type": "INTEGER"},
    "critique": _str(),
    "critiqueTranslation": _str(),
    "improvedVersion": _str(),
    "improvedVersionTranslation": _str(),
})

_EXAM_LEVELS = ("IELTS", "TOEFL", "SAT")


def _level_text(difficulty: str) -> str:
    return f"{difficulty} exam level" if difficulty in _EXAM_LEVELS else f"CEFR level {difficulty}"


def _history_text(history: list[ChatMessage], user: str, ai: str) -> str:
    return "\n".join(f"{user if m.role == 'user' else ai}: {m.content}" for m in history)


class GeminiContentService(ContentService):
    def __init__(self, api_key: str | None = None, *, model: str | None = None,
                 tts_model: str | None = None, voice: str | None = None,
                 base_url: str | None = None, translation_language: str | None = None,
                 client: httpx.Client | None = None):
        self.api_key = api_key or settings.gemini_api_key
        if not self.api_key:
            raise GenerationFailure("LINGUA_GEMINI_API_KEY is not configured")
        self.model = model or settings.gemini_model
        self.tts_model = tts_model or settings.gemini_tts_model
        self.voice = voice or settings.gemini_voice
        self.base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self.lang = translation_language or settings.translation_language
        self._client = client or httpx.Client(timeout=settings.request_timeout)

    def close(self):
        self._client.close()

    # ---- transport ----
    def _post(self, model: str, payload: dict) -> dict:
        url = f"{self.base_url}/{model}:generateContent"
        try:
            r = self._client.post(url, params={"key": self.api_key}, json=payload)
            r.raise_for_status()
            return r.json()
        except httpx.HTTPStatusError as e:
            Logger.warning(f"Content: {model} returned HTTP {e.response.status_code}")
            raise GenerationFailure(f"content service returned HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            Logger.warning(f"Content: request to {model} failed: {e}")
            raise GenerationFailure(f"content service unreachable: {e}") from e
        except ValueError as e:
            raise GenerationFailure("content service returned invalid JSON") from e

    @staticmethod
    def _first_part(data: dict) -> dict:
        try:
            return data["candidates"][0]["content"]["parts"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationFailure(f"unexpected content service reply: {str(data)[:200]}") from e

    def _generate_json(self, parts: list[dict], schema: dict, adapter):
        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"responseMimeType": "application/json", "responseSchema": schema},
        }
        text = self._first_part(self._post(self.model, payload)).get("text")
        if not text:
            raise GenerationFailure("content service returned no text")
        try:
            if isinstance(adapter, TypeAdapter):
                return adapter.validate_json(text)
            return adapter.model_validate_json(text)
        except ValidationError as e:
            raise GenerationFailure(f"content service reply did not match schema: {e.error_count()} error(s)") from e

    def _prompt(self, prompt: str, schema: dict, adapter):
        return self._generate_json([{"text": prompt}], schema, adapter)

    # ---- speech ----
    def synthesize_speech(self, text: str) -> Optional[str]:
        payload = {
            "contents": [{"parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": self.voice}}},
            },
        }
        data = self._post(self.tts_model, payload)
        try:
            return data["candidates"][0]["content"]["parts"][0]["inlineData"]["data"]
        except (KeyError, IndexError, TypeError):
            return None

    def grade_pronunciation(self, clip: AudioClip, target_text: str) -> PronunciationResult:
        prompt = (
            f'Listen to the attached audio. The user is attempting to read the following text: "{target_text}".\n'
            "Evaluate their pronunciation.\n"
            '1. "score": a score from 0 to 100.\n'
            '2. "feedback": a concise comment in English on the overall quality.\n'
            f'3. "feedbackTranslation": the feedback translated into {self.lang}.\n'
            '4. "details": specific mispronounced words, syllables or phonemes, in English.\n'
            f'5. "detailsTranslation": the details translated into {self.lang}.'
        )
        parts = [{"text": prompt}, {"inlineData": {"mimeType": clip.mime_type, "data": encode(clip.data)}}]
        return self._generate_json(parts, _PRONUNCIATION_SCHEMA, PronunciationResult)

    # ---- sentence grading ----
    def grade_sentence(self, word: str, sentence: str) -> SentenceFeedback:
        prompt = (
            f'Act as an expert English teacher. Review this sentence written with the target word "{word}".\n'
            f'User Sentence: "{sentence}"\n'
            '1. "isCorrect": true only if the sentence is grammatically correct AND uses the word naturally.\n'
            '2. "correctedSentence": a corrected, more natural version.\n'
            '3. "explanation": a critique in English. If incorrect, list only the categories with errors '
            "(**Spelling**, **Grammar**, **Expression**), one numbered point per line, with **bold** key terms. "
            "If correct, briefly praise the sentence.\n"
            f'4. "explanationTranslation": the explanation translated into {self.lang}.'
        )
        return self._prompt(prompt, _SENTENCE_SCHEMA, SentenceFeedback)

    def answer_follow_up(self, word, sentence, feedback, history, question) -> FollowUpAnswer:
        prompt = (
            "Act as an expert English teacher.\n"
            f'Target Word: "{word}"\n'
            f'Student\'s Sentence: "{sentence}"\n'
            f'Correction: "{feedback.corrected_sentence or "N/A"}"\n'
            f'Feedback Provided: "{feedback.explanation}"\n'
            f"Conversation History:\n{_history_text(history, 'Student', 'Teacher')}\n"
            f'Student Question: "{question}"\n'
            f"Answer in English and give a {self.lang} translation. Use a numbered list with one point "
            "per line when there are several points, keep it concise, and use **bold** for key terms."
        )
        return self._prompt(prompt, _ANSWER_SCHEMA, FollowUpAnswer)

    # ---- word content ----
    def generate_word_extras(self, word: str) -> WordExtras:
        prompt = (
            f'Generate advanced vocabulary details for the English word "{word}":\n'
            "1. 5 single-word synonyms.\n"
            "2. 5 single-word antonyms (empty list if none).\n"
            "3. 1-3 key roots, prefixes or suffixes, each with its meaning and 3-4 other English words derived from it."
        )
        return self._prompt(prompt, _EXTRAS_SCHEMA, WordExtras)

    def _word_fields(self, difficulty: str) -> str:
        return (
            "Include: IPA phonetic transcription, a simple English definition, "
            f"the definition translated into {self.lang} (definitionTranslation), "
            f"the {self.lang} meaning of the word itself (translation), "
            f"an example sentence at {difficulty} level and its {self.lang} translation, "
            "the word split into syllables with hyphens, and the part of speech."
        )

    def generate_word_details(self, word: str, theme: str, difficulty: str) -> WordUnit:
        prompt = (
            f'Generate details for the English vocabulary word "{word}" ({_level_text(difficulty)}) '
            f'related to the theme "{theme}". ' + self._word_fields(difficulty)
        )
        return self._prompt(prompt, _WORD_SCHEMA, WordUnit)

    def generate_vocabulary(self, theme: str, difficulty: str, exclude: list[str] | None = None) -> list[WordUnit]:
        prompt = (
            f'Generate 8 English vocabulary words at {_level_text(difficulty)} for the theme "{theme}". '
            + self._word_fields(difficulty)
        )
        if exclude:
            prompt += f" Do not include the following words: {', '.join(exclude)}."
        schema = {"type": "ARRAY", "items": _WORD_SCHEMA}
        return self._prompt(prompt, schema, TypeAdapter(list[WordUnit]))

    # ---- later stages ----
    def generate_article(self, theme: str, words: list[str]) -> ArticleData:
        prompt = (
            f'Write a short academic-style article (about 150-200 words) for English learners about "{theme}" '
            f"that naturally uses these words: {', '.join(words)}. Also provide a {self.lang} translation."
        )
        return self._prompt(prompt, _ARTICLE_SCHEMA, ArticleData)

    def review_writing(self, theme: str, text: str) -> WritingFeedback:
        prompt = (
            f'Review this short essay on the theme "{theme}".\n'
            f'User Text: "{text}"\n'
            '1. "score": an IELTS band estimate from 0 to 9.\n'
            '2. "critique": tips in English on vocabulary and coherence.\n'
            f'3. "critiqueTranslation": the critique translated into {self.lang}.\n'
            '4. "improvedVersion": a native-like rewrite of the text.\n'
            f'5. "improvedVersionTranslation": the rewrite translated into {self.lang}.'
        )
        return self._prompt(prompt, _WRITING_SCHEMA, WritingFeedback)

    def chat_with_tutor(self, theme, text, critique, history, question) -> str:
        prompt = (
            "You are a helpful English tutor.\n"
            f'Context: the user wrote an essay about "{theme}".\n'
            f'User\'s Essay: "{text}"\n'
            f'Your Critique: "{critique}"\n'
            f"Conversation History:\n{_history_text(history, 'User', 'AI')}\n"
            f'User Question: "{question}"\n'
            "Answer in English. Be encouraging and specific."
        )
        data = self._post(self.model, {"contents": [{"parts": [{"text": prompt}]}]})
        return self._first_part(data).get("text") or "I'm unable to answer that right now."

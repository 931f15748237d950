from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Content generation service (Gemini REST API)
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_tts_model: str = "gemini-2.5-flash-preview-tts"
    gemini_voice: str = "Kore"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    request_timeout: float = 30.0

    # TTS output is fixed by the service: PCM16 mono @ 24 kHz
    tts_sample_rate: int = 24000
    tts_channels: int = 1
    capture_sample_rate: int = 16000
    capture_channels: int = 1

    # Voice activity detection
    vad_threshold: float = 0.015
    vad_silence_ms: int = 1200
    vad_no_speech_ms: int = 8000
    vad_tick_hz: int = Field(default=60, gt=0)

    pronunciation_pass_score: int = 60
    # language of the *_translation fields produced by the content service
    translation_language: str = "Chinese"

    data_dir: Path = Path.home() / ".lingua_drill"

    model_config = SettingsConfigDict(env_prefix="LINGUA_", env_file=".env", extra="ignore")


settings = Settings()

class LinguaDrillError(Exception):
    """Base class for all errors raised by lingua_drill."""


class AudioPayloadError(LinguaDrillError):
    """A TTS payload could not be turned into samples; only that clip is dropped."""


class DecodeError(AudioPayloadError):
    pass


class FormatError(AudioPayloadError):
    pass


class CaptureUnavailable(LinguaDrillError):
    """No microphone, or permission to use it was denied."""


class GenerationFailure(LinguaDrillError):
    """A content-service call failed (network, quota or malformed reply)."""

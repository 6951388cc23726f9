# voicebot/errors.py
"""
Error types shared by the server and the client.

- CapabilityError    : the client cannot start a session (no usable encoding,
                       no microphone). Fatal to that session only.
- UpstreamError      : an external service (STT, chat model, TTS) failed.
- PipelineError      : the client's round trip to /api/voice failed.
- ConfigurationError : required settings missing at process start.
"""


class VoicebotError(Exception):
    """Base class for voicebot failures."""


class CapabilityError(VoicebotError):
    """The local audio stack cannot support a session."""


class UpstreamError(VoicebotError):
    """An external speech or language service returned an error."""


class PipelineError(VoicebotError):
    """The remote processing pipeline rejected or failed a request."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(VoicebotError, RuntimeError):
    """Required configuration is missing or invalid."""

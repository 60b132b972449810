"""
Error handling.

Exception classes shared by the pipeline stages. The orchestrator turns any of
these into a failed GenerationResult; the HTTP layer maps them to status codes.
"""

from typing import Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class ConfigurationError(PipelineError):
    """A provider or tool is not set up (missing key, missing binary)."""
    pass


class MediaToolMissingError(ConfigurationError):
    """FFmpeg is not installed or not on PATH."""
    pass


class VoiceConfigurationError(ConfigurationError):
    """Text-to-speech credentials are missing."""
    pass


class ProviderError(PipelineError):
    """A third-party provider failed (HTTP error, malformed reply, rate limit)."""
    pass


class ImageGenerationError(ProviderError):
    """An image provider returned nothing usable."""
    pass


class VoiceProviderError(ProviderError):
    """The text-to-speech provider failed."""
    pass


class CompileError(PipelineError):
    """Video compilation failures."""
    pass


class JobAlreadyRunningError(PipelineError):
    """A generation for the same book is still in flight."""
    pass


class StaleRecordError(PipelineError):
    """A book record changed since it was read."""
    pass

"""
Deep Reader - Error Types
Exceptions raised by the reading and rewriting engine.

Coverage shortfalls and loop ceilings are not exceptions: they are fed back
to the model as tool results or surfaced as warnings on the result.
"""

from typing import Optional


class DeepReaderError(Exception):
    """Base class for all engine errors."""
    pass


class ConfigurationError(DeepReaderError):
    """No usable reasoning provider is configured (e.g. missing API key)."""
    pass


class EmptyDocumentError(DeepReaderError):
    """The document has no readable content."""
    pass


class ChapterPlanEmptyError(DeepReaderError):
    """A rewrite session cannot start because no chapters were recognized."""
    pass


class GenerationError(DeepReaderError):
    """A leaf generation call failed."""

    def __init__(self, message: str, error_type: Optional[str] = None):
        super().__init__(message)
        self.error_type = error_type or "unknown"


class GenerationTimeoutError(GenerationError):
    """A leaf generation call exceeded its timeout."""

    def __init__(self, message: str = "Request timed out"):
        super().__init__(message, "timeout")


class RateLimitedError(GenerationError):
    """A leaf generation call was still rate limited after all retries."""

    def __init__(self, message: str = "Rate limit exceeded", attempts: int = 0):
        super().__init__(message, "rate_limited")
        self.attempts = attempts


def generation_error_for(message: str, error_type: Optional[str]) -> GenerationError:
    """Map a provider error classification onto the matching exception."""
    if error_type == "timeout":
        return GenerationTimeoutError(message or "Request timed out")
    if error_type == "rate_limited":
        return RateLimitedError(message or "Rate limit exceeded")
    return GenerationError(message or "Generation failed", error_type)

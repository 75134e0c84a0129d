"""
Error taxonomy for the extraction & generation engine.

  ConfigurationError   — credentials / endpoint missing (raised before any call)
  ProviderError        — transport or HTTP failure from a model provider
  ContentAbsentError   — the image was judged to hold no extractable content
  ParseError           — no parser strategy produced valid structured data
  GenerationError      — bulk generation could not produce a single record

CountShortfallWarning is not an exception: bulk generation issues it when it
returns fewer records than requested after exhausting its retries.
"""

from typing import Optional


class QuizEngineError(Exception):
    """Base class for every error raised by the engine."""


class ConfigurationError(QuizEngineError):
    pass


class ProviderError(QuizEngineError):
    def __init__(self, message: str, provider: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ContentAbsentError(QuizEngineError):
    def __init__(
        self,
        message: str = "No content found in image - please upload a clear image with visible text",
        raw_response: Optional[str] = None,
    ):
        super().__init__(message)
        self.raw_response = raw_response


class ParseError(QuizEngineError):
    """Carries the raw provider response so callers can show it for debugging."""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message)
        self.raw_response = raw_response


class GenerationError(QuizEngineError):
    pass


class CountShortfallWarning(UserWarning):
    def __init__(self, requested: int, produced: int):
        self.requested = requested
        self.produced = produced
        self.shortfall = requested - produced
        super().__init__(
            f"Generated {produced} out of {requested} requested questions "
            f"({self.shortfall} missing after retries)"
        )

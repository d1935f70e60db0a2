"""
Custom exceptions for the dispute bot, providing a structured error hierarchy.
"""
from typing import Optional


class BotBaseException(Exception):
    """Base exception for all custom exceptions in this bot."""

    pass


class ConfigurationError(BotBaseException):
    """Raised for errors in bot configuration, like missing keys or invalid values."""

    pass


class APIError(BotBaseException):
    """Raised for errors related to external API interactions (Telegram, OpenAI)."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class TransientNetworkError(APIError):
    """Raised on connectivity problems and timeouts; safe to retry at a higher level."""

    pass


class NotFoundError(APIError):
    """Raised when the platform reports a file handle as invalid or expired."""

    pass


class FileProcessingError(BotBaseException):
    """Raised for errors when processing user-uploaded files."""

    pass


class ExtractionFailure(BotBaseException):
    """Raised inside the content extractor; never surfaced to the user."""

    pass


class EmptyResponseError(BotBaseException):
    """Raised when the reasoning service produced no usable text."""

    pass

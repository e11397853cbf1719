"""Exception hierarchy for the EOS defenses bot."""
from __future__ import annotations


class DefenseBotError(RuntimeError):
    """Base class for all errors raised by the bot core."""


class ValidationError(DefenseBotError):
    """Raised when input has the wrong shape (empty code, malformed date)."""


class InvalidScheduleError(ValidationError):
    """Raised when a scheduled publish would not fire in the future."""


class NotFoundError(DefenseBotError):
    """Raised when an operation targets a record that does not exist."""


class StorageError(DefenseBotError):
    """Raised when the SQLite store cannot be read or written."""


class ImageProcessingError(DefenseBotError):
    """Raised when an opponent screenshot cannot be transformed."""


class TransportError(DefenseBotError):
    """Raised when a message cannot be delivered to Discord."""


__all__ = [
    "DefenseBotError",
    "ValidationError",
    "InvalidScheduleError",
    "NotFoundError",
    "StorageError",
    "ImageProcessingError",
    "TransportError",
]

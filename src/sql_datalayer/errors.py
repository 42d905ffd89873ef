"""Error taxonomy surfaced by the data layer."""

from __future__ import annotations

from typing import Optional


class LayerError(Exception):
    """Base class for all errors raised by dataset operations."""


class ConfigurationError(LayerError):
    """Raised when a mapping or dataset option is missing or malformed."""


class DecodeError(LayerError):
    """Raised when a continuation token cannot be decoded."""


class InternalError(LayerError):
    """Raised when store I/O, scanning, mapping or parsing fails.

    ``rollback_error`` is set when a failed flush could not be rolled back
    either; the original failure stays available as ``__cause__``.
    """

    def __init__(
        self, message: str, *, rollback_error: Optional[BaseException] = None
    ) -> None:
        if rollback_error is not None:
            message = f"{message} (rollback failed: {rollback_error})"
        super().__init__(message)
        self.rollback_error = rollback_error


class NotSupported(LayerError):
    """Raised for operations the layer refuses to attempt."""


class DatasetNotFound(LayerError):
    """Raised when a dataset name is not configured."""

    def __init__(self, name: str) -> None:
        super().__init__(f"dataset {name} not found")
        self.name = name


__all__ = [
    "ConfigurationError",
    "DatasetNotFound",
    "DecodeError",
    "InternalError",
    "LayerError",
    "NotSupported",
]

from __future__ import annotations

from dataclasses import dataclass


class DecodeError(ValueError):
    """Raised when image bytes cannot be parsed as an image at all."""


class TableFormatError(ValueError):
    """Raised when a product table is structurally unusable (no header, bad encoding)."""


class NoDataError(ValueError):
    """Raised when matching or composing is invoked without the data it requires."""


class InvalidUploadError(ValueError):
    """Raised when an uploaded file is not acceptable for its role."""


class UploadTooLargeError(InvalidUploadError):
    """Raised when an uploaded file exceeds the configured size limit."""


class SessionStorageError(RuntimeError):
    """Raised when a session storage operation fails in a non-recoverable way."""


@dataclass(slots=True, frozen=True)
class MetricComputationWarning:
    """
    A single image sub-metric that could not be computed.

    The analysis still completes; `default` is the value that was substituted
    for the failed metric.
    """

    metric: str
    message: str
    default: object = None

    def __str__(self) -> str:
        return f"{self.metric}: {self.message} (using default {self.default!r})"


@dataclass(slots=True, frozen=True)
class TableParseWarning:
    """A malformed row (or header cell) encountered while parsing a product table."""

    # Physical line number in the source table (1-based, header is line 1).
    line: int | None
    message: str

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f"Line {self.line}: {self.message}"

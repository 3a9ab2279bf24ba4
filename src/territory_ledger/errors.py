"""Exception hierarchy shared by the data access and business logic layers."""

from __future__ import annotations

from typing import Optional


class LedgerError(Exception):
    """Base class for every failure raised by the ledger batch."""


class ConfigurationError(LedgerError):
    """Raised when the run cannot start: bad count, missing file or setting."""


class NotFoundError(LedgerError):
    """Raised when an entity id is outside the registry."""


class UnknownRepresentative(NotFoundError):
    """Raised when a transaction references a representative that was never loaded."""


class UnknownTerritory(NotFoundError):
    """Raised when a representative points at a territory outside the registry."""


class MalformedRecord(LedgerError):
    """Raised when a record line cannot be decoded.

    The offending file, 1-based line number and raw text are kept on the
    instance so callers can report them.
    """

    def __init__(
        self,
        message: str,
        *,
        source: Optional[str] = None,
        line_number: Optional[int] = None,
        line: Optional[str] = None,
    ) -> None:
        self.source = source
        self.line_number = line_number
        self.line = line
        location = ""
        if source is not None:
            location = f"{source}"
        if line_number is not None:
            location = f"{location}:{line_number}" if location else f"line {line_number}"
        if location:
            message = f"{location}: {message}"
        if line is not None:
            message = f"{message} (record: {line!r})"
        super().__init__(message)


class EncodingOverflow(LedgerError):
    """Raised when a value no longer fits the fixed-width record layout."""


__all__ = [
    "LedgerError",
    "ConfigurationError",
    "NotFoundError",
    "UnknownRepresentative",
    "UnknownTerritory",
    "MalformedRecord",
    "EncodingOverflow",
]

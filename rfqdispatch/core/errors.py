"""
Error types raised to callers.

Schema drift and malformed data never raise; they degrade to neutral values.
The only error this package raises on purpose is a caller contract violation,
which points at a programming error upstream.
"""

from typing import Optional


class InvalidUsageError(ValueError):
    """A mandatory argument was missing, blank, or out of range."""

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


def require_identifier(value, field: str) -> str:
    """Return the trimmed identifier or raise if it is blank."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidUsageError(f"{field} must be a non-empty string", field=field)
    return value.strip()

from __future__ import annotations

"""Run-level errors.

These are configuration errors, raised before any row is processed; row and
field problems are reported through RowOutcome instead.
"""

__all__ = [
    "ImportSetupError",
]


class ImportSetupError(Exception):
    """Raised when an import cannot start.

    ``reason`` is an UPPER_SNAKE code used for the error log:
    TYPE_NOT_FOUND, TYPE_AMBIGUOUS, SOURCE_NOT_FOUND, NO_ROWS_MEMBER,
    INVALID_JOIN_SETTING, JOIN_NO_FIND_METHOD, UNKNOWN_IMPORT.
    """

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason

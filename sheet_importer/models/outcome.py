from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, Flag
from typing import Any

"""Per-row outcome models.

``RowStatus`` is the single status that governs control flow for a row;
``ResultType`` flags are combinable and only used for reporting and for the
``log_types`` filter.
"""

__all__ = [
    "FieldIssue",
    "ResultType",
    "RowOutcome",
    "RowStatus",
]


class ResultType(Flag):
    """Reportable row/field conditions (also the ``log_types`` filter)."""
    NONE = 0
    SKIP_NO_KEY = 1 << 0
    EMPTY_CELL = 1 << 1
    CONVERT_FAILS = 1 << 2
    JOIN_INDEX_MISMATCH = 1 << 3
    JOIN_NO_REFERENCE_ROW = 1 << 4
    JOIN_NO_FIND_METHOD = 1 << 5
    VERSION_MISMATCH = 1 << 6
    INVALID_KEY = 1 << 7

    ALL = (
        SKIP_NO_KEY
        | EMPTY_CELL
        | CONVERT_FAILS
        | JOIN_INDEX_MISMATCH
        | JOIN_NO_REFERENCE_ROW
        | JOIN_NO_FIND_METHOD
        | VERSION_MISMATCH
        | INVALID_KEY
    )

    @classmethod
    def from_names(cls, names: list[str] | tuple[str, ...]) -> ResultType:
        """Build a flag set from config names such as ``["CONVERT_FAILS"]``."""
        result = cls.NONE
        for name in names:
            result |= cls[name.strip().upper()]
        return result


class RowStatus(Enum):
    SUCCESS = "success"
    SKIPPED_NO_KEY = "skipped_no_key"
    CONVERSION_FAILED = "conversion_failed"
    VERSION_MISMATCH = "version_mismatch"
    JOIN_NO_REFERENCE_ROW = "join_no_reference_row"
    INVALID_KEY = "invalid_key"


@dataclass(frozen=True)
class FieldIssue:
    """A non-fatal problem with a single cell."""
    column: int  # 0-based column of the content slice
    member: str
    raw: str
    kind: ResultType  # EMPTY_CELL or CONVERT_FAILS


@dataclass
class RowOutcome:
    """Result of materializing one content row.

    ``line`` is the 1-based line of the source sheet (header rows included),
    which is what people see in a spreadsheet.
    """
    row_index: int
    line: int
    status: RowStatus
    flags: ResultType = ResultType.NONE
    path: str | None = None
    created: bool | None = None  # None: transient record
    record: Any = None
    issues: list[FieldIssue] = field(default_factory=list)
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is RowStatus.SUCCESS

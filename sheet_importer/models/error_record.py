from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for error logging.

One JSON Lines entry per reportable row/field/run condition. ``row=-1`` marks
run-level errors where no specific line applies, ``column=-1`` marks row-level
conditions.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        source: Sheet/CSV file name being imported
        record_type: Target record class name
        row: 1-based sheet line. -1 for run-level errors
        column: 1-based column. -1 when the whole row is concerned
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Human readable description
    """
    timestamp: str  # ISO8601 UTC
    source: str
    record_type: str
    row: int
    column: int
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(
        source: str,
        record_type: str,
        row: int,
        error_type: str,
        message: str,
        column: int = -1,
    ) -> ErrorRecord:
        """Create a new ErrorRecord stamped with the current UTC time."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            source=source,
            record_type=record_type,
            row=row,
            column=column,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import ErrorRecord
from ..models.outcome import ResultType, RowOutcome, RowStatus

"""Error log buffering.

- JSON Lines, fixed key set (see ErrorRecord)
- one ``logs/errors-YYYYMMDD-HHMMSS.log`` (UTC) per process, created lazily
- records are buffered during an import run and flushed once at its end
"""

__all__ = [
    "ErrorLogBuffer",
    "ErrorRecord",
    "records_for_outcome",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"

# キーなし行は想定内の入力なのでエラーログには書かない
_STATUS_ERROR_TYPES = {
    RowStatus.CONVERSION_FAILED: "VERSION_PARSE_ERROR",
    RowStatus.VERSION_MISMATCH: "VERSION_MISMATCH",
    RowStatus.JOIN_NO_REFERENCE_ROW: "JOIN_NO_REFERENCE_ROW",
    RowStatus.INVALID_KEY: "INVALID_KEY",
}


def records_for_outcome(source: str, record_type: str, outcome: RowOutcome) -> list[ErrorRecord]:
    """Error records describing one row outcome (empty for a clean row)."""
    records: list[ErrorRecord] = []
    error_type = _STATUS_ERROR_TYPES.get(outcome.status)
    if error_type is not None:
        records.append(
            ErrorRecord.create(
                source, record_type, outcome.line, error_type, outcome.message or outcome.status.value
            )
        )
    for issue in outcome.issues:
        if issue.kind is not ResultType.CONVERT_FAILS:
            continue
        records.append(
            ErrorRecord.create(
                source,
                record_type,
                outcome.line,
                "CONVERT_FAILS",
                f'{issue.member}="{issue.raw}"',
                column=issue.column + 1,
            )
        )
    if outcome.succeeded and outcome.flags & ResultType.JOIN_INDEX_MISMATCH:
        records.append(
            ErrorRecord.create(source, record_type, outcome.line, "JOIN_INDEX_MISMATCH", "join index is not contiguous")
        )
    return records


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush writes JSON Lines.

    - flush() appends to the log file (created on first flush)
    - single-threaded use only
    """

    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self._logs_dir = logs_dir or LOGS_DIR

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    @property
    def records(self) -> list[ErrorRecord]:
        return list(self._records)

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def extend(self, records: list[ErrorRecord]) -> None:
        self._records.extend(records)

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records; None when there was nothing to write."""
        if not self._records:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from .outcome import ResultType, RowOutcome, RowStatus

"""Import result models.

``RunCounters`` is the mutable accumulator the orchestrator feeds row by row;
``ImportResult`` is the frozen summary handed back to the caller.
"""

__all__ = [
    "ImportResult",
    "RunCounters",
]


class RunCounters:
    """Accumulates row outcomes for one import run."""

    def __init__(self) -> None:
        self.outcomes: list[RowOutcome] = []
        self.created = 0
        self.updated = 0
        self.success = 0
        self.by_status: dict[RowStatus, int] = {s: 0 for s in RowStatus}
        self.join_index_mismatch = 0
        self.field_conversion_failures = 0
        self.empty_cells = 0

    def add(self, outcome: RowOutcome) -> None:
        # レコードは保存先 (テーブル / ストア) だけが持つ
        self.outcomes.append(replace(outcome, record=None))
        self.by_status[outcome.status] += 1
        if outcome.succeeded:
            self.success += 1
            if outcome.created is True:
                self.created += 1
            elif outcome.created is False:
                self.updated += 1
        if outcome.flags & ResultType.JOIN_INDEX_MISMATCH:
            self.join_index_mismatch += 1
        for issue in outcome.issues:
            if issue.kind is ResultType.CONVERT_FAILS:
                self.field_conversion_failures += 1
            elif issue.kind is ResultType.EMPTY_CELL:
                self.empty_cells += 1


@dataclass(frozen=True)
class ImportResult:
    """Aggregate outcome of one import run.

    ``destination`` is the table (flat mode) or join target, ``None`` when
    rows are standalone persistent records.
    """
    name: str
    success_count: int
    destination: Any
    destination_path: str | None
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    created: int = 0
    updated: int = 0
    skipped_no_key: int = 0
    conversion_failed: int = 0
    version_mismatch: int = 0
    join_no_reference_row: int = 0
    invalid_key: int = 0
    join_index_mismatch: int = 0
    field_conversion_failures: int = 0
    empty_cells: int = 0
    cancelled: bool = False
    validation_ok: bool | None = None  # None: no validation configured
    outcomes: list[RowOutcome] = field(default_factory=list)

    @classmethod
    def from_counters(
        cls,
        name: str,
        counters: RunCounters,
        *,
        destination: Any,
        destination_path: str | None,
        start_time: datetime,
        end_time: datetime,
        cancelled: bool = False,
    ) -> ImportResult:
        return cls(
            name=name,
            success_count=counters.success,
            destination=destination,
            destination_path=destination_path,
            start_time=start_time,
            end_time=end_time,
            elapsed_seconds=(end_time - start_time).total_seconds(),
            created=counters.created,
            updated=counters.updated,
            skipped_no_key=counters.by_status[RowStatus.SKIPPED_NO_KEY],
            conversion_failed=counters.by_status[RowStatus.CONVERSION_FAILED],
            version_mismatch=counters.by_status[RowStatus.VERSION_MISMATCH],
            join_no_reference_row=counters.by_status[RowStatus.JOIN_NO_REFERENCE_ROW],
            invalid_key=counters.by_status[RowStatus.INVALID_KEY],
            join_index_mismatch=counters.join_index_mismatch,
            field_conversion_failures=counters.field_conversion_failures,
            empty_cells=counters.empty_cells,
            cancelled=cancelled,
            outcomes=list(counters.outcomes),
        )

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

"""TabularContent: the (row, col) -> str view of a sheet.

Rows are padded to a uniform width on construction so ``get`` never needs
bounds juggling at the call sites.
"""

__all__ = [
    "TabularContent",
]


@dataclass(frozen=True)
class TabularContent:
    rows: tuple[tuple[str, ...], ...]

    @classmethod
    def from_rows(cls, rows: Iterable[Sequence[object]]) -> TabularContent:
        raw = [["" if v is None else str(v) for v in r] for r in rows]
        width = max((len(r) for r in raw), default=0)
        return cls(rows=tuple(tuple(r + [""] * (width - len(r))) for r in raw))

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def col_count(self) -> int:
        return len(self.rows[0]) if self.rows else 0

    def get(self, row: int, col: int) -> str:
        return self.rows[row][col]

    def row(self, index: int) -> tuple[str, ...]:
        return self.rows[index]

    def slice(self, start: int, end: int | None = None) -> TabularContent:
        """Row slice (``end`` exclusive)."""
        return TabularContent(rows=self.rows[start:end])

    def slice_columns(self, start: int, end: int | None = None) -> TabularContent:
        return TabularContent(rows=tuple(r[start:end] for r in self.rows))

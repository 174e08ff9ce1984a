from __future__ import annotations

from dataclasses import dataclass
from functools import total_ordering

"""Version literals for the per-row version gate.

Accepted form: ``major.minor[.build[.revision]]`` with non-negative integer
components. A missing component sorts below zero, so ``1.0 < 1.0.0``.
"""

__all__ = [
    "RowVersion",
    "parse_version",
]


@total_ordering
@dataclass(frozen=True)
class RowVersion:
    parts: tuple[int, ...]

    def _key(self) -> tuple[int, ...]:
        return self.parts + (-1,) * (4 - len(self.parts))

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RowVersion):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        return ".".join(str(p) for p in self.parts)


def parse_version(text: str) -> RowVersion | None:
    """Parse a version literal; None when it is not one."""
    pieces = text.strip().split(".")
    if not 2 <= len(pieces) <= 4:
        return None
    parts: list[int] = []
    for piece in pieces:
        piece = piece.strip()
        if not (piece.isascii() and piece.isdigit()):
            return None
        parts.append(int(piece))
    return RowVersion(tuple(parts))

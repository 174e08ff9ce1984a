from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..registry.type_directory import MemberAccessor

"""Field model: one schema column descriptor derived from the header rows."""

__all__ = [
    "Field",
    "split_indexing",
]

# names[2] / names[] -> ("names", "2")
_INDEXING_RE = re.compile(r"^(?P<base>.*?)\[(?P<index>[^\]]*)\]$")


def split_indexing(name: str) -> tuple[str, str | None]:
    """Split ``name[2]`` into ``("name", "2")``; plain names give ``(name, None)``."""
    m = _INDEXING_RE.match(name)
    if m is None:
        return name, None
    return m.group("base").strip(), m.group("index").strip()


@dataclass
class Field:
    """Column descriptor.

    ``is_valid`` is decided by the schema resolver. Binding or conversion may
    later flip it to False (never back) for the remainder of the run.
    """
    name: str
    declared_type: str
    column_index: int
    is_valid: bool = True
    is_array_field: bool = False
    is_version_field: bool = False
    index_hint: str | None = None
    member: MemberAccessor | None = None
    invalid_reason: str | None = None

    @classmethod
    def from_header(cls, column_index: int, name: str, declared_type: str) -> Field:
        name = name.strip()
        base, index = split_indexing(name)
        return cls(
            name=name,
            declared_type=declared_type.strip(),
            column_index=column_index,
            is_array_field=index is not None,
            index_hint=index or None,
        )

    @property
    def base_name(self) -> str:
        """Name used for member lookup (``names[2]`` -> ``names``)."""
        return split_indexing(self.name)[0]

    @property
    def target_type(self) -> Any:
        """Type each cell converts to: the element type for array fields."""
        if self.member is None:
            return None
        if self.is_array_field:
            return self.member.element_type
        return self.member.annotation

    def invalidate(self, reason: str) -> None:
        self.is_valid = False
        self.invalid_reason = reason

from __future__ import annotations

import logging
import operator
import typing
from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum, Flag
from functools import reduce
from typing import TYPE_CHECKING, Any, Protocol

from ..registry.type_directory import unwrap_optional

if TYPE_CHECKING:
    from ..registry.type_directory import TypeDirectory

"""Cell text -> typed value conversion.

``ValueConverter.convert`` returns ``None`` when the text has no primitive,
enum or collection reading for the target type. That is not an error on its
own: ``convert_cell`` then tries the registered reference types (objects
loaded by identifier text through a ``ReferenceResolver``).

String targets are wrapped in double quotes and go through the same literal
parser as everything else, so ``"abc"`` and ``abc`` in a list cell read the
same way.
"""

__all__ = [
    "ReferenceResolver",
    "ValueConverter",
]

logger = logging.getLogger(__name__)

_TRUE = "true"
_FALSE = "false"


class ReferenceResolver(Protocol):
    def load_reference(self, text: str, cls: type) -> Any | None: ...


def _split_items(inner: str) -> list[str]:
    """Split ``a, "b, c", d`` on top-level commas (double quotes respected)."""
    items: list[str] = []
    buf: list[str] = []
    quoted = False
    for ch in inner:
        if ch == '"':
            quoted = not quoted
        if ch == "," and not quoted:
            items.append("".join(buf))
            buf = []
            continue
        buf.append(ch)
    items.append("".join(buf))
    return [i.strip() for i in items]


class ValueConverter:
    """Converts raw cell text to instances of a declared target type.

    Args:
        directory: used to resolve ``EnumType.Member`` literals for ``int``
            targets. Optional.
        reference_types: classes loaded through ``resolver`` when literal
            conversion yields nothing.
        resolver: the external object lookup for reference types.
    """

    def __init__(
        self,
        directory: TypeDirectory | None = None,
        reference_types: Iterable[type] = (),
        resolver: ReferenceResolver | None = None,
    ) -> None:
        self.directory = directory
        self.reference_types = frozenset(reference_types)
        self.resolver = resolver

    def convert(self, target: Any, raw: str) -> Any | None:
        base = unwrap_optional(target)
        if base is str:
            raw = '"' + raw + '"'
        return self._parse_literal(base, raw)

    def is_reference_type(self, target: Any) -> bool:
        return unwrap_optional(target) in self.reference_types

    def convert_cell(self, target: Any, raw: str) -> Any | None:
        """``convert`` with the reference-type fallback."""
        value = self.convert(target, raw)
        if value is None and self.resolver is not None and self.is_reference_type(target):
            value = self.resolver.load_reference(raw.strip(), unwrap_optional(target))
        return value

    # -- literal parsing -------------------------------------------------

    def _parse_literal(self, target: Any, text: str) -> Any | None:
        origin = typing.get_origin(target)
        if origin in (list, tuple):
            return self._parse_sequence(target, text)
        if not isinstance(target, type):
            return None
        s = text.strip()
        if target is str:
            if len(s) >= 2 and s[0] == '"' and s[-1] == '"':
                return s[1:-1]
            return s
        if target is bool:
            lowered = s.lower()
            if lowered == _TRUE:
                return True
            if lowered == _FALSE:
                return False
            return None
        if issubclass(target, Enum):
            return self._parse_enum(target, s)
        if target is int:
            return self._parse_int(s)
        if target is float:
            try:
                return float(s)
            except ValueError:
                return None
        if target is Decimal:
            try:
                return Decimal(s)
            except InvalidOperation:
                return None
        if target is datetime:
            try:
                return datetime.fromisoformat(s)
            except ValueError:
                return None
        if target is date:
            try:
                return date.fromisoformat(s)
            except ValueError:
                return None
        return None

    def _parse_int(self, s: str) -> int | None:
        try:
            return int(s)
        except ValueError:
            pass
        # "EnumType.Member" 形式
        type_name, dot, member = s.partition(".")
        if not dot or "." in member or self.directory is None:
            return None
        enum_type = self.directory.find_enum(type_name.strip())
        if enum_type is None:
            logger.debug("enum type '%s' not found", type_name)
            return None
        value = self._parse_enum(enum_type, member.strip())
        if value is None:
            return None
        return int(value.value)

    def _parse_enum(self, enum_type: type[Enum], s: str) -> Enum | None:
        prefix = enum_type.__name__ + "."
        if s.startswith(prefix):
            s = s[len(prefix):]
        if issubclass(enum_type, Flag):
            names = [p.strip() for p in s.split("|") if p.strip()]
            if not names:
                return None
            try:
                return reduce(operator.or_, (enum_type[n] for n in names))
            except KeyError:
                return None
        try:
            return enum_type[s]
        except KeyError:
            return None

    def _parse_sequence(self, target: Any, text: str) -> list[Any] | tuple[Any, ...] | None:
        s = text.strip()
        if len(s) < 2 or (s[0], s[-1]) not in (("[", "]"), ("(", ")")):
            return None
        inner = s[1:-1].strip()
        pieces = _split_items(inner) if inner else []
        origin = typing.get_origin(target)
        args = typing.get_args(target)
        if origin is tuple and args and not (len(args) == 2 and args[1] is Ellipsis):
            if len(args) != len(pieces):
                return None
            element_types = list(args)
        else:
            element_types = [args[0] if args else str] * len(pieces)
        values: list[Any] = []
        for element_type, piece in zip(element_types, pieces, strict=True):
            value = self._parse_literal(unwrap_optional(element_type), piece)
            if value is None:
                return None
            values.append(value)
        return tuple(values) if origin is tuple else values

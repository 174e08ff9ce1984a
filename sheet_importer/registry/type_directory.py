from __future__ import annotations

import importlib
import inspect
import logging
import typing
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

"""Type directory: cached name -> class and (class, member) -> accessor maps.

Record classes are registered by the host (an explicit class list, or the
classes defined in ``record_modules``). Lookups never raise for unknown or
ambiguous names; they return a ``TypeLookup`` carrying the status.
"""

__all__ = [
    "LookupStatus",
    "MemberAccessor",
    "TypeDirectory",
    "TypeLookup",
]

logger = logging.getLogger(__name__)

_SEQUENCE_ORIGINS = (list, tuple)


class LookupStatus(Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class TypeLookup:
    name: str
    status: LookupStatus
    candidates: tuple[type, ...] = ()

    @property
    def type(self) -> type | None:
        return self.candidates[0] if self.status is LookupStatus.FOUND else None


def unwrap_optional(annotation: Any) -> Any:
    """``Optional[T]`` / ``T | None`` -> ``T``; anything else unchanged."""
    args = typing.get_args(annotation)
    if args and type(None) in args:
        rest = [a for a in args if a is not type(None)]
        if len(rest) == 1:
            return rest[0]
    return annotation


@dataclass(frozen=True)
class MemberAccessor:
    """Getter/setter for one annotated member of a record class."""
    owner: type
    name: str
    annotation: Any

    @property
    def base_type(self) -> Any:
        return unwrap_optional(self.annotation)

    @property
    def is_sequence(self) -> bool:
        origin = typing.get_origin(self.base_type) or self.base_type
        return origin in _SEQUENCE_ORIGINS

    @property
    def element_type(self) -> Any:
        """Element type of ``list[T]`` / ``tuple[T, ...]``; None for non-sequences."""
        base = self.base_type
        origin = typing.get_origin(base)
        if origin not in _SEQUENCE_ORIGINS:
            return None
        args = typing.get_args(base)
        if not args:
            return None
        if origin is tuple and not (len(args) == 2 and args[1] is Ellipsis):
            # 固定長 tuple は配列フィールドとして扱えない
            return None
        return args[0]

    def get(self, obj: Any) -> Any:
        return getattr(obj, self.name, None)

    def set(self, obj: Any, value: Any) -> None:
        setattr(obj, self.name, value)


def _qualified_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def _classes_of_module(module_name: str) -> list[type]:
    module = importlib.import_module(module_name)
    return [
        obj
        for _, obj in inspect.getmembers(module, inspect.isclass)
        if obj.__module__ == module.__name__
    ]


class TypeDirectory:
    """Lazily built registry of record classes.

    The caches are filled on first access and dropped by ``invalidate()``;
    the next lookup rebuilds them from the type source.
    """

    def __init__(self, types: Iterable[type] | Callable[[], Iterable[type]] = ()) -> None:
        if callable(types):
            self._source: Callable[[], Iterable[type]] = types
        else:
            fixed = list(types)
            self._source = lambda: fixed
        self._by_name: dict[str, list[type]] | None = None
        self._by_qualified_name: dict[str, list[type]] | None = None
        self._members: dict[type, dict[str, MemberAccessor]] = {}

    @classmethod
    def from_modules(cls, module_names: Iterable[str], extra: Iterable[type] = ()) -> TypeDirectory:
        """Directory over every class defined in the given modules."""
        names = list(module_names)
        extra_types = list(extra)

        def source() -> list[type]:
            found: list[type] = list(extra_types)
            for name in names:
                found.extend(_classes_of_module(name))
            return found

        return cls(source)

    def _ensure_built(self) -> tuple[dict[str, list[type]], dict[str, list[type]]]:
        """Build the name indexes on first use; returns (by simple name, by qualified name)."""
        if self._by_name is not None and self._by_qualified_name is not None:
            return self._by_name, self._by_qualified_name
        by_name: dict[str, list[type]] = {}
        by_qualified: dict[str, list[type]] = {}
        for t in self._source():
            for bucket, key in ((by_name, t.__name__), (by_qualified, _qualified_name(t))):
                entries = bucket.setdefault(key, [])
                if t not in entries:
                    entries.append(t)
        self._by_name = by_name
        self._by_qualified_name = by_qualified
        logger.debug("type directory built: %d names", len(by_name))
        return by_name, by_qualified

    def preload(self) -> int:
        """Build the caches now; returns the number of simple names."""
        by_name, _ = self._ensure_built()
        return len(by_name)

    def invalidate(self) -> None:
        self._by_name = None
        self._by_qualified_name = None
        self._members.clear()

    def find_type(self, name: str, fully_qualified: bool = False) -> TypeLookup:
        by_name, by_qualified = self._ensure_built()
        bucket = by_qualified if fully_qualified else by_name
        candidates = tuple(bucket.get(name, ()))
        if not candidates:
            return TypeLookup(name, LookupStatus.NOT_FOUND)
        if len(candidates) > 1:
            return TypeLookup(name, LookupStatus.AMBIGUOUS, candidates)
        return TypeLookup(name, LookupStatus.FOUND, candidates)

    def find_enum(self, name: str) -> type[Enum] | None:
        """First enum class registered under ``name`` (used by ``Enum.Member`` literals)."""
        by_name, _ = self._ensure_built()
        candidates = [t for t in by_name.get(name, ()) if issubclass(t, Enum)]
        if len(candidates) > 1:
            logger.warning("enum type '%s' is ambiguous (%d candidates); using the first", name, len(candidates))
        return candidates[0] if candidates else None

    def members(self, cls: type) -> dict[str, MemberAccessor]:
        cached = self._members.get(cls)
        if cached is None:
            cached = {}
            hints = typing.get_type_hints(cls)
            for name, annotation in hints.items():
                if name.startswith("_") or typing.get_origin(annotation) is ClassVar:
                    continue
                cached[name] = MemberAccessor(owner=cls, name=name, annotation=annotation)
            self._members[cls] = cached
        return cached

    def find_member(self, cls: type, name: str) -> MemberAccessor | None:
        return self.members(cls).get(name)

from __future__ import annotations

import dataclasses
import typing
from datetime import date, datetime
from decimal import Decimal
from enum import Enum, Flag
from typing import TYPE_CHECKING, Any

from ..registry.type_directory import unwrap_optional

if TYPE_CHECKING:
    from .asset_store import AssetStore

"""Record <-> plain data (dict/list/scalars) conversion driven by type hints.

Nested objects that are assets of their own are written as ``{"$ref": path}``
and resolved back through the store on load.
"""

__all__ = [
    "REF_KEY",
    "fill_record",
    "from_plain",
    "to_plain",
]

REF_KEY = "$ref"


def _public_members(obj: Any) -> dict[str, Any]:
    if dataclasses.is_dataclass(obj):
        return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
    return {k: v for k, v in vars(obj).items() if not k.startswith("_")}


def to_plain(value: Any, store: AssetStore | None = None, *, root: bool = True) -> Any:
    if value is None:
        return None
    if isinstance(value, Flag):
        return value.value
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [to_plain(v, store, root=False) for v in value]
    if isinstance(value, dict):
        return {str(k): to_plain(v, store, root=False) for k, v in value.items()}
    if not root and store is not None:
        path = store.path_of(value)
        if path is not None:
            return {REF_KEY: path}
    return {k: to_plain(v, store, root=False) for k, v in _public_members(value).items()}


def from_plain(hint: Any, data: Any, store: AssetStore | None = None) -> Any:
    if data is None:
        return None
    hint = unwrap_optional(hint)
    if isinstance(data, dict) and REF_KEY in data:
        if store is None:
            return None
        return store.load_by_path(data[REF_KEY], hint if isinstance(hint, type) else object)
    origin = typing.get_origin(hint)
    args = typing.get_args(hint)
    if origin in (list, tuple):
        if origin is tuple and args and not (len(args) == 2 and args[1] is Ellipsis):
            return tuple(from_plain(a, d, store) for a, d in zip(args, data, strict=False))
        element = args[0] if args else Any
        items = [from_plain(element, d, store) for d in data]
        return tuple(items) if origin is tuple else items
    if origin is dict:
        value_hint = args[1] if len(args) == 2 else Any
        return {k: from_plain(value_hint, v, store) for k, v in data.items()}
    if not isinstance(hint, type):
        return data
    if issubclass(hint, Flag):
        return hint(data)
    if issubclass(hint, Enum):
        return hint[data]
    if hint is Decimal:
        return Decimal(data)
    if hint is datetime:
        return datetime.fromisoformat(data)
    if hint is date:
        return date.fromisoformat(data)
    if hint in (bool, int, float, str) or not isinstance(data, dict):
        return data
    obj = hint()
    _fill(obj, data, store)
    return obj


def _fill(obj: Any, data: dict[str, Any], store: AssetStore | None) -> None:
    hints = typing.get_type_hints(type(obj))
    for name, raw in data.items():
        setattr(obj, name, from_plain(hints.get(name, Any), raw, store))


def fill_record(obj: Any, data: dict[str, Any], store: AssetStore | None = None) -> Any:
    """Populate an existing record instance from plain data."""
    _fill(obj, data, store)
    return obj

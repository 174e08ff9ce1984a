from __future__ import annotations

import logging
import posixpath
from collections.abc import Iterator
from pathlib import Path, PureWindowsPath
from typing import Any

import yaml

from ..registry.type_directory import LookupStatus, TypeDirectory
from .codec import fill_record, to_plain

"""Persistent record storage.

The import pipeline only relies on the ``AssetStore`` contract:

    load_by_path(path, cls) -> object | None
    create(cls, path)       -> object
    mark_dirty(obj)
    save_all()

plus ``load_reference`` for reference-type cells. Paths are POSIX style
(``Data/Human_1.asset``). Objects loaded or created through a store are kept
in an identity map, so loading the same path twice yields the same instance.
``save_all`` writes dirty objects only, once per import run.
"""

__all__ = [
    "ASSET_EXTENSION",
    "AssetStore",
    "FileAssetStore",
    "MemoryAssetStore",
    "StorageError",
    "is_contained_path",
    "normalize_path",
]

logger = logging.getLogger(__name__)

ASSET_EXTENSION = ".asset"


class StorageError(Exception):
    pass


def normalize_path(path: str) -> str:
    return posixpath.normpath(path.replace("\\", "/"))


def is_contained_path(path: str) -> bool:
    """False when a normalized path leaves the store root (absolute or ``..``)."""
    if posixpath.isabs(path) or PureWindowsPath(path).drive:
        return False
    return path != ".." and not path.startswith("../")


def _checked_path(path: str) -> str:
    path = normalize_path(path)
    if not is_contained_path(path):
        raise StorageError(f"asset path outside the store root: {path}")
    return path


def qualified_type_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def asset_name(path: str) -> str:
    """``Data/Human_1.asset`` -> ``Human_1``."""
    base = posixpath.basename(path)
    if base.endswith(ASSET_EXTENSION):
        base = base[: -len(ASSET_EXTENSION)]
    return base


class AssetStore:
    """Identity map + dirty tracking; subclasses provide the actual I/O.

    Subclass hooks:
        _read(path) -> (type_name, data) | None
        _write(batch)   batch: list of (path, type_name, plain data)
        _candidates(name) -> iterator of paths whose asset name is ``name``
    """

    def __init__(self, directory: TypeDirectory | None = None) -> None:
        self.directory = directory
        self._objects: dict[str, Any] = {}
        self._paths: dict[int, str] = {}
        self._dirty: dict[str, Any] = {}

    # -- contract ----------------------------------------------------------

    def load_by_path(self, path: str, cls: type) -> Any | None:
        path = _checked_path(path)
        obj = self._objects.get(path)
        if obj is None:
            obj = self._load(path, cls)
        if obj is None or not isinstance(obj, cls):
            return None
        return obj

    def create(self, cls: type, path: str) -> Any:
        path = _checked_path(path)
        previous = self._objects.get(path)
        if previous is not None:
            self._paths.pop(id(previous), None)
        obj = cls()
        self._register(path, obj)
        self._dirty[path] = obj
        return obj

    def mark_dirty(self, obj: Any) -> None:
        path = self.path_of(obj)
        if path is None:
            raise StorageError(f"not a stored asset: {type(obj).__name__}")
        self._dirty[path] = obj

    def save_all(self) -> int:
        """Write every dirty asset; returns the number written."""
        if not self._dirty:
            return 0
        batch = [(path, qualified_type_name(type(obj)), to_plain(obj, self)) for path, obj in self._dirty.items()]
        self._write(batch)
        logger.debug("saved %d assets", len(batch))
        count = len(batch)
        self._dirty.clear()
        return count

    def path_of(self, obj: Any) -> str | None:
        return self._paths.get(id(obj))

    def is_dirty(self, obj: Any) -> bool:
        path = self.path_of(obj)
        return path is not None and path in self._dirty

    def load_reference(self, text: str, cls: type) -> Any | None:
        """Reference-type lookup: the asset of type ``cls`` named ``text``."""
        for path, obj in self._objects.items():
            if asset_name(path) == text and isinstance(obj, cls):
                return obj
        for path in self._candidates(text):
            obj = self.load_by_path(path, cls)
            if obj is not None:
                return obj
        return None

    # -- internals -------------------------------------------------------------

    def _register(self, path: str, obj: Any) -> None:
        self._objects[path] = obj
        self._paths[id(obj)] = path

    def _resolve_type(self, type_name: str, fallback: type) -> type:
        if self.directory is not None:
            lookup = self.directory.find_type(type_name, fully_qualified=True)
            if lookup.status is LookupStatus.FOUND and lookup.type is not None:
                return lookup.type
        return fallback

    def _load(self, path: str, cls: type) -> Any | None:
        stored = self._read(path)
        if stored is None:
            return None
        type_name, data = stored
        actual = self._resolve_type(type_name, cls)
        if actual is object or not issubclass(actual, cls):
            logger.debug("asset %s has type %s, expected %s", path, type_name, cls.__name__)
            return None
        obj = actual()
        # 循環参照に備えて先に登録してから中身を埋める
        self._register(path, obj)
        fill_record(obj, data or {}, self)
        return obj

    def _read(self, path: str) -> tuple[str, dict[str, Any]] | None:
        return None

    def _write(self, batch: list[tuple[str, str, Any]]) -> None:
        return None

    def _candidates(self, name: str) -> Iterator[str]:
        return iter(())


class MemoryAssetStore(AssetStore):
    """In-process store; ``save_all`` keeps the plain snapshots in ``saved``."""

    def __init__(self, directory: TypeDirectory | None = None) -> None:
        super().__init__(directory)
        self.saved: dict[str, tuple[str, Any]] = {}
        self.save_count = 0

    def _write(self, batch: list[tuple[str, str, Any]]) -> None:
        self.save_count += 1
        for path, type_name, data in batch:
            self.saved[path] = (type_name, data)


class FileAssetStore(AssetStore):
    """One YAML document per asset under ``root``."""

    def __init__(self, root: Path, directory: TypeDirectory | None = None) -> None:
        super().__init__(directory)
        self.root = Path(root)

    def _file(self, path: str) -> Path:
        return self.root / path

    def _read(self, path: str) -> tuple[str, dict[str, Any]] | None:
        fp = self._file(path)
        if not fp.exists():
            return None
        try:
            doc = yaml.safe_load(fp.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise StorageError(f"invalid asset file {fp}: {e}") from e
        return doc.get("type", ""), doc.get("data") or {}

    def _write(self, batch: list[tuple[str, str, Any]]) -> None:
        for path, type_name, data in batch:
            fp = self._file(path)
            fp.parent.mkdir(parents=True, exist_ok=True)
            text = yaml.safe_dump({"type": type_name, "data": data}, sort_keys=False, allow_unicode=True)
            fp.write_text(text, encoding="utf-8")

    def _candidates(self, name: str) -> Iterator[str]:
        if not self.root.exists():
            return
        for fp in sorted(self.root.rglob(name + ASSET_EXTENSION)):
            yield fp.relative_to(self.root).as_posix()

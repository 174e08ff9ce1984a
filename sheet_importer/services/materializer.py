from __future__ import annotations

import logging
import posixpath
import typing
from collections.abc import Sequence
from typing import Any, Protocol

from ..conversion.registry import ValueConverter
from ..conversion.version import RowVersion, parse_version
from ..models.config_models import GlobalSettings, ImportSetting
from ..models.field import Field
from ..models.outcome import FieldIssue, ResultType, RowOutcome, RowStatus
from ..models.tabular_content import TabularContent
from ..registry.type_directory import MemberAccessor
from ..storage.asset_store import ASSET_EXTENSION, AssetStore, is_contained_path, normalize_path

"""Row materialization: one content row -> one populated record.

Per row, in order:
  1. key check            any blank key cell -> SKIPPED_NO_KEY, a key that
                          leads outside the storage root -> INVALID_KEY
  2. version gate         unparsable -> CONVERSION_FAILED, newer than the
                          application -> VERSION_MISMATCH
  3. load or create       transient instance, or the persistent record at the
                          row's asset path (update in place when it exists)
  4. array pre-pass       array members reset to empty
  5. population           column order, blank cells skipped, conversion
                          failures logged and skipped (never fatal)
  6. reconciliation       table append / join attach

The version gate runs before anything is loaded or created, so an excluded
row leaves no trace in storage.
"""

__all__ = [
    "Destination",
    "RowMaterializer",
]

logger = logging.getLogger(__name__)


class Destination(Protocol):
    def attach(self, record: Any) -> tuple[RowStatus, ResultType]: ...


def _append(member: MemberAccessor, record: Any, value: Any) -> None:
    """Read the current sequence, copy, append, reassign."""
    current = member.get(record)
    items = list(current) if current is not None else []
    items.append(value)
    origin = typing.get_origin(member.base_type)
    member.set(record, tuple(items) if origin is tuple else items)


def _empty_sequence(member: MemberAccessor) -> list[Any] | tuple[()]:
    return () if typing.get_origin(member.base_type) is tuple else []


class RowMaterializer:
    """Materializes content rows of one import run.

    Args:
        setting: the import being run
        settings: header layout, version field, log filter
        fields: resolved and bound fields (column order)
        content: the content rows (row 0 = first data row)
        record_type: class of the records to build
        converter: cell converter incl. reference-type fallback
        store: persistent storage; unused for transient imports
        key_indexes: key columns (empty -> positional asset names)
        destination: table/join reconciler, or None for standalone records
    """

    def __init__(
        self,
        setting: ImportSetting,
        settings: GlobalSettings,
        fields: Sequence[Field],
        content: TabularContent,
        record_type: type,
        converter: ValueConverter,
        store: AssetStore,
        key_indexes: Sequence[int] = (),
        destination: Destination | None = None,
    ) -> None:
        self.setting = setting
        self.settings = settings
        self.fields = list(fields)
        self.content = content
        self.record_type = record_type
        self.converter = converter
        self.store = store
        self.key_indexes = list(key_indexes)
        self.destination = destination
        self.transient = setting.is_transient
        self.app_version: RowVersion | None = parse_version(settings.app_version)
        self._version_field = next((f for f in self.fields if f.is_version_field), None)
        if not settings.version_field_name.strip():
            self._version_field = None

    @property
    def row_count(self) -> int:
        return self.content.row_count

    def line_of(self, row_index: int) -> int:
        """1-based sheet line of a content row."""
        return row_index + self.settings.row_index_of_content_start + 1

    def _log_enabled(self, kind: ResultType) -> bool:
        return bool(self.settings.log_types & kind)

    def key_is_valid(self, row_index: int) -> bool:
        return all(self.content.get(row_index, k).strip() != "" for k in self.key_indexes)

    def asset_path(self, row_index: int) -> str:
        type_name = self.record_type.__name__
        if self.key_indexes:
            name = type_name + "".join("_" + self.content.get(row_index, k).strip() for k in self.key_indexes)
        else:
            name = f"{type_name}{row_index}"
        return normalize_path(posixpath.join(self.setting.destination, name + ASSET_EXTENSION))

    def _check_version(self, row_index: int, line: int) -> RowOutcome | None:
        f = self._version_field
        if f is None:
            return None
        raw = self.content.get(row_index, f.column_index)
        if not raw.strip():
            return None
        text = self.converter.convert(str, raw)
        version = parse_version(text) if text is not None else None
        if version is None:
            message = f"invalid version string: \"{raw}\""
            logger.error("%s line %d column %d: %s", self.setting.class_name, line, f.column_index + 1, message)
            return RowOutcome(row_index, line, RowStatus.CONVERSION_FAILED, ResultType.CONVERT_FAILS, message=message)
        if self.app_version is not None and version > self.app_version:
            return RowOutcome(
                row_index,
                line,
                RowStatus.VERSION_MISMATCH,
                ResultType.VERSION_MISMATCH,
                message=f"row version {version} is newer than {self.app_version}",
            )
        return None

    def _load_or_create(self, path: str) -> tuple[Any, bool | None]:
        if self.transient:
            return self.record_type(), None
        record = self.store.load_by_path(path, self.record_type)
        if record is None:
            record = self.store.create(self.record_type, path)
            logger.info('Create "%s"', path)
            return record, True
        logger.info('Update "%s"', path)
        return record, False

    def _prepare_arrays(self, record: Any) -> None:
        # [] 付きのフィールドは先に空配列をセットしておく
        for f in self.fields:
            if not f.is_valid or not f.is_array_field or f.member is None:
                continue
            if f.member.element_type is None:
                logger.error("invalid array field type: %r", f.member.annotation)
                f.invalidate(f"array column on non-sequence member: {f.member.annotation!r}")
                continue
            f.member.set(record, _empty_sequence(f.member))

    def _populate(self, record: Any, row_index: int, line: int) -> tuple[ResultType, list[FieldIssue]]:
        flags = ResultType.NONE
        issues: list[FieldIssue] = []
        for f in self.fields:
            if not f.is_valid or f.is_version_field or f.member is None:
                continue
            raw = self.content.get(row_index, f.column_index)
            if not raw.strip():
                flags |= ResultType.EMPTY_CELL
                issues.append(FieldIssue(f.column_index, f.member.name, raw, ResultType.EMPTY_CELL))
                if self._log_enabled(ResultType.EMPTY_CELL):
                    logger.warning(
                        "%s line %d column %d: empty value: %s",
                        self.setting.class_name, line, f.column_index + 1, f.member.name,
                    )
                continue
            value = self.converter.convert_cell(f.target_type, raw)
            if value is None:
                flags |= ResultType.CONVERT_FAILS
                issues.append(FieldIssue(f.column_index, f.member.name, raw, ResultType.CONVERT_FAILS))
                if self._log_enabled(ResultType.CONVERT_FAILS):
                    logger.error(
                        "%s line %d column %d: conversion failed: %s=\"%s\"",
                        self.setting.class_name, line, f.column_index + 1, f.member.name, raw,
                    )
                continue
            if f.is_array_field:
                _append(f.member, record, value)
            else:
                f.member.set(record, value)
        return flags, issues

    def materialize_row(self, row_index: int) -> RowOutcome:
        line = self.line_of(row_index)

        if not self.key_is_valid(row_index):
            return RowOutcome(row_index, line, RowStatus.SKIPPED_NO_KEY, ResultType.SKIP_NO_KEY)

        path = self.asset_path(row_index)
        if not self.transient and not is_contained_path(path):
            message = f"key resolves outside the storage root: {path}"
            return RowOutcome(row_index, line, RowStatus.INVALID_KEY, ResultType.INVALID_KEY, message=message)

        rejected = self._check_version(row_index, line)
        if rejected is not None:
            return rejected

        record, created = self._load_or_create(path)

        self._prepare_arrays(record)
        flags, issues = self._populate(record, row_index, line)

        if not self.transient:
            self.store.mark_dirty(record)

        outcome = RowOutcome(
            row_index,
            line,
            RowStatus.SUCCESS,
            flags,
            path=None if self.transient else path,
            created=created,
            record=record,
            issues=issues,
        )
        if self.destination is not None:
            status, attach_flags = self.destination.attach(record)
            outcome.status = status
            outcome.flags |= attach_flags
        return outcome

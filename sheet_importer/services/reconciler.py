from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from ..models.config_models import ImportSetting
from ..models.outcome import ResultType, RowStatus
from ..registry.type_directory import MemberAccessor, TypeDirectory
from ..storage.asset_store import AssetStore
from .errors import ImportSetupError

"""Destination topologies for materialized rows.

FlatTableReconciler  rows are appended to ``table.rows``; the list is cleared
                     once in ``setup`` so re-running an import rebuilds the
                     table instead of growing it.
JoinReconciler       rows are appended to a nested list on the parent row of
                     an existing table, found through the table's find
                     method. Every parent's nested list is cleared once in
                     ``setup``.

``attach`` never raises for data problems; it returns the row status and
reporting flags.
"""

__all__ = [
    "ROWS",
    "FlatTableReconciler",
    "JoinReconciler",
]

logger = logging.getLogger(__name__)

# テーブル class の行リストのメンバー名
ROWS = "rows"

AttachResult = tuple[RowStatus, ResultType]


def _rows_member(directory: TypeDirectory, table_type: type, reason: str) -> MemberAccessor:
    member = directory.find_member(table_type, ROWS)
    if member is None:
        raise ImportSetupError(reason, f"{table_type.__name__} has no '{ROWS}' member")
    return member


def _reset_list(accessor: MemberAccessor, obj: Any) -> list[Any]:
    current = accessor.get(obj)
    if current is None or not isinstance(current, list):
        current = []
        accessor.set(obj, current)
    else:
        current.clear()
    return current


class FlatTableReconciler:
    def __init__(self, store: AssetStore, directory: TypeDirectory, table_type: type, path: str) -> None:
        self.store = store
        self.directory = directory
        self.table_type = table_type
        self.path = path
        self.destination: Any = None
        self._rows: list[Any] = []

    @property
    def destination_path(self) -> str | None:
        return self.store.path_of(self.destination) if self.destination is not None else self.path

    def setup(self) -> None:
        member = _rows_member(self.directory, self.table_type, "NO_ROWS_MEMBER")
        table = self.store.load_by_path(self.path, self.table_type)
        if table is None:
            table = self.store.create(self.table_type, self.path)
            logger.info('Create "%s"', self.path)
        self.destination = table
        self._rows = _reset_list(member, table)

    def attach(self, record: Any) -> AttachResult:
        self._rows.append(record)
        return RowStatus.SUCCESS, ResultType.NONE

    def finish(self) -> None:
        self.store.mark_dirty(self.destination)


class JoinReconciler:
    """Appends each record into ``<parent>.<target_join_list_field>``.

    The parent is looked up with ``table.<target_find_method_name>(key)``.
    When no find method is configured, the target rows are scanned for
    ``<row>.<target_join_key_field> == key`` instead.
    """

    def __init__(
        self,
        store: AssetStore,
        directory: TypeDirectory,
        setting: ImportSetting,
        record_type: type,
    ) -> None:
        self.store = store
        self.directory = directory
        self.setting = setting
        self.record_type = record_type
        self.destination: Any = None
        self._rows: list[Any] = []
        self._list_member: MemberAccessor | None = None
        self._self_key: MemberAccessor | None = None
        self._index_member: MemberAccessor | None = None
        self._find: Callable[[Any], Any] | None = None

    @property
    def destination_path(self) -> str | None:
        if self.destination is None:
            return self.setting.target_table or None
        return self.store.path_of(self.destination)

    def _invalid(self, message: str) -> ImportSetupError:
        return ImportSetupError("INVALID_JOIN_SETTING", message)

    def setup(self) -> None:
        s = self.setting
        if not s.target_table:
            raise self._invalid("join target table is not set")
        table = self.store.load_by_path(s.target_table, object)
        if table is None:
            raise self._invalid(f"join target table not found: {s.target_table}")
        table_type = type(table)
        rows_member = _rows_member(self.directory, table_type, "INVALID_JOIN_SETTING")
        rows = rows_member.get(table)
        if rows is None:
            raise self._invalid(f"join target table has no rows: {s.target_table}")
        row_type = rows_member.element_type
        if not isinstance(row_type, type):
            raise self._invalid(f"cannot determine row type of {table_type.__name__}.{ROWS}")
        list_member = self.directory.find_member(row_type, s.target_join_list_field)
        if list_member is None:
            raise self._invalid(f"{row_type.__name__} has no member '{s.target_join_list_field}'")
        self_key = self.directory.find_member(self.record_type, s.self_join_key_field)
        if self_key is None:
            raise self._invalid(f"{self.record_type.__name__} has no member '{s.self_join_key_field}'")

        if s.target_find_method_name:
            method = getattr(table, s.target_find_method_name, None)
            if not callable(method):
                raise ImportSetupError(
                    "JOIN_NO_FIND_METHOD",
                    f"{table_type.__name__} has no find method '{s.target_find_method_name}'",
                )
            self._find = method
        elif s.target_join_key_field:
            target_key = self.directory.find_member(row_type, s.target_join_key_field)
            if target_key is None:
                raise self._invalid(f"{row_type.__name__} has no member '{s.target_join_key_field}'")
            self._find = lambda key: next((r for r in rows if target_key.get(r) == key), None)
        else:
            raise self._invalid("either target_find_method_name or target_join_key_field is required")

        if s.join_index_field:
            self._index_member = self.directory.find_member(self.record_type, s.join_index_field)
            if self._index_member is None:
                raise self._invalid(f"{self.record_type.__name__} has no member '{s.join_index_field}'")

        for row in rows:
            _reset_list(list_member, row)
            self._mark_if_stored(row)

        self.destination = table
        self._rows = rows
        self._list_member = list_member
        self._self_key = self_key

    def _mark_if_stored(self, row: Any) -> None:
        # 行が独立したアセットなら行自身も保存対象にする
        if self.store.path_of(row) is not None:
            self.store.mark_dirty(row)

    def attach(self, record: Any) -> AttachResult:
        if self._find is None or self._list_member is None or self._self_key is None:
            raise RuntimeError("JoinReconciler.setup() has not been called")
        key = self._self_key.get(record)
        parent = self._find(key)
        if parent is None:
            return RowStatus.JOIN_NO_REFERENCE_ROW, ResultType.JOIN_NO_REFERENCE_ROW
        nested = self._list_member.get(parent)
        if nested is None:
            nested = []
            self._list_member.set(parent, nested)
        nested.append(record)
        self._mark_if_stored(parent)

        flags = ResultType.NONE
        if self._index_member is not None:
            index = self._index_member.get(record)
            if index != len(nested) - 1:
                logger.debug("join %r <- index %r (current: %d)", key, index, len(nested))
                flags |= ResultType.JOIN_INDEX_MISMATCH
        return RowStatus.SUCCESS, flags

    def finish(self) -> None:
        if self.store.path_of(self.destination) is not None:
            self.store.mark_dirty(self.destination)

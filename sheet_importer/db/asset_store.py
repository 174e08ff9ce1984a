from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from psycopg2.extras import Json, execute_values

from ..registry.type_directory import TypeDirectory
from ..storage.asset_store import ASSET_EXTENSION, AssetStore, StorageError

"""PostgreSQL-backed asset store.

One row per asset:

    path TEXT PRIMARY KEY, type_name TEXT, payload JSONB, updated_at TIMESTAMPTZ

``save_all`` upserts every dirty asset in one ``execute_values`` batch
(``INSERT ... ON CONFLICT (path) DO UPDATE``). Transaction boundaries belong
to the caller (the CLI commits after a successful run).
"""

__all__ = [
    "PostgresAssetStore",
]

logger = logging.getLogger(__name__)


class PostgresAssetStore(AssetStore):
    def __init__(
        self,
        cursor: Any,
        table: str = "sheet_assets",
        directory: TypeDirectory | None = None,
        page_size: int = 1000,
    ) -> None:
        super().__init__(directory)
        if not table.replace("_", "").isalnum():
            raise StorageError(f"invalid table name: {table}")
        self.cursor = cursor
        self.table = table
        self.page_size = page_size

    def ensure_table(self) -> None:
        self.cursor.execute(
            f"CREATE TABLE IF NOT EXISTS {self.table} ("
            "path TEXT PRIMARY KEY, "
            "type_name TEXT NOT NULL, "
            "payload JSONB NOT NULL, "
            "updated_at TIMESTAMPTZ NOT NULL DEFAULT now())"
        )

    def _read(self, path: str) -> tuple[str, dict[str, Any]] | None:
        self.cursor.execute(f"SELECT type_name, payload FROM {self.table} WHERE path = %s", (path,))
        row = self.cursor.fetchone()
        if row is None:
            return None
        type_name, payload = row[0], row[1]
        return type_name, payload or {}

    def _candidates(self, name: str) -> Iterator[str]:
        file_name = name + ASSET_EXTENSION
        self.cursor.execute(
            f"SELECT path FROM {self.table} WHERE path = %s OR path LIKE %s ORDER BY path",
            (file_name, "%/" + file_name),
        )
        for row in self.cursor.fetchall():
            yield row[0]

    def _write(self, batch: list[tuple[str, str, Any]]) -> None:
        rows = [(path, type_name, Json(data)) for path, type_name, data in batch]
        sql = (
            f"INSERT INTO {self.table} (path, type_name, payload) VALUES %s "
            "ON CONFLICT (path) DO UPDATE SET "
            "type_name = EXCLUDED.type_name, payload = EXCLUDED.payload, updated_at = now()"
        )
        try:
            execute_values(self.cursor, sql, rows, page_size=self.page_size)
        except Exception as e:
            raise StorageError(str(e)) from e
        logger.debug("upserted %d assets into %s", len(rows), self.table)

from __future__ import annotations

from dataclasses import dataclass, field

from .outcome import ResultType

"""Config dataclasses for the sheet -> record import tool.

These are the typed domain models built by ``sheet_importer.config.loader``
after YAML parsing and schema validation. They carry no behaviour beyond a few
derived names.
"""

__all__ = [
    "DatabaseConfig",
    "GlobalSettings",
    "ImportConfig",
    "ImportSetting",
    "StorageConfig",
]


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection fallback.

    Environment variables (``DATABASE_URL`` / ``PGDSN`` / ``PG*``) take
    precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class StorageConfig:
    """Where persistent records live."""
    backend: str = "file"  # file | postgres
    root: str = "./assets"  # file backend root directory
    table: str = "sheet_assets"  # postgres backend table


@dataclass(frozen=True)
class GlobalSettings:
    """Header layout and conversion settings shared by every import.

    Row indexes are 0-based over the whole sheet (header rows included).
    """
    row_index_of_name: int = 0
    row_index_of_type: int = 1
    row_index_of_enabled_column: int = -1  # -1: 有効列の行なし
    row_index_of_content_start: int = 2
    column_index_of_table_start: int = 0
    version_field_name: str = "version"
    is_end_marker_enabled: bool = False
    column_index_of_end_marker: int = 0
    end_marker: str = "END"
    app_version: str = "1.0.0"
    log_types: ResultType = ResultType.ALL
    reference_types: tuple[str, ...] = ()
    record_modules: tuple[str, ...] = ()


@dataclass(frozen=True)
class ImportSetting:
    """One sheet -> record-type import.

    ``table_generate`` and ``join`` are mutually exclusive (enforced by the
    config schema).
    """
    name: str
    csv_path: str
    class_name: str
    destination: str = "."
    check_fully_qualified_name: bool = False
    # table
    table_generate: bool = False
    table_class_name: str = ""
    table_asset_name: str = ""
    only_table_create: bool = True
    # join
    join: bool = False
    target_table: str = ""
    target_join_key_field: str = ""
    self_join_key_field: str = ""
    target_join_list_field: str = ""
    target_find_method_name: str = ""
    join_index_field: str = ""
    # others
    key: str = ""
    execute_after_import: tuple[str, ...] = ()
    execute_method_after_import: tuple[str, ...] = ()
    execute_validation_after_import: tuple[str, ...] = ()

    @property
    def keys(self) -> list[str]:
        """Key column names from the comma separated ``key`` value."""
        if not self.key:
            return []
        return [k.strip() for k in self.key.split(",") if k.strip()]

    @property
    def resolved_table_class_name(self) -> str:
        if not self.table_class_name.strip():
            return self.class_name + "Table"
        return self.table_class_name

    @property
    def resolved_table_asset_name(self) -> str:
        if self.table_asset_name:
            return self.table_asset_name
        return self.resolved_table_class_name

    @property
    def is_transient(self) -> bool:
        """Rows are plain instances when the table or join target owns them."""
        return (self.table_generate and self.only_table_create) or self.join


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object loaded from ``config/import.yml``."""
    settings: GlobalSettings
    imports: dict[str, ImportSetting]
    storage: StorageConfig = field(default_factory=StorageConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    base_directory: str = "."  # csv_path はこのディレクトリ基準で解決

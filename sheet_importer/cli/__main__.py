from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from sheet_importer.config.loader import ConfigError, load_config
from sheet_importer.db.asset_store import PostgresAssetStore
from sheet_importer.logging.error_log import ErrorLogBuffer
from sheet_importer.logging.init import log_summary, set_debug, setup_logging
from sheet_importer.models.config_models import DatabaseConfig, ImportConfig
from sheet_importer.reader.table_reader import SheetReadError, read_table_file, split_sheet, valid_content
from sheet_importer.registry.type_directory import TypeDirectory
from sheet_importer.schema.resolver import parse_header, resolve_fields
from sheet_importer.services.errors import ImportSetupError
from sheet_importer.services.orchestrator import ImportRunReport, resolve_record_type, run_imports
from sheet_importer.services.summary import render_summary_line
from sheet_importer.storage.asset_store import AssetStore, FileAssetStore, StorageError

"""CLI entrypoint.

    python -m sheet_importer.cli [IMPORT ...] [--config PATH] [--debug] [--inspect-data]

Flow:
- load ``.env`` (override) then the YAML config
- build the type directory from ``settings.record_modules``
- open the storage backend (file directory or PostgreSQL table)
- run the imports, print the SUMMARY line, exit 0 / 2 / 1
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

DEFAULT_CONFIG = Path("config/import.yml")


def _resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """PostgreSQL DSN.

    優先順位:
        1. DATABASE_URL / PGDSN (環境変数、.env で上書き済み)
        2. config の database.dsn
        3. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE と config の個別値
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def _db_connection(cfg: ImportConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """psycopg2 connection + cursor; commits on success, rolls back on error."""
    conn = psycopg2.connect(_resolve_dsn(cfg.database))
    conn.autocommit = False
    try:
        cur = conn.cursor()
        try:
            yield cur
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            cur.close()
    finally:
        conn.close()


@contextmanager
def _open_store(cfg: ImportConfig, directory: TypeDirectory) -> Iterator[AssetStore]:
    storage = cfg.storage
    if storage.backend == "postgres":
        with _db_connection(cfg) as cur:
            store = PostgresAssetStore(cur, storage.table, directory)
            store.ensure_table()
            yield store
        return
    yield FileAssetStore(Path(cfg.base_directory) / storage.root, directory)


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv (values override the process environment)."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="CSV / sheet -> typed record importer")
    p.add_argument("imports", nargs="*", help="Import names to run (default: all configured imports)")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Config file (default: config/import.yml)")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--inspect-data", action="store_true", help="Print resolved fields & first rows then exit")
    return p.parse_args(argv)


def _type_directory(cfg: ImportConfig) -> TypeDirectory:
    # record_modules は設定ファイルのディレクトリからも import できるようにする
    if cfg.base_directory not in sys.path:
        sys.path.insert(0, cfg.base_directory)
    return TypeDirectory.from_modules(cfg.settings.record_modules)


def _inspect_data(cfg: ImportConfig, names: list[str], directory: TypeDirectory) -> int:
    for name in names or list(cfg.imports):
        setting = cfg.imports.get(name)
        if setting is None:
            print(f"IMPORT: {name} (not configured)")
            continue
        print(f"IMPORT: {name} file={setting.csv_path} class={setting.class_name}")
        try:
            sheet = valid_content(read_table_file(Path(cfg.base_directory) / setting.csv_path), cfg.settings)
        except SheetReadError as e:
            print(f"  read_error: {e}")
            continue
        try:
            record_type = resolve_record_type(directory, setting.class_name, setting.check_fully_qualified_name)
            fields = resolve_fields(sheet, cfg.settings, record_type, directory)
        except ImportSetupError as e:
            print(f"  type_error: {e}")
            fields = parse_header(sheet, cfg.settings)
        for f in fields:
            state = "version" if f.is_version_field else ("ok" if f.is_valid else f"skip ({f.invalid_reason})")
            print(f"  FIELD {f.column_index + 1}: {f.name} [{f.declared_type}] {state}")
        content = split_sheet(sheet, cfg.settings)
        for i in range(min(3, content.row_count)):
            print("    sample_row=", list(content.row(i)))
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None のときのみ sys.argv を読む ([] はテストからの明示的な空引数)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug()
        logger.debug("debug mode enabled")

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        directory = _type_directory(cfg)
        # record_modules の import エラーは実行前に検出する
        logger.debug(f"record types: {directory.preload()} names")
    except ImportError as e:
        logger.error(f"record modules: {e}")
        return EXIT_FATAL

    if args.inspect_data:
        return _inspect_data(cfg, args.imports, directory)

    try:
        with _open_store(cfg, directory) as store:
            report: ImportRunReport = run_imports(cfg, args.imports, store, directory, error_log=ErrorLogBuffer())
    except (StorageError, OSError, psycopg2.Error) as e:
        logger.error(f"storage: {e}")
        return EXIT_FATAL

    if report.error_log_path is not None:
        logger.info(f"error log: {report.error_log_path}")

    summary_line = render_summary_line(report.results, len(report.failures), report.elapsed_seconds)
    # log_summary が "SUMMARY " を付けるので取り除く
    log_summary(summary_line[len("SUMMARY "):])

    if report.has_failures:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

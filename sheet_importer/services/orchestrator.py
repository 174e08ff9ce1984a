from __future__ import annotations

import logging
import posixpath
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path

from ..conversion.registry import ValueConverter
from ..logging.error_log import ErrorLogBuffer, ErrorRecord, records_for_outcome
from ..models.config_models import GlobalSettings, ImportConfig, ImportSetting
from ..models.field import Field
from ..models.import_result import ImportResult, RunCounters
from ..models.outcome import ResultType, RowOutcome, RowStatus
from ..reader.table_reader import SheetReadError, read_table_file, split_sheet, valid_content
from ..registry.type_directory import LookupStatus, TypeDirectory
from ..schema.resolver import find_key_indexes, resolve_fields
from ..storage.asset_store import ASSET_EXTENSION, AssetStore, normalize_path
from .errors import ImportSetupError
from .hooks import run_methods, run_validations
from .materializer import RowMaterializer
from .progress import ProgressTracker
from .reconciler import FlatTableReconciler, JoinReconciler

"""Import orchestration.

``run_import`` runs one configured import end to end:

    resolve types -> read sheet -> resolve fields -> set up destination
    -> materialize every row (source order) -> finish destination
    -> save_all (once) -> post-import methods / validations

``run_imports`` runs a list of imports plus their ``execute_after_import``
chains, catching setup errors per import so one broken import never stops
the others.
"""

__all__ = [
    "ImportRunReport",
    "resolve_record_type",
    "run_import",
    "run_imports",
]

logger = logging.getLogger(__name__)

CancelCheck = Callable[[], bool]


@dataclass
class ImportRunReport:
    """Results of a ``run_imports`` call."""
    results: list[ImportResult] = field(default_factory=list)
    failures: dict[str, ImportSetupError] = field(default_factory=dict)
    elapsed_seconds: float = 0.0
    error_log_path: Path | None = None

    @property
    def has_failures(self) -> bool:
        return bool(self.failures) or any(r.validation_ok is False for r in self.results)


def resolve_record_type(directory: TypeDirectory, name: str, fully_qualified: bool = False) -> type:
    lookup = directory.find_type(name, fully_qualified)
    if lookup.status is LookupStatus.NOT_FOUND:
        raise ImportSetupError("TYPE_NOT_FOUND", f"type not found: {name}")
    if lookup.status is LookupStatus.AMBIGUOUS:
        names = ", ".join(f"{t.__module__}.{t.__qualname__}" for t in lookup.candidates)
        raise ImportSetupError("TYPE_AMBIGUOUS", f"type name is ambiguous: {name} ({names})")
    if lookup.type is None:
        raise ImportSetupError("TYPE_NOT_FOUND", f"type not found: {name}")
    return lookup.type


def _reference_types(directory: TypeDirectory, settings: GlobalSettings) -> list[type]:
    found: list[type] = []
    for name in settings.reference_types:
        lookup = directory.find_type(name, fully_qualified="." in name)
        if lookup.type is None:
            logger.warning("reference type skipped (%s): %s", lookup.status.value, name)
            continue
        found.append(lookup.type)
    return found


def _warn_invalid_fields(setting: ImportSetting, fields: Sequence[Field]) -> None:
    for f in fields:
        if f.is_valid:
            continue
        if not f.name:
            logger.debug("%s column %d: blank header, ignored", setting.name, f.column_index + 1)
            continue
        logger.warning("%s column %d: field skipped: %s (%s)", setting.name, f.column_index + 1, f.name, f.invalid_reason)


def _report_row(setting: ImportSetting, log_types: ResultType, outcome: RowOutcome) -> None:
    """Row-level diagnostics; field-level ones are logged by the materializer."""
    if outcome.status is RowStatus.SKIPPED_NO_KEY and log_types & ResultType.SKIP_NO_KEY:
        logger.warning("%s line %d: key is empty, row skipped", setting.name, outcome.line)
    elif outcome.status is RowStatus.VERSION_MISMATCH and log_types & ResultType.VERSION_MISMATCH:
        logger.warning("%s line %d: %s, row skipped", setting.name, outcome.line, outcome.message)
    elif outcome.status is RowStatus.JOIN_NO_REFERENCE_ROW and log_types & ResultType.JOIN_NO_REFERENCE_ROW:
        logger.warning("%s line %d: no reference row in %s", setting.name, outcome.line, setting.target_table)
    elif outcome.status is RowStatus.INVALID_KEY and log_types & ResultType.INVALID_KEY:
        logger.error("%s line %d: %s, row skipped", setting.name, outcome.line, outcome.message)
    if outcome.flags & ResultType.JOIN_INDEX_MISMATCH and log_types & ResultType.JOIN_INDEX_MISMATCH:
        logger.warning("%s line %d: join index does not match the row position", setting.name, outcome.line)


def run_import(
    config: ImportConfig,
    name: str,
    store: AssetStore,
    directory: TypeDirectory,
    *,
    error_log: ErrorLogBuffer | None = None,
    should_cancel: CancelCheck | None = None,
) -> ImportResult:
    """Run one import.

    Raises:
        ImportSetupError: the import cannot start (nothing was read or written)
    """
    setting = config.imports.get(name)
    if setting is None:
        raise ImportSetupError("UNKNOWN_IMPORT", f"import not configured: {name}")
    settings = config.settings
    start_time = datetime.now(UTC)

    record_type = resolve_record_type(directory, setting.class_name, setting.check_fully_qualified_name)
    converter = ValueConverter(directory, _reference_types(directory, settings), resolver=store)

    sheet_path = Path(config.base_directory) / setting.csv_path
    try:
        sheet = valid_content(read_table_file(sheet_path), settings)
    except SheetReadError as e:
        raise ImportSetupError("SOURCE_NOT_FOUND", str(e)) from e

    fields = resolve_fields(sheet, settings, record_type, directory)
    _warn_invalid_fields(setting, fields)

    key_indexes = find_key_indexes(setting.keys, fields)
    found_keys = {fields[i].name for i in key_indexes}
    for missing in (k for k in setting.keys if k not in found_keys):
        logger.warning("%s: key column not found: %s", setting.name, missing)

    reconciler: FlatTableReconciler | JoinReconciler | None = None
    if setting.table_generate:
        table_type = resolve_record_type(
            directory, setting.resolved_table_class_name, setting.check_fully_qualified_name
        )
        table_path = normalize_path(posixpath.join(setting.destination, setting.resolved_table_asset_name + ASSET_EXTENSION))
        reconciler = FlatTableReconciler(store, directory, table_type, table_path)
    elif setting.join:
        reconciler = JoinReconciler(store, directory, setting, record_type)
    if reconciler is not None:
        reconciler.setup()

    materializer = RowMaterializer(
        setting,
        settings,
        fields,
        split_sheet(sheet, settings),
        record_type,
        converter,
        store,
        key_indexes=key_indexes,
        destination=reconciler,
    )

    logger.info("%s: %s -> %s (%d rows)", setting.name, setting.csv_path, record_type.__name__, materializer.row_count)
    counters = RunCounters()
    cancelled = False
    with ProgressTracker(materializer.row_count, description=setting.name) as progress:
        for row_index in range(materializer.row_count):
            if should_cancel is not None and should_cancel():
                logger.warning("%s: cancelled at line %d", setting.name, materializer.line_of(row_index))
                cancelled = True
                break
            outcome = materializer.materialize_row(row_index)
            counters.add(outcome)
            _report_row(setting, settings.log_types, outcome)
            if error_log is not None:
                error_log.extend(records_for_outcome(setting.csv_path, setting.class_name, outcome))
            progress.set_postfix(created=counters.created, updated=counters.updated)
            progress.advance()

    destination = None
    destination_path = None
    if reconciler is not None:
        reconciler.finish()
        destination = reconciler.destination
        destination_path = reconciler.destination_path
    saved = store.save_all()

    result = ImportResult.from_counters(
        setting.name,
        counters,
        destination=destination,
        destination_path=destination_path,
        start_time=start_time,
        end_time=datetime.now(UTC),
        cancelled=cancelled,
    )
    logger.info(
        "%s: success=%d created=%d updated=%d skipped_no_key=%d saved=%d elapsed=%.3fs",
        setting.name,
        result.success_count,
        result.created,
        result.updated,
        result.skipped_no_key,
        saved,
        result.elapsed_seconds,
    )

    if cancelled:
        return result
    run_methods(setting.execute_method_after_import, destination)
    validation_ok = run_validations(setting.execute_validation_after_import, destination)
    if validation_ok is False and error_log is not None:
        error_log.append(
            ErrorRecord.create(setting.csv_path, setting.class_name, -1, "VALIDATION_FAILED", f"validation failed: {setting.name}")
        )
    return replace(result, validation_ok=validation_ok)


def run_imports(
    config: ImportConfig,
    names: Sequence[str],
    store: AssetStore,
    directory: TypeDirectory,
    *,
    error_log: ErrorLogBuffer | None = None,
    should_cancel: CancelCheck | None = None,
) -> ImportRunReport:
    """Run ``names`` (every configured import when empty) and their chains.

    Each import runs at most once per call, which also breaks
    ``execute_after_import`` cycles. The error log is flushed once at the end.
    """
    error_log = error_log if error_log is not None else ErrorLogBuffer()
    report = ImportRunReport()
    done: set[str] = set()
    start_time = datetime.now(UTC)

    def visit(name: str) -> None:
        if name in done:
            logger.debug("%s: already ran, skipped", name)
            return
        done.add(name)
        setting = config.imports.get(name)
        try:
            result = run_import(
                config, name, store, directory, error_log=error_log, should_cancel=should_cancel
            )
        except ImportSetupError as e:
            logger.error("%s: %s", name, e)
            report.failures[name] = e
            error_log.append(
                ErrorRecord.create(
                    setting.csv_path if setting else name,
                    setting.class_name if setting else "",
                    -1,
                    e.reason,
                    str(e),
                )
            )
            return
        report.results.append(result)
        if result.cancelled:
            return
        for follow in setting.execute_after_import if setting else ():
            visit(follow)

    for name in names or list(config.imports):
        if should_cancel is not None and should_cancel():
            break
        visit(name)

    report.elapsed_seconds = (datetime.now(UTC) - start_time).total_seconds()
    report.error_log_path = error_log.flush()
    return report

"""Domain models for the sheet -> record import tool.

This package contains the data classes shared by the conversion, schema,
materialization and reconciliation layers.
"""

from .config_models import DatabaseConfig, GlobalSettings, ImportConfig, ImportSetting, StorageConfig
from .error_record import ErrorRecord
from .field import Field
from .import_result import ImportResult, RunCounters
from .outcome import FieldIssue, ResultType, RowOutcome, RowStatus
from .tabular_content import TabularContent

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "GlobalSettings",
    "ImportConfig",
    "ImportSetting",
    "StorageConfig",
    # Schema / content
    "Field",
    "TabularContent",
    # Outcomes
    "ErrorRecord",
    "FieldIssue",
    "ImportResult",
    "ResultType",
    "RowOutcome",
    "RowStatus",
    "RunCounters",
]

from __future__ import annotations

from collections.abc import Sequence

from ..models.config_models import GlobalSettings
from ..models.field import Field
from ..models.tabular_content import TabularContent
from ..registry.type_directory import TypeDirectory

"""Schema resolution: header rows -> ordered Field descriptors.

The resolver only classifies columns; it never logs. The orchestrator reports
every invalid field as a warning.

Header layout (0-based rows of the sheet, see GlobalSettings):
  row_index_of_name           field names (``tags[0]`` marks an array column)
  row_index_of_type           declared type text (informational)
  row_index_of_enabled_column optional on/off row, -1 when absent
"""

__all__ = [
    "ENABLED_VALUES",
    "bind_fields",
    "find_key_indexes",
    "parse_header",
    "resolve_fields",
]

ENABLED_VALUES = frozenset({"true", "1", "yes", "on", "o"})


def _header_cell(sheet: TabularContent, row: int, col: int) -> str:
    if row < 0 or row >= sheet.row_count:
        return ""
    return sheet.get(row, col)


def parse_header(sheet: TabularContent, settings: GlobalSettings) -> list[Field]:
    """Build one Field per column from the header rows, in column order."""
    if settings.row_index_of_name >= sheet.row_count:
        return []
    version_name = settings.version_field_name.strip()
    fields: list[Field] = []
    for col in range(sheet.col_count):
        f = Field.from_header(
            col,
            _header_cell(sheet, settings.row_index_of_name, col),
            _header_cell(sheet, settings.row_index_of_type, col),
        )
        if not f.name:
            f.invalidate("blank field name")
        elif version_name and f.base_name == version_name:
            f.is_version_field = True
        if settings.row_index_of_enabled_column >= 0 and f.is_valid:
            enabled = _header_cell(sheet, settings.row_index_of_enabled_column, col)
            if enabled.strip().lower() not in ENABLED_VALUES:
                f.invalidate("column disabled")
        fields.append(f)
    return fields


def bind_fields(fields: Sequence[Field], record_type: type, directory: TypeDirectory) -> list[Field]:
    """Attach member accessors; mark fields with no matching member invalid.

    Returns the fields that were invalidated by this call.
    """
    invalidated: list[Field] = []
    for f in fields:
        if not f.is_valid or f.is_version_field:
            continue
        member = directory.find_member(record_type, f.base_name)
        if member is None:
            f.invalidate(f"{record_type.__name__} has no member '{f.base_name}'")
            invalidated.append(f)
            continue
        f.member = member
        if f.is_array_field and member.element_type is None:
            f.invalidate(f"array column on non-sequence member: {member.annotation!r}")
            invalidated.append(f)
    return invalidated


def resolve_fields(
    sheet: TabularContent,
    settings: GlobalSettings,
    record_type: type,
    directory: TypeDirectory,
) -> list[Field]:
    """``parse_header`` + ``bind_fields`` against ``record_type``."""
    fields = parse_header(sheet, settings)
    bind_fields(fields, record_type, directory)
    return fields


def find_key_indexes(keys: Sequence[str], fields: Sequence[Field]) -> list[int]:
    """Column indexes of the key fields, in key order."""
    indexes: list[int] = []
    for key in keys:
        for i, f in enumerate(fields):
            if f.name == key:
                indexes.append(i)
    return indexes

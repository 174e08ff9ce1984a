from __future__ import annotations

from pathlib import Path

import pandas as pd

from ..models.config_models import GlobalSettings
from ..models.tabular_content import TabularContent

"""Sheet reader.

Every cell is read as text (``dtype=str``) and pandas' NA detection is
disabled, so ``NA`` / ``null`` / empty cells reach the converter exactly as
typed. Header rows are kept; the schema resolver decides what they mean.
"""

__all__ = [
    "SheetReadError",
    "read_table_file",
    "split_sheet",
    "valid_content",
]

SUPPORTED_SUFFIXES = (".csv", ".tsv", ".xlsx")


class SheetReadError(Exception):
    """Raised when a sheet file is missing or cannot be parsed."""


def read_table_file(path: Path, sheet_name: str | int = 0) -> TabularContent:
    """Read a .csv / .tsv / .xlsx file into a TabularContent (no header handling)."""
    if not path.exists():
        raise SheetReadError(f"sheet file not found: {path}")
    suffix = path.suffix.lower()
    try:
        if suffix == ".xlsx":
            df = pd.read_excel(path, sheet_name=sheet_name, header=None, dtype=str, keep_default_na=False)
        elif suffix in (".csv", ".tsv"):
            df = pd.read_csv(
                path,
                header=None,
                dtype=str,
                keep_default_na=False,
                sep="\t" if suffix == ".tsv" else ",",
                skip_blank_lines=False,
                encoding="utf-8-sig",
            )
        else:
            raise SheetReadError(f"unsupported sheet file: {path.name} (expected {', '.join(SUPPORTED_SUFFIXES)})")
    except pd.errors.EmptyDataError:
        return TabularContent(rows=())
    except (pd.errors.ParserError, UnicodeDecodeError, ValueError) as e:
        raise SheetReadError(f"failed to read {path.name}: {e}") from e
    df = df.fillna("")
    return TabularContent.from_rows(df.values.tolist())


def valid_content(raw: TabularContent, settings: GlobalSettings) -> TabularContent:
    """Apply the table start column and the optional END marker.

    With the end marker enabled, the first row whose marker column (an index
    into the raw sheet) equals ``end_marker`` and everything below it are
    dropped. Columns left of ``column_index_of_table_start`` are dropped.
    """
    sheet = raw
    if settings.is_end_marker_enabled:
        col = settings.column_index_of_end_marker
        for i in range(sheet.row_count):
            if col < sheet.col_count and sheet.get(i, col).strip() == settings.end_marker:
                sheet = sheet.slice(0, i)
                break
    return sheet.slice_columns(settings.column_index_of_table_start)


def split_sheet(sheet: TabularContent, settings: GlobalSettings) -> TabularContent:
    """Content rows only (row 0 = first data row)."""
    return sheet.slice(settings.row_index_of_content_start)

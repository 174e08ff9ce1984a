from __future__ import annotations

from collections.abc import Sequence

from ..models.import_result import ImportResult

"""SUMMARY line rendering.

Format (one line, fixed key order):

    SUMMARY imports=<n> failed=<n> rows=<n> created=<n> updated=<n>
    skipped_no_key=<n> version_mismatch=<n> conversion_failed=<n>
    join_no_reference=<n> elapsed_sec=<s>

``rows`` counts rows that reached their destination (success_count summed
over every finished import). ``failed`` counts imports that never produced a
result (setup errors) plus finished imports whose validation failed.
"""

__all__ = [
    "format_elapsed",
    "render_summary_line",
]


def format_elapsed(seconds: float) -> str:
    """Seconds without scientific notation or trailing zeros."""
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{seconds:.3f}".rstrip("0").rstrip(".")


def render_summary_line(results: Sequence[ImportResult], failed_imports: int, elapsed_seconds: float) -> str:
    """Render the SUMMARY line.

    Args:
        results: finished import runs (in run order)
        failed_imports: imports that ended with a setup error
        elapsed_seconds: wall time of the whole invocation

    Returns:
        Line without the logger prefix, e.g.
        ``SUMMARY imports=2 failed=0 rows=10 created=4 updated=6 ...``
    """
    failed = failed_imports + sum(1 for r in results if r.validation_ok is False)
    return (
        f"SUMMARY imports={len(results) + failed_imports} "
        f"failed={failed} "
        f"rows={sum(r.success_count for r in results)} "
        f"created={sum(r.created for r in results)} "
        f"updated={sum(r.updated for r in results)} "
        f"skipped_no_key={sum(r.skipped_no_key for r in results)} "
        f"version_mismatch={sum(r.version_mismatch for r in results)} "
        f"conversion_failed={sum(r.conversion_failed for r in results)} "
        f"join_no_reference={sum(r.join_no_reference_row for r in results)} "
        f"elapsed_sec={format_elapsed(elapsed_seconds)}"
    )

from __future__ import annotations

import re

import pytest

from sheet_importer.cli.__main__ import main

"""SUMMARY 行フォーマット契約テスト (キー順固定、1 行)."""

pytestmark = pytest.mark.contract

SUMMARY_PATTERN = re.compile(
    r"^SUMMARY imports=(\d+) failed=(\d+) rows=(\d+) created=(\d+) updated=(\d+) "
    r"skipped_no_key=(\d+) version_mismatch=(\d+) conversion_failed=(\d+) "
    r"join_no_reference=(\d+) elapsed_sec=(\d+(\.\d+)?)$"
)


def test_summary_pattern_example_line():
    line = (
        "SUMMARY imports=2 failed=0 rows=10 created=4 updated=6 skipped_no_key=1 "
        "version_mismatch=0 conversion_failed=0 join_no_reference=0 elapsed_sec=0.84"
    )
    assert SUMMARY_PATTERN.match(line)


def test_summary_pattern_rejects_scientific_notation():
    line = (
        "SUMMARY imports=1 failed=0 rows=1 created=1 updated=0 skipped_no_key=0 "
        "version_mismatch=0 conversion_failed=0 join_no_reference=0 elapsed_sec=1e-05"
    )
    assert not SUMMARY_PATTERN.match(line)


def test_cli_prints_exactly_one_summary_line(write_config, capsys):
    main([])
    lines = [line for line in capsys.readouterr().out.splitlines() if line.startswith("SUMMARY")]
    assert len(lines) == 1
    m = SUMMARY_PATTERN.match(lines[0])
    assert m, lines[0]
    assert m.group(1) == "4"

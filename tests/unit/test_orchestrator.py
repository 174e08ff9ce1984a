from __future__ import annotations

import json
import logging
from pathlib import Path

from unittest.mock import Mock, patch

import pytest
import sample_records
from conftest import CHILD_ROWS, HUMAN_ROWS, PARENT_ROWS
from sample_records import Human, HumanTable, ParentTable

from sheet_importer.logging.error_log import ErrorLogBuffer
from sheet_importer.models.outcome import RowStatus
from sheet_importer.services.errors import ImportSetupError
from sheet_importer.services.orchestrator import resolve_record_type, run_import, run_imports
from sheet_importer.registry.type_directory import TypeDirectory

HUMANS = {"csv_path": "data/humans.csv", "class_name": "Human", "destination": "Humans", "key": "id"}
HUMAN_TABLE = {"csv_path": "data/humans.csv", "class_name": "Human", "table_generate": True, "key": "id"}
PARENTS = {"csv_path": "data/parents.csv", "class_name": "Parent", "table_generate": True}
CHILDREN = {
    "csv_path": "data/children.csv",
    "class_name": "Child",
    "join": True,
    "target_table": "ParentTable.asset",
    "self_join_key_field": "parent_id",
    "target_join_list_field": "children",
    "target_find_method_name": "find",
}


@pytest.fixture(autouse=True)
def _csv_files(write_csv):
    write_csv("humans.csv", HUMAN_ROWS)
    write_csv("parents.csv", PARENT_ROWS)
    write_csv("children.csv", CHILD_ROWS)


@pytest.fixture(autouse=True)
def _clear_calls():
    sample_records.CALLS.clear()
    yield
    sample_records.CALLS.clear()


def test_resolve_record_type_errors(directory):
    with pytest.raises(ImportSetupError) as exc:
        resolve_record_type(directory, "Nope")
    assert exc.value.reason == "TYPE_NOT_FOUND"

    dup = type("Human", (), {"__module__": "elsewhere"})
    with pytest.raises(ImportSetupError) as exc:
        resolve_record_type(TypeDirectory([Human, dup]), "Human")
    assert exc.value.reason == "TYPE_AMBIGUOUS"


def test_run_import_persistent_records(make_config, memory_store, directory):
    cfg = make_config({"humans": HUMANS})

    result = run_import(cfg, "humans", memory_store, directory)

    assert result.success_count == 2
    assert result.created == 2 and result.updated == 0
    assert result.skipped_no_key == 1
    assert result.version_mismatch == 1
    assert result.field_conversion_failures == 1
    assert result.destination is None and result.destination_path is None
    assert result.validation_ok is None
    assert [o.status for o in result.outcomes] == [
        RowStatus.SUCCESS,
        RowStatus.SUCCESS,
        RowStatus.SKIPPED_NO_KEY,
        RowStatus.VERSION_MISMATCH,
    ]
    assert set(memory_store.saved) == {"Humans/Human_1.asset", "Humans/Human_2.asset"}
    assert memory_store.save_count == 1
    alice = memory_store.load_by_path("Humans/Human_1.asset", Human)
    assert alice.tags == ["a", "b"]
    assert alice.age == 30


def test_run_import_second_run_updates(make_config, memory_store, directory):
    cfg = make_config({"humans": HUMANS})
    run_import(cfg, "humans", memory_store, directory)
    result = run_import(cfg, "humans", memory_store, directory)
    assert result.created == 0 and result.updated == 2


def test_run_import_flat_table(make_config, memory_store, directory):
    cfg = make_config({"human_table": HUMAN_TABLE})

    result = run_import(cfg, "human_table", memory_store, directory)

    assert isinstance(result.destination, HumanTable)
    assert result.destination_path == "HumanTable.asset"
    assert [h.id for h in result.destination.rows] == ["1", "2"]
    assert result.created == 0 and result.updated == 0
    assert set(memory_store.saved) == {"HumanTable.asset"}


def test_run_import_join(make_config, memory_store, directory):
    cfg = make_config({"parents": PARENTS, "children": CHILDREN})
    run_import(cfg, "parents", memory_store, directory)

    result = run_import(cfg, "children", memory_store, directory)

    assert isinstance(result.destination, ParentTable)
    assert result.success_count == 3
    p1, p2 = result.destination.rows
    assert [c.name for c in p1.children] == ["c1", "c3"]
    assert [c.name for c in p2.children] == ["c2"]


def test_run_import_setup_errors(make_config, memory_store, directory):
    cfg = make_config(
        {
            "missing_type": {"csv_path": "data/humans.csv", "class_name": "Nope"},
            "missing_file": {"csv_path": "data/none.csv", "class_name": "Human"},
            "missing_table": {"csv_path": "data/humans.csv", "class_name": "Item", "table_generate": True},
            "no_rows": {
                "csv_path": "data/humans.csv",
                "class_name": "Item",
                "table_generate": True,
                "table_class_name": "Catalog",
            },
            "no_target": CHILDREN,
        }
    )
    reasons = {}
    for name in [*cfg.imports, "not_configured"]:
        with pytest.raises(ImportSetupError) as exc:
            run_import(cfg, name, memory_store, directory)
        reasons[name] = exc.value.reason
    assert reasons == {
        "missing_type": "TYPE_NOT_FOUND",
        "missing_file": "SOURCE_NOT_FOUND",
        "missing_table": "TYPE_NOT_FOUND",
        "no_rows": "NO_ROWS_MEMBER",
        "no_target": "INVALID_JOIN_SETTING",
        "not_configured": "UNKNOWN_IMPORT",
    }
    assert memory_store.saved == {}


def test_run_import_reports_invalid_fields(make_config, memory_store, directory, caplog):
    caplog.set_level(logging.WARNING, logger="sheet_importer")
    run_import(make_config({"humans": HUMANS}), "humans", memory_store, directory)
    assert any("field skipped: nickname" in r.getMessage() for r in caplog.records)


def test_run_import_warns_missing_key_column(make_config, memory_store, directory, caplog):
    caplog.set_level(logging.WARNING, logger="sheet_importer")
    cfg = make_config({"humans": {**HUMANS, "key": "uid"}})
    result = run_import(cfg, "humans", memory_store, directory)
    assert any("key column not found: uid" in r.getMessage() for r in caplog.records)
    # キー列がなければ行番号でファイル名を作る
    assert result.outcomes[0].path == "Humans/Human0.asset"


def test_run_import_cancellation(make_config, memory_store, directory):
    cfg = make_config({"humans": HUMANS})
    calls = iter([False, True])

    result = run_import(cfg, "humans", memory_store, directory, should_cancel=lambda: next(calls, True))

    assert result.cancelled
    assert len(result.outcomes) == 1
    # 中断しても処理済みの行は保存される
    assert set(memory_store.saved) == {"Humans/Human_1.asset"}


def test_run_import_hooks(make_config, memory_store, directory):
    cfg = make_config(
        {
            "human_table": {
                **HUMAN_TABLE,
                "execute_method_after_import": ["sample_records:remember"],
                "execute_validation_after_import": ["sample_records:has_rows"],
            }
        }
    )
    result = run_import(cfg, "human_table", memory_store, directory)
    assert sample_records.CALLS == [result.destination]
    assert result.validation_ok is True


def test_run_import_collects_error_records(make_config, memory_store, directory):
    buf = ErrorLogBuffer()
    run_import(make_config({"humans": HUMANS}), "humans", memory_store, directory, error_log=buf)
    types = sorted(r.error_type for r in buf.records)
    assert types == ["CONVERT_FAILS", "VERSION_MISMATCH"]
    assert {r.row for r in buf.records} == {4, 6}


def test_run_imports_chains_and_flushes(make_config, memory_store, directory, temp_workdir: Path):
    cfg = make_config({"parents": {**PARENTS, "execute_after_import": ["children"]}, "children": CHILDREN})

    report = run_imports(cfg, ["parents"], memory_store, directory)

    assert [r.name for r in report.results] == ["parents", "children"]
    assert not report.has_failures
    assert report.error_log_path is None


def test_run_imports_cycle_guard(make_config, memory_store, directory):
    cfg = make_config(
        {
            "parents": {**PARENTS, "execute_after_import": ["children"]},
            "children": {**CHILDREN, "execute_after_import": ["parents"]},
        }
    )
    report = run_imports(cfg, [], memory_store, directory)
    assert [r.name for r in report.results] == ["parents", "children"]


def test_run_imports_continues_after_setup_error(make_config, memory_store, directory, temp_workdir: Path):
    cfg = make_config({"broken": {"csv_path": "data/none.csv", "class_name": "Human"}, "humans": HUMANS})

    report = run_imports(cfg, ["broken", "humans"], memory_store, directory)

    assert list(report.failures) == ["broken"]
    assert [r.name for r in report.results] == ["humans"]
    assert report.has_failures
    lines = report.error_log_path.read_text(encoding="utf-8").splitlines()
    records = [json.loads(line) for line in lines]
    setup = [r for r in records if r["error_type"] == "SOURCE_NOT_FOUND"]
    assert setup and setup[0]["row"] == -1 and setup[0]["source"] == "data/none.csv"


def test_run_imports_failed_validation(make_config, memory_store, directory):
    cfg = make_config({"humans": {**HUMANS, "execute_validation_after_import": ["sample_records:always_false"]}})
    report = run_imports(cfg, [], memory_store, directory)
    assert report.results[0].validation_ok is False
    assert report.has_failures


def test_log_types_filter_console_only(make_config, memory_store, directory, caplog):
    caplog.set_level(logging.WARNING, logger="sheet_importer")
    cfg = make_config({"humans": HUMANS}, settings={"log_types": ["VERSION_MISMATCH"]})
    buf = ErrorLogBuffer()

    run_import(cfg, "humans", memory_store, directory, error_log=buf)

    messages = [r.getMessage() for r in caplog.records]
    assert any("newer than" in m for m in messages)
    assert not any("key is empty" in m for m in messages)
    assert not any("conversion failed" in m for m in messages)
    # エラーログは log_types に関係なく全件
    assert len(buf.records) == 2


def test_run_import_outcomes_do_not_hold_records(make_config, memory_store, directory):
    cfg = make_config({"humans": HUMANS, "human_table": HUMAN_TABLE})
    for name in ("humans", "human_table"):
        result = run_import(cfg, name, memory_store, directory)
        assert result.outcomes
        assert all(o.record is None for o in result.outcomes)
    # レコード本体は保存先に残る
    assert [h.name for h in result.destination.rows] == ["Alice", "Bob"]


def test_run_import_shows_counts_on_progress_bar(make_config, memory_store, directory):
    pbar = Mock()
    with patch("sheet_importer.services.progress.is_tty_enabled", return_value=True), \
         patch("sheet_importer.services.progress.tqdm", return_value=pbar):
        run_import(make_config({"humans": HUMANS}), "humans", memory_store, directory)

    assert pbar.update.call_count == 4
    assert pbar.set_postfix.call_count == 4
    assert pbar.set_postfix.call_args_list[0].kwargs == {"created": 1, "updated": 0}
    assert pbar.set_postfix.call_args.kwargs == {"created": 2, "updated": 0}
    pbar.close.assert_called_once()


def test_run_import_rejects_keys_leaving_the_store(write_csv, make_config, memory_store, directory, caplog):
    caplog.set_level(logging.ERROR, logger="sheet_importer")
    rows = [list(r) for r in HUMAN_ROWS[:3]] + [["/../../../escaped", "Mallory", "1", "", "", "", "", ""]]
    write_csv("humans.csv", rows)
    buf = ErrorLogBuffer()

    result = run_import(make_config({"humans": HUMANS}), "humans", memory_store, directory, error_log=buf)

    assert result.invalid_key == 1
    assert result.outcomes[-1].status is RowStatus.INVALID_KEY
    assert set(memory_store.saved) == {"Humans/Human_1.asset"}
    assert any("outside the storage root" in r.getMessage() for r in caplog.records)
    assert [r.error_type for r in buf.records] == ["INVALID_KEY"]

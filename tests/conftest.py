# Shared pytest fixtures
from __future__ import annotations

import csv
import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from sheet_importer.config.loader import parse_config
from sheet_importer.logging.init import reset_logging
from sheet_importer.models.config_models import ImportConfig
from sheet_importer.registry.type_directory import TypeDirectory
from sheet_importer.storage.asset_store import MemoryAssetStore

HUMAN_ROWS = [
    ["id", "name", "age", "tags[0]", "tags[1]", "tags[2]", "version", "nickname"],
    ["string", "string", "int", "string", "string", "string", "string", "string"],
    ["1", "Alice", "30", "a", "b", "", "1.0.0", "ally"],
    ["2", "Bob", "abc", "c", "", "", "0.1.0", "bobby"],
    ["", "NoKey", "5", "", "", "", "", ""],
    ["3", "Future", "40", "", "", "", "9.9.9", ""],
]

PARENT_ROWS = [
    ["id", "name"],
    ["string", "string"],
    ["P1", "first"],
    ["P2", "second"],
]

CHILD_ROWS = [
    ["parent_id", "name", "index"],
    ["string", "string", "int"],
    ["P1", "c1", "0"],
    ["P2", "c2", "0"],
    ["P1", "c3", "1"],
]


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    # setup_logging() は propagate=False にするので caplog のために毎回戻す
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Iterator[Path]:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def write_csv(temp_workdir: Path) -> Callable[[str, list[list[str]]], Path]:
    def _write(name: str, rows: list[list[str]]) -> Path:
        path = temp_workdir / "data" / name
        with path.open("w", encoding="utf-8", newline="") as f:
            csv.writer(f).writerows(rows)
        return path

    return _write


@pytest.fixture()
def directory() -> TypeDirectory:
    return TypeDirectory.from_modules(["sample_records"])


@pytest.fixture()
def memory_store(directory: TypeDirectory) -> MemoryAssetStore:
    return MemoryAssetStore(directory)


@pytest.fixture()
def make_config(temp_workdir: Path) -> Callable[..., ImportConfig]:
    """ImportConfig from plain data (validated like a YAML file)."""

    def _make(imports: dict[str, Any], settings: dict[str, Any] | None = None, **extra: Any) -> ImportConfig:
        data: dict[str, Any] = {"imports": imports, **extra}
        data["settings"] = {"record_modules": ["sample_records"], **(settings or {})}
        return parse_config(data, base_directory=str(temp_workdir))

    return _make


@pytest.fixture()
def sample_config_yaml() -> str:
    return """settings:
  app_version: "1.0.0"
  record_modules: [sample_records]
  reference_types: [Item]
storage:
  backend: file
  root: ./assets
imports:
  humans:
    csv_path: data/humans.csv
    class_name: Human
    destination: Humans
    key: id
  human_table:
    csv_path: data/humans.csv
    class_name: Human
    table_generate: true
    key: id
  parents:
    csv_path: data/parents.csv
    class_name: Parent
    table_generate: true
    execute_after_import: [children]
  children:
    csv_path: data/children.csv
    class_name: Child
    join: true
    target_table: ParentTable.asset
    target_join_key_field: id
    self_join_key_field: parent_id
    target_join_list_field: children
    target_find_method_name: find
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str, write_csv) -> Path:
    write_csv("humans.csv", HUMAN_ROWS)
    write_csv("parents.csv", PARENT_ROWS)
    write_csv("children.csv", CHILD_ROWS)
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg

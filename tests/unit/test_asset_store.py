from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from sample_records import Child, Element, Human, HumanTable, Item, Parent, ParentTable, Rarity

from sheet_importer.storage.asset_store import (
    FileAssetStore,
    MemoryAssetStore,
    StorageError,
    asset_name,
    is_contained_path,
    normalize_path,
)


def test_normalize_path_and_asset_name():
    assert normalize_path("./Data\\Human_1.asset") == "Data/Human_1.asset"
    assert asset_name("Data/Human_1.asset") == "Human_1"
    assert asset_name("Human_1") == "Human_1"


def test_identity_map(memory_store):
    h = memory_store.create(Human, "Data/Human_1.asset")
    assert memory_store.load_by_path("./Data/Human_1.asset", Human) is h
    assert memory_store.path_of(h) == "Data/Human_1.asset"
    # 型が違えば見つからない扱い
    assert memory_store.load_by_path("Data/Human_1.asset", Item) is None


def test_save_all_writes_dirty_objects_once(memory_store):
    h = memory_store.create(Human, "Data/Human_1.asset")
    h.name = "Alice"
    assert memory_store.save_all() == 1
    assert memory_store.save_all() == 0
    assert memory_store.save_count == 1

    type_name, data = memory_store.saved["Data/Human_1.asset"]
    assert type_name == "sample_records.Human"
    assert data["name"] == "Alice"

    memory_store.mark_dirty(h)
    assert memory_store.is_dirty(h)
    assert memory_store.save_all() == 1


def test_mark_dirty_requires_stored_object(memory_store):
    with pytest.raises(StorageError):
        memory_store.mark_dirty(Human())


def test_load_reference_by_asset_name(memory_store):
    sword = memory_store.create(Item, "Items/Sword.asset")
    assert memory_store.load_reference("Sword", Item) is sword
    assert memory_store.load_reference("Sword", Human) is None
    assert memory_store.load_reference("Axe", Item) is None


def test_file_store_round_trip(tmp_path: Path, directory):
    store = FileAssetStore(tmp_path, directory)
    h = store.create(Human, "Data/Human_1.asset")
    h.id, h.name, h.age, h.tags = "1", "Alice", 30, ["a", "b"]
    h.rarity, h.element = Rarity.EPIC, Element.FIRE | Element.WIND
    store.save_all()

    doc = yaml.safe_load((tmp_path / "Data" / "Human_1.asset").read_text(encoding="utf-8"))
    assert doc["type"] == "sample_records.Human"
    assert doc["data"]["rarity"] == "EPIC"
    assert doc["data"]["element"] == 5

    loaded = FileAssetStore(tmp_path, directory).load_by_path("Data/Human_1.asset", Human)
    assert loaded == h
    assert loaded is not h


def test_file_store_writes_nested_assets_as_refs(tmp_path: Path, directory):
    store = FileAssetStore(tmp_path, directory)
    table = store.create(HumanTable, "Data/HumanTable.asset")
    h = store.create(Human, "Data/Human_1.asset")
    h.id = "1"
    table.rows = [h, Human(id="inline")]
    store.save_all()

    doc = yaml.safe_load((tmp_path / "Data" / "HumanTable.asset").read_text(encoding="utf-8"))
    assert doc["data"]["rows"][0] == {"$ref": "Data/Human_1.asset"}
    assert doc["data"]["rows"][1]["id"] == "inline"

    fresh = FileAssetStore(tmp_path, directory)
    loaded = fresh.load_by_path("Data/HumanTable.asset", HumanTable)
    assert [r.id for r in loaded.rows] == ["1", "inline"]
    assert loaded.rows[0] is fresh.load_by_path("Data/Human_1.asset", Human)


def test_file_store_loads_untyped_by_stored_type(tmp_path: Path, directory):
    store = FileAssetStore(tmp_path, directory)
    table = store.create(ParentTable, "ParentTable.asset")
    table.rows = [Parent(id="P1", children=[Child(parent_id="P1", name="c")])]
    store.save_all()

    loaded = FileAssetStore(tmp_path, directory).load_by_path("ParentTable.asset", object)
    assert isinstance(loaded, ParentTable)
    assert loaded.rows[0].children[0].name == "c"


def test_file_store_reference_search(tmp_path: Path, directory):
    store = FileAssetStore(tmp_path, directory)
    sword = store.create(Item, "Items/Weapons/Sword.asset")
    sword.name = "Sword"
    store.save_all()

    found = FileAssetStore(tmp_path, directory).load_reference("Sword", Item)
    assert isinstance(found, Item) and found.name == "Sword"


def test_file_store_missing_and_broken_files(tmp_path: Path, directory):
    store = FileAssetStore(tmp_path, directory)
    assert store.load_by_path("Nope.asset", Human) is None
    (tmp_path / "Broken.asset").write_text("type: [unclosed", encoding="utf-8")
    with pytest.raises(StorageError):
        store.load_by_path("Broken.asset", Human)


def test_memory_store_without_directory_uses_requested_type():
    store = MemoryAssetStore()
    h = store.create(Human, "H.asset")
    assert store.load_by_path("H.asset", Human) is h


def test_is_contained_path():
    assert is_contained_path("Data/Human_1.asset")
    assert is_contained_path("..hidden.asset")
    assert not is_contained_path("../escaped.asset")
    assert not is_contained_path("..")
    assert not is_contained_path("/etc/passwd")
    assert not is_contained_path("C:/Windows/x.asset")


@pytest.mark.parametrize("path", ["../escaped.asset", "Data/../../escaped.asset", "/tmp/escaped.asset"])
def test_store_refuses_paths_outside_root(tmp_path: Path, directory, path):
    root = tmp_path / "assets"
    store = FileAssetStore(root, directory)
    with pytest.raises(StorageError, match="outside the store root"):
        store.create(Human, path)
    with pytest.raises(StorageError, match="outside the store root"):
        store.load_by_path(path, Human)
    assert store.save_all() == 0
    assert not (tmp_path / "escaped.asset").exists()

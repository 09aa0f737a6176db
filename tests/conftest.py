from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from megamenu_editor.session import MenuEditor
from megamenu_editor.store import StoreError
from megamenu_editor.yaml_store import YamlMenuStore

# Catalog:  Men(10) > Shirts(11), Acme(12)    Women(13) > Dresses(14), Zenith(15)
#           Sale(16)    New Arrivals(17)
# Menu:     40 Men (0) > 43 Shirts (0), 44 Acme (1)
#           41 Women (1)
#           42 Sale (2)
SEED_YAML = """\
version: 1
next_collection_id: 30
next_menu_id: 50
collections:
  - {id: 10, name: Men, slug: men, collection_type: category, parent_id: null, products_count: 4, is_active: true}
  - {id: 11, name: Shirts, slug: shirts, collection_type: category, parent_id: 10, products_count: 2, is_active: true}
  - {id: 12, name: Acme, slug: acme, collection_type: brand, parent_id: 10, products_count: 1, is_active: true}
  - {id: 13, name: Women, slug: women, collection_type: category, parent_id: null, products_count: 3, is_active: true}
  - {id: 14, name: Dresses, slug: dresses, collection_type: category, parent_id: 13, products_count: 3, is_active: true}
  - {id: 15, name: Zenith, slug: zenith, collection_type: brand, parent_id: 13, products_count: 0, is_active: true}
  - {id: 16, name: Sale, slug: sale, collection_type: featured, parent_id: null, products_count: 5, is_active: true}
  - {id: 17, name: New Arrivals, slug: new-arrivals, collection_type: custom, parent_id: null, products_count: 0, is_active: true}
menu:
  - {id: 40, collection_id: 10, parent_menu_item_id: null, position: 0, level: 0, is_active: true, display_subcollections: true, is_featured: false}
  - {id: 41, collection_id: 13, parent_menu_item_id: null, position: 1, level: 0, is_active: true, display_subcollections: false, is_featured: false}
  - {id: 42, collection_id: 16, parent_menu_item_id: null, position: 2, level: 0, is_active: true, display_subcollections: false, is_featured: false}
  - {id: 43, collection_id: 11, parent_menu_item_id: 40, position: 0, level: 1, is_active: true, display_subcollections: false, is_featured: false}
  - {id: 44, collection_id: 12, parent_menu_item_id: 40, position: 1, level: 1, is_active: true, display_subcollections: false, is_featured: true}
"""


class RecordingStore:
    """Wraps a store, recording every call and failing the ones listed in ``fail``.

    ``fail`` holds action names ("fetch", "add", "remove", "update",
    "reorder") or (action, key) pairs where key is the entry id, or the
    catalog node id for adds.
    """

    def __init__(self, inner: Any, fail: set[Any] | None = None) -> None:
        self.inner = inner
        self.fail: set[Any] = set(fail or ())
        self.calls: list[tuple[Any, ...]] = []

    def _check(self, action: str, key: Any = None) -> None:
        if action in self.fail or (action, key) in self.fail:
            raise StoreError(f"{action} rejected", status=500)

    def fetch_snapshot(self):
        self.calls.append(("fetch",))
        self._check("fetch")
        return self.inner.fetch_snapshot()

    def add_entry(self, catalog_node_id, parent_id):
        self.calls.append(("add", catalog_node_id, parent_id))
        self._check("add", catalog_node_id)
        return self.inner.add_entry(catalog_node_id, parent_id)

    def remove_entry(self, entry_id):
        self.calls.append(("remove", entry_id))
        self._check("remove", entry_id)
        return self.inner.remove_entry(entry_id)

    def update_entry(self, entry_id, fields):
        self.calls.append(("update", entry_id, dict(fields)))
        self._check("update", entry_id)
        return self.inner.update_entry(entry_id, fields)

    def reorder(self, items):
        self.calls.append(("reorder", [dict(i) for i in items]))
        self._check("reorder")
        return self.inner.reorder(items)

    def writes(self) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] != "fetch"]


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    path = tmp_path / "megamenu-store.yml"
    path.write_text(SEED_YAML, encoding="utf-8")
    return path


@pytest.fixture
def yaml_store(store_path: Path) -> YamlMenuStore:
    return YamlMenuStore(store_path, backup_keep=2)


@pytest.fixture
def recording(yaml_store: YamlMenuStore) -> RecordingStore:
    return RecordingStore(yaml_store)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def editor(recording: RecordingStore, sleeps: list[float]) -> MenuEditor:
    ed = MenuEditor(recording, commit_delay=0.1, sleep=sleeps.append)
    assert ed.load()
    recording.calls.clear()
    return ed


class GappyYamlStore(YamlMenuStore):
    """Removes cascade without closing the gap left among the siblings,
    the way the REST backend does."""

    @staticmethod
    def _compact(menu, parent_id):
        return None


@pytest.fixture
def gappy_recording(store_path: Path) -> RecordingStore:
    return RecordingStore(GappyYamlStore(store_path, backup_keep=0))


@pytest.fixture
def gappy_editor(gappy_recording: RecordingStore) -> MenuEditor:
    ed = MenuEditor(gappy_recording, commit_delay=0)
    assert ed.load()
    gappy_recording.calls.clear()
    return ed


@pytest.fixture(scope="session")
def make_store(tmp_path_factory):
    """Builds a fresh seeded store in its own directory on every call."""

    def make(gappy: bool = False) -> YamlMenuStore:
        path = tmp_path_factory.mktemp("store") / "megamenu-store.yml"
        path.write_text(SEED_YAML, encoding="utf-8")
        return (GappyYamlStore if gappy else YamlMenuStore)(path, backup_keep=0)

    return make

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime
from pathlib import Path
from shutil import copy2
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap, CommentedSeq

from .models import CATALOG_KINDS, MenuEntry, Snapshot, created_entry_from_dict, snapshot_from_dict
from .store import StoreError, fields_to_wire

logger = logging.getLogger(__name__)

yaml = YAML()
yaml.preserve_quotes = True
yaml.indent(mapping=2, sequence=4, offset=2)
yaml.width = 4096


def _now_stamp() -> str:
    return datetime.now().strftime("%Y%m%d-%H%M%S")


def _slugify(text: str) -> str:
    slug = re.sub(r"[^0-9A-Za-z._-]+", "-", (text or "").strip().lower()).strip("-")
    return slug or "collection"


def _backup_file(path: Path, keep: int) -> Path | None:
    if not path.exists() or keep <= 0:
        return None
    backup_dir = path.parent / "backups"
    backup_dir.mkdir(parents=True, exist_ok=True)
    backup_path = backup_dir / f"{path.name}.bak-{_now_stamp()}"
    copy2(path, backup_path)

    # Keep only the most recent backups.
    backups = sorted(
        backup_dir.glob(f"{path.name}.bak-*"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    for old in backups[keep:]:
        try:
            old.unlink()
        except OSError:
            pass

    return backup_path


class YamlMenuStore:
    """Mega menu store kept in a single YAML file.

    Collections and menu items are stored as flat rows; trees are built on
    read. Writes behave like the REST backend: duplicate collections under
    one parent are rejected, new items are appended after their siblings,
    and removing an item removes its children with it.
    """

    def __init__(self, path: Path, *, backup_keep: int = 5) -> None:
        self.path = Path(path)
        self.backup_keep = backup_keep
        self._lock = threading.RLock()

    # -- file access -------------------------------------------------------

    def _load(self) -> CommentedMap:
        if not self.path.exists():
            data = CommentedMap()
        else:
            try:
                with self.path.open("r", encoding="utf-8") as handle:
                    data = yaml.load(handle) or CommentedMap()
            except Exception as exc:
                raise StoreError(f"Failed to read {self.path.name}: {exc}") from exc
        if not isinstance(data, CommentedMap):
            raise StoreError(f"{self.path.name} must contain a mapping at the top level.")
        data.setdefault("version", 1)
        data.setdefault("next_collection_id", 1)
        data.setdefault("next_menu_id", 1)
        if not isinstance(data.get("collections"), list):
            data["collections"] = CommentedSeq()
        if not isinstance(data.get("menu"), list):
            data["menu"] = CommentedSeq()
        return data

    def _save(self, data: CommentedMap) -> Path | None:
        backup = _backup_file(self.path, self.backup_keep)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as handle:
            yaml.dump(data, handle)
        return backup

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _collection_levels(collections: list[Any]) -> dict[int, int]:
        by_id = {c["id"]: c for c in collections}
        levels: dict[int, int] = {}

        def level_of(cid: int, seen: frozenset[int] = frozenset()) -> int:
            if cid in levels:
                return levels[cid]
            parent = by_id[cid].get("parent_id")
            if parent is None or parent not in by_id or parent in seen:
                value = 0
            else:
                value = level_of(parent, seen | {cid}) + 1
            levels[cid] = value
            return value

        for cid in by_id:
            level_of(cid)
        return levels

    @staticmethod
    def _find(rows: list[Any], row_id: int) -> Any | None:
        for row in rows:
            if row["id"] == row_id:
                return row
        return None

    @staticmethod
    def _joined(row: Any, collections: dict[int, Any], levels: dict[int, int]) -> dict[str, Any]:
        collection = collections.get(row["collection_id"], {})
        item = dict(row)
        item.update(
            {
                "collection_name": collection.get("name"),
                "collection_slug": collection.get("slug"),
                "parent_id": collection.get("parent_id"),
                "collection_type": collection.get("collection_type", "custom"),
                "collection_level": levels.get(row["collection_id"], 0),
            }
        )
        return item

    @staticmethod
    def _subtree_ids(menu: list[Any], root_id: int) -> list[int]:
        ids = [root_id]
        idx = 0
        while idx < len(ids):
            current = ids[idx]
            ids.extend(r["id"] for r in menu if r.get("parent_menu_item_id") == current)
            idx += 1
        return ids

    @staticmethod
    def _compact(menu: list[Any], parent_id: int | None) -> None:
        siblings = sorted(
            (r for r in menu if r.get("parent_menu_item_id") == parent_id),
            key=lambda r: r["position"],
        )
        for idx, row in enumerate(siblings):
            row["position"] = idx

    def _relevel(self, menu: list[Any], row: Any, level: int) -> None:
        row["level"] = level
        for child in menu:
            if child.get("parent_menu_item_id") == row["id"]:
                self._relevel(menu, child, level + 1)

    # -- catalog management ------------------------------------------------

    def add_catalog_node(
        self,
        name: str,
        *,
        slug: str | None = None,
        kind: str = "custom",
        parent_id: int | None = None,
        products_count: int = 0,
    ) -> int:
        if kind not in CATALOG_KINDS:
            raise ValueError(f"Invalid collection type: {kind!r}")
        if not (name or "").strip():
            raise ValueError("Collection name is required.")
        with self._lock:
            data = self._load()
            collections = data["collections"]
            if parent_id is not None and self._find(collections, parent_id) is None:
                raise StoreError("Parent collection not found", status=404)
            node_id = int(data["next_collection_id"])
            data["next_collection_id"] = node_id + 1
            collections.append(
                CommentedMap(
                    {
                        "id": node_id,
                        "name": name.strip(),
                        "slug": (slug or _slugify(name)).strip(),
                        "collection_type": kind,
                        "parent_id": parent_id,
                        "products_count": products_count,
                        "is_active": True,
                    }
                )
            )
            self._save(data)
            return node_id

    # -- reads -------------------------------------------------------------

    def tree(self, *, include_inactive: bool = True) -> dict[str, Any]:
        """Collections tree plus menu tree, in the backend's wire format."""
        with self._lock:
            data = self._load()
        collections = [dict(c) for c in data["collections"]]
        levels = self._collection_levels(collections)
        by_id = {c["id"]: c for c in collections}

        items = [self._joined(r, by_id, levels) for r in data["menu"]]
        if not include_inactive:
            items = [i for i in items if i.get("is_active", True)]
        items.sort(key=lambda i: (i.get("level", 0), i["position"]))
        in_menu = {i["collection_id"] for i in items}

        ordered = sorted(collections, key=lambda c: (levels[c["id"]], c["name"]))

        def build_collections(parent_id: int | None) -> list[dict[str, Any]]:
            return [
                {
                    **c,
                    "level": levels[c["id"]],
                    "is_in_mega_menu": c["id"] in in_menu,
                    "children": build_collections(c["id"]),
                }
                for c in ordered
                if c.get("parent_id") == parent_id
            ]

        def build_menu(parent_id: int | None) -> list[dict[str, Any]]:
            return [
                {**i, "children": build_menu(i["id"])}
                for i in items
                if i.get("parent_menu_item_id") == parent_id
            ]

        return {"megaMenu": build_menu(None), "collectionsTree": build_collections(None)}

    def fetch_snapshot(self) -> Snapshot:
        try:
            return snapshot_from_dict(self.tree())
        except (TypeError, ValueError) as exc:
            raise StoreError(f"Invalid snapshot: {exc}") from exc

    def storefront_menu(self) -> list[dict[str, Any]]:
        """Public menu: active items of active collections, with featured brands."""
        with self._lock:
            data = self._load()
        collections = {c["id"]: dict(c) for c in data["collections"]}
        rows = [
            dict(r)
            for r in data["menu"]
            if r.get("is_active", True) and collections.get(r["collection_id"], {}).get("is_active", True)
        ]

        def node(row: dict[str, Any]) -> dict[str, Any]:
            collection = collections.get(row["collection_id"], {})
            return {
                "id": row["id"],
                "collection_id": row["collection_id"],
                "name": collection.get("name"),
                "slug": collection.get("slug"),
                "collection_type": collection.get("collection_type", "custom"),
                "display_subcollections": bool(row.get("display_subcollections", False)),
                "is_featured": bool(row.get("is_featured", False)),
                "level": row.get("level", 0),
                "position": row["position"],
                "children": children_of(row["id"]),
            }

        def children_of(parent_id: int) -> list[dict[str, Any]]:
            found = [node(r) for r in rows if r.get("parent_menu_item_id") == parent_id]
            return sorted(found, key=lambda n: n["position"])

        top = sorted((r for r in rows if r.get("level", 0) == 0), key=lambda r: r["position"])
        menu = [node(r) for r in top]
        for entry in menu:
            entry["featuredBrands"] = [
                {"id": child["collection_id"], "name": child["name"], "slug": child["slug"]}
                for child in entry["children"]
                if child["collection_type"] == "brand" and child["is_featured"]
            ]
        return menu

    # -- writes ------------------------------------------------------------

    def add_entry(self, catalog_node_id: int, parent_id: int | None) -> MenuEntry:
        with self._lock:
            data = self._load()
            collections = data["collections"]
            menu = data["menu"]
            if self._find(collections, catalog_node_id) is None:
                raise StoreError("Collection not found", status=404)
            parent = None
            if parent_id is not None:
                parent = self._find(menu, parent_id)
                if parent is None:
                    raise StoreError("Parent menu item not found", status=404)
            for row in menu:
                if row["collection_id"] == catalog_node_id and row.get("parent_menu_item_id") == parent_id:
                    raise StoreError(
                        "Collection is already in the mega menu under the specified parent", status=400
                    )

            positions = [r["position"] for r in menu if r.get("parent_menu_item_id") == parent_id]
            entry_id = int(data["next_menu_id"])
            data["next_menu_id"] = entry_id + 1
            row = CommentedMap(
                {
                    "id": entry_id,
                    "collection_id": catalog_node_id,
                    "parent_menu_item_id": parent_id,
                    "position": max(positions) + 1 if positions else 0,
                    "level": parent["level"] + 1 if parent is not None else 0,
                    "is_active": True,
                    "display_subcollections": False,
                    "is_featured": False,
                }
            )
            menu.append(row)
            if parent is not None and not parent.get("display_subcollections"):
                parent["display_subcollections"] = True
            self._save(data)

            by_id = {c["id"]: dict(c) for c in collections}
            item = self._joined(row, by_id, self._collection_levels(list(by_id.values())))
        logger.info("Added menu item %s for collection %s", entry_id, catalog_node_id)
        return created_entry_from_dict(item)

    def remove_entry(self, entry_id: int) -> None:
        with self._lock:
            data = self._load()
            menu = data["menu"]
            row = self._find(menu, entry_id)
            if row is None:
                raise StoreError("Mega menu item not found", status=404)
            doomed = set(self._subtree_ids(menu, entry_id))
            parent_id = row.get("parent_menu_item_id")
            kept = [r for r in menu if r["id"] not in doomed]
            menu.clear()
            menu.extend(kept)
            self._compact(menu, parent_id)
            self._save(data)
        logger.info("Removed menu item %s (%d rows)", entry_id, len(doomed))

    def update_entry(self, entry_id: int, fields: dict[str, Any]) -> None:
        try:
            wire = fields_to_wire(fields)
        except ValueError as exc:
            raise StoreError(str(exc), status=400) from exc
        with self._lock:
            data = self._load()
            menu = data["menu"]
            row = self._find(menu, entry_id)
            if row is None:
                raise StoreError("Mega menu item not found", status=404)

            new_level: int | None = None
            if "parent_menu_item_id" in wire and wire["parent_menu_item_id"] != row.get("parent_menu_item_id"):
                new_parent_id = wire["parent_menu_item_id"]
                if new_parent_id is None:
                    new_level = 0
                else:
                    parent = self._find(menu, new_parent_id)
                    if parent is None:
                        raise StoreError("Parent menu item not found", status=404)
                    if new_parent_id in self._subtree_ids(menu, entry_id):
                        raise StoreError("A menu item cannot be its own parent", status=400)
                    new_level = parent["level"] + 1

            for key in ("is_active", "display_subcollections"):
                if key in wire:
                    row[key] = bool(wire[key])
            if "position" in wire:
                position = wire["position"]
                if isinstance(position, bool) or not isinstance(position, int) or position < 0:
                    raise StoreError("Position must be a non-negative integer", status=400)
                row["position"] = position
            if new_level is not None:
                row["parent_menu_item_id"] = wire["parent_menu_item_id"]
                self._relevel(menu, row, new_level)
            self._save(data)

    def reorder(self, items: list[dict[str, Any]]) -> None:
        if not isinstance(items, list) or not items:
            raise StoreError("Items array is required and must not be empty", status=400)
        with self._lock:
            data = self._load()
            menu = data["menu"]
            planned: list[tuple[Any, int]] = []
            for item in items:
                if not isinstance(item, dict):
                    raise StoreError("Each item must have an id and position", status=400)
                item_id = item.get("id")
                position = item.get("position")
                if not isinstance(item_id, int) or isinstance(position, bool) or not isinstance(position, int):
                    raise StoreError("Each item must have an id and position", status=400)
                row = self._find(menu, item_id)
                if row is None:
                    raise StoreError(f"Mega menu item {item_id} not found", status=404)
                planned.append((row, position))
            for row, position in planned:
                row["position"] = position
            self._save(data)

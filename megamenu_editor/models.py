from __future__ import annotations

from dataclasses import dataclass, field
from itertools import count
from typing import Any, Union

CATALOG_KINDS = {"category", "brand", "featured", "custom", "category-parent", "brand-parent"}
# Backend spells the parent kinds with underscores.
_WIRE_KINDS = {"category_parent": "category-parent", "brand_parent": "brand-parent"}

STAGED_PREFIX = "staged-"


@dataclass(frozen=True)
class Persisted:
    """Id assigned by the remote store."""

    value: int

    def to_json(self) -> int:
        return self.value


@dataclass(frozen=True)
class Staged:
    """Local placeholder id for an entry that has not been added remotely yet."""

    token: int

    def to_json(self) -> str:
        return f"{STAGED_PREFIX}{self.token}"


EntryId = Union[Persisted, Staged]

_staged_tokens = count(1)


def new_staged_id() -> Staged:
    return Staged(next(_staged_tokens))


def entry_id_from_json(raw: Any) -> EntryId:
    if isinstance(raw, bool):
        raise ValueError("Invalid menu entry id.")
    if isinstance(raw, int):
        return Persisted(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith(STAGED_PREFIX) and text[len(STAGED_PREFIX):].isdigit():
            return Staged(int(text[len(STAGED_PREFIX):]))
        if text.isdigit():
            return Persisted(int(text))
    raise ValueError(f"Invalid menu entry id: {raw!r}")


def optional_entry_id(raw: Any) -> EntryId | None:
    if raw in (None, ""):
        return None
    return entry_id_from_json(raw)


@dataclass
class CatalogNode:
    id: int
    name: str
    slug: str
    kind: str = "custom"
    parent_id: int | None = None
    depth: int = 0
    in_menu: bool = False
    products_count: int | None = None
    children: list["CatalogNode"] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "kind": self.kind,
            "parent_id": self.parent_id,
            "depth": self.depth,
            "in_menu": self.in_menu,
            "children": [c.to_dict() for c in self.children],
        }
        if self.products_count is not None:
            payload["products_count"] = self.products_count
        return payload


@dataclass
class MenuEntry:
    id: EntryId
    catalog_node_id: int
    parent_id: EntryId | None = None
    position: int = 0
    active: bool = True
    show_children: bool = False
    level: int = 0
    name: str = ""
    slug: str = ""
    kind: str = "custom"
    children: list["MenuEntry"] = field(default_factory=list)

    @property
    def staged(self) -> bool:
        return isinstance(self.id, Staged)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id.to_json(),
            "catalog_node_id": self.catalog_node_id,
            "parent_id": self.parent_id.to_json() if self.parent_id is not None else None,
            "position": self.position,
            "active": self.active,
            "show_children": self.show_children,
            "level": self.level,
            "name": self.name,
            "slug": self.slug,
            "kind": self.kind,
            "children": [c.to_dict() for c in self.children],
        }


def _normalize_kind(raw: Any) -> str:
    kind = str(raw or "custom").strip().lower()
    kind = _WIRE_KINDS.get(kind, kind)
    if kind not in CATALOG_KINDS:
        raise ValueError(f"Invalid collection type: {raw!r}")
    return kind


def _require_int(data: dict[str, Any], key: str, what: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{what} has an invalid `{key}`.")
    return value


def _optional_int(data: dict[str, Any], key: str, what: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{what} has an invalid `{key}`.")
    return value


def catalog_node_from_dict(data: Any, *, parent: CatalogNode | None = None) -> CatalogNode:
    """Validate one backend collection record (and its children) into a CatalogNode.

    ``depth`` is derived from the nesting rather than trusted from the payload,
    and ``parent_id`` must agree with the enclosing node.
    """
    if not isinstance(data, dict):
        raise TypeError("Collection must be an object.")
    node_id = _require_int(data, "id", "Collection")
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValueError(f"Collection {node_id} has an invalid name.")
    slug = data.get("slug") or ""
    if not isinstance(slug, str):
        raise ValueError(f"Collection {node_id} has an invalid slug.")
    parent_id = _optional_int(data, "parent_id", f"Collection {node_id}")
    expected_parent = parent.id if parent is not None else None
    if parent_id != expected_parent:
        raise ValueError(f"Collection {node_id} is nested under the wrong parent.")
    products_count = data.get("products_count")
    if products_count is not None:
        try:
            products_count = int(products_count)
        except (TypeError, ValueError):
            raise ValueError(f"Collection {node_id} has an invalid products_count.") from None

    node = CatalogNode(
        id=node_id,
        name=name.strip(),
        slug=slug.strip(),
        kind=_normalize_kind(data.get("collection_type", data.get("kind"))),
        parent_id=parent_id,
        depth=parent.depth + 1 if parent is not None else 0,
        in_menu=bool(data.get("is_in_mega_menu", data.get("in_menu", False))),
        products_count=products_count,
    )
    children_raw = data.get("children") or []
    if not isinstance(children_raw, list):
        raise ValueError(f"Collection {node_id} has invalid children.")
    node.children = [catalog_node_from_dict(item, parent=node) for item in children_raw]
    return node


def menu_entry_from_dict(data: Any, *, parent: MenuEntry | None = None) -> MenuEntry:
    """Validate one backend menu item (and its children) into a MenuEntry.

    Snapshot entries are always persisted, so ids must be integers here.
    Children are returned sorted by position.
    """
    if not isinstance(data, dict):
        raise TypeError("Menu item must be an object.")
    raw_id = _require_int(data, "id", "Menu item")
    what = f"Menu item {raw_id}"
    catalog_node_id = _require_int(data, "collection_id", what)
    parent_raw = _optional_int(data, "parent_menu_item_id", what)
    expected_parent = parent.id.to_json() if parent is not None else None
    if parent_raw != expected_parent:
        raise ValueError(f"{what} is nested under the wrong parent.")
    position = data.get("position", 0)
    if isinstance(position, bool) or not isinstance(position, int) or position < 0:
        raise ValueError(f"{what} has an invalid position.")

    entry = MenuEntry(
        id=Persisted(raw_id),
        catalog_node_id=catalog_node_id,
        parent_id=parent.id if parent is not None else None,
        position=position,
        active=bool(data.get("is_active", True)),
        show_children=bool(data.get("display_subcollections", False)),
        level=parent.level + 1 if parent is not None else 0,
        name=str(data.get("collection_name") or ""),
        slug=str(data.get("collection_slug") or ""),
        kind=_normalize_kind(data.get("collection_type")),
    )
    children_raw = data.get("children") or []
    if not isinstance(children_raw, list):
        raise ValueError(f"{what} has invalid children.")
    children = [menu_entry_from_dict(item, parent=entry) for item in children_raw]
    entry.children = sorted(children, key=lambda c: c.position)
    return entry


def created_entry_from_dict(data: Any) -> MenuEntry:
    """Parse the flat item the store returns for a freshly added entry."""
    if not isinstance(data, dict):
        raise TypeError("Menu item must be an object.")
    raw_id = _require_int(data, "id", "Menu item")
    what = f"Menu item {raw_id}"
    parent_raw = _optional_int(data, "parent_menu_item_id", what)
    return MenuEntry(
        id=Persisted(raw_id),
        catalog_node_id=_require_int(data, "collection_id", what),
        parent_id=Persisted(parent_raw) if parent_raw is not None else None,
        position=int(data.get("position") or 0),
        active=bool(data.get("is_active", True)),
        show_children=bool(data.get("display_subcollections", False)),
        level=int(data.get("level") or 0),
        name=str(data.get("collection_name") or ""),
        slug=str(data.get("collection_slug") or ""),
        kind=_normalize_kind(data.get("collection_type")),
    )


@dataclass
class Snapshot:
    catalog: list[CatalogNode]
    menu: list[MenuEntry]


def snapshot_from_dict(payload: Any) -> Snapshot:
    if not isinstance(payload, dict):
        raise TypeError("Snapshot must be a JSON object.")
    collections = payload.get("collectionsTree")
    mega_menu = payload.get("megaMenu")
    if not isinstance(collections, list):
        raise ValueError("Snapshot is missing `collectionsTree`.")
    if not isinstance(mega_menu, list):
        raise ValueError("Snapshot is missing `megaMenu`.")
    catalog = [catalog_node_from_dict(item) for item in collections]
    menu = sorted((menu_entry_from_dict(item) for item in mega_menu), key=lambda e: e.position)
    return Snapshot(catalog=catalog, menu=menu)

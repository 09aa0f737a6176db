from __future__ import annotations

import copy
import logging
from dataclasses import replace
from typing import Iterable, Iterator

from .models import CatalogNode, MenuEntry
from .tree import walk

logger = logging.getLogger(__name__)


def walk_catalog(nodes: Iterable[CatalogNode]) -> Iterator[CatalogNode]:
    for node in nodes:
        yield node
        yield from walk_catalog(node.children)


def find_node(nodes: Iterable[CatalogNode], node_id: int) -> CatalogNode | None:
    for node in walk_catalog(nodes):
        if node.id == node_id:
            return node
    return None


def mark_included(nodes: list[CatalogNode], node_id: int, included: bool) -> bool:
    """Set ``in_menu`` on the catalog node ``node_id``.

    Returns False when the node is not in the tree. Setting a flag to the
    value it already holds is a no-op.
    """
    node = find_node(nodes, node_id)
    if node is None:
        logger.info("Catalog node %s not found while marking membership", node_id)
        return False
    node.in_menu = included
    return True


def referenced_catalog_ids(menu: Iterable[MenuEntry]) -> set[int]:
    return {entry.catalog_node_id for entry in walk(menu)}


def sync_membership(nodes: list[CatalogNode], menu: list[MenuEntry]) -> None:
    """Recompute every ``in_menu`` flag from the live menu entries."""
    live = referenced_catalog_ids(menu)
    for node in walk_catalog(nodes):
        node.in_menu = node.id in live


def search(nodes: list[CatalogNode], term: str) -> list[CatalogNode]:
    """Filter the catalog by a case-insensitive name substring.

    Ancestors of matching nodes are kept so the result is still a tree.
    Returns copies; the source tree is left alone.
    """
    needle = (term or "").strip().lower()
    if not needle:
        return copy.deepcopy(nodes)

    def _filter(items: list[CatalogNode]) -> list[CatalogNode]:
        kept: list[CatalogNode] = []
        for node in items:
            children = _filter(node.children)
            if children or needle in node.name.lower():
                kept.append(replace(node, children=children))
        return kept

    return _filter(nodes)


def subcollection_candidates(nodes: list[CatalogNode], entry: MenuEntry) -> list[CatalogNode]:
    """Catalog nodes that may be added as children of ``entry``.

    Direct children of the referenced catalog node come first. Category
    entries also offer the brands filed under any category. Nodes already in
    the menu are skipped; with nothing left, every top-level node not in the
    menu is offered instead.
    """
    source = find_node(nodes, entry.catalog_node_id)
    candidates: list[CatalogNode] = []
    if source is not None:
        candidates.extend(source.children)
        if source.kind == "category":
            for root in nodes:
                if root.kind != "category":
                    continue
                candidates.extend(c for c in root.children if c.kind == "brand")

    seen: set[int] = set()
    available: list[CatalogNode] = []
    for node in candidates:
        if node.id in seen or node.in_menu:
            continue
        seen.add(node.id)
        available.append(node)

    if not available:
        available = [n for n in nodes if not n.in_menu]
    return available

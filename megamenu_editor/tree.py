"""Menu tree primitives.

Every change to the menu tree goes through these helpers so sibling
positions stay contiguous and ``parent_id``/``level`` stay consistent with
the nesting. The tree is a list of root entries, each holding its children
ordered by position; helpers mutate it in place.
"""

from __future__ import annotations

from typing import Any, Iterable, Iterator

from .models import EntryId, MenuEntry
from .reorder import apply_order

PATCHABLE_FIELDS = {"active", "show_children", "position"}


def walk(entries: Iterable[MenuEntry]) -> Iterator[MenuEntry]:
    """Depth-first, pre-order."""
    for entry in entries:
        yield entry
        yield from walk(entry.children)


def find_entry(entries: Iterable[MenuEntry], entry_id: EntryId) -> MenuEntry | None:
    for entry in walk(entries):
        if entry.id == entry_id:
            return entry
    return None


def descendants(entry: MenuEntry) -> list[MenuEntry]:
    """The entry itself followed by everything below it."""
    return list(walk([entry]))


def sibling_list(entries: list[MenuEntry], parent_id: EntryId | None) -> list[MenuEntry] | None:
    """The live list holding the children of ``parent_id`` (roots for None)."""
    if parent_id is None:
        return entries
    parent = find_entry(entries, parent_id)
    if parent is None:
        return None
    return parent.children


def set_levels(entry: MenuEntry, level: int) -> None:
    entry.level = level
    for child in entry.children:
        child.parent_id = entry.id
        set_levels(child, level + 1)


def detach(entries: list[MenuEntry], entry_id: EntryId) -> tuple[MenuEntry, list[MenuEntry]] | None:
    """Unlink an entry (with its subtree) from its sibling list.

    Returns the detached entry and the former siblings whose position
    changed while closing the gap, or None if the id is not in the tree.
    """
    entry = find_entry(entries, entry_id)
    if entry is None:
        return None
    siblings = sibling_list(entries, entry.parent_id)
    if siblings is None:
        return None
    remaining = [s for s in siblings if s.id != entry_id]
    shifted = apply_order(siblings, remaining)
    return entry, shifted


def remove_entry_and_descendants(
    entries: list[MenuEntry], entry_id: EntryId
) -> tuple[MenuEntry, list[MenuEntry]] | None:
    """Remove an entry and its whole subtree.

    The removed entry keeps its children attached, so callers can walk it to
    see everything that went away. Ids below it stop resolving, which makes
    any later action on them a no-op.
    """
    return detach(entries, entry_id)


def insert_child(entries: list[MenuEntry], parent_id: EntryId | None, entry: MenuEntry) -> bool:
    """Append ``entry`` as the last child of ``parent_id`` (a root for None)."""
    if parent_id is None:
        siblings = entries
        level = 0
    else:
        parent = find_entry(entries, parent_id)
        if parent is None:
            return False
        siblings = parent.children
        level = parent.level + 1
    entry.parent_id = parent_id
    entry.position = len(siblings)
    set_levels(entry, level)
    siblings.append(entry)
    return True


def patch_entry(entries: Iterable[MenuEntry], entry_id: EntryId, fields: dict[str, Any]) -> MenuEntry | None:
    unknown = set(fields) - PATCHABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot patch fields: {', '.join(sorted(unknown))}")
    entry = find_entry(entries, entry_id)
    if entry is None:
        return None
    for key, value in fields.items():
        setattr(entry, key, value)
    return entry


def reparent(
    entries: list[MenuEntry], entry_id: EntryId, new_parent_id: EntryId | None
) -> tuple[MenuEntry, list[MenuEntry]] | None:
    """Move an entry (with its subtree) to the end of another parent's children.

    Returns the moved entry and the old siblings that were renumbered.
    Unknown ids, a move onto the current parent, and a move under the
    entry itself or one of its descendants all return None.
    """
    entry = find_entry(entries, entry_id)
    if entry is None or entry.parent_id == new_parent_id:
        return None
    if new_parent_id is not None:
        if find_entry(entries, new_parent_id) is None:
            return None
        if any(d.id == new_parent_id for d in descendants(entry)):
            return None
    detached = detach(entries, entry_id)
    if detached is None:
        return None
    moved, shifted = detached
    insert_child(entries, new_parent_id, moved)
    return moved, shifted

"""Sibling reordering.

``swap_adjacent`` and ``reposition`` never touch the entries they are
given; they return the new ordering (or None when the move is out of
bounds). ``apply_order`` writes an ordering back into the live sibling
list and renumbers it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:
    from .models import MenuEntry

UP = "up"
DOWN = "down"


def swap_adjacent(entries: Sequence["MenuEntry"], index: int, direction: str) -> list["MenuEntry"] | None:
    if direction not in (UP, DOWN):
        raise ValueError(f"Invalid direction: {direction!r}")
    if index < 0 or index >= len(entries):
        return None
    other = index - 1 if direction == UP else index + 1
    if other < 0 or other >= len(entries):
        return None
    ordered = list(entries)
    ordered[index], ordered[other] = ordered[other], ordered[index]
    return ordered


def reposition(entries: Sequence["MenuEntry"], from_index: int, to_index: int) -> list["MenuEntry"] | None:
    size = len(entries)
    if not (0 <= from_index < size and 0 <= to_index < size) or from_index == to_index:
        return None
    ordered = list(entries)
    moved = ordered.pop(from_index)
    ordered.insert(to_index, moved)
    return ordered


def renumber(ordered: Sequence["MenuEntry"]) -> list[tuple["MenuEntry", int]]:
    """Pairs of (entry, new position) for entries whose position would change."""
    return [(entry, idx) for idx, entry in enumerate(ordered) if entry.position != idx]


def position_payload(ordered: Sequence["MenuEntry"]) -> list[dict[str, Any]]:
    return [{"id": entry.id.to_json(), "position": idx} for idx, entry in enumerate(ordered)]


def apply_order(siblings: list["MenuEntry"], ordered: Sequence["MenuEntry"]) -> list["MenuEntry"]:
    """Replace the sibling list with ``ordered`` and set ``position = index``.

    Returns the entries whose position changed.
    """
    changed = [entry for entry, _ in renumber(ordered)]
    siblings[:] = list(ordered)
    for idx, entry in enumerate(siblings):
        entry.position = idx
    return changed

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from .models import EntryId, Persisted, Staged


@dataclass
class PendingAddition:
    entry_id: Staged
    catalog_node_id: int
    parent_id: EntryId | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.entry_id.to_json(),
            "catalog_node_id": self.catalog_node_id,
            "parent_id": self.parent_id.to_json() if self.parent_id is not None else None,
        }


@dataclass
class PendingChangeSet:
    """Changes recorded while an edit session is open.

    ``removals`` only ever holds persisted ids; a staged entry that is
    removed again simply drops out of ``additions``. ``updates`` merges
    patches per entry, last write wins per field.
    """

    additions: list[PendingAddition] = field(default_factory=list)
    removals: list[Persisted] = field(default_factory=list)
    updates: dict[EntryId, dict[str, Any]] = field(default_factory=dict)

    def add(self, addition: PendingAddition) -> None:
        self.additions.append(addition)

    def ordered_additions(self) -> list[PendingAddition]:
        """Additions in insertion order, except that a staged parent always
        comes before its children."""
        staged = {a.entry_id for a in self.additions}
        remaining = list(self.additions)
        ordered: list[PendingAddition] = []
        placed: set[Staged] = set()
        while remaining:
            ready = [
                a
                for a in remaining
                if not isinstance(a.parent_id, Staged) or a.parent_id in placed or a.parent_id not in staged
            ]
            if not ready:
                ordered.extend(remaining)
                break
            for addition in ready:
                ordered.append(addition)
                placed.add(addition.entry_id)
            remaining = [a for a in remaining if a.entry_id not in placed]
        return ordered

    def reparent_addition(self, entry_id: Staged, parent_id: EntryId | None) -> bool:
        for addition in self.additions:
            if addition.entry_id == entry_id:
                addition.parent_id = parent_id
                return True
        return False

    def discard_additions(self, staged_ids: Iterable[Staged]) -> int:
        drop = set(staged_ids)
        before = len(self.additions)
        self.additions = [a for a in self.additions if a.entry_id not in drop]
        return before - len(self.additions)

    def remove(self, entry_id: Persisted) -> None:
        if entry_id not in self.removals:
            self.removals.append(entry_id)
        self.updates.pop(entry_id, None)

    def merge_update(
        self, entry_id: EntryId, patch: dict[str, Any], baseline: dict[str, Any] | None = None
    ) -> None:
        """Merge ``patch`` into the entry's pending update.

        Fields equal to ``baseline`` (what the store already holds) are
        dropped instead of recorded; an entry left with nothing to send is
        forgotten.
        """
        if entry_id in self.removals:
            return
        current = self.updates.setdefault(entry_id, {})
        baseline = baseline or {}
        for key, value in patch.items():
            if key in baseline and baseline[key] == value:
                current.pop(key, None)
            else:
                current[key] = value
        if not current:
            del self.updates[entry_id]

    def drop_field(self, entry_id: EntryId, key: str) -> None:
        patch = self.updates.get(entry_id)
        if patch is None:
            return
        patch.pop(key, None)
        if not patch:
            del self.updates[entry_id]

    def prune(self, entry_ids: Iterable[EntryId]) -> None:
        for entry_id in entry_ids:
            self.updates.pop(entry_id, None)

    def clear(self) -> None:
        self.additions = []
        self.removals = []
        self.updates = {}

    def is_empty(self) -> bool:
        return not (self.additions or self.removals or self.updates)

    def to_dict(self) -> dict[str, Any]:
        return {
            "additions": [a.to_dict() for a in self.additions],
            "removals": [r.to_json() for r in self.removals],
            "updates": [
                {"id": entry_id.to_json(), "fields": _patch_to_json(patch)}
                for entry_id, patch in self.updates.items()
            ],
        }


def _patch_to_json(patch: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in patch.items():
        out[key] = value.to_json() if isinstance(value, (Persisted, Staged)) else value
    return out

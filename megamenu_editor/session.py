"""Mega menu editing session.

``MenuEditor`` owns the catalog tree, the menu tree and the pending change
set. With the session closed every action goes straight to the store and
the trees are reloaded from a fresh snapshot; with the session open actions
only touch the local trees and are recorded for ``commit``.

Removals are replayed first, then additions in the order they were made
(staged parents resolve to their real ids before their children are sent),
then field updates. A failing item is reported and the rest still run; the
snapshot is always refetched at the end.
"""

from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from . import catalog, reorder, tree
from .models import CatalogNode, EntryId, MenuEntry, Persisted, Snapshot, Staged, new_staged_id
from .pending import PendingAddition, PendingChangeSet
from .store import MenuStore, StoreError

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_DELAY = 0.1


@dataclass
class SessionEvent:
    kind: str
    message: str
    entry_id: EntryId | None = None
    ok: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "id": self.entry_id.to_json() if self.entry_id is not None else None,
            "ok": self.ok,
        }


Listener = Callable[[SessionEvent], None]


@dataclass
class CommitFailure:
    action: str  # "remove" | "add" | "update"
    entry_id: EntryId | None
    message: str
    catalog_node_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "id": self.entry_id.to_json() if self.entry_id is not None else None,
            "catalog_node_id": self.catalog_node_id,
            "message": self.message,
        }


@dataclass
class CommitReport:
    removed: int = 0
    added: int = 0
    updated: int = 0
    failures: list[CommitFailure] = field(default_factory=list)
    resolved: dict[Staged, Persisted] = field(default_factory=dict)
    refetch_error: str | None = None

    @property
    def ok(self) -> bool:
        return not self.failures and self.refetch_error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "removed": self.removed,
            "added": self.added,
            "updated": self.updated,
            "failures": [f.to_dict() for f in self.failures],
            "resolved": {k.to_json(): v.to_json() for k, v in self.resolved.items()},
            "refetch_error": self.refetch_error,
        }


class MenuEditor:
    def __init__(
        self,
        store: MenuStore,
        *,
        commit_delay: float = DEFAULT_COMMIT_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.commit_delay = commit_delay
        self._sleep = sleep
        self.catalog: list[CatalogNode] = []
        self.menu: list[MenuEntry] = []
        self.pending = PendingChangeSet()
        self.loaded = False
        self.load_error: str | None = None
        self._original: Snapshot | None = None
        self._listeners: list[Listener] = []
        self._paced = False

    # -- observers ---------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, kind: str, message: str, entry_id: EntryId | None = None, *, ok: bool = True) -> None:
        event = SessionEvent(kind=kind, message=message, entry_id=entry_id, ok=ok)
        for listener in list(self._listeners):
            listener(event)

    # -- snapshot ----------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._original is not None

    def load(self) -> bool:
        """Replace local state with a fresh snapshot.

        On failure the previous state stays in place, ``load_error`` is set
        and False is returned.
        """
        try:
            snapshot = self.store.fetch_snapshot()
        except StoreError as exc:
            logger.error("Failed to load mega menu data: %s", exc.message)
            self.load_error = exc.message
            self._emit("load", f"Failed to load mega menu data: {exc.message}", ok=False)
            return False
        self._apply_snapshot(snapshot)
        self.loaded = True
        self.load_error = None
        return True

    def _apply_snapshot(self, snapshot: Snapshot) -> None:
        self.catalog = snapshot.catalog
        self.menu = snapshot.menu
        catalog.sync_membership(self.catalog, self.menu)

    def _capture(self) -> Snapshot:
        return Snapshot(catalog=copy.deepcopy(self.catalog), menu=copy.deepcopy(self.menu))

    # -- session lifecycle -------------------------------------------------

    def open_session(self) -> bool:
        if self.is_open:
            return False
        self._original = self._capture()
        self.pending.clear()
        self._emit("session", "Batch edit started")
        return True

    def discard(self) -> bool:
        if self._original is None:
            return False
        self._apply_snapshot(self._original)
        self._original = None
        self.pending.clear()
        self._emit("session", "Pending changes discarded")
        return True

    def commit(self) -> CommitReport | None:
        if self._original is None:
            return None
        report = CommitReport()
        original = self._original
        self._paced = False
        try:
            self._pin_shifted_positions(original)
            self._commit_removals(report)
            self._commit_additions(report)
            self._commit_updates(report)
        finally:
            self._original = None
            self.pending.clear()
            if not self.load():
                report.refetch_error = self.load_error
                self._apply_snapshot(original)
        if report.ok:
            self._emit("commit", "All mega menu changes saved successfully")
        else:
            self._emit("commit", f"Failed to save {len(report.failures)} change(s)", ok=False)
        return report

    def _pace(self) -> None:
        # Spaces out consecutive commit requests.
        if self._paced and self.commit_delay > 0:
            self._sleep(self.commit_delay)
        self._paced = True

    def _fail(self, report: CommitReport, failure: CommitFailure) -> None:
        report.failures.append(failure)
        logger.warning("Commit %s failed for %s: %s", failure.action, failure.entry_id, failure.message)
        self._emit("commit", failure.message, failure.entry_id, ok=False)

    def _pin_shifted_positions(self, original: Snapshot) -> None:
        # A store may close the gap a removal leaves, so siblings that sat
        # after a removed entry always get their position sent.
        before = {e.id: e for e in tree.walk(original.menu)}
        cutoff: dict[EntryId | None, int] = {}
        for entry_id in self.pending.removals:
            removed = before.get(entry_id)
            if removed is None:
                continue
            cutoff[removed.parent_id] = min(cutoff.get(removed.parent_id, removed.position), removed.position)
        for entry in tree.walk(self.menu):
            old = before.get(entry.id)
            if old is None or old.parent_id != entry.parent_id or old.parent_id not in cutoff:
                continue
            if old.position > cutoff[old.parent_id]:
                self.pending.merge_update(entry.id, {"position": entry.position})

    def _commit_removals(self, report: CommitReport) -> None:
        for entry_id in list(self.pending.removals):
            self._pace()
            try:
                self.store.remove_entry(entry_id.value)
            except StoreError as exc:
                self._fail(report, CommitFailure("remove", entry_id, f"Failed to remove item {entry_id.value}: {exc.message}"))
                continue
            report.removed += 1

    def _resolve(self, entry_id: EntryId | None, report: CommitReport) -> Persisted | None:
        if isinstance(entry_id, Staged):
            return report.resolved.get(entry_id)
        return entry_id

    def _commit_additions(self, report: CommitReport) -> None:
        for addition in self.pending.ordered_additions():
            parent = self._resolve(addition.parent_id, report)
            if addition.parent_id is not None and parent is None:
                self._fail(
                    report,
                    CommitFailure(
                        "add",
                        addition.entry_id,
                        f"Failed to add collection {addition.catalog_node_id}: parent was not saved",
                        addition.catalog_node_id,
                    ),
                )
                continue
            self._pace()
            try:
                created = self.store.add_entry(addition.catalog_node_id, parent.value if parent else None)
            except StoreError as exc:
                self._fail(
                    report,
                    CommitFailure(
                        "add",
                        addition.entry_id,
                        f"Failed to add collection {addition.catalog_node_id}: {exc.message}",
                        addition.catalog_node_id,
                    ),
                )
                continue
            report.resolved[addition.entry_id] = created.id
            report.added += 1
            self._settle_position(addition.entry_id, created)

    def _settle_position(self, staged_id: Staged, created: MenuEntry) -> None:
        # The store appends new entries; send the slot the entry holds locally.
        local = tree.find_entry(self.menu, staged_id)
        if local is None:
            return
        if created.position == local.position:
            self.pending.drop_field(staged_id, "position")
        else:
            self.pending.merge_update(staged_id, {"position": local.position})

    def _commit_updates(self, report: CommitReport) -> None:
        for entry_id, patch in list(self.pending.updates.items()):
            if not patch:
                continue
            target = self._resolve(entry_id, report)
            if target is None:
                # The staged add already failed and was reported.
                logger.info("Skipping update for unsaved entry %s", entry_id)
                continue
            fields = dict(patch)
            if "parent_id" in fields and fields["parent_id"] is not None:
                parent = self._resolve(fields["parent_id"], report)
                if parent is None:
                    self._fail(report, CommitFailure("update", entry_id, f"Failed to update item {target.value}: parent was not saved"))
                    continue
                fields["parent_id"] = parent.value
            self._pace()
            try:
                self.store.update_entry(target.value, fields)
            except StoreError as exc:
                self._fail(report, CommitFailure("update", entry_id, f"Failed to update item {target.value}: {exc.message}"))
                continue
            report.updated += 1

    # -- direct mode -------------------------------------------------------

    def _direct(self, kind: str, entry_id: EntryId | None, message: str, call: Callable[[], Any]) -> None:
        try:
            call()
        except StoreError as exc:
            logger.warning("%s failed for %s: %s", kind, entry_id, exc.message)
            self._emit(kind, f"{message} failed: {exc.message}", entry_id, ok=False)
            raise
        self._emit(kind, message, entry_id)
        self.load()

    def _baseline(self, entry: MenuEntry) -> dict[str, Any]:
        """Field values the store holds for ``entry`` as of the opened snapshot."""
        if self._original is None or not isinstance(entry.id, Persisted):
            return {}
        original = tree.find_entry(self._original.menu, entry.id)
        if original is None:
            return {}
        baseline: dict[str, Any] = {
            "active": original.active,
            "show_children": original.show_children,
            "parent_id": original.parent_id,
        }
        # A position only means the same thing under the same parent.
        if entry.parent_id == original.parent_id:
            baseline["position"] = original.position
        return baseline

    def _merge_update(self, entry: MenuEntry, patch: dict[str, Any]) -> None:
        self.pending.merge_update(entry.id, patch, self._baseline(entry))

    def _record_positions(self, entries: list[MenuEntry]) -> None:
        for entry in entries:
            self._merge_update(entry, {"position": entry.position})

    # -- actions -----------------------------------------------------------

    def add(self, catalog_node_id: int, parent_id: EntryId | None = None) -> MenuEntry | None:
        """Add a catalog node to the menu, at the root or under ``parent_id``.

        Unknown catalog nodes or parents, and a node already present under
        the same parent, are no-ops returning None.
        """
        node = catalog.find_node(self.catalog, catalog_node_id)
        if node is None:
            logger.info("Add ignored: catalog node %s not found", catalog_node_id)
            return None
        siblings = tree.sibling_list(self.menu, parent_id)
        if siblings is None:
            logger.info("Add ignored: parent entry %s not found", parent_id)
            return None
        if any(s.catalog_node_id == catalog_node_id for s in siblings):
            logger.info("Add ignored: catalog node %s already under %s", catalog_node_id, parent_id)
            return None

        if not self.is_open:
            if isinstance(parent_id, Staged):
                return None
            created: list[MenuEntry] = []
            self._direct(
                "add",
                None,
                f"Collection {node.name} added to mega menu",
                lambda: created.append(
                    self.store.add_entry(catalog_node_id, parent_id.value if parent_id is not None else None)
                ),
            )
            return tree.find_entry(self.menu, created[0].id) or created[0]

        entry = MenuEntry(
            id=new_staged_id(),
            catalog_node_id=catalog_node_id,
            active=True,
            show_children=False,
            name=node.name,
            slug=node.slug,
            kind=node.kind,
        )
        tree.insert_child(self.menu, parent_id, entry)
        catalog.mark_included(self.catalog, catalog_node_id, True)
        self.pending.add(PendingAddition(entry_id=entry.id, catalog_node_id=catalog_node_id, parent_id=parent_id))
        self._emit("add", f"Collection {node.name} added to mega menu (pending save)", entry.id)
        return entry

    def remove(self, entry_id: EntryId) -> bool:
        """Remove an entry and everything below it.

        Returns False for unknown ids. In an open session, persisted entries
        whose original ancestor is being removed are covered by the store's
        cascade and are not queued separately.
        """
        entry = tree.find_entry(self.menu, entry_id)
        if entry is None:
            logger.info("Remove ignored: entry %s not found", entry_id)
            return False

        if not self.is_open:
            if not isinstance(entry_id, Persisted):
                return False
            self._direct(
                "remove",
                entry_id,
                "Collection removed from mega menu",
                lambda: self.store.remove_entry(entry_id.value),
            )
            return True

        doomed = tree.descendants(entry)
        doomed_ids = {e.id for e in doomed}
        if self._strands_moved_entries(doomed_ids):
            logger.info("Remove ignored: entry %s has children moved elsewhere", entry_id)
            self._emit(
                "remove",
                "Cannot remove an entry whose children were moved elsewhere; save or discard first",
                entry_id,
                ok=False,
            )
            return False

        removed = tree.remove_entry_and_descendants(self.menu, entry_id)
        if removed is None:
            return False
        _, shifted = removed

        for item in doomed:
            if isinstance(item.id, Persisted) and not self._covered_by_cascade(item.id, doomed_ids):
                self.pending.remove(item.id)
        self.pending.discard_additions(item.id for item in doomed if isinstance(item.id, Staged))
        self.pending.prune(doomed_ids)
        self._record_positions(shifted)

        live = catalog.referenced_catalog_ids(self.menu)
        for catalog_node_id in {item.catalog_node_id for item in doomed}:
            if catalog_node_id not in live:
                catalog.mark_included(self.catalog, catalog_node_id, False)

        self._emit("remove", "Collection removed from mega menu (pending save)", entry_id)
        return True

    def _original_parents(self) -> dict[EntryId, EntryId | None]:
        if self._original is None:
            return {}
        return {e.id: e.parent_id for e in tree.walk(self._original.menu)}

    def _covered_by_cascade(self, entry_id: Persisted, doomed_ids: set[EntryId]) -> bool:
        parents = self._original_parents()
        current = parents.get(entry_id)
        while current is not None:
            if current in doomed_ids:
                return True
            current = parents.get(current)
        return False

    def _strands_moved_entries(self, doomed_ids: set[EntryId]) -> bool:
        """True if removing ``doomed_ids`` remotely would cascade onto live entries."""
        parents = self._original_parents()
        for live in tree.walk(self.menu):
            if live.id in doomed_ids or not isinstance(live.id, Persisted):
                continue
            current = parents.get(live.id)
            while current is not None:
                if current in doomed_ids:
                    return True
                current = parents.get(current)
        return False

    def _toggle(self, entry_id: EntryId, field_name: str, label: str) -> MenuEntry | None:
        entry = tree.find_entry(self.menu, entry_id)
        if entry is None:
            logger.info("Toggle ignored: entry %s not found", entry_id)
            return None
        value = not getattr(entry, field_name)

        if not self.is_open:
            if not isinstance(entry_id, Persisted):
                return None
            self._direct(
                "update",
                entry_id,
                f"{label} {'enabled' if value else 'disabled'}",
                lambda: self.store.update_entry(entry_id.value, {field_name: value}),
            )
            return tree.find_entry(self.menu, entry_id)

        tree.patch_entry(self.menu, entry_id, {field_name: value})
        self._merge_update(entry, {field_name: value})
        self._emit("update", f"{label} toggled (pending save)", entry_id)
        return entry

    def toggle_active(self, entry_id: EntryId) -> MenuEntry | None:
        return self._toggle(entry_id, "active", "Visibility")

    def toggle_show_children(self, entry_id: EntryId) -> MenuEntry | None:
        return self._toggle(entry_id, "show_children", "Subcollection display")

    def _apply_reorder(self, parent_id: EntryId | None, ordered: list[MenuEntry] | None) -> bool:
        if ordered is None:
            return False
        siblings = tree.sibling_list(self.menu, parent_id)
        if siblings is None:
            return False

        if not self.is_open:
            self._direct(
                "reorder",
                parent_id,
                "Mega menu order updated",
                lambda: self.store.reorder(reorder.position_payload(ordered)),
            )
            return True

        changed = reorder.apply_order(siblings, ordered)
        self._record_positions(changed)
        self._emit("reorder", "Mega menu order updated (pending save)", parent_id)
        return True

    def _siblings(self, parent_id: EntryId | None) -> list[MenuEntry]:
        siblings = tree.sibling_list(self.menu, parent_id)
        if siblings is None:
            logger.info("Reorder ignored: parent entry %s not found", parent_id)
            return []
        return siblings

    def move_up(self, parent_id: EntryId | None, index: int) -> bool:
        return self._apply_reorder(parent_id, reorder.swap_adjacent(self._siblings(parent_id), index, reorder.UP))

    def move_down(self, parent_id: EntryId | None, index: int) -> bool:
        return self._apply_reorder(parent_id, reorder.swap_adjacent(self._siblings(parent_id), index, reorder.DOWN))

    def move_to(self, parent_id: EntryId | None, from_index: int, to_index: int) -> bool:
        return self._apply_reorder(parent_id, reorder.reposition(self._siblings(parent_id), from_index, to_index))

    def reparent(self, entry_id: EntryId, new_parent_id: EntryId | None) -> bool:
        """Move an entry under another entry (or to the root), appended last."""
        entry = tree.find_entry(self.menu, entry_id)
        if entry is None:
            return False

        if not self.is_open:
            if isinstance(new_parent_id, Staged):
                return False
            new_siblings = tree.sibling_list(self.menu, new_parent_id)
            if new_siblings is None or entry.parent_id == new_parent_id:
                return False
            if any(d.id == new_parent_id for d in tree.descendants(entry)):
                return False
            if not isinstance(entry_id, Persisted):
                return False
            fields = {
                "parent_id": new_parent_id.value if new_parent_id is not None else None,
                "position": len(new_siblings),
            }
            self._direct(
                "reparent",
                entry_id,
                "Menu entry moved",
                lambda: self.store.update_entry(entry_id.value, fields),
            )
            return True

        moved = tree.reparent(self.menu, entry_id, new_parent_id)
        if moved is None:
            logger.info("Reparent ignored for %s -> %s", entry_id, new_parent_id)
            return False
        entry, shifted = moved
        self._record_positions(shifted)
        if isinstance(entry.id, Staged):
            # Not on the store yet: add it straight under the new parent.
            self.pending.reparent_addition(entry.id, new_parent_id)
            self.pending.drop_field(entry.id, "position")
        else:
            self._merge_update(entry, {"parent_id": new_parent_id, "position": entry.position})
        self._emit("reparent", "Menu entry moved (pending save)", entry_id)
        return True

    # -- queries -----------------------------------------------------------

    def find(self, entry_id: EntryId) -> MenuEntry | None:
        return tree.find_entry(self.menu, entry_id)

    def search_catalog(self, term: str) -> list[CatalogNode]:
        return catalog.search(self.catalog, term)

    def candidates(self, entry_id: EntryId) -> list[CatalogNode] | None:
        entry = tree.find_entry(self.menu, entry_id)
        if entry is None:
            return None
        return catalog.subcollection_candidates(self.catalog, entry)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": "staged" if self.is_open else "direct",
            "loaded": self.loaded,
            "load_error": self.load_error,
            "catalog": [n.to_dict() for n in self.catalog],
            "menu": [e.to_dict() for e in self.menu],
            "pending": self.pending.to_dict(),
        }

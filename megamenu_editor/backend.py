"""REST endpoints for the mega menu store.

Serves the routes ``HttpMenuStore`` talks to, backed by a ``YamlMenuStore``.
"""

from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, current_app, jsonify, request

from .models import MenuEntry
from .store import StoreError, fields_from_wire
from .yaml_store import YamlMenuStore

logger = logging.getLogger(__name__)

bp = Blueprint("megamenu_backend", __name__, url_prefix="/megamenu")


def _store() -> YamlMenuStore:
    return current_app.extensions["megamenu_store"]


def _error(message: str, status: int = 400, **extra: Any):
    payload: dict[str, Any] = {"message": message}
    payload.update(extra)
    return jsonify(payload), status


def _store_error(exc: StoreError, action: str):
    status = exc.status or 500
    if status >= 500:
        logger.error("Error %s: %s", action, exc.message)
    return _error(exc.message, status)


def _entry_to_wire(entry: MenuEntry) -> dict[str, Any]:
    return {
        "id": entry.id.to_json(),
        "collection_id": entry.catalog_node_id,
        "parent_menu_item_id": entry.parent_id.to_json() if entry.parent_id is not None else None,
        "position": entry.position,
        "level": entry.level,
        "is_active": entry.active,
        "display_subcollections": entry.show_children,
        "collection_name": entry.name,
        "collection_slug": entry.slug,
        "collection_type": entry.kind,
    }


def _int_field(payload: dict[str, Any], key: str) -> int | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"`{key}` must be an integer")
    return value


@bp.route("/tree", methods=["GET"])
def get_tree():
    include_inactive = request.args.get("include_inactive") == "true"
    try:
        return jsonify(_store().tree(include_inactive=include_inactive))
    except StoreError as exc:
        return _store_error(exc, "fetching mega menu items")


@bp.route("", methods=["GET"])
def get_storefront_menu():
    try:
        return jsonify(_store().storefront_menu())
    except StoreError as exc:
        return _store_error(exc, "getting mega menu")


@bp.route("", methods=["POST"])
def add_to_menu():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return _error("Expected a JSON object.")
    try:
        collection_id = _int_field(payload, "collection_id")
        parent_id = _int_field(payload, "parent_menu_item_id")
    except ValueError as exc:
        return _error(str(exc))
    if not collection_id:
        return _error("Collection ID is required")
    try:
        entry = _store().add_entry(collection_id, parent_id)
    except StoreError as exc:
        return _store_error(exc, "adding collection to mega menu")
    return jsonify({"message": "Collection added to mega menu successfully", "megaMenuItem": _entry_to_wire(entry)}), 201


@bp.route("/subcollection", methods=["POST"])
def add_subcollection():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return _error("Expected a JSON object.")
    try:
        collection_id = _int_field(payload, "collection_id")
        parent_id = _int_field(payload, "parent_menu_item_id")
    except ValueError as exc:
        return _error(str(exc))
    if not collection_id or not parent_id:
        return _error("Collection ID and parent menu item ID are required")
    try:
        entry = _store().add_entry(collection_id, parent_id)
    except StoreError as exc:
        return _store_error(exc, "adding subcollection to mega menu")
    return jsonify({"message": "Subcollection added to mega menu successfully", "megaMenuItem": _entry_to_wire(entry)}), 201


@bp.route("/<int:entry_id>", methods=["PUT"])
def update_item(entry_id: int):
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return _error("Expected a JSON object.")
    fields = fields_from_wire(payload)
    if "parent_id" in fields:
        try:
            fields["parent_id"] = _int_field(payload, "parent_menu_item_id")
        except ValueError as exc:
            return _error(str(exc))
        if fields["parent_id"] == entry_id:
            return _error("A menu item cannot be its own parent")
    try:
        _store().update_entry(entry_id, fields)
    except StoreError as exc:
        return _store_error(exc, "updating mega menu item")
    return jsonify({"message": "Mega menu item updated successfully"})


@bp.route("/<int:entry_id>", methods=["DELETE"])
def remove_item(entry_id: int):
    try:
        _store().remove_entry(entry_id)
    except StoreError as exc:
        return _store_error(exc, "removing collection from mega menu")
    return jsonify({"message": "Collection removed from mega menu successfully"})


@bp.route("/reorder", methods=["POST"])
def reorder_items():
    payload = request.get_json(silent=True)
    items = payload.get("items") if isinstance(payload, dict) else None
    try:
        _store().reorder(items)
    except StoreError as exc:
        return _store_error(exc, "reordering mega menu")
    return jsonify({"message": "Mega menu reordered successfully", "megaMenu": _store().tree()["megaMenu"]})

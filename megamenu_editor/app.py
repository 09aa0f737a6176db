from __future__ import annotations

import logging
import threading
from typing import Any

from flask import Blueprint, Flask, current_app, jsonify, request

from .backend import bp as backend_bp
from .config import Settings, load_settings
from .models import EntryId, entry_id_from_json, optional_entry_id
from .session import MenuEditor, SessionEvent
from .store import HttpMenuStore, StoreError
from .yaml_store import YamlMenuStore

logger = logging.getLogger(__name__)

# The editor is single-writer; every action runs under this lock.
EDITOR_LOCK = threading.RLock()
EVENT_LOG_LIMIT = 200

api = Blueprint("editor", __name__)


def _json_error(message: str, status: int = 400, **extra: Any):
    payload: dict[str, Any] = {"error": message}
    payload.update(extra)
    return jsonify(payload), status


def _editor() -> MenuEditor:
    return current_app.extensions["megamenu_editor"]


def _ensure_loaded(editor: MenuEditor) -> None:
    if not editor.loaded and not editor.is_open:
        editor.load()


def _payload() -> dict[str, Any] | None:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else None


def _int_field(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"`{key}` must be an integer.")
    return value


def _ok(editor: MenuEditor, status: str = "ok", **extra: Any):
    body: dict[str, Any] = {"status": status}
    body.update(extra)
    body["state"] = editor.to_dict()
    return jsonify(body)


def _remote_error(exc: StoreError):
    return _json_error(f"Remote store error: {exc.message}", 502, remote_status=exc.status)


def build_editor(settings: Settings) -> MenuEditor:
    if settings.backend_url:
        store: Any = HttpMenuStore(settings.backend_url, timeout=settings.http_timeout)
    else:
        store = YamlMenuStore(settings.store_path, backup_keep=settings.backup_keep)
    return MenuEditor(store, commit_delay=settings.commit_delay)


def create_app(settings: Settings | None = None, *, editor: MenuEditor | None = None) -> Flask:
    settings = settings or load_settings()
    editor = editor or build_editor(settings)

    app = Flask(__name__)
    events: list[dict[str, Any]] = []

    def _record(event: SessionEvent) -> None:
        events.append(event.to_dict())
        if len(events) > EVENT_LOG_LIMIT:
            del events[: len(events) - EVENT_LOG_LIMIT]

    editor.add_listener(_record)
    app.extensions["megamenu_editor"] = editor
    app.extensions["megamenu_events"] = events
    app.extensions["megamenu_settings"] = settings

    if isinstance(editor.store, YamlMenuStore):
        app.extensions["megamenu_store"] = editor.store
        app.register_blueprint(backend_bp)
    app.register_blueprint(api)
    return app


@api.route("/health", methods=["GET"])
def healthcheck():
    editor = _editor()
    return jsonify(
        {
            "status": "ok",
            "mode": "staged" if editor.is_open else "direct",
            "loaded": editor.loaded,
            "load_error": editor.load_error,
        }
    )


@api.route("/api/meta", methods=["GET"])
def api_meta():
    settings: Settings = current_app.extensions["megamenu_settings"]
    store = _editor().store
    return jsonify(
        {
            "store": type(store).__name__,
            "store_path": str(store.path) if isinstance(store, YamlMenuStore) else None,
            "backend_url": getattr(store, "base_url", None),
            "commit_delay": settings.commit_delay,
        }
    )


@api.route("/api/state", methods=["GET"])
def api_get_state():
    editor = _editor()
    with EDITOR_LOCK:
        _ensure_loaded(editor)
        return jsonify(editor.to_dict())


@api.route("/api/reload", methods=["POST"])
def api_reload():
    editor = _editor()
    with EDITOR_LOCK:
        if editor.is_open:
            return _json_error("Save or discard the batch session before reloading.", 409)
        if not editor.load():
            return _json_error(f"Failed to load mega menu data: {editor.load_error}", 502)
        return _ok(editor)


@api.route("/api/session/open", methods=["POST"])
def api_open_session():
    editor = _editor()
    with EDITOR_LOCK:
        _ensure_loaded(editor)
        if not editor.open_session():
            return _json_error("Batch session is already open.", 409)
        return _ok(editor)


@api.route("/api/session/discard", methods=["POST"])
def api_discard_session():
    editor = _editor()
    with EDITOR_LOCK:
        if not editor.discard():
            return _json_error("No batch session is open.", 409)
        return _ok(editor)


@api.route("/api/session/commit", methods=["POST"])
def api_commit_session():
    editor = _editor()
    with EDITOR_LOCK:
        report = editor.commit()
        if report is None:
            return _json_error("No batch session is open.", 409)
        return _ok(editor, "ok" if report.ok else "partial", report=report.to_dict())


@api.route("/api/menu/add", methods=["POST"])
def api_add():
    payload = _payload()
    if payload is None:
        return _json_error("Expected a JSON object.", 400)
    try:
        catalog_node_id = _int_field(payload, "catalog_node_id")
        parent_id = optional_entry_id(payload.get("parent_id"))
    except ValueError as exc:
        return _json_error(str(exc), 400)
    editor = _editor()
    with EDITOR_LOCK:
        _ensure_loaded(editor)
        try:
            entry = editor.add(catalog_node_id, parent_id)
        except StoreError as exc:
            return _remote_error(exc)
        if entry is None:
            return _ok(editor, "noop")
        return _ok(editor, entry=entry.to_dict())


def _entry_action(action: str, entry_id: EntryId, field: str | None = None):
    editor = _editor()
    with EDITOR_LOCK:
        _ensure_loaded(editor)
        try:
            if action == "remove":
                done: Any = editor.remove(entry_id)
            elif field == "active":
                done = editor.toggle_active(entry_id)
            else:
                done = editor.toggle_show_children(entry_id)
        except StoreError as exc:
            return _remote_error(exc)
        return _ok(editor, "ok" if done else "noop")


@api.route("/api/menu/remove", methods=["POST"])
def api_remove():
    payload = _payload()
    if payload is None:
        return _json_error("Expected a JSON object.", 400)
    try:
        entry_id = entry_id_from_json(payload.get("id"))
    except ValueError as exc:
        return _json_error(str(exc), 400)
    return _entry_action("remove", entry_id)


@api.route("/api/menu/toggle", methods=["POST"])
def api_toggle():
    payload = _payload()
    if payload is None:
        return _json_error("Expected a JSON object.", 400)
    field = payload.get("field")
    if field not in {"active", "show_children"}:
        return _json_error("`field` must be `active` or `show_children`.", 400)
    try:
        entry_id = entry_id_from_json(payload.get("id"))
    except ValueError as exc:
        return _json_error(str(exc), 400)
    return _entry_action("toggle", entry_id, field)


@api.route("/api/menu/move", methods=["POST"])
def api_move():
    payload = _payload()
    if payload is None:
        return _json_error("Expected a JSON object.", 400)
    direction = payload.get("direction")
    if direction not in {"up", "down"}:
        return _json_error("`direction` must be `up` or `down`.", 400)
    try:
        parent_id = optional_entry_id(payload.get("parent_id"))
        index = _int_field(payload, "index")
    except ValueError as exc:
        return _json_error(str(exc), 400)
    editor = _editor()
    with EDITOR_LOCK:
        _ensure_loaded(editor)
        try:
            if direction == "up":
                moved = editor.move_up(parent_id, index)
            else:
                moved = editor.move_down(parent_id, index)
        except StoreError as exc:
            return _remote_error(exc)
        return _ok(editor, "ok" if moved else "noop")


@api.route("/api/menu/reposition", methods=["POST"])
def api_reposition():
    payload = _payload()
    if payload is None:
        return _json_error("Expected a JSON object.", 400)
    try:
        parent_id = optional_entry_id(payload.get("parent_id"))
        from_index = _int_field(payload, "from_index")
        to_index = _int_field(payload, "to_index")
    except ValueError as exc:
        return _json_error(str(exc), 400)
    editor = _editor()
    with EDITOR_LOCK:
        _ensure_loaded(editor)
        try:
            moved = editor.move_to(parent_id, from_index, to_index)
        except StoreError as exc:
            return _remote_error(exc)
        return _ok(editor, "ok" if moved else "noop")


@api.route("/api/menu/reparent", methods=["POST"])
def api_reparent():
    payload = _payload()
    if payload is None:
        return _json_error("Expected a JSON object.", 400)
    try:
        entry_id = entry_id_from_json(payload.get("id"))
        parent_id = optional_entry_id(payload.get("parent_id"))
    except ValueError as exc:
        return _json_error(str(exc), 400)
    editor = _editor()
    with EDITOR_LOCK:
        _ensure_loaded(editor)
        try:
            moved = editor.reparent(entry_id, parent_id)
        except StoreError as exc:
            return _remote_error(exc)
        return _ok(editor, "ok" if moved else "noop")


@api.route("/api/catalog/search", methods=["GET"])
def api_search_catalog():
    editor = _editor()
    with EDITOR_LOCK:
        _ensure_loaded(editor)
        nodes = editor.search_catalog(request.args.get("q", ""))
        return jsonify([n.to_dict() for n in nodes])


@api.route("/api/menu/<entry_ref>/candidates", methods=["GET"])
def api_candidates(entry_ref: str):
    try:
        entry_id = entry_id_from_json(entry_ref)
    except ValueError as exc:
        return _json_error(str(exc), 400)
    editor = _editor()
    with EDITOR_LOCK:
        _ensure_loaded(editor)
        nodes = editor.candidates(entry_id)
        if nodes is None:
            return _json_error("Menu entry not found.", 404)
        return jsonify([n.to_dict() for n in nodes])


@api.route("/api/events", methods=["GET"])
def api_events():
    events: list[dict[str, Any]] = current_app.extensions["megamenu_events"]
    with EDITOR_LOCK:
        return jsonify(list(events))


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    create_app().run(debug=True)


if __name__ == "__main__":
    main()

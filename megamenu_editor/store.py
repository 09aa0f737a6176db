from __future__ import annotations

import json
import logging
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from .models import MenuEntry, Snapshot, created_entry_from_dict, snapshot_from_dict

logger = logging.getLogger(__name__)

# Editor field name -> backend column name.
WIRE_FIELDS = {
    "active": "is_active",
    "show_children": "display_subcollections",
    "position": "position",
    "parent_id": "parent_menu_item_id",
}


class StoreError(Exception):
    """A remote store call failed."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class MenuStore(Protocol):
    def fetch_snapshot(self) -> Snapshot: ...

    def add_entry(self, catalog_node_id: int, parent_id: int | None) -> MenuEntry: ...

    def remove_entry(self, entry_id: int) -> None: ...

    def update_entry(self, entry_id: int, fields: dict[str, Any]) -> None: ...

    def reorder(self, items: list[dict[str, Any]]) -> None: ...


def fields_to_wire(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - set(WIRE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown menu entry fields: {', '.join(sorted(unknown))}")
    return {WIRE_FIELDS[key]: value for key, value in fields.items()}


def fields_from_wire(payload: dict[str, Any]) -> dict[str, Any]:
    reverse = {wire: name for name, wire in WIRE_FIELDS.items()}
    return {reverse[key]: value for key, value in payload.items() if key in reverse}


def _join_base(base: str, path: str) -> str:
    base = base.strip()
    path = path.strip()
    if not base:
        return path
    if base.endswith("/"):
        base = base[:-1]
    if path.startswith("/"):
        path = path[1:]
    return f"{base}/{path}"


def _error_message(exc: HTTPError) -> str:
    try:
        body = json.loads(exc.read().decode("utf-8") or "{}")
    except (ValueError, OSError):
        body = {}
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if isinstance(message, str) and message:
            return message
    return f"HTTP {exc.code}"


class HttpMenuStore:
    """JSON client for the mega menu REST backend."""

    def __init__(self, base_url: str, *, timeout: float = 10.0) -> None:
        parsed = urlparse(base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid backend URL: {base_url!r}")
        self.base_url = base_url
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: Any | None = None) -> Any:
        url = _join_base(self.base_url, path)
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = Request(
            url,
            data=data,
            method=method,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "User-Agent": "megamenu-editor",
            },
        )
        logger.debug("%s %s", method, url)
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read()
        except HTTPError as exc:
            raise StoreError(_error_message(exc), status=exc.code) from exc
        except URLError as exc:
            raise StoreError(f"Backend unreachable: {exc.reason}") from exc
        except OSError as exc:
            raise StoreError(f"Backend request failed: {exc}") from exc
        if not raw:
            return {}
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as exc:
            raise StoreError(f"Backend returned invalid JSON for {method} {path}") from exc

    def fetch_snapshot(self) -> Snapshot:
        payload = self._request("GET", "/megamenu/tree?include_inactive=true")
        try:
            return snapshot_from_dict(payload)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"Invalid snapshot: {exc}") from exc

    def add_entry(self, catalog_node_id: int, parent_id: int | None) -> MenuEntry:
        if parent_id is None:
            # The backend distinguishes an explicit null parent from a missing key.
            body = {
                "collection_id": catalog_node_id,
                "parent_menu_item_id": None,
                "display_subcollections": False,
            }
            payload = self._request("POST", "/megamenu", body)
        else:
            body = {"collection_id": catalog_node_id, "parent_menu_item_id": parent_id}
            payload = self._request("POST", "/megamenu/subcollection", body)
        item = payload.get("megaMenuItem") if isinstance(payload, dict) else None
        try:
            return created_entry_from_dict(item)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"Invalid add response: {exc}") from exc

    def remove_entry(self, entry_id: int) -> None:
        self._request("DELETE", f"/megamenu/{entry_id}")

    def update_entry(self, entry_id: int, fields: dict[str, Any]) -> None:
        self._request("PUT", f"/megamenu/{entry_id}", fields_to_wire(fields))

    def reorder(self, items: list[dict[str, Any]]) -> None:
        self._request("POST", "/megamenu/reorder", {"items": items})

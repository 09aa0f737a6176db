import io
import json
from urllib.error import HTTPError, URLError

import pytest

from megamenu_editor import store as store_module
from megamenu_editor.models import Persisted
from megamenu_editor.store import HttpMenuStore, StoreError, _join_base, fields_from_wire, fields_to_wire


class FakeResponse:
    def __init__(self, body):
        self._body = body

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture
def sent(monkeypatch):
    """Captured requests; set ``sent.reply`` to the next response body or exception."""

    class Capture(list):
        reply = b"{}"

    capture = Capture()

    def fake_urlopen(req, timeout=None):
        capture.append(
            {
                "method": req.get_method(),
                "url": req.full_url,
                "body": json.loads(req.data) if req.data else None,
                "timeout": timeout,
            }
        )
        if isinstance(capture.reply, Exception):
            raise capture.reply
        return FakeResponse(capture.reply)

    monkeypatch.setattr(store_module, "urlopen", fake_urlopen)
    return capture


@pytest.fixture
def client():
    return HttpMenuStore("http://shop.test/api/", timeout=3)


def test_join_base():
    assert _join_base("http://x/api/", "/megamenu") == "http://x/api/megamenu"
    assert _join_base("", "megamenu") == "megamenu"


def test_field_mapping():
    assert fields_to_wire({"active": False, "parent_id": None}) == {
        "is_active": False,
        "parent_menu_item_id": None,
    }
    assert fields_from_wire({"display_subcollections": True, "level": 2}) == {"show_children": True}
    with pytest.raises(ValueError):
        fields_to_wire({"level": 1})


def test_rejects_non_http_urls():
    with pytest.raises(ValueError):
        HttpMenuStore("ftp://shop.test")
    with pytest.raises(ValueError):
        HttpMenuStore("shop.test/api")


def test_fetch_snapshot(client, sent):
    sent.reply = json.dumps(
        {
            "collectionsTree": [{"id": 1, "name": "Men", "collection_type": "category"}],
            "megaMenu": [{"id": 9, "collection_id": 1, "position": 0, "is_active": True}],
        }
    ).encode()

    snapshot = client.fetch_snapshot()

    assert sent == [
        {
            "method": "GET",
            "url": "http://shop.test/api/megamenu/tree?include_inactive=true",
            "body": None,
            "timeout": 3,
        }
    ]
    assert snapshot.menu[0].id == Persisted(9)


def test_fetch_snapshot_with_bad_shape(client, sent):
    sent.reply = b'{"megaMenu": []}'
    with pytest.raises(StoreError, match="collectionsTree"):
        client.fetch_snapshot()


def test_add_root_sends_explicit_null_parent(client, sent):
    sent.reply = json.dumps(
        {"megaMenuItem": {"id": 70, "collection_id": 5, "parent_menu_item_id": None, "position": 3}}
    ).encode()

    entry = client.add_entry(5, None)

    assert sent[0]["url"].endswith("/megamenu")
    assert sent[0]["body"] == {
        "collection_id": 5,
        "parent_menu_item_id": None,
        "display_subcollections": False,
    }
    assert (entry.id, entry.parent_id, entry.position) == (Persisted(70), None, 3)


def test_add_child_uses_subcollection_route(client, sent):
    sent.reply = json.dumps(
        {"megaMenuItem": {"id": 71, "collection_id": 6, "parent_menu_item_id": 70, "level": 1}}
    ).encode()

    entry = client.add_entry(6, 70)

    assert (sent[0]["method"], sent[0]["url"]) == ("POST", "http://shop.test/api/megamenu/subcollection")
    assert sent[0]["body"] == {"collection_id": 6, "parent_menu_item_id": 70}
    assert entry.parent_id == Persisted(70)


def test_add_without_item_in_response(client, sent):
    sent.reply = b'{"message": "ok"}'
    with pytest.raises(StoreError, match="Invalid add response"):
        client.add_entry(5, None)


def test_remove_update_reorder(client, sent):
    client.remove_entry(7)
    client.update_entry(7, {"show_children": True, "position": 2})
    client.reorder([{"id": 7, "position": 0}])

    assert [(s["method"], s["url"].rsplit("/api", 1)[1]) for s in sent] == [
        ("DELETE", "/megamenu/7"),
        ("PUT", "/megamenu/7"),
        ("POST", "/megamenu/reorder"),
    ]
    assert sent[1]["body"] == {"display_subcollections": True, "position": 2}
    assert sent[2]["body"] == {"items": [{"id": 7, "position": 0}]}


def test_http_error_uses_backend_message(client, sent):
    sent.reply = HTTPError(
        "http://shop.test/api/megamenu",
        400,
        "Bad Request",
        None,
        io.BytesIO(b'{"message": "Collection is already in the mega menu"}'),
    )
    with pytest.raises(StoreError) as excinfo:
        client.add_entry(5, None)
    assert excinfo.value.status == 400
    assert excinfo.value.message == "Collection is already in the mega menu"


def test_http_error_without_body(client, sent):
    sent.reply = HTTPError("http://shop.test/api/megamenu/1", 500, "Oops", None, io.BytesIO(b""))
    with pytest.raises(StoreError) as excinfo:
        client.remove_entry(1)
    assert excinfo.value.message == "HTTP 500"


def test_unreachable_backend(client, sent):
    sent.reply = URLError("connection refused")
    with pytest.raises(StoreError, match="unreachable") as excinfo:
        client.remove_entry(1)
    assert excinfo.value.status is None


def test_invalid_json(client, sent):
    sent.reply = b"<html>"
    with pytest.raises(StoreError, match="invalid JSON"):
        client.fetch_snapshot()

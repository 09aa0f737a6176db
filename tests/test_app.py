import pytest

from megamenu_editor.app import create_app
from megamenu_editor.config import Settings
from megamenu_editor.session import MenuEditor


def _client(settings, store):
    return create_app(settings, editor=MenuEditor(store, commit_delay=0)).test_client()


@pytest.fixture
def settings(store_path):
    return Settings(store_path=store_path, commit_delay=0)


@pytest.fixture
def client(settings, yaml_store):
    return _client(settings, yaml_store)


def _roots(body):
    return [e["id"] for e in body["state"]["menu"]]


def test_health_and_meta(client, store_path):
    health = client.get("/health").get_json()
    assert health == {"status": "ok", "mode": "direct", "loaded": False, "load_error": None}

    meta = client.get("/api/meta").get_json()
    assert meta["store"] == "YamlMenuStore"
    assert meta["store_path"] == str(store_path)
    assert meta["backend_url"] is None


def test_state_loads_on_first_request(client):
    state = client.get("/api/state").get_json()
    assert state["loaded"] is True
    assert state["mode"] == "direct"
    assert [e["id"] for e in state["menu"]] == [40, 41, 42]
    assert state["pending"] == {"additions": [], "removals": [], "updates": []}


def test_direct_toggle(client):
    resp = client.post("/api/menu/toggle", json={"id": 42, "field": "active"})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["status"] == "ok"
    assert body["state"]["menu"][2]["active"] is False


@pytest.mark.parametrize(
    "url,payload",
    [
        ("/api/menu/toggle", {"id": 42, "field": "name"}),
        ("/api/menu/toggle", {"id": "abc", "field": "active"}),
        ("/api/menu/add", {"catalog_node_id": "17"}),
        ("/api/menu/add", {"catalog_node_id": 17, "parent_id": "nope"}),
        ("/api/menu/move", {"parent_id": None, "index": 1, "direction": "left"}),
        ("/api/menu/reposition", {"from_index": 0}),
        ("/api/menu/reparent", {"id": True}),
    ],
)
def test_bad_payloads(client, url, payload):
    resp = client.post(url, json=payload)
    assert resp.status_code == 400
    assert "error" in resp.get_json()


def test_non_json_body(client):
    resp = client.post("/api/menu/remove", data="42", content_type="text/plain")
    assert resp.status_code == 400


def test_noops_report_status(client):
    assert client.post("/api/menu/add", json={"catalog_node_id": 10}).get_json()["status"] == "noop"
    assert client.post("/api/menu/remove", json={"id": 999}).get_json()["status"] == "noop"
    moved = client.post("/api/menu/move", json={"parent_id": None, "index": 0, "direction": "up"})
    assert moved.get_json()["status"] == "noop"


def test_direct_move_and_reparent(client):
    body = client.post("/api/menu/reposition", json={"parent_id": None, "from_index": 2, "to_index": 0}).get_json()
    assert _roots(body) == [42, 40, 41]

    body = client.post("/api/menu/reparent", json={"id": 43, "parent_id": 41}).get_json()
    women = body["state"]["menu"][2]
    assert [c["id"] for c in women["children"]] == [43]


def test_batch_session_round_trip(client):
    assert client.post("/api/session/open").status_code == 200
    assert client.post("/api/session/open").status_code == 409
    assert client.post("/api/reload").status_code == 409

    added = client.post("/api/menu/add", json={"catalog_node_id": 17}).get_json()
    staged_id = added["entry"]["id"]
    assert staged_id.startswith("staged-")
    assert added["state"]["mode"] == "staged"

    toggled = client.post("/api/menu/toggle", json={"id": staged_id, "field": "show_children"}).get_json()
    assert toggled["state"]["pending"]["updates"] == [{"id": staged_id, "fields": {"show_children": True}}]

    body = client.post("/api/session/commit").get_json()
    assert body["status"] == "ok"
    assert body["report"]["resolved"] == {staged_id: 50}
    assert body["state"]["mode"] == "direct"
    assert _roots(body) == [40, 41, 42, 50]


def test_discard_session(client):
    before = client.get("/api/state").get_json()
    client.post("/api/session/open")
    client.post("/api/menu/remove", json={"id": 41})
    body = client.post("/api/session/discard").get_json()
    assert body["state"] == before


def test_session_endpoints_without_session(client):
    assert client.post("/api/session/commit").status_code == 409
    assert client.post("/api/session/discard").status_code == 409


def test_partial_commit(settings, recording):
    recording.fail.add(("remove", 41))
    client = _client(settings, recording)
    client.post("/api/session/open")
    client.post("/api/menu/remove", json={"id": 41})

    body = client.post("/api/session/commit").get_json()

    assert body["status"] == "partial"
    assert body["report"]["failures"][0]["action"] == "remove"
    assert 41 in _roots(body)


def test_remote_error_is_bad_gateway(settings, recording):
    recording.fail.add("update")
    client = _client(settings, recording)

    resp = client.post("/api/menu/toggle", json={"id": 42, "field": "active"})

    assert resp.status_code == 502
    assert resp.get_json()["remote_status"] == 500
    assert client.get("/api/state").get_json()["menu"][2]["active"] is True


def test_reload_failure(settings, recording):
    client = _client(settings, recording)
    client.get("/api/state")
    recording.fail.add("fetch")
    assert client.post("/api/reload").status_code == 502


def test_search_and_candidates(client):
    found = client.get("/api/catalog/search?q=shi").get_json()
    assert [n["id"] for n in found] == [10]
    assert [c["id"] for c in found[0]["children"]] == [11]

    candidates = client.get("/api/menu/41/candidates").get_json()
    assert [n["id"] for n in candidates] == [14, 15]
    assert client.get("/api/menu/999/candidates").status_code == 404
    assert client.get("/api/menu/abc/candidates").status_code == 400


def test_events_are_recorded(client):
    client.post("/api/menu/toggle", json={"id": 42, "field": "active"})
    events = client.get("/api/events").get_json()
    assert events[-1]["kind"] == "update"
    assert events[-1]["id"] == 42
    assert events[-1]["ok"] is True


def test_backend_routes(client):
    tree = client.get("/megamenu/tree?include_inactive=true").get_json()
    assert [r["id"] for r in tree["megaMenu"]] == [40, 41, 42]

    created = client.post("/megamenu", json={"collection_id": 17, "parent_menu_item_id": None})
    assert created.status_code == 201
    assert created.get_json()["megaMenuItem"]["id"] == 50

    dup = client.post("/megamenu/subcollection", json={"collection_id": 11, "parent_menu_item_id": 40})
    assert dup.status_code == 400
    assert client.post("/megamenu/subcollection", json={"collection_id": 11}).status_code == 400

    assert client.put("/megamenu/40", json={"parent_menu_item_id": 40}).status_code == 400
    assert client.put("/megamenu/999", json={"is_active": False}).status_code == 404
    assert client.put("/megamenu/42", json={"is_active": False}).status_code == 200

    assert client.post("/megamenu/reorder", json={"items": []}).status_code == 400
    reordered = client.post("/megamenu/reorder", json={"items": [{"id": 41, "position": 0}, {"id": 40, "position": 1}]})
    assert reordered.status_code == 200

    storefront = client.get("/megamenu").get_json()
    assert [m["id"] for m in storefront] == [41, 40, 50]

    assert client.delete("/megamenu/50").status_code == 200
    assert client.delete("/megamenu/50").status_code == 404

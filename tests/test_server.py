"""
Tests for the board_server row service (Flask test client).
"""
import queue

import pytest

import board_server


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("TASKBOARD_SERVER_DB", str(tmp_path / "rows.db"))
    monkeypatch.delenv("TASKBOARD_API_SECRET", raising=False)
    board_server.app.config["TESTING"] = True
    with board_server.app.test_client() as c:
        yield c


@pytest.fixture()
def events():
    q = board_server.feed.subscribe()
    yield q
    board_server.feed.unsubscribe(q)


def drain(q: queue.Queue) -> list:
    out = []
    while True:
        try:
            out.append(q.get_nowait()["event"])
        except queue.Empty:
            return out


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Table API
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_insert_assigns_id_and_created_at(client):
    r = client.post("/rest/v1/tasks", json={"title": "Write report", "priority": "high"})
    assert r.status_code == 201
    row = r.get_json()
    assert row["id"]
    assert row["created_at"]
    assert row["status"] == "todo"
    assert row["priority"] == "high"
    assert row["due_date"] is None


def test_list_is_newest_first_by_default(client):
    first = client.post("/rest/v1/tasks", json={"title": "First"}).get_json()
    second = client.post("/rest/v1/tasks", json={"title": "Second"}).get_json()

    rows = client.get("/rest/v1/tasks?order=created_at.desc").get_json()
    assert [r["id"] for r in rows] == [second["id"], first["id"]]

    rows = client.get("/rest/v1/tasks?order=created_at.asc").get_json()
    assert [r["id"] for r in rows] == [first["id"], second["id"]]


def test_unknown_order_column_rejected(client):
    r = client.get("/rest/v1/tasks?order=password.desc")
    assert r.status_code == 400
    assert "Cannot order by" in r.get_json()["error"]


def test_patch_updates_fields(client):
    row = client.post("/rest/v1/tasks", json={"title": "Move me"}).get_json()
    r = client.patch(f"/rest/v1/tasks/{row['id']}", json={"status": "done", "due_date": "2024-06-20"})
    assert r.status_code == 200
    updated = r.get_json()
    assert updated["status"] == "done"
    assert updated["due_date"] == "2024-06-20"
    assert updated["title"] == "Move me"


def test_patch_unknown_id_matches_nothing(client):
    r = client.patch("/rest/v1/tasks/ghost", json={"title": "Nope"})
    assert r.status_code == 204


def test_delete_is_idempotent(client):
    row = client.post("/rest/v1/tasks", json={"title": "Bye"}).get_json()
    assert client.delete(f"/rest/v1/tasks/{row['id']}").status_code == 204
    assert client.delete(f"/rest/v1/tasks/{row['id']}").status_code == 204
    assert client.get("/rest/v1/tasks").get_json() == []


def test_validation_errors_are_400(client):
    r = client.post("/rest/v1/tasks", json={"title": ""})
    assert r.status_code == 400
    assert r.get_json() == {"error": "Title is required"}

    r = client.post("/rest/v1/tasks", json={"title": "T", "status": "blocked"})
    assert r.status_code == 400

    r = client.post("/rest/v1/tasks", data="not json", content_type="application/json")
    assert r.status_code == 400


def test_health(client):
    body = client.get("/health").get_json()
    assert body["status"] == "ok"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Auth
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_mutations_require_api_key_when_secret_set(client, monkeypatch):
    monkeypatch.setenv("TASKBOARD_API_SECRET", "s3cret")

    assert client.post("/rest/v1/tasks", json={"title": "T"}).status_code == 401
    r = client.post("/rest/v1/tasks", json={"title": "T"}, headers={"X-API-Key": "wrong"})
    assert r.status_code == 403
    r = client.post("/rest/v1/tasks", json={"title": "T"}, headers={"X-API-Key": "s3cret"})
    assert r.status_code == 201


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Change feed
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_committed_changes_are_published(client, events):
    row = client.post("/rest/v1/tasks", json={"title": "Watched"}).get_json()
    client.patch(f"/rest/v1/tasks/{row['id']}", json={"status": "inprogress"})
    client.delete(f"/rest/v1/tasks/{row['id']}")
    assert drain(events) == ["INSERT", "UPDATE", "DELETE"]


def test_no_event_when_nothing_changed(client, events):
    client.patch("/rest/v1/tasks/ghost", json={"title": "Nope"})
    client.delete("/rest/v1/tasks/ghost")
    client.post("/rest/v1/tasks", json={"title": ""})
    assert drain(events) == []


def test_feed_messages_name_schema_and_table(events):
    board_server.feed.publish("*")
    assert events.get_nowait() == {"event": "*", "schema": "public", "table": "tasks"}


def test_full_subscriber_queue_drops_events():
    feed = board_server.ChangeFeed(maxsize=1)
    q = feed.subscribe()
    feed.publish("INSERT")
    feed.publish("UPDATE")
    assert q.qsize() == 1
    feed.unsubscribe(q)
    assert len(feed) == 0

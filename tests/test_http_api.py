import os

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from fastapi.testclient import TestClient

from app.main import create_app


@pytest.fixture
def client(server_db):
    # server_db has already set DB.SessionLocal, so the lifespan skips init_db
    with TestClient(create_app()) as test_client:
        yield test_client


def _register(client, username: str, first_name: str) -> dict:
    response = client.post(
        "/users",
        json={
            "username": username,
            "email": f"{username}@example.com",
            "first_name": first_name,
            "last_name": "Tester",
        },
    )
    assert response.status_code == 201
    return response.json()["user"]


def _as(user: dict) -> dict:
    return {"X-User-Id": str(user["id"])}


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "BondLedger"


def test_relationship_flow_over_http(client):
    alice = _register(client, "alice", "Alice")
    bob = _register(client, "bob", "Bob")

    proposed = client.post(
        "/relationships",
        json={"partner_email": bob["email"], "title": "Partners", "type": "partner"},
        headers=_as(alice),
    )
    assert proposed.status_code == 201
    relationship_id = proposed.json()["relationship"]["id"]

    duplicate = client.post(
        "/relationships",
        json={"partner_email": alice["email"], "title": "Again"},
        headers=_as(bob),
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error_type"] == "conflict"

    forbidden = client.post(f"/relationships/{relationship_id}/accept", headers=_as(alice))
    assert forbidden.status_code == 403
    assert forbidden.json()["status"] == "error"

    accepted = client.post(f"/relationships/{relationship_id}/accept", headers=_as(bob))
    assert accepted.status_code == 200
    assert accepted.json()["relationship"]["status"] == "active"

    term = client.post(
        f"/relationships/{relationship_id}/terms",
        json={"title": "Chores", "description": "Alternate weeks", "category": "expectations"},
        headers=_as(alice),
    ).json()["term"]
    client.post(f"/terms/{term['id']}/agree", headers=_as(alice))
    agreed = client.post(f"/terms/{term['id']}/agree", json={"signature": "B"}, headers=_as(bob))
    assert agreed.json()["term"]["status"] == "agreed"

    again = client.post(f"/terms/{term['id']}/agree", headers=_as(bob))
    assert again.status_code == 409
    assert again.json()["error_type"] == "already_agreed"

    activity = client.post(
        f"/relationships/{relationship_id}/activities",
        json={"title": "Picnic", "type": "date", "trust_change": 4},
        headers=_as(bob),
    )
    assert activity.status_code == 201

    feed = client.get("/activities/feed", headers=_as(alice))
    assert feed.json()["count"] == 1

    unread = client.get("/notifications/unread-count", headers=_as(alice))
    assert unread.json()["unread_count"] >= 1


def test_missing_actor_header_is_forbidden(client):
    response = client.get("/relationships")
    assert response.status_code == 403


def test_validation_issue_shape(client):
    alice = _register(client, "alice", "Alice")
    response = client.put(
        "/relationships/1",
        json={},
        headers=_as(alice),
    )
    assert response.status_code == 400
    body = response.json()
    assert body["field"] == "fields"
    assert body["error_type"] == "required"


def test_null_duration_on_activity_update_is_a_validation_error(client):
    alice = _register(client, "alice", "Alice")
    bob = _register(client, "bob", "Bob")
    relationship_id = client.post(
        "/relationships",
        json={"partner_email": bob["email"], "title": "Friends"},
        headers=_as(alice),
    ).json()["relationship"]["id"]
    client.post(f"/relationships/{relationship_id}/accept", headers=_as(bob))
    activity_id = client.post(
        f"/relationships/{relationship_id}/activities",
        json={"title": "Walk", "type": "date"},
        headers=_as(alice),
    ).json()["activity"]["id"]

    response = client.put(f"/activities/{activity_id}", json={"duration": None}, headers=_as(alice))
    assert response.status_code == 400
    assert response.json()["field"] == "duration"

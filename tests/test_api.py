"""
End-to-end tests for the REST surface.

Each test gets a fresh in-memory store through the app lifespan and calls
the API as different users with tokens signed like the identity provider's.
"""

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from chatsync.core.config import settings
from chatsync.main import app


def token_for(uid: str) -> str:
    return jwt.encode({"sub": uid}, settings.AUTH_SECRET, algorithm=settings.AUTH_ALGORITHM)


def auth(uid: str) -> dict:
    return {"Authorization": f"Bearer {token_for(uid)}"}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(settings, "STORE_BACKEND", "memory")
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def registered(client):
    for uid, first, last in (("u1", "Ada", "Lovelace"), ("u2", "Grace", "Hopper"), ("u3", "Alan", "Turing")):
        response = client.post(
            "/users/me",
            json={"email": f"{first.lower()}@example.com", "first_name": first, "last_name": last},
            headers=auth(uid),
        )
        assert response.status_code == 201
    return client


class TestPublicEndpoints:
    def test_root_and_health_need_no_token(self, client):
        assert client.get("/").status_code == 200

        health = client.get("/health").json()
        assert health["status"] == "healthy"
        assert health["store_backend"] == "memory"
        assert health["connections"] == 0

    def test_protected_endpoint_requires_token(self, client):
        assert client.get("/rooms").status_code == 401

    def test_invalid_token_is_rejected(self, client):
        response = client.get("/rooms", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401


class TestUsers:
    def test_profile_round_trip(self, registered):
        me = registered.get("/users/me", headers=auth("u1")).json()

        assert me["uid"] == "u1"
        assert me["displayName"] == "Ada Lovelace"
        assert me["status"] == "online"

    def test_duplicate_profile_is_conflict(self, registered):
        response = registered.post(
            "/users/me",
            json={"email": "x@example.com", "first_name": "X", "last_name": "Y"},
            headers=auth("u1"),
        )

        assert response.status_code == 409
        assert response.json()["error"] == "AlreadyExists"

    def test_search_and_lookup(self, registered):
        found = registered.get("/users/search", params={"q": "grace"}, headers=auth("u1")).json()

        assert [u["uid"] for u in found] == ["u2"]
        assert registered.get("/users/u3", headers=auth("u1")).json()["firstName"] == "Alan"
        assert registered.get("/users/ghost", headers=auth("u1")).status_code == 404

    def test_status_update(self, registered):
        registered.put("/users/me/status", json={"status": "offline"}, headers=auth("u2"))

        assert registered.get("/users/u2", headers=auth("u1")).json()["status"] == "offline"


class TestRoomsAndMessages:
    def test_private_room_is_deduplicated(self, registered):
        first = registered.post("/rooms/private", json={"user_id": "u2"}, headers=auth("u1")).json()
        second = registered.post("/rooms/private", json={"user_id": "u1"}, headers=auth("u2")).json()

        assert first["id"] == second["id"]
        assert first["kind"] == "private"

    def test_private_room_with_self_is_bad_request(self, registered):
        response = registered.post("/rooms/private", json={"user_id": "u1"}, headers=auth("u1"))

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidState"

    def test_group_scenario(self, registered):
        group = registered.post(
            "/rooms/group", json={"name": "Team", "members": ["u1", "u2", "u3"]}, headers=auth("u1")
        ).json()

        listed = registered.get("/rooms", headers=auth("u2")).json()

        assert [r["id"] for r in listed] == [group["id"]]
        assert len(listed[0]["participants"]) == 3
        assert listed[0]["admin"] == "u1"

    def test_message_flow(self, registered):
        room = registered.post(
            "/rooms/group", json={"name": "Team", "members": ["u2"]}, headers=auth("u1")
        ).json()
        base = f"/rooms/{room['id']}/messages"

        sent = registered.post(base, json={"text": "hi"}, headers=auth("u1"))
        assert sent.status_code == 201
        message_id = sent.json()["id"]

        assert registered.get(f"/rooms/{room['id']}", headers=auth("u2")).json()["lastMessage"]["id"] == message_id

        registered.post(f"{base}/{message_id}/read", headers=auth("u2"))
        [message] = registered.get(base, headers=auth("u1")).json()
        assert set(message["readBy"]) == {"u2"}

        assert registered.delete(f"{base}/{message_id}", headers=auth("u2")).status_code == 403
        assert registered.delete(f"{base}/{message_id}", headers=auth("u1")).status_code == 200
        assert registered.get(f"/rooms/{room['id']}", headers=auth("u1")).json()["lastMessage"] is None
        assert registered.delete(f"{base}/{message_id}", headers=auth("u1")).status_code == 404

    def test_non_member_cannot_read_room(self, registered):
        room = registered.post(
            "/rooms/group", json={"name": "Secret", "members": ["u2"]}, headers=auth("u1")
        ).json()

        assert registered.get(f"/rooms/{room['id']}/messages", headers=auth("u3")).status_code == 403
        assert registered.get("/rooms/missing", headers=auth("u3")).status_code == 404

    def test_group_administration(self, registered):
        room = registered.post(
            "/rooms/group", json={"name": "Team", "members": ["u2"]}, headers=auth("u1")
        ).json()
        path = f"/rooms/{room['id']}"

        assert registered.patch(path, json={"name": "Nope"}, headers=auth("u2")).status_code == 403
        assert registered.patch(path, json={"name": "Core"}, headers=auth("u1")).json()["name"] == "Core"

        added = registered.post(f"{path}/members", json={"user_ids": ["u3"]}, headers=auth("u2")).json()
        assert added["participants"] == ["u1", "u2", "u3"]

        assert registered.delete(f"{path}/members/u3", headers=auth("u2")).status_code == 403
        assert registered.delete(f"{path}/members/u2", headers=auth("u2")).status_code == 200
        assert registered.get("/rooms", headers=auth("u2")).json() == []


class TestFriends:
    def test_request_accept_scenario(self, registered):
        sent = registered.post("/friends/requests", json={"to": "u2"}, headers=auth("u1"))
        assert sent.status_code == 201
        request_id = sent.json()["id"]

        assert [r["id"] for r in registered.get("/friends/requests", headers=auth("u2")).json()] == [request_id]
        assert [r["id"] for r in registered.get("/friends/requests/sent", headers=auth("u1")).json()] == [request_id]

        accepted = registered.post(
            f"/friends/requests/{request_id}/respond", json={"action": "accept"}, headers=auth("u2")
        )
        assert accepted.json()["status"] == "accepted"

        [u1_friend] = registered.get("/friends", headers=auth("u1")).json()
        [u2_friend] = registered.get("/friends", headers=auth("u2")).json()
        assert u1_friend["uid"] == "u2" and u1_friend["displayName"] == "Grace Hopper"
        assert u2_friend["uid"] == "u1" and u2_friend["displayName"] == "Ada Lovelace"

        again = registered.post(
            f"/friends/requests/{request_id}/respond", json={"action": "accept"}, headers=auth("u2")
        )
        assert again.status_code == 400
        assert again.json()["error"] == "InvalidState"

    def test_reverse_request_conflicts(self, registered):
        registered.post("/friends/requests", json={"to": "u2"}, headers=auth("u1"))

        response = registered.post("/friends/requests", json={"to": "u1"}, headers=auth("u2"))

        assert response.status_code == 409
        assert response.json()["error"] == "AlreadyRequested"

    def test_self_request_is_refused(self, registered):
        response = registered.post("/friends/requests", json={"to": "u1"}, headers=auth("u1"))

        assert response.status_code == 400

    def test_only_recipient_can_respond(self, registered):
        request_id = registered.post("/friends/requests", json={"to": "u2"}, headers=auth("u1")).json()["id"]

        response = registered.post(
            f"/friends/requests/{request_id}/respond", json={"action": "accept"}, headers=auth("u1")
        )

        assert response.status_code == 403

    def test_remove_friend_and_notifications(self, registered):
        request_id = registered.post("/friends/requests", json={"to": "u2"}, headers=auth("u1")).json()["id"]
        registered.post(f"/friends/requests/{request_id}/respond", json={"action": "accept"}, headers=auth("u2"))

        [notification] = registered.get("/notifications", headers=auth("u1")).json()
        assert notification["type"] == "friendAccepted"
        registered.post(f"/notifications/{notification['id']}/read", headers=auth("u1"))
        assert registered.get("/notifications", headers=auth("u1")).json()[0]["read"] is True

        registered.delete("/friends/u2", headers=auth("u1"))
        assert registered.get("/friends", headers=auth("u2")).json() == []

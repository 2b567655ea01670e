"""HTTP surface tests for token and call endpoints."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from callrelay.core.config import Settings
from callrelay.core.errors import ConfigurationError
from callrelay.main import create_app


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def test_token_endpoint(client):
    response = client.post("/api/token", json={"channelName": "room-1", "uid": "alice"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["token"]
    assert isinstance(body["expireAt"], int)

    claims = client.app.state.engine.issuer.decode(body["token"])
    assert claims["channel"] == "room-1"


def test_token_endpoint_requires_fields(client):
    response = client.post("/api/token", json={"channelName": "room-1"})

    assert response.status_code == 422


def test_call_lifecycle_over_http(client):
    started = client.post("/api/start-call", json={"callerId": "alice", "calleeId": "bob"})
    assert started.status_code == 200
    started_body = started.json()
    assert started_body["success"] is True
    assert started_body["token"]
    call_id = started_body["callId"]
    assert started_body["channelName"] == call_id

    accepted = client.post("/api/accept-call", json={"callId": call_id, "calleeId": "bob"})
    assert accepted.status_code == 200
    assert accepted.json()["callId"] == call_id
    assert accepted.json()["token"] != started_body["token"]

    snapshot = client.get(f"/api/calls/{call_id}").json()
    assert snapshot["status"] == "accepted"
    assert snapshot["callerId"] == "alice"
    assert snapshot["acceptedAt"] is not None

    ended = client.post("/api/end-call", json={"callId": call_id, "userId": "bob"})
    assert ended.status_code == 200
    assert ended.json() == {"success": True}
    assert client.get(f"/api/calls/{call_id}").json()["endedBy"] == "bob"


def test_requested_channel_is_honoured(client):
    response = client.post(
        "/api/start-call",
        json={"callerId": "alice", "calleeId": "bob", "requestedChannel": "standup"},
    )

    assert response.json()["channelName"] == "standup"
    assert response.json()["callId"] != "standup"


def test_error_mapping(client):
    call_id = client.post("/api/start-call", json={"callerId": "alice", "calleeId": "bob"}).json()["callId"]

    missing = client.post("/api/accept-call", json={"callId": "nope", "calleeId": "bob"})
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"
    assert missing.json()["success"] is False

    forbidden = client.post("/api/accept-call", json={"callId": call_id, "calleeId": "carol"})
    assert forbidden.status_code == 403

    premature_end = client.post("/api/end-call", json={"callId": call_id, "userId": "alice"})
    assert premature_end.status_code == 409
    assert premature_end.json()["error"] == "invalid_state"

    rejected = client.post("/api/reject-call", json={"callId": call_id, "calleeId": "bob"})
    assert rejected.json() == {"success": True}

    late_accept = client.post("/api/accept-call", json={"callId": call_id, "calleeId": "bob"})
    assert late_accept.status_code == 409

    assert client.get("/api/calls/unknown").status_code == 404


def test_cancel_call_endpoint(client):
    call_id = client.post("/api/start-call", json={"callerId": "alice", "calleeId": "bob"}).json()["callId"]

    assert client.post("/api/cancel-call", json={"callId": call_id, "callerId": "bob"}).status_code == 403
    assert client.post("/api/cancel-call", json={"callId": call_id, "callerId": "alice"}).status_code == 200
    snapshot = client.get(f"/api/calls/{call_id}").json()
    assert snapshot["status"] == "ended"
    assert snapshot["endReason"] == "cancelled"


def test_presence_endpoint_for_offline_user(client):
    response = client.get("/api/presence/bob")

    assert response.json() == {"userId": "bob", "online": False, "connections": 0}


def test_startup_fails_without_signing_material():
    app = create_app(Settings(_env_file=None, rtc_app_id="", rtc_app_certificate=""))

    with pytest.raises(ConfigurationError):
        with TestClient(app):
            pass

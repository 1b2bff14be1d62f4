"""
Tests for the HTTP routes, driven through a fake WhatsApp Web client.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from ssi_whatsapp.session_manager import ConnectionState


def test_health_is_plain_ok(http):
    response = http.get("/health")
    assert response.status_code == 200
    assert response.text == "OK"


def test_status_before_ready(http):
    response = http.get("/api/status")
    assert response.status_code == 200
    assert response.json() == {"success": True, "ready": False}


def test_get_qr_before_first_qr_event(http):
    response = http.get("/api/get-qr")
    assert response.status_code == 200
    assert response.json() == {"success": True, "ready": False, "qr": None}


def test_qr_then_ready_flow(http, fake_client):
    """QR payload is served verbatim until the session becomes ready."""
    fake_client.emit("qr", "ABC123")
    assert http.get("/api/get-qr").json() == {"success": True, "ready": False, "qr": "ABC123"}

    fake_client.emit("ready")
    assert http.get("/api/get-qr").json() == {"success": True, "ready": True, "qr": None}
    assert http.get("/api/status").json() == {"success": True, "ready": True}


def test_get_qr_returns_latest_payload(http, fake_client):
    fake_client.emit("qr", "first")
    fake_client.emit("qr", "2@abc,def==,ghi")
    assert http.get("/api/get-qr").json()["qr"] == "2@abc,def==,ghi"


def test_qr_hidden_while_ready_even_if_stored(http, manager):
    manager.ready = True
    manager.latest_qr = "stale"
    assert http.get("/api/get-qr").json() == {"success": True, "ready": True, "qr": None}


def test_send_rejected_when_not_ready(http, fake_client):
    response = http.post("/api/send", json={"phone": "1234567890", "message": "hi"})
    assert response.status_code == 503
    assert response.json() == {"error": "WhatsApp not ready"}
    assert fake_client.sent == []


def test_send_rejected_when_not_ready_regardless_of_body(http, fake_client):
    response = http.post("/api/send", content=b"not json", headers={"content-type": "application/json"})
    assert response.status_code == 503
    assert fake_client.sent == []


def test_send_forwards_normalized_address(http, fake_client):
    fake_client.emit("ready")

    response = http.post("/api/send", json={"phone": "1234567890", "message": "hi"})

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert fake_client.sent == [("911234567890@c.us", "hi")]


def test_send_accepts_numeric_and_formatted_phones(http, fake_client):
    fake_client.emit("ready")

    http.post("/api/send", json={"phone": 9876543210, "message": "a"})
    http.post("/api/send", json={"phone": "+44 (20) 7946-0958", "message": "b"})

    assert fake_client.sent == [
        ("919876543210@c.us", "a"),
        ("442079460958@c.us", "b"),
    ]


def test_send_failure_returns_error_text(http, fake_client):
    fake_client.emit("ready")
    fake_client.send_error = RuntimeError("Evaluation failed: chat not found")

    response = http.post("/api/send", json={"phone": "1234567890", "message": "hi"})

    assert response.status_code == 500
    assert response.json() == {"error": "Evaluation failed: chat not found"}


def test_send_with_missing_message_is_bad_request(http, fake_client):
    fake_client.emit("ready")

    response = http.post("/api/send", json={"phone": "1234567890"})

    assert response.status_code == 400
    assert "error" in response.json()
    assert fake_client.sent == []


def test_logout_clears_state(http, fake_client, manager):
    fake_client.emit("qr", "ABC123")
    fake_client.emit("ready")

    response = http.post("/api/logout")

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Logged out successfully"}
    assert fake_client.logout_calls == 1
    assert manager.ready is False
    assert manager.latest_qr is None
    assert http.get("/api/status").json() == {"success": True, "ready": False}


def test_logout_failure_returns_error_text(http, fake_client, manager):
    fake_client.emit("ready")
    fake_client.logout_error = RuntimeError("Client is not initialized")

    response = http.post("/api/logout")

    assert response.status_code == 500
    assert response.json() == {"error": "Client is not initialized"}
    assert manager.ready is True


def test_status_page_reflects_readiness(http, fake_client):
    offline = http.get("/")
    assert offline.status_code == 200
    assert "text/html" in offline.headers["content-type"]
    assert "OFFLINE / LOADING" in offline.text

    fake_client.emit("ready")
    assert "Status: ONLINE" in http.get("/").text


def test_cors_allows_any_origin(http):
    response = http.get("/api/status", headers={"Origin": "http://example.com"})
    assert response.headers["access-control-allow-origin"] == "*"


def test_lifespan_starts_and_stops_client(app, fake_client):
    with TestClient(app) as client:
        assert client.get("/api/status").status_code == 200
        assert fake_client.initialize_calls == 1

    assert fake_client.destroy_calls == 1


def test_failed_initialization_keeps_serving(app, fake_client, manager):
    fake_client.init_errors = [RuntimeError("Failed to launch the browser process")]

    with TestClient(app) as client:
        assert client.get("/health").text == "OK"
        assert client.get("/api/status").json() == {"success": True, "ready": False}
        assert client.get("/api/get-qr").status_code == 200

    assert manager.state == ConnectionState.FAULTED
    assert manager.last_error == "Failed to launch the browser process"


@pytest.mark.asyncio
async def test_logout_route_brings_back_a_pairing_qr(app, fake_client, manager):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        fake_client.emit("ready")

        response = await client.post("/api/logout")
        assert response.status_code == 200

        await manager.wait_for_initialization()
        assert fake_client.initialize_calls == 1

        fake_client.emit("qr", "FRESH")
        response = await client.get("/api/get-qr")
        assert response.json() == {"success": True, "ready": False, "qr": "FRESH"}

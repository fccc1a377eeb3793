"""HTTP tests for the FastAPI app, wired to the in-memory backend."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from reservations.app import create_app
from reservations.config import Settings
from reservations.notifications import PushNotifier

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_TOKEN, FakeBackend, make_row

BOOKING = {"name": "Bob", "phone": "0698765432", "date": "12/07/2025", "timeSlot": "8h00-11h00"}
AUTH = {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def backend():
    return FakeBackend(rows=[make_row()])


@pytest.fixture
def forwarded():
    return []


@pytest.fixture
def client(backend, forwarded):
    def automation(request):
        forwarded.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    config = Settings(
        supabase_url="https://project.supabase.test",
        supabase_anon_key="anon",
        webhook_url="https://automation.test/hook",
        auth_check_interval=300,
        refresh_interval=300,
    )
    app = create_app(
        config=config,
        backend=backend,
        service_backend=backend,
        relay_transport=httpx.MockTransport(automation),
        notifier=PushNotifier(""),
    )
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin(client):
    resp = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    return client


# ── Public endpoints ──────────────────────────────────────────────


class TestPublic:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_booking_created_pending(self, client, backend):
        resp = client.post("/api/reservations", json={**BOOKING, "status": "Confirmed"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["success"] is True
        assert data["message"] == "Reservation created successfully"
        assert data["reservation"]["displayDate"] == "samedi 12 juillet 2025"
        assert backend.rows[data["id"]]["status"] == "Pending"

    def test_booking_missing_fields(self, client, backend):
        resp = client.post("/api/reservations", json={"name": "Bob"})
        assert resp.status_code == 400
        assert len(backend.rows) == 1

    def test_booking_not_json(self, client):
        resp = client.post("/api/reservations", content=b"name=Bob")
        assert resp.status_code == 400

    def test_booking_backend_failure(self, client, backend):
        backend.fail_insert = "database unavailable"
        resp = client.post("/api/reservations", json=BOOKING)
        assert resp.status_code == 502
        assert resp.json()["message"] == "Error: database unavailable"


# ── Admin auth ────────────────────────────────────────────────────


class TestAdminAuth:
    def test_list_requires_token(self, client):
        assert client.get("/api/reservations").status_code == 401

    def test_wrong_password(self, client):
        resp = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": "nope"})
        assert resp.status_code == 401
        assert resp.json()["success"] is False

    def test_login_returns_token(self, client):
        resp = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        assert resp.json()["accessToken"] == ADMIN_TOKEN

    def test_session(self, admin):
        resp = admin.get("/api/auth/session", headers=AUTH)
        assert resp.json() == {"authenticated": True, "email": ADMIN_EMAIL, "expiresAt": None}

    def test_wrong_token(self, admin):
        resp = admin.get("/api/reservations", headers={"Authorization": "Bearer other"})
        assert resp.status_code == 401

    def test_logout_revokes_access(self, admin):
        resp = admin.post("/api/auth/logout", headers=AUTH)
        assert resp.json()["success"] is True
        assert admin.get("/api/reservations", headers=AUTH).status_code == 401

    def test_ws_rejects_missing_token(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/dashboard"):
                pass


# ── Dashboard endpoints ───────────────────────────────────────────


class TestDashboardEndpoints:
    def test_snapshot(self, admin):
        data = admin.get("/api/reservations", headers=AUTH).json()
        assert data["state"] == "ready"
        assert data["count"] == 1
        assert data["reservations"][0]["name"] == "Alice"

    def test_search(self, admin, backend):
        backend.rows["2"] = make_row(id=2, name="Bob", phone="0698765432")
        admin.post("/api/reservations/refresh", headers=AUTH)
        data = admin.get("/api/reservations", params={"q": "bob"}, headers=AUTH).json()
        assert [r["name"] for r in data["reservations"]] == ["Bob"]

    def test_patch_status(self, admin, backend):
        resp = admin.patch("/api/reservations/1", json={"status": "Confirmed"}, headers=AUTH)
        assert resp.status_code == 200
        assert backend.rows["1"]["manual_update"] is True
        data = admin.get("/api/reservations", headers=AUTH).json()
        assert data["reservations"][0]["status"] == "Confirmed"

    def test_patch_invalid(self, admin):
        resp = admin.patch("/api/reservations/1", json={"date": "2025-06-01"}, headers=AUTH)
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid date format. Use DD/MM/YYYY"

    def test_patch_non_string_status(self, admin, backend):
        resp = admin.patch("/api/reservations/1", json={"status": ["Confirmed"]}, headers=AUTH)
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid status value"
        assert backend.rows["1"]["status"] == "Pending"

    def test_patch_unknown(self, admin):
        resp = admin.patch("/api/reservations/77", json={"status": "Canceled"}, headers=AUTH)
        assert resp.status_code == 404

    def test_delete(self, admin, backend):
        resp = admin.delete("/api/reservations/1", headers=AUTH)
        assert resp.json() == {"success": True}
        assert backend.rows == {}


# ── Legacy update endpoint ────────────────────────────────────────


class TestLegacyUpdate:
    def test_post_updates(self, admin, backend):
        resp = admin.post(
            "/api/reservations/update", json={"id": 1, "status": "Canceled"}, headers=AUTH
        )
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Reservation updated successfully"}
        assert backend.rows["1"]["status"] == "Canceled"

    def test_put_accepted(self, admin, backend):
        resp = admin.put(
            "/api/reservations/update", json={"id": "1", "name": "Alicia"}, headers=AUTH
        )
        assert resp.status_code == 200
        assert backend.rows["1"]["name"] == "Alicia"

    @pytest.mark.parametrize("body", [{}, {"id": ""}, {"id": None}, {"id": True}, {"id": [1]}])
    def test_invalid_id(self, admin, body):
        resp = admin.post("/api/reservations/update", json={**body, "status": "Confirmed"}, headers=AUTH)
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid reservation ID"

    @pytest.mark.parametrize("fields,message", [
        ({"status": "Done"}, "Invalid status value"),
        ({"phone": "06 12"}, "Invalid phone number format"),
        ({"timeSlot": "late"}, "Invalid time slot"),
        ({"status": {"a": 1}}, "Invalid status value"),
        ({"status": ["Confirmed"]}, "Invalid status value"),
        ({"phone": "٦١٢٣٤٥٦٧٨"}, "Invalid phone number format"),
        ({}, "No updates provided"),
    ])
    def test_validation(self, admin, backend, fields, message):
        resp = admin.post("/api/reservations/update", json={"id": 1, **fields}, headers=AUTH)
        assert resp.status_code == 400
        assert resp.json()["message"] == message
        assert backend.updates == []

    def test_not_found(self, admin):
        resp = admin.post("/api/reservations/update", json={"id": 404, "status": "Confirmed"}, headers=AUTH)
        assert resp.status_code == 404
        assert resp.json()["message"] == "Reservation not found"

    def test_backend_failure(self, admin, backend):
        backend.fail_update = "connection reset"
        resp = admin.post("/api/reservations/update", json={"id": 1, "status": "Confirmed"}, headers=AUTH)
        assert resp.status_code == 500
        assert resp.json() == {"success": False, "message": "Error updating reservation"}

    def test_requires_token(self, client):
        resp = client.post("/api/reservations/update", json={"id": 1, "status": "Confirmed"})
        assert resp.status_code == 401


# ── Webhook relay ─────────────────────────────────────────────────


class TestWebhookEndpoint:
    def test_insert_forwarded(self, client, forwarded):
        resp = client.post("/webhooks/booking", json={"type": "INSERT", "record": make_row(id=5)})
        assert resp.status_code == 200
        assert forwarded[0]["id"] == 5
        assert forwarded[0]["eventType"] == "INSERT"

    def test_invalid_json(self, client, forwarded):
        resp = client.post("/webhooks/booking", content=b"{not json")
        assert resp.status_code == 500
        assert resp.json()["success"] is False
        assert forwarded == []

    def test_dashboard_edit_reaches_automation_once(self, admin, backend, forwarded):
        """Status edit → trigger (marker set) → relay clears → trigger (echo)."""
        before = dict(backend.rows["1"])
        admin.patch("/api/reservations/1", json={"status": "Confirmed"}, headers=AUTH)
        edited = dict(backend.rows["1"])

        admin.post("/webhooks/booking", json={"type": "UPDATE", "record": edited, "old_record": before})
        cleared = dict(backend.rows["1"])
        admin.post("/webhooks/booking", json={"type": "UPDATE", "record": cleared, "old_record": edited})

        assert len(forwarded) == 1
        assert forwarded[0]["status"] == "Confirmed"
        assert forwarded[0]["manualUpdate"] is True
        assert cleared["manual_update"] is None

"""
Tests for the HTTP API: envelopes, auth gating and end-to-end flows.
"""

from unittest.mock import patch

import pytest

from movecar.errors import StoreUnavailableError

PHONE = "13800138000"
PASSWORD = "secret123"

OWNER_BODY = {
    "name": "Alice",
    "carPlate": "A12345",
    "pushChannel": "bark",
    "pushConfig": {"bark": {"key": "abc"}},
}


async def create_owner(client, headers=None, body=None):
    response = await client.post("/api/owner", json=body or OWNER_BODY, headers=headers or {})
    assert response.status_code == 200
    return response.json()["data"]


async def register(client, phone=PHONE):
    response = await client.post("/api/user/register", json={"phone": phone, "password": PASSWORD})
    assert response.status_code == 200
    return response.json()["data"]


class TestOwnerEndpoints:
    """Test cases for /api/owner."""

    @pytest.mark.asyncio
    async def test_create_owner(self, client):
        response = await client.post("/api/owner", json=OWNER_BODY)

        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert len(data["id"]) == 6
        assert len(data["adminToken"]) == 32
        assert data["adminUrl"] == f"/admin/{data['id']}?token={data['adminToken']}"
        assert data["qrcodeUrl"] == f"/c/{data['id']}"

    @pytest.mark.asyncio
    async def test_create_owner_missing_config(self, client):
        body = {**OWNER_BODY, "pushConfig": {}}

        response = await client.post("/api/owner", json=body)

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["code"] == "CONFIGURATION_ERROR"

    @pytest.mark.asyncio
    async def test_create_owner_invalid_body(self, client):
        response = await client.post("/api/owner", json={"pushChannel": "pager"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "VALIDATION_ERROR"
        assert body["error"]

    @pytest.mark.asyncio
    async def test_public_view_hides_secrets(self, client):
        owner = await create_owner(client)

        response = await client.get(f"/api/owner/{owner['id']}")

        data = response.json()["data"]
        assert data == {"id": owner["id"], "name": "Alice", "carPlate": "A12345"}

    @pytest.mark.asyncio
    async def test_unknown_owner(self, client):
        response = await client.get("/api/owner/zzzzzz")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Owner 'zzzzzz' not found", "code": "NOT_FOUND"}

    @pytest.mark.asyncio
    async def test_full_view_with_token(self, client):
        owner = await create_owner(client)

        response = await client.get(f"/api/owner/{owner['id']}/full", params={"token": owner["adminToken"]})

        data = response.json()["data"]
        assert data["pushChannel"] == "bark"
        assert data["pushConfig"] == {"bark": {"serverUrl": "https://api.day.app", "key": "abc"}}
        assert "adminToken" not in data

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params,status_code", [({}, 401), ({"token": "wrong"}, 403), ({"token": "é"}, 403)])
    async def test_full_view_gated(self, client, params, status_code):
        owner = await create_owner(client)

        response = await client.get(f"/api/owner/{owner['id']}/full", params=params)

        body = response.json()
        assert response.status_code == status_code
        assert body["success"] is False
        assert "data" not in body
        assert "pushConfig" not in response.text

    @pytest.mark.asyncio
    async def test_update_preserves_omitted_fields(self, client):
        owner = await create_owner(client)
        params = {"token": owner["adminToken"]}

        response = await client.put(f"/api/owner/{owner['id']}", params=params, json={"name": "Alice B"})
        assert response.json() == {"success": True, "message": "Updated"}

        data = (await client.get(f"/api/owner/{owner['id']}/full", params=params)).json()["data"]
        assert data["name"] == "Alice B"
        assert data["carPlate"] == "A12345"
        assert data["pushConfig"] == {"bark": {"serverUrl": "https://api.day.app", "key": "abc"}}
        assert data["updatedAt"] is not None

    @pytest.mark.asyncio
    async def test_delete(self, client):
        owner = await create_owner(client)

        response = await client.delete(f"/api/owner/{owner['id']}", params={"token": owner["adminToken"]})

        assert response.json()["success"] is True
        assert (await client.get(f"/api/owner/{owner['id']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_test_push(self, client, dispatcher):
        owner = await create_owner(client)

        response = await client.post(f"/api/owner/{owner['id']}/test-push", params={"token": owner["adminToken"]})

        assert response.json() == {"success": True, "message": "Push sent"}
        assert len(dispatcher.sent) == 1

    @pytest.mark.asyncio
    async def test_test_push_failure(self, client, dispatcher):
        owner = await create_owner(client)
        dispatcher.succeed = False

        response = await client.post(f"/api/owner/{owner['id']}/test-push", params={"token": owner["adminToken"]})

        assert response.status_code == 502
        assert response.json()["success"] is False
        assert response.json()["error"] == "provider rejected"


class TestRequestEndpoints:
    """Test cases for /api/request."""

    @pytest.mark.asyncio
    async def test_full_scenario(self, client, dispatcher):
        owner = await create_owner(client)

        created = (await client.post("/api/request", json={"ownerId": owner["id"]})).json()
        assert created["success"] is True
        request_id = created["data"]["requestId"]
        assert created["data"]["status"] == "pending"
        assert created["data"]["hasLocation"] is False
        assert created["data"]["notifyAfterSeconds"] == 30
        assert created["data"]["waitingUrl"] == f"/w/{request_id}"

        notified = (await client.post(f"/api/request/{request_id}/notify")).json()
        assert notified["data"]["status"] == "notified"
        assert notified["data"]["push"] == {"success": True, "channel": "bark"}
        assert dispatcher.sent[0][1].url == f"https://movecar.example/r/{request_id}"

        again = (await client.post(f"/api/request/{request_id}/notify")).json()
        assert again["success"] is True
        assert "push" not in again["data"]
        assert len(dispatcher.sent) == 1

        confirmed = (await client.put(
            f"/api/request/{request_id}/confirm",
            json={"location": {"lat": 39.9, "lng": 116.4}}
        )).json()
        assert confirmed["data"]["status"] == "confirmed"
        assert confirmed["data"]["ownerLocation"]["lat"] == 39.9

        completed = (await client.put(f"/api/request/{request_id}/complete")).json()
        assert completed["data"]["status"] == "completed"

        view = (await client.get(f"/api/request/{request_id}")).json()["data"]
        assert view["status"] == "completed"
        assert view["ownerName"] == "Alice"
        assert view["ownerLocation"] == {"lat": 39.9, "lng": 116.4, "accuracy": None}
        assert view["completedAt"] is not None

    @pytest.mark.asyncio
    async def test_create_with_location_notifies(self, client, dispatcher):
        owner = await create_owner(client)

        response = await client.post("/api/request", json={
            "ownerId": owner["id"],
            "message": "Blocking the gate",
            "location": {"lat": 39.9, "lng": 116.4, "accuracy": 20},
        })

        data = response.json()["data"]
        assert data["status"] == "notified"
        assert data["hasLocation"] is True
        assert data["notifyAfterSeconds"] == 0
        assert "Blocking the gate" in dispatcher.sent[0][1].body

    @pytest.mark.asyncio
    async def test_create_succeeds_when_push_fails(self, client, dispatcher):
        owner = await create_owner(client)
        dispatcher.succeed = False

        response = await client.post("/api/request", json={
            "ownerId": owner["id"],
            "location": {"lat": 1.0, "lng": 2.0},
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["push"] == {"success": False, "channel": "bark", "error": "provider rejected"}

    @pytest.mark.asyncio
    async def test_create_for_unknown_owner(self, client):
        response = await client.post("/api/request", json={"ownerId": "zzzzzz"})

        assert response.status_code == 404
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_invalid_location_rejected(self, client):
        owner = await create_owner(client)

        response = await client.post("/api/request", json={
            "ownerId": owner["id"],
            "location": {"lat": 123.0, "lng": 0.0},
        })

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_confirm_without_body(self, client):
        owner = await create_owner(client)
        request_id = (await client.post("/api/request", json={"ownerId": owner["id"]})).json()["data"]["requestId"]

        response = await client.put(f"/api/request/{request_id}/confirm")

        assert response.json()["data"] == {"status": "confirmed", "ownerLocation": None}

    @pytest.mark.asyncio
    async def test_server_side_deferred_notify(self, client, dispatcher):
        owner = await create_owner(client)

        with patch("movecar.api.request.settings.server_side_deferred_notify", True), \
                patch("movecar.api.request.settings.deferred_notify_delay_seconds", 0):
            response = await client.post("/api/request", json={"ownerId": owner["id"]})

        request_id = response.json()["data"]["requestId"]
        view = (await client.get(f"/api/request/{request_id}")).json()["data"]
        assert view["status"] == "notified"
        assert len(dispatcher.sent) == 1


class TestPhoneDisclosureEndpoints:
    """Test cases for the phone disclosure endpoints."""

    @pytest.mark.asyncio
    async def test_unlinked_owner(self, client):
        owner = await create_owner(client)
        request_id = (await client.post("/api/request", json={"ownerId": owner["id"]})).json()["data"]["requestId"]

        response = await client.post(f"/api/request/{request_id}/request-phone")

        assert response.status_code == 400
        assert response.json()["code"] == "BINDING_MISSING"

        status = (await client.get(f"/api/request/{request_id}/phone-status")).json()["data"]
        assert status == {
            "hasLinkedAccount": False,
            "phoneRequested": False,
            "phoneAuthorized": None,
            "authorizedPhone": None,
        }

    @pytest.mark.asyncio
    async def test_linked_owner_disclosure(self, client, dispatcher):
        session = await register(client)
        owner = await create_owner(client, headers={"Authorization": f"Bearer {session['token']}"})
        request_id = (await client.post("/api/request", json={"ownerId": owner["id"]})).json()["data"]["requestId"]

        requested = (await client.post(f"/api/request/{request_id}/request-phone")).json()
        assert requested["success"] is True
        assert dispatcher.sent[-1][1].url == f"https://movecar.example/auth/{request_id}"

        repeated = (await client.post(f"/api/request/{request_id}/request-phone")).json()
        assert repeated["success"] is True
        assert len(dispatcher.sent) == 1

        authorized = (await client.put(
            f"/api/request/{request_id}/authorize-phone", json={"authorize": True}
        )).json()
        assert authorized["data"] == {"phoneAuthorized": True, "authorizedPhone": PHONE}

        status = (await client.get(f"/api/request/{request_id}/phone-status")).json()["data"]
        assert status["hasLinkedAccount"] is True
        assert status["authorizedPhone"] == PHONE

    @pytest.mark.asyncio
    async def test_authorize_before_request(self, client):
        owner = await create_owner(client)
        request_id = (await client.post("/api/request", json={"ownerId": owner["id"]})).json()["data"]["requestId"]

        response = await client.put(f"/api/request/{request_id}/authorize-phone", json={"authorize": True})

        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_STATE"


class TestUserEndpoints:
    """Test cases for /api/user."""

    @pytest.mark.asyncio
    async def test_register_and_me(self, client):
        session = await register(client)
        assert session["user"]["phone"] == PHONE
        assert session["expiresAt"]

        response = await client.get("/api/user/me", headers={"Authorization": f"Bearer {session['token']}"})

        assert response.json()["data"]["id"] == session["user"]["id"]

    @pytest.mark.asyncio
    async def test_duplicate_register(self, client):
        await register(client)

        response = await client.post("/api/user/register", json={"phone": PHONE, "password": PASSWORD})

        assert response.status_code == 409
        assert response.json()["code"] == "PHONE_EXISTS"

    @pytest.mark.asyncio
    async def test_login_failure_is_generic(self, client):
        await register(client)

        wrong_password = await client.post("/api/user/login", json={"phone": PHONE, "password": "nope-nope"})
        unknown_phone = await client.post("/api/user/login", json={"phone": "13900139000", "password": PASSWORD})

        assert wrong_password.status_code == unknown_phone.status_code == 401
        assert wrong_password.json() == unknown_phone.json()

    @pytest.mark.asyncio
    async def test_logout_invalidates_session(self, client):
        session = await register(client)
        headers = {"Authorization": f"Bearer {session['token']}"}

        assert (await client.post("/api/user/logout", headers=headers)).json()["success"] is True

        response = await client.get("/api/user/me", headers=headers)
        assert response.status_code == 401
        assert response.json()["code"] == "SESSION_EXPIRED"

    @pytest.mark.asyncio
    async def test_me_requires_token(self, client):
        response = await client.get("/api/user/me")

        assert response.status_code == 401
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_owners_list(self, client):
        session = await register(client)
        headers = {"Authorization": f"Bearer {session['token']}"}
        linked = await create_owner(client, headers=headers)
        await create_owner(client)

        response = await client.get("/api/user/owners", headers=headers)

        owners = response.json()["data"]
        assert [owner["id"] for owner in owners] == [linked["id"]]
        assert owners[0]["adminToken"] == linked["adminToken"]


class TestServiceEndpoints:
    """Test cases for health, metrics, errors and middleware."""

    @pytest.mark.asyncio
    async def test_healthz(self, client):
        response = await client.get("/healthz")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_api_health(self, client):
        response = await client.get("/api/health")

        assert response.json()["data"]["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_api_health_degraded(self, client, store):
        with patch.object(store, "health_check", return_value=False):
            response = await client.get("/api/health")

        assert response.status_code == 503
        assert response.json()["data"]["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_unknown_route(self, client):
        response = await client.get("/api/nothing-here")

        assert response.status_code == 404
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_store_failure_is_500(self, client, store):
        with patch.object(store, "get", side_effect=StoreUnavailableError()):
            response = await client.get("/api/owner/abc123")

        assert response.status_code == 500
        assert response.json()["code"] == "STORE_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_correlation_and_security_headers(self, client):
        response = await client.get("/api/owner/zzzzzz", headers={"X-Call-ID": "call-42"})

        assert response.headers["X-Call-ID"] == "call-42"
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    @pytest.mark.asyncio
    async def test_metrics_count_requests(self, client):
        await client.get("/api/owner/zzzzzz")

        metrics = (await client.get("/metrics")).json()["metrics"]

        assert metrics["total_requests"] >= 1
        assert metrics["error_count"] >= 1

"""Tests for the HTTP API and its error mapping."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from notification_engine.api.deps import get_db_session, get_notification_engine
from notification_engine.engine import NotificationEngine
from notification_engine.main import app


@pytest.fixture(name="client")
def client_fixture(engine, session_factory, dispatcher, campaign_service, policy):
    notification_engine = NotificationEngine(
        session_factory=session_factory,
        dispatcher=dispatcher,
        campaign_service=campaign_service,
        policy=policy,
    )

    def get_db_session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db_session] = get_db_session_override
    app.dependency_overrides[get_notification_engine] = lambda: notification_engine
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


def _in_app(user_id=None, **overrides) -> dict:
    body = {
        "type": "in_app",
        "user_id": str(user_id or uuid4()),
        "title": "Order shipped",
        "content": "Your order is on its way",
    }
    body.update(overrides)
    return body


# ============================================================================
# Notifications
# ============================================================================

class TestNotificationEndpoints:
    """Tests for /api/notifications."""

    def test_send_in_app(self, client):
        response = client.post("/api/notifications", json=_in_app())

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "delivered"
        assert data["expires_at"] is not None

    def test_send_sms_without_phone_is_rejected(self, client):
        response = client.post(
            "/api/notifications",
            json={"type": "sms", "title": "Code", "content": "1234"},
        )

        assert response.status_code == 422
        assert response.json()["field"] == "recipient_phone"

    def test_malformed_email_is_rejected(self, client):
        response = client.post(
            "/api/notifications",
            json={
                "type": "email",
                "recipient_email": "not-an-address",
                "subject": "Receipt",
                "title": "Receipt",
                "content": "Thanks for your order",
            },
        )

        assert response.status_code == 422

    def test_blank_email_reports_missing_field(self, client):
        response = client.post(
            "/api/notifications",
            json={
                "type": "email",
                "recipient_email": "",
                "subject": "Receipt",
                "title": "Receipt",
                "content": "Thanks for your order",
            },
        )

        assert response.status_code == 422
        assert response.json()["field"] == "recipient_email"

    def test_duplicate_is_conflict(self, client):
        body = _in_app()
        client.post("/api/notifications", json=body)

        response = client.post("/api/notifications", json=body)

        assert response.status_code == 409

    def test_provider_failure_is_bad_gateway(self, client, provider):
        provider.fail_for("ana@example.com")

        response = client.post(
            "/api/notifications",
            json={
                "type": "email",
                "recipient_email": "ana@example.com",
                "subject": "Receipt",
                "title": "Receipt",
                "content": "Thanks for your order",
            },
        )

        assert response.status_code == 502
        assert response.json()["error_code"] == "SEND_ERROR"

    def test_unknown_notification_is_not_found(self, client):
        response = client.get(f"/api/notifications/{uuid4()}")

        assert response.status_code == 404

    def test_cancel_scheduled_then_cancel_again(self, client):
        scheduled_at = (datetime.utcnow() + timedelta(hours=1)).isoformat()
        created = client.post("/api/notifications", json=_in_app(scheduled_at=scheduled_at)).json()

        first = client.post(f"/api/notifications/{created['id']}/cancel")
        second = client.post(f"/api/notifications/{created['id']}/cancel")

        assert first.status_code == 200
        assert first.json()["status"] == "cancelled"
        assert second.status_code == 409

    def test_opened_and_clicked(self, client):
        created = client.post("/api/notifications", json=_in_app()).json()

        opened = client.post(f"/api/notifications/{created['id']}/opened").json()
        clicked = client.post(f"/api/notifications/{created['id']}/clicked").json()

        assert opened["opened_at"] is not None
        assert clicked["clicked_at"] is not None

    def test_bulk_skips_failed_items(self, client):
        response = client.post(
            "/api/notifications/bulk",
            json=[_in_app(), {"type": "sms", "title": "Code", "content": "1234"}, _in_app()],
        )

        assert response.status_code == 201
        assert response.json()["total"] == 2

    def test_list_user_notifications(self, client):
        user_id = uuid4()
        client.post("/api/notifications", json=_in_app(user_id))
        client.post("/api/notifications", json=_in_app(user_id, title="Order delivered"))

        response = client.get(f"/api/notifications/users/{user_id}")

        assert response.json()["total"] == 2

    def test_statistics(self, client):
        client.post("/api/notifications", json=_in_app())

        stats = client.get("/api/notifications/statistics").json()

        assert stats["total"] == 1
        assert stats["by_status"] == {"delivered": 1}
        assert stats["delivery_rate"] == 100.0


# ============================================================================
# Templates
# ============================================================================

class TestTemplateEndpoints:
    """Tests for /api/templates."""

    def _create(self, client, **overrides) -> dict:
        body = {
            "name": "order-shipped",
            "type": "order_status_update",
            "title_template": "Order {{order_id}} shipped",
            "content_template": "Hi {{name}}, order {{order_id}} is on its way",
        }
        body.update(overrides)
        return client.post("/api/templates", json=body)

    def test_create_and_send_with_template(self, client):
        template = self._create(client).json()

        response = client.post(
            "/api/notifications",
            json={
                "type": "in_app",
                "user_id": str(uuid4()),
                "template_id": template["id"],
                "template_variables": {"order_id": "A-17", "name": "Ana"},
            },
        )

        assert template["variables"] == ["name", "order_id"]
        assert response.status_code == 201
        assert response.json()["title"] == "Order A-17 shipped"

    def test_duplicate_name_is_rejected(self, client):
        self._create(client)

        response = self._create(client)

        assert response.status_code == 422

    def test_deactivated_template_cannot_be_used(self, client):
        template = self._create(client).json()
        client.post(f"/api/templates/{template['id']}/deactivate")

        response = client.post(
            "/api/notifications",
            json={"type": "in_app", "template_id": template["id"]},
        )

        assert response.status_code == 409

    def test_get_by_name(self, client):
        template = self._create(client).json()

        found = client.get("/api/templates/by-name/order-shipped")
        missing = client.get("/api/templates/by-name/unknown")

        assert found.json()["id"] == template["id"]
        assert missing.status_code == 404

    def test_validate(self, client):
        template = self._create(client).json()

        result = client.post(f"/api/templates/{template['id']}/validate", json={"name": "Ana"}).json()

        assert result["valid"] is False
        assert result["missing_variables"] == ["order_id"]

    def test_update_and_delete(self, client):
        template = self._create(client).json()

        updated = client.put(f"/api/templates/{template['id']}", json={"description": "Shipping"})
        deleted = client.delete(f"/api/templates/{template['id']}")
        missing = client.get(f"/api/templates/{template['id']}")

        assert updated.json()["version"] == 2
        assert deleted.status_code == 204
        assert missing.status_code == 404


# ============================================================================
# Campaigns
# ============================================================================

class TestCampaignEndpoints:
    """Tests for /api/campaigns."""

    def _create(self, client, **overrides) -> dict:
        body = {
            "name": "black-friday",
            "type": "email_marketing",
            "target_user_ids": [str(uuid4()), str(uuid4())],
        }
        body.update(overrides)
        return client.post("/api/campaigns", json=body)

    def test_start_runs_campaign(self, client, provider):
        campaign = self._create(client).json()

        response = client.post(f"/api/campaigns/{campaign['id']}/start")

        assert response.status_code == 202
        assert response.json()["status"] == "completed"
        assert response.json()["sent_count"] == 2
        assert len(provider.sent) == 2

        notifications = client.get(f"/api/notifications/campaigns/{campaign['id']}").json()
        assert notifications["total"] == 2

    def test_pause_draft_is_conflict(self, client):
        campaign = self._create(client).json()

        response = client.post(f"/api/campaigns/{campaign['id']}/pause")

        assert response.status_code == 409

    def test_schedule_and_cancel(self, client):
        campaign = self._create(client).json()
        start_at = (datetime.utcnow() + timedelta(days=1)).isoformat()

        scheduled = client.post(f"/api/campaigns/{campaign['id']}/schedule", json={"start_at": start_at})
        cancelled = client.post(f"/api/campaigns/{campaign['id']}/cancel")

        assert scheduled.json()["status"] == "scheduled"
        assert cancelled.json()["cancelled_notifications"] == 0
        assert client.get(f"/api/campaigns/{campaign['id']}").json()["status"] == "cancelled"

    def test_statistics(self, client):
        campaign = self._create(client).json()
        client.post(f"/api/campaigns/{campaign['id']}/start")

        stats = client.get(f"/api/campaigns/{campaign['id']}/statistics").json()

        assert stats["processed"] == {"sent": 2}

    def test_unknown_campaign_is_not_found(self, client):
        assert client.get(f"/api/campaigns/{uuid4()}").status_code == 404


# ============================================================================
# Devices and health
# ============================================================================

class TestDeviceEndpoints:
    def test_register_list_and_deactivate(self, client, provider):
        user_id = str(uuid4())

        registered = client.post(
            "/api/devices",
            json={"user_id": user_id, "device_token": "tok-1", "platform": "android"},
        )
        listed = client.get(f"/api/devices/users/{user_id}")
        removed = client.delete("/api/devices/tok-1")

        assert registered.status_code == 201
        assert registered.json()["endpoint_arn"] == "endpoint/android/tok-1"
        assert [d["device_token"] for d in listed.json()] == ["tok-1"]
        assert removed.json()["is_active"] is False
        assert provider.deleted_endpoints == ["endpoint/android/tok-1"]


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}

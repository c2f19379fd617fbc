"""
Integration tests for API endpoints
"""
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import jwt
import pytest
from fastapi.testclient import TestClient

from bookingflow.api.routes import get_messaging_gateway
from bookingflow.config import settings
from bookingflow.database import get_db
from bookingflow.main import app
from bookingflow.models import ConfirmationStatus
from bookingflow.services.webhook_service import compute_signature

WEBHOOK_URL = "https://hooks.example.com/webhooks/twilio"


@pytest.fixture
def client(test_db_session, gateway, monkeypatch):
    """Create test client bound to the test session"""
    monkeypatch.setattr(settings, "twilio_auth_token", "test-auth-token")
    monkeypatch.setattr(settings, "twilio_webhook_url", WEBHOOK_URL)
    monkeypatch.setattr(settings, "cron_secret", "cron-secret")
    monkeypatch.setattr(settings, "admin_jwt_secret", "admin-secret")

    app.dependency_overrides[get_db] = lambda: test_db_session
    app.dependency_overrides[get_messaging_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def _signed_post(client, form, token="test-auth-token"):
    raw = urlencode(form)
    return client.post(
        "/webhooks/twilio",
        content=raw,
        headers={
            "Content-Type": "application/x-www-form-urlencoded",
            "X-Twilio-Signature": compute_signature(token, WEBHOOK_URL, raw),
        },
    )


def _bearer(sub, secret="admin-secret"):
    token = jwt.encode(
        {"sub": sub, "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        secret,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


class TestHealthEndpoint:
    """Test health check endpoint"""

    def test_health_check(self, client):
        """Test health check returns OK"""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_root_endpoint(self, client):
        """Test root endpoint"""
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert "docs" in data
        assert "health" in data


class TestTwilioWebhook:
    """Test inbound webhook endpoint"""

    def test_confirm_reply_gets_twiml_ack(self, client, make_booking, reload):
        """Test a signed "כן" confirms and answers with a TwiML message"""
        make_booking(
            id="A",
            confirmation_status=ConfirmationStatus.AWAITING_CONFIRMATION,
            start_at=datetime.now(timezone.utc) + timedelta(hours=20),
        )

        response = _signed_post(client, {
            "Body": "כן",
            "From": "whatsapp:+972501234567",
            "To": "whatsapp:+15550001111",
            "MessageSid": "SMapi1",
        })

        assert response.status_code == 200
        assert "xml" in response.headers["content-type"]
        assert "<Message>" in response.text
        assert reload("A").confirmation_status == ConfirmationStatus.CONFIRMED

    def test_unrecognized_reply_gets_empty_twiml(self, client, sample_tenant):
        """Test an unclear reply is answered with an empty Response"""
        response = _signed_post(client, {
            "Body": "מה השעה?",
            "From": "whatsapp:+972501234567",
            "MessageSid": "SMapi2",
        })

        assert response.status_code == 200
        assert "<Response" in response.text
        assert "<Message>" not in response.text

    def test_bad_signature_forbidden(self, client, make_booking, reload):
        """Test a wrong signature is rejected with 403 and changes nothing"""
        make_booking(
            id="A",
            confirmation_status=ConfirmationStatus.AWAITING_CONFIRMATION,
            start_at=datetime.now(timezone.utc) + timedelta(hours=20),
        )

        response = _signed_post(client, {"Body": "כן", "From": "whatsapp:+972501234567"}, token="wrong")

        assert response.status_code == 403
        assert response.json()["code"] == "invalid_signature"
        assert reload("A").confirmation_status == ConfirmationStatus.AWAITING_CONFIRMATION

    def test_missing_auth_token_is_500(self, client, monkeypatch):
        """Test an unset auth token is a configuration error"""
        monkeypatch.setattr(settings, "twilio_auth_token", "")

        response = _signed_post(client, {"Body": "כן", "From": "whatsapp:+972501234567"})

        assert response.status_code == 500
        assert response.json()["code"] == "TWILIO_AUTH_TOKEN_MISSING"


class TestCronEndpoints:
    """Test cron trigger endpoints"""

    def test_wrong_secret_forbidden(self, client):
        """Test cron calls need the shared secret"""
        response = client.post("/cron/reminders?secret=nope")

        assert response.status_code == 403

    def test_missing_secret_config_is_500(self, client, monkeypatch):
        """Test an unset CRON_SECRET fails fast"""
        monkeypatch.setattr(settings, "cron_secret", "")

        response = client.post("/cron/retention?secret=")

        assert response.status_code == 500
        assert response.json()["code"] == "CRON_SECRET_MISSING"

    def test_reminders_report(self, client, make_booking, twilio_client):
        """Test the reminder endpoint returns the run report"""
        make_booking(id="A", start_at=datetime.now(timezone.utc) + timedelta(hours=24))

        response = client.post("/cron/reminders?secret=cron-secret")

        assert response.status_code == 200
        data = response.json()
        assert data["sent"] == 1
        assert "window_start" in data
        twilio_client.messages.create.assert_called_once()

    def test_expiry_archival(self, client, make_booking, reload):
        """Test the archival endpoint processes tenants"""
        make_booking(id="old", date="2020-01-01")

        response = client.post("/cron/expiry-archival?secret=cron-secret")

        assert response.status_code == 200
        tenants = response.json()["tenants"]
        assert tenants[0]["tenant_id"] == "salon-1"
        assert tenants[0]["result"]["archived"] == 1
        assert reload("old") is None

    def test_retention(self, client, sample_tenant):
        """Test the retention endpoint returns one entry per enabled tenant"""
        response = client.post("/cron/retention?secret=cron-secret")

        assert response.status_code == 200
        assert response.json() == {"tenants": []}


class TestAdminArchivalCleanup:
    """Test the administrative archival endpoint"""

    URL = "/admin/tenants/salon-1/archival-cleanup"

    def test_owner_dry_run(self, client, make_booking, reload):
        """Test the owner can dry-run and nothing is deleted"""
        make_booking(id="old", date="2020-01-01")

        response = client.post(self.URL, json={"dry_run": True}, headers=_bearer("owner-1"))

        assert response.status_code == 200
        data = response.json()
        assert data["dry_run"] is True
        assert data["archived"] == 1
        assert data["deleted"] == 0
        assert reload("old") is not None

    def test_owner_with_before_date(self, client, make_booking, reload):
        """Test an explicit cutoff is honoured"""
        make_booking(id="old", date="2020-01-01")
        make_booking(id="newer", date="2020-06-01")

        response = client.post(self.URL, json={"before_date": "2020-03-01"}, headers=_bearer("owner-1"))

        assert response.status_code == 200
        assert response.json()["archived"] == 1
        assert reload("old") is None
        assert reload("newer") is not None

    def test_non_owner_forbidden(self, client, sample_tenant):
        """Test another user cannot run cleanup"""
        response = client.post(self.URL, headers=_bearer("someone-else"))

        assert response.status_code == 403

    def test_missing_token(self, client, sample_tenant):
        """Test the endpoint requires a bearer token"""
        response = client.post(self.URL)

        assert response.status_code == 401

    def test_bad_token_signature(self, client, sample_tenant):
        """Test tokens signed with another secret are rejected"""
        response = client.post(self.URL, headers=_bearer("owner-1", secret="other"))

        assert response.status_code == 401

    def test_unknown_tenant(self, client, sample_tenant):
        """Test a missing tenant is 404"""
        response = client.post("/admin/tenants/nope/archival-cleanup", headers=_bearer("owner-1"))

        assert response.status_code == 404

    def test_invalid_date(self, client, sample_tenant):
        """Test a malformed date is 400"""
        response = client.post(self.URL, json={"before_date": "yesterday"}, headers=_bearer("owner-1"))

        assert response.status_code == 400

import asyncio
import os
import sys

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tools.errors import EmailDeliveryFailure, RemoteCallFailure, RemoteConfigurationError
from tools.ghl import GHLClient
from tools.resend import EmailNotifier


class TestGHLClient:
    """Test the GoHighLevel client against a mock transport."""

    def test_configuration_check(self):
        assert GHLClient(access_token="pit-1", location_id="loc", enabled=True).is_configured()
        assert not GHLClient(access_token="your_access_token", location_id="loc", enabled=True).is_configured()
        assert not GHLClient(access_token="pit-1", location_id="", enabled=True).is_configured()
        assert not GHLClient(access_token="pit-1", location_id="loc", enabled=False).is_configured()

    def test_enabled_flag_from_env(self, monkeypatch):
        monkeypatch.setenv("GHL_ENABLED", "false")
        assert not GHLClient(access_token="pit-1", location_id="loc").is_configured()

    def test_unconfigured_client_makes_no_calls(self, fake_ghl):
        client = GHLClient(access_token="", location_id="loc", enabled=True,
                           transport=httpx.MockTransport(fake_ghl.handler))

        with pytest.raises(RemoteConfigurationError):
            asyncio.run(client.upsert_contact({"email": "a@b.com"}))
        assert fake_ghl.requests == []

    def test_request_headers(self, fake_ghl):
        asyncio.run(fake_ghl.client().list_custom_fields())
        request = fake_ghl.requests[0]

        assert request.headers["Authorization"] == "Bearer pit-test-token"
        assert request.headers["Version"] == "2021-07-28"
        assert request.url.path == "/locations/loc_1/customFields"
        assert request.url.params["model"] == "contact"

    def test_upsert_contact(self, fake_ghl):
        contact_id = asyncio.run(fake_ghl.client().upsert_contact({"email": "a@b.com", "tags": ["web-lead"]}))

        assert contact_id == "contact_123"
        assert fake_ghl.contacts[0]["locationId"] == "loc_1"

    def test_upsert_failure(self, fake_ghl):
        fake_ghl.upsert_status = 422

        with pytest.raises(RemoteCallFailure) as excinfo:
            asyncio.run(fake_ghl.client().upsert_contact({"email": "a@b.com"}))

        assert excinfo.value.status == 422
        assert not excinfo.value.already_exists

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = GHLClient(access_token="pit-1", location_id="loc", enabled=True,
                           transport=httpx.MockTransport(handler))

        with pytest.raises(RemoteCallFailure) as excinfo:
            asyncio.run(client.list_custom_fields())
        assert excinfo.value.status is None

    def test_non_json_success_body(self, fake_ghl):
        fake_ghl.upsert_text = "<html>gateway</html>"

        with pytest.raises(RemoteCallFailure) as excinfo:
            asyncio.run(fake_ghl.client().upsert_contact({"email": "a@b.com"}))

        assert excinfo.value.status == 200
        assert "gateway" in str(excinfo.value)

    def test_non_object_success_body(self, fake_ghl):
        fake_ghl.list_body = [{"id": "f1"}]

        with pytest.raises(RemoteCallFailure) as excinfo:
            asyncio.run(fake_ghl.client().list_custom_fields())
        assert excinfo.value.status == 200

    def test_field_list_of_wrong_type(self, fake_ghl):
        fake_ghl.list_body = {"customFields": "none"}

        with pytest.raises(RemoteCallFailure):
            asyncio.run(fake_ghl.client().list_custom_fields())

    @pytest.mark.parametrize("status,body,expected", [
        (409, "", True),
        (400, '{"message":"Field Already Exists"}', True),
        (422, "key already exists for location", True),
        (400, "invalid dataType", False),
        (500, "already exists", False),
    ])
    def test_already_exists_detection(self, status, body, expected):
        assert RemoteCallFailure("create custom field", status, body).already_exists is expected


class TestEmailNotifier:
    """Test the Resend client."""

    def setup_method(self):
        self.record = {
            "firstName": "Jane",
            "lastName": "Doe",
            "email": "jane@x.com",
            "phone": None,
            "contentGoals": ["newsletters", "blogs"],
            "selectedPlan": "complete-system",
            "submissionDate": "2024-05-01T12:00:00+00:00",
        }

    def test_not_configured(self):
        notifier = EmailNotifier(api_key="", recipients=["sales@example.com"])

        assert not notifier.is_configured()
        with pytest.raises(EmailDeliveryFailure):
            asyncio.run(notifier.send("subject", "body"))

    def test_missing_recipients(self, monkeypatch):
        monkeypatch.delenv("LEAD_NOTIFICATION_RECIPIENTS", raising=False)
        assert not EmailNotifier(api_key="re_key").is_configured()

    def test_lead_notification(self, fake_resend):
        message_id = asyncio.run(fake_resend.notifier().send_lead_notification(
            self.record, "get-started", 85, "hot", crm_synced=False))
        sent = fake_resend.sent[0]

        assert message_id == "email_1"
        assert sent["to"] == ["sales@example.com"]
        assert sent["subject"] == "New Get Started Lead: Jane Doe (HOT, score 85)"
        assert "Content Goals: newsletters, blogs" in sent["text"]
        assert "NOT synced" in sent["text"]
        assert "Phone:" not in sent["text"]

    def test_assessment_notification(self, fake_resend):
        record = dict(self.record, scorePercentage=85.0, answers={"budget": "enterprise"})
        asyncio.run(fake_resend.notifier().send_lead_notification(record, "assessment", 95, "hot", True))
        sent = fake_resend.sent[0]

        assert sent["subject"].startswith("New Assessment Lead: Jane Doe")
        assert "Answer: budget: enterprise" in sent["text"]

    def test_rejected_email(self, fake_resend):
        fake_resend.status = 500

        with pytest.raises(EmailDeliveryFailure):
            asyncio.run(fake_resend.notifier().send("subject", "body"))

    def test_non_json_acceptance(self):
        notifier = EmailNotifier(
            api_key="re_test_key",
            recipients=["sales@example.com"],
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="OK")),
        )

        assert asyncio.run(notifier.send("subject", "body")) is None

    def test_partial_lead(self, fake_resend):
        asyncio.run(fake_resend.notifier().send_partial_lead_notification(
            {"firstName": "Jane", "lastName": None, "email": "jane@x.com", "phone": "555-0100"}))
        sent = fake_resend.sent[0]

        assert sent["subject"] == "New Partial Lead Captured: Jane"
        assert "Phone: 555-0100" in sent["text"]

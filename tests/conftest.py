import json
import os
import sys

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tools.ghl import GHLClient
from tools.resend import EmailNotifier


class FakeGHL:
    """In-memory stand-in for the GHL custom field and contact endpoints."""

    def __init__(self, fields=None):
        self.fields = list(fields or [])
        self.requests = []
        self.created = []
        self.contacts = []
        self.upsert_status = 200
        self.create_status = None
        self.stale_lists = 0
        self.list_body = None
        self.upsert_text = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/customFields") and request.method == "GET":
            if self.stale_lists:
                self.stale_lists -= 1
                return httpx.Response(200, json={"customFields": []})
            if self.list_body is not None:
                return httpx.Response(200, json=self.list_body)
            return httpx.Response(200, json={"customFields": list(self.fields)})

        if path.endswith("/customFields") and request.method == "POST":
            body = json.loads(request.content)
            if self.create_status:
                return httpx.Response(self.create_status, json={"message": "Internal error"})
            if any(isinstance(f, dict) and f.get("fieldKey") == f"contact.{body['fieldKey']}"
                   for f in self.fields):
                return httpx.Response(400, json={"message": "Custom field with this name already exists"})
            field = {
                "id": f"fld_{len(self.fields) + 1}",
                "name": body["name"],
                "fieldKey": f"contact.{body['fieldKey']}",
                "dataType": body["dataType"],
            }
            self.fields.append(field)
            self.created.append(body)
            return httpx.Response(201, json={"customField": field})

        if path == "/contacts/upsert":
            self.contacts.append(json.loads(request.content))
            if self.upsert_status >= 300:
                return httpx.Response(self.upsert_status, json={"message": "Upsert rejected"})
            if self.upsert_text is not None:
                return httpx.Response(200, text=self.upsert_text)
            return httpx.Response(200, json={"new": True, "contact": {"id": "contact_123"}})

        return httpx.Response(404, json={"message": "Not found"})

    def list_calls(self):
        return [r for r in self.requests if r.method == "GET"]

    def client(self) -> GHLClient:
        return GHLClient(
            access_token="pit-test-token",
            location_id="loc_1",
            enabled=True,
            transport=httpx.MockTransport(self.handler),
        )


class FakeResend:
    """Records emails instead of delivering them."""

    def __init__(self, status=200):
        self.status = status
        self.sent = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.sent.append(json.loads(request.content))
        return httpx.Response(self.status, json={"id": f"email_{len(self.sent)}"})

    def notifier(self) -> EmailNotifier:
        return EmailNotifier(
            api_key="re_test_key",
            sender="Leads <leads@example.com>",
            recipients=["sales@example.com"],
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("GHL_MAPPING_VERSION", "NOTIFY_ON_SUCCESS", "LEAD_SOURCE_LABEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_ghl():
    return FakeGHL()


@pytest.fixture
def fake_resend():
    return FakeResend()

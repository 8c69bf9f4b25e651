"""
Tests for FastAPI endpoints.

Tests the API routes using FastAPI's TestClient against a temporary
archive.db installed through the global Config.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from phone_archive.api import app
from phone_archive.database import open_store
from phone_archive.etl.loaders import discover_subscriptions
from phone_archive.etl.pipeline import ingest_archive


@pytest.fixture
def client(config):
    """Create a TestClient for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def populated(config, messages_xml, calls_xml):
    """Ingest both sample archives into the configured database."""
    with open_store(config.db_path) as store:
        ingest_archive(store, messages_xml)
        ingest_archive(store, calls_xml)
        discover_subscriptions(store)
    return config


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health_is_get_only(self, client):
        assert client.post("/health").status_code == 405

    def test_health_reports_database(self, client, populated):
        assert client.get("/health").json()["archive_db_exists"] is True

    def test_health_without_database(self, client):
        assert client.get("/health").json()["archive_db_exists"] is False


class TestApiKey:
    """Tests for X-API-Key enforcement."""

    def test_open_without_key(self, client):
        assert client.get("/phones").status_code == 200

    def test_rejects_missing_key(self, client, config):
        config.api_key = "secret"
        assert client.get("/phones").status_code == 401

    def test_rejects_wrong_key(self, client, config):
        config.api_key = "secret"
        assert client.get("/phones", headers={"X-API-Key": "guess"}).status_code == 401

    def test_accepts_key(self, client, config):
        config.api_key = "secret"
        assert client.get("/phones", headers={"X-API-Key": "secret"}).status_code == 200

    def test_health_needs_no_key(self, client, config):
        config.api_key = "secret"
        assert client.get("/health").status_code == 200


class TestUploadEndpoint:
    """Tests for /upload."""

    def test_multipart_messages(self, client, messages_xml):
        response = client.post(
            "/upload", files={"file": ("sms.xml", messages_xml.encode("utf-8"), "text/xml")}
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "type": "messages",
            "total": 4,
            "inserted": 4,
            "skipped": 0,
            "uniquePhones": 3,
        }

    def test_raw_calls_then_duplicate(self, client, calls_xml):
        headers = {"content-type": "application/xml"}
        first = client.post("/upload", content=calls_xml, headers=headers).json()
        second = client.post("/upload", content=calls_xml, headers=headers).json()

        assert (first["inserted"], first["skipped"]) == (3, 0)
        assert (second["inserted"], second["skipped"]) == (0, 3)

    def test_malformed_archive_is_400(self, client):
        response = client.post(
            "/upload", content="<smses><sms", headers={"content-type": "text/xml"}
        )
        assert response.status_code == 400

    def test_not_an_archive_is_400(self, client):
        response = client.post(
            "/upload", content="<contacts />", headers={"content-type": "text/xml"}
        )
        assert response.status_code == 400

    def test_wrong_content_type(self, client):
        response = client.post("/upload", json={"xml": "<smses />"})
        assert response.status_code == 400

    def test_multipart_without_file(self, client):
        response = client.post("/upload", data={"other": "x"}, files={"x": ("a.txt", b"a")})
        assert response.status_code == 400


class TestWebhookEndpoint:
    """Tests for /webhook."""

    def test_stores_forwarded_sms(self, client):
        payload = {"from": "0412 345 678", "content": "Hi", "timestamp": "1700000000000"}

        first = client.post("/webhook", json=payload).json()
        second = client.post("/webhook", json=payload).json()

        assert first["success"] is True
        assert first["inserted"] is True
        assert first["phone"] == "+61412345678"
        assert second["inserted"] is False
        assert second["id"] == first["id"]

    def test_missing_fields(self, client):
        assert client.post("/webhook", json={"from": "TPG"}).status_code == 400

    def test_bad_timestamp(self, client):
        response = client.post(
            "/webhook", json={"from": "TPG", "content": "x", "timestamp": "soon"}
        )
        assert response.status_code == 400

    def test_timestamp_out_of_range_is_400(self, client):
        response = client.post(
            "/webhook",
            json={"from": "0412345678", "content": "hi", "timestamp": "99999999999999999"},
        )
        assert response.status_code == 400
        assert "out of range" in response.json()["detail"]


class TestReadEndpoints:
    """Tests for phones, messages and calls."""

    def test_phones(self, client, populated):
        body = client.get("/phones", params={"limit": 2}).json()
        assert [row["phone"] for row in body["data"]] == ["+14155551234", "+61412345678"]
        assert body["pagination"] == {"limit": 2, "offset": 0, "count": 2}

    def test_phone_detail_normalizes(self, client, populated):
        body = client.get("/phones/0412345678").json()
        assert body["data"]["phone"] == "+61412345678"
        assert body["data"]["message_count"] == 2
        assert body["data"]["call_count"] == 2

    def test_phone_detail_404(self, client, populated):
        assert client.get("/phones/0400000000").status_code == 404

    def test_limit_clamped(self, client, populated):
        body = client.get("/phones", params={"limit": 10_000}).json()
        assert body["pagination"]["limit"] == 500

    def test_messages_requires_phone(self, client, populated):
        assert client.get("/messages").status_code == 400

    def test_messages_phone_normalized(self, client, populated):
        body = client.get("/messages", params={"phone": "0412 345 678"}).json()
        assert body["phone"] == "+61412345678"
        assert len(body["data"]) == 2

    def test_message_detail(self, client, populated):
        message_id = client.get("/messages", params={"phone": "TPG"}).json()["data"][0]["id"]
        assert client.get(f"/messages/{message_id}").json()["data"]["phone"] == "TPG"
        assert client.get("/messages/unknown").status_code == 404

    def test_calls_all(self, client, populated):
        assert len(client.get("/calls").json()["data"]) == 3

    def test_calls_by_phone_and_subscription(self, client, populated):
        body = client.get(
            "/calls", params={"phone": "0412345678", "subscription": "1"}
        ).json()
        assert body["subscription_id"] == "1"
        assert len(body["data"]) == 2

    def test_calls_include_messages(self, client, populated):
        body = client.get(
            "/calls", params={"phone": "0412345678", "include": "messages"}
        ).json()
        assert len(body["data"]["messages"]) == 2
        assert len(body["data"]["calls"]) == 2
        assert body["pagination"]["totalCount"] == 4

    def test_call_detail_404(self, client, populated):
        assert client.get("/calls/unknown").status_code == 404

    def test_unexpected_error_is_generic_500(self, config):
        client = TestClient(app, raise_server_exceptions=False)
        with patch("phone_archive.api.queries.get_phones", side_effect=RuntimeError("secret path")):
            response = client.get("/phones")

        assert response.status_code == 500
        assert "secret path" not in response.text


class TestSubscriptionEndpoints:
    """Tests for /subscriptions."""

    def test_list(self, client, populated):
        body = client.get("/subscriptions").json()
        assert body["count"] == 2
        assert body["data"][0]["label"] == "SIM 1"

    def test_discover(self, client, populated):
        body = client.post("/subscriptions/discover").json()
        assert body["discovered"] == ["1", "2"]

    def test_put_requires_label(self, client, populated):
        assert client.put("/subscriptions/1", json={}).status_code == 400

    def test_put_then_get(self, client, populated):
        response = client.put("/subscriptions/1", json={"label": "Work", "phone_number": "+61400000000"})
        assert response.json()["updated"] is True

        data = client.get("/subscriptions/1").json()["data"]
        assert data["label"] == "Work"
        assert data["phone_number"] == "+61400000000"
        assert data["is_active"] is True

    def test_delete_is_soft(self, client, populated):
        assert client.delete("/subscriptions/2").status_code == 200

        assert client.get("/subscriptions/2").json()["data"]["is_active"] is False
        assert client.get("/subscriptions").json()["count"] == 1
        assert client.get("/subscriptions", params={"active": "false"}).json()["count"] == 2

    def test_missing_subscription(self, client, populated):
        assert client.get("/subscriptions/99").status_code == 404
        assert client.delete("/subscriptions/99").status_code == 404


class TestSyncEndpoint:
    def test_unconfigured(self, client):
        body = client.post("/sync").json()
        assert body == {"success": False, "error": "GDRIVE_CREDENTIALS not configured"}

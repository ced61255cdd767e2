"""Tests for the lookup REST API."""

import pytest
from fastapi.testclient import TestClient

from gdrive_lookup.api.server import create_api_app
from gdrive_lookup.api.service import AppService
from gdrive_lookup.app_settings import AppSettings
from gdrive_lookup.auth_store import AuthSessionStore
from gdrive_lookup.errors import ProviderError

from conftest import FakeDrive

TOKEN = "test-bearer-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def api_drive():
    return FakeDrive(
        [
            {"id": "f0", "name": "notes.txt", "mimeType": "text/plain"},
            {"id": "f1", "name": "more.txt", "mimeType": "text/plain"},
        ],
        media={"f0": b"a cat here", "f1": b"cat and cat"},
    )


@pytest.fixture
def service(api_drive):
    return AppService(
        settings=AppSettings(),
        store=AuthSessionStore(),
        provider_factory=lambda _token: api_drive,
        auth_token=TOKEN,
        require_auth=True,
        oauth_client_secret="",
        service_account_key="",
        service_access_token="service-token",
    )


@pytest.fixture
def client(service):
    return TestClient(create_api_app(service))


def _lookup(client, value="cat", **options):
    return client.post(
        "/api/v1/lookup",
        json={"entities": [{"value": value}], "user_id": "u1", "options": options},
        headers=AUTH,
    )


class TestAuthGuard:
    def test_health_is_public(self, client):
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["ok"] is True
        assert resp.json()["auth_required"] is True

    def test_missing_token(self, client):
        resp = client.get("/api/v1/status")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Missing bearer token"}

    def test_wrong_token(self, client):
        resp = client.get("/api/v1/status", headers={"Authorization": "Bearer wrong"})
        assert resp.status_code == 401

    def test_status(self, client):
        resp = client.get("/api/v1/status", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["tracked_searches"] == 0

    def test_auth_can_be_disabled(self, api_drive):
        service = AppService(
            settings=AppSettings(),
            provider_factory=lambda _token: api_drive,
            require_auth=False,
            oauth_client_secret="",
            service_account_key="",
            service_access_token="service-token",
        )
        client = TestClient(create_api_app(service))
        assert client.get("/api/v1/status").status_code == 200


class TestLookup:
    def test_lookup_registers_a_search(self, client):
        resp = _lookup(client)

        assert resp.status_code == 200
        [result] = resp.json()["results"]
        details = result["data"]["details"]
        assert [f["id"] for f in details["files"]] == ["f0", "f1"]

        search = client.get(f"/api/v1/searches/{details['searchId']}", headers=AUTH)
        assert search.status_code == 200
        assert search.json()["state"]["currentIndex"] == 0
        assert len(search.json()["files"]) == 2

    def test_total_is_unknown_until_content_is_fetched(self, client):
        sid = _lookup(client).json()["results"][0]["data"]["details"]["searchId"]

        state = client.get(f"/api/v1/searches/{sid}", headers=AUTH).json()["state"]

        assert state["totalMatchCount"] is None
        assert state["moreFilesToOpen"] is True

    def test_eager_content_makes_the_total_known(self, client):
        resp = _lookup(client, eager_content_files=2)
        sid = resp.json()["results"][0]["data"]["details"]["searchId"]

        state = client.get(f"/api/v1/searches/{sid}", headers=AUTH).json()["state"]

        assert state["totalMatchCount"] == 3

    def test_step_fetches_content(self, client):
        sid = _lookup(client).json()["results"][0]["data"]["details"]["searchId"]

        resp = client.post(f"/api/v1/searches/{sid}/step", json={"direction": 1}, headers=AUTH)

        assert resp.status_code == 200
        state = resp.json()["state"]
        assert state["currentIndex"] == 1
        assert state["totalMatchCount"] == 1
        assert state["activeMarkerId"] == f"{sid}-1"
        assert state["expandedFiles"] == [0]
        assert f"id='{sid}-1'" in resp.json()["files"][0]["_content"]

    def test_fetch_file_content_and_toggle(self, client):
        sid = _lookup(client).json()["results"][0]["data"]["details"]["searchId"]

        resp = client.post(f"/api/v1/searches/{sid}/files/1/content", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["file"]["range"] == [1, 2]
        assert resp.json()["state"]["expandedFiles"] == [1]

        resp = client.post(f"/api/v1/searches/{sid}/files/1/toggle", headers=AUTH)
        assert resp.json()["state"]["expandedFiles"] == []

    def test_zero_direction_is_rejected(self, client):
        sid = _lookup(client).json()["results"][0]["data"]["details"]["searchId"]
        resp = client.post(f"/api/v1/searches/{sid}/step", json={"direction": 0}, headers=AUTH)
        assert resp.status_code == 400

    def test_unknown_search(self, client):
        assert client.get("/api/v1/searches/nope", headers=AUTH).status_code == 404

    def test_unknown_file_index(self, client):
        sid = _lookup(client).json()["results"][0]["data"]["details"]["searchId"]
        resp = client.post(f"/api/v1/searches/{sid}/files/9/content", headers=AUTH)
        assert resp.status_code == 404

    def test_invalid_options(self, client):
        resp = _lookup(client, search_scope="drive")

        assert resp.status_code == 400
        assert resp.json()["error"]["errors"][0]["key"] == "driveId"

    def test_provider_failure(self, client, api_drive):
        api_drive.list_error = ProviderError("boom", status_code=500)

        resp = _lookup(client)

        assert resp.status_code == 502
        assert resp.json()["error"]["errors"][0]["code"] == 500

    def test_empty_entity_value_is_rejected(self, client):
        assert _lookup(client, value="").status_code == 422


class TestOptionsAndAuth:
    def test_validate_options(self, client):
        resp = client.post("/api/v1/options/validate", json={"search_scope": "drive"}, headers=AUTH)
        assert resp.json()["ok"] is False
        assert resp.json()["errors"][0]["key"] == "driveId"

        resp = client.post("/api/v1/options/validate", json={}, headers=AUTH)
        assert resp.json() == {"ok": True, "errors": []}

    def test_verify_unknown_state_token(self, client):
        resp = client.post(
            "/api/v1/auth/verify",
            json={"state_token": "nope", "user_id": "u1"},
            headers=AUTH,
        )
        assert resp.json() == {"isAuthenticated": False, "isExpired": False}


class TestOutboundRequests:
    def test_settings_configure_the_shared_session(self):
        settings = AppSettings(
            request_proxy="http://proxy.internal:3128",
            request_ca_file="/etc/ssl/corp-ca.pem",
            request_cert_file="client.pem",
            request_key_file="client.key",
        )
        service = AppService(
            settings=settings,
            require_auth=False,
            oauth_client_secret="",
            service_account_key="",
            service_access_token="service-token",
        )

        session = service.http_session
        assert session.proxies["https"] == "http://proxy.internal:3128"
        assert session.verify == "/etc/ssl/corp-ca.pem"
        assert session.cert == ("client.pem", "client.key")
        assert service.auth._http_session is session
        assert service.orchestrator.provider_factory("tok")._http is session

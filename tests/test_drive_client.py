"""Tests for the Drive REST client and query helpers."""

from unittest.mock import MagicMock

import pytest
import requests

from gdrive_lookup.constants import DRIVE_FILES_ENDPOINT
from gdrive_lookup.drive_client import DriveClient, build_scope, build_session, full_text_query
from gdrive_lookup.errors import ProviderError


def _response(status=200, body=None, content=b""):
    resp = MagicMock()
    resp.ok = 200 <= status < 300
    resp.status_code = status
    resp.content = content
    resp.reason = "Error"
    resp.text = ""
    resp.json.return_value = body if body is not None else {}
    return resp


@pytest.fixture
def http():
    return MagicMock()


class TestScopes:
    def test_default_scope(self):
        scope = build_scope("default")
        assert "corpora" not in scope
        assert scope["supportsAllDrives"] == "true"

    def test_single_drive(self):
        scope = build_scope("drive", "0ABC")
        assert scope["corpora"] == "drive"
        assert scope["driveId"] == "0ABC"

    def test_all_drives(self):
        assert build_scope("allDrives")["corpora"] == "allDrives"

    def test_unknown_scope(self):
        with pytest.raises(ValueError):
            build_scope("everywhere")


def test_full_text_query_escapes_quotes_and_backslashes():
    assert full_text_query("a\\b'c") == "fullText contains 'a\\\\b\\'c'"


class TestDriveClient:
    def test_list_files_sends_bearer_and_query(self, http):
        http.get.return_value = _response(body={"files": [{"id": "f1"}, "junk"]})
        client = DriveClient("tok", session=http)

        files = client.list_files("fullText contains 'cat'", build_scope("default"))

        assert files == [{"id": "f1"}]
        args, kwargs = http.get.call_args
        assert args[0] == DRIVE_FILES_ENDPOINT
        assert kwargs["headers"] == {"Authorization": "Bearer tok"}
        assert kwargs["params"]["q"] == "fullText contains 'cat'"

    def test_http_error_carries_status(self, http):
        http.get.return_value = _response(
            status=401, body={"error": {"code": 401, "message": "Invalid Credentials"}}
        )
        client = DriveClient("tok", session=http)

        with pytest.raises(ProviderError) as excinfo:
            client.list_files("q", {})

        assert excinfo.value.status_code == 401
        assert excinfo.value.is_auth_error
        assert str(excinfo.value) == "Invalid Credentials"

    def test_network_error(self, http):
        http.get.side_effect = requests.ConnectionError("unreachable")
        client = DriveClient("tok", session=http)

        with pytest.raises(ProviderError) as excinfo:
            client.get_file_media("f1")

        assert excinfo.value.status_code is None
        assert not excinfo.value.is_auth_error

    def test_export(self, http):
        http.get.return_value = _response(content=b"exported")
        client = DriveClient("tok", session=http)

        assert client.export_file("f1", "text/csv") == b"exported"
        args, kwargs = http.get.call_args
        assert args[0] == f"{DRIVE_FILES_ENDPOINT}/f1/export"
        assert kwargs["params"] == {"mimeType": "text/csv"}

    def test_media_download(self, http):
        http.get.return_value = _response(content=b"raw")
        client = DriveClient("tok", session=http)

        assert client.get_file_media("f1") == b"raw"
        assert http.get.call_args.kwargs["params"]["alt"] == "media"

    def test_thumbnail_uses_short_timeout(self, http):
        http.get.return_value = _response(content=b"png")
        client = DriveClient("tok", session=http, timeout=20, thumbnail_timeout=3)

        assert client.download_thumbnail("https://thumbs.example/1") == b"png"
        assert http.get.call_args.kwargs["timeout"] == 3


class TestBuildSession:
    def test_defaults_leave_requests_behaviour_alone(self):
        session = build_session()
        assert session.proxies == {}
        assert session.verify is True
        assert session.cert is None

    def test_proxy_applies_to_both_schemes(self):
        session = build_session(proxy="http://proxy.internal:3128")
        assert session.proxies == {"http": "http://proxy.internal:3128", "https": "http://proxy.internal:3128"}

    def test_ca_bundle(self):
        assert build_session(ca_file="/etc/ssl/corp-ca.pem").verify == "/etc/ssl/corp-ca.pem"

    def test_disabling_verification_wins_over_ca_bundle(self):
        assert build_session(ca_file="/etc/ssl/corp-ca.pem", verify_tls=False).verify is False

    def test_client_certificate(self):
        assert build_session(cert_file="client.pem", key_file="client.key").cert == ("client.pem", "client.key")
        assert build_session(cert_file="combined.pem").cert == "combined.pem"

    def test_client_uses_the_given_session(self):
        session = build_session(proxy="http://proxy.internal:3128")
        session.get = MagicMock(return_value=_response(body={"files": []}))

        DriveClient("tok", session=session).list_files("q", {})

        session.get.assert_called_once()

"""
drive_client.py - Google Drive v3 API integration.

Defines the ``StorageProvider`` capability the lookup core depends on and a
``DriveClient`` implementation that talks to the Drive REST API with a
bearer access token:
  - full-text file search, scoped to the user's files, one shared drive, or
    all shared drives
  - export of native Google documents to a text-bearing format
  - raw media download
  - thumbnail download (returned as a data URI by the caller)

HTTP failures are raised as ``ProviderError`` with the status code so the
orchestrator can tell an expired session (401) from everything else.
"""

from __future__ import annotations

import abc
from typing import Any

import requests

from .constants import (
    DRIVE_FILE_FIELDS,
    DRIVE_FILES_ENDPOINT,
    DRIVE_REQUEST_TIMEOUT,
    DRIVE_THUMBNAIL_TIMEOUT,
    SEARCH_SCOPE_ALL_DRIVES,
    SEARCH_SCOPE_DEFAULT,
    SEARCH_SCOPE_DRIVE,
)
from .errors import ProviderError


class StorageProvider(abc.ABC):
    """What the lookup core needs from a file-storage backend."""

    @abc.abstractmethod
    def list_files(self, query: str, scope: dict[str, Any]) -> list[dict[str, Any]]:
        ...

    @abc.abstractmethod
    def export_file(self, file_id: str, mime_type: str) -> bytes:
        ...

    @abc.abstractmethod
    def get_file_media(self, file_id: str) -> bytes:
        ...

    @abc.abstractmethod
    def download_thumbnail(self, url: str) -> bytes:
        ...


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------

def escape_query_value(value: str) -> str:
    """Escape a value for use inside a single-quoted Drive query string."""
    return str(value or "").replace("\\", "\\\\").replace("'", "\\'")


def full_text_query(value: str) -> str:
    return f"fullText contains '{escape_query_value(value)}'"


def build_scope(search_scope: str, drive_id: str = "") -> dict[str, Any]:
    """Drive ``files.list`` parameters for a search scope (without ``q``)."""
    if search_scope == SEARCH_SCOPE_DRIVE:
        return {
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
            "corpora": "drive",
            "driveId": drive_id,
            "fields": DRIVE_FILE_FIELDS,
        }
    if search_scope == SEARCH_SCOPE_ALL_DRIVES:
        return {
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
            "corpora": "allDrives",
            "fields": DRIVE_FILE_FIELDS,
        }
    if search_scope != SEARCH_SCOPE_DEFAULT:
        raise ValueError(f"unsupported search scope: {search_scope}")
    return {
        "includeItemsFromAllDrives": "true",
        "supportsAllDrives": "true",
        "fields": DRIVE_FILE_FIELDS,
    }


# ---------------------------------------------------------------------------
# Drive REST client
# ---------------------------------------------------------------------------

def build_session(
    *,
    proxy: str = "",
    ca_file: str = "",
    cert_file: str = "",
    key_file: str = "",
    verify_tls: bool = True,
) -> requests.Session:
    """Shared HTTP session carrying proxy, CA bundle and client certificate."""
    session = requests.Session()
    if proxy:
        session.proxies = {"http": proxy, "https": proxy}
    if not verify_tls:
        session.verify = False
    elif ca_file:
        session.verify = ca_file
    if cert_file:
        session.cert = (cert_file, key_file) if key_file else cert_file
    return session


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:300] or resp.reason or "request failed"
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        return str(err.get("message") or err.get("status") or "request failed")
    if err:
        return str(err)
    return resp.reason or "request failed"


class DriveClient(StorageProvider):
    """Drive v3 over plain HTTPS with a bearer token."""

    def __init__(
        self,
        access_token: str,
        *,
        session: requests.Session | None = None,
        timeout: int = DRIVE_REQUEST_TIMEOUT,
        thumbnail_timeout: int = DRIVE_THUMBNAIL_TIMEOUT,
    ):
        self._access_token = access_token
        self._http = session or requests.Session()
        self._timeout = timeout
        self._thumbnail_timeout = thumbnail_timeout

    @property
    def access_token(self) -> str:
        return self._access_token

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    def _get(self, url: str, *, params: dict[str, Any] | None = None, timeout: int | None = None) -> requests.Response:
        try:
            resp = self._http.get(
                url,
                headers=self._headers(),
                params=params or {},
                timeout=max(1, int(timeout or self._timeout)),
            )
        except requests.RequestException as exc:
            raise ProviderError(f"Drive request failed: {exc}", cause=exc) from exc
        if not resp.ok:
            raise ProviderError(_error_message(resp), status_code=int(resp.status_code))
        return resp

    def list_files(self, query: str, scope: dict[str, Any]) -> list[dict[str, Any]]:
        params = dict(scope)
        params["q"] = query
        resp = self._get(DRIVE_FILES_ENDPOINT, params=params)
        try:
            body = resp.json()
        except ValueError as exc:
            raise ProviderError("Drive returned a non-JSON file list", cause=exc) from exc
        files = body.get("files") if isinstance(body, dict) else None
        return [f for f in (files or []) if isinstance(f, dict)]

    def export_file(self, file_id: str, mime_type: str) -> bytes:
        resp = self._get(f"{DRIVE_FILES_ENDPOINT}/{file_id}/export", params={"mimeType": mime_type})
        return resp.content

    def get_file_media(self, file_id: str) -> bytes:
        resp = self._get(
            f"{DRIVE_FILES_ENDPOINT}/{file_id}",
            params={"alt": "media", "supportsAllDrives": "true"},
        )
        return resp.content

    def download_thumbnail(self, url: str) -> bytes:
        resp = self._get(url, timeout=self._thumbnail_timeout)
        return resp.content

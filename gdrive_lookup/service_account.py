"""
service_account.py - Drive access tokens minted from a service-account key.

Used when per-user OAuth is disabled. The key JSON (the ``privatekey.json``
downloaded from the Google Cloud console) is parsed once per distinct key;
the resulting credentials are refreshed whenever their access token is
missing or expired, so every lookup gets a token that is valid right now.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from .constants import DRIVE_AUTH_SCOPE
from .errors import ProviderError

log = logging.getLogger(__name__)

REQUIRED_KEY_FIELDS = ("client_email", "private_key", "token_uri")


def parse_service_account_key(key_json: str) -> dict[str, Any]:
    """Decode a service-account key, raising ValueError if it is unusable."""
    try:
        info = json.loads(key_json or "")
    except ValueError as exc:
        raise ValueError(f"service account key is not valid JSON: {exc}") from exc
    if not isinstance(info, dict):
        raise ValueError("service account key must be a JSON object")
    if info.get("type") not in (None, "service_account"):
        raise ValueError(f"expected a service_account key, got {info.get('type')!r}")
    missing = [name for name in REQUIRED_KEY_FIELDS if not info.get(name)]
    if missing:
        raise ValueError(f"service account key is missing {', '.join(missing)}")
    return info


class ServiceAccountTokens:
    """Caches service-account credentials and hands out fresh access tokens."""

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        credentials_factory: Callable[..., Any] = service_account.Credentials.from_service_account_info,
        scopes: tuple[str, ...] = (DRIVE_AUTH_SCOPE,),
    ):
        self._session = session
        self._credentials_factory = credentials_factory
        self._scopes = list(scopes)
        self._credentials: dict[tuple[str, str], Any] = {}
        self._lock = threading.Lock()

    def _credentials_for(self, info: dict[str, Any]) -> Any:
        cache_key = (str(info["client_email"]), str(info.get("private_key_id") or ""))
        creds = self._credentials.get(cache_key)
        if creds is None:
            creds = self._credentials_factory(info, scopes=self._scopes)
            self._credentials[cache_key] = creds
        return creds

    def access_token(self, key_json: str) -> str:
        """A currently valid access token for the key in *key_json*.

        Raises ProviderError when Google refuses to mint one.
        """
        info = parse_service_account_key(key_json)
        with self._lock:
            try:
                creds = self._credentials_for(info)
                if not creds.valid:
                    log.debug("Refreshing service account token for %s", info["client_email"])
                    creds.refresh(Request(session=self._session))
            except (GoogleAuthError, ValueError) as exc:
                log.error("Failed to authorize service account %s: %s", info["client_email"], exc)
                raise ProviderError(
                    f"Failed to authorize service account: {exc}", status_code=401, cause=exc
                ) from exc
            return str(creds.token)

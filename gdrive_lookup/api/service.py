"""
service.py - Shared application service layer for the HTTP surfaces.

Owns the long-lived state of a running process: settings, the auth session
store, the lookup orchestrator and one ``MatchNavigator`` per search that
produced files. Both the lookup REST API and the OAuth callback server call
into the same instance.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any

from .. import app_settings as settings_store
from .. import keychain
from ..auth_flow import AuthFlowController
from ..auth_store import AuthSessionStore
from ..constants import FILE_ERROR_CLEAR_DELAY
from ..drive_client import DriveClient, build_session
from ..navigation import MatchNavigator
from ..search import ProviderFactory, SearchOrchestrator, UserContext, content_fetcher
from ..service_account import ServiceAccountTokens

log = logging.getLogger(__name__)

MAX_TRACKED_SEARCHES = 500


def _utc_now_iso() -> str:
    return datetime.now(tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class SearchSession:
    search_id: str
    entity: Any
    user_id: str
    navigator: MatchNavigator
    created_at: str = field(default_factory=_utc_now_iso)

    def snapshot(self, include_files: bool = True) -> dict[str, Any]:
        data = {
            "searchId": self.search_id,
            "entity": self.entity,
            "userId": self.user_id,
            "createdAt": self.created_at,
            "state": self.navigator.state.to_dict(),
        }
        if include_files:
            data["files"] = self.navigator.files
        return data


class AppService:
    """Stateful backend used by the REST API and the auth callback server."""

    def __init__(
        self,
        *,
        settings: settings_store.AppSettings | None = None,
        store: AuthSessionStore | None = None,
        provider_factory: ProviderFactory | None = None,
        auth_token: str | None = None,
        require_auth: bool | None = None,
        oauth_client_secret: str | None = None,
        service_account_key: str | None = None,
        service_access_token: str | None = None,
        error_clear_delay: float = FILE_ERROR_CLEAR_DELAY,
    ):
        self._lock = threading.RLock()
        self.settings = (settings or settings_store.load_settings()).normalized()
        self.http_session = build_session(
            proxy=self.settings.request_proxy,
            ca_file=self.settings.request_ca_file,
            cert_file=self.settings.request_cert_file,
            key_file=self.settings.request_key_file,
            verify_tls=self.settings.request_verify_tls,
        )
        self.store = store or AuthSessionStore()
        self.auth = AuthFlowController(self.store, http_session=self.http_session)
        self.orchestrator = SearchOrchestrator(
            self.auth,
            provider_factory or partial(DriveClient, session=self.http_session),
            max_workers=self.settings.max_concurrent_file_requests,
            service_tokens=ServiceAccountTokens(session=self.http_session),
        )
        self.error_clear_delay = error_clear_delay
        self._oauth_client_secret = (
            oauth_client_secret
            if oauth_client_secret is not None
            else keychain.load_secret(keychain.OAUTH_CLIENT_SECRET) or ""
        )
        if service_account_key is None:
            service_account_key = (
                settings_store.read_service_account_key(self.settings)
                or keychain.load_secret(keychain.SERVICE_ACCOUNT_KEY)
                or ""
            )
        self._service_account_key = service_account_key
        self._service_access_token = (
            service_access_token
            if service_access_token is not None
            else keychain.load_secret(keychain.SERVICE_ACCESS_TOKEN) or ""
        )

        self.require_auth = self.settings.api_require_auth if require_auth is None else bool(require_auth)
        token = str(auth_token or self.settings.api_bearer_token or "").strip()
        self.auth_token_generated = False
        if self.require_auth and not token:
            token = secrets.token_urlsafe(32)
            self.auth_token_generated = True
        self.auth_token = token

        self._searches: dict[str, SearchSession] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.store.start()

    def stop(self) -> None:
        self.store.stop()

    def authenticate_bearer_token(self, token: str) -> bool:
        if not self.auth_token or not token:
            return False
        return hmac.compare_digest(str(token), self.auth_token)

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def lookup_options(self, **overrides: Any) -> settings_store.LookupOptions:
        return self.settings.lookup_options(
            oauth_client_secret=self._oauth_client_secret,
            service_account_key=self._service_account_key,
            service_access_token=self._service_access_token,
            **overrides,
        )

    def validate_options(self, **overrides: Any) -> dict[str, Any]:
        errors = settings_store.validate_options(self.lookup_options(**overrides))
        return {"ok": not errors, "errors": errors}

    def get_status(self) -> dict[str, Any]:
        with self._lock:
            tracked = len(self._searches)
        return {
            "now": _utc_now_iso(),
            "search_scope": self.settings.search_scope,
            "oauth_enabled": self.settings.oauth_enabled,
            "tracked_searches": tracked,
            "pending_state_tokens": len(self.store.state_tokens),
        }

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def lookup(
        self,
        entities: list[Any],
        *,
        user_id: str,
        username: str = "",
        **overrides: Any,
    ) -> dict[str, Any]:
        options = self.lookup_options(**overrides)
        user = UserContext(user_id=user_id, username=username)
        results = self.orchestrator.search(entities, options, user)

        def provider_source():
            return self.orchestrator.open_provider(options, user)

        for result in results:
            data = result.get("data") or {}
            details = data.get("details") or {}
            if not details.get("searchId") or not details.get("files"):
                continue
            # the total stays unknown until some file has been highlighted
            fetched = any("range" in f for f in details["files"])
            navigator = MatchNavigator(
                details["searchId"],
                details["files"],
                content_fetcher(provider_source, details["searchTerm"], details["searchId"]),
                total_match_count=details["totalMatchCount"] if fetched else None,
                error_clear_delay=self.error_clear_delay,
            )
            self._track(SearchSession(details["searchId"], result.get("entity"), user_id, navigator))
        return {"results": results}

    def _track(self, session: SearchSession) -> None:
        with self._lock:
            self._searches[session.search_id] = session
            while len(self._searches) > MAX_TRACKED_SEARCHES:
                oldest = next(iter(self._searches))
                del self._searches[oldest]

    def _search(self, search_id: str) -> SearchSession:
        with self._lock:
            session = self._searches.get(search_id)
        if session is None:
            raise KeyError(f"search not found: {search_id}")
        return session

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def get_search(self, search_id: str, *, include_files: bool = True) -> dict[str, Any]:
        return self._search(search_id).snapshot(include_files=include_files)

    def step(self, search_id: str, direction: int) -> dict[str, Any]:
        session = self._search(search_id)
        state = session.navigator.step(direction)
        return {"state": state.to_dict(), "files": session.navigator.files}

    def fetch_file_content(self, search_id: str, file_index: int) -> dict[str, Any]:
        session = self._search(search_id)
        state = session.navigator.fetch_file_content(file_index)
        return {"state": state.to_dict(), "file": session.navigator.files[file_index]}

    def toggle_file(self, search_id: str, file_index: int) -> dict[str, Any]:
        state = self._search(search_id).navigator.toggle_file(file_index)
        return {"state": state.to_dict()}

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def verify_authentication(self, state_token: str, user_id: str) -> dict[str, bool]:
        return self.auth.verify_authentication(state_token, user_id)

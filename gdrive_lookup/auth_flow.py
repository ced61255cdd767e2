"""
auth_flow.py - OAuth2 authorization flow for per-user Google Drive access.

Flow:
  1. A lookup finds no valid session for the user and calls
     ``create_auth_request``; the user is shown the returned URL.
  2. Google redirects the browser to the auth callback server with
     ``code`` and ``state``; the server calls ``complete_auth_request``.
  3. The polling caller uses ``verify_authentication`` to learn whether the
     session is ready or whether the link expired and must be reissued.

State tokens are single-use. A token that timed out is reported as
EXPIRED (late click or replay); a token that was never issued, or was
already consumed, is INVALID.
"""

from __future__ import annotations

import enum
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import requests

from .auth_store import AuthSession, AuthSessionStore, PendingAuth
from .constants import (
    DRIVE_AUTH_SCOPE,
    GOOGLE_AUTH_URL,
    GOOGLE_TOKEN_URL,
    OAUTH_REDIRECT_PATH,
    OAUTH_TOKEN_TIMEOUT,
    STATE_TOKEN_BYTES,
)
from .errors import AuthExchangeError

log = logging.getLogger(__name__)


class AuthOutcome(str, enum.Enum):
    SUCCESS = "success"
    EXPIRED = "expired"
    INVALID = "invalid"


@dataclass(frozen=True)
class AuthRequestContext:
    """Who is asking, and which OAuth client to ask with."""

    user_id: str
    oauth_client_id: str
    oauth_redirect_host: str
    oauth_client_secret: str = ""
    username: str = ""


@dataclass
class OAuthCredentials:
    access_token: str | None = None
    refresh_token: str | None = None
    expiry_epoch_millis: int | None = None
    scope: str = ""
    token_type: str = "Bearer"

    @classmethod
    def from_token_response(cls, body: dict[str, Any], *, now_millis: int | None = None) -> "OAuthCredentials":
        now_ms = int(time.time() * 1000) if now_millis is None else int(now_millis)
        expiry = body.get("expiry_date")
        if expiry is None and body.get("expires_in") is not None:
            try:
                expiry = now_ms + int(body["expires_in"]) * 1000
            except (TypeError, ValueError):
                expiry = None
        return cls(
            access_token=body.get("access_token"),
            refresh_token=body.get("refresh_token"),
            expiry_epoch_millis=int(expiry) if expiry is not None else None,
            scope=str(body.get("scope") or ""),
            token_type=str(body.get("token_type") or "Bearer"),
        )


class OAuth2Client:
    """Minimal Google OAuth2 web-server client built on ``requests``."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        session: requests.Session | None = None,
        timeout: int = OAUTH_TOKEN_TIMEOUT,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.credentials: OAuthCredentials | None = None
        self._http = session or requests.Session()
        self._timeout = timeout

    def generate_auth_url(self, *, state: str, scope: str = DRIVE_AUTH_SCOPE) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            # offline access is what gets us a refresh_token
            "access_type": "offline",
            "prompt": "consent",
            "scope": scope,
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> OAuthCredentials:
        """Trade an authorization code for tokens and keep them on the client."""
        data = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        }
        try:
            resp = self._http.post(GOOGLE_TOKEN_URL, data=data, timeout=self._timeout)
        except requests.RequestException as exc:
            raise AuthExchangeError(f"Token request failed: {exc}") from exc
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not resp.ok:
            err = body.get("error_description") or body.get("error") or resp.text[:200]
            raise AuthExchangeError(
                f"Token exchange rejected: {err}", status_code=int(resp.status_code)
            )
        if not body.get("access_token"):
            raise AuthExchangeError("Token response did not include an access token")
        self.credentials = OAuthCredentials.from_token_response(body)
        return self.credentials


def _redirect_uri(redirect_host: str) -> str:
    return f"{str(redirect_host or '').rstrip('/')}{OAUTH_REDIRECT_PATH}"


class AuthFlowController:
    """Issues authorization URLs and turns callbacks into sessions.

    All mutation of the session store goes through this class.
    """

    def __init__(self, store: AuthSessionStore, *, http_session: requests.Session | None = None):
        self.store = store
        self._http_session = http_session

    # -- authorization requests ------------------------------------------

    def _new_state_token(self) -> str:
        while True:
            token = secrets.token_hex(STATE_TOKEN_BYTES)
            if not self.store.state_tokens.has(token):
                return token

    def create_auth_client(self, ctx: AuthRequestContext) -> OAuth2Client:
        return OAuth2Client(
            ctx.oauth_client_id,
            ctx.oauth_client_secret,
            _redirect_uri(ctx.oauth_redirect_host),
            session=self._http_session,
        )

    def create_auth_request(self, ctx: AuthRequestContext) -> dict[str, str]:
        client = self.create_auth_client(ctx)
        state_token = self._new_state_token()
        auth_url = client.generate_auth_url(state=state_token)
        # The callback is expected within the state-token window.
        self.store.state_tokens.set(
            state_token,
            PendingAuth(client=client, user_id=ctx.user_id, username=ctx.username),
            self.store.state_token_ttl,
        )
        log.info("Issued authorization request for user %s", ctx.user_id)
        return {"authUrl": auth_url, "stateToken": state_token}

    def complete_auth_request(self, code: str, state_token: str) -> AuthOutcome:
        """Finish an authorization callback.

        Raises AuthExchangeError when Google rejects the code; the state
        token is already spent at that point, so the user must restart.
        """
        pending = self.store.state_tokens.take(state_token)
        if pending is not None:
            pending.client.exchange_code(code)
            self.store.put_session(
                AuthSession(user_id=pending.user_id, username=pending.username, client=pending.client)
            )
            log.info("Authenticated and cached OAuth client for user %s", pending.user_id)
            return AuthOutcome.SUCCESS
        if self.store.expired_tokens.has(state_token):
            log.warning("State token in auth callback is expired")
            return AuthOutcome.EXPIRED
        log.warning("State token in auth callback is invalid")
        return AuthOutcome.INVALID

    # -- sessions --------------------------------------------------------

    def has_session(self, user_id: str) -> bool:
        return self.store.has_session(user_id)

    def get_session(self, user_id: str) -> AuthSession:
        session = self.store.get_session(user_id)
        if session is None:
            raise KeyError(f"no auth session for user: {user_id}")
        return session

    def delete_session(self, user_id: str) -> bool:
        return self.store.delete_session(user_id)

    def is_session_valid(self, user_id: str, *, now_millis: int | None = None) -> bool:
        session = self.store.get_session(user_id)
        if session is None or not session.access_token:
            return False
        expiry = session.expiry_epoch_millis
        if expiry is None:
            return False
        now_ms = int(time.time() * 1000) if now_millis is None else int(now_millis)
        return now_ms < int(expiry)

    def is_state_token_expired(self, state_token: str) -> bool:
        # touching the live cache moves a timed-out token into the expired one
        if self.store.state_tokens.has(state_token):
            return False
        return self.store.expired_tokens.has(state_token)

    def verify_authentication(self, state_token: str, user_id: str) -> dict[str, bool]:
        return {
            "isAuthenticated": self.is_session_valid(user_id),
            "isExpired": self.is_state_token_expired(state_token),
        }

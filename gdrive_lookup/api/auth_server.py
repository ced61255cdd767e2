"""
auth_server.py - OAuth2 redirect target for Google Drive Lookup.

Serves exactly one route, ``GET /auth?code=...&state=...``, which Google
redirects the user's browser to after consent. Every other path gets a
plain 404. TLS is handled by uvicorn when a certificate and key are
configured (see __main__.py).
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..auth_flow import AuthFlowController, AuthOutcome
from ..constants import (
    AUTH_EXPIRED_PAGE,
    AUTH_FAILURE_PAGE,
    AUTH_SUCCESS_PAGE,
    NOT_FOUND_TEXT,
)
from ..errors import AuthExchangeError

log = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'self'",
    "Cross-Origin-Opener-Policy": "same-origin",
}


def create_auth_app(auth: AuthFlowController) -> FastAPI:
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
    app.state.auth = auth

    @app.middleware("http")
    async def _security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _not_found(_request: Request, _exc: StarletteHTTPException):
        return PlainTextResponse(NOT_FOUND_TEXT, status_code=404)

    @app.get("/auth", response_class=HTMLResponse)
    def auth_callback(request: Request, code: str = "", state: str = ""):
        controller: AuthFlowController = request.app.state.auth
        try:
            outcome = controller.complete_auth_request(code, state)
        except AuthExchangeError as exc:
            log.error("OAuth code exchange failed: %s", exc)
            return HTMLResponse(AUTH_FAILURE_PAGE, status_code=502)
        if outcome is AuthOutcome.SUCCESS:
            return HTMLResponse(AUTH_SUCCESS_PAGE)
        if outcome is AuthOutcome.EXPIRED:
            # Valid once but timed out: the user waited too long, or a replay.
            return HTMLResponse(AUTH_EXPIRED_PAGE)
        return HTMLResponse(AUTH_FAILURE_PAGE)

    return app

"""
server.py - FastAPI REST API for Google Drive Lookup.

Exposes entity lookups, OAuth status polling and match navigation over an
authenticated local REST interface. The OAuth redirect target lives in a
separate app (auth_server.py).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from .. import __version__ as APP_VERSION
from ..constants import APP_DESCRIPTION, APP_TITLE
from ..errors import SearchError, ValidationError
from .service import AppService


class Entity(BaseModel):
    value: str = Field(..., min_length=1)
    type: str = "custom"


class OptionOverrides(BaseModel):
    search_scope: str | None = None
    drive_id: str | None = None
    show_thumbnails: bool | None = None
    eager_content_files: int | None = Field(default=None, ge=0, le=100)


class LookupRequest(BaseModel):
    entities: list[Entity]
    user_id: str = Field(..., min_length=1)
    username: str = ""
    options: OptionOverrides = Field(default_factory=OptionOverrides)


class AuthVerifyRequest(BaseModel):
    state_token: str
    user_id: str


class StepRequest(BaseModel):
    direction: int = Field(..., ge=-1, le=1)


def _http_error_from_exc(exc: Exception) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail={"message": str(exc), "errors": exc.errors})
    if isinstance(exc, SearchError):
        return HTTPException(status_code=502, detail=exc.to_dict())
    if isinstance(exc, KeyError):
        return HTTPException(status_code=404, detail=str(exc.args[0]) if exc.args else "not found")
    if isinstance(exc, PermissionError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=f"{type(exc).__name__}: {exc}")


def create_api_app(service: AppService | None = None) -> FastAPI:
    """Build the lookup REST app around *service*."""
    svc = service or AppService()
    app = FastAPI(title=f"{APP_TITLE} REST API", version=APP_VERSION, description=APP_DESCRIPTION)
    app.state.service = svc

    bearer = HTTPBearer(auto_error=False)

    def _get_service(request: Request) -> AppService:
        return request.app.state.service

    def _auth_guard(
        request: Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    ) -> None:
        service_obj: AppService = request.app.state.service
        if not service_obj.require_auth:
            return
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise HTTPException(status_code=401, detail="Missing bearer token")
        if not service_obj.authenticate_bearer_token(credentials.credentials):
            raise HTTPException(status_code=401, detail="Invalid bearer token")

    api = APIRouter(prefix="/api/v1", dependencies=[Depends(_auth_guard)])

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(_request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.get("/api/v1/health")
    def health(request: Request):
        service_obj: AppService = request.app.state.service
        return {
            "ok": True,
            "version": APP_VERSION,
            "auth_required": service_obj.require_auth,
            "now": service_obj.get_status()["now"],
        }

    @api.get("/status")
    def status(service_obj: AppService = Depends(_get_service)):
        return service_obj.get_status()

    @api.post("/options/validate")
    def validate_options(req: OptionOverrides, service_obj: AppService = Depends(_get_service)):
        return service_obj.validate_options(**req.model_dump(exclude_none=True))

    @api.post("/lookup")
    def lookup(req: LookupRequest, service_obj: AppService = Depends(_get_service)):
        try:
            return service_obj.lookup(
                [e.model_dump() for e in req.entities],
                user_id=req.user_id,
                username=req.username,
                **req.options.model_dump(exclude_none=True),
            )
        except Exception as exc:
            raise _http_error_from_exc(exc)

    @api.post("/auth/verify")
    def auth_verify(req: AuthVerifyRequest, service_obj: AppService = Depends(_get_service)):
        return service_obj.verify_authentication(req.state_token, req.user_id)

    @api.get("/searches/{search_id}")
    def get_search(
        search_id: str,
        include_files: bool = True,
        service_obj: AppService = Depends(_get_service),
    ):
        try:
            return service_obj.get_search(search_id, include_files=include_files)
        except Exception as exc:
            raise _http_error_from_exc(exc)

    @api.post("/searches/{search_id}/step")
    def step(search_id: str, req: StepRequest, service_obj: AppService = Depends(_get_service)):
        try:
            return service_obj.step(search_id, req.direction)
        except Exception as exc:
            raise _http_error_from_exc(exc)

    @api.post("/searches/{search_id}/files/{file_index}/content")
    def fetch_file_content(
        search_id: str,
        file_index: int,
        service_obj: AppService = Depends(_get_service),
    ) -> dict[str, Any]:
        try:
            return service_obj.fetch_file_content(search_id, file_index)
        except Exception as exc:
            raise _http_error_from_exc(exc)

    @api.post("/searches/{search_id}/files/{file_index}/toggle")
    def toggle_file(
        search_id: str,
        file_index: int,
        service_obj: AppService = Depends(_get_service),
    ):
        try:
            return service_obj.toggle_file(search_id, file_index)
        except Exception as exc:
            raise _http_error_from_exc(exc)

    app.include_router(api)
    return app

"""REST API package for Google Drive Lookup."""

from .auth_server import create_auth_app
from .server import create_api_app
from .service import AppService

__all__ = ["create_api_app", "create_auth_app", "AppService"]

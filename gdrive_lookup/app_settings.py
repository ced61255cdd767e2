"""
app_settings.py - Persisted settings for Google Drive Lookup.

Stores a small JSON document in the user's home directory so search scope,
OAuth and server preferences survive restarts. Secrets (OAuth client
secret, service-account key, static service token) are not kept here; see
keychain.py. A service-account key may also be referenced by file path.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from .constants import (
    MAX_CONCURRENT_FILE_REQUESTS,
    SEARCH_SCOPE_DEFAULT,
    SEARCH_SCOPE_DRIVE,
    SEARCH_SCOPES,
)
from .service_account import parse_service_account_key

log = logging.getLogger(__name__)


SETTINGS_PATH = Path.home() / ".gdrive_lookup_settings.json"


@dataclass(frozen=True)
class LookupOptions:
    """Everything a single lookup call needs to know about configuration."""

    search_scope: str = SEARCH_SCOPE_DEFAULT
    drive_id: str = ""
    show_thumbnails: bool = True
    eager_content_files: int = 0
    oauth_enabled: bool = False
    oauth_client_id: str = ""
    oauth_client_secret: str = ""
    oauth_redirect_host: str = ""
    service_account_key: str = ""
    service_access_token: str = ""


@dataclass
class AppSettings:
    search_scope: str = SEARCH_SCOPE_DEFAULT  # default | drive | allDrives
    drive_id: str = ""
    show_thumbnails: bool = True
    eager_content_files: int = 0
    max_concurrent_file_requests: int = MAX_CONCURRENT_FILE_REQUESTS
    oauth_enabled: bool = False
    oauth_client_id: str = ""
    oauth_redirect_host: str = ""
    auth_server_host: str = "0.0.0.0"
    auth_server_port: int = 5050
    auth_server_ssl_cert: str = ""
    auth_server_ssl_key: str = ""
    api_host: str = "127.0.0.1"
    api_port: int = 8765
    api_require_auth: bool = True
    api_bearer_token: str = ""
    service_account_key_path: str = ""
    request_proxy: str = ""
    request_ca_file: str = ""
    request_cert_file: str = ""
    request_key_file: str = ""
    request_verify_tls: bool = True

    def normalized(self) -> "AppSettings":
        """Return a sanitized copy with safe bounds and known values."""
        scope = str(self.search_scope or "").strip()
        if scope not in SEARCH_SCOPES:
            scope = SEARCH_SCOPE_DEFAULT
        try:
            eager = int(self.eager_content_files)
        except Exception:
            eager = 0
        try:
            workers = int(self.max_concurrent_file_requests)
        except Exception:
            workers = MAX_CONCURRENT_FILE_REQUESTS
        auth_host = str(self.auth_server_host or "0.0.0.0").strip() or "0.0.0.0"
        api_host = str(self.api_host or "127.0.0.1").strip() or "127.0.0.1"
        return AppSettings(
            search_scope=scope,
            drive_id=str(self.drive_id or "").strip()[:256],
            show_thumbnails=bool(self.show_thumbnails),
            eager_content_files=max(0, min(eager, 100)),
            max_concurrent_file_requests=max(1, min(workers, 50)),
            oauth_enabled=bool(self.oauth_enabled),
            oauth_client_id=str(self.oauth_client_id or "").strip()[:512],
            oauth_redirect_host=str(self.oauth_redirect_host or "").strip().rstrip("/")[:2048],
            auth_server_host=auth_host,
            auth_server_port=max(1, min(int(self.auth_server_port), 65535)),
            auth_server_ssl_cert=str(self.auth_server_ssl_cert or "").strip(),
            auth_server_ssl_key=str(self.auth_server_ssl_key or "").strip(),
            api_host=api_host,
            api_port=max(1, min(int(self.api_port), 65535)),
            api_require_auth=bool(self.api_require_auth),
            api_bearer_token=str(self.api_bearer_token or "").strip(),
            service_account_key_path=str(self.service_account_key_path or "").strip(),
            request_proxy=str(self.request_proxy or "").strip(),
            request_ca_file=str(self.request_ca_file or "").strip(),
            request_cert_file=str(self.request_cert_file or "").strip(),
            request_key_file=str(self.request_key_file or "").strip(),
            request_verify_tls=bool(self.request_verify_tls),
        )

    @property
    def auth_server_ssl_enabled(self) -> bool:
        return bool(self.auth_server_ssl_cert and self.auth_server_ssl_key)

    def lookup_options(
        self,
        *,
        oauth_client_secret: str = "",
        service_account_key: str = "",
        service_access_token: str = "",
        **overrides: Any,
    ) -> LookupOptions:
        base = {
            "search_scope": self.search_scope,
            "drive_id": self.drive_id,
            "show_thumbnails": self.show_thumbnails,
            "eager_content_files": self.eager_content_files,
            "oauth_enabled": self.oauth_enabled,
            "oauth_client_id": self.oauth_client_id,
            "oauth_client_secret": oauth_client_secret,
            "oauth_redirect_host": self.oauth_redirect_host,
            "service_account_key": service_account_key,
            "service_access_token": service_access_token,
        }
        base.update({k: v for k, v in overrides.items() if v is not None})
        return LookupOptions(**base)


def validate_options(options: LookupOptions) -> list[dict[str, str]]:
    """Return ``[{key, message}]`` describing every configuration problem."""
    errors: list[dict[str, str]] = []
    if options.search_scope not in SEARCH_SCOPES:
        errors.append(
            {
                "key": "searchScope",
                "message": f"Unknown `Search Scope` [{options.search_scope}]",
            }
        )
    if options.search_scope == SEARCH_SCOPE_DRIVE and not str(options.drive_id or "").strip():
        errors.append(
            {
                "key": "driveId",
                "message": "You must provide a `Drive ID to Search` if you set a `Search Scope` of [drive]",
            }
        )
    if options.oauth_enabled:
        if not options.oauth_client_id:
            errors.append({"key": "oauthClientId", "message": "You must provide an OAuth Client ID"})
        if not options.oauth_client_secret:
            errors.append({"key": "oauthClientSecret", "message": "You must provide an OAuth Client Secret"})
        if not options.oauth_redirect_host:
            errors.append({"key": "oauthRedirectHost", "message": "You must provide an OAuth Redirect Host"})
    elif options.service_account_key:
        try:
            parse_service_account_key(options.service_account_key)
        except ValueError as exc:
            errors.append({"key": "serviceAccountKey", "message": f"Invalid service account key: {exc}"})
    elif not options.service_access_token:
        errors.append(
            {
                "key": "serviceAccountKey",
                "message": "You must provide a service account key when OAuth is disabled",
            }
        )
    return errors


def load_settings(path: Path | None = None) -> AppSettings:
    """Load settings from disk, returning defaults on error."""
    settings_path = path or SETTINGS_PATH
    try:
        if not settings_path.exists():
            return AppSettings()
        data = json.loads(settings_path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            return AppSettings()
        defaults = asdict(AppSettings())
        known = {k: data.get(k, v) for k, v in defaults.items()}
        return AppSettings(**known).normalized()
    except Exception:
        return AppSettings()


def save_settings(settings: AppSettings, path: Path | None = None) -> None:
    """Persist settings to disk as JSON."""
    normalized = settings.normalized()
    (path or SETTINGS_PATH).write_text(
        json.dumps(asdict(normalized), indent=2, ensure_ascii=False) + "\n",
        encoding="utf-8",
    )


def read_service_account_key(settings: AppSettings) -> str:
    """Contents of the configured service-account key file, or ``""``."""
    if not settings.service_account_key_path:
        return ""
    path = Path(settings.service_account_key_path).expanduser()
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        log.warning("Could not read service account key %s: %s", path, exc)
        return ""

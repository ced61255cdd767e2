"""
CLI entrypoint for the Google Drive Lookup servers.

Run:
    python -m gdrive_lookup.api --host 127.0.0.1 --port 8765

Starts the lookup REST API and, when OAuth is enabled, the OAuth callback
server on its own port (HTTPS when a certificate and key are given).

Secrets and settings can be managed without starting anything:
    python -m gdrive_lookup.api --set-secret service-account-key < key.json
    python -m gdrive_lookup.api --oauth --auth-port 5050 --save-settings
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
import threading
from pathlib import Path

import uvicorn

from .. import app_settings as settings_store
from .. import keychain
from ..service_account import parse_service_account_key
from .auth_server import create_auth_app
from .server import create_api_app
from .service import AppService

log = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Google Drive Lookup REST API server")
    parser.add_argument("--settings", default="", help="Settings JSON path (default: ~/.gdrive_lookup_settings.json)")
    parser.add_argument("--host", default=None, help="API bind host (default from settings)")
    parser.add_argument("--port", type=int, default=None, help="API bind port (default from settings)")
    parser.add_argument("--token", default="", help="API bearer token (generated if omitted)")
    parser.add_argument("--no-auth", action="store_true", help="Disable API bearer auth (not recommended)")
    parser.add_argument("--oauth", action="store_true", help="Enable per-user OAuth mode")
    parser.add_argument("--auth-host", default=None, help="OAuth callback server bind host")
    parser.add_argument("--auth-port", type=int, default=None, help="OAuth callback server bind port")
    parser.add_argument("--ssl-cert", default=None, help="TLS certificate for the OAuth callback server")
    parser.add_argument("--ssl-key", default=None, help="TLS private key for the OAuth callback server")
    parser.add_argument(
        "--auth-only",
        action="store_true",
        help="Run only the OAuth callback server",
    )
    parser.add_argument(
        "--service-account-key",
        default=None,
        help="Path to a service-account key JSON (used when OAuth is disabled)",
    )
    parser.add_argument("--proxy", default=None, help="Proxy URL for outbound Google requests")
    parser.add_argument("--ca-file", default=None, help="CA bundle for outbound Google requests")
    parser.add_argument("--client-cert", default=None, help="Client certificate for outbound Google requests")
    parser.add_argument("--client-key", default=None, help="Client certificate key for outbound Google requests")
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip TLS verification on outbound Google requests",
    )
    parser.add_argument(
        "--save-settings",
        action="store_true",
        help="Write the settings (with the overrides above) to the settings file and exit",
    )
    parser.add_argument(
        "--set-secret",
        choices=keychain.SECRET_NAMES,
        default=None,
        help="Store a secret read from stdin in the keychain and exit",
    )
    parser.add_argument(
        "--delete-secret",
        choices=keychain.SECRET_NAMES,
        default=None,
        help="Remove a stored secret from the keychain and exit",
    )
    parser.add_argument("--log-level", default="info", help="Log level for the app and uvicorn")
    return parser


def _apply_overrides(settings: settings_store.AppSettings, args: argparse.Namespace) -> settings_store.AppSettings:
    if args.host:
        settings.api_host = args.host
    if args.port:
        settings.api_port = args.port
    if args.oauth:
        settings.oauth_enabled = True
    if args.auth_host:
        settings.auth_server_host = args.auth_host
    if args.auth_port:
        settings.auth_server_port = args.auth_port
    if args.ssl_cert is not None:
        settings.auth_server_ssl_cert = args.ssl_cert
    if args.ssl_key is not None:
        settings.auth_server_ssl_key = args.ssl_key
    if args.service_account_key is not None:
        settings.service_account_key_path = args.service_account_key
    if args.proxy is not None:
        settings.request_proxy = args.proxy
    if args.ca_file is not None:
        settings.request_ca_file = args.ca_file
    if args.client_cert is not None:
        settings.request_cert_file = args.client_cert
    if args.client_key is not None:
        settings.request_key_file = args.client_key
    if args.insecure:
        settings.request_verify_tls = False
    return settings.normalized()


def _read_secret(name: str) -> str:
    if sys.stdin.isatty():
        value = getpass.getpass(f"{name}: ")
    else:
        value = sys.stdin.read()
    value = value.strip()
    if name == keychain.SERVICE_ACCOUNT_KEY and value:
        # keep the stored key on one line
        value = json.dumps(parse_service_account_key(value), separators=(",", ":"))
    return value


def _manage_secret(args: argparse.Namespace) -> int:
    if args.delete_secret:
        if keychain.delete_secret(args.delete_secret):
            print(f"Deleted {args.delete_secret}")
            return 0
        print(f"Could not delete {args.delete_secret}", file=sys.stderr)
        return 1

    try:
        value = _read_secret(args.set_secret)
    except ValueError as exc:
        print(f"Invalid {args.set_secret}: {exc}", file=sys.stderr)
        return 2
    if not value:
        print(f"No value given for {args.set_secret}", file=sys.stderr)
        return 2
    if keychain.store_secret(args.set_secret, value):
        print(f"Stored {args.set_secret}")
        return 0
    print(f"Could not store {args.set_secret}", file=sys.stderr)
    return 1


def _auth_server(service: AppService, log_level: str) -> uvicorn.Server:
    settings = service.settings
    ssl_kwargs = {}
    if settings.auth_server_ssl_enabled:
        ssl_kwargs = {
            "ssl_certfile": settings.auth_server_ssl_cert,
            "ssl_keyfile": settings.auth_server_ssl_key,
        }
    config = uvicorn.Config(
        create_auth_app(service.auth),
        host=settings.auth_server_host,
        port=settings.auth_server_port,
        log_level=log_level,
        **ssl_kwargs,
    )
    return uvicorn.Server(config)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    log_level = str(args.log_level).lower()
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings_path = Path(args.settings).expanduser() if args.settings else None
    if args.set_secret or args.delete_secret:
        return _manage_secret(args)

    settings = _apply_overrides(settings_store.load_settings(settings_path), args)
    if args.save_settings:
        settings_store.save_settings(settings, settings_path)
        print(f"Saved settings to {settings_path or settings_store.SETTINGS_PATH}")
        return 0
    service = AppService(
        settings=settings,
        auth_token=args.token or None,
        require_auth=False if args.no_auth else settings.api_require_auth,
    )

    options_errors = settings_store.validate_options(service.lookup_options())
    for err in options_errors:
        log.warning("Configuration problem [%s]: %s", err["key"], err["message"])

    service.start()
    try:
        if settings.oauth_enabled or args.auth_only:
            auth_server = _auth_server(service, log_level)
            scheme = "HTTPS" if settings.auth_server_ssl_enabled else "HTTP"
            log.info(
                "OAuth callback server listening on port %d over %s",
                settings.auth_server_port,
                scheme,
            )
            if args.auth_only:
                auth_server.run()
                return 0
            threading.Thread(target=auth_server.run, name="auth-server", daemon=True).start()

        print(f"Google Drive Lookup REST API listening on http://{settings.api_host}:{settings.api_port}")
        if service.require_auth:
            print("Bearer auth: enabled")
            if service.auth_token_generated:
                print("Generated bearer token (save this):")
                print(service.auth_token)
            else:
                print("Using provided bearer token.")
        else:
            print("Bearer auth: disabled (not recommended)", file=sys.stderr)

        uvicorn.run(
            create_api_app(service),
            host=settings.api_host,
            port=settings.api_port,
            log_level=log_level,
        )
    finally:
        service.stop()
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

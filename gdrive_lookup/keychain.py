"""
keychain.py - Secure credential storage for Google Drive Lookup.

Secrets (OAuth client secret, service-account key JSON, static service
token) live in the macOS login Keychain via the 'security' CLI, or in the
'keyring' library's backend elsewhere. Environment variables override
stored values so containers can inject secrets without a keyring backend.

Storage failures are logged and reported as None/False, never raised.
"""

import logging
import os
import platform
import re
import subprocess

log = logging.getLogger(__name__)

_SERVICE = "GDrive-Lookup"

OAUTH_CLIENT_SECRET = "oauth-client-secret"
SERVICE_ACCOUNT_KEY = "service-account-key"
SERVICE_ACCESS_TOKEN = "service-access-token"

SECRET_NAMES = (OAUTH_CLIENT_SECRET, SERVICE_ACCOUNT_KEY, SERVICE_ACCESS_TOKEN)

ENV_OVERRIDES = {
    OAUTH_CLIENT_SECRET: "GDRIVE_LOOKUP_OAUTH_CLIENT_SECRET",
    SERVICE_ACCOUNT_KEY: "GDRIVE_LOOKUP_SERVICE_ACCOUNT_KEY",
    SERVICE_ACCESS_TOKEN: "GDRIVE_LOOKUP_SERVICE_TOKEN",
}

_IS_MACOS = platform.system() == "Darwin"


def _account(name: str) -> str:
    acct = re.sub(r"[^a-z0-9._-]+", "-", str(name or "").strip().lower()).strip("-")
    if not acct:
        raise ValueError("secret name is required")
    return acct


def _security(action: str, account: str, *extra: str) -> subprocess.CompletedProcess | None:
    """Run ``security <action>-generic-password`` for our service/account."""
    cmd = ["security", f"{action}-generic-password", "-s", _SERVICE, "-a", account, *extra]
    try:
        return subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError:
        log.warning("'security' CLI not found")
    except Exception as exc:
        log.warning("Keychain %s error: %s", action, exc)
    return None


def _keyring(op: str, *args: str):
    """Call ``keyring.<op>_password`` for our service; (ok, result)."""
    try:
        import keyring as kr

        return True, getattr(kr, f"{op}_password")(_SERVICE, *args)
    except Exception as exc:
        log.warning("keyring %s error: %s", op, exc)
        return False, None


def store_secret(name: str, value: str) -> bool:
    """Save *value* under *name*. Blank values are refused."""
    account = _account(name)
    secret = str(value or "").strip()
    if not secret:
        return False
    if _IS_MACOS:
        # -U updates an existing item in place
        result = _security("add", account, "-w", secret, "-U")
        if result is not None and result.returncode != 0:
            log.warning("Keychain store failed: %s", result.stderr.strip())
        return result is not None and result.returncode == 0
    ok, _ = _keyring("set", account, secret)
    return ok


def load_secret(name: str) -> str | None:
    """Environment override first, then secure storage."""
    account = _account(name)
    env_var = ENV_OVERRIDES.get(name)
    if env_var:
        env_value = os.environ.get(env_var, "").strip()
        if env_value:
            return env_value
    if _IS_MACOS:
        result = _security("find", account, "-w")
        if result is None or result.returncode != 0:
            return None
        return result.stdout.strip() or None
    _ok, value = _keyring("get", account)
    return value or None


def delete_secret(name: str) -> bool:
    account = _account(name)
    if _IS_MACOS:
        result = _security("delete", account)
        return result is not None and result.returncode == 0
    ok, _ = _keyring("delete", account)
    return ok

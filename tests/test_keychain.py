"""Tests for secret storage on the keyring and macOS Keychain paths."""

import subprocess
from unittest.mock import patch

import pytest

from gdrive_lookup import keychain


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def no_env(monkeypatch):
    for env_var in keychain.ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)


class TestKeyring:
    @pytest.fixture(autouse=True)
    def _linux(self, monkeypatch, no_env):
        monkeypatch.setattr(keychain, "_IS_MACOS", False)

    def test_store_load_delete(self):
        with patch("keyring.set_password") as set_password:
            assert keychain.store_secret(keychain.SERVICE_ACCOUNT_KEY, ' {"type": "service_account"} ')
        set_password.assert_called_once_with("GDrive-Lookup", "service-account-key", '{"type": "service_account"}')

        with patch("keyring.get_password", return_value="stored") as get_password:
            assert keychain.load_secret(keychain.OAUTH_CLIENT_SECRET) == "stored"
        get_password.assert_called_once_with("GDrive-Lookup", "oauth-client-secret")

        with patch("keyring.delete_password") as delete_password:
            assert keychain.delete_secret(keychain.SERVICE_ACCESS_TOKEN)
        delete_password.assert_called_once_with("GDrive-Lookup", "service-access-token")

    def test_backend_errors_are_reported_not_raised(self):
        with patch("keyring.set_password", side_effect=RuntimeError("no backend")):
            assert keychain.store_secret(keychain.SERVICE_ACCESS_TOKEN, "t") is False
        with patch("keyring.get_password", side_effect=RuntimeError("no backend")):
            assert keychain.load_secret(keychain.SERVICE_ACCESS_TOKEN) is None

    def test_missing_secret_is_none(self):
        with patch("keyring.get_password", return_value=None):
            assert keychain.load_secret(keychain.SERVICE_ACCOUNT_KEY) is None

    def test_blank_secret_is_not_stored(self):
        with patch("keyring.set_password") as set_password:
            assert keychain.store_secret(keychain.SERVICE_ACCESS_TOKEN, "  ") is False
        set_password.assert_not_called()


class TestMacKeychain:
    @pytest.fixture(autouse=True)
    def _macos(self, monkeypatch, no_env):
        monkeypatch.setattr(keychain, "_IS_MACOS", True)

    def test_store_updates_in_place(self):
        with patch("subprocess.run", return_value=_completed()) as run:
            assert keychain.store_secret(keychain.OAUTH_CLIENT_SECRET, "s3cret")

        cmd = run.call_args.args[0]
        assert cmd[:2] == ["security", "add-generic-password"]
        assert cmd[cmd.index("-s") + 1] == "GDrive-Lookup"
        assert cmd[cmd.index("-a") + 1] == "oauth-client-secret"
        assert cmd[cmd.index("-w") + 1] == "s3cret"
        assert cmd[-1] == "-U"

    def test_store_failure(self):
        with patch("subprocess.run", return_value=_completed(returncode=45, stderr="denied")):
            assert keychain.store_secret(keychain.OAUTH_CLIENT_SECRET, "s3cret") is False

    def test_load(self):
        with patch("subprocess.run", return_value=_completed(stdout="token\n")) as run:
            assert keychain.load_secret(keychain.SERVICE_ACCESS_TOKEN) == "token"
        assert run.call_args.args[0][1] == "find-generic-password"

    def test_load_missing_item(self):
        with patch("subprocess.run", return_value=_completed(returncode=44)):
            assert keychain.load_secret(keychain.SERVICE_ACCESS_TOKEN) is None

    def test_missing_security_cli(self):
        with patch("subprocess.run", side_effect=FileNotFoundError("security")):
            assert keychain.load_secret(keychain.SERVICE_ACCESS_TOKEN) is None
            assert keychain.delete_secret(keychain.SERVICE_ACCESS_TOKEN) is False

    def test_delete(self):
        with patch("subprocess.run", return_value=_completed()) as run:
            assert keychain.delete_secret(keychain.SERVICE_ACCOUNT_KEY)
        assert run.call_args.args[0][1] == "delete-generic-password"


def test_environment_override_wins(monkeypatch):
    monkeypatch.setenv("GDRIVE_LOOKUP_SERVICE_ACCOUNT_KEY", "from-env")
    with patch("subprocess.run") as run, patch("keyring.get_password") as get_password:
        assert keychain.load_secret(keychain.SERVICE_ACCOUNT_KEY) == "from-env"
    run.assert_not_called()
    get_password.assert_not_called()


def test_secret_name_is_required():
    with pytest.raises(ValueError):
        keychain.store_secret("", "value")

"""
errors.py - Error records and exception types for Google Drive Lookup.

Capability failures (Drive API, text extraction, OAuth exchange) are turned
into an ``ErrorRecord`` where they are caught so that provider-specific
exception objects never travel past the lookup core.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ErrorRecord:
    kind: str
    message: str
    code: int | None = None
    cause: str | None = None

    @classmethod
    def from_exception(cls, kind: str, exc: BaseException, *, message: str | None = None) -> "ErrorRecord":
        code = getattr(exc, "status_code", None)
        try:
            code = int(code) if code is not None else None
        except (TypeError, ValueError):
            code = None
        return cls(
            kind=kind,
            message=message or str(exc) or type(exc).__name__,
            code=code,
            cause=f"{type(exc).__name__}: {exc}",
        )

    def detail(self) -> str:
        """Human-readable one-liner: ``message - cause, Code: N``."""
        text = self.message
        if self.cause and self.cause not in text:
            text = f"{text} - {self.cause}"
        if self.code is not None:
            text = f"{text}, Code: {self.code}"
        return text

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.code is not None:
            data["code"] = self.code
        if self.cause:
            data["cause"] = self.cause
        return data


class GDriveLookupError(Exception):
    """Base class for lookup errors."""


class ValidationError(GDriveLookupError, ValueError):
    """Raised when lookup options are invalid; carries ``[{key, message}]``."""

    def __init__(self, errors: list[dict[str, str]]):
        self.errors = list(errors)
        msg = "; ".join(e.get("message", "") for e in self.errors) or "invalid options"
        super().__init__(msg)


class ProviderError(GDriveLookupError):
    """A storage provider call failed."""

    def __init__(self, message: str, *, status_code: int | None = None, cause: BaseException | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.cause = cause

    @property
    def is_auth_error(self) -> bool:
        return self.status_code == 401


class AuthExchangeError(GDriveLookupError):
    """Exchanging an authorization code for tokens failed."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SearchError(GDriveLookupError):
    """A top-level query failed; the whole lookup call is aborted."""

    def __init__(self, record: ErrorRecord, detail: str = ""):
        self.record = record
        self.detail = detail or record.message
        super().__init__(self.detail)

    def to_dict(self) -> dict[str, Any]:
        return {
            "errors": [
                {
                    "title": self.record.message,
                    "detail": f"{self.detail} - {self.record.detail()}",
                    "code": self.record.code,
                    "err": self.record.to_dict(),
                }
            ]
        }

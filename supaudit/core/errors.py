from __future__ import annotations

import traceback
from typing import Any


class AuditError(Exception):
    """Base error for supaudit."""


class ConfigurationError(AuditError):
    """Missing or invalid operator configuration."""


class MissingCredentialError(ConfigurationError):
    """A call needs a credential the operator did not supply."""


class PlatformError(AuditError):
    """Failure talking to the hosted platform."""

    def __init__(self, message: str, *, status_code: int | None = None, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PermissionDeniedError(PlatformError):
    """Data-plane read was refused for the current key."""


class DataPlaneError(PlatformError):
    """Data-plane failure other than a permission denial (timeouts included)."""


class ControlPlaneError(PlatformError):
    """Management API returned non-2xx, timed out, or sent malformed JSON."""


class ProbeUnavailableError(AuditError):
    """An RLS probe could not produce a confident answer."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = dict(details or {})


class SuggestionError(AuditError):
    """Suggestion provider request failure."""


class SuggestionConfigError(SuggestionError):
    """Suggestion provider configuration missing required fields."""


def error_details(exc: BaseException) -> dict[str, Any]:
    # Preserve the raw error for operator diagnosis in error verdicts.
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    details: dict[str, Any] = {"message": str(exc), "name": type(exc).__name__, "stack": stack}
    status_code = getattr(exc, "status_code", None)
    if status_code is not None:
        details["status_code"] = status_code
    return details

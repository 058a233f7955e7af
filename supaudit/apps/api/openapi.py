from __future__ import annotations

from typing import Any

from supaudit.apps.api.response import API_VERSION, ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": API_VERSION},
    }
    if details:
        payload["error"]["details"] = details
    return payload


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {
        "model": ErrorEnvelope,
        "description": "Bad request",
        "content": {
            "application/json": {
                "example": _error_example(
                    code="CONFIGURATION_ERROR",
                    message="Missing required credentials: data_plane_key",
                ),
            }
        },
    },
    422: {
        "model": ErrorEnvelope,
        "description": "Validation error",
        "content": {
            "application/json": {
                "example": _error_example(
                    code="REQUEST_VALIDATION_ERROR",
                    message="Validation error",
                    details={"errors": [{"loc": ["body", "endpoint_url"], "msg": "Field required"}]},
                ),
            }
        },
    },
    500: {
        "model": ErrorEnvelope,
        "description": "Internal error",
        "content": {
            "application/json": {
                "example": _error_example(code="INTERNAL_ERROR", message="Internal server error"),
            }
        },
    },
}

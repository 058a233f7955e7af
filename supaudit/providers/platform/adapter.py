from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Mapping

import httpx

from supaudit.core.config import AuditConfig, get_settings
from supaudit.core.errors import (
    ConfigurationError,
    ControlPlaneError,
    DataPlaneError,
    MissingCredentialError,
    PermissionDeniedError,
    PlatformError,
)
from supaudit.services.resilience import RetryPolicy, default_retry_policy, retry_async
from supaudit.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

# Postgres insufficient_privilege, surfaced verbatim by the REST layer.
_PG_INSUFFICIENT_PRIVILEGE = "42501"
_PERMISSION_MARKERS = ("permission", "authorization", "row level security", "row-level security")


def _error_text(payload: Any) -> str:
    if isinstance(payload, dict):
        parts = [str(payload.get(key) or "") for key in ("message", "msg", "error", "details", "hint")]
        return " ".join(part for part in parts if part)
    if payload is None:
        return ""
    return str(payload)


def is_permission_denied(status_code: int | None, payload: Any) -> bool:
    """Classify a data-plane failure as a permission denial.

    403 is always a denial. Other statuses count only when the body carries
    the Postgres privilege code or a permission-related message, so an
    invalid key (401 "Invalid API key") is not mistaken for enforced RLS.
    """
    if status_code == 403:
        return True
    if isinstance(payload, dict) and str(payload.get("code") or "") == _PG_INSUFFICIENT_PRIVILEGE:
        return True
    text = _error_text(payload).lower()
    return any(marker in text for marker in _PERMISSION_MARKERS)


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class PlatformAdapter:
    """Authenticated access to a hosted project's data plane and control plane.

    Failures are raised as typed errors: ``PermissionDeniedError`` and
    ``DataPlaneError`` for data-plane calls, ``ControlPlaneError`` for
    management calls, ``MissingCredentialError`` when no control-plane key
    was supplied. Timeouts surface as the plane's generic error type.
    """

    def __init__(
        self,
        config: AuditConfig,
        *,
        client: httpx.AsyncClient | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        self._config = config
        self._settings = get_settings()
        self._client = client
        self._owns_client = client is None
        self._policy = policy or default_retry_policy()

    @property
    def config(self) -> AuditConfig:
        return self._config

    @property
    def has_control_plane(self) -> bool:
        return self._config.has_control_plane

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per adapter for connection pooling.
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "PlatformAdapter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.aclose()
        return False

    def _data_plane_headers(self, schema: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._config.data_plane_key,
            "Authorization": f"Bearer {self._config.data_plane_key}",
            "Accept": "application/json",
        }
        if schema:
            # Non-public schemas are selected through profile headers.
            headers["Accept-Profile"] = schema
            headers["Content-Profile"] = schema
        return headers

    async def _data_plane(
        self,
        method: str,
        path: str,
        *,
        integration: str,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        schema: str | None = None,
    ) -> Any:
        url = f"{self._config.endpoint_url}/{path.lstrip('/')}"
        headers = self._data_plane_headers(schema)
        client = self._get_client()

        async def _call() -> Any:
            response = await client.request(method, url, params=params, json=json, headers=headers)
            if response.status_code >= 400:
                body = _decode_body(response)
                error_cls = (
                    PermissionDeniedError if is_permission_denied(response.status_code, body) else DataPlaneError
                )
                raise error_cls(
                    f"{integration} request failed: {response.status_code} {_error_text(body)}".strip(),
                    status_code=response.status_code,
                    body=body,
                )
            try:
                return response.json()
            except ValueError as exc:
                raise DataPlaneError(f"{integration} returned malformed JSON", status_code=response.status_code) from exc

        start = time.monotonic()
        try:
            result = await retry_async(_call, policy=self._policy)
        except PlatformError as exc:
            record_external_call(integration=integration, latency_ms=(time.monotonic() - start) * 1000.0, success=False)
            logger.debug("data_plane_call_failed integration=%s status=%s", integration, exc.status_code)
            raise
        except (httpx.HTTPError, asyncio.TimeoutError, TimeoutError, OSError) as exc:
            record_external_call(integration=integration, latency_ms=(time.monotonic() - start) * 1000.0, success=False)
            raise DataPlaneError(f"{integration} request failed: {type(exc).__name__} {exc}".strip()) from exc
        record_external_call(integration=integration, latency_ms=(time.monotonic() - start) * 1000.0, success=True)
        return result

    async def query_rows(self, table: str, limit: int = 1, *, schema: str | None = None) -> list[dict[str, Any]]:
        rows = await self._data_plane(
            "GET",
            f"rest/v1/{table}",
            integration="data_plane.rows",
            params={"select": "*", "limit": str(limit)},
            schema=schema,
        )
        return rows if isinstance(rows, list) else [rows]

    async def query_catalog(
        self,
        view: str,
        predicate: Mapping[str, Any],
        *,
        select: str = "*",
        schema: str = "pg_catalog",
    ) -> list[dict[str, Any]]:
        params: dict[str, str] = {"select": select}
        for column, value in predicate.items():
            params[column] = f"eq.{value}"
        rows = await self._data_plane(
            "GET",
            f"rest/v1/{view}",
            integration="data_plane.catalog",
            params=params,
            schema=schema,
        )
        return rows if isinstance(rows, list) else [rows]

    async def call_rpc(self, function: str, params: Mapping[str, Any] | None = None) -> Any:
        return await self._data_plane(
            "POST",
            f"rest/v1/rpc/{function}",
            integration="data_plane.rpc",
            json=dict(params or {}),
        )

    async def list_auth_users(self, *, page: int = 1, per_page: int | None = None) -> list[dict[str, Any]]:
        payload = await self._data_plane(
            "GET",
            "auth/v1/admin/users",
            integration="auth.admin",
            params={"page": str(page), "per_page": str(per_page or self._settings.mfa_users_page_size)},
        )
        if isinstance(payload, dict):
            users = payload.get("users")
            if isinstance(users, list):
                return users
        if isinstance(payload, list):
            return payload
        raise DataPlaneError("auth.admin returned an unexpected payload shape", body=payload)

    def _control_plane_url(self, path: str) -> str:
        if self._config.control_plane_key is None:
            raise MissingCredentialError("Missing required control-plane key")
        project_ref = self._config.project_ref
        if not project_ref:
            raise ConfigurationError(
                f"Invalid project URL; unable to extract project reference from {self._config.endpoint_url!r}"
            )
        base = self._settings.control_plane_base_url.rstrip("/")
        return f"{base}/projects/{project_ref}/{path.lstrip('/')}"

    async def call_control_plane(self, path: str) -> Any:
        url = self._control_plane_url(path)
        headers = {
            "Authorization": f"Bearer {self._config.control_plane_key}",
            "Content-Type": "application/json",
        }
        client = self._get_client()

        async def _call() -> Any:
            response = await client.get(url, headers=headers)
            if response.status_code >= 400:
                body = _decode_body(response)
                raise ControlPlaneError(
                    f"Management API call failed: {response.status_code} {response.reason_phrase}. {_error_text(body)}".strip(),
                    status_code=response.status_code,
                    body=body,
                )
            try:
                return response.json()
            except ValueError as exc:
                raise ControlPlaneError(
                    "Management API returned malformed JSON", status_code=response.status_code
                ) from exc

        start = time.monotonic()
        try:
            result = await retry_async(_call, policy=self._policy)
        except ControlPlaneError:
            record_external_call(integration="control_plane", latency_ms=(time.monotonic() - start) * 1000.0, success=False)
            raise
        except (httpx.HTTPError, asyncio.TimeoutError, TimeoutError, OSError) as exc:
            record_external_call(integration="control_plane", latency_ms=(time.monotonic() - start) * 1000.0, success=False)
            raise ControlPlaneError(f"Management API call failed: {type(exc).__name__} {exc}".strip()) from exc
        record_external_call(integration="control_plane", latency_ms=(time.monotonic() - start) * 1000.0, success=True)
        return result

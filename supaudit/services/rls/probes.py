"""RLS probe strategies, from most to least authoritative.

1. ``ControlPlanePolicyProbe`` answers for the whole run from the
   management API's table and policy lists.
2. ``CatalogProbe`` reads the row-security flag for one table, first from the
   ``pg_tables`` view and then from the ``list_table_rls()`` helper function.
3. ``PermissionHeuristicProbe`` reads one row and infers the status from
   the outcome. It never raises on platform errors.

Probes 1 and 2 raise ``ProbeUnavailableError`` when they cannot answer;
a negative answer is still an answer and is never escalated.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Any, Iterable

from supaudit.core.config import get_settings
from supaudit.core.errors import AuditError, PermissionDeniedError, PlatformError, ProbeUnavailableError
from supaudit.domain.models import (
    SOURCE_CATALOG,
    SOURCE_CATALOG_RPC,
    SOURCE_CONTROL_PLANE,
    SOURCE_HEURISTIC,
    TableRlsResult,
)
from supaudit.providers.platform.base import PlatformClient


logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = "public"
LIST_TABLE_RLS_FUNCTION = "list_table_rls"
CATALOG_TABLES_VIEW = "pg_tables"

HEURISTIC_DENIED_NOTE = "Read denied for the current key; RLS inferred enabled (heuristic, may not be accurate)."
HEURISTIC_READ_NOTE = "RLS status determined by fallback read probe: read succeeded ({rows} rows). May not be accurate."
HEURISTIC_EMPTY_READ_NOTE = (
    "RLS status determined by fallback read probe: read succeeded but returned no rows; "
    "an empty table and row filtering look the same. May not be accurate."
)
HEURISTIC_OTHER_ERROR_NOTE = (
    "RLS status unknown: read failed with a non-permission error ({error}). "
    "Reported as disabled for operator review."
)


def split_table_identifier(identifier: str) -> tuple[str, str]:
    # Unqualified names live in the public schema.
    schema, dot, name = identifier.strip().rpartition(".")
    if not dot:
        return DEFAULT_SCHEMA, name
    return schema or DEFAULT_SCHEMA, name


@dataclass(frozen=True)
class ControlPlaneResolution:
    results: dict[str, TableRlsResult]
    tables_not_found: list[str] = field(default_factory=list)
    tables_available: list[str] = field(default_factory=list)


def _as_list(payload: Any, what: str) -> list[dict[str, Any]]:
    if not isinstance(payload, list):
        raise ProbeUnavailableError(f"Management API returned a non-list {what} payload")
    return [item for item in payload if isinstance(item, dict)]


class ControlPlanePolicyProbe:
    """Treats a table as RLS-enabled iff at least one policy is attached.

    A table with RLS on but no policies, or RLS off with stray policies, is
    misreported by this probe. That gap is accepted rather than papered over.
    """

    source = SOURCE_CONTROL_PLANE

    async def resolve(self, client: PlatformClient, tables: Iterable[str]) -> ControlPlaneResolution:
        requested = list(tables)
        try:
            table_rows = _as_list(await client.call_control_plane("database/tables"), "tables")
        except AuditError as exc:
            raise ProbeUnavailableError(f"Failed to retrieve tables: {exc}") from exc

        available: set[tuple[str, str]] = set()
        for row in table_rows:
            if row.get("type", "table") != "table":
                continue
            available.add((str(row.get("schema") or DEFAULT_SCHEMA), str(row.get("name") or "")))

        found = [table for table in requested if split_table_identifier(table) in available]
        not_found = [table for table in requested if table not in found]
        tables_available = sorted(f"{schema}.{name}" for schema, name in available)
        if not found:
            raise ProbeUnavailableError(
                "None of the specified tables were found in the control-plane table list",
                details={"tables_available": tables_available},
            )

        try:
            policy_rows = _as_list(await client.call_control_plane("database/policies"), "policies")
        except AuditError as exc:
            raise ProbeUnavailableError(f"Failed to retrieve policies: {exc}") from exc

        with_policy = {
            (str(row.get("schema") or DEFAULT_SCHEMA), str(row.get("table") or "")) for row in policy_rows
        }
        results = {
            table: TableRlsResult(
                table=table,
                rls_enabled=split_table_identifier(table) in with_policy,
                source=self.source,
            )
            for table in found
        }
        logger.info("rls_control_plane_resolved found=%s not_found=%s", len(found), len(not_found))
        return ControlPlaneResolution(
            results=results,
            tables_not_found=not_found,
            tables_available=tables_available,
        )


class CatalogProbe:
    """Reads the catalog's row-security flag for one table.

    Succeeds only when the data-plane key can see catalog data, either
    through the catalog view or the security-definer helper function.
    """

    def __init__(self) -> None:
        # The helper function lists every public table; fetch it once per probe instance.
        self._helper_rows: list[Any] | None = None
        self._helper_lock = asyncio.Lock()

    async def _helper_listing(self, client: PlatformClient) -> list[Any]:
        async with self._helper_lock:
            if self._helper_rows is None:
                rows = await client.call_rpc(LIST_TABLE_RLS_FUNCTION)
                if not isinstance(rows, list):
                    raise ProbeUnavailableError(f"{LIST_TABLE_RLS_FUNCTION}() returned a non-list payload")
                self._helper_rows = rows
            return self._helper_rows

    async def _from_catalog_view(self, client: PlatformClient, table: str) -> TableRlsResult:
        # Same-named tables exist across schemas (auth.users vs public.users); match both parts.
        schema, name = split_table_identifier(table)
        rows = await client.query_catalog(
            CATALOG_TABLES_VIEW,
            {"schemaname": schema, "tablename": name},
            select="schemaname,tablename,rowsecurity",
        )
        if not isinstance(rows, list):
            raise ProbeUnavailableError(f"{CATALOG_TABLES_VIEW} returned a non-list payload")
        for row in rows:
            if not isinstance(row, dict):
                continue
            if (row.get("schemaname"), row.get("tablename")) != (schema, name):
                continue
            if isinstance(row.get("rowsecurity"), bool):
                return TableRlsResult(table=table, rls_enabled=row["rowsecurity"], source=SOURCE_CATALOG)
        raise ProbeUnavailableError(f"{CATALOG_TABLES_VIEW} has no row for {schema}.{name}")

    async def _from_helper_function(self, client: PlatformClient, table: str) -> TableRlsResult:
        schema, name = split_table_identifier(table)
        if schema != DEFAULT_SCHEMA:
            raise ProbeUnavailableError(f"{LIST_TABLE_RLS_FUNCTION}() only covers the {DEFAULT_SCHEMA} schema")
        for row in await self._helper_listing(client):
            if isinstance(row, dict) and row.get("table_name") == name and isinstance(row.get("rls_enabled"), bool):
                forced = row.get("rls_forced")
                return TableRlsResult(
                    table=table,
                    rls_enabled=row["rls_enabled"],
                    source=SOURCE_CATALOG_RPC,
                    rls_forced=forced if isinstance(forced, bool) else None,
                )
        raise ProbeUnavailableError(f"{LIST_TABLE_RLS_FUNCTION}() has no row for {table}")

    async def resolve_table(self, client: PlatformClient, table: str) -> TableRlsResult:
        reasons: list[str] = []
        for attempt in (self._from_catalog_view, self._from_helper_function):
            try:
                return await attempt(client, table)
            except (PlatformError, ProbeUnavailableError) as exc:
                reasons.append(str(exc))
        raise ProbeUnavailableError(f"catalog unavailable for {table}: " + "; ".join(reasons))


class PermissionHeuristicProbe:
    """Last resort: infer RLS from whether a one-row read is refused.

    Denied reads mean enabled. Successful reads and unrelated errors both
    mean disabled, tagged differently so an error such as a missing table
    is never hidden behind a plain "disabled".
    """

    source = SOURCE_HEURISTIC

    def __init__(self, sample_limit: int | None = None) -> None:
        self._limit = sample_limit or get_settings().heuristic_sample_limit

    async def resolve_table(self, client: PlatformClient, table: str) -> TableRlsResult:
        schema, name = split_table_identifier(table)
        try:
            rows = await client.query_rows(name, self._limit, schema=None if schema == DEFAULT_SCHEMA else schema)
        except PermissionDeniedError:
            return TableRlsResult(table=table, rls_enabled=True, source=self.source, error=HEURISTIC_DENIED_NOTE)
        except PlatformError as exc:
            logger.warning("rls_heuristic_other_error table=%s error=%s", table, type(exc).__name__)
            return TableRlsResult(
                table=table,
                rls_enabled=False,
                source=self.source,
                error=HEURISTIC_OTHER_ERROR_NOTE.format(error=exc),
            )
        note = HEURISTIC_READ_NOTE.format(rows=len(rows)) if rows else HEURISTIC_EMPTY_READ_NOTE
        return TableRlsResult(table=table, rls_enabled=False, source=self.source, error=note)

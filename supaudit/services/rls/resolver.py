from __future__ import annotations

import asyncio
from functools import partial
import logging
from typing import Any, Iterable

from supaudit.core.errors import ProbeUnavailableError, error_details
from supaudit.domain.models import (
    STATUS_ERROR,
    STATUS_FAIL,
    STATUS_PASS,
    CheckVerdict,
    TableRlsResult,
)
from supaudit.providers.platform.base import PlatformClient
from supaudit.services.resilience import Bulkhead, get_probe_bulkhead
from supaudit.services.rls.probes import (
    CatalogProbe,
    ControlPlanePolicyProbe,
    PermissionHeuristicProbe,
)
from supaudit.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

NO_TABLES_MESSAGE = "No tables provided for RLS check. Please specify tables to check."

PROBE_CONTROL_PLANE = "control_plane"
PROBE_PER_TABLE = "per_table"


def _normalize_tables(tables: Iterable[str] | None) -> list[str]:
    # Preserve operator order; duplicates and blanks collapse.
    seen: dict[str, None] = {}
    for table in tables or ():
        name = str(table).strip()
        if name:
            seen.setdefault(name, None)
    return list(seen)


class RlsResolver:
    """Resolve RLS status for an explicit table list.

    The control-plane probe runs once for the whole run. Tables it cannot
    answer for go through the catalog probe and then the heuristic probe,
    concurrently across tables under a bulkhead.
    """

    def __init__(
        self,
        *,
        control_plane_probe: ControlPlanePolicyProbe | None = None,
        catalog_probe: CatalogProbe | None = None,
        heuristic_probe: PermissionHeuristicProbe | None = None,
        bulkhead: Bulkhead | None = None,
    ) -> None:
        self._control_plane_probe = control_plane_probe or ControlPlanePolicyProbe()
        self._catalog_probe = catalog_probe or CatalogProbe()
        self._heuristic_probe = heuristic_probe or PermissionHeuristicProbe()
        self._bulkhead = bulkhead

    async def _resolve_table(self, client: PlatformClient, table: str) -> TableRlsResult:
        try:
            return await self._catalog_probe.resolve_table(client, table)
        except ProbeUnavailableError as exc:
            increment_counter("rls_probe_fallback_total")
            logger.info("rls_probe_fallback table=%s probe=heuristic reason=%s", table, exc)
        return await self._heuristic_probe.resolve_table(client, table)

    async def resolve(self, tables: Iterable[str] | None, client: PlatformClient) -> CheckVerdict:
        requested = _normalize_tables(tables)
        if not requested:
            logger.error("rls_check_no_tables")
            return CheckVerdict(
                status=STATUS_ERROR,
                message=NO_TABLES_MESSAGE,
                details={"error": "Missing required parameter: tables to check"},
            )

        results: dict[str, TableRlsResult] = {}
        details: dict[str, Any] = {"probe": PROBE_PER_TABLE}
        try:
            if client.has_control_plane:
                try:
                    resolution = await self._control_plane_probe.resolve(client, requested)
                except ProbeUnavailableError as exc:
                    increment_counter("rls_probe_fallback_total")
                    logger.warning("rls_control_plane_unavailable reason=%s", exc)
                    details["control_plane_error"] = str(exc)
                    details.update(exc.details)
                else:
                    results.update(resolution.results)
                    details["probe"] = PROBE_CONTROL_PLANE
                    if resolution.tables_not_found:
                        details["tables_not_found"] = resolution.tables_not_found
                        details["tables_available"] = resolution.tables_available

            pending = [table for table in requested if table not in results]
            failures = await self._resolve_pending(client, pending, results)
        except Exception as exc:  # noqa: BLE001 - the check is the error boundary
            logger.exception("rls_check_failed")
            return self._error_verdict(f"Failed to check RLS: {exc}", requested, results, details, [error_details(exc)])

        if failures:
            message = f"Failed to check RLS for {len(failures)} of {len(requested)} tables"
            return self._error_verdict(message, requested, results, details, failures)
        return self._verdict(requested, results, details)

    async def _resolve_pending(
        self,
        client: PlatformClient,
        pending: list[str],
        results: dict[str, TableRlsResult],
    ) -> list[dict[str, Any]]:
        if not pending:
            return []
        bulkhead = self._bulkhead or get_probe_bulkhead()
        outcomes = await asyncio.gather(
            *(bulkhead.run(partial(self._resolve_table, client, table)) for table in pending),
            return_exceptions=True,
        )
        failures: list[dict[str, Any]] = []
        for table, outcome in zip(pending, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error("rls_table_resolution_failed table=%s error=%s", table, type(outcome).__name__)
                failures.append({"table": table, **error_details(outcome)})
                continue
            results[table] = outcome
        return failures

    def _table_payload(self, requested: list[str], results: dict[str, TableRlsResult]) -> list[dict[str, Any]]:
        return [results[table].to_dict() for table in requested if table in results]

    def _error_verdict(
        self,
        message: str,
        requested: list[str],
        results: dict[str, TableRlsResult],
        details: dict[str, Any],
        errors: list[dict[str, Any]],
    ) -> CheckVerdict:
        # Partial results stay attached for diagnosis.
        payload = dict(details)
        payload.update(
            {
                "tables_requested": requested,
                "tables_resolved": len(results),
                "table_results": self._table_payload(requested, results),
                "errors": errors,
            }
        )
        return CheckVerdict(status=STATUS_ERROR, message=message, details=payload)

    def _verdict(
        self,
        requested: list[str],
        results: dict[str, TableRlsResult],
        details: dict[str, Any],
    ) -> CheckVerdict:
        ordered = [results[table] for table in requested]
        disabled = [result.table for result in ordered if result.rls_disabled]
        payload = dict(details)
        payload.update(
            {
                "tables_checked": len(ordered),
                "tables_checked_list": requested,
                "table_results": [result.to_dict() for result in ordered],
            }
        )
        if not disabled:
            return CheckVerdict(
                status=STATUS_PASS,
                message=f"RLS enabled for all {len(ordered)} tables checked.",
                details=payload,
            )
        failing_tables = ", ".join(disabled)
        payload["tables_without_rls"] = disabled
        payload["failing_tables"] = failing_tables
        return CheckVerdict(
            status=STATUS_FAIL,
            message=f"RLS not enabled for {len(disabled)} of {len(ordered)} tables: {failing_tables}",
            details=payload,
        )


async def check_rls(tables: Iterable[str] | None, client: PlatformClient) -> CheckVerdict:
    # Fresh probes per run keep probe selection independent of earlier runs.
    return await RlsResolver().resolve(tables, client)

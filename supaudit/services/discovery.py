from __future__ import annotations

from dataclasses import dataclass, field
import logging

from supaudit.core.errors import AuditError
from supaudit.providers.platform.base import PlatformClient


logger = logging.getLogger(__name__)

GET_TABLES_FUNCTION = "get_tables"

# Common tables holding personal data, probed when no listing is available.
TABLES_WITH_PII = (
    "users",
    "profiles",
    "customers",
    "orders",
    "payments",
    "accounts",
    "contacts",
    "subscriptions",
    "user_data",
    "auth_users",
)

METHOD_RPC = "rpc"
METHOD_INFORMATION_SCHEMA = "information_schema"
METHOD_PROBE = "probe"
METHOD_NONE = "none"


@dataclass(frozen=True)
class DiscoveryResult:
    tables: list[str]
    method: str
    attempts: list[str] = field(default_factory=list)


async def _from_rpc(client: PlatformClient) -> list[str]:
    rows = await client.call_rpc(GET_TABLES_FUNCTION)
    if not isinstance(rows, list):
        return []
    names = []
    for row in rows:
        if isinstance(row, str):
            names.append(row)
        elif isinstance(row, dict) and row.get("get_tables"):
            names.append(str(row["get_tables"]))
    return names


async def _from_information_schema(client: PlatformClient) -> list[str]:
    rows = await client.query_catalog(
        "tables",
        {"table_schema": "public", "table_type": "BASE TABLE"},
        select="table_name",
        schema="information_schema",
    )
    return [str(row["table_name"]) for row in rows if isinstance(row, dict) and row.get("table_name")]


async def _from_probing(client: PlatformClient) -> list[str]:
    existing = []
    for name in TABLES_WITH_PII:
        try:
            await client.query_rows(name, 1)
        except AuditError:
            continue
        existing.append(name)
    return existing


async def discover_tables(client: PlatformClient) -> DiscoveryResult:
    """Suggest public tables for the operator to audit.

    The result is a convenience only and is never fed to the RLS check
    without the operator choosing it.
    """
    attempts: list[str] = []
    for method, finder in (
        (METHOD_RPC, _from_rpc),
        (METHOD_INFORMATION_SCHEMA, _from_information_schema),
        (METHOD_PROBE, _from_probing),
    ):
        try:
            tables = await finder(client)
        except AuditError as exc:
            logger.info("table_discovery_method_failed method=%s error=%s", method, type(exc).__name__)
            attempts.append(f"{method}: {exc}")
            continue
        if tables:
            logger.info("table_discovery_complete method=%s tables=%s", method, len(tables))
            return DiscoveryResult(tables=sorted(set(tables)), method=method, attempts=attempts)
        attempts.append(f"{method}: no tables")
    return DiscoveryResult(tables=[], method=METHOD_NONE, attempts=attempts)

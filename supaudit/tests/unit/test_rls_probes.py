from __future__ import annotations

import pytest

from supaudit.core.errors import ControlPlaneError, ProbeUnavailableError
from supaudit.domain.models import (
    CONFIDENCE_HEURISTIC,
    CONFIDENCE_HIGH,
    CONFIDENCE_MEDIUM,
    SOURCE_CATALOG,
    SOURCE_CATALOG_RPC,
    SOURCE_CONTROL_PLANE,
    SOURCE_HEURISTIC,
)
from supaudit.services.rls.probes import (
    HEURISTIC_DENIED_NOTE,
    HEURISTIC_EMPTY_READ_NOTE,
    CatalogProbe,
    ControlPlanePolicyProbe,
    PermissionHeuristicProbe,
    split_table_identifier,
)
from supaudit.tests.utils.platform import (
    FakePlatformClient,
    control_plane_policies,
    control_plane_tables,
    denied,
    pg_tables_rows,
)


def test_split_table_identifier_defaults_to_public() -> None:
    assert split_table_identifier("orders") == ("public", "orders")
    assert split_table_identifier(" billing.invoices ") == ("billing", "invoices")
    assert split_table_identifier(".orders") == ("public", "orders")


@pytest.mark.asyncio
async def test_control_plane_probe_equates_policy_with_rls() -> None:
    client = FakePlatformClient(
        control_plane={
            "database/tables": control_plane_tables("orders", "profiles"),
            "database/policies": control_plane_policies("orders"),
        }
    )
    resolution = await ControlPlanePolicyProbe().resolve(client, ["orders", "profiles"])

    assert resolution.results["orders"].rls_enabled is True
    assert resolution.results["profiles"].rls_enabled is False
    assert resolution.results["orders"].source == SOURCE_CONTROL_PLANE
    assert resolution.results["orders"].confidence == CONFIDENCE_HIGH
    assert resolution.tables_not_found == []


@pytest.mark.asyncio
async def test_control_plane_probe_reports_tables_not_found() -> None:
    client = FakePlatformClient(
        control_plane={
            "database/tables": control_plane_tables("orders"),
            "database/policies": [],
        }
    )
    resolution = await ControlPlanePolicyProbe().resolve(client, ["orders", "ghosts"])

    assert set(resolution.results) == {"orders"}
    assert resolution.tables_not_found == ["ghosts"]
    assert resolution.tables_available == ["public.orders"]


@pytest.mark.asyncio
async def test_control_plane_probe_ignores_views_and_other_schemas() -> None:
    rows = control_plane_tables("orders", schema="billing") + [
        {"id": 9, "schema": "public", "name": "orders", "type": "view"},
    ]
    client = FakePlatformClient(control_plane={"database/tables": rows, "database/policies": []})

    with pytest.raises(ProbeUnavailableError) as exc_info:
        await ControlPlanePolicyProbe().resolve(client, ["orders"])
    assert exc_info.value.details == {"tables_available": ["billing.orders"]}
    # No policy fetch once the intersection is empty.
    assert ("control_plane", "database/policies") not in client.calls


@pytest.mark.asyncio
async def test_control_plane_probe_fails_on_http_error() -> None:
    client = FakePlatformClient(
        control_plane={
            "database/tables": control_plane_tables("orders"),
            "database/policies": ControlPlaneError("Management API call failed: 500", status_code=500),
        }
    )
    with pytest.raises(ProbeUnavailableError, match="Failed to retrieve policies"):
        await ControlPlanePolicyProbe().resolve(client, ["orders"])


@pytest.mark.asyncio
async def test_control_plane_probe_fails_without_key() -> None:
    client = FakePlatformClient()
    with pytest.raises(ProbeUnavailableError, match="Failed to retrieve tables"):
        await ControlPlanePolicyProbe().resolve(client, ["orders"])


@pytest.mark.asyncio
async def test_catalog_probe_reads_relrowsecurity() -> None:
    client = FakePlatformClient(catalog=pg_tables_rows(orders=True, profiles=False))
    probe = CatalogProbe()

    orders = await probe.resolve_table(client, "orders")
    profiles = await probe.resolve_table(client, "profiles")

    assert orders.rls_enabled is True
    assert profiles.rls_enabled is False
    assert orders.source == SOURCE_CATALOG
    assert orders.confidence == CONFIDENCE_MEDIUM
    assert orders.rls_forced is None
    assert client.calls_to("rows") == []
    assert client.calls_to("catalog")[0] == (
        "catalog",
        "pg_catalog",
        "pg_tables",
        {"schemaname": "public", "tablename": "orders"},
    )


@pytest.mark.asyncio
async def test_catalog_probe_distinguishes_same_named_tables_across_schemas() -> None:
    client = FakePlatformClient(catalog=pg_tables_rows("auth", users=True) + pg_tables_rows(users=False))
    probe = CatalogProbe()

    public_users = await probe.resolve_table(client, "users")
    auth_users = await probe.resolve_table(client, "auth.users")

    assert public_users.rls_enabled is False
    assert auth_users.rls_enabled is True


@pytest.mark.asyncio
async def test_catalog_probe_ignores_rows_from_other_schemas_in_the_response() -> None:
    class UnfilteredCatalog(FakePlatformClient):
        async def query_catalog(self, view, predicate, *, select="*", schema="pg_catalog"):
            self.calls.append(("catalog", schema, view, dict(predicate)))
            return pg_tables_rows("auth", users=True) + pg_tables_rows(users=False)

    result = await CatalogProbe().resolve_table(UnfilteredCatalog(), "users")
    assert result.rls_enabled is False


@pytest.mark.asyncio
async def test_catalog_probe_treats_malformed_rows_as_unavailable() -> None:
    client = FakePlatformClient(catalog=["unexpected", 42])
    with pytest.raises(ProbeUnavailableError, match="pg_tables has no row for public.orders"):
        await CatalogProbe().resolve_table(client, "orders")


@pytest.mark.asyncio
async def test_catalog_probe_falls_back_to_helper_function() -> None:
    client = FakePlatformClient(
        rpc={
            "list_table_rls": [
                {"table_name": "orders", "rls_enabled": True, "rls_forced": True},
                {"table_name": "profiles", "rls_enabled": False, "rls_forced": False},
            ]
        }
    )
    probe = CatalogProbe()

    orders = await probe.resolve_table(client, "orders")
    profiles = await probe.resolve_table(client, "profiles")

    assert orders.source == SOURCE_CATALOG_RPC
    assert orders.rls_enabled is True
    assert orders.rls_forced is True
    assert profiles.rls_enabled is False
    # The listing covers every public table, so it is fetched once.
    assert len(client.calls_to("rpc")) == 1


@pytest.mark.asyncio
async def test_catalog_probe_unavailable_when_both_sources_fail() -> None:
    client = FakePlatformClient()
    with pytest.raises(ProbeUnavailableError, match="catalog unavailable for orders"):
        await CatalogProbe().resolve_table(client, "orders")


@pytest.mark.asyncio
async def test_catalog_probe_helper_function_skips_other_schemas() -> None:
    client = FakePlatformClient(rpc={"list_table_rls": [{"table_name": "invoices", "rls_enabled": True}]})
    with pytest.raises(ProbeUnavailableError):
        await CatalogProbe().resolve_table(client, "billing.invoices")
    assert client.calls_to("rpc") == []


@pytest.mark.asyncio
async def test_heuristic_probe_permission_denied_means_enabled() -> None:
    client = FakePlatformClient(rows={"profiles": denied("profiles")})
    result = await PermissionHeuristicProbe().resolve_table(client, "profiles")

    assert result.rls_disabled is False
    assert result.source == SOURCE_HEURISTIC
    assert result.confidence == CONFIDENCE_HEURISTIC
    assert result.error == HEURISTIC_DENIED_NOTE


@pytest.mark.asyncio
async def test_heuristic_probe_successful_read_means_disabled() -> None:
    client = FakePlatformClient(rows={"orders": [{"id": 1}, {"id": 2}]})
    result = await PermissionHeuristicProbe().resolve_table(client, "orders")

    assert result.rls_disabled is True
    assert "read succeeded (1 rows)" in result.error
    assert "May not be accurate" in result.error
    assert client.calls_to("rows") == [("rows", "orders", 1)]


@pytest.mark.asyncio
async def test_heuristic_probe_empty_read_is_tagged_separately() -> None:
    client = FakePlatformClient(rows={"orders": []})
    result = await PermissionHeuristicProbe().resolve_table(client, "orders")

    assert result.rls_disabled is True
    assert result.error == HEURISTIC_EMPTY_READ_NOTE


@pytest.mark.asyncio
async def test_heuristic_probe_other_error_is_surfaced_not_hidden() -> None:
    client = FakePlatformClient()
    result = await PermissionHeuristicProbe().resolve_table(client, "missing_table")

    assert result.rls_disabled is True
    assert "non-permission error" in result.error
    assert "does not exist" in result.error


@pytest.mark.asyncio
async def test_heuristic_probe_reads_qualified_tables_in_their_schema() -> None:
    client = FakePlatformClient(rows={"billing.invoices": denied("invoices")})
    result = await PermissionHeuristicProbe().resolve_table(client, "billing.invoices")

    assert result.rls_enabled is True
    assert client.calls_to("rows") == [("rows", "billing.invoices", 1)]

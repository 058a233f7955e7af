from __future__ import annotations

from supaudit.services.rls.probes import (
    CatalogProbe,
    ControlPlanePolicyProbe,
    ControlPlaneResolution,
    PermissionHeuristicProbe,
    split_table_identifier,
)
from supaudit.services.rls.resolver import NO_TABLES_MESSAGE, RlsResolver, check_rls


__all__ = [
    "CatalogProbe",
    "ControlPlanePolicyProbe",
    "ControlPlaneResolution",
    "NO_TABLES_MESSAGE",
    "PermissionHeuristicProbe",
    "RlsResolver",
    "check_rls",
    "split_table_identifier",
]

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


STATUS_PENDING = "pending"
STATUS_PASS = "pass"
STATUS_FAIL = "fail"
STATUS_ERROR = "error"
# Evidence-only statuses for operator notes recorded around a run.
STATUS_INFO = "info"
STATUS_WARNING = "warning"

VERDICT_STATUSES = frozenset({STATUS_PENDING, STATUS_PASS, STATUS_FAIL, STATUS_ERROR})
TERMINAL_STATUSES = frozenset({STATUS_PASS, STATUS_FAIL, STATUS_ERROR})

CHECK_RLS = "RLS"
CHECK_MFA = "MFA"
CHECK_PITR = "PITR"

# Which probe produced a table's authoritative answer.
SOURCE_CONTROL_PLANE = "control_plane"
SOURCE_CATALOG = "catalog"
SOURCE_CATALOG_RPC = "catalog_rpc"
SOURCE_HEURISTIC = "heuristic"

CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_HEURISTIC = "heuristic"

SOURCE_CONFIDENCE = {
    SOURCE_CONTROL_PLANE: CONFIDENCE_HIGH,
    SOURCE_CATALOG: CONFIDENCE_MEDIUM,
    SOURCE_CATALOG_RPC: CONFIDENCE_MEDIUM,
    SOURCE_HEURISTIC: CONFIDENCE_HEURISTIC,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CheckVerdict:
    status: str
    message: str
    details: Any = None

    def __post_init__(self) -> None:
        if self.status not in VERDICT_STATUSES:
            raise ValueError(f"unknown verdict status: {self.status}")

    @classmethod
    def pending(cls, check_name: str) -> "CheckVerdict":
        return cls(status=STATUS_PENDING, message=f"{check_name} check pending...")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def passed(self) -> bool:
        return self.status == STATUS_PASS

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "message": self.message, "details": self.details}


@dataclass(frozen=True)
class TableRlsResult:
    """Outcome of RLS resolution for one requested table."""

    table: str
    rls_enabled: bool
    source: str
    error: str | None = None
    rls_forced: bool | None = None

    @property
    def rls_disabled(self) -> bool:
        return not self.rls_enabled

    @property
    def confidence(self) -> str:
        return SOURCE_CONFIDENCE.get(self.source, CONFIDENCE_HEURISTIC)

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "rlsEnabled": self.rls_enabled,
            "source": self.source,
            "confidence": self.confidence,
            "error": self.error,
            "rlsForced": self.rls_forced,
        }


@dataclass(frozen=True)
class UserMfaStatus:
    identity: str
    factor_count: int

    @property
    def mfa_enabled(self) -> bool:
        return self.factor_count > 0

    def to_dict(self) -> dict[str, Any]:
        return {"email": self.identity, "mfaEnabled": self.mfa_enabled, "factorCount": self.factor_count}


@dataclass(frozen=True)
class SubscriptionTier:
    tier: str

    @property
    def is_free(self) -> bool:
        return self.tier.strip().lower() == "free"


@dataclass(frozen=True)
class BackupConfig:
    pitr_enabled: bool
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EvidenceEntry:
    timestamp: str
    check_name: str
    status: str
    details: Any

    @classmethod
    def now(cls, check_name: str, status: str, details: Any) -> "EvidenceEntry":
        return cls(timestamp=utc_now().isoformat(), check_name=check_name, status=status, details=details)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "checkName": self.check_name,
            "status": self.status,
            "details": self.details,
        }

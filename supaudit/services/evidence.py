from __future__ import annotations

from collections import deque
import json
from pathlib import Path
from typing import Any, Deque, Iterable, Mapping

from supaudit.core.config import get_settings
from supaudit.domain.models import (
    CHECK_MFA,
    CHECK_PITR,
    CHECK_RLS,
    STATUS_INFO,
    STATUS_WARNING,
    CheckVerdict,
    EvidenceEntry,
    utc_now,
)


# Verdicts are logged in this order regardless of completion order.
CHECK_ORDER = (CHECK_MFA, CHECK_RLS, CHECK_PITR)


class EvidenceLog:
    """Append-only evidence trail owned by the caller.

    Entries are never mutated. ``clear`` exists only for explicit operator
    action; the oldest entries are dropped once ``max_entries`` is reached.
    """

    def __init__(self, max_entries: int | None = None) -> None:
        self._entries: Deque[EvidenceEntry] = deque(maxlen=max_entries or get_settings().evidence_max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: EvidenceEntry) -> None:
        self._entries.append(entry)

    def extend(self, entries: Iterable[EvidenceEntry]) -> None:
        self._entries.extend(entries)

    def entries(self) -> list[EvidenceEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def to_json(self, entries: Iterable[EvidenceEntry] | None = None) -> str:
        selected = self._entries if entries is None else entries
        return json.dumps([entry.to_dict() for entry in selected], indent=2, ensure_ascii=False)

    def write_json(self, path: str | Path) -> Path:
        target = Path(path)
        target.write_text(self.to_json(), encoding="utf-8")
        return target


def export_filename() -> str:
    return f"compliance-evidence-{utc_now().isoformat()}.json"


def table_input_entries(tables: Iterable[str], *, raw_input_given: bool) -> list[EvidenceEntry]:
    # Record what the operator asked the RLS check to cover before any check runs.
    names = [table for table in tables if table]
    if names:
        return [EvidenceEntry.now(CHECK_RLS, STATUS_INFO, f"Using custom tables for RLS check: {', '.join(names)}")]
    if raw_input_given:
        message = (
            "No valid table names found in custom tables input. "
            "Please enter comma-separated table names."
        )
    else:
        message = "No custom tables provided. Please specify tables to check for RLS."
    return [EvidenceEntry.now(CHECK_RLS, STATUS_WARNING, message)]


def verdict_entries(verdicts: Mapping[str, CheckVerdict]) -> list[EvidenceEntry]:
    """Merge check verdicts into evidence entries sharing one timestamp."""
    timestamp = utc_now().isoformat()
    ordered = [name for name in CHECK_ORDER if name in verdicts]
    ordered.extend(name for name in verdicts if name not in CHECK_ORDER)
    return [
        EvidenceEntry(
            timestamp=timestamp,
            check_name=name,
            status=verdicts[name].status,
            details=verdicts[name].message,
        )
        for name in ordered
    ]


def entries_payload(entries: Iterable[EvidenceEntry]) -> list[dict[str, Any]]:
    return [entry.to_dict() for entry in entries]

from __future__ import annotations

import json

from supaudit.domain.models import CheckVerdict, EvidenceEntry
from supaudit.services.evidence import (
    EvidenceLog,
    export_filename,
    table_input_entries,
    verdict_entries,
)


def test_verdict_entries_share_timestamp_and_follow_check_order() -> None:
    verdicts = {
        "PITR": CheckVerdict(status="fail", message="PITR off"),
        "RLS": CheckVerdict(status="pass", message="RLS on"),
        "MFA": CheckVerdict(status="error", message="MFA broke"),
    }
    entries = verdict_entries(verdicts)

    assert [entry.check_name for entry in entries] == ["MFA", "RLS", "PITR"]
    assert len({entry.timestamp for entry in entries}) == 1
    assert entries[2].to_dict() == {
        "timestamp": entries[2].timestamp,
        "checkName": "PITR",
        "status": "fail",
        "details": "PITR off",
    }


def test_table_input_entries_cover_given_blank_and_missing_input() -> None:
    given = table_input_entries(("orders", "profiles"), raw_input_given=True)
    blank = table_input_entries((), raw_input_given=True)
    missing = table_input_entries((), raw_input_given=False)

    assert given[0].status == "info"
    assert given[0].details == "Using custom tables for RLS check: orders, profiles"
    assert blank[0].status == "warning"
    assert "No valid table names" in blank[0].details
    assert missing[0].details.startswith("No custom tables provided")


def test_log_is_bounded_and_drops_oldest() -> None:
    log = EvidenceLog(max_entries=2)
    for index in range(3):
        log.append(EvidenceEntry.now("RLS", "info", f"entry {index}"))

    assert len(log) == 2
    assert [entry.details for entry in log.entries()] == ["entry 1", "entry 2"]


def test_entries_returns_a_copy_and_clear_empties() -> None:
    log = EvidenceLog()
    log.append(EvidenceEntry.now("RLS", "error", "Error: boom"))
    snapshot = log.entries()
    snapshot.clear()

    assert len(log) == 1
    assert log.entries()[0].details == "Error: boom"
    log.clear()
    assert log.entries() == []


def test_json_export_matches_download_format(tmp_path) -> None:
    log = EvidenceLog()
    log.extend(verdict_entries({"MFA": CheckVerdict(status="pass", message="MFA is enabled for all 1 users")}))
    target = log.write_json(tmp_path / "evidence.json")

    payload = json.loads(target.read_text(encoding="utf-8"))
    assert payload == [
        {
            "timestamp": payload[0]["timestamp"],
            "checkName": "MFA",
            "status": "pass",
            "details": "MFA is enabled for all 1 users",
        }
    ]
    assert log.to_json().startswith("[\n  {")


def test_export_filename_format() -> None:
    name = export_filename()
    assert name.startswith("compliance-evidence-")
    assert name.endswith(".json")

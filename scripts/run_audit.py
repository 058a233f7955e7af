from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path
import sys

from supaudit.core.config import AuditConfig
from supaudit.core.logging import configure_logging
from supaudit.services.audit_run import AuditRunResult, run_audit
from supaudit.services.evidence import EvidenceLog, export_filename


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    # Credentials default to env vars so keys stay out of shell history.
    parser = argparse.ArgumentParser(description="Audit a hosted project for RLS, MFA and PITR")
    parser.add_argument("--endpoint-url", default=os.getenv("SUPAUDIT_ENDPOINT_URL", ""))
    parser.add_argument("--data-plane-key", default=os.getenv("SUPAUDIT_DATA_PLANE_KEY", ""))
    parser.add_argument("--control-plane-key", default=os.getenv("SUPAUDIT_CONTROL_PLANE_KEY"))
    parser.add_argument("--tables", default=os.getenv("SUPAUDIT_TABLES", ""), help="Comma-separated table names")
    parser.add_argument("--output", default=None, help="Write the evidence JSON to this path or directory")
    parser.add_argument("--json", action="store_true", help="Print verdicts as JSON")
    return parser.parse_args(argv)


def _print_result(result: AuditRunResult, as_json: bool) -> None:
    if as_json:
        payload = {name: verdict.to_dict() for name, verdict in result.verdicts.items()}
        print(json.dumps(payload, indent=2, default=str))
        return
    for name, verdict in result.verdicts.items():
        print(f"{name}: {verdict.status} - {verdict.message}")


def _output_path(output: str) -> Path:
    target = Path(output)
    if target.is_dir():
        return target / export_filename()
    return target


async def _run(args: argparse.Namespace) -> int:
    config = AuditConfig.from_table_string(
        endpoint_url=args.endpoint_url,
        data_plane_key=args.data_plane_key,
        control_plane_key=args.control_plane_key,
        tables=args.tables,
    )
    evidence = EvidenceLog()
    result = await run_audit(config, evidence=evidence, raw_table_input=args.tables)
    _print_result(result, args.json)
    if args.output:
        path = evidence.write_json(_output_path(args.output))
        print(f"evidence_file={path}")
    return 0 if result.all_passed else 1


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = _parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - report and exit non-zero for operators
        print(f"audit_failed error={exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())

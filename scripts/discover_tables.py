from __future__ import annotations

import argparse
import asyncio
import os
import sys

from supaudit.core.config import AuditConfig
from supaudit.core.errors import AuditError
from supaudit.core.logging import configure_logging
from supaudit.providers.platform.adapter import PlatformAdapter
from supaudit.services.discovery import discover_tables
from supaudit.sql import HELPER_FUNCTIONS, load_sql


async def _run(endpoint_url: str, data_plane_key: str) -> int:
    # Discovery only suggests names; operators pass the ones they want to run_audit.py.
    config = AuditConfig(endpoint_url=endpoint_url, data_plane_key=data_plane_key)
    missing = config.missing_fields()
    if missing:
        print(f"missing_credentials={','.join(missing)}", file=sys.stderr)
        return 2
    async with PlatformAdapter(config) as client:
        result = await discover_tables(client)
    for attempt in result.attempts:
        print(f"attempt {attempt}", file=sys.stderr)
    print(f"method={result.method}")
    print(f"tables={','.join(result.tables)}")
    return 0 if result.tables else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Suggest public tables to include in an RLS audit")
    parser.add_argument("--endpoint-url", default=os.getenv("SUPAUDIT_ENDPOINT_URL", ""))
    parser.add_argument("--data-plane-key", default=os.getenv("SUPAUDIT_DATA_PLANE_KEY", ""))
    parser.add_argument("--print-sql", action="store_true", help="Print the helper function SQL and exit")
    args = parser.parse_args(argv)
    if args.print_sql:
        print("\n".join(load_sql(name) for name in HELPER_FUNCTIONS))
        return 0
    configure_logging()
    try:
        return asyncio.run(_run(args.endpoint_url, args.data_plane_key))
    except AuditError as exc:
        print(f"discovery_failed error={exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

from importlib import resources


HELPER_FUNCTIONS = ("list_table_rls", "get_tables")


def load_sql(name: str) -> str:
    # Helper functions are installed by the operator; the audit never runs DDL itself.
    if name not in HELPER_FUNCTIONS:
        raise ValueError(f"unknown helper function: {name}")
    return resources.files(__name__).joinpath(f"{name}.sql").read_text(encoding="utf-8")

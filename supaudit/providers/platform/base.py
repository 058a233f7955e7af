from __future__ import annotations

from typing import Any, Mapping, Protocol


class PlatformClient(Protocol):
    @property
    def has_control_plane(self) -> bool:
        ...

    async def query_rows(self, table: str, limit: int = 1, *, schema: str | None = None) -> list[dict[str, Any]]:
        ...

    async def query_catalog(
        self,
        view: str,
        predicate: Mapping[str, Any],
        *,
        select: str = "*",
        schema: str = "pg_catalog",
    ) -> list[dict[str, Any]]:
        ...

    async def call_rpc(self, function: str, params: Mapping[str, Any] | None = None) -> Any:
        ...

    async def list_auth_users(self, *, page: int = 1, per_page: int | None = None) -> list[dict[str, Any]]:
        ...

    async def call_control_plane(self, path: str) -> Any:
        ...

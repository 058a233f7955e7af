from __future__ import annotations

from typing import Any, Protocol


class SuggestionProvider(Protocol):
    async def suggest(self, issue_description: str, raw_evidence: Any) -> str:
        ...

    async def aclose(self) -> None:
        ...

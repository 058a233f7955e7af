from __future__ import annotations

from typing import Any


class FakeSuggestionProvider:
    def __init__(self, response: str = "This is a fake suggestion.") -> None:
        # Deterministic response keeps tests stable without external calls.
        self._response = response
        self.calls: list[str] = []

    async def suggest(self, issue_description: str, raw_evidence: Any) -> str:
        _ = raw_evidence
        self.calls.append(issue_description)
        return self._response

    async def aclose(self) -> None:
        return None

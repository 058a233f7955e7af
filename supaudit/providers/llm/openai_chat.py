from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

import httpx

from supaudit.core.config import get_settings
from supaudit.core.errors import SuggestionConfigError, SuggestionError
from supaudit.services.resilience import retry_async
from supaudit.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a specialized Supabase security expert with deep knowledge of database security, compliance standards, and Supabase best practices.

When given information about compliance issues, provide specific, actionable steps to fix them. Focus on:

1. For MFA issues: Explain how to enable and enforce MFA for Supabase users, including code examples for the Supabase Auth UI or API.

2. For RLS issues: Provide specific RLS policy examples that would secure the tables, with SQL statements ready to implement.

3. For PITR issues: Explain how to enable Point-in-Time Recovery in Supabase, including necessary settings and considerations.

Keep your responses concise, technically accurate, and directly implementable. Include code snippets where appropriate."""

NO_SUGGESTION = "No suggestion available"


class OpenAISuggestionProvider:
    def __init__(self, api_key: str | None = None, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._api_key = api_key or self._settings.openai_api_key
        self._client = client
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    def _messages(self, issue_description: str, raw_evidence: Any) -> list[dict[str, str]]:
        content = issue_description
        if raw_evidence is not None:
            evidence = json.dumps(raw_evidence, indent=2, default=str, ensure_ascii=False)
            content = f"{issue_description}\n\nEvidence:\n{evidence}"
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]

    async def suggest(self, issue_description: str, raw_evidence: Any) -> str:
        if not self._api_key:
            raise SuggestionConfigError("OPENAI_API_KEY is required for suggested fixes")

        payload = {
            "model": self._settings.openai_model,
            "messages": self._messages(issue_description, raw_evidence),
            "temperature": self._settings.openai_temperature,
            "max_tokens": self._settings.openai_max_tokens,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        url = f"{self._settings.openai_base_url.rstrip('/')}/chat/completions"
        client = self._get_client()

        async def _call() -> httpx.Response:
            return await client.post(url, json=payload, headers=headers)

        start = time.monotonic()
        try:
            response = await retry_async(_call)
        except (httpx.HTTPError, TimeoutError, asyncio.TimeoutError) as exc:
            record_external_call(
                integration="suggestions.openai",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise SuggestionError("OpenAI suggestion request failed.") from exc

        if response.status_code >= 400:
            record_external_call(
                integration="suggestions.openai",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            if response.status_code in {401, 403}:
                raise SuggestionConfigError("OpenAI auth error: check the OpenAI API key.")
            logger.warning("suggestion_request_failed status=%s", response.status_code)
            raise SuggestionError(f"OpenAI suggestion error: {response.status_code}")

        record_external_call(
            integration="suggestions.openai",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )
        try:
            choices = response.json().get("choices") or []
            content = choices[0]["message"]["content"] if choices else None
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
            raise SuggestionError("OpenAI returned a malformed completion payload.") from exc
        return content or NO_SUGGESTION

from __future__ import annotations

from typing import AsyncGenerator, Callable, Optional

from fastapi import Header, Request

from supaudit.core.config import AuditConfig
from supaudit.providers.llm.base import SuggestionProvider
from supaudit.providers.llm.factory import get_suggestion_provider
from supaudit.providers.platform.base import PlatformClient
from supaudit.services.evidence import EvidenceLog


PlatformClientFactory = Callable[[AuditConfig], Optional[PlatformClient]]


def get_evidence_log(request: Request) -> EvidenceLog:
    # One evidence log per app instance; runs append, operators clear explicitly.
    return request.app.state.evidence


def _run_owned_client(_config: AuditConfig) -> PlatformClient | None:
    return None


def get_platform_client_factory() -> PlatformClientFactory:
    # Returning None lets each run open and close its own adapter; tests override this.
    return _run_owned_client


async def get_suggestion_provider_dep(
    x_openai_key: str | None = Header(default=None, alias="X-OpenAI-Key"),
) -> AsyncGenerator[SuggestionProvider | None, None]:
    provider = get_suggestion_provider(api_key=x_openai_key)
    try:
        yield provider
    finally:
        if provider is not None:
            await provider.aclose()

from __future__ import annotations

from supaudit.core.config import get_settings
from supaudit.providers.llm.base import SuggestionProvider
from supaudit.providers.llm.fake import FakeSuggestionProvider
from supaudit.providers.llm.openai_chat import OpenAISuggestionProvider


def get_suggestion_provider(api_key: str | None = None) -> SuggestionProvider | None:
    settings = get_settings()
    provider = (settings.suggestion_provider or "none").lower()

    if provider == "fake":
        return FakeSuggestionProvider()
    if provider == "openai" or api_key:
        return OpenAISuggestionProvider(api_key=api_key)
    return None

from __future__ import annotations

import pytest

from supaudit.core.config import get_settings
from supaudit.services.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
def reset_process_state() -> None:
    # Settings are cached and telemetry is module-global; isolate both per test.
    get_settings.cache_clear()
    reset_telemetry()
    yield
    get_settings.cache_clear()
    reset_telemetry()

from __future__ import annotations

import logging

from supaudit.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    # Install one stream handler on the root logger; repeated calls only adjust the level.
    resolved = (level or get_settings().log_level or "INFO").upper()
    root = logging.getLogger()
    if not any(getattr(handler, "_supaudit", False) for handler in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._supaudit = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(resolved)
    # httpx logs every request at INFO, including URLs with project refs.
    logging.getLogger("httpx").setLevel(max(logging.WARNING, root.level))

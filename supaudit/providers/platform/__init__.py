from __future__ import annotations

from supaudit.providers.platform.adapter import PlatformAdapter, is_permission_denied


__all__ = ["PlatformAdapter", "is_permission_denied"]

from __future__ import annotations

import logging
from typing import Any

from supaudit.core.errors import AuditError, ConfigurationError, ControlPlaneError, error_details
from supaudit.domain.models import (
    STATUS_ERROR,
    STATUS_FAIL,
    STATUS_PASS,
    BackupConfig,
    CheckVerdict,
    SubscriptionTier,
)
from supaudit.providers.platform.base import PlatformClient


logger = logging.getLogger(__name__)

SUBSCRIPTION_PATH = "subscription"
BACKUP_INFO_PATH = "database/backups/info"

FREE_TIER_MESSAGE = (
    "Point in Time Recovery (PITR) is not available on the free tier. "
    "Upgrade to Pro plan or higher to enable this feature."
)
NOT_ENABLED_MESSAGE = (
    "Point in Time Recovery is available but not enabled. You can enable it in your project settings."
)
NOT_CONFIGURED_MESSAGE = (
    "Point in Time Recovery is available but not configured. You can enable it in your project settings."
)
PRICING_URL = "https://supabase.com/pricing"


def parse_subscription(payload: Any) -> SubscriptionTier:
    if not isinstance(payload, dict) or "tier" not in payload:
        raise ControlPlaneError("subscription payload has no tier")
    tier = payload["tier"]
    if isinstance(tier, dict):
        tier = tier.get("id") or tier.get("name") or ""
    name = str(tier).strip()
    if name.lower().startswith("tier_"):
        name = name[len("tier_"):]
    return SubscriptionTier(tier=name)


def parse_backup_config(payload: Any) -> BackupConfig:
    if not isinstance(payload, dict):
        raise ControlPlaneError("backup info payload is not an object")
    return BackupConfig(pitr_enabled=bool(payload.get("pitr_enabled")), raw=dict(payload))


def _free_tier_verdict(reason: str | None = None) -> CheckVerdict:
    details: dict[str, Any] = {
        "currentTier": "free",
        "recommendation": "Upgrade to Pro plan or higher",
        "learnMore": PRICING_URL,
    }
    if reason:
        details["error"] = reason
    return CheckVerdict(status=STATUS_FAIL, message=FREE_TIER_MESSAGE, details=details)


async def check_pitr(client: PlatformClient) -> CheckVerdict:
    """Check point-in-time recovery through two management API calls.

    A failed subscription lookup is reported as the free-tier fail and a
    failed backup-info lookup as "not configured". Both are ``fail`` rather
    than ``error``, so "could not determine" and "determined to be off"
    share a verdict here.
    """
    if not client.has_control_plane:
        return CheckVerdict(
            status=STATUS_ERROR,
            message="PITR check requires a control-plane key.",
            details={"error": "Missing required credential: control_plane_key"},
        )

    try:
        try:
            subscription = parse_subscription(await client.call_control_plane(SUBSCRIPTION_PATH))
        except ConfigurationError:
            raise
        except AuditError as exc:
            logger.warning("pitr_subscription_unavailable error=%s", type(exc).__name__)
            return _free_tier_verdict(str(exc))

        if subscription.is_free:
            return _free_tier_verdict()

        try:
            backup = parse_backup_config(await client.call_control_plane(BACKUP_INFO_PATH))
        except ConfigurationError:
            raise
        except AuditError as exc:
            logger.warning("pitr_backup_info_unavailable tier=%s error=%s", subscription.tier, type(exc).__name__)
            return CheckVerdict(
                status=STATUS_FAIL,
                message=NOT_CONFIGURED_MESSAGE,
                details={
                    "tier": subscription.tier,
                    "recommendation": "Configure PITR in project settings",
                    "error": str(exc),
                },
            )
    except Exception as exc:  # noqa: BLE001 - the check is the error boundary
        logger.exception("pitr_check_failed")
        return CheckVerdict(
            status=STATUS_ERROR,
            message="Failed to check PITR status. Please verify your credentials and try again.",
            details=error_details(exc),
        )

    details = {
        **backup.raw,
        "tier": subscription.tier,
        "configuration": "enabled" if backup.pitr_enabled else "disabled",
    }
    if backup.pitr_enabled:
        return CheckVerdict(status=STATUS_PASS, message="Point in Time Recovery is enabled", details=details)
    return CheckVerdict(status=STATUS_FAIL, message=NOT_ENABLED_MESSAGE, details=details)

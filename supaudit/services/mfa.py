from __future__ import annotations

from collections import Counter
import logging
from typing import Any

from supaudit.core.config import get_settings
from supaudit.core.errors import AuditError, error_details
from supaudit.domain.models import STATUS_ERROR, STATUS_FAIL, STATUS_PASS, CheckVerdict, UserMfaStatus
from supaudit.providers.platform.base import PlatformClient


logger = logging.getLogger(__name__)

SOURCE_ADMIN_API = "admin_api"
SOURCE_USER_TABLE = "user_table"

# Guard against a listing endpoint that never returns a short page.
_MAX_ADMIN_PAGES = 1000


def _identity(user: dict[str, Any]) -> str:
    return str(user.get("email") or user.get("phone") or user.get("id") or "unknown")


def _verified_factor_count(factors: Any) -> int:
    # Factors without a status field are counted; explicit non-verified ones are not.
    if not isinstance(factors, list):
        return 0
    count = 0
    for factor in factors:
        if not isinstance(factor, dict):
            continue
        status = factor.get("status")
        if status is None or str(status).lower() == "verified":
            count += 1
    return count


async def _users_from_admin_api(client: PlatformClient) -> list[UserMfaStatus]:
    per_page = get_settings().mfa_users_page_size
    statuses: list[UserMfaStatus] = []
    for page in range(1, _MAX_ADMIN_PAGES + 1):
        users = await client.list_auth_users(page=page, per_page=per_page)
        statuses.extend(
            UserMfaStatus(identity=_identity(user), factor_count=_verified_factor_count(user.get("factors")))
            for user in users
            if isinstance(user, dict)
        )
        if len(users) < per_page:
            break
    return statuses


async def _users_from_user_table(client: PlatformClient) -> list[UserMfaStatus]:
    limit = get_settings().mfa_users_page_size * _MAX_ADMIN_PAGES
    users = await client.query_rows("users", limit, schema="auth")
    factors = await client.query_rows("mfa_factors", limit, schema="auth")
    per_user = Counter(
        str(factor.get("user_id"))
        for factor in factors
        if isinstance(factor, dict) and str(factor.get("status") or "verified").lower() == "verified"
    )
    return [
        UserMfaStatus(identity=_identity(user), factor_count=per_user.get(str(user.get("id")), 0))
        for user in users
        if isinstance(user, dict)
    ]


async def list_user_mfa_status(client: PlatformClient) -> tuple[list[UserMfaStatus], str]:
    """Enumerate accounts with their MFA state.

    Prefers the administrative listing and falls back to reading the user
    and factor tables directly. Raises the last error when both fail.
    """
    try:
        return await _users_from_admin_api(client), SOURCE_ADMIN_API
    except AuditError as exc:
        logger.warning("mfa_admin_listing_unavailable error=%s", type(exc).__name__)
        admin_error = exc
    try:
        return await _users_from_user_table(client), SOURCE_USER_TABLE
    except AuditError as exc:
        logger.error("mfa_user_table_unavailable error=%s", type(exc).__name__)
        raise AuditError(
            f"MFA user listing failed (admin API: {admin_error}; user table: {exc}) - regenerate keys"
        ) from exc


async def check_mfa(client: PlatformClient) -> CheckVerdict:
    try:
        statuses, source = await list_user_mfa_status(client)
    except Exception as exc:  # noqa: BLE001 - the check is the error boundary
        return CheckVerdict(
            status=STATUS_ERROR,
            message=f"Failed to check MFA status: {exc}",
            details=error_details(exc),
        )

    total = len(statuses)
    enabled = sum(1 for status in statuses if status.mfa_enabled)
    details = {
        "source": source,
        "users_total": total,
        "users_with_mfa": enabled,
        "users": [status.to_dict() for status in statuses],
    }
    logger.info("mfa_check_complete users=%s enabled=%s source=%s", total, enabled, source)
    if total == 0:
        # An empty project is not compliant by vacuous truth.
        return CheckVerdict(
            status=STATUS_FAIL,
            message="No users found; MFA coverage cannot be confirmed.",
            details=details,
        )
    if enabled == total:
        return CheckVerdict(status=STATUS_PASS, message=f"MFA is enabled for all {total} users", details=details)
    return CheckVerdict(
        status=STATUS_FAIL,
        message=f"MFA is enabled for {enabled} out of {total} users",
        details=details,
    )

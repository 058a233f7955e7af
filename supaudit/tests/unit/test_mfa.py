from __future__ import annotations

import pytest

from supaudit.core.errors import DataPlaneError
from supaudit.services.mfa import SOURCE_ADMIN_API, SOURCE_USER_TABLE, check_mfa, list_user_mfa_status
from supaudit.tests.utils.platform import FakePlatformClient, denied


def _user(email: str, *factors: str) -> dict:
    return {
        "id": email,
        "email": email,
        "factors": [{"id": f"{email}-{index}", "status": status} for index, status in enumerate(factors)],
    }


@pytest.mark.asyncio
async def test_zero_users_is_a_fail_not_a_pass() -> None:
    verdict = await check_mfa(FakePlatformClient(auth_users=[]))

    assert verdict.status == "fail"
    assert "No users found" in verdict.message
    assert verdict.details["users_total"] == 0


@pytest.mark.asyncio
async def test_all_users_with_verified_factor_pass() -> None:
    client = FakePlatformClient(auth_users=[_user("a@example.com", "verified"), _user("b@example.com", "verified")])
    verdict = await check_mfa(client)

    assert verdict.status == "pass"
    assert verdict.message == "MFA is enabled for all 2 users"
    assert verdict.details["source"] == SOURCE_ADMIN_API
    assert verdict.details["users"][0] == {"email": "a@example.com", "mfaEnabled": True, "factorCount": 1}


@pytest.mark.asyncio
async def test_unverified_factors_do_not_count() -> None:
    client = FakePlatformClient(
        auth_users=[_user("a@example.com", "verified"), _user("b@example.com", "unverified"), _user("c@example.com")]
    )
    verdict = await check_mfa(client)

    assert verdict.status == "fail"
    assert verdict.message == "MFA is enabled for 1 out of 3 users"
    assert verdict.details["users_with_mfa"] == 1


@pytest.mark.asyncio
async def test_admin_listing_paginates_until_short_page(monkeypatch) -> None:
    monkeypatch.setenv("MFA_USERS_PAGE_SIZE", "2")
    users = [_user(f"user{index}@example.com", "verified") for index in range(5)]
    client = FakePlatformClient(auth_users=users)

    statuses, source = await list_user_mfa_status(client)

    assert source == SOURCE_ADMIN_API
    assert len(statuses) == 5
    assert [call[1] for call in client.calls_to("auth_users")] == [1, 2, 3]


@pytest.mark.asyncio
async def test_falls_back_to_user_table_when_admin_listing_fails() -> None:
    client = FakePlatformClient(
        auth_users=DataPlaneError("User not allowed", status_code=401),
        rows={
            "auth.users": [{"id": "u1", "email": "a@example.com"}, {"id": "u2", "email": "b@example.com"}],
            "auth.mfa_factors": [{"user_id": "u1", "status": "verified"}],
        },
    )
    verdict = await check_mfa(client)

    assert verdict.status == "fail"
    assert verdict.details["source"] == SOURCE_USER_TABLE
    assert verdict.message == "MFA is enabled for 1 out of 2 users"


@pytest.mark.asyncio
async def test_both_listings_failing_is_an_error() -> None:
    client = FakePlatformClient(
        auth_users=DataPlaneError("User not allowed", status_code=401),
        rows={"auth.users": denied("users")},
    )
    verdict = await check_mfa(client)

    assert verdict.status == "error"
    assert verdict.message.startswith("Failed to check MFA status:")
    assert "regenerate keys" in verdict.message
    assert verdict.details["name"] == "AuditError"

from __future__ import annotations

import pytest

from supaudit.core.config import AuditConfig
from supaudit.core.errors import ControlPlaneError
from supaudit.providers.platform.adapter import PlatformAdapter
from supaudit.services.pitr import (
    BACKUP_INFO_PATH,
    FREE_TIER_MESSAGE,
    NOT_CONFIGURED_MESSAGE,
    NOT_ENABLED_MESSAGE,
    PRICING_URL,
    SUBSCRIPTION_PATH,
    check_pitr,
    parse_subscription,
)
from supaudit.tests.utils.platform import FakePlatformClient


def test_parse_subscription_normalizes_tier_names() -> None:
    assert parse_subscription({"tier": "tier_free"}).is_free is True
    assert parse_subscription({"tier": {"id": "tier_pro"}}).tier == "pro"
    with pytest.raises(ControlPlaneError):
        parse_subscription({"plan": "pro"})


@pytest.mark.asyncio
async def test_free_tier_fails_without_backup_info_call() -> None:
    client = FakePlatformClient(control_plane={SUBSCRIPTION_PATH: {"tier": "free"}, BACKUP_INFO_PATH: {}})
    verdict = await check_pitr(client)

    assert verdict.status == "fail"
    assert verdict.message == FREE_TIER_MESSAGE
    assert verdict.details["learnMore"] == PRICING_URL
    assert ("control_plane", BACKUP_INFO_PATH) not in client.calls


@pytest.mark.asyncio
async def test_subscription_failure_is_reported_as_tier_fail() -> None:
    client = FakePlatformClient(
        control_plane={SUBSCRIPTION_PATH: ControlPlaneError("Management API call failed: 500", status_code=500)}
    )
    verdict = await check_pitr(client)

    assert verdict.status == "fail"
    assert verdict.message == FREE_TIER_MESSAGE
    assert "500" in verdict.details["error"]
    assert client.calls == [("control_plane", SUBSCRIPTION_PATH)]


@pytest.mark.asyncio
async def test_paid_tier_with_pitr_enabled_passes() -> None:
    client = FakePlatformClient(
        control_plane={
            SUBSCRIPTION_PATH: {"tier": "pro"},
            BACKUP_INFO_PATH: {"pitr_enabled": True, "walg_enabled": True, "backups": []},
        }
    )
    verdict = await check_pitr(client)

    assert verdict.status == "pass"
    assert verdict.details["configuration"] == "enabled"
    assert verdict.details["tier"] == "pro"
    assert verdict.details["walg_enabled"] is True


@pytest.mark.asyncio
async def test_paid_tier_with_pitr_disabled_fails() -> None:
    client = FakePlatformClient(
        control_plane={SUBSCRIPTION_PATH: {"tier": "team"}, BACKUP_INFO_PATH: {"pitr_enabled": False}}
    )
    verdict = await check_pitr(client)

    assert verdict.status == "fail"
    assert verdict.message == NOT_ENABLED_MESSAGE
    assert verdict.details["configuration"] == "disabled"


@pytest.mark.asyncio
async def test_backup_info_failure_is_fail_not_error() -> None:
    client = FakePlatformClient(control_plane={SUBSCRIPTION_PATH: {"tier": "pro"}})
    verdict = await check_pitr(client)

    assert verdict.status == "fail"
    assert verdict.message == NOT_CONFIGURED_MESSAGE
    assert verdict.details["tier"] == "pro"


@pytest.mark.asyncio
async def test_missing_control_plane_key_is_an_error_without_calls() -> None:
    client = FakePlatformClient()
    verdict = await check_pitr(client)

    assert verdict.status == "error"
    assert client.calls == []


@pytest.mark.asyncio
async def test_unparseable_project_url_is_an_error() -> None:
    config = AuditConfig(
        endpoint_url="https://db.internal.example.com",
        data_plane_key="anon",
        control_plane_key="sbp_123",
    )
    async with PlatformAdapter(config) as adapter:
        verdict = await check_pitr(adapter)

    assert verdict.status == "error"
    assert verdict.details["name"] == "ConfigurationError"

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Awaitable

from supaudit.core.config import AuditConfig, get_settings
from supaudit.core.errors import error_details
from supaudit.domain.models import (
    CHECK_MFA,
    CHECK_PITR,
    CHECK_RLS,
    STATUS_ERROR,
    STATUS_WARNING,
    CheckVerdict,
    EvidenceEntry,
)
from supaudit.providers.platform.adapter import PlatformAdapter
from supaudit.providers.platform.base import PlatformClient
from supaudit.services.evidence import EvidenceLog, table_input_entries, verdict_entries
from supaudit.services.mfa import check_mfa
from supaudit.services.pitr import check_pitr
from supaudit.services.rls import check_rls
from supaudit.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditRunResult:
    verdicts: dict[str, CheckVerdict]
    entries: list[EvidenceEntry] = field(default_factory=list)
    cancelled: bool = False

    @property
    def all_passed(self) -> bool:
        return bool(self.verdicts) and all(verdict.passed for verdict in self.verdicts.values())


def _configuration_error_verdicts(missing: list[str]) -> dict[str, CheckVerdict]:
    message = f"Missing required credentials: {', '.join(missing)}"
    details = {"error": message, "missing": missing}
    return {
        name: CheckVerdict(status=STATUS_ERROR, message=message, details=details)
        for name in (CHECK_MFA, CHECK_RLS, CHECK_PITR)
    }


async def _guarded(name: str, check: Awaitable[CheckVerdict]) -> CheckVerdict:
    # Checks already convert their own failures; this catches anything that slipped through.
    try:
        return await check
    except asyncio.CancelledError:
        raise
    except Exception as exc:  # noqa: BLE001 - no exception may escape a run
        logger.exception("audit_check_crashed check=%s", name)
        return CheckVerdict(status=STATUS_ERROR, message=str(exc) or type(exc).__name__, details=error_details(exc))


class AuditRun:
    """One operator-triggered audit.

    MFA, RLS and PITR run concurrently against a shared read-only client.
    After ``cancel()`` the run stops writing evidence; in-flight requests
    are left to finish on their own.
    """

    def __init__(
        self,
        config: AuditConfig,
        *,
        evidence: EvidenceLog | None = None,
        client: PlatformClient | None = None,
        raw_table_input: str | None = None,
    ) -> None:
        self._config = config
        self._evidence = evidence if evidence is not None else EvidenceLog()
        self._client = client
        self._raw_table_input = raw_table_input
        self._cancelled = asyncio.Event()
        self._written: list[EvidenceEntry] = []
        self._verdicts = {name: CheckVerdict.pending(name) for name in (CHECK_MFA, CHECK_RLS, CHECK_PITR)}

    @property
    def evidence(self) -> EvidenceLog:
        return self._evidence

    @property
    def verdicts(self) -> dict[str, CheckVerdict]:
        # Live view: pending until each check settles.
        return dict(self._verdicts)

    @property
    def finished(self) -> bool:
        return all(verdict.is_terminal for verdict in self._verdicts.values())

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        logger.info("audit_run_cancelled")
        self._cancelled.set()

    def _write(self, entries: list[EvidenceEntry]) -> None:
        if self.cancelled:
            return
        self._evidence.extend(entries)
        self._written.extend(entries)

    def _input_entries(self) -> list[EvidenceEntry]:
        raw_given = bool(self._raw_table_input and self._raw_table_input.strip()) or bool(self._config.tables)
        entries = table_input_entries(self._config.tables, raw_input_given=raw_given)
        key = self._config.control_plane_key
        prefix = get_settings().control_plane_key_prefix
        if key is not None and prefix and not key.startswith(prefix):
            logger.warning("control_plane_key_unexpected_prefix")
            entries.append(
                EvidenceEntry.now(
                    CHECK_PITR,
                    STATUS_WARNING,
                    f'Control-plane key does not start with "{prefix}"; management calls may be rejected.',
                )
            )
        return entries

    async def _settle(self, name: str, check: Awaitable[CheckVerdict]) -> CheckVerdict:
        verdict = await _guarded(name, check)
        self._verdicts[name] = verdict
        return verdict

    async def execute(self) -> AuditRunResult:
        missing = self._config.missing_fields()
        if missing:
            # Configuration errors fail before any network call.
            verdicts = _configuration_error_verdicts(missing)
            self._verdicts.update(verdicts)
            self._write(verdict_entries(verdicts))
            return AuditRunResult(verdicts=verdicts, entries=list(self._written), cancelled=self.cancelled)

        self._write(self._input_entries())
        owned = self._client is None
        client = self._client or PlatformAdapter(self._config)
        increment_counter("audit_runs_total")
        try:
            mfa, rls, pitr = await asyncio.gather(
                self._settle(CHECK_MFA, check_mfa(client)),
                self._settle(CHECK_RLS, check_rls(self._config.tables, client)),
                self._settle(CHECK_PITR, check_pitr(client)),
            )
        finally:
            if owned:
                await client.aclose()

        verdicts = {CHECK_MFA: mfa, CHECK_RLS: rls, CHECK_PITR: pitr}
        logger.info(
            "audit_run_complete mfa=%s rls=%s pitr=%s cancelled=%s",
            mfa.status,
            rls.status,
            pitr.status,
            self.cancelled,
        )
        self._write(verdict_entries(verdicts))
        return AuditRunResult(verdicts=verdicts, entries=list(self._written), cancelled=self.cancelled)


async def run_audit(
    config: AuditConfig,
    *,
    evidence: EvidenceLog | None = None,
    client: PlatformClient | None = None,
    raw_table_input: str | None = None,
) -> AuditRunResult:
    return await AuditRun(config, evidence=evidence, client=client, raw_table_input=raw_table_input).execute()

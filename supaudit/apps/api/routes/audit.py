from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

from supaudit.apps.api.deps import (
    PlatformClientFactory,
    get_evidence_log,
    get_platform_client_factory,
    get_suggestion_provider_dep,
)
from supaudit.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from supaudit.apps.api.response import SuccessEnvelope, success_response
from supaudit.core.config import AuditConfig, split_table_list
from supaudit.core.errors import SuggestionConfigError
from supaudit.domain.models import CheckVerdict
from supaudit.providers.llm.base import SuggestionProvider
from supaudit.services.audit_run import AuditRun
from supaudit.services.evidence import EvidenceLog, entries_payload, export_filename
from supaudit.services.suggestions import suggest_fixes, suggestion_entries


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audit", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class RunAuditRequest(BaseModel):
    # Blank credentials are reported as error verdicts rather than rejected here.
    endpoint_url: str = ""
    data_plane_key: str = ""
    control_plane_key: str | None = None
    tables: list[str] | str | None = None

    def to_config(self) -> AuditConfig:
        if isinstance(self.tables, str):
            tables = split_table_list(self.tables)
        else:
            tables = tuple(name.strip() for name in self.tables or () if name and name.strip())
        return AuditConfig(
            endpoint_url=self.endpoint_url,
            data_plane_key=self.data_plane_key,
            control_plane_key=self.control_plane_key,
            tables=tables,
        )

    def raw_table_input(self) -> str | None:
        if isinstance(self.tables, str):
            return self.tables
        if self.tables:
            return ",".join(self.tables)
        return None


class VerdictPayload(BaseModel):
    status: Literal["pending", "pass", "fail", "error"]
    message: str
    details: Any = None

    @classmethod
    def from_verdict(cls, verdict: CheckVerdict) -> "VerdictPayload":
        return cls(status=verdict.status, message=verdict.message, details=verdict.details)

    def to_verdict(self) -> CheckVerdict:
        return CheckVerdict(status=self.status, message=self.message, details=self.details)


class EvidenceEntryPayload(BaseModel):
    timestamp: str
    checkName: str
    status: str
    details: Any = None


class RunAuditResponse(BaseModel):
    verdicts: dict[str, VerdictPayload]
    all_passed: bool
    cancelled: bool
    entries: list[EvidenceEntryPayload]


class EvidenceResponse(BaseModel):
    count: int
    entries: list[EvidenceEntryPayload]


class EvidenceClearedResponse(BaseModel):
    cleared: int


class SuggestionsRequest(BaseModel):
    verdicts: dict[str, VerdictPayload] = Field(default_factory=dict)


class SuggestedFixPayload(BaseModel):
    id: str
    check: str
    issue: str
    suggestion: str
    error: str | None = None


class SuggestionsResponse(BaseModel):
    suggestions: list[SuggestedFixPayload]


@router.post("/run", response_model=SuccessEnvelope[RunAuditResponse])
async def run_audit_route(
    request: Request,
    payload: RunAuditRequest,
    evidence: EvidenceLog = Depends(get_evidence_log),
    client_factory: PlatformClientFactory = Depends(get_platform_client_factory),
) -> dict:
    config = payload.to_config()
    run = AuditRun(
        config,
        evidence=evidence,
        client=client_factory(config),
        raw_table_input=payload.raw_table_input(),
    )
    result = await run.execute()
    response = RunAuditResponse(
        verdicts={name: VerdictPayload.from_verdict(verdict) for name, verdict in result.verdicts.items()},
        all_passed=result.all_passed,
        cancelled=result.cancelled,
        entries=[EvidenceEntryPayload(**item) for item in entries_payload(result.entries)],
    )
    return success_response(request=request, data=response)


@router.get("/evidence", response_model=SuccessEnvelope[EvidenceResponse])
async def list_evidence(request: Request, evidence: EvidenceLog = Depends(get_evidence_log)) -> dict:
    entries = entries_payload(evidence.entries())
    return success_response(request=request, data={"count": len(entries), "entries": entries})


@router.delete("/evidence", response_model=SuccessEnvelope[EvidenceClearedResponse])
async def clear_evidence(request: Request, evidence: EvidenceLog = Depends(get_evidence_log)) -> dict:
    cleared = len(evidence)
    evidence.clear()
    logger.info("evidence_cleared entries=%s", cleared)
    return success_response(request=request, data={"cleared": cleared})


@router.get("/evidence/export")
async def export_evidence(evidence: EvidenceLog = Depends(get_evidence_log)) -> Response:
    # The export is the raw download format, not an enveloped API payload.
    filename = export_filename()
    return Response(
        content=evidence.to_json(),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/suggestions", response_model=SuccessEnvelope[SuggestionsResponse])
async def request_suggestions(
    request: Request,
    payload: SuggestionsRequest,
    evidence: EvidenceLog = Depends(get_evidence_log),
    provider: SuggestionProvider | None = Depends(get_suggestion_provider_dep),
) -> dict:
    if provider is None:
        raise SuggestionConfigError("Please provide an OpenAI API key before analyzing issues")
    verdicts = {name: item.to_verdict() for name, item in payload.verdicts.items()}
    fixes = await suggest_fixes(verdicts, provider, run_id=request.state.request_id)
    evidence.extend(suggestion_entries(fixes))
    return success_response(
        request=request,
        data={"suggestions": [fix.to_dict() for fix in fixes]},
    )

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
import logging
from typing import Any, Mapping

from supaudit.domain.models import STATUS_ERROR, STATUS_FAIL, STATUS_INFO, CheckVerdict, EvidenceEntry
from supaudit.providers.llm.base import SuggestionProvider
from supaudit.services.evidence import CHECK_ORDER
from supaudit.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

ANALYSIS_CHECK_NAME = "AI Analysis"
# Only definite findings and errors are worth a fix suggestion.
SUGGESTABLE_STATUSES = frozenset({STATUS_FAIL, STATUS_ERROR})


@dataclass(frozen=True)
class SuggestedFix:
    id: str
    check: str
    issue: str
    suggestion: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def issue_description(check_name: str, verdict: CheckVerdict, context: str | None = None) -> str:
    return (
        f"I have a Supabase compliance issue with {check_name}: {verdict.message}.\n\n"
        f"Here are the details of the issue: {context or 'No additional details available'}\n\n"
        "Please provide specific, actionable steps to fix this issue, including any code or SQL "
        "examples that would help implement the solution."
    )


def _failing(verdicts: Mapping[str, CheckVerdict]) -> list[str]:
    names = [name for name in CHECK_ORDER if name in verdicts]
    names.extend(name for name in verdicts if name not in CHECK_ORDER)
    return [name for name in names if verdicts[name].status in SUGGESTABLE_STATUSES]


async def suggest_fixes(
    verdicts: Mapping[str, CheckVerdict],
    provider: SuggestionProvider,
    *,
    run_id: str = "run",
) -> list[SuggestedFix]:
    """Ask the provider for one fix per failing or errored check.

    Provider failures are captured on the returned ``SuggestedFix``; this
    function never raises for them and never touches the verdicts.
    """
    names = _failing(verdicts)
    context = "\n\n".join(f"{name}: {verdicts[name].message}" for name in names)

    async def _one(name: str) -> SuggestedFix:
        verdict = verdicts[name]
        fix_id = f"{name.lower()}-{run_id}"
        try:
            text = await provider.suggest(issue_description(name, verdict, context), verdict.details)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - suggestion failures stay local
            logger.warning("suggestion_failed check=%s error=%s", name, type(exc).__name__)
            increment_counter("suggestion_failures_total")
            return SuggestedFix(
                id=fix_id,
                check=name,
                issue=verdict.message,
                suggestion=f"Error: {exc}",
                error=str(exc) or type(exc).__name__,
            )
        return SuggestedFix(id=fix_id, check=name, issue=verdict.message, suggestion=text)

    return list(await asyncio.gather(*(_one(name) for name in names)))


def suggestion_entries(fixes: list[SuggestedFix]) -> list[EvidenceEntry]:
    entries = []
    for fix in fixes:
        if fix.error is None:
            entries.append(
                EvidenceEntry.now(ANALYSIS_CHECK_NAME, STATUS_INFO, f"Generated fix suggestion for {fix.check}")
            )
        else:
            entries.append(
                EvidenceEntry.now(
                    ANALYSIS_CHECK_NAME,
                    STATUS_ERROR,
                    f"Error generating fix for {fix.check}: {fix.error}",
                )
            )
    return entries

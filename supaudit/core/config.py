from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
import re

from pydantic_settings import BaseSettings, SettingsConfigDict


# Hosted project URLs look like https://<project-ref>.supabase.co
_PROJECT_REF_PATTERN = re.compile(r"https://([^.]+)\.supabase\.co")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "supaudit"
    log_level: str = "INFO"

    # Management API root for subscription, backup, table and policy lookups.
    control_plane_base_url: str = "https://api.supabase.com/v1"
    # Control-plane keys are issued with this prefix; mismatches are only warned about.
    control_plane_key_prefix: str = "sbp_"
    # Centralize external call timeouts for platform calls (ms).
    ext_call_timeout_ms: int = 8000
    # Retry transient platform failures for a bounded number of attempts.
    ext_retry_max_attempts: int = 2
    # Base backoff between retry attempts (ms), jittered per call.
    ext_retry_backoff_ms: int = 200
    # Cap concurrent per-table probes so large table lists do not flood the data plane.
    rls_probe_max_concurrency: int = 8
    # Rows requested by the heuristic probe; one row is enough to observe a denial.
    heuristic_sample_limit: int = 1
    # Page size for the admin user listing used by the MFA check.
    mfa_users_page_size: int = 1000
    # Bound the in-memory evidence log; oldest entries are dropped first.
    evidence_max_entries: int = 5000

    # Suggestion provider selection: none/openai/fake.
    suggestion_provider: str = "none"
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4"
    openai_temperature: float = 0.5
    openai_max_tokens: int = 800


@lru_cache
def get_settings() -> Settings:
    return Settings()


def extract_project_ref(url: str) -> str | None:
    match = _PROJECT_REF_PATTERN.match(url.strip())
    return match.group(1) if match else None


def split_table_list(raw: str | None) -> tuple[str, ...]:
    # Operators type comma-separated names; blanks and stray whitespace are ignored.
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class AuditConfig:
    """Operator-supplied inputs for a single audit run.

    Built fresh per run and passed explicitly into every check. The
    endpoint URL is always carried here rather than recovered from a
    constructed client.
    """

    endpoint_url: str
    data_plane_key: str
    control_plane_key: str | None = None
    tables: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "endpoint_url", self.endpoint_url.strip().rstrip("/"))
        object.__setattr__(self, "tables", tuple(self.tables or ()))
        if self.control_plane_key is not None and not self.control_plane_key.strip():
            object.__setattr__(self, "control_plane_key", None)

    @property
    def project_ref(self) -> str | None:
        return extract_project_ref(self.endpoint_url)

    @property
    def has_control_plane(self) -> bool:
        return self.control_plane_key is not None

    @classmethod
    def from_table_string(
        cls,
        *,
        endpoint_url: str,
        data_plane_key: str,
        control_plane_key: str | None = None,
        tables: str | None = None,
    ) -> "AuditConfig":
        return cls(
            endpoint_url=endpoint_url,
            data_plane_key=data_plane_key,
            control_plane_key=control_plane_key,
            tables=split_table_list(tables),
        )

    def missing_fields(self) -> list[str]:
        missing = []
        if not self.endpoint_url:
            missing.append("endpoint_url")
        if not self.data_plane_key:
            missing.append("data_plane_key")
        return missing

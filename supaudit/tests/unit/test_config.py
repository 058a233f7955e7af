from __future__ import annotations

from supaudit.core.config import AuditConfig, extract_project_ref, get_settings, split_table_list


def test_extract_project_ref() -> None:
    assert extract_project_ref("https://abcdefgh.supabase.co") == "abcdefgh"
    assert extract_project_ref(" https://abcdefgh.supabase.co/rest/v1 ") == "abcdefgh"
    assert extract_project_ref("http://localhost:54321") is None


def test_split_table_list_trims_and_drops_empties() -> None:
    assert split_table_list("orders, profiles,,  ,users ") == ("orders", "profiles", "users")
    assert split_table_list(None) == ()


def test_audit_config_normalizes_inputs() -> None:
    config = AuditConfig.from_table_string(
        endpoint_url="https://abcdefgh.supabase.co/",
        data_plane_key="service-role-key",
        control_plane_key="  ",
        tables="orders, profiles",
    )

    assert config.endpoint_url == "https://abcdefgh.supabase.co"
    assert config.tables == ("orders", "profiles")
    assert config.control_plane_key is None
    assert config.has_control_plane is False
    assert config.project_ref == "abcdefgh"
    assert config.missing_fields() == []


def test_audit_config_reports_missing_fields() -> None:
    config = AuditConfig(endpoint_url=" ", data_plane_key="")
    assert config.missing_fields() == ["endpoint_url", "data_plane_key"]


def test_settings_read_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("RLS_PROBE_MAX_CONCURRENCY", "3")
    monkeypatch.setenv("CONTROL_PLANE_BASE_URL", "https://management.example.com/v1")
    get_settings.cache_clear()

    settings = get_settings()
    assert settings.rls_probe_max_concurrency == 3
    assert settings.control_plane_base_url == "https://management.example.com/v1"
    assert settings.openai_model == "gpt-4"

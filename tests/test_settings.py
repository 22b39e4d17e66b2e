"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest

from taskflow.server.settings import TaskflowSettings, _get_settings_cached, get_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    for key in ("TASKFLOW_LOG_LEVEL", "TASKFLOW_COMPANY_NAME", "COMPANY_NAME", "TASKFLOW_AUTH_TOKEN"):
        monkeypatch.delenv(key, raising=False)
    _get_settings_cached.cache_clear()
    yield
    _get_settings_cached.cache_clear()


def test_defaults():
    settings = TaskflowSettings(_env_file=None)
    assert settings.company_name == "TaskFlow Enterprise"
    assert settings.notification_page_size == 50
    assert settings.changelog_retention_days == 90


def test_prefixed_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TASKFLOW_LOG_LEVEL", "DEBUG")
    assert TaskflowSettings(_env_file=None).log_level == "DEBUG"


def test_bare_company_name(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("COMPANY_NAME", "Initech")
    assert TaskflowSettings(_env_file=None).company_name == "Initech"


def test_resolve_auth_token(monkeypatch: pytest.MonkeyPatch):
    assert TaskflowSettings(_env_file=None, auth_token="fixed").resolve_auth_token() == "fixed"
    generated = TaskflowSettings(_env_file=None).resolve_auth_token()
    assert len(generated) >= 32


def test_get_settings_is_cached():
    assert get_settings() is get_settings()


def test_log_json_flag(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TASKFLOW_LOG_JSON", "true")
    assert TaskflowSettings(_env_file=None).log_json is True

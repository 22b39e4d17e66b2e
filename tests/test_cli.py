"""Tests for the ``taskflow`` command line."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from taskflow.cli import main
from taskflow.server.settings import _get_settings_cached


def test_help_lists_commands():
    result = CliRunner().invoke(main, ["--help"])
    assert result.exit_code == 0
    for command in ("server", "migrate-workspaces", "watch", "db"):
        assert command in result.output


def test_migrate_workspaces_requires_database(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.delenv("TASKFLOW_DATABASE_URL", raising=False)
    monkeypatch.chdir(tmp_path)
    _get_settings_cached.cache_clear()
    try:
        result = CliRunner().invoke(main, ["migrate-workspaces"])
    finally:
        _get_settings_cached.cache_clear()
    assert result.exit_code == 1
    assert "TASKFLOW_DATABASE_URL is not set" in result.output


def test_watch_requires_user_id(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("TASKFLOW_USER_ID", raising=False)
    result = CliRunner().invoke(main, ["watch"])
    assert result.exit_code == 2
    assert "--user-id" in result.output

"""Tests for environment-driven workbook settings."""

import pytest

from services.workbook_config import get_workbook_settings, reload_workbook_settings


ENV_KEYS = [
    "WORKBOOK_DEFAULT_FORMAT",
    "WORKBOOK_COMMENT_AUTHOR",
    "WORKBOOK_COMMENT_COLUMNS",
    "WORKBOOK_COMMENT_ROWS",
    "WORKBOOK_MAX_UPLOAD_MB",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    yield
    monkeypatch.undo()
    reload_workbook_settings()


class TestWorkbookSettings:
    """Loading and caching settings."""

    def test_defaults(self):
        settings = reload_workbook_settings()
        assert settings.default_target_format == "xlsx"
        assert settings.comment_author == ""
        assert (settings.comment_anchor_columns, settings.comment_anchor_rows) == (3, 5)
        assert settings.max_upload_bytes == 20 * 1024 * 1024
        assert settings.log_level == "INFO"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("WORKBOOK_DEFAULT_FORMAT", "XLS")
        monkeypatch.setenv("WORKBOOK_COMMENT_AUTHOR", "Reviewer")
        monkeypatch.setenv("WORKBOOK_COMMENT_COLUMNS", "4")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        settings = reload_workbook_settings()
        assert settings.default_target_format == "xls"
        assert settings.comment_author == "Reviewer"
        assert settings.comment_anchor_columns == 4
        assert settings.log_level == "DEBUG"

    def test_invalid_values_fall_back(self, monkeypatch):
        monkeypatch.setenv("WORKBOOK_DEFAULT_FORMAT", "ods")
        monkeypatch.setenv("WORKBOOK_COMMENT_ROWS", "many")
        monkeypatch.setenv("WORKBOOK_MAX_UPLOAD_MB", "-1")
        settings = reload_workbook_settings()
        assert settings.default_target_format == "xlsx"
        assert settings.comment_anchor_rows == 5
        assert settings.max_upload_mb == 20

    def test_singleton(self):
        assert get_workbook_settings() is get_workbook_settings()
        reloaded = reload_workbook_settings()
        assert get_workbook_settings() is reloaded

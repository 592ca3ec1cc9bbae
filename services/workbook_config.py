"""Centralized workbook engine configuration.

Single source of truth for conversion and upload settings.
Reads from environment variables with sensible defaults.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

# Container formats by file extension
TargetFormat = Literal["xls", "xlsx"]


@dataclass
class WorkbookSettings:
    """Workbook settings loaded from environment.

    Usage:
        settings = get_workbook_settings()
        print(settings.default_target_format)  # "xlsx"
        print(settings.comment_anchor_columns)  # 3
    """
    # Conversion
    default_target_format: TargetFormat = "xlsx"

    # Comments written on cells
    comment_author: str = ""
    comment_anchor_columns: int = 3
    comment_anchor_rows: int = 5

    # HTTP surface
    max_upload_mb: int = 20
    log_level: str = "INFO"

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


def _int_from_env(key: str, default: int) -> int:
    value = os.getenv(key)
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _load_settings_from_env() -> WorkbookSettings:
    """Load workbook settings from environment variables."""
    settings = WorkbookSettings()

    target = os.getenv("WORKBOOK_DEFAULT_FORMAT", "xlsx").lower()
    settings.default_target_format = target if target in ("xls", "xlsx") else "xlsx"

    settings.comment_author = os.getenv("WORKBOOK_COMMENT_AUTHOR", "")
    settings.comment_anchor_columns = _int_from_env("WORKBOOK_COMMENT_COLUMNS", 3)
    settings.comment_anchor_rows = _int_from_env("WORKBOOK_COMMENT_ROWS", 5)
    settings.max_upload_mb = _int_from_env("WORKBOOK_MAX_UPLOAD_MB", 20)
    settings.log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    return settings


# Singleton instance
_settings: WorkbookSettings | None = None


def get_workbook_settings() -> WorkbookSettings:
    """Get the workbook settings singleton.

    Settings are loaded once from environment on first access.
    """
    global _settings
    if _settings is None:
        _settings = _load_settings_from_env()
    return _settings


def reload_workbook_settings() -> WorkbookSettings:
    """Force reload settings from environment.

    Useful for testing or after env changes.
    """
    global _settings
    _settings = _load_settings_from_env()
    return _settings

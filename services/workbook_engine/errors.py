"""Exception hierarchy for the workbook engine.

    WorkbookEngineError (base)
    ├── UnreadableContainer
    ├── UnsupportedTargetFormat
    ├── InvalidValidation
    └── InvalidWorkbook

Malformed named ranges and validation records met while reading are not
errors: they are logged and left out of the model.
"""

from __future__ import annotations


class WorkbookEngineError(Exception):
    """Base class for all workbook engine errors."""

    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnreadableContainer(WorkbookEngineError):
    """The source is neither a legacy binary nor an XML package workbook."""

    http_status = 400


class UnsupportedTargetFormat(WorkbookEngineError):
    """A write was requested for a format with no known container."""

    http_status = 400


class InvalidValidation(WorkbookEngineError):
    """A data validation that cannot be expressed in the target container."""

    http_status = 422


class InvalidWorkbook(WorkbookEngineError):
    """A workbook that cannot be materialized at all."""

    http_status = 422

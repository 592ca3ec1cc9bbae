"""API routes for workbook normalization.

- Upload .xls/.xlsx -> normalized Workbook JSON
- Upload .xls/.xlsx -> converted file
- Workbook JSON -> file
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from fastapi.responses import Response

from services.workbook_config import get_workbook_settings
from services.workbook_engine import (
    ContainerFormat,
    Workbook,
    WorkbookEngineError,
    read_workbook,
    resolve_target,
    workbook_to_bytes,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workbooks", tags=["workbooks"])

MEDIA_TYPES = {
    ContainerFormat.LEGACY_BINARY: "application/vnd.ms-excel",
    ContainerFormat.XML_PACKAGE: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


# =============================================================================
# HELPERS
# =============================================================================

async def _read_upload(file: UploadFile) -> bytes:
    content = await file.read()
    limit = get_workbook_settings().max_upload_bytes
    if len(content) > limit:
        raise HTTPException(413, f"Upload exceeds {limit} bytes")
    return content


def _target(target: Optional[str]) -> ContainerFormat:
    try:
        return resolve_target(target or get_workbook_settings().default_target_format)
    except WorkbookEngineError as e:
        raise HTTPException(e.http_status, e.message)


def _file_response(data: bytes, version: ContainerFormat, stem: str) -> Response:
    filename = f"{stem}.{version.value}"
    return Response(
        content=data,
        media_type=MEDIA_TYPES[version],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/read", response_model=Workbook)
async def read_upload(file: UploadFile = File(...)):
    """Read an uploaded workbook into the normalized model."""
    content = await _read_upload(file)
    try:
        return read_workbook(content)
    except WorkbookEngineError as e:
        logger.info(f"[READ] Rejected upload '{file.filename}': {e.message}")
        raise HTTPException(e.http_status, e.message)


@router.post("/convert")
async def convert_upload(
    file: UploadFile = File(...),
    target: Optional[str] = Query(None, description="xls or xlsx"),
):
    """Read an uploaded workbook and write it out in the target format."""
    version = _target(target)
    content = await _read_upload(file)
    try:
        workbook = read_workbook(content)
        data = workbook_to_bytes(workbook, version)
    except WorkbookEngineError as e:
        logger.info(f"[WRITE] Conversion of '{file.filename}' failed: {e.message}")
        raise HTTPException(e.http_status, e.message)

    stem = Path(file.filename).stem if file.filename else "workbook"
    return _file_response(data, version, stem)


@router.post("/write")
async def write_model(
    workbook: Workbook,
    target: Optional[str] = Query(None, description="xls or xlsx"),
):
    """Materialize a normalized Workbook JSON body as a file."""
    version = _target(target)
    try:
        data = workbook_to_bytes(workbook, version)
    except WorkbookEngineError as e:
        raise HTTPException(e.http_status, e.message)
    return _file_response(data, version, "workbook")

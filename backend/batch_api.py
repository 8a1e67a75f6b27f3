"""
FastAPI router for batch trip imports.

POST   /api/trips/batch                  upload an archive, start a job (202)
GET    /api/trips/batch/status/{job_id}  poll job progress and grouped errors
GET    /api/trips/batch/template         download an example archive
DELETE /api/trips/batch/jobs             drop job records older than N hours
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import Response

from archive_reader import ArchiveReader
from batch_errors import (
    ArchiveError,
    BatchStartError,
    JobQueueFullError,
    categorize,
    enhance_general_error,
    get_error_example,
    get_error_suggestion,
)
from batch_processor import BatchProcessor
from batch_template import TEMPLATE_FILENAME, build_template_archive
from config import BATCH_JOB_MAX_AGE_HOURS, MAX_ARCHIVE_BYTES, MAX_ARCHIVE_MB
from models import (
    TERMINAL_STATUSES,
    BatchJobSnapshot,
    BatchProgress,
    BatchStartResponse,
    BatchStatusResponse,
    CleanupResponse,
    ErrorDetail,
    ErrorGroupResponse,
)
from trip_metadata import validate_structure

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trips/batch", tags=["batch-import"])

ALLOWED_EXTENSIONS = {".zip"}
UPLOAD_CHUNK_BYTES = 1024 * 1024

# Wired in during lifespan
_processor: Optional[BatchProcessor] = None


def set_processor(processor: Optional[BatchProcessor]) -> None:
    global _processor
    _processor = processor


def _require_processor() -> BatchProcessor:
    if _processor is None:
        raise HTTPException(status_code=503, detail="Batch processor not ready")
    return _processor


async def _read_upload(file: UploadFile) -> bytes:
    buffer = bytearray()
    try:
        while True:
            chunk = await file.read(UPLOAD_CHUNK_BYTES)
            if not chunk:
                break
            buffer.extend(chunk)
            if len(buffer) > MAX_ARCHIVE_BYTES:
                raise HTTPException(
                    status_code=400,
                    detail=enhance_general_error(
                        f"Archive too large: more than {MAX_ARCHIVE_MB}MB (max {MAX_ARCHIVE_MB}MB)"
                    ),
                )
    finally:
        await file.close()
    return bytes(buffer)


def _check_archive(data: bytes) -> None:
    """Reject unreadable or structurally invalid archives before any job exists."""
    try:
        handle = ArchiveReader().load(data)
    except ArchiveError as exc:
        raise HTTPException(status_code=400, detail=enhance_general_error(str(exc))) from exc

    with handle:
        errors = validate_structure(handle)
    if errors:
        message = f"Invalid archive structure: {'; '.join(errors)}"
        raise HTTPException(status_code=400, detail=enhance_general_error(message))


def build_status_response(snapshot: BatchJobSnapshot) -> BatchStatusResponse:
    total = snapshot.total_trips
    completed = snapshot.processed_trips
    percentage = round(completed / total * 100) if total > 0 else 0

    started_at = datetime.fromisoformat(snapshot.started_at)
    finished_at = (
        datetime.fromisoformat(snapshot.completed_at)
        if snapshot.completed_at
        else datetime.now(timezone.utc)
    )
    duration_ms = max(0, int((finished_at - started_at).total_seconds() * 1000))

    error_groups = [
        ErrorGroupResponse(
            category=group.category,
            title=group.title,
            errors=[
                ErrorDetail(
                    **error.model_dump(),
                    suggestion=get_error_suggestion(error),
                    example=get_error_example(error),
                )
                for error in group.errors
            ],
        )
        for group in categorize(snapshot.errors)
    ]

    return BatchStatusResponse(
        **snapshot.model_dump(),
        progress=BatchProgress(
            percentage=percentage,
            completed=completed,
            total=total,
            remaining=max(0, total - completed),
        ),
        has_errors=bool(snapshot.errors),
        is_complete=snapshot.status in TERMINAL_STATUSES,
        duration_ms=duration_ms,
        error_groups=error_groups,
    )


@router.post("", response_model=BatchStartResponse, status_code=202)
async def start_batch_import(
    file: UploadFile = File(..., description="ZIP archive with viaggi.json"),
    owner_id: str = Form(..., min_length=1, max_length=128),
):
    """
    Upload a trip archive and start importing it in the background.

    Poll status_url until is_complete is true.
    """
    processor = _require_processor()

    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")
    ext = Path(file.filename).suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
        )

    data = await _read_upload(file)
    _check_archive(data)

    try:
        job_id = await processor.start_job(owner_id.strip(), data)
    except BatchStartError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except JobQueueFullError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return BatchStartResponse(
        job_id=job_id,
        message="Batch import started. Use status_url to follow its progress.",
        status_url=f"{router.prefix}/status/{job_id}",
    )


@router.get("/status/{job_id}", response_model=BatchStatusResponse)
async def get_batch_status(job_id: str):
    processor = _require_processor()
    snapshot = await processor.get_status(job_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Job not found or expired")
    return build_status_response(snapshot)


@router.get("/template")
async def download_template():
    return Response(
        content=build_template_archive(),
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{TEMPLATE_FILENAME}"'},
    )


@router.delete("/jobs", response_model=CleanupResponse)
async def cleanup_batch_jobs(
    max_age_hours: int = Query(BATCH_JOB_MAX_AGE_HOURS, ge=0, le=24 * 365),
):
    processor = _require_processor()
    deleted = await processor.cleanup_old_jobs(max_age_hours)
    return CleanupResponse(deleted=deleted, max_age_hours=max_age_hours)

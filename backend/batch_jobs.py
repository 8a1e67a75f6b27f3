"""
Durable batch job records.

Status moves forward only: every transition is guarded in SQL on the
current status, so a late write can never reopen a terminal job.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from db import get_db, utc_now_iso
from models import BatchJobError, BatchJobSnapshot, JobStatus

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Processing interrupted by a service restart. Upload the archive again."


async def create_job_record(
    *,
    job_id: str,
    owner_id: str,
    archive_url: str,
    archive_public_id: str = "",
) -> None:
    db = await get_db()
    try:
        await db.execute(
            """
            INSERT INTO batch_jobs (
                job_id, owner_id, archive_url, archive_public_id,
                status, total_trips, processed_trips, started_at, completed_at
            )
            VALUES (?, ?, ?, ?, ?, 0, 0, ?, NULL)
            """,
            (
                job_id,
                owner_id,
                archive_url,
                archive_public_id,
                JobStatus.PENDING.value,
                utc_now_iso(),
            ),
        )
        await db.commit()
    finally:
        await db.close()


async def delete_job(job_id: str) -> None:
    """Remove a job record that was never scheduled."""
    db = await get_db()
    try:
        await db.execute("DELETE FROM batch_jobs WHERE job_id = ?", (job_id,))
        await db.commit()
    finally:
        await db.close()


async def mark_processing(job_id: str) -> bool:
    db = await get_db()
    try:
        cursor = await db.execute(
            """
            UPDATE batch_jobs
            SET status = ?
            WHERE job_id = ? AND status = ?
            """,
            (JobStatus.PROCESSING.value, job_id, JobStatus.PENDING.value),
        )
        await db.commit()
        return cursor.rowcount > 0
    finally:
        await db.close()


async def set_total_trips(job_id: str, total_trips: int) -> None:
    db = await get_db()
    try:
        await db.execute(
            """
            UPDATE batch_jobs
            SET total_trips = ?
            WHERE job_id = ? AND status = ?
            """,
            (total_trips, job_id, JobStatus.PROCESSING.value),
        )
        await db.commit()
    finally:
        await db.close()


async def record_trip_created(job_id: str, trip_id: str) -> None:
    """Append a created trip id and bump the processed counter together."""
    db = await get_db()
    try:
        await db.execute(
            """
            UPDATE batch_jobs
            SET processed_trips = processed_trips + 1
            WHERE job_id = ?
            """,
            (job_id,),
        )
        await db.execute(
            """
            INSERT INTO batch_job_trips (job_id, trip_id, created_at)
            VALUES (?, ?, ?)
            """,
            (job_id, trip_id, utc_now_iso()),
        )
        await db.commit()
    finally:
        await db.close()


async def _append_message(
    job_id: str,
    *,
    severity: str,
    message: str,
    trip_index: Optional[int] = None,
    stage_index: Optional[int] = None,
    field: Optional[str] = None,
    category: Optional[str] = None,
) -> None:
    db = await get_db()
    try:
        await db.execute(
            """
            INSERT INTO batch_job_messages (
                job_id, severity, message, trip_index, stage_index, field, category, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (job_id, severity, message, trip_index, stage_index, field, category, utc_now_iso()),
        )
        await db.commit()
    finally:
        await db.close()


async def append_error(
    job_id: str,
    message: str,
    *,
    trip_index: Optional[int] = None,
    stage_index: Optional[int] = None,
    field: Optional[str] = None,
    category: Optional[str] = None,
) -> None:
    await _append_message(
        job_id,
        severity="error",
        message=message,
        trip_index=trip_index,
        stage_index=stage_index,
        field=field,
        category=category,
    )


async def append_warnings(job_id: str, warnings: list[str]) -> None:
    if not warnings:
        return
    now = utc_now_iso()
    db = await get_db()
    try:
        await db.executemany(
            """
            INSERT INTO batch_job_messages (job_id, severity, message, category, created_at)
            VALUES (?, 'warning', ?, NULL, ?)
            """,
            [(job_id, warning, now) for warning in warnings],
        )
        await db.commit()
    finally:
        await db.close()


async def finalize_job(job_id: str) -> Optional[JobStatus]:
    """
    Close a processing job: completed when at least one trip was created.
    """
    db = await get_db()
    try:
        await db.execute(
            """
            UPDATE batch_jobs
            SET status = CASE WHEN processed_trips > 0 THEN ? ELSE ? END,
                completed_at = ?
            WHERE job_id = ? AND status = ?
            """,
            (
                JobStatus.COMPLETED.value,
                JobStatus.FAILED.value,
                utc_now_iso(),
                job_id,
                JobStatus.PROCESSING.value,
            ),
        )
        await db.commit()

        cursor = await db.execute("SELECT status FROM batch_jobs WHERE job_id = ?", (job_id,))
        row = await cursor.fetchone()
        await cursor.close()
        return JobStatus(row["status"]) if row else None
    finally:
        await db.close()


async def fail_job(job_id: str) -> bool:
    db = await get_db()
    try:
        cursor = await db.execute(
            """
            UPDATE batch_jobs
            SET status = ?, completed_at = ?
            WHERE job_id = ? AND status IN (?, ?)
            """,
            (
                JobStatus.FAILED.value,
                utc_now_iso(),
                job_id,
                JobStatus.PENDING.value,
                JobStatus.PROCESSING.value,
            ),
        )
        await db.commit()
        return cursor.rowcount > 0
    finally:
        await db.close()


async def get_job_snapshot(job_id: str) -> Optional[BatchJobSnapshot]:
    db = await get_db()
    try:
        cursor = await db.execute(
            """
            SELECT job_id, owner_id, status, total_trips, processed_trips, started_at, completed_at
            FROM batch_jobs
            WHERE job_id = ?
            LIMIT 1
            """,
            (job_id,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        if not row:
            return None

        cursor = await db.execute(
            """
            SELECT trip_id
            FROM batch_job_trips
            WHERE job_id = ?
            ORDER BY id ASC
            """,
            (job_id,),
        )
        trip_rows = await cursor.fetchall()
        await cursor.close()

        cursor = await db.execute(
            """
            SELECT severity, message, trip_index, stage_index, field, category
            FROM batch_job_messages
            WHERE job_id = ?
            ORDER BY id ASC
            """,
            (job_id,),
        )
        message_rows = await cursor.fetchall()
        await cursor.close()
    finally:
        await db.close()

    errors = [
        BatchJobError(
            message=str(item["message"]),
            trip_index=item["trip_index"],
            stage_index=item["stage_index"],
            field=item["field"],
            category=item["category"],
        )
        for item in message_rows
        if item["severity"] == "error"
    ]
    warnings = [str(item["message"]) for item in message_rows if item["severity"] == "warning"]

    return BatchJobSnapshot(
        job_id=str(row["job_id"]),
        owner_id=str(row["owner_id"]),
        status=JobStatus(row["status"]),
        total_trips=int(row["total_trips"]),
        processed_trips=int(row["processed_trips"]),
        created_trip_ids=[str(item["trip_id"]) for item in trip_rows],
        errors=errors,
        warnings=warnings,
        started_at=str(row["started_at"]),
        completed_at=row["completed_at"],
    )


async def get_job_source(job_id: str) -> Optional[dict[str, str]]:
    """Owner and stored archive of a job, as needed by the worker."""
    db = await get_db()
    try:
        cursor = await db.execute(
            """
            SELECT owner_id, archive_public_id
            FROM batch_jobs
            WHERE job_id = ?
            LIMIT 1
            """,
            (job_id,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        if not row:
            return None
        return {"owner_id": str(row["owner_id"]), "archive_public_id": str(row["archive_public_id"] or "")}
    finally:
        await db.close()


async def delete_jobs_started_before(cutoff: datetime) -> list[dict[str, Any]]:
    """
    Delete job records started before the cutoff and return what was removed.
    """
    cutoff_iso = cutoff.astimezone(timezone.utc).isoformat()
    db = await get_db()
    try:
        cursor = await db.execute(
            """
            SELECT job_id, archive_public_id
            FROM batch_jobs
            WHERE started_at < ?
            """,
            (cutoff_iso,),
        )
        rows = await cursor.fetchall()
        await cursor.close()

        if rows:
            await db.executemany(
                "DELETE FROM batch_jobs WHERE job_id = ?",
                [(row["job_id"],) for row in rows],
            )
            await db.commit()

        return [
            {"job_id": str(row["job_id"]), "archive_public_id": str(row["archive_public_id"] or "")}
            for row in rows
        ]
    finally:
        await db.close()


def cutoff_for(max_age_hours: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=max_age_hours)


async def mark_interrupted_jobs() -> int:
    """
    Fail jobs left pending or processing by a previous process.
    """
    now = utc_now_iso()
    db = await get_db()
    try:
        cursor = await db.execute(
            "SELECT job_id FROM batch_jobs WHERE status IN (?, ?)",
            (JobStatus.PENDING.value, JobStatus.PROCESSING.value),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        job_ids = [str(row["job_id"]) for row in rows]
        if not job_ids:
            return 0

        await db.executemany(
            """
            UPDATE batch_jobs
            SET status = ?, completed_at = ?
            WHERE job_id = ? AND status IN (?, ?)
            """,
            [
                (
                    JobStatus.FAILED.value,
                    now,
                    job_id,
                    JobStatus.PENDING.value,
                    JobStatus.PROCESSING.value,
                )
                for job_id in job_ids
            ],
        )
        await db.executemany(
            """
            INSERT INTO batch_job_messages (job_id, severity, message, category, created_at)
            VALUES (?, 'error', ?, 'processing', ?)
            """,
            [(job_id, INTERRUPTED_MESSAGE, now) for job_id in job_ids],
        )
        await db.commit()
    finally:
        await db.close()

    logger.warning("Marked %s interrupted batch jobs as failed", len(job_ids))
    return len(job_ids)

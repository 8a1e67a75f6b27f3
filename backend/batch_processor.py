"""
Batch trip import orchestration.

start_job stores the uploaded archive, records a pending job and queues it.
process runs on a worker: it validates and parses the archive, then imports
each trip on its own. A failing trip is recorded and skipped; the job
completes when at least one trip was created.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from typing import Any, Callable, Optional

from archive_reader import ArchiveReader
from batch_errors import (
    ArchiveDownloadTimeout,
    BatchStartError,
    JobQueueFullError,
    MetadataError,
    category_of,
    classify_message,
    enhance_general_error,
    enhance_trip_error,
    extract_error_field,
)
from batch_jobs import (
    append_error,
    append_warnings,
    create_job_record,
    cutoff_for,
    delete_job,
    delete_jobs_started_before,
    fail_job,
    finalize_job,
    get_job_snapshot,
    get_job_source,
    mark_processing,
    record_trip_created,
    set_total_trips,
)
from config import (
    ARCHIVE_DOWNLOAD_TIMEOUT_SECONDS,
    BATCH_JOB_MAX_AGE_HOURS,
    TRIP_PERSIST_TIMEOUT_SECONDS,
)
from job_runner import JobRunner
from models import BatchJobSnapshot
from storage import StorageProvider
from trip_metadata import parse_metadata_document, validate_folder_structure, validate_structure
from trip_parser import ParsedMediaFile, ParsedTrip, TripParser
from trip_store import StageRecord, StoredAsset, create_trip_with_stages, get_trip, new_trip_id
from url_helpers import (
    build_archive_key,
    build_stage_gpx_key,
    build_stage_media_key,
    build_stage_prefix,
    build_trip_gpx_key,
    build_trip_media_key,
)
from utils import slugify

logger = logging.getLogger(__name__)

ARCHIVE_CONTENT_TYPE = "application/zip"


def new_job_id() -> str:
    return f"batch_{uuid.uuid4().hex}"


class BatchProcessor:
    def __init__(
        self,
        storage: StorageProvider,
        runner: Optional[JobRunner] = None,
        reader: Optional[ArchiveReader] = None,
    ) -> None:
        self.storage = storage
        self.runner = runner
        self.reader = reader or ArchiveReader()

    async def _run_blocking(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    # =========================================================================
    # Job lifecycle
    # =========================================================================

    async def start_job(self, owner_id: str, archive_bytes: bytes) -> str:
        """
        Store the archive, create a pending job and hand it to the runner.

        Raises BatchStartError when the archive cannot be stored, and
        JobQueueFullError when the runner rejects the job. In both cases no
        job record is left behind.
        """
        job_id = new_job_id()
        key = build_archive_key(owner_id, job_id)

        if self.runner is not None:
            self.runner.ensure_capacity()

        try:
            upload = await self._run_blocking(
                self.storage.upload_file, archive_bytes, key, ARCHIVE_CONTENT_TYPE
            )
        except Exception as exc:
            logger.exception("[%s] Failed to store uploaded archive", job_id)
            raise BatchStartError(f"Failed to store the uploaded archive: {exc}") from exc

        await create_job_record(
            job_id=job_id,
            owner_id=owner_id,
            archive_url=upload.url,
            archive_public_id=upload.public_id,
        )
        logger.info(
            "[%s] Batch job created for owner %s (%s bytes)",
            job_id, owner_id, len(archive_bytes),
        )

        if self.runner is not None:
            try:
                self.runner.submit(job_id)
            except JobQueueFullError:
                logger.warning("[%s] Batch queue filled up before the job was queued", job_id)
                await delete_job(job_id)
                await self._discard_assets(job_id, [upload.public_id])
                raise

        return job_id

    async def process(self, job_id: str) -> None:
        if not await mark_processing(job_id):
            logger.warning("[%s] Job is missing or no longer pending, skipping", job_id)
            return

        try:
            await self._process(job_id)
        except Exception as exc:
            logger.exception("[%s] Batch job failed", job_id)
            message = str(exc) or type(exc).__name__
            await append_error(
                job_id,
                enhance_general_error(message),
                category=category_of(exc) or classify_message(message),
            )
            await fail_job(job_id)

    async def _process(self, job_id: str) -> None:
        source = await get_job_source(job_id)
        if source is None:
            raise RuntimeError(f"Batch job {job_id} disappeared while processing")

        data = await self._download_archive(source["archive_public_id"])
        handle = await self._run_blocking(self.reader.load, data)

        with handle:
            structure_errors = validate_structure(handle)
            if structure_errors:
                raise MetadataError(f"Invalid archive structure: {'; '.join(structure_errors)}")

            warnings = validate_folder_structure(handle)
            if warnings:
                logger.info("[%s] Archive has %s structure warnings", job_id, len(warnings))
                await append_warnings(job_id, warnings)

            document = await self._run_blocking(parse_metadata_document, handle)
            parser = TripParser(handle, document)
            total = parser.trip_count
            await set_total_trips(job_id, total)
            logger.info("[%s] Importing %s trips", job_id, total)

            for index in range(total):
                await self._import_trip(job_id, source["owner_id"], parser, index)

        status = await finalize_job(job_id)
        logger.info("[%s] Batch job finished with status %s", job_id, status.value if status else None)

    async def _download_archive(self, public_id: str) -> bytes:
        try:
            return await asyncio.wait_for(
                self._run_blocking(self.storage.download_file, public_id),
                timeout=ARCHIVE_DOWNLOAD_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as exc:
            raise ArchiveDownloadTimeout(
                f"Archive download timeout after {ARCHIVE_DOWNLOAD_TIMEOUT_SECONDS:.0f}s"
            ) from exc

    # =========================================================================
    # Per-trip import
    # =========================================================================

    async def _import_trip(self, job_id: str, owner_id: str, parser: TripParser, index: int) -> None:
        raw = parser.document.raw_trips[index]
        declared_title = raw.get("title") if isinstance(raw.get("title"), str) else None
        uploaded: list[str] = []
        trip_id: Optional[str] = None

        try:
            trip = await self._run_blocking(parser.parse_trip, index)
            trip_id = new_trip_id()
            slug = slugify(trip.title) or f"trip-{trip_id[:8]}"

            media, gpx_file, stages = await self._upload_trip_assets(
                job_id, trip, trip_id, slug, uploaded
            )
            await asyncio.wait_for(
                create_trip_with_stages(
                    trip_id=trip_id,
                    owner_id=owner_id,
                    slug=slug,
                    metadata=trip.metadata,
                    media=media,
                    gpx_file=gpx_file,
                    stages=stages,
                ),
                timeout=TRIP_PERSIST_TIMEOUT_SECONDS,
            )
        except Exception as exc:
            timed_out = isinstance(exc, asyncio.TimeoutError)
            if not (timed_out and trip_id and await get_trip(trip_id) is not None):
                await self._record_trip_failure(job_id, index, declared_title, exc, uploaded)
                return
            # The commit landed after wait_for gave up on it
            logger.warning("[%s] Trip %s was saved after the persist timeout", job_id, index + 1)

        await record_trip_created(job_id, trip_id)
        logger.info("[%s] Trip %s/%s created: %s", job_id, index + 1, parser.trip_count, trip_id)

    async def _record_trip_failure(
        self,
        job_id: str,
        index: int,
        declared_title: Optional[str],
        exc: Exception,
        uploaded: list[str],
    ) -> None:
        if isinstance(exc, asyncio.TimeoutError) and not str(exc):
            message = f"Trip save timeout after {TRIP_PERSIST_TIMEOUT_SECONDS:.0f}s"
        else:
            message = str(exc) or type(exc).__name__

        logger.warning("[%s] Trip %s failed: %s", job_id, index + 1, message)
        await append_error(
            job_id,
            enhance_trip_error(message, index, declared_title),
            trip_index=index,
            stage_index=getattr(exc, "stage_index", None),
            field=extract_error_field(message),
            category=category_of(exc) or classify_message(message),
        )
        await self._discard_assets(job_id, uploaded)

    async def _upload_trip_assets(
        self,
        job_id: str,
        trip: ParsedTrip,
        trip_id: str,
        slug: str,
        uploaded: list[str],
    ) -> tuple[list[StoredAsset], Optional[StoredAsset], list[StageRecord]]:
        media = await self._upload_media(
            job_id,
            trip.media,
            lambda position, item: build_trip_media_key(trip_id, slug, position, item.filename),
            uploaded,
        )

        gpx_file = None
        if trip.gpx_file is not None:
            gpx_file = await self._upload_asset(
                job_id,
                trip.gpx_file.data,
                build_trip_gpx_key(trip_id, slug, trip.gpx_file.filename),
                trip.gpx_file.content_type,
                trip.gpx_file.filename,
                uploaded,
            )

        stages = []
        for stage in trip.stages:
            prefix = build_stage_prefix(trip_id, slug, stage.order_index, stage.title)
            stage_media = await self._upload_media(
                job_id,
                stage.media,
                lambda position, item, prefix=prefix: build_stage_media_key(prefix, position, item.filename),
                uploaded,
            )
            stage_gpx = None
            if stage.gpx_file is not None:
                stage_gpx = await self._upload_asset(
                    job_id,
                    stage.gpx_file.data,
                    build_stage_gpx_key(prefix, stage.gpx_file.filename),
                    stage.gpx_file.content_type,
                    stage.gpx_file.filename,
                    uploaded,
                )
            stages.append(
                StageRecord(
                    order_index=stage.order_index,
                    title=stage.title,
                    description=stage.description,
                    route_type=stage.route_type,
                    duration=stage.duration,
                    media=stage_media,
                    gpx_file=stage_gpx,
                )
            )

        return media, gpx_file, stages

    async def _upload_media(
        self,
        job_id: str,
        items: list[ParsedMediaFile],
        key_for: Callable[[int, ParsedMediaFile], str],
        uploaded: list[str],
    ) -> list[StoredAsset]:
        stored = []
        for position, item in enumerate(items):
            asset = await self._upload_asset(
                job_id,
                item.data,
                key_for(position, item),
                item.content_type,
                item.filename,
                uploaded,
                is_hero=item.is_hero,
            )
            if asset is not None:
                stored.append(asset)
        return stored

    async def _upload_asset(
        self,
        job_id: str,
        data: bytes,
        key: str,
        content_type: str,
        filename: str,
        uploaded: list[str],
        is_hero: bool = False,
    ) -> Optional[StoredAsset]:
        """Upload one asset; a failure is logged and the asset skipped."""
        try:
            result = await self._run_blocking(self.storage.upload_file, data, key, content_type)
        except Exception as exc:
            logger.warning("[%s] Skipping asset %s, upload failed: %s", job_id, key, exc)
            return None

        uploaded.append(result.public_id)
        return StoredAsset(
            filename=filename,
            url=result.url,
            public_id=result.public_id,
            size=result.size,
            content_type=result.content_type,
            is_hero=is_hero,
        )

    async def _discard_assets(self, job_id: str, public_ids: list[str]) -> None:
        for public_id in public_ids:
            try:
                await self._run_blocking(self.storage.delete_file, public_id)
            except Exception as exc:
                logger.warning("[%s] Failed to delete orphaned asset %s: %s", job_id, public_id, exc)
        if public_ids:
            logger.info("[%s] Removed %s orphaned assets", job_id, len(public_ids))

    # =========================================================================
    # Queries and maintenance
    # =========================================================================

    async def get_status(self, job_id: str) -> Optional[BatchJobSnapshot]:
        return await get_job_snapshot(job_id)

    async def cleanup_old_jobs(self, max_age_hours: float = BATCH_JOB_MAX_AGE_HOURS) -> int:
        """
        Delete job records older than max_age_hours and their stored archives.
        """
        removed = await delete_jobs_started_before(cutoff_for(max_age_hours))

        for item in removed:
            if not item["archive_public_id"]:
                continue
            try:
                await self._run_blocking(self.storage.delete_file, item["archive_public_id"])
            except Exception as exc:
                logger.warning(
                    "[%s] Failed to delete stored archive %s: %s",
                    item["job_id"], item["archive_public_id"], exc,
                )

        if removed:
            logger.info("Cleaned up %s batch jobs older than %sh", len(removed), max_age_hours)
        return len(removed)

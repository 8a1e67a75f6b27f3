"""
Transactional persistence of imported trips and their stages.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from batch_errors import DuplicateTripError
from db import get_db, utc_now_iso
from trip_metadata import TripMetadata

logger = logging.getLogger(__name__)

DUPLICATE_TRIP_MESSAGE = "Trip already exists. Change the title."


@dataclass
class StoredAsset:
    filename: str
    url: str
    public_id: str
    size: int
    content_type: str
    is_hero: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StageRecord:
    order_index: int
    title: str
    description: Optional[str] = None
    route_type: Optional[str] = None
    duration: Optional[str] = None
    media: list[StoredAsset] = field(default_factory=list)
    gpx_file: Optional[StoredAsset] = None


def new_trip_id() -> str:
    return uuid.uuid4().hex


def _assets_json(assets: list[StoredAsset]) -> str:
    return json.dumps([asset.as_dict() for asset in assets])


def _asset_json(asset: Optional[StoredAsset]) -> Optional[str]:
    return json.dumps(asset.as_dict()) if asset else None


async def create_trip_with_stages(
    *,
    trip_id: str,
    owner_id: str,
    slug: str,
    metadata: TripMetadata,
    media: list[StoredAsset],
    gpx_file: Optional[StoredAsset],
    stages: list[StageRecord],
) -> str:
    """
    Insert one trip and all of its stages, or nothing at all.

    A slug collision raises DuplicateTripError.
    """
    now = utc_now_iso()
    db = await get_db()
    try:
        await db.execute("BEGIN IMMEDIATE")
        await db.execute(
            """
            INSERT INTO trips (
                id, owner_id, slug, title, summary, destination, theme,
                characteristics, recommended_seasons, tags, travel_date,
                duration_days, duration_nights, media, gpx_file, status,
                created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, 'draft', ?, ?)
            """,
            (
                trip_id,
                owner_id,
                slug,
                metadata.title,
                metadata.summary,
                metadata.destination,
                metadata.theme,
                json.dumps(metadata.characteristics),
                json.dumps(metadata.recommended_seasons),
                json.dumps(metadata.tags),
                metadata.travel_date.isoformat() if metadata.travel_date else None,
                max(1, len(stages)),
                _assets_json(media),
                _asset_json(gpx_file),
                now,
                now,
            ),
        )

        if stages:
            await db.executemany(
                """
                INSERT INTO stages (
                    id, trip_id, order_index, title, description, route_type, duration,
                    media, gpx_file, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        uuid.uuid4().hex,
                        trip_id,
                        stage.order_index,
                        stage.title,
                        stage.description,
                        stage.route_type,
                        stage.duration,
                        _assets_json(stage.media),
                        _asset_json(stage.gpx_file),
                        now,
                        now,
                    )
                    for stage in stages
                ],
            )

        await db.commit()
    except sqlite3.IntegrityError as exc:
        await db.rollback()
        if "trips.slug" in str(exc):
            raise DuplicateTripError(DUPLICATE_TRIP_MESSAGE) from exc
        raise
    except Exception:
        await db.rollback()
        raise
    finally:
        await db.close()

    logger.info("Created trip %s (%s) with %s stages", trip_id, slug, len(stages))
    return trip_id


async def get_trip(trip_id: str) -> Optional[dict[str, Any]]:
    db = await get_db()
    try:
        cursor = await db.execute("SELECT * FROM trips WHERE id = ? LIMIT 1", (trip_id,))
        row = await cursor.fetchone()
        await cursor.close()
        if not row:
            return None

        cursor = await db.execute(
            "SELECT * FROM stages WHERE trip_id = ? ORDER BY order_index ASC",
            (trip_id,),
        )
        stage_rows = await cursor.fetchall()
        await cursor.close()
    finally:
        await db.close()

    trip = dict(row)
    for key in ("characteristics", "recommended_seasons", "tags", "media"):
        trip[key] = json.loads(trip[key] or "[]")
    trip["gpx_file"] = json.loads(trip["gpx_file"]) if trip["gpx_file"] else None

    stages = []
    for stage_row in stage_rows:
        stage = dict(stage_row)
        stage["media"] = json.loads(stage["media"] or "[]")
        stage["gpx_file"] = json.loads(stage["gpx_file"]) if stage["gpx_file"] else None
        stages.append(stage)
    trip["stages"] = stages
    return trip

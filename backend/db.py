"""
SQLite database helpers for batch import jobs and published trips.
"""

from pathlib import Path
from datetime import datetime, timezone

import aiosqlite

from config import DB_PATH

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS batch_jobs (
    job_id            TEXT    PRIMARY KEY,
    owner_id          TEXT    NOT NULL,
    archive_url       TEXT    NOT NULL,
    archive_public_id TEXT    NOT NULL DEFAULT '',
    status            TEXT    NOT NULL DEFAULT 'pending',
    total_trips       INTEGER NOT NULL DEFAULT 0,
    processed_trips   INTEGER NOT NULL DEFAULT 0,
    started_at        TEXT    NOT NULL,
    completed_at      TEXT
);

CREATE INDEX IF NOT EXISTS idx_batch_jobs_owner
ON batch_jobs(owner_id);

CREATE INDEX IF NOT EXISTS idx_batch_jobs_started
ON batch_jobs(started_at);

CREATE TABLE IF NOT EXISTS batch_job_trips (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id     TEXT    NOT NULL,
    trip_id    TEXT    NOT NULL,
    created_at TEXT    NOT NULL,
    FOREIGN KEY (job_id) REFERENCES batch_jobs(job_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_batch_job_trips_job
ON batch_job_trips(job_id);

CREATE TABLE IF NOT EXISTS batch_job_messages (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id      TEXT    NOT NULL,
    severity    TEXT    NOT NULL DEFAULT 'error',
    message     TEXT    NOT NULL,
    trip_index  INTEGER,
    stage_index INTEGER,
    field       TEXT,
    category    TEXT,
    created_at  TEXT    NOT NULL,
    FOREIGN KEY (job_id) REFERENCES batch_jobs(job_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_batch_job_messages_job
ON batch_job_messages(job_id, severity);

CREATE TABLE IF NOT EXISTS trips (
    id                  TEXT    PRIMARY KEY,
    owner_id            TEXT    NOT NULL,
    slug                TEXT    NOT NULL UNIQUE,
    title               TEXT    NOT NULL,
    summary             TEXT    NOT NULL,
    destination         TEXT    NOT NULL,
    theme               TEXT    NOT NULL,
    characteristics     TEXT    NOT NULL DEFAULT '[]',
    recommended_seasons TEXT    NOT NULL DEFAULT '[]',
    tags                TEXT    NOT NULL DEFAULT '[]',
    travel_date         TEXT,
    duration_days       INTEGER NOT NULL DEFAULT 1,
    duration_nights     INTEGER NOT NULL DEFAULT 0,
    media               TEXT    NOT NULL DEFAULT '[]',
    gpx_file            TEXT,
    status              TEXT    NOT NULL DEFAULT 'draft',
    created_at          TEXT    NOT NULL,
    updated_at          TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_trips_owner
ON trips(owner_id);

CREATE TABLE IF NOT EXISTS stages (
    id          TEXT    PRIMARY KEY,
    trip_id     TEXT    NOT NULL,
    order_index INTEGER NOT NULL,
    title       TEXT    NOT NULL,
    description TEXT,
    route_type  TEXT,
    duration    TEXT,
    media       TEXT    NOT NULL DEFAULT '[]',
    gpx_file    TEXT,
    created_at  TEXT    NOT NULL,
    updated_at  TEXT    NOT NULL,
    FOREIGN KEY (trip_id) REFERENCES trips(id) ON DELETE CASCADE
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_stages_trip_order_unique
ON stages(trip_id, order_index);
"""


async def get_db() -> aiosqlite.Connection:
    """
    Open a configured SQLite connection.
    """
    db = await aiosqlite.connect(Path(DB_PATH))
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")
    await db.execute("PRAGMA journal_mode = WAL")
    await db.execute("PRAGMA synchronous = NORMAL")
    await db.execute("PRAGMA cache_size = -8000")
    await db.execute("PRAGMA busy_timeout = 5000")
    return db


async def init_db() -> None:
    """
    Initialize database schema at application startup.
    """
    db = await get_db()
    try:
        await db.executescript(SCHEMA_SQL)
        await db.commit()
    finally:
        await db.close()


def utc_now_iso() -> str:
    """
    Return current UTC timestamp as ISO 8601.
    """
    return datetime.now(timezone.utc).isoformat()

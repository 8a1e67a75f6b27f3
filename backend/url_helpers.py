"""
Helpers for constructing storage keys and the file URLs returned by API responses.
"""

from utils import safe_filename, slugify


def trip_prefix(trip_id: str, trip_slug: str) -> str:
    return f"trips/{trip_id}-{trip_slug}"


def build_trip_media_key(trip_id: str, trip_slug: str, position: int, filename: str) -> str:
    return f"{trip_prefix(trip_id, trip_slug)}/media/{position}-{safe_filename(filename)}"


def build_trip_gpx_key(trip_id: str, trip_slug: str, filename: str) -> str:
    return f"{trip_prefix(trip_id, trip_slug)}/gpx/{safe_filename(filename)}"


def build_stage_prefix(trip_id: str, trip_slug: str, order_index: int, stage_title: str) -> str:
    return f"{trip_prefix(trip_id, trip_slug)}/stages/{order_index}-{slugify(stage_title)}"


def build_stage_media_key(stage_prefix: str, position: int, filename: str) -> str:
    return f"{stage_prefix}/media/{position}-{safe_filename(filename)}"


def build_stage_gpx_key(stage_prefix: str, filename: str) -> str:
    return f"{stage_prefix}/gpx/{safe_filename(filename)}"


def build_archive_key(owner_id: str, job_id: str) -> str:
    return f"batch-uploads/{slugify(owner_id) or 'anonymous'}/{job_id}.zip"


def build_local_file_url(public_url: str, key: str) -> str:
    return f"{public_url.rstrip('/')}/{key}"

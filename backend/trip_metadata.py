"""
viaggi.json discovery, shape detection and per-trip content validation.

Archive contract:
-----------------
viaggi.json at the archive root (or in the first subfolder that has one).

Single trip:
    {"title": ..., "summary": ..., "destination": ..., "theme": ...,
     "characteristics": [...], "recommended_seasons": [...], "tags": [...],
     "travelDate": "YYYY-MM-DD", "stages": [{"title": ..., ...}]}
    main.gpx, media/, tappe/01-name/{tappa.gpx, media/}

Multiple trips:
    {"viaggi": [<trip>, <trip>, ...]}
    01-first-trip/{main.gpx, media/, tappe/...}, 02-second-trip/...

Behavior:
- Shape problems (missing file, bad JSON, bad "viaggi" list) raise MetadataError
- Per-trip field problems raise TripContentError, one trip at a time
- Folder naming and media format problems are collected as warnings
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional, Union

from archive_reader import ArchiveHandle
from batch_errors import MetadataError, TripContentError
from models import CHARACTERISTIC_OPTIONS, RECOMMENDED_SEASONS

METADATA_FILENAME = "viaggi.json"
MULTI_TRIP_KEY = "viaggi"
STAGES_DIR = "tappe"
MEDIA_DIR = "media"
TRIP_GPX_FILENAME = "main.gpx"
STAGE_GPX_FILENAME = "tappa.gpx"

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")
VIDEO_EXTENSIONS = (".mp4", ".mov", ".avi")
SUPPORTED_MEDIA_EXTENSIONS = IMAGE_EXTENSIONS + VIDEO_EXTENSIONS

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
}

REQUIRED_FIELDS = ("title", "summary", "destination", "theme")

# (min, max) characters after trimming
FIELD_LENGTHS = {
    "title": (3, 100),
    "summary": (10, 6000),
    "destination": (1, 100),
    "theme": (1, 100),
}
STAGE_FIELD_LENGTHS = {
    "title": 200,
    "description": 2000,
    "routeType": 100,
    "duration": 50,
}
MAX_TRIPS = 10
MAX_STAGES = 20

STAGE_FOLDER_PATTERN = re.compile(r"^\d{2}-.+$")


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class StageMetadata:
    title: Optional[str] = None
    description: Optional[str] = None
    route_type: Optional[str] = None
    duration: Optional[str] = None


@dataclass
class TripMetadata:
    title: str
    summary: str
    destination: str
    theme: str
    recommended_seasons: list[str]
    characteristics: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    travel_date: Optional[date] = None
    stages: list[StageMetadata] = field(default_factory=list)


@dataclass(frozen=True)
class SingleTripDocument:
    """viaggi.json describing one trip at its top level."""
    trip: dict[str, Any]
    base_path: str = ""

    @property
    def raw_trips(self) -> list[dict[str, Any]]:
        return [self.trip]


@dataclass(frozen=True)
class MultiTripDocument:
    """viaggi.json holding a "viaggi" list, one entry per numbered trip folder."""
    trips: tuple[dict[str, Any], ...]
    base_path: str = ""

    @property
    def raw_trips(self) -> list[dict[str, Any]]:
        return list(self.trips)


TripDocument = Union[SingleTripDocument, MultiTripDocument]


# =============================================================================
# Helpers
# =============================================================================

def file_extension(filename: str) -> str:
    name = filename.rsplit("/", 1)[-1]
    dot = name.rfind(".")
    return name[dot:].lower() if dot != -1 else ""


def is_media_file(filename: str) -> bool:
    return file_extension(filename) in SUPPORTED_MEDIA_EXTENSIONS


def is_image_file(filename: str) -> bool:
    return file_extension(filename) in IMAGE_EXTENSIONS


def mime_type_for(filename: str) -> str:
    return MIME_TYPES.get(file_extension(filename), "application/octet-stream")


def _format_values(values) -> str:
    return ", ".join(str(value) for value in values)


def _unique(values: list[Any]) -> list[Any]:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def _optional_string(raw: dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise TripContentError(f'Invalid value for "{key}": expected a string')
        stripped = value.strip()
        return stripped or None
    return None


def parse_travel_date(value: Any) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
    raise TripContentError(f'Invalid travelDate "{value}": use the YYYY-MM-DD format')


# =============================================================================
# Structure
# =============================================================================

def find_metadata_path(handle: ArchiveHandle) -> Optional[str]:
    """Locate viaggi.json at the root, else in the shallowest subfolder."""
    if handle.has_file(METADATA_FILENAME):
        return METADATA_FILENAME

    candidates = [
        path for path in handle.entries()
        if path.endswith(f"/{METADATA_FILENAME}")
    ]
    if not candidates:
        return None
    candidates.sort(key=lambda path: (path.count("/"), path))
    return candidates[0]


def validate_structure(handle: ArchiveHandle) -> list[str]:
    """
    Report structural problems that make the archive unusable.

    Never raises; an empty list means the archive can be parsed.
    """
    errors = []

    if not handle.entries():
        errors.append("ZIP archive contains no files")
        return errors

    if find_metadata_path(handle) is None:
        errors.append(f"{METADATA_FILENAME} file missing. Add it at the archive root.")

    return errors


def validate_folder_structure(handle: ArchiveHandle) -> list[str]:
    """
    Collect naming and format warnings for stage folders and media files.
    """
    warnings = []

    for directory in handle.directories():
        parts = directory.rstrip("/").split("/")
        if len(parts) >= 2 and parts[-2].lower() == STAGES_DIR:
            if not STAGE_FOLDER_PATTERN.match(parts[-1]):
                warnings.append(
                    f'Stage folders not numbered: "{directory}" '
                    "(expected NN-name, e.g. 01-bolzano-ortisei)"
                )

    for path in handle.entries():
        parts = path.split("/")
        if len(parts) >= 2 and parts[-2].lower() == MEDIA_DIR and not is_media_file(path):
            warnings.append(
                f'Unsupported format: "{path}" '
                f"(supported: {_format_values(SUPPORTED_MEDIA_EXTENSIONS)})"
            )

    return warnings


# =============================================================================
# Document
# =============================================================================

def parse_metadata_document(handle: ArchiveHandle) -> TripDocument:
    """
    Read viaggi.json and decide between the single and multiple trip shapes.

    Trip fields are not validated here; see validate_trip_metadata.
    """
    metadata_path = find_metadata_path(handle)
    if metadata_path is None:
        raise MetadataError(f"{METADATA_FILENAME} not found in archive")

    base_path = metadata_path[: -len(METADATA_FILENAME)]
    content = handle.extract_text(metadata_path) or ""

    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise MetadataError(
            f"{METADATA_FILENAME} is not valid JSON: {exc.msg} "
            f"(line {exc.lineno}, column {exc.colno})"
        ) from exc

    if not isinstance(data, dict):
        raise MetadataError(f"{METADATA_FILENAME} must contain a JSON object")

    if MULTI_TRIP_KEY not in data:
        return SingleTripDocument(trip=data, base_path=base_path)

    trips = data[MULTI_TRIP_KEY]
    if not isinstance(trips, list) or not trips or not all(isinstance(t, dict) for t in trips):
        raise MetadataError(
            f'"{MULTI_TRIP_KEY}" in {METADATA_FILENAME} must be a non-empty list of trip objects'
        )
    if len(trips) > MAX_TRIPS:
        raise MetadataError(
            f"Too many trips in {METADATA_FILENAME}: {len(trips)} (max {MAX_TRIPS})"
        )

    return MultiTripDocument(trips=tuple(trips), base_path=base_path)


def _validate_characteristics(raw: dict[str, Any]) -> list[str]:
    allowed = _format_values(CHARACTERISTIC_OPTIONS)
    values = raw.get("characteristics")
    if values is None:
        return []
    if not isinstance(values, list):
        raise TripContentError(
            f'Invalid characteristics: "characteristics" must be a list. Allowed values: [{allowed}]'
        )

    invalid = _unique([value for value in values if value not in CHARACTERISTIC_OPTIONS])
    if invalid:
        raise TripContentError(
            f'Invalid characteristics in "characteristics": [{_format_values(invalid)}]. '
            f"Allowed values: [{allowed}]"
        )
    return _unique(values)


def _validate_seasons(raw: dict[str, Any]) -> list[str]:
    allowed = _format_values(RECOMMENDED_SEASONS)
    values = raw.get("recommended_seasons")
    if values is None or values == [] or values == "":
        raise TripContentError(
            f"Missing recommended_seasons: select at least one season. Allowed values: [{allowed}]"
        )
    if not isinstance(values, list):
        raise TripContentError(
            f'Invalid seasons: "recommended_seasons" must be a list. Allowed values: [{allowed}]'
        )

    invalid = _unique([value for value in values if value not in RECOMMENDED_SEASONS])
    if invalid:
        raise TripContentError(
            f'Invalid seasons in "recommended_seasons": [{_format_values(invalid)}]. '
            f"Allowed values: [{allowed}]"
        )
    return _unique(values)


def _validate_tags(raw: dict[str, Any]) -> list[str]:
    values = raw.get("tags")
    if values is None:
        return []
    if not isinstance(values, list) or not all(isinstance(tag, str) and tag.strip() for tag in values):
        raise TripContentError('Invalid tags: "tags" must be a list of non-empty strings')
    return [tag.strip() for tag in values]


def _check_length(name: str, value: str, minimum: int, maximum: int) -> None:
    if len(value) < minimum:
        raise TripContentError(
            f'Invalid "{name}": must be at least {minimum} characters (got {len(value)})'
        )
    if len(value) > maximum:
        raise TripContentError(
            f'Invalid "{name}": must be at most {maximum} characters (got {len(value)})'
        )


def _validate_stages(raw: dict[str, Any]) -> list[StageMetadata]:
    values = raw.get("stages")
    if values is None:
        return []
    if not isinstance(values, list):
        raise TripContentError('Invalid stages: "stages" must be a list of objects')
    if len(values) > MAX_STAGES:
        raise TripContentError(f'Too many stages in "stages": {len(values)} (max {MAX_STAGES})')

    stages = []
    for index, item in enumerate(values):
        if not isinstance(item, dict):
            raise TripContentError(
                f'Invalid stage {index + 1} in "stages": expected an object',
                stage_index=index,
            )
        try:
            stage = StageMetadata(
                title=_optional_string(item, "title"),
                description=_optional_string(item, "description"),
                route_type=_optional_string(item, "routeType", "route_type"),
                duration=_optional_string(item, "duration"),
            )
            for name, value in (
                ("title", stage.title),
                ("description", stage.description),
                ("routeType", stage.route_type),
                ("duration", stage.duration),
            ):
                if value is not None:
                    _check_length(name, value, 1, STAGE_FIELD_LENGTHS[name])
        except TripContentError as exc:
            raise TripContentError(
                f'Invalid stage {index + 1} in "stages": {exc}',
                stage_index=index,
            ) from exc
        stages.append(stage)
    return stages


def validate_trip_metadata(raw: dict[str, Any]) -> TripMetadata:
    """
    Validate one trip object from viaggi.json.

    Vocabulary errors embed the full list of allowed values.
    """
    missing = [
        name for name in REQUIRED_FIELDS
        if not isinstance(raw.get(name), str) or not raw[name].strip()
    ]
    if missing:
        names = ", ".join(f'"{name}"' for name in missing)
        raise TripContentError(f"Missing required field {names}")

    for name, (minimum, maximum) in FIELD_LENGTHS.items():
        _check_length(name, raw[name].strip(), minimum, maximum)

    characteristics = _validate_characteristics(raw)
    seasons = _validate_seasons(raw)

    return TripMetadata(
        title=raw["title"].strip(),
        summary=raw["summary"].strip(),
        destination=raw["destination"].strip(),
        theme=raw["theme"].strip(),
        characteristics=characteristics,
        recommended_seasons=seasons,
        tags=_validate_tags(raw),
        travel_date=parse_travel_date(raw.get("travelDate", raw.get("travel_date"))),
        stages=_validate_stages(raw),
    )

"""
Build the in-memory trip tree (trips, ordered stages, media, GPX) from an archive.

Stage folders are paired with the declared stages by position. A folder
without a declared stage still becomes a stage, titled from its name.
Nothing here swallows errors; per-trip isolation belongs to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from archive_reader import ArchiveHandle
from batch_errors import TripStructureError
from trip_metadata import (
    MEDIA_DIR,
    STAGE_GPX_FILENAME,
    STAGES_DIR,
    TRIP_GPX_FILENAME,
    MultiTripDocument,
    StageMetadata,
    TripDocument,
    TripMetadata,
    is_image_file,
    is_media_file,
    mime_type_for,
    validate_trip_metadata,
)
from utils import split_numbered_name, title_from_folder

logger = logging.getLogger(__name__)

GPX_CONTENT_TYPE = "application/gpx+xml"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class ParsedMediaFile:
    filename: str
    data: bytes
    content_type: str
    is_hero: bool = False

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ParsedGpxFile:
    filename: str
    data: bytes
    content_type: str = GPX_CONTENT_TYPE


@dataclass
class ParsedStage:
    order_index: int
    title: str
    folder_name: str
    description: Optional[str] = None
    route_type: Optional[str] = None
    duration: Optional[str] = None
    media: list[ParsedMediaFile] = field(default_factory=list)
    gpx_file: Optional[ParsedGpxFile] = None


@dataclass
class ParsedTrip:
    metadata: TripMetadata
    stages: list[ParsedStage] = field(default_factory=list)
    media: list[ParsedMediaFile] = field(default_factory=list)
    gpx_file: Optional[ParsedGpxFile] = None
    folder_name: Optional[str] = None

    @property
    def title(self) -> str:
        return self.metadata.title

    @property
    def duration_days(self) -> int:
        return max(1, len(self.stages))


@dataclass
class ParsedTripData:
    document: TripDocument
    trips: list[ParsedTrip] = field(default_factory=list)


# =============================================================================
# Parser
# =============================================================================

def numbered_folders(handle: ArchiveHandle, parent: str) -> list[str]:
    """Direct child folders named N-name, ordered by number then name."""
    numbered = []
    for name in handle.subdirectories(parent):
        parts = split_numbered_name(name)
        if parts is not None:
            numbered.append((parts[0], name))
    numbered.sort()
    return [name for _, name in numbered]


class TripParser:
    def __init__(self, handle: ArchiveHandle, document: TripDocument) -> None:
        self.handle = handle
        self.document = document
        self.base_path = document.base_path

    @property
    def trip_count(self) -> int:
        return len(self.document.raw_trips)

    def parse(self) -> ParsedTripData:
        """Parse every declared trip, failing on the first invalid one."""
        trips = [self.parse_trip(index) for index in range(self.trip_count)]
        return ParsedTripData(document=self.document, trips=trips)

    def parse_trip(self, index: int) -> ParsedTrip:
        raw_trips = self.document.raw_trips
        if not 0 <= index < len(raw_trips):
            raise IndexError(f"Trip index {index} out of range (0..{len(raw_trips) - 1})")

        metadata = validate_trip_metadata(raw_trips[index])

        folder_name = None
        trip_root = self.base_path
        if isinstance(self.document, MultiTripDocument):
            folders = numbered_folders(self.handle, self.base_path)
            if index >= len(folders):
                raise TripStructureError(
                    f"Missing folder for trip {index + 1} "
                    f"(expected a numbered folder such as {index + 1:02d}-trip-name)"
                )
            folder_name = folders[index]
            trip_root = f"{self.base_path}{folder_name}/"

        trip = ParsedTrip(
            metadata=metadata,
            stages=self._parse_stages(f"{trip_root}{STAGES_DIR}/", metadata.stages),
            media=self._parse_media(f"{trip_root}{MEDIA_DIR}/"),
            gpx_file=self._parse_gpx(f"{trip_root}{TRIP_GPX_FILENAME}"),
            folder_name=folder_name,
        )
        logger.debug(
            "Parsed trip %s (%s): %s stages, %s media files",
            index + 1, metadata.title, len(trip.stages), len(trip.media),
        )
        return trip

    def _parse_stages(self, stages_root: str, declared: list[StageMetadata]) -> list[ParsedStage]:
        folders = numbered_folders(self.handle, stages_root)
        stages = []

        for index in range(max(len(declared), len(folders))):
            if index >= len(folders):
                raise TripStructureError(
                    f"Missing folder for stage {index + 1} in {stages_root}",
                    stage_index=index,
                )

            folder = folders[index]
            metadata = declared[index] if index < len(declared) else StageMetadata()
            stage_root = f"{stages_root}{folder}/"

            stages.append(
                ParsedStage(
                    order_index=index,
                    title=metadata.title or title_from_folder(folder) or f"Stage {index + 1}",
                    folder_name=folder,
                    description=metadata.description,
                    route_type=metadata.route_type,
                    duration=metadata.duration,
                    media=self._parse_media(f"{stage_root}{MEDIA_DIR}/"),
                    gpx_file=self._parse_gpx(f"{stage_root}{STAGE_GPX_FILENAME}"),
                )
            )

        return stages

    def _parse_media(self, media_root: str) -> list[ParsedMediaFile]:
        media = []
        hero_assigned = False

        for path in self.handle.files_in(media_root):
            if not is_media_file(path):
                continue
            data = self.handle.extract(path)
            if not data:
                logger.warning("Skipping empty media file %s", path)
                continue

            is_hero = not hero_assigned and is_image_file(path)
            hero_assigned = hero_assigned or is_hero
            media.append(
                ParsedMediaFile(
                    filename=path.rsplit("/", 1)[-1],
                    data=data,
                    content_type=mime_type_for(path),
                    is_hero=is_hero,
                )
            )

        return media

    def _parse_gpx(self, gpx_path: str) -> Optional[ParsedGpxFile]:
        data = self.handle.extract(gpx_path)
        if not data:
            return None
        return ParsedGpxFile(filename=gpx_path.rsplit("/", 1)[-1], data=data)

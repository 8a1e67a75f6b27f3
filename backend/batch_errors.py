"""
Batch import exceptions and error classification helpers.

Classification is plain substring matching on lowercased messages. Errors
recorded from one of the exceptions below also carry an explicit category,
which takes precedence over the text match.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from models import CHARACTERISTIC_OPTIONS, RECOMMENDED_SEASONS, ErrorCategory

CATEGORY_ORDER: tuple[ErrorCategory, ...] = ("structure", "content", "media", "processing")

CATEGORY_TITLES = {
    "structure": "Archive structure",
    "content": "viaggi.json content",
    "media": "Media files",
    "processing": "Processing",
}


# =============================================================================
# Exceptions
# =============================================================================

class BatchImportError(Exception):
    """Base class for errors raised by the batch import pipeline."""
    category: Optional[ErrorCategory] = None

    def __init__(self, message: str = "", *, stage_index: Optional[int] = None) -> None:
        super().__init__(message)
        self.stage_index = stage_index


class ArchiveError(BatchImportError, ValueError):
    """The uploaded buffer is empty, oversized or not a readable ZIP."""
    category = "structure"


class MetadataError(BatchImportError, ValueError):
    """viaggi.json is missing or malformed."""
    category = "structure"


class TripContentError(MetadataError):
    """A single trip declares invalid or missing fields."""
    category = "content"


class TripStructureError(BatchImportError, ValueError):
    """An expected trip or stage folder is missing."""
    category = "structure"


class StorageError(BatchImportError, RuntimeError):
    category = "processing"


class DuplicateTripError(BatchImportError, RuntimeError):
    category = "content"


class BatchStartError(BatchImportError, RuntimeError):
    category = "processing"


class ArchiveDownloadTimeout(BatchImportError, TimeoutError):
    category = "processing"


class JobQueueFullError(BatchImportError, RuntimeError):
    category = "processing"


def category_of(exc: BaseException) -> Optional[ErrorCategory]:
    return getattr(exc, "category", None)


# =============================================================================
# Classification
# =============================================================================

@dataclass
class ErrorGroup:
    category: ErrorCategory
    errors: list[Any] = field(default_factory=list)

    @property
    def title(self) -> str:
        return category_title(self.category)


def _message_of(error: Any) -> str:
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        return str(error.get("message") or "")
    return str(getattr(error, "message", "") or "")


def _explicit_category_of(error: Any) -> Optional[str]:
    if isinstance(error, dict):
        return error.get("category")
    return getattr(error, "category", None)


def classify_message(message: str) -> ErrorCategory:
    text = (message or "").lower()

    # Per-trip hints mention viaggi.json, so field-level matches go first.
    if any(token in text for token in ("characteristic", "season", "required field", "already exists")):
        return "content"
    if any(token in text for token in ("folder", "structure", "viaggi.json", "zip", "archive")):
        return "structure"
    if "field" in text or "json" in text:
        return "content"
    if any(token in text for token in ("media", "format", ".jpg", ".png", "image", "video")):
        return "media"
    return "processing"


def categorize(errors: list[Any]) -> list[ErrorGroup]:
    """Group errors by category, dropping empty groups, in a fixed order."""
    groups = {category: ErrorGroup(category=category) for category in CATEGORY_ORDER}

    for error in errors:
        category = _explicit_category_of(error)
        if category not in groups:
            category = classify_message(_message_of(error))
        groups[category].errors.append(error)

    return [group for group in groups.values() if group.errors]


def category_title(category: str) -> str:
    return CATEGORY_TITLES.get(category, "Other errors")


def get_error_suggestion(error: Any) -> Optional[str]:
    message = _message_of(error).lower()

    if "viaggi.json not found" in message or "viaggi.json file missing" in message:
        return "Add the viaggi.json file to the root folder of the archive"
    if "invalid characteristics" in message:
        return (
            "Check that every characteristic is in the allowed list: "
            "Strade sterrate, Curve strette, Presenza pedaggi, etc."
        )
    if "invalid seasons" in message or "missing recommended_seasons" in message:
        return "Use only: Primavera, Estate, Autunno, Inverno (case sensitive)"
    if "stage folders not numbered" in message:
        return "Rename the stage folders with a numeric prefix: 01-bolzano-ortisei, 02-ortisei-cortina, etc."
    if "unsupported format" in message:
        return "Convert media files to JPG, PNG, WEBP (images) or MP4, MOV, AVI (videos)"
    if "is not valid json" in message:
        return "Check the JSON syntax: commas, brackets and double quotes"
    if "missing required field" in message:
        return "Add all required fields to viaggi.json"
    if "trip already exists" in message or "change the title" in message:
        return "Change the trip title in viaggi.json to make it unique"
    if "missing folder for trip" in message:
        return "Add one numbered folder per trip: 01-first-trip, 02-second-trip, etc."
    if "timeout" in message:
        return "Reduce the size of images and videos or split the batch into smaller archives"

    return None


def get_error_example(error: Any) -> Optional[str]:
    message = _message_of(error).lower()

    if "invalid characteristics" in message:
        values = ", ".join(f'"{value}"' for value in CHARACTERISTIC_OPTIONS)
        return f'"characteristics": [{values}]'
    if "invalid seasons" in message or "missing recommended_seasons" in message:
        values = ", ".join(f'"{value}"' for value in RECOMMENDED_SEASONS)
        return f'"recommended_seasons": [{values}]'
    if "stage folders" in message:
        return "tappe/01-bolzano-ortisei/\ntappe/02-ortisei-cortina/"
    if "json" in message:
        return '{\n  "title": "Giro delle Dolomiti",\n  "summary": "Description...",\n  ...\n}'
    if "trip already exists" in message or "change the title" in message:
        return (
            '"title": "Giro delle Dolomiti - Settembre 2024"\n'
            "(add a date, a version or a specific detail)"
        )

    return None


def enhance_trip_error(
    original_message: str,
    trip_index: Optional[int] = None,
    trip_title: Optional[str] = None,
) -> str:
    """Prefix a per-trip error with trip context and point at the likely culprit."""
    if trip_index is None:
        return original_message

    trip_context = f'"{trip_title}"' if trip_title else f"{trip_index + 1}"
    prefix = f"Trip {trip_context}: {original_message}"
    lowered = original_message.lower()

    if "invalid characteristics" in lowered:
        return f'{prefix}. Check the "characteristics" field in viaggi.json.'
    if "invalid seasons" in lowered or "missing recommended_seasons" in lowered:
        return f'{prefix}. Check the "recommended_seasons" field in viaggi.json.'
    if "missing required field" in lowered:
        return f"{prefix}. Add all required fields to viaggi.json."
    if "trip already exists" in lowered:
        return f"{prefix}. A trip with this title already exists."
    if "stage" in lowered:
        return f"{prefix}. Check the structure of the tappe folders."
    if "media" in lowered or "format" in lowered:
        return f"{prefix}. Check the files in the media folder."
    if "gpx" in lowered:
        return f"{prefix}. Check the GPX files in the stage folders."

    return prefix


def enhance_general_error(original_message: str) -> str:
    """Expand job-level failures into actionable, multi-line guidance."""
    lowered = original_message.lower()

    if "invalid archive structure" in lowered:
        return (
            f"{original_message}\n\n"
            "Check that your archive contains:\n"
            "• A viaggi.json file in the root folder\n"
            "• Numbered stage folders (01-name, 02-name)\n"
            "• Media files in a supported format (JPG, PNG, WEBP, MP4, MOV, AVI)"
        )
    if "viaggi.json not found" in lowered:
        return (
            f"{original_message}\n\n"
            "The viaggi.json file must be in the root folder of the archive or in a subfolder."
        )
    if "is not valid json" in lowered:
        return (
            f"{original_message}\n\n"
            "Check the syntax of your viaggi.json file:\n"
            "• Make sure every bracket and comma is correct\n"
            "• Use double quotes for strings\n"
            "• Do not leave trailing commas"
        )
    if "timeout" in lowered:
        return (
            "Processing stopped because of a timeout. Your archive may be too large "
            "or contain too many files. Try to:\n"
            "• Reduce the size of the images\n"
            "• Remove unnecessary files\n"
            "• Split the batch into several smaller archives"
        )
    if "archive too large" in lowered:
        return (
            "Archive too large (max 100MB). Reduce its size:\n"
            "• Compress the images while keeping a good quality\n"
            "• Remove very long videos\n"
            "• Split the content into several archives"
        )

    return original_message


def extract_error_field(error_message: str) -> Optional[str]:
    if error_message.startswith("Invalid stage ") or "Missing folder for stage" in error_message:
        return "stages"
    if "characteristics" in error_message:
        return "characteristics"
    if "recommended_seasons" in error_message:
        return "recommended_seasons"
    if "title" in error_message or "Trip already exists" in error_message:
        return "title"
    if "summary" in error_message:
        return "summary"
    if "destination" in error_message:
        return "destination"
    if "theme" in error_message:
        return "theme"
    if "stages" in error_message or "stage" in error_message:
        return "stages"
    if "media" in error_message:
        return "media"
    if "GPX" in error_message or "gpx" in error_message:
        return "gpx_file"

    return None

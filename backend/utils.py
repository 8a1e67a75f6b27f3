"""
Shared backend utility helpers.
"""

import re
import unicodedata
from typing import Any, Optional

_NON_WORD = re.compile(r"[^\w]+")
_DASH_RUN = re.compile(r"-{2,}")
_NUMBERED_NAME = re.compile(r"^(\d+)-(.+)$")
_UNSAFE_FILENAME = re.compile(r"[^\w.\-]+")


def clean_text(value: Any) -> str:
    """Normalize arbitrary values into trimmed strings."""
    if value is None:
        return ""
    return str(value).strip()


def slugify(value: Any) -> str:
    """
    Lowercase, strip diacritics and collapse everything else into dashes.

    "Giro delle Dolomiti: Città & Passi" -> "giro-delle-dolomiti-citta-passi"
    """
    text = unicodedata.normalize("NFD", clean_text(value).lower())
    text = "".join(char for char in text if not unicodedata.combining(char))
    text = _NON_WORD.sub("-", text).replace("_", "-")
    text = _DASH_RUN.sub("-", text)
    return text.strip("-")


def split_numbered_name(name: str) -> Optional[tuple[int, str]]:
    """Split "03-ortisei-cortina" into (3, "ortisei-cortina")."""
    match = _NUMBERED_NAME.match(name)
    if not match:
        return None
    return int(match.group(1)), match.group(2)


def title_from_folder(folder_name: str) -> Optional[str]:
    """
    Derive a display title from a numbered folder name.

    "01-bolzano-ortisei" -> "Bolzano Ortisei"
    """
    parts = split_numbered_name(folder_name)
    if parts is None:
        return None
    words = [word for word in parts[1].split("-") if word]
    if not words:
        return None
    return " ".join(word[:1].upper() + word[1:] for word in words)


def safe_filename(filename: str) -> str:
    """Keep word characters, dots and dashes; never return an empty name."""
    name = clean_text(filename).rsplit("/", 1)[-1]
    name = _UNSAFE_FILENAME.sub("-", name).strip("-.")
    return name or "file"

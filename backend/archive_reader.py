"""
Read-only access to uploaded trip archives (ZIP).

System and editor noise (OS metadata, version control folders, hidden and
temporary files) is filtered out here, so nothing downstream ever sees it.
"""

from __future__ import annotations

import io
import logging
import zipfile
from typing import Optional

from batch_errors import ArchiveError
from config import MAX_ARCHIVE_BYTES

logger = logging.getLogger(__name__)

IGNORED_SEGMENTS = {
    "__macosx",
    ".ds_store",
    "thumbs.db",
    "ehthumbs.db",
    "desktop.ini",
    ".git",
    ".svn",
    ".hg",
    ".spotlight-v100",
    ".trashes",
    ".fseventsd",
}

TEMPORARY_SUFFIXES = ("~", ".tmp", ".temp", ".swp", ".part", ".crdownload")


def normalize_path(path: str) -> str:
    """
    Forward slashes, no leading slash, no empty or "." segments.

    A trailing slash (directory entry) is kept.
    """
    path = path.replace("\\", "/")
    normalized = "/".join(segment for segment in path.split("/") if segment not in ("", "."))
    if normalized and path.endswith("/"):
        normalized += "/"
    return normalized


def is_ignored_path(path: str) -> bool:
    """
    True when any segment is denylisted or hidden, or the filename is a temp file.
    """
    segments = [segment for segment in normalize_path(path).split("/") if segment]
    if not segments:
        return True

    for segment in segments:
        lowered = segment.lower()
        if lowered in IGNORED_SEGMENTS or lowered.startswith("."):
            return True

    filename = segments[-1].lower()
    return filename.endswith(TEMPORARY_SUFFIXES)


class ArchiveHandle:
    """An opened archive with noise entries already filtered out."""

    def __init__(self, zip_file: zipfile.ZipFile, size: int) -> None:
        self._zip = zip_file
        self.size = size
        self._files: dict[str, zipfile.ZipInfo] = {}
        self._directories: set[str] = set()

        skipped = 0
        for info in zip_file.infolist():
            path = normalize_path(info.filename)
            if not path or is_ignored_path(path):
                skipped += 1
                continue
            if info.is_dir():
                self._directories.add(path.rstrip("/") + "/")
                continue
            self._files[path] = info
            self._add_parent_directories(path)

        if skipped:
            logger.debug("Ignored %s system/noise entries in archive", skipped)

    def _add_parent_directories(self, path: str) -> None:
        parts = path.split("/")[:-1]
        for depth in range(1, len(parts) + 1):
            self._directories.add("/".join(parts[:depth]) + "/")

    def entries(self) -> list[str]:
        """Sorted file paths (directories excluded)."""
        return sorted(self._files)

    def directories(self) -> list[str]:
        """Sorted directory paths, each ending with '/'."""
        return sorted(self._directories)

    def has_file(self, path: str) -> bool:
        return normalize_path(path) in self._files

    def extract(self, path: str) -> Optional[bytes]:
        info = self._files.get(normalize_path(path))
        if info is None:
            return None
        try:
            return self._zip.read(info)
        except (zipfile.BadZipFile, RuntimeError, OSError) as exc:
            raise ArchiveError(f"Unable to extract {path} from ZIP archive: {exc}") from exc

    def extract_text(self, path: str) -> Optional[str]:
        data = self.extract(path)
        if data is None:
            return None
        return data.decode("utf-8-sig", errors="replace")

    def files_in(self, directory: str) -> list[str]:
        """Direct (non-recursive) files of a directory, sorted."""
        prefix = directory if directory.endswith("/") or not directory else f"{directory}/"
        return [
            path
            for path in self.entries()
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        ]

    def subdirectories(self, directory: str) -> list[str]:
        """Names of the direct child directories of a directory."""
        prefix = directory if directory.endswith("/") or not directory else f"{directory}/"
        names = set()
        for path in self._directories:
            if not path.startswith(prefix):
                continue
            remainder = path[len(prefix):].rstrip("/")
            if remainder and "/" not in remainder:
                names.add(remainder)
        return sorted(names)

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "ArchiveHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ArchiveReader:
    def __init__(self, max_bytes: int = MAX_ARCHIVE_BYTES) -> None:
        self.max_bytes = max_bytes

    def load(self, data: bytes) -> ArchiveHandle:
        """
        Open an archive buffer.

        The size ceiling is enforced before the ZIP central directory is read.
        """
        if not data:
            raise ArchiveError("ZIP archive is empty")

        if len(data) > self.max_bytes:
            raise ArchiveError(
                f"Archive too large: {len(data) / (1024 * 1024):.1f}MB "
                f"(max {self.max_bytes // (1024 * 1024)}MB)"
            )

        try:
            zip_file = zipfile.ZipFile(io.BytesIO(data))
        except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as exc:
            raise ArchiveError(f"Invalid ZIP archive: {exc}") from exc

        return ArchiveHandle(zip_file, size=len(data))


def load_archive(data: bytes) -> ArchiveHandle:
    return ArchiveReader().load(data)

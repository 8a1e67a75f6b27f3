"""
Blob storage providers for uploaded archives and imported trip assets.

Provider methods are blocking; async callers go through run_in_executor.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from batch_errors import StorageError
from config import (
    AWS_PUBLIC_BASE_URL,
    AWS_REGION,
    AWS_S3_BUCKET,
    AWS_S3_ENDPOINT,
    STORAGE_BACKEND,
    STORAGE_DIR,
    STORAGE_PUBLIC_URL,
)
from url_helpers import build_local_file_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadResult:
    url: str
    public_id: str
    size: int
    content_type: str


class StorageProvider(ABC):
    name = "abstract"

    @abstractmethod
    def upload_file(self, data: bytes, name: str, content_type: str) -> UploadResult:
        """
        Store bytes under a key and return its public URL and identifier.
        """

    @abstractmethod
    def delete_file(self, public_id: str) -> None:
        """
        Delete a stored file. Missing files are not an error.
        """

    @abstractmethod
    def get_file_url(self, public_id: str) -> str:
        """
        Resolve the public URL of a stored file.
        """

    @abstractmethod
    def download_file(self, public_id: str) -> bytes:
        """
        Read a stored file back.
        """


def _normalize_key(name: str) -> str:
    key = name.replace("\\", "/").strip("/")
    if not key or any(part in ("", ".", "..") for part in key.split("/")):
        raise StorageError(f"Invalid storage key: {name!r}")
    return key


class LocalFileStorage(StorageProvider):
    """
    Files under a local directory, served by the app under STORAGE_PUBLIC_URL.
    """
    name = "local"

    def __init__(self, root: Path, public_url: str = STORAGE_PUBLIC_URL) -> None:
        self.root = Path(root).resolve()
        self.public_url = public_url
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, public_id: str) -> Path:
        path = (self.root / _normalize_key(public_id)).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Storage key escapes storage root: {public_id!r}")
        return path

    def upload_file(self, data: bytes, name: str, content_type: str) -> UploadResult:
        key = _normalize_key(name)
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to store {key}: {exc}") from exc

        return UploadResult(
            url=self.get_file_url(key),
            public_id=key,
            size=len(data),
            content_type=content_type,
        )

    def delete_file(self, public_id: str) -> None:
        path = self._path_for(public_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete {public_id}: {exc}") from exc

    def get_file_url(self, public_id: str) -> str:
        return build_local_file_url(self.public_url, _normalize_key(public_id))

    def download_file(self, public_id: str) -> bytes:
        path = self._path_for(public_id)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise StorageError(f"Stored file not found: {public_id}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to read {public_id}: {exc}") from exc


class S3Storage(StorageProvider):
    name = "s3"

    def __init__(
        self,
        bucket: str,
        region: str = AWS_REGION,
        endpoint_url: Optional[str] = AWS_S3_ENDPOINT,
        public_base_url: Optional[str] = AWS_PUBLIC_BASE_URL,
        client=None,
    ) -> None:
        if not bucket:
            raise RuntimeError("S3Storage requires a bucket name.")
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.public_base_url = public_base_url

        if client is None:
            session = boto3.session.Session()
            client = session.client(
                service_name="s3",
                region_name=region,
                endpoint_url=endpoint_url,
            )
        self.client = client

    def upload_file(self, data: bytes, name: str, content_type: str) -> UploadResult:
        key = _normalize_key(name)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Failed to upload {key} to S3: {exc}") from exc

        return UploadResult(
            url=self.get_file_url(key),
            public_id=key,
            size=len(data),
            content_type=content_type,
        )

    def delete_file(self, public_id: str) -> None:
        key = _normalize_key(public_id)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Failed to delete {key} from S3: {exc}") from exc

    def get_file_url(self, public_id: str) -> str:
        key = _normalize_key(public_id)
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def download_file(self, public_id: str) -> bytes:
        key = _normalize_key(public_id)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise StorageError(f"Stored file not found: {key}") from exc
            raise StorageError(f"Failed to download {key} from S3: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to download {key} from S3: {exc}") from exc


def create_storage_provider(backend: str = STORAGE_BACKEND) -> StorageProvider:
    normalized = backend.strip().lower()
    if normalized == "local":
        return LocalFileStorage(STORAGE_DIR)
    if normalized == "s3":
        return S3Storage(AWS_S3_BUCKET)
    raise RuntimeError(f"Unsupported storage backend: {backend}")

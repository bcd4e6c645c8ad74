"""
Blob storage for studio images and avatars.

Local disk in development and tests, an S3-compatible bucket (DigitalOcean
Spaces in production) otherwise. Backend failures surface as StorageError so
callers can roll back the row that referenced the key.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

import boto3
from botocore.exceptions import BotoCoreError, ClientError


class StorageError(RuntimeError):
    pass


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError


def _clean_key(key: str) -> str:
    cleaned = key.strip().lstrip("/").replace("\\", "/")
    if not cleaned or ".." in cleaned.split("/"):
        raise StorageError(f"Invalid storage key: {key!r}")
    return cleaned


@dataclass(frozen=True)
class LocalStorage(Storage):
    """Files under `root`, served back through the /media route."""

    root: Path
    url_prefix: str = "/media"

    def _path(self, key: str) -> Path:
        return self.root / _clean_key(key)

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        return self._path(key).open("rb")

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def public_url(self, key: str) -> str:
        return f"{self.url_prefix}/{_clean_key(key)}"


@dataclass(frozen=True)
class S3Storage(Storage):
    """Public-read objects; URLs point at the CDN host when one is configured."""

    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    cdn_base_url: str = ""
    _client_cache: dict = field(default_factory=dict, compare=False, repr=False)

    def _client(self):
        if "s3" not in self._client_cache:
            self._client_cache["s3"] = boto3.client(
                "s3",
                endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
                region_name=self.region or None,
                aws_access_key_id=self.access_key_id,
                aws_secret_access_key=self.secret_access_key,
            )
        return self._client_cache["s3"]

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {"ACL": "public-read", "CacheControl": "public, max-age=31536000"}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self._client().put_object(Bucket=self.bucket, Key=_clean_key(key), Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Upload of {key} failed: {e}") from e

    def open(self, key: str) -> BinaryIO:
        try:
            obj = self._client().get_object(Bucket=self.bucket, Key=_clean_key(key))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise FileNotFoundError(key) from e
            raise StorageError(f"Read of {key} failed: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Read of {key} failed: {e}") from e
        return obj["Body"]  # type: ignore[return-value]

    def delete(self, key: str) -> None:
        try:
            self._client().delete_object(Bucket=self.bucket, Key=_clean_key(key))
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Delete of {key} failed: {e}") from e

    def public_url(self, key: str) -> str:
        if self.cdn_base_url:
            return f"{self.cdn_base_url.rstrip('/')}/{_clean_key(key)}"
        # Spaces-style virtual host URL
        return f"https://{self.bucket}.{self.endpoint}/{_clean_key(key)}"


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        bucket = (config.get("S3_BUCKET") or "").strip()
        if not bucket:
            raise StorageError("STORAGE_BACKEND=s3 but S3_BUCKET is not set")
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "lon1").strip(),
            bucket=bucket,
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
            cdn_base_url=(config.get("S3_CDN_BASE_URL") or "").strip(),
        )
    root = Path(config.get("LOCAL_STORAGE_ROOT") or (Path(os.getcwd()) / "storage"))
    return LocalStorage(root=root)

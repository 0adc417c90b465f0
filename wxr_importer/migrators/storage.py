"""
Destinations for relocated media.

Every backend exposes ``put(key, data, content_type) -> Optional[str]``
returning the public URL of the stored object (``None`` when nothing was
stored), ``public_url(key)`` and ``delete_prefix(prefix)``.
:func:`storage_from_config` picks the backend from the ``storage`` section
of the configuration.
"""

from __future__ import annotations

import os
import shutil
from typing import Any, Dict, Optional

from ..utils.logs import log_message


class StorageError(Exception):
    """Raised when a backend cannot be configured or cannot write an object."""


class LocalStorage:
    """Writes objects under ``root`` and serves them from ``public_base_url``."""

    def __init__(self, root: str = os.path.join("public", "uploads"), public_base_url: str = "/uploads") -> None:
        self.root = root
        self.public_base_url = public_base_url.rstrip("/")

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key.lstrip('/')}"

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> Optional[str]:
        key = key.lstrip("/")
        path = os.path.join(self.root, *key.split("/"))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        if not os.path.exists(path):
            tmp_path = f"{path}.part"
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        return self.public_url(key)

    def delete_prefix(self, prefix: str) -> None:
        path = os.path.join(self.root, *prefix.strip("/").split("/"))
        if os.path.isdir(path):
            shutil.rmtree(path)


class S3Storage:
    """Puts objects into an S3 (or S3-compatible) bucket.

    ``boto3`` is only needed for this backend and is imported on first use,
    unless a ready client is passed in.
    """

    def __init__(
        self,
        bucket: str,
        *,
        client: Any = None,
        public_base_url: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
    ) -> None:
        if not bucket:
            raise StorageError("S3 storage needs a bucket name (storage.s3.bucket or S3_BUCKET).")
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.region = region
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        if client is None:
            try:
                import boto3  # type: ignore
            except ImportError as exc:
                raise ImportError(
                    "Package 'boto3' not found. Install the s3 extra (pip install wxr-importer[s3])."
                ) from exc
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url or None,
                region_name=region or None,
                aws_access_key_id=access_key_id or None,
                aws_secret_access_key=secret_access_key or None,
            )
        self.client = client

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        if self.region:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> Optional[str]:
        key = key.lstrip("/")
        kwargs: Dict[str, Any] = {"Bucket": self.bucket, "Key": key, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            self.client.put_object(**kwargs)
        except Exception as e:
            raise StorageError(f"S3 put of {key} failed: {e}") from e
        return self.public_url(key)

    def delete_prefix(self, prefix: str) -> None:
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix.strip("/") + "/"):
            keys = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
            if keys:
                self.client.delete_objects(Bucket=self.bucket, Delete={"Objects": keys})


class NullStorage:
    """No storage configured: nothing is written and every put yields ``None``."""

    def public_url(self, key: str) -> None:
        return None

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> Optional[str]:
        log_message(f"No storage backend configured; not storing {key}", level="WARNING")
        return None

    def delete_prefix(self, prefix: str) -> None:
        return None


def storage_from_config(cfg: Dict[str, Any]):
    """Build the backend named by ``cfg["backend"]`` (``local``, ``s3`` or ``none``)."""
    backend = str(cfg.get("backend") or "local").lower()
    if backend == "local":
        return LocalStorage(
            root=cfg.get("local_root") or os.path.join("public", "uploads"),
            public_base_url=cfg.get("public_base_url") or "/uploads",
        )
    if backend == "s3":
        s3 = cfg.get("s3") or {}
        if not s3.get("bucket"):
            log_message("S3 storage selected but no bucket configured; media will not be stored.", level="WARNING")
            return NullStorage()
        return S3Storage(
            s3.get("bucket", ""),
            public_base_url=s3.get("public_base_url") or None,
            endpoint_url=s3.get("endpoint_url") or None,
            region=s3.get("region") or None,
            access_key_id=s3.get("access_key_id") or None,
            secret_access_key=s3.get("secret_access_key") or None,
        )
    if backend in ("none", "null", ""):
        return NullStorage()
    raise StorageError(f"Unknown storage backend {backend!r}")

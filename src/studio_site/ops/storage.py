from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from studio_site.config import Settings, get_settings
from studio_site.utils.log import logger


class BlobStoreError(RuntimeError):
    pass


class BlobStore(Protocol):
    """
    Whole-document JSON storage: no partial updates, last write wins.
    """

    def get_json(self, key: str, default: Any) -> Any: ...

    def put_json(self, key: str, value: Any) -> None: ...


class LocalJsonStore:
    """
    JSON documents as files under one root directory.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        p = (self.root / str(key)).resolve()
        try:
            p.relative_to(self.root)
        except ValueError:
            raise BlobStoreError(f"key escapes store root: {key!r}") from None
        return p

    def get_json(self, key: str, default: Any) -> Any:
        p = self._path(key)
        if not p.exists():
            return default
        try:
            with self._lock:
                text = p.read_text(encoding="utf-8")
        except OSError as ex:
            raise BlobStoreError(f"read failed: {p.name}: {ex}") from ex
        try:
            return json.loads(text)
        except ValueError:
            logger.warning("blob_store_corrupt_document", key=str(key))
            return default

    def put_json(self, key: str, value: Any) -> None:
        p = self._path(key)
        data = json.dumps(value, ensure_ascii=False, indent=2)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            with self._lock:
                fd, tmp = tempfile.mkstemp(prefix=f".{p.name}.", suffix=".tmp", dir=str(p.parent))
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        f.write(data)
                    os.replace(tmp, p)
                except BaseException:
                    Path(tmp).unlink(missing_ok=True)
                    raise
        except OSError as ex:
            raise BlobStoreError(f"write failed: {p.name}: {ex}") from ex


class S3JsonStore:
    """
    JSON documents in an S3-compatible bucket under `<prefix>data/`.
    """

    def __init__(self, client: Any, *, bucket: str, prefix: str = "") -> None:
        self.client = client
        self.bucket = str(bucket)
        self.prefix = str(prefix or "")

    def _key(self, key: str) -> str:
        return f"{self.prefix}data/{key}"

    def get_json(self, key: str, default: Any) -> Any:
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=self._key(key))
            body = resp["Body"].read()
        except ClientError as ex:
            err = ex.response.get("Error", {})
            status = ex.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if err.get("Code") in {"NoSuchKey", "404"} or status == 404:
                return default
            raise BlobStoreError(f"s3 get failed: {key}: {ex}") from ex
        except BotoCoreError as ex:
            raise BlobStoreError(f"s3 get failed: {key}: {ex}") from ex
        if not body:
            return default
        try:
            return json.loads(body.decode("utf-8") if isinstance(body, bytes) else body)
        except ValueError as ex:
            raise BlobStoreError(f"s3 document is not JSON: {key}") from ex

    def put_json(self, key: str, value: Any) -> None:
        data = json.dumps(value, ensure_ascii=False, indent=2).encode("utf-8")
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=self._key(key),
                Body=data,
                ContentType="application/json",
            )
        except (BotoCoreError, ClientError) as ex:
            raise BlobStoreError(f"s3 put failed: {key}: {ex}") from ex


def _s3_client(s: Settings) -> Any:
    secret = s.secret.s3_secret_access_key
    return boto3.client(
        "s3",
        endpoint_url=s.public.s3_endpoint,
        region_name=s.public.s3_region,
        aws_access_key_id=s.secret.s3_access_key_id,
        aws_secret_access_key=secret.get_secret_value() if secret else None,
        # Path-style addressing for non-AWS S3 providers.
        config=Config(s3={"addressing_style": "path"}),
    )


def build_blob_store(s: Settings | None = None) -> BlobStore:
    """
    Build the audit document store based on AUDIT_BACKEND.

      - local: `<STUDIO_DATA_DIR>/<key>`
      - s3: S3-compatible bucket (falls back to local when not fully configured)
      - auto: s3 when configured, else local
    """
    s = s or get_settings()
    backend = str(getattr(s, "audit_backend", "auto") or "auto").strip().lower()
    local = LocalJsonStore(Path(s.data_dir))
    if backend == "local":
        return local
    if backend not in {"auto", "s3"}:
        logger.warning("audit_backend_invalid", value=backend)
        return local
    if not s.s3_configured():
        if backend == "s3":
            logger.warning("audit_backend_s3_not_configured")
        return local
    logger.info(
        "audit_backend_s3",
        endpoint=str(s.public.s3_endpoint or "")[:40],
        bucket=s.public.s3_bucket,
        region=s.public.s3_region,
    )
    return S3JsonStore(_s3_client(s), bucket=str(s.public.s3_bucket), prefix=s.public.s3_prefix)

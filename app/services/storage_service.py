"""Durable media storage: local filesystem with signed URLs, or S3."""

import hashlib
import hmac
import time
from pathlib import Path
from threading import Lock
from typing import Optional
from urllib.parse import quote

import boto3

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("storage_service")


def _normalize_media_path(path: str) -> str:
    normalized = (path or "").strip().lstrip("/")
    return normalized.replace("\\", "/")


def _sign_media_path(path: str, expires: int, secret: str) -> str:
    payload = f"{path}:{expires}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def build_signed_media_url(relative_path: str, *, ttl_seconds: Optional[int] = None) -> Optional[str]:
    """Signed public URL for a file served by the /media route."""
    if not settings.media_signing_secret:
        logger.error("MEDIA_SIGNING_SECRET not configured")
        return None
    ttl = ttl_seconds if ttl_seconds is not None else settings.media_url_ttl_seconds
    expires = int(time.time()) + max(int(ttl), 60)
    normalized_path = _normalize_media_path(relative_path)
    signature = _sign_media_path(normalized_path, expires, settings.media_signing_secret)
    quoted_path = quote(normalized_path, safe="/")
    return f"{settings.public_base_url.rstrip('/')}/media/{quoted_path}?expires={expires}&sig={signature}"


def verify_signed_media_path(relative_path: str, expires: int, signature: str) -> bool:
    if not settings.media_signing_secret:
        logger.error("MEDIA_SIGNING_SECRET not configured")
        return False
    if not signature:
        return False
    if expires < int(time.time()):
        return False
    normalized_path = _normalize_media_path(relative_path)
    expected = _sign_media_path(normalized_path, expires, settings.media_signing_secret)
    return hmac.compare_digest(expected, signature)


class StorageBackend:
    """Base interface for storage backends."""

    def put(self, key: str, data: bytes, content_type: str = "") -> str:
        """Store *data* under *key*, overwriting, and return its URL."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        """Remove *key*. Missing keys are ignored."""
        raise NotImplementedError


class LocalBackend(StorageBackend):
    def __init__(self, root: Optional[str] = None) -> None:
        self.root = Path(root or settings.media_storage_dir).resolve()

    def resolve_path(self, key: str) -> Path:
        """Resolve *key* within root, rejecting traversal attempts."""
        dest = (self.root / _normalize_media_path(key)).resolve()
        if self.root not in dest.parents:
            raise ValueError(f"Invalid storage key: {key}")
        return dest

    def put(self, key: str, data: bytes, content_type: str = "") -> str:
        dest = self.resolve_path(key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)
        url = build_signed_media_url(key)
        if url is None:
            raise RuntimeError("Cannot build media URL without MEDIA_SIGNING_SECRET")
        return url

    def delete(self, key: str) -> None:
        dest = self.resolve_path(key)
        if dest.exists():
            dest.unlink()


class S3Backend(StorageBackend):
    def __init__(self, bucket: Optional[str] = None, client=None) -> None:
        self.bucket = bucket or settings.s3_bucket
        if not self.bucket:
            raise RuntimeError("S3_BUCKET not configured")
        self.client = client or boto3.client(
            "s3",
            region_name=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url.rstrip("/") if settings.s3_endpoint_url else None,
        )

    def url(self, key: str) -> str:
        if settings.s3_public_base_url:
            return f"{settings.s3_public_base_url.rstrip('/')}/{quote(key, safe='/')}"
        return f"https://{self.bucket}.s3.amazonaws.com/{quote(key, safe='/')}"

    def put(self, key: str, data: bytes, content_type: str = "") -> str:
        extra = {"ContentType": content_type} if content_type else {}
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        return self.url(key)

    def delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)


def _build_backend() -> StorageBackend:
    if settings.media_storage_backend == "s3":
        logger.info("Using S3 media storage", extra={"context": {"bucket": settings.s3_bucket}})
        return S3Backend()
    logger.info("Using local media storage", extra={"context": {"root": settings.media_storage_dir}})
    return LocalBackend()


class LazyStorage(StorageBackend):
    """Builds the configured backend on first use."""

    def __init__(self) -> None:
        self._backend: Optional[StorageBackend] = None
        self._lock = Lock()

    def _get_backend(self) -> StorageBackend:
        if self._backend is not None:
            return self._backend
        with self._lock:
            if self._backend is None:
                self._backend = _build_backend()
        return self._backend

    def put(self, key: str, data: bytes, content_type: str = "") -> str:
        return self._get_backend().put(key, data, content_type)

    def delete(self, key: str) -> None:
        self._get_backend().delete(key)


storage: StorageBackend = LazyStorage()

"""Copy provider media into tenant-scoped storage, once per media id."""

import mimetypes
import re
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import httpx

from app.logging_config import get_logger
from app.models import ChannelCredential
from app.services import whatsapp_service
from app.services.errors import MediaFetchFailedError
from app.services.storage_service import StorageBackend, storage

logger = get_logger("media_service")

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "audio/webm": ".webm",
    "audio/amr": ".amr",
    "video/mp4": ".mp4",
    "video/3gpp": ".3gp",
    "application/pdf": ".pdf",
}
DEFAULT_EXTENSION = ".bin"


@dataclass
class StoredMedia:
    url: str
    key: str
    mime_type: Optional[str] = None


def extension_for(mime_type: Optional[str]) -> str:
    base = (mime_type or "").split(";")[0].strip().lower()
    if not base:
        return DEFAULT_EXTENSION
    if base in MIME_EXTENSIONS:
        return MIME_EXTENSIONS[base]
    return mimetypes.guess_extension(base) or DEFAULT_EXTENSION


def storage_key(tenant_id: UUID, media_id: str, mime_type: Optional[str]) -> str:
    """Deterministic per (tenant, media id) so redeliveries overwrite."""
    safe_id = re.sub(r"[^a-zA-Z0-9.-]", "_", media_id)
    return f"{tenant_id}/{safe_id}{extension_for(mime_type)}"


def _download(media_id: str, credential: ChannelCredential, mime_type: Optional[str]) -> tuple[bytes, Optional[str]]:
    if not credential.access_token:
        raise MediaFetchFailedError(media_id, "credential has no access token")
    try:
        info = whatsapp_service.fetch_media_info(media_id, credential.access_token)
        url = info.get("url") if isinstance(info, dict) else None
        if not url:
            raise MediaFetchFailedError(media_id, "media info without url")
        data, content_type = whatsapp_service.download_media(url, credential.access_token)
    except httpx.HTTPError as exc:
        raise MediaFetchFailedError(media_id, str(exc)) from exc
    if not data:
        raise MediaFetchFailedError(media_id, "empty media body")
    return data, info.get("mime_type") or mime_type or content_type


def fetch_and_persist(
    tenant_id: UUID,
    media_id: str,
    credential: ChannelCredential,
    mime_type: Optional[str] = None,
    backend: Optional[StorageBackend] = None,
) -> Optional[StoredMedia]:
    """Return the stored media, or None when anything along the way fails."""
    if not media_id:
        return None
    target = backend or storage
    try:
        data, resolved_mime = _download(media_id, credential, mime_type)
        key = storage_key(tenant_id, media_id, resolved_mime)
        url = target.put(key, data, (resolved_mime or "").split(";")[0].strip())
    except Exception as exc:
        logger.warning(
            "Media fetch failed",
            extra={"context": {"tenant_id": str(tenant_id), "media_id": media_id, "error": str(exc)}},
        )
        return None

    logger.info(
        "Media stored",
        extra={"context": {"tenant_id": str(tenant_id), "media_id": media_id, "key": key, "bytes": len(data)}},
    )
    return StoredMedia(url=url, key=key, mime_type=resolved_mime)

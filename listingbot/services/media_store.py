import hashlib
import hmac
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote
from uuid import uuid4

from listingbot.logging_config import get_logger

logger = get_logger("media_store")

PERMANENT_MARKER = "permanent"


@dataclass
class StoredObject:
    object_id: str  # path relative to the storage root
    url: str  # non-expiring link, kept on the listing record


class MediaStoreError(Exception):
    pass


def _normalize_media_path(path: str) -> str:
    normalized = (path or "").strip().lstrip("/")
    return normalized.replace("\\", "/")


def _safe_media_id(value: Optional[str]) -> str:
    if not value:
        return uuid4().hex
    cleaned = re.sub(r"[^a-zA-Z0-9_-]", "", value)
    return cleaned or uuid4().hex


class LocalMediaStore:
    """
    Object store on local disk, published through HMAC-signed URLs served by /media.

    Two kinds of link are issued: an expiring one (`expires` + `sig`) handed to
    third parties such as the vision model, and a permanent one (`sig` only)
    stored on listing records.
    """

    def __init__(
        self,
        storage_dir: str,
        *,
        signing_secret: Optional[str],
        public_base_url: str,
        url_ttl_seconds: int = 3600,
    ):
        self.storage_dir = Path(storage_dir)
        self.signing_secret = signing_secret
        self.public_base_url = public_base_url.rstrip("/")
        self.url_ttl_seconds = url_ttl_seconds

    def _sign(self, path: str, expires: Optional[int]) -> str:
        payload = f"{path}:{PERMANENT_MARKER if expires is None else expires}".encode("utf-8")
        return hmac.new(self.signing_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    def _media_url(self, normalized_path: str) -> str:
        if not self.signing_secret:
            raise MediaStoreError("MEDIA_SIGNING_SECRET not configured")
        return f"{self.public_base_url}/media/{quote(normalized_path, safe='/')}"

    def build_signed_url(self, relative_path: str, *, ttl_seconds: Optional[int] = None) -> str:
        normalized_path = _normalize_media_path(relative_path)
        base_url = self._media_url(normalized_path)
        ttl = ttl_seconds if ttl_seconds is not None else self.url_ttl_seconds
        expires = int(time.time()) + max(int(ttl), 60)
        return f"{base_url}?expires={expires}&sig={self._sign(normalized_path, expires)}"

    def build_permanent_url(self, relative_path: str) -> str:
        normalized_path = _normalize_media_path(relative_path)
        base_url = self._media_url(normalized_path)
        return f"{base_url}?sig={self._sign(normalized_path, None)}"

    def verify_signed_path(self, relative_path: str, expires: Optional[int], signature: str) -> bool:
        """Check a link signature; `expires=None` means a permanent link."""
        if not self.signing_secret:
            logger.error("MEDIA_SIGNING_SECRET not configured")
            return False
        if not signature:
            return False
        if expires is not None and expires < int(time.time()):
            return False
        expected = self._sign(_normalize_media_path(relative_path), expires)
        return hmac.compare_digest(expected, signature)

    def resolve_path(self, relative_path: str) -> Path:
        """Map a relative object path to disk, refusing paths outside the storage root."""
        base_dir = self.storage_dir.resolve()
        target_path = (base_dir / _normalize_media_path(relative_path)).resolve()
        if base_dir not in target_path.parents:
            raise MediaStoreError(f"Invalid media path: {relative_path}")
        return target_path

    def upload(
        self,
        data: bytes,
        namespace: str,
        object_id: Optional[str] = None,
        *,
        extension: str = ".jpg",
    ) -> StoredObject:
        """Write data under namespace and return its permanent public URL."""
        if not data:
            raise MediaStoreError("Refusing to store empty media")

        name = _safe_media_id(object_id)
        relative_path = f"{_safe_media_id(namespace)}/{name}{extension}"
        target_path = self.resolve_path(relative_path)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        target_path.write_bytes(data)

        logger.info(f"Stored media {relative_path} ({len(data)} bytes)")
        return StoredObject(object_id=relative_path, url=self.build_permanent_url(relative_path))

    def delete(self, object_id: str) -> None:
        target_path = self.resolve_path(object_id)
        if target_path.exists():
            target_path.unlink()
            logger.info(f"Deleted media {object_id}")

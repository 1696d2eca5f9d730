from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from lifecycle_api.core.errors import AttachmentRejected
from lifecycle_api.core.settings import AppSettings, get_app_settings
from lifecycle_api.services.storage import BinaryStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Upload:
    """A file supplied with a transition request."""

    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class AttachmentPolicy:
    allowed_extensions: frozenset[str]
    max_bytes: int

    @classmethod
    def from_settings(cls, settings: Optional[AppSettings] = None) -> "AttachmentPolicy":
        settings = settings or get_app_settings()
        return cls(
            allowed_extensions=frozenset(settings.ATTACHMENT_ALLOWED_EXTENSIONS),
            max_bytes=int(settings.MAX_FILE_SIZE_MB * 1024 * 1024),
        )

    @classmethod
    def of(cls, extensions: Iterable[str], max_mb: float) -> "AttachmentPolicy":
        return cls(frozenset(e.lower().lstrip(".") for e in extensions), int(max_mb * 1024 * 1024))

    # PUBLIC_INTERFACE
    def validate(self, upload: Upload) -> None:
        """
        Check the extension allow-list and the size ceiling.

        Raises:
            AttachmentRejected: naming the file and the reason.
        """
        if not upload.filename or safe_filename(upload.filename) in ("", "_"):
            raise AttachmentRejected(upload.filename or "", "missing file name")
        extension = os.path.splitext(upload.filename)[1].lower().lstrip(".")
        if extension not in self.allowed_extensions:
            allowed = ", ".join(sorted(self.allowed_extensions))
            raise AttachmentRejected(upload.filename, f"invalid file type; allowed types: {allowed}")
        if upload.size > self.max_bytes:
            raise AttachmentRejected(upload.filename, f"file exceeds {self.max_bytes} bytes")


# PUBLIC_INTERFACE
async def read_upload(file: Any, policy: AttachmentPolicy, chunk_size: int = 1024 * 1024) -> Upload:
    """
    Read an incoming multipart file into an Upload, stopping one byte past the size ceiling.

    ``file`` is a FastAPI ``UploadFile``. An oversized file is never held in
    memory in full; the truncated content still exceeds ``max_bytes`` so
    ``AttachmentPolicy.validate`` rejects it.
    """
    remaining = policy.max_bytes + 1
    chunks = []
    while remaining > 0:
        chunk = await file.read(min(chunk_size, remaining))
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return Upload(filename=file.filename, content=b"".join(chunks), content_type=file.content_type)


def safe_filename(filename: str) -> str:
    return os.path.basename(filename.replace("\\", "/")).replace("..", "_").strip()


# PUBLIC_INTERFACE
def object_key(tenant_id: Any, entity_kind: str, entity_id: Any, filename: str) -> str:
    """Storage key for an entity attachment: organisations/{tenant}/files/{kind}/{id}/{name}."""
    return f"organisations/{tenant_id}/files/{entity_kind.lower()}/{entity_id}/{safe_filename(filename)}"


# PUBLIC_INTERFACE
async def store_attachment(
    store: BinaryStore,
    bucket: str,
    policy: AttachmentPolicy,
    upload: Upload,
    *,
    tenant_id: Any,
    entity_kind: str,
    entity_id: Any,
) -> Dict[str, Any]:
    """Validate then upload; returns the attachment reference merged into the transition payload."""
    policy.validate(upload)
    key = object_key(tenant_id, entity_kind, entity_id, upload.filename)
    stored = await store.put(bucket, key, upload.content, upload.content_type)
    if stored is None:
        raise AttachmentRejected(upload.filename, "upload to the binary store failed")
    logger.info("Stored attachment %s (%d bytes)", key, stored.size)
    return {
        "bucket": stored.bucket,
        "key": stored.key,
        "filename": safe_filename(upload.filename),
        "size": stored.size,
        "content_type": upload.content_type,
    }


# PUBLIC_INTERFACE
async def attach_download_urls(store: BinaryStore, bucket: str, entities: Iterable[Any], expires_in: int) -> None:
    """Set ``attachment_url`` on every entity that carries an ``attachment_key``; plain rows are skipped."""
    for entity in entities:
        key = getattr(entity, "attachment_key", None)
        if key:
            entity.attachment_url = await store.url(bucket, key, expires_in)

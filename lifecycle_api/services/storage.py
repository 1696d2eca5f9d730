"""
Binary object store adapters.

``put`` returns a reference to the stored object, or None when the store could
not accept it; callers decide whether that is fatal. ``url`` hands out a
temporary download link the same way.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional, Protocol, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from lifecycle_api.core.settings import get_app_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredObject:
    bucket: str
    key: str
    size: int


class BinaryStore(Protocol):
    async def put(self, bucket: str, key: str, data: bytes, content_type: Optional[str] = None) -> Optional[StoredObject]:
        ...

    async def get(self, bucket: str, key: str) -> bytes:
        ...

    async def delete(self, bucket: str, key: str) -> None:
        ...

    async def url(self, bucket: str, key: str, expires_in: int) -> Optional[str]:
        ...


class S3BinaryStore:
    """S3 adapter; boto3 calls are blocking and run in the threadpool."""

    def __init__(self, region_name: Optional[str] = None, client=None) -> None:
        self._client = client or boto3.client("s3", region_name=region_name)

    async def put(self, bucket: str, key: str, data: bytes, content_type: Optional[str] = None) -> Optional[StoredObject]:
        extra = {"ContentType": content_type} if content_type else {}
        try:
            await run_in_threadpool(self._client.put_object, Bucket=bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError):
            logger.exception("Upload of s3://%s/%s failed", bucket, key)
            return None
        return StoredObject(bucket=bucket, key=key, size=len(data))

    async def get(self, bucket: str, key: str) -> bytes:
        response = await run_in_threadpool(self._client.get_object, Bucket=bucket, Key=key)
        return await run_in_threadpool(response["Body"].read)

    async def delete(self, bucket: str, key: str) -> None:
        await run_in_threadpool(self._client.delete_object, Bucket=bucket, Key=key)

    async def url(self, bucket: str, key: str, expires_in: int) -> Optional[str]:
        """Presigned GET link valid for ``expires_in`` seconds; None when signing fails."""
        try:
            return await run_in_threadpool(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError):
            logger.exception("Signing s3://%s/%s failed", bucket, key)
            return None


class MemoryBinaryStore:
    """Process-local store for development and tests."""

    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str], bytes] = {}

    async def put(self, bucket: str, key: str, data: bytes, content_type: Optional[str] = None) -> Optional[StoredObject]:
        self.objects[(bucket, key)] = bytes(data)
        return StoredObject(bucket=bucket, key=key, size=len(data))

    async def get(self, bucket: str, key: str) -> bytes:
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise FileNotFoundError(f"{bucket}/{key}") from None

    async def delete(self, bucket: str, key: str) -> None:
        self.objects.pop((bucket, key), None)

    async def url(self, bucket: str, key: str, expires_in: int) -> Optional[str]:
        if (bucket, key) not in self.objects:
            return None
        return f"memory://{bucket}/{key}?expires_in={expires_in}"


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_binary_store() -> BinaryStore:
    """Return the configured binary store (STORAGE_BACKEND = s3 | memory)."""
    settings = get_app_settings()
    if settings.STORAGE_BACKEND == "memory":
        return MemoryBinaryStore()
    return S3BinaryStore(region_name=settings.AWS_DEFAULT_REGION)

import asyncio
import io
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Optional

from minio import Minio
from minio.error import S3Error

from chatsync.utils.exceptions import StorageError


class BlobStorage(ABC):
    """Stores binary objects and hands back a URL for them"""

    @abstractmethod
    async def upload(self, data: bytes, object_name: str, content_type: str = "application/octet-stream") -> str:
        ...

    @abstractmethod
    async def delete(self, object_name: str) -> bool:
        ...


class MinioBlobStorage(BlobStorage):
    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket_name: str,
        secure: bool = False,
        url_expires: int = 3600
    ):
        self.client = Minio(
            endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure
        )
        self.bucket_name = bucket_name
        self.url_expires = url_expires

    @classmethod
    def from_settings(cls, settings) -> "MinioBlobStorage":
        return cls(
            settings.MINIO_ENDPOINT,
            settings.MINIO_ROOT_USER,
            settings.MINIO_ROOT_PASSWORD,
            settings.MINIO_BUCKET_NAME,
            secure=settings.MINIO_SECURE,
            url_expires=settings.AVATAR_URL_EXPIRE_SECONDS
        )

    async def ensure_bucket_exists(self):
        """Ensure the bucket exists, create if not"""
        try:
            if not await asyncio.to_thread(self.client.bucket_exists, self.bucket_name):
                await asyncio.to_thread(self.client.make_bucket, self.bucket_name)
        except S3Error as e:
            raise StorageError(f"Error ensuring bucket exists: {e}") from e

    async def upload(self, data: bytes, object_name: str, content_type: str = "application/octet-stream") -> str:
        """Upload bytes and return a presigned URL for them"""
        await self.ensure_bucket_exists()
        try:
            await asyncio.to_thread(
                self.client.put_object,
                self.bucket_name,
                object_name,
                io.BytesIO(data),
                len(data),
                content_type=content_type
            )
            return await self.get_url(object_name)
        except S3Error as e:
            raise StorageError(f"Error uploading file: {e}") from e

    async def get_url(self, object_name: str, expires: Optional[int] = None) -> str:
        """Get a presigned URL for an object"""
        try:
            return await asyncio.to_thread(
                self.client.presigned_get_object,
                self.bucket_name,
                object_name,
                expires=timedelta(seconds=expires or self.url_expires)
            )
        except S3Error as e:
            raise StorageError(f"Error generating presigned URL: {e}") from e

    async def delete(self, object_name: str) -> bool:
        """Delete an object"""
        try:
            await asyncio.to_thread(self.client.remove_object, self.bucket_name, object_name)
            return True
        except S3Error as e:
            raise StorageError(f"Error deleting file: {e}") from e

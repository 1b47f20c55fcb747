import logging
from abc import ABC, abstractmethod
from io import BytesIO
from uuid import uuid4

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from noble.config import Settings
from noble.errors import NotFound, StoreUnavailable

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/heic": "heic",
    "image/webp": "webp",
    "image/gif": "gif",
}


def photo_key(content_type: str) -> str:
    """Build a unique object key for an uploaded photo.

    Raises:
        ValueError: If the content type is not a supported image type
    """
    extension = _EXTENSIONS.get(content_type)
    if extension is None:
        raise ValueError(f"Unsupported photo type: {content_type}")
    return f"photos/{uuid4()}.{extension}"


class Storage(ABC):
    """File storage for profile photos."""

    @abstractmethod
    async def upload(self, data: bytes, content_type: str) -> str:
        """Store a file and return its public URL."""

    @abstractmethod
    async def delete(self, url: str) -> None:
        """Delete a previously uploaded file."""


class MemoryStorage(Storage):
    """Keeps uploads in memory, for local development and tests."""

    BASE_URL = "memory://noble"

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}

    async def upload(self, data: bytes, content_type: str) -> str:
        if not data:
            raise ValueError("Cannot upload an empty file")
        key = photo_key(content_type)
        self.files[key] = data
        return f"{self.BASE_URL}/{key}"

    async def delete(self, url: str) -> None:
        key = url.removeprefix(f"{self.BASE_URL}/")
        if self.files.pop(key, None) is None:
            raise NotFound(f"No stored file at {url}")


class S3Storage(Storage):
    """Storage service for handling file operations with S3.

    Uses aioboto3 for async operations. Credentials come from the standard
    AWS environment.

    Attributes:
        bucket: Name of the S3 bucket
        region: Region of the bucket
        public_base_url: Base URL the uploaded objects are served from
    """

    def __init__(self, settings: Settings) -> None:
        self.bucket: str = settings.s3_bucket_name
        self.region: str = settings.s3_region
        self.public_base_url: str = (
            settings.s3_public_base_url
            or f"https://{self.bucket}.s3.{self.region}.amazonaws.com"
        ).rstrip("/")
        self.session = aioboto3.Session()

    async def upload(self, data: bytes, content_type: str) -> str:
        """Upload a photo to S3.

        Args:
            data: The raw file contents
            content_type: MIME type of the file

        Returns:
            The public URL of the uploaded object

        Raises:
            ValueError: If the file is empty or of an unsupported type
            StoreUnavailable: If the upload fails
        """
        if not data:
            raise ValueError("Cannot upload an empty file")
        key = photo_key(content_type)
        async with self.session.client("s3", region_name=self.region) as s3:
            try:
                await s3.upload_fileobj(
                    BytesIO(data),
                    self.bucket,
                    key,
                    ExtraArgs={"ContentType": content_type},
                )
            except (ClientError, BotoCoreError) as e:
                logger.warning("Photo upload to %s failed: %s", self.bucket, e)
                raise StoreUnavailable(f"Failed to upload photo: {e}") from e
        return f"{self.public_base_url}/{key}"

    async def delete(self, url: str) -> None:
        """Delete a photo from S3.

        Raises:
            NotFound: If the URL does not belong to this bucket
            StoreUnavailable: If the deletion fails
        """
        prefix = f"{self.public_base_url}/"
        if not url.startswith(prefix):
            raise NotFound(f"{url} is not stored in {self.bucket}")
        async with self.session.client("s3", region_name=self.region) as s3:
            try:
                await s3.delete_object(Bucket=self.bucket, Key=url.removeprefix(prefix))
            except (ClientError, BotoCoreError) as e:
                raise StoreUnavailable(f"Failed to delete photo: {e}") from e

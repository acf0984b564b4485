"""S3-backed object store for source and transcoded media.

Objects are addressed by opaque keys inside a single media bucket. Writes
are plain PutObject calls, so storing to the same key twice overwrites:
a redelivered job re-uploads to its ``outputRef`` without side effects.
"""

from pathlib import Path
from typing import Any

from aws_lambda_powertools import Logger
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from .aws_clients import get_s3_client
from .checksum import checksum_bytes, checksum_file
from .config import get_settings
from .exceptions import ObjectStoreError

logger = Logger(service="object-store")

OUTPUT_CONTENT_TYPE = "video/mp4"


class S3ObjectStore:
    """Fetch and store media objects in the media bucket."""

    def __init__(self, bucket: str | None = None, s3_client: Any = None) -> None:
        self.bucket = bucket or get_settings().media_bucket
        self._s3 = s3_client or get_s3_client()

    def fetch(self, key: str) -> bytes:
        """Read a whole object into memory.

        Raises:
            ObjectStoreError: If the object cannot be read
        """
        try:
            response = self._s3.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise ObjectStoreError(
                f"Failed to fetch s3://{self.bucket}/{key}: {e}",
                {"bucket": self.bucket, "key": key},
            )

    def store(self, data: bytes, key: str, content_type: str = OUTPUT_CONTENT_TYPE) -> str:
        """Write bytes to ``key``, overwriting any existing object.

        Returns:
            XXHash64 checksum of the stored payload
        """
        try:
            self._s3.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            raise ObjectStoreError(
                f"Failed to store s3://{self.bucket}/{key}: {e}",
                {"bucket": self.bucket, "key": key},
            )
        return checksum_bytes(data)

    def download(self, key: str, path: str | Path) -> int:
        """Stream an object to a local file.

        Returns:
            Size of the downloaded file in bytes
        """
        try:
            self._s3.download_file(self.bucket, key, str(path))
        except (ClientError, BotoCoreError) as e:
            raise ObjectStoreError(
                f"Failed to download s3://{self.bucket}/{key}: {e}",
                {"bucket": self.bucket, "key": key},
            )

        size = Path(path).stat().st_size
        logger.debug("Downloaded object", extra={"key": key, "size_bytes": size})
        return size

    def upload(self, path: str | Path, key: str, content_type: str = OUTPUT_CONTENT_TYPE) -> str:
        """Upload a local file to ``key``, overwriting any existing object.

        Returns:
            XXHash64 checksum of the uploaded file
        """
        checksum = checksum_file(path)
        try:
            self._s3.upload_file(
                str(path),
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise ObjectStoreError(
                f"Failed to upload s3://{self.bucket}/{key}: {e}",
                {"bucket": self.bucket, "key": key},
            )

        logger.debug("Uploaded object", extra={"key": key, "checksum": checksum})
        return checksum

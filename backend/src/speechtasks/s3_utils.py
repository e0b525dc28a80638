"""
S3 blob store for contribution media.
Uploads recordings, builds public and presigned URLs, lists and removes objects.
"""
import re
from typing import List, Optional, Tuple
from urllib.parse import quote, unquote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import config
from .exceptions import StorageFailure
from .logging import logger

# https://<bucket>.s3.amazonaws.com/<key> or https://<bucket>.s3.<region>.amazonaws.com/<key>
_VIRTUAL_HOSTED_URL = re.compile(r'^https?://([^/]+?)\.s3(?:[.-][a-z0-9-]+)?\.amazonaws\.com/(.+)$')
_S3_URI = re.compile(r'^s3://([^/]+)/(.+)$')

# S3 DeleteObjects accepts at most 1000 keys per request
MAX_DELETE_KEYS = 1000


def parse_storage_url(url: str) -> Optional[Tuple[str, str]]:
    """
    Extract (bucket, key) from a stored blob URL.

    Args:
        url: Public URL or s3:// URI written by BlobStore

    Returns:
        (bucket, key) tuple or None if the URL does not point at S3
    """
    if not url:
        return None
    url = url.split('?', 1)[0]
    match = _VIRTUAL_HOSTED_URL.match(url) or _S3_URI.match(url)
    if not match:
        return None
    return match.group(1), unquote(match.group(2))


class BlobStore:
    """Bucket/path oriented wrapper over the S3 client."""

    def __init__(self, client=None, region: str = None):
        self._client = client
        self.region = region or config.AWS_REGION

    @property
    def client(self):
        if self._client is None:
            # Custom signature version for presigned URLs
            self._client = boto3.client(
                's3',
                region_name=self.region,
                config=BotoConfig(signature_version='s3v4')
            )
        return self._client

    def upload(self, bucket: str, path: str, body: bytes, content_type: str = None) -> None:
        """Store a blob under bucket/path, overwriting any previous object."""
        try:
            self.client.put_object(
                Bucket=bucket,
                Key=path,
                Body=body,
                ContentType=content_type or 'application/octet-stream'
            )
            logger.info(f"Uploaded s3://{bucket}/{path}")
        except (ClientError, BotoCoreError) as e:
            raise StorageFailure(f"Upload failed: {e}") from e

    def get_public_url(self, bucket: str, path: str) -> Optional[str]:
        """Public URL of an object, or None if bucket/path are missing."""
        if not bucket or not path:
            return None
        return f"https://{bucket}.s3.{self.region}.amazonaws.com/{quote(path)}"

    def generate_presigned_url(
        self,
        bucket: str,
        path: str,
        expiration: int = None
    ) -> Optional[str]:
        """
        Generate a presigned URL for S3 object download.

        Args:
            bucket: Bucket name
            path: The S3 object key (e.g., 'projects/1/task/uuid.wav')
            expiration: URL expiration time in seconds

        Returns:
            Presigned URL string or None if generation fails
        """
        if not bucket or not path:
            return None

        try:
            url = self.client.generate_presigned_url(
                'get_object',
                Params={
                    'Bucket': bucket,
                    'Key': path
                },
                ExpiresIn=expiration or config.PRESIGNED_URL_EXPIRATION
            )
            logger.info(f"Generated presigned URL for {path}")
            return url

        except ClientError as e:
            logger.error(f"Error generating presigned URL for {path}: {e}")
            return None

    def list(self, bucket: str, prefix: str = '') -> List[str]:
        """List object keys under a prefix."""
        try:
            paginator = self.client.get_paginator('list_objects_v2')
            keys = []
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                keys.extend(obj['Key'] for obj in page.get('Contents', []))
            return keys
        except (ClientError, BotoCoreError) as e:
            raise StorageFailure(f"Failed to list s3://{bucket}/{prefix}: {e}") from e

    def remove(self, bucket: str, paths: List[str]) -> int:
        """
        Delete objects. Returns the number of keys S3 reported as deleted.

        Raises:
            StorageFailure: the request failed or some keys were not deleted
        """
        if not paths:
            return 0

        deleted = 0
        try:
            for i in range(0, len(paths), MAX_DELETE_KEYS):
                batch = paths[i:i + MAX_DELETE_KEYS]
                response = self.client.delete_objects(
                    Bucket=bucket,
                    Delete={'Objects': [{'Key': key} for key in batch], 'Quiet': False}
                )
                if response.get('Errors'):
                    failed = [err.get('Key') for err in response['Errors']]
                    raise StorageFailure(f"Failed to delete {failed} from {bucket}")
                deleted += len(response.get('Deleted', batch))
        except (ClientError, BotoCoreError) as e:
            raise StorageFailure(f"Failed to delete from {bucket}: {e}") from e

        logger.info(f"Removed {deleted} objects from {bucket}")
        return deleted

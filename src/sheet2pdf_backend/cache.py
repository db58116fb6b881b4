"""
Content-addressed artifact cache backed by S3.

This module provides functionality for:
- Checking whether a converted PDF already exists for a content identifier
- Uploading a converted PDF under its content identifier
- Generating presigned URLs for secure, time-limited downloads

Keys are the SHA-256 of the source spreadsheet, so storing the same
conversion twice writes identical bytes to the same key. Expiry of old
objects is left to the bucket's lifecycle policy.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .configuration import PDF_CONTENT_TYPE, CacheSettings
from .errors import CacheError
from .utils import content_disposition

logger = logging.getLogger(__name__)

# head_object reports a missing key with any of these error codes
NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def create_s3_client(region: Optional[str] = None, endpoint_url: Optional[str] = None) -> Any:
    """
    Create the boto3 S3 client used by the cache.

    Args:
        region: AWS region name (default: resolved by boto3)
        endpoint_url: Alternative S3-compatible endpoint, e.g. for MinIO

    Returns:
        boto3 S3 client
    """
    kwargs = {}
    if region:
        kwargs["region_name"] = region
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    return boto3.client("s3", **kwargs)


class S3ArtifactCache:
    """
    Maps content identifiers to converted PDFs in an S3 bucket.

    Attributes:
        bucket: Name of the bucket holding the artifacts
        key_prefix: Optional prefix prepended to every key
    """

    def __init__(self, client: Any, bucket: str, key_prefix: str = "") -> None:
        self._client = client
        self.bucket = bucket
        self.key_prefix = key_prefix

    @classmethod
    def from_settings(cls, settings: CacheSettings, client: Any = None) -> "S3ArtifactCache":
        if not settings.bucket_name:
            raise ValueError("A bucket name is required for the artifact cache")
        client = client or create_s3_client(settings.region, settings.endpoint_url)
        return cls(client, settings.bucket_name, settings.key_prefix)

    def key_for(self, identifier: str) -> str:
        return f"{self.key_prefix}{identifier}"

    def exists(self, identifier: str) -> bool:
        """
        Check whether an artifact is stored for the identifier.

        Only object metadata is fetched, never the body.

        Returns:
            True if the object exists, False if S3 reports it missing

        Raises:
            CacheError: For any other failure (permissions, network, throttling)
        """
        key = self.key_for(identifier)
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in NOT_FOUND_CODES:
                logger.debug(f"Cache miss for s3://{self.bucket}/{key}")
                return False
            logger.error(f"S3 head_object failed for {key}: {e}")
            raise CacheError(f"Could not look up s3://{self.bucket}/{key}") from e
        except BotoCoreError as e:
            logger.error(f"S3 head_object failed for {key}: {e}")
            raise CacheError(f"Could not look up s3://{self.bucket}/{key}") from e
        logger.debug(f"Cache hit for s3://{self.bucket}/{key}")
        return True

    def store(self, identifier: str, path: Path, content_type: str = PDF_CONTENT_TYPE) -> None:
        """
        Upload a converted file under the identifier.

        A single put_object call is used so the object either appears complete
        or not at all. Overwriting an existing key is harmless because the
        content is fully determined by the identifier.

        Args:
            identifier: Content identifier of the source document
            path: Path to the local file to upload
            content_type: MIME type recorded on the object

        Raises:
            CacheError: If the upload fails
        """
        key = self.key_for(identifier)
        size = path.stat().st_size
        logger.info(f"Uploading {path} ({size} bytes) to s3://{self.bucket}/{key}")
        try:
            with path.open("rb") as body:
                self._client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=body,
                    ContentType=content_type,
                    ContentLength=size,
                )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise CacheError(f"Could not store s3://{self.bucket}/{key}") from e
        logger.info(f"Upload successful: s3://{self.bucket}/{key}")

    def issue_access_link(self, identifier: str, ttl: int, filename: Optional[str] = None) -> str:
        """
        Generate a presigned URL for downloading an artifact.

        Args:
            identifier: Content identifier of the source document
            ttl: URL expiration time in seconds
            filename: Name the browser should give the download

        Returns:
            Presigned URL string

        Raises:
            CacheError: If the URL cannot be signed (e.g. no credentials)

        Note:
            Nothing is recorded about issued links; anyone holding the URL can
            download the file until it expires.
        """
        key = self.key_for(identifier)
        params = {"Bucket": self.bucket, "Key": key}
        if filename:
            params["ResponseContentDisposition"] = content_disposition(filename)
            params["ResponseContentType"] = PDF_CONTENT_TYPE
        try:
            url = self._client.generate_presigned_url("get_object", Params=params, ExpiresIn=ttl)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to generate presigned URL for {key}: {e}")
            raise CacheError(f"Could not sign a link for s3://{self.bucket}/{key}") from e
        logger.info(f"Generated presigned URL for {key} (expires in {ttl}s)")
        return url

"""
S3 Object Storage

Thin accessor over a boto3 S3 client used for durable cover storage.
Works with AWS S3 and S3-compatible stores (DigitalOcean Spaces, MinIO)
through settings.s3_endpoint_url.

Failures are soft: get_object returns None and put_object returns False,
and the cover chain moves on to its next source.
"""

import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from bookrec.config import Settings, get_settings
from bookrec.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


class S3ObjectStorage:
    """
    get_object / put_object over one bucket.

    Args:
        settings: Settings to read bucket and credentials from
        client: Pre-built boto3 client, mainly for tests
    """

    def __init__(self, settings: Optional[Settings] = None, client=None):
        settings = settings or get_settings()
        if not settings.s3_bucket:
            raise ConfigurationError("S3 storage requested without S3_BUCKET")
        self.bucket = settings.s3_bucket
        self.public_base_url = settings.s3_public_base_url
        self._client = client or boto3.client(
            "s3",
            region_name=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
        )

    def get_object(self, key: str) -> Optional[bytes]:
        """
        Fetch an object's bytes.

        Returns:
            Object content, or None when missing or on any storage error
        """
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _MISSING_KEY_CODES:
                logger.debug(f"S3 object not found: {key}")
            else:
                logger.warning(f"S3 get_object failed for {key}: {e}")
            return None
        except BotoCoreError as e:
            logger.warning(f"S3 get_object failed for {key}: {e}")
            return None

    def put_object(self, key: str, data: bytes, content_type: str = "image/jpeg") -> bool:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
            logger.debug(f"S3 object stored: {key} ({len(data)} bytes)")
            return True
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"S3 put_object failed for {key}: {e}")
            return False

    def public_url(self, key: str) -> str:
        """URL a client can load the object from (CDN when configured)."""
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        return f"s3://{self.bucket}/{key}"

    def list_keys(self, prefix: str = "") -> list[str]:
        """All object keys under prefix; empty on storage errors."""
        keys: list[str] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"S3 list_objects failed for prefix '{prefix}': {e}")
        return keys

"""
S3 compatible object storage (MinIO in deployment) for invoice images.

Images are never exposed through presigned URLs; the API proxies them
after checking the caller may see the invoice.
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator, Optional

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import ClientError

from mobifaktura.core.config import settings
from mobifaktura.core.exceptions import NotFoundError
from mobifaktura.logger_config import logger


@dataclass
class StoredObject:
    content: bytes
    content_type: str


class ObjectStorage:
    def __init__(
        self,
        bucket_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        client=None,
    ) -> None:
        self.bucket_name = bucket_name or settings.S3_BUCKET
        self.endpoint_url = endpoint_url or settings.S3_ENDPOINT
        self._s3_client = client

    @property
    def s3_client(self):
        """Get or create S3 client."""
        if self._s3_client is None:
            self._s3_client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=settings.S3_ACCESS_KEY,
                aws_secret_access_key=settings.S3_SECRET_KEY,
                region_name=settings.S3_REGION,
                config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
            )
        return self._s3_client

    def ensure_bucket(self) -> None:
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
        except ClientError:
            logger.info(f"Creating bucket {self.bucket_name}")
            self.s3_client.create_bucket(Bucket=self.bucket_name)

    def upload(self, key: str, content: bytes, content_type: str) -> str:
        self.s3_client.put_object(
            Bucket=self.bucket_name,
            Key=key,
            Body=content,
            ContentType=content_type,
        )
        logger.info(f"Stored object {key} ({len(content)} bytes)")
        return key

    def get(self, key: str) -> StoredObject:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code")
            if error_code in ("NoSuchKey", "404"):
                raise NotFoundError("Image not found")
            raise
        return StoredObject(
            content=response["Body"].read(),
            content_type=response.get("ContentType") or "application/octet-stream",
        )

    def delete(self, key: str) -> None:
        self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
        logger.info(f"Deleted object {key}")

    def list_keys(self, prefix: str = "") -> Iterator[str]:
        paginator = self.s3_client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
            for item in page.get("Contents", []):
                yield item["Key"]


@lru_cache
def get_storage() -> ObjectStorage:
    """FastAPI dependency; overridden in tests."""
    return ObjectStorage()

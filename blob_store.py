"""S3-compatible blob store for file attachments."""

import logging
from typing import Optional
from urllib.parse import quote, unquote, urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ConfigDict

from errors import BlobStoreError

logger = logging.getLogger(__name__)


class BlobSettings(BaseModel):
    """Connection settings for the attachment bucket."""
    model_config = ConfigDict(frozen=True)

    bucket: str
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    public_base_url: Optional[str] = None
    """Base URL the stored objects are publicly served from. Defaults to the virtual-hosted S3 URL."""
    prefix: str = ""


class S3BlobStore:
    """Blob store backed by one S3 bucket.

    put() returns the public URL of the stored object and delete() accepts
    that same URL, so documents only ever hold URLs.
    """

    def __init__(self, client, settings: BlobSettings):
        self._client = client
        self._settings = settings

    @classmethod
    def connect(cls, settings: BlobSettings) -> "S3BlobStore":
        client = boto3.client(
            "s3",
            aws_access_key_id=settings.access_key_id,
            aws_secret_access_key=settings.secret_access_key,
            region_name=settings.region,
            endpoint_url=settings.endpoint_url,
        )
        return cls(client, settings)

    @property
    def base_url(self) -> str:
        if self._settings.public_base_url:
            return self._settings.public_base_url.rstrip("/")
        if self._settings.endpoint_url:
            return f"{self._settings.endpoint_url.rstrip('/')}/{self._settings.bucket}"
        return f"https://{self._settings.bucket}.s3.{self._settings.region}.amazonaws.com"

    def put(self, path: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        key = self._resolve_key(path)
        try:
            self._client.put_object(
                Bucket=self._settings.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
                ACL="public-read",
            )
        except (ClientError, BotoCoreError) as e:
            raise BlobStoreError(f"Failed to upload file to {path}", cause=e) from e
        return f"{self.base_url}/{quote(key)}"

    def delete(self, url: str):
        key = self.key_for_url(url)
        if key is None:
            raise BlobStoreError(f"URL does not belong to this blob store: {url}")
        try:
            self._client.delete_object(Bucket=self._settings.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise BlobStoreError(f"Failed to delete file {url}", cause=e) from e

    def key_for_url(self, url: str) -> Optional[str]:
        base = self.base_url + "/"
        if not url.startswith(base):
            return None
        key = unquote(urlparse(url).path[len(urlparse(base).path):])
        return key or None

    def _resolve_key(self, path: str) -> str:
        prefix = self._settings.prefix
        if prefix and not path.startswith(prefix):
            return f"{prefix.rstrip('/')}/{path}"
        return path

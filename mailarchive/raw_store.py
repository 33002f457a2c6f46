"""S3 claim-check archive for raw EML bytes.

All boto3 calls are wrapped with ``asyncio.to_thread()`` to avoid blocking.
"""

from __future__ import annotations

import asyncio
import hashlib
import re

import boto3
import structlog

from .config import S3Config

logger = structlog.get_logger()


class RawMailStore:
    """Upload raw EML bytes before they are parsed.

    Keys are content-addressed (SHA-256 of the raw bytes), so fetching the
    same message twice overwrites one object instead of creating two.
    """

    def __init__(self, config: S3Config) -> None:
        self._config = config
        self._client = None  # type: ignore[assignment]

    @property
    def enabled(self) -> bool:
        return bool(self._config.bucket)

    async def start(self) -> None:
        """Create the boto3 S3 client."""
        kwargs: dict = {"region_name": self._config.region}
        if self._config.endpoint_url:
            kwargs["endpoint_url"] = self._config.endpoint_url
        self._client = await asyncio.to_thread(boto3.client, "s3", **kwargs)
        logger.info("raw_store_started", bucket=self._config.bucket)

    async def stop(self) -> None:
        """Clean up the boto3 client."""
        self._client = None
        logger.info("raw_store_stopped")

    async def upload_raw_eml(self, source: str, raw_bytes: bytes) -> str:
        """Upload raw EML bytes to S3.  Returns the ``s3://`` URI."""
        assert self._client is not None, "S3 client not started"
        digest = hashlib.sha256(raw_bytes).hexdigest()
        key = f"{self._config.prefix}/{_sanitize(source)}/{digest}.eml"
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self._config.bucket,
            Key=key,
            Body=raw_bytes,
            ContentType="message/rfc822",
        )
        uri = f"s3://{self._config.bucket}/{key}"
        logger.debug("raw_eml_uploaded", source=source, uri=uri, size=len(raw_bytes))
        return uri


def _sanitize(name: str) -> str:
    return re.sub(r"[^\w.\-]", "_", name)

"""
S3-compatible durable store with content-addressed versions.

Every origin fetch is written twice:
1. an immutable version object named ``<timestamp>_<sha256>.json``
2. the mutable ``latest.json`` pointer, overwritten with the same bytes

Works against AWS S3 or MinIO. Any failure here means "tier absent" to the
caller: it is logged and turned into None, never raised.
"""
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import ConfigError
from .core import CacheKey, ResourceType
from .keys import (
    format_version_timestamp,
    latest_object_key,
    parse_version_timestamp,
    version_object_key,
)

logger = logging.getLogger("cache.durable")

CONTENT_TYPE = "application/json"
SOURCE_TAG = "tolgee"
NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass
class DurableObject:
    """Body and metadata of a durable object."""
    payload: bytes
    created_at: Optional[datetime] = None
    sha256: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


def content_hash(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


def _is_not_found(error: ClientError) -> bool:
    code = error.response.get("Error", {}).get("Code", "")
    return str(code) in NOT_FOUND_CODES


def _created_at_from(response: dict) -> Optional[datetime]:
    """Prefer our created_utc metadata; fall back to LastModified."""
    metadata = response.get("Metadata") or {}
    created = parse_version_timestamp(metadata.get("created_utc", ""))
    if created is not None:
        return created
    last_modified = response.get("LastModified")
    if isinstance(last_modified, datetime):
        if last_modified.tzinfo is None:
            return last_modified.replace(tzinfo=timezone.utc)
        return last_modified
    return None


class DurableVersionedStore:
    """
    Versioned fallback tier on top of a shared boto3 S3 client.
    """

    def __init__(self, client, bucket: str):
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, settings) -> "DurableVersionedStore":
        """
        Build the store from configuration.

        Raises:
            ConfigError: If bucket, endpoint, or credentials are missing
        """
        required = {
            "S3_BUCKET": settings.s3_bucket,
            "S3_ENDPOINT": settings.s3_endpoint,
            "S3_ACCESS_KEY": settings.s3_access_key,
            "S3_SECRET_KEY": settings.s3_secret_key,
        }
        for name, value in required.items():
            if not value:
                raise ConfigError(f"{name} is required", tier="durable")

        endpoint = settings.s3_endpoint
        if "://" not in endpoint:
            endpoint = f"http://{endpoint}"

        try:
            client = boto3.session.Session().client(
                "s3",
                endpoint_url=endpoint,
                region_name=settings.s3_region,
                aws_access_key_id=settings.s3_access_key,
                aws_secret_access_key=settings.s3_secret_key,
                config=Config(
                    connect_timeout=settings.s3_timeout,
                    read_timeout=settings.s3_timeout,
                    retries={"max_attempts": 1},
                    s3={"addressing_style": "path" if settings.s3_force_path_style else "auto"},
                ),
            )
        except (BotoCoreError, ValueError) as e:
            raise ConfigError(f"cannot build S3 client: {e}", tier="durable") from e

        return cls(client, settings.s3_bucket)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def fetch_latest(self, key: CacheKey) -> Optional[DurableObject]:
        """Latest pointer body plus its created-at, or None."""
        object_key = latest_object_key(key)
        logger.info(f"[s3] GET latest key={object_key} bucket={self.bucket}")
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=object_key)
            body = response["Body"]
            try:
                payload = body.read()
            finally:
                body.close()
        except ClientError as e:
            if _is_not_found(e):
                logger.info(f"[s3] MISS latest key={object_key}")
            else:
                logger.warning(f"[s3] ERROR latest key={object_key} err={e}")
            return None
        except BotoCoreError as e:
            logger.warning(f"[s3] ERROR latest key={object_key} err={e}")
            return None

        metadata = response.get("Metadata") or {}
        logger.info(f"[s3] HIT latest key={object_key} bytes={len(payload)}")
        return DurableObject(
            payload=payload,
            created_at=_created_at_from(response),
            sha256=metadata.get("sha256"),
            metadata=metadata,
        )

    def get_latest(self, key: CacheKey) -> Optional[bytes]:
        """Latest pointer body, or None when absent or unreachable."""
        obj = self.fetch_latest(key)
        return obj.payload if obj is not None else None

    def get_version(self, object_key: str) -> Optional[bytes]:
        """Read one immutable version object by its full key."""
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=object_key)
            body = response["Body"]
            try:
                return body.read()
            finally:
                body.close()
        except ClientError as e:
            if not _is_not_found(e):
                logger.warning(f"[s3] ERROR version key={object_key} err={e}")
            return None
        except BotoCoreError as e:
            logger.warning(f"[s3] ERROR version key={object_key} err={e}")
            return None

    def head_latest_created_at(self, key: CacheKey) -> Optional[datetime]:
        """Created-at of the latest pointer without downloading its body."""
        object_key = latest_object_key(key)
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=object_key)
        except ClientError as e:
            if not _is_not_found(e):
                logger.warning(f"[s3] ERROR head key={object_key} err={e}")
            return None
        except BotoCoreError as e:
            logger.warning(f"[s3] ERROR head key={object_key} err={e}")
            return None
        return _created_at_from(response)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def put_version(self, key: CacheKey, payload: bytes, now: Optional[datetime] = None) -> Optional[str]:
        """
        Write an immutable version object, then overwrite the latest pointer.

        Returns:
            The version object key when both writes succeed, else None.
            A failed pointer write leaves the version object in place.
        """
        now = now or datetime.now(timezone.utc)
        sha = content_hash(payload)
        created = format_version_timestamp(now)
        version_key = version_object_key(key, now, sha)
        latest_key = latest_object_key(key)
        metadata = self._metadata(key, sha, created)

        if not self._put(version_key, payload, metadata):
            return None
        if not self._put(latest_key, payload, metadata):
            logger.warning(
                f"[s3] latest pointer not updated key={latest_key}; "
                f"newest version is {version_key}"
            )
            return None

        logger.info(f"[s3] write-back key={key} version={version_key} bytes={len(payload)}")
        return version_key

    def _metadata(self, key: CacheKey, sha: str, created: str) -> Dict[str, str]:
        metadata = {
            "app": key.app_id,
            "sha256": sha,
            "created_utc": created,
            "source": SOURCE_TAG,
        }
        if key.resource is ResourceType.LANGUAGES:
            metadata["endpoint"] = "languages"
        else:
            metadata["lang"] = f"{key.lang}_{key.mode.value}"
        return metadata

    def _put(self, object_key: str, payload: bytes, metadata: Dict[str, str]) -> bool:
        logger.debug(f"[s3] PUT key={object_key} bucket={self.bucket} bytes={len(payload)}")
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=object_key,
                Body=payload,
                ContentType=CONTENT_TYPE,
                Metadata=metadata,
                ACL="private",
            )
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"[s3] PUT error key={object_key} err={e}")
            return False
        return True

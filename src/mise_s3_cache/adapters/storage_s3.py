"""S3 storage adapter."""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..core.errors import NotFoundError, StorageUnavailableError
from ..ports.storage import ObjectHead, ObjectInfo, StoragePort

if TYPE_CHECKING:
    from mypy_boto3_s3.client import S3Client
else:
    S3Client = Any

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
MAX_LIST_ITERATIONS = 10000
DELETE_BATCH_SIZE = 1000


@dataclass
class ProbeResult:
    """Outcome of a read/write permission probe."""

    readable: bool
    writable: bool
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.readable and self.writable


def _is_not_found(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code", "")) in _NOT_FOUND_CODES


class S3StorageAdapter(StoragePort):
    """S3 implementation of StoragePort bound to a single bucket."""

    def __init__(
        self,
        bucket: str,
        client: "S3Client | None" = None,
        endpoint_url: str | None = None,
        region: str | None = None,
        profile: str | None = None,
        timeout: float = 30.0,
    ):
        """Initialize with bucket and S3 client.

        Args:
            bucket: Bucket holding the cache
            client: Pre-built boto3 S3 client (mainly for tests)
            endpoint_url: Optional S3 endpoint URL override (for MinIO, etc.)
            region: AWS region
            profile: Named AWS profile
            timeout: Connect and read timeout per call, in seconds
        """
        self.bucket = bucket
        if client is None:
            session = boto3.session.Session(profile_name=profile)
            client_config = Config(
                connect_timeout=timeout,
                read_timeout=timeout,
                # Retry policy lives in the cache service
                retries={"max_attempts": 1, "mode": "standard"},
            )
            client_params: dict[str, Any] = {"config": client_config}
            if endpoint_url:
                client_params["endpoint_url"] = endpoint_url
            if region:
                client_params["region_name"] = region
            self.client = session.client("s3", **client_params)
        else:
            self.client = client

    def head(self, key: str) -> ObjectHead | None:
        """Get object metadata."""
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise StorageUnavailableError(f"Failed to head {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageUnavailableError(f"Failed to head {key}: {e}") from e

        return ObjectHead(
            key=key,
            size=response["ContentLength"],
            etag=response.get("ETag", "").strip('"'),
            last_modified=response["LastModified"],
            metadata=response.get("Metadata", {}),
        )

    def exists(self, key: str) -> bool:
        return self.head(key) is not None

    def get(self, key: str) -> bytes:
        """Read an object."""
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if _is_not_found(e):
                raise NotFoundError(f"Object not found: {key}") from e
            raise StorageUnavailableError(f"Failed to get {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageUnavailableError(f"Failed to get {key}: {e}") from e

    def put(
        self,
        key: str,
        body: bytes,
        metadata: dict[str, str] | None = None,
        content_type: str | None = None,
    ) -> None:
        """Write an object."""
        params: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": body,
            "ContentType": content_type or "application/octet-stream",
        }
        if metadata:
            params["Metadata"] = metadata
        try:
            self.client.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailableError(f"Failed to put {key}: {e}") from e

    def list(self, prefix: str) -> Iterator[ObjectInfo]:
        """List objects under prefix, following continuation tokens."""
        token: str | None = None
        for _ in range(MAX_LIST_ITERATIONS):
            params: dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix}
            if token:
                params["ContinuationToken"] = token
            try:
                response = self.client.list_objects_v2(**params)
            except (ClientError, BotoCoreError) as e:
                raise StorageUnavailableError(f"Failed to list {prefix}: {e}") from e

            for obj in response.get("Contents", []):
                yield ObjectInfo(
                    key=obj["Key"],
                    size=obj.get("Size", 0),
                    last_modified=obj["LastModified"],
                )

            if not response.get("IsTruncated"):
                return
            token = response.get("NextContinuationToken")
            # Truncated listing without a token means broken pagination
            if not token:
                return

    def delete(self, key: str) -> None:
        """Delete an object."""
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailableError(f"Failed to delete {key}: {e}") from e

    def delete_older_than(self, prefix: str, cutoff: datetime) -> list[str]:
        """Delete objects under prefix last modified before cutoff."""
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=UTC)
        expired = [obj.key for obj in self.list(prefix) if obj.last_modified < cutoff]

        deleted: list[str] = []
        for start in range(0, len(expired), DELETE_BATCH_SIZE):
            batch = expired[start : start + DELETE_BATCH_SIZE]
            try:
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": False},
                )
            except (ClientError, BotoCoreError) as e:
                raise StorageUnavailableError(f"Failed to delete under {prefix}: {e}") from e
            deleted.extend(item["Key"] for item in response.get("Deleted", []))
        return deleted

    def probe(self, prefix: str) -> ProbeResult:
        """Check read and write access by listing and writing a probe object."""
        try:
            self.client.list_objects_v2(Bucket=self.bucket, Prefix=prefix, MaxKeys=1)
        except (ClientError, BotoCoreError) as e:
            return ProbeResult(False, False, f"Cannot read bucket {self.bucket}: {e}")

        probe_key = f"{prefix.rstrip('/')}/.probe-{uuid.uuid4().hex}"
        try:
            self.client.put_object(Bucket=self.bucket, Key=probe_key, Body=b"test")
        except (ClientError, BotoCoreError) as e:
            return ProbeResult(True, False, f"Cannot write to bucket {self.bucket}: {e}")

        try:
            self.client.delete_object(Bucket=self.bucket, Key=probe_key)
        except (ClientError, BotoCoreError) as e:
            return ProbeResult(True, True, f"Probe object {probe_key} left behind: {e}")
        return ProbeResult(True, True, "Read and write access OK")

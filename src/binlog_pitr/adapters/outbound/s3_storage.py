"""S3 storage backend with create-only conditional writes.

Supports AWS S3 and S3-compatible stores (MinIO, Ceph). Segment keys are
written with ``If-None-Match: *`` so that a second collector, or a retry
racing a slow first attempt, can never replace an existing segment.

Error mapping:
    NoSuchKey / 404                        -> NotFoundError
    PreconditionFailed / 412, 409          -> ConflictError
    AccessDenied / InvalidAccessKeyId /
    SignatureDoesNotMatch / NoSuchBucket /
    403                                    -> FatalError
    everything else (throttling, 5xx,
    connection errors)                     -> TransientIOError
"""

from __future__ import annotations

from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from binlog_pitr.domain.errors import (
    ConflictError,
    FatalError,
    NotFoundError,
    PitrError,
    TransientIOError,
)
from binlog_pitr.infrastructure.config import S3Config
from binlog_pitr.infrastructure.logging import get_logger


logger = get_logger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
_CONFLICT_CODES = {"PreconditionFailed", "ConditionalRequestConflict", "412", "409"}
_FATAL_CODES = {
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "NoSuchBucket",
    "AllAccessDisabled",
    "403",
}


def _translate(e: ClientError, operation: str, key: str | None) -> PitrError:
    error = e.response.get("Error", {})
    code = str(error.get("Code", ""))
    status = str(e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", ""))
    message = f"s3 {operation} failed: {code or status}"
    # Codes first: NoSuchBucket also comes back as a 404.
    if code in _FATAL_CODES:
        return FatalError(message, key=key)
    if code in _NOT_FOUND_CODES:
        return NotFoundError(message, key=key)
    if code in _CONFLICT_CODES:
        return ConflictError(message, key=key)
    if status == "403":
        return FatalError(message, key=key)
    if status == "404":
        return NotFoundError(message, key=key)
    if status in ("409", "412"):
        return ConflictError(message, key=key)
    return TransientIOError(message, key=key)


class S3StorageBackend:
    """S3 implementation of the StorageBackend protocol.

    Provides:
    - Create-only puts via conditional writes
    - Paginated, complete listings
    - Ranged reads for header-only access
    - botocore adaptive retries for throttling
    """

    def __init__(self, bucket: str, client: Any | None = None, **client_kwargs: Any) -> None:
        """
        Initialize S3 backend.

        Args:
            bucket: Bucket holding the segment streams
            client: Pre-built boto3 S3 client (tests inject a stubbed one)
            **client_kwargs: Passed to boto3.client when no client is given
        """
        self._bucket = bucket
        self._s3 = client if client is not None else boto3.client("s3", **client_kwargs)

    @classmethod
    def from_config(cls, config: S3Config) -> S3StorageBackend:
        boto_config = Config(
            signature_version="s3v4",
            s3={"addressing_style": "path" if config.force_path_style else "virtual"},
            retries={"max_attempts": config.max_attempts, "mode": "adaptive"},
        )
        backend = cls(
            bucket=config.bucket,
            endpoint_url=config.endpoint_url,
            region_name=config.region,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            config=boto_config,
        )
        logger.info("s3_backend_initialized", endpoint=config.endpoint_url, bucket=config.bucket)
        return backend

    @property
    def bucket(self) -> str:
        return self._bucket

    def put(self, key: str, data: bytes) -> None:
        try:
            self._s3.put_object(Bucket=self._bucket, Key=key, Body=data, IfNoneMatch="*")
        except ClientError as e:
            raise _translate(e, "put", key) from e
        except BotoCoreError as e:
            raise TransientIOError(f"s3 put failed: {e}", key=key) from e

    def list(self, prefix: str) -> list[str]:
        keys: list[str] = []
        try:
            paginator = self._s3.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    keys.append(obj["Key"])
        except ClientError as e:
            raise _translate(e, "list", prefix) from e
        except BotoCoreError as e:
            raise TransientIOError(f"s3 list failed: {e}", key=prefix) from e
        return sorted(keys)

    def get(self, key: str, length: int | None = None) -> bytes:
        if length == 0:
            return b""
        kwargs: dict[str, Any] = {"Bucket": self._bucket, "Key": key}
        if length is not None:
            kwargs["Range"] = f"bytes=0-{length - 1}"
        try:
            response = self._s3.get_object(**kwargs)
            return response["Body"].read()
        except ClientError as e:
            # An empty object answers a ranged read with 416
            if e.response.get("Error", {}).get("Code") == "InvalidRange":
                return b""
            raise _translate(e, "get", key) from e
        except BotoCoreError as e:
            raise TransientIOError(f"s3 get failed: {e}", key=key) from e

    def delete(self, key: str) -> None:
        try:
            self._s3.delete_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            error = _translate(e, "delete", key)
            if not isinstance(error, NotFoundError):
                raise error from e
        except BotoCoreError as e:
            raise TransientIOError(f"s3 delete failed: {e}", key=key) from e

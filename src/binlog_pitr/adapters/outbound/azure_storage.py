"""Azure Blob storage backend.

Blobs are uploaded with ``overwrite=False`` so that an existing segment key
is rejected by the service rather than replaced.

Error mapping:
    ResourceNotFoundError                 -> NotFoundError
    ResourceExistsError                   -> ConflictError
    ClientAuthenticationError             -> FatalError
    other HttpResponseError (403)         -> FatalError
    other HttpResponseError /
    ServiceRequestError / ServiceResponseError -> TransientIOError
"""

from __future__ import annotations

from typing import Any

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
)
from azure.storage.blob import BlobServiceClient

from binlog_pitr.domain.errors import (
    ConflictError,
    FatalError,
    NotFoundError,
    PitrError,
    TransientIOError,
)
from binlog_pitr.infrastructure.config import AzureConfig
from binlog_pitr.infrastructure.logging import get_logger


logger = get_logger(__name__)


def _translate(e: AzureError, operation: str, key: str | None) -> PitrError:
    message = f"azure {operation} failed: {type(e).__name__}"
    if isinstance(e, ResourceNotFoundError):
        return NotFoundError(message, key=key)
    if isinstance(e, ResourceExistsError):
        return ConflictError(message, key=key)
    if isinstance(e, ClientAuthenticationError):
        return FatalError(message, key=key)
    if isinstance(e, HttpResponseError) and e.status_code == 403:
        return FatalError(message, key=key)
    return TransientIOError(message, key=key)


class AzureBlobStorageBackend:
    """Azure Blob implementation of the StorageBackend protocol."""

    def __init__(self, container_client: Any) -> None:
        """
        Initialize Azure backend.

        Args:
            container_client: azure.storage.blob.ContainerClient for the
                container holding the segment streams
        """
        self._container = container_client

    @classmethod
    def from_config(cls, config: AzureConfig) -> AzureBlobStorageBackend:
        if config.connection_string:
            service = BlobServiceClient.from_connection_string(config.connection_string)
        else:
            if not config.account_name:
                raise FatalError("azure storage requires account_name or connection_string")
            endpoint = config.endpoint or f"https://{config.account_name}.blob.core.windows.net"
            credential = (
                {"account_name": config.account_name, "account_key": config.account_key}
                if config.account_key
                else None
            )
            service = BlobServiceClient(account_url=endpoint, credential=credential)
        logger.info("azure_backend_initialized", container=config.container)
        return cls(service.get_container_client(config.container))

    def put(self, key: str, data: bytes) -> None:
        try:
            self._container.upload_blob(name=key, data=data, overwrite=False)
        except AzureError as e:
            raise _translate(e, "put", key) from e

    def list(self, prefix: str) -> list[str]:
        try:
            return sorted(blob.name for blob in self._container.list_blobs(name_starts_with=prefix))
        except AzureError as e:
            raise _translate(e, "list", prefix) from e

    def get(self, key: str, length: int | None = None) -> bytes:
        if length == 0:
            return b""
        try:
            if length is None:
                downloader = self._container.download_blob(key)
            else:
                downloader = self._container.download_blob(key, offset=0, length=length)
            return downloader.readall()
        except AzureError as e:
            raise _translate(e, "get", key) from e

    def delete(self, key: str) -> None:
        try:
            self._container.delete_blob(key)
        except ResourceNotFoundError:
            return
        except AzureError as e:
            raise _translate(e, "delete", key) from e

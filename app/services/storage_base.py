"""
MediaHost Backend — Abstract Object Storage Interface
=======================================================

What:  Abstract base class for the durable object store that receives every
       finished upload.
Why:   The upload pipeline only needs "put object under key, return URL" and
       "delete object by key". Keeping that contract abstract lets tests swap
       in an in-memory store and lets deployments point at S3, R2 or MinIO.
Who:   Implemented by S3ObjectStorage; consumed by UploadService and ImageService.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union


class ObjectStorage(ABC):
    """
    Contract:
        - put_file()/put_bytes() return a URL the client can fetch the object from
        - Implementations retry transient failures themselves
        - Every implementation-specific error is wrapped in StorageError
    """

    @abstractmethod
    async def put_file(
        self, local_path: Union[str, Path], key: str, content_type: str
    ) -> str:
        """
        Upload a local file under `key`.

        Returns:
            Durable URL of the stored object.

        Raises:
            StorageError: The store rejected the write after all retries.
        """
        ...

    @abstractmethod
    async def put_bytes(self, content: bytes, key: str, content_type: str) -> str:
        """Upload an in-memory payload under `key`. Same contract as put_file()."""
        ...

    @abstractmethod
    async def delete_object(self, key: str) -> None:
        """
        Delete the object stored under `key`.

        Raises:
            StorageError: The store rejected the delete after all retries.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True when the bucket is reachable with the configured credentials."""
        ...

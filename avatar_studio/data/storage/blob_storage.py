"""
Blob storage boundary and a filesystem implementation.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union
from urllib.parse import quote

from ...utils.logging import get_component_logger


class BlobNotFoundError(LookupError):
    """Raised by ``BlobStorage.delete``/``get`` when the object does not exist"""
    pass


class BlobStorage(ABC):
    """Object storage service: put, public URL, delete."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key`` and return an opaque reference"""

    @abstractmethod
    def public_url(self, ref: str) -> str:
        """Publicly fetchable URL for a reference; no side effects"""

    @abstractmethod
    async def delete(self, ref: str) -> None:
        """Delete the object; raises BlobNotFoundError when it is missing"""

    @abstractmethod
    async def get(self, ref: str) -> bytes:
        """Read the object back; raises BlobNotFoundError when it is missing"""


class LocalBlobStorage(BlobStorage):
    """
    Blob storage on the local filesystem.

    References are the storage keys themselves (``owner/namespace/file``),
    resolved below ``root_dir``. Public URLs are ``public_base_url`` joined
    with the key.
    """

    def __init__(self, root_dir: Union[str, Path], public_base_url: str):
        self.root_dir = Path(root_dir).resolve()
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip('/')
        self.logger = get_component_logger("BlobStore")

    def _path_for(self, ref: str) -> Path:
        path = (self.root_dir / ref).resolve()
        if path != self.root_dir and self.root_dir not in path.parents:
            raise ValueError(f"Storage reference escapes the storage root: {ref}")
        return path

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path_for(key)

        def write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(write)
        self.logger.debug(f"Stored {len(data)} bytes ({content_type}) at {key}")
        return key

    def public_url(self, ref: str) -> str:
        return f"{self.public_base_url}/{quote(ref)}"

    async def delete(self, ref: str) -> None:
        path = self._path_for(ref)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError as e:
            raise BlobNotFoundError(ref) from e
        self.logger.debug(f"Deleted {ref}")

    async def get(self, ref: str) -> bytes:
        path = self._path_for(ref)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise BlobNotFoundError(ref) from e

"""
Attachment store.

Moves file bytes between clients and blob storage. It owns the upload rules
(content type and size per purpose), the storage key layout, public URL
resolution and idempotent removal.
"""

import secrets
import time
from typing import Optional

from .blob_storage import BlobStorage, BlobNotFoundError
from ..models.attachments import UploadedFile, StoredObject
from ...config.settings import Settings, UploadRule
from ...models.wizard_types import UploadPurpose
from ...utils.errors import NotAvailable, PersistenceFailure
from ...utils.logging import get_component_logger
from ...utils.validation import validate_upload


class AttachmentStore:
    """
    Upload, resolve and remove stored objects.

    Storage keys have the form
    ``{owner_id}/{profile_id or purpose namespace}/{timestamp}-{random}{ext}``
    so that repeated uploads of a same-named file never collide.
    """

    def __init__(self, settings: Settings, blob_storage: BlobStorage):
        """
        Initialize the attachment store.

        Args:
            settings: Application settings with upload rules
            blob_storage: Backing object storage
        """
        self.settings = settings
        self.blob_storage = blob_storage
        self.logger = get_component_logger("Attachments")

    def rule_for(self, purpose: UploadPurpose) -> UploadRule:
        return getattr(self.settings.uploads, purpose.value)

    def check(self, upload: UploadedFile, purpose: UploadPurpose = UploadPurpose.KNOWLEDGE):
        """
        Validate a file against the rule for ``purpose`` without storing it.

        Raises:
            UploadRejected: when the file does not satisfy the rule
        """
        validate_upload(upload, self.rule_for(purpose), purpose)

    def build_key(self, upload: UploadedFile, owner_id: str, profile_id: Optional[str], purpose: UploadPurpose) -> str:
        namespace = profile_id or purpose.namespace
        timestamp = int(time.time() * 1000)
        suffix = secrets.token_hex(5)
        return f"{owner_id or 'anonymous'}/{namespace}/{timestamp}-{suffix}{upload.extension}"

    async def upload(
        self,
        upload: UploadedFile,
        owner_id: str,
        profile_id: Optional[str] = None,
        purpose: UploadPurpose = UploadPurpose.KNOWLEDGE
    ) -> StoredObject:
        """
        Validate and store a file.

        Args:
            upload: File to store
            owner_id: Authoring user id
            profile_id: Profile the file belongs to, if it exists yet
            purpose: Which upload rule and namespace apply

        Returns:
            StoredObject with the opaque reference and its public URL

        Raises:
            UploadRejected: invalid file, nothing was stored
            PersistenceFailure: the storage service failed
        """
        self.check(upload, purpose)
        key = self.build_key(upload, owner_id, profile_id, purpose)

        try:
            ref = await self.blob_storage.put(key, upload.data, upload.content_type)
        except (OSError, ValueError) as e:
            self.logger.error(f"Upload of '{upload.filename}' failed: {e}")
            raise PersistenceFailure(f"Failed to store '{upload.filename}': {e}", operation="upload") from e

        self.logger.info(f"Stored '{upload.filename}' ({upload.size} bytes) as {key}")
        return StoredObject(storage_ref=ref, public_url=self.resolve_url(ref), key=key)

    def resolve_url(self, storage_ref: str) -> str:
        """Return a fetchable URL for a stored object."""
        return self.blob_storage.public_url(storage_ref)

    async def remove(self, storage_ref: str) -> bool:
        """
        Delete a stored object.

        Returns:
            True if an object was deleted, False if it was already gone

        Raises:
            PersistenceFailure: the storage service failed
        """
        try:
            await self.blob_storage.delete(storage_ref)
        except BlobNotFoundError:
            self.logger.info(f"Object {storage_ref} already missing, nothing to remove")
            return False
        except (OSError, ValueError) as e:
            self.logger.error(f"Removing {storage_ref} failed: {e}")
            raise PersistenceFailure(f"Failed to remove stored object: {e}", operation="remove") from e

        self.logger.info(f"Removed {storage_ref}")
        return True

    async def read(self, storage_ref: str) -> bytes:
        """Read a stored object's bytes (used by the CLI download)."""
        try:
            return await self.blob_storage.get(storage_ref)
        except BlobNotFoundError as e:
            raise NotAvailable(f"Stored object {storage_ref} is missing") from e

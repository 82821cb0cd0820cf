"""
Storage collaborators: profile repository, knowledge metadata table, blob
storage and the attachment store built on it.
"""

from .blob_storage import BlobStorage, LocalBlobStorage, BlobNotFoundError
from .attachment_store import AttachmentStore
from .knowledge_table import KnowledgeMetadataTable, JsonKnowledgeTable
from .profile_repository import ProfileRepository, JsonProfileRepository

__all__ = [
    "BlobStorage",
    "LocalBlobStorage",
    "BlobNotFoundError",
    "AttachmentStore",
    "KnowledgeMetadataTable",
    "JsonKnowledgeTable",
    "ProfileRepository",
    "JsonProfileRepository",
]

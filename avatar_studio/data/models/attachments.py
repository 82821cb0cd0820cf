"""
Knowledge document and upload data models.

A knowledge document is seen in two shapes: the metadata row persisted for a
profile (``KnowledgeRow``) and the ledger's view entry
(``KnowledgeDocument``), which can also describe a file that only exists in
the current authoring session.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import PurePosixPath
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from .avatar_profile import utc_now
from ...models.wizard_types import Provenance


def new_id() -> str:
    return uuid.uuid4().hex


def format_file_size(size_bytes: int) -> str:
    """Human readable file size, e.g. ``1.5 MB``."""
    if size_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size_bytes)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


@dataclass
class UploadedFile:
    """A file handed to the system by a client, bytes included."""
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return PurePosixPath(self.filename).suffix.lower()


@dataclass
class StoredObject:
    """Result of a successful blob upload."""
    storage_ref: str
    public_url: str
    key: str


class KnowledgeRow(BaseModel):
    """Metadata row describing one stored knowledge document."""

    id: str = Field(default_factory=new_id)
    profile_id: str
    owner_id: str = ""
    display_name: str
    storage_key: str
    size_bytes: int = Field(ge=0)
    content_type: str = "application/pdf"
    linked: bool = True
    uploaded_at: datetime = Field(default_factory=utc_now)


class KnowledgeDocument(BaseModel):
    """
    One entry of the knowledge ledger's view.

    ``profile`` documents point at a stored object through ``storage_ref``.
    ``draft-local`` documents only carry their bytes in memory for the
    lifetime of the authoring session.
    """

    id: str = Field(default_factory=new_id)
    display_name: str
    size_bytes: int = Field(ge=0)
    content_type: str = "application/pdf"
    uploaded_at: datetime = Field(default_factory=utc_now)
    provenance: Provenance
    linked: bool = False
    storage_ref: Optional[str] = None
    profile_id: Optional[str] = None
    content: Optional[bytes] = Field(default=None, exclude=True, repr=False)

    @model_validator(mode='after')
    def storage_ref_matches_provenance(self):
        if self.provenance == Provenance.PROFILE and not self.storage_ref:
            raise ValueError("profile documents require a storage_ref")
        if self.provenance == Provenance.DRAFT_LOCAL and self.storage_ref:
            raise ValueError("draft-local documents cannot carry a storage_ref")
        return self

    @property
    def has_content(self) -> bool:
        return self.content is not None

    @property
    def size_label(self) -> str:
        return format_file_size(self.size_bytes)

    @classmethod
    def from_row(cls, row: KnowledgeRow) -> "KnowledgeDocument":
        return cls(
            id=row.id,
            display_name=row.display_name,
            size_bytes=row.size_bytes,
            content_type=row.content_type,
            uploaded_at=row.uploaded_at,
            provenance=Provenance.PROFILE,
            linked=row.linked,
            storage_ref=row.storage_key,
            profile_id=row.profile_id,
        )

    @classmethod
    def from_upload(cls, upload: UploadedFile) -> "KnowledgeDocument":
        """Build a draft-local document that keeps the uploaded bytes in memory."""
        return cls(
            display_name=upload.filename,
            size_bytes=upload.size,
            content_type=upload.content_type,
            provenance=Provenance.DRAFT_LOCAL,
            linked=False,
            content=upload.data,
        )

    def to_upload(self) -> UploadedFile:
        """Return the in-memory payload as an UploadedFile for promotion."""
        if self.content is None:
            raise ValueError(f"Document '{self.display_name}' has no in-memory content")
        return UploadedFile(filename=self.display_name, content_type=self.content_type, data=self.content)

"""
Knowledge ledger: the set of knowledge documents attached to one profile.

The ledger reconciles two kinds of documents:

- ``profile`` documents, stored in blob storage and described by a row in
  the knowledge metadata table
- ``draft-local`` documents, uploaded while the profile has no id yet and
  kept in memory until the profile is finished

Its view merges both, profile documents first. A draft whose display name is
already used by a profile document is hidden behind it.
"""

from typing import List, Optional, Set, Tuple, Union

from ..data.models.attachments import KnowledgeDocument, KnowledgeRow, UploadedFile
from ..data.storage.attachment_store import AttachmentStore
from ..data.storage.knowledge_table import KnowledgeMetadataTable
from ..models.wizard_types import Provenance, UploadPurpose
from ..utils.errors import NotAvailable, PersistenceFailure
from ..utils.logging import get_component_logger


def merge_documents(
    profile_documents: List[KnowledgeDocument],
    draft_documents: List[KnowledgeDocument]
) -> List[KnowledgeDocument]:
    """
    Merge profile and draft documents into one deduplicated view

    Profile documents are authoritative and always kept, even when two share
    a name. Drafts are appended unless their display name is already taken by
    a profile document.
    """
    merged = list(profile_documents)
    taken = {document.display_name for document in profile_documents}
    for draft in draft_documents:
        if draft.display_name not in taken:
            merged.append(draft)
    return merged


class TrainingLocks:
    """
    Profiles whose avatar is being trained

    Shared by every ledger of a process so that the profile API and wizard
    edit sessions refuse knowledge edits alike.
    """

    def __init__(self):
        self._profiles: Set[str] = set()
        self.logger = get_component_logger("TrainingLocks")

    def start(self, profile_id: str):
        self._profiles.add(profile_id)
        self.logger.info(f"Training started for {profile_id}")

    def stop(self, profile_id: str):
        self._profiles.discard(profile_id)
        self.logger.info(f"Training stopped for {profile_id}")

    def is_locked(self, profile_id: Optional[str]) -> bool:
        return profile_id is not None and profile_id in self._profiles

    def __contains__(self, profile_id) -> bool:
        return self.is_locked(profile_id)


class KnowledgeLedger:
    """Upload, link, unlink, delete and download knowledge documents of a profile."""

    def __init__(
        self,
        attachment_store: AttachmentStore,
        table: KnowledgeMetadataTable,
        owner_id: str = "",
        profile_id: Optional[str] = None,
        origin: Optional[str] = None,
        training_locks: Optional[TrainingLocks] = None
    ):
        """
        Initialize the ledger

        Args:
            attachment_store: Where document bytes are stored
            table: Knowledge metadata table
            owner_id: Authoring user id
            profile_id: Profile the ledger belongs to; None while unsaved
            origin: Session id stamped on the ledger's metadata writes
            training_locks: Shared registry of profiles currently training
        """
        self.attachment_store = attachment_store
        self.table = table
        self.owner_id = owner_id
        self.origin = origin
        self.profile_id = profile_id
        self.training_locks = training_locks
        self._training_flag = False

        self._profile_documents: List[KnowledgeDocument] = []
        self._drafts: List[KnowledgeDocument] = []
        self.logger = get_component_logger("Ledger", profile_id or "unsaved")

    def bind(self, profile_id: str):
        """Attach the ledger to a persisted profile. Existing drafts stay draft-local."""
        if self.profile_id == profile_id:
            return
        self.profile_id = profile_id
        self.logger = get_component_logger("Ledger", profile_id)
        self.logger.debug(f"Bound with {len(self._drafts)} draft documents pending")

    async def refresh(self) -> List[KnowledgeDocument]:
        """Re-read the profile documents from the metadata table"""
        if self.profile_id:
            rows = await self.table.query_by_profile(self.profile_id)
            self._profile_documents = [KnowledgeDocument.from_row(row) for row in rows]
            self._discard_shadowed_drafts()
            self.logger.debug(f"Refreshed {len(rows)} documents")
        return self.documents()

    def documents(self) -> List[KnowledgeDocument]:
        return merge_documents(self._profile_documents, self._drafts)

    @property
    def drafts(self) -> List[KnowledgeDocument]:
        return list(self._drafts)

    @property
    def total_count(self) -> int:
        return len(self.documents())

    @property
    def linked_count(self) -> int:
        return sum(1 for document in self.documents() if document.linked)

    def signature(self) -> Tuple[Tuple[str, bool], ...]:
        """Comparable summary of the view, used for dirtiness checks"""
        return tuple((document.id, document.linked) for document in self.documents())

    def find(self, document_id: str) -> KnowledgeDocument:
        for document in self.documents():
            if document.id == document_id:
                return document
        raise NotAvailable(f"Knowledge document '{document_id}' not found")

    @property
    def training_in_progress(self) -> bool:
        if self._training_flag:
            return True
        return self.training_locks is not None and self.training_locks.is_locked(self.profile_id)

    @training_in_progress.setter
    def training_in_progress(self, value: bool):
        self._training_flag = bool(value)

    def _ensure_editable(self, action: str):
        if self.training_in_progress:
            raise NotAvailable(f"Cannot {action} knowledge documents while training is in progress")

    def _replace(self, document: KnowledgeDocument):
        if document.provenance == Provenance.PROFILE:
            documents = self._profile_documents
        else:
            documents = self._drafts
        for index, existing in enumerate(documents):
            if existing.id == document.id:
                documents[index] = document
                break
        else:
            documents.append(document)
        if document.provenance == Provenance.PROFILE:
            self._discard_shadowed_drafts()

    def _discard_shadowed_drafts(self):
        """Drop drafts hidden behind a profile document of the same name"""
        taken = {document.display_name for document in self._profile_documents}
        shadowed = [draft for draft in self._drafts if draft.display_name in taken]
        if not shadowed:
            return
        self._drafts = [draft for draft in self._drafts if draft.display_name not in taken]
        for draft in shadowed:
            self.logger.info(f"Discarded draft '{draft.display_name}', already stored under the profile")

    async def upload(self, upload: UploadedFile) -> KnowledgeDocument:
        """
        Add a document to the ledger

        With a profile id the file is stored and a linked metadata row is
        inserted. Without one the file is validated and kept in memory as an
        unlinked draft.

        Raises:
            UploadRejected: the file is not an acceptable PDF
            PersistenceFailure: storage or metadata write failed
            NotAvailable: training is in progress
        """
        self._ensure_editable("upload")

        if not self.profile_id:
            self.attachment_store.check(upload, UploadPurpose.KNOWLEDGE)
            document = KnowledgeDocument.from_upload(upload)
            self._drafts.append(document)
            self.logger.info(f"Kept '{upload.filename}' as a draft ({document.size_label})")
            return document

        return await self._store(upload, self.profile_id, linked=True)

    async def _store(self, upload: UploadedFile, profile_id: str, linked: bool) -> KnowledgeDocument:
        stored = await self.attachment_store.upload(
            upload, self.owner_id, profile_id, UploadPurpose.KNOWLEDGE
        )
        row = KnowledgeRow(
            profile_id=profile_id,
            owner_id=self.owner_id,
            display_name=upload.filename,
            storage_key=stored.storage_ref,
            size_bytes=upload.size,
            content_type=upload.content_type,
            linked=linked
        )

        try:
            await self.table.insert(row, origin=self.origin)
        except Exception as e:
            self.logger.error(f"Metadata insert for '{upload.filename}' failed, removing stored object")
            try:
                await self.attachment_store.remove(stored.storage_ref)
            except PersistenceFailure as cleanup_error:
                self.logger.warning(f"Orphaned object {stored.storage_ref} left behind: {cleanup_error}")
            raise PersistenceFailure(
                f"Failed to record '{upload.filename}': {e}", operation="upload"
            ) from e

        document = KnowledgeDocument.from_row(row)
        self._replace(document)
        self.logger.info(f"Uploaded '{upload.filename}' ({document.size_label})")
        return document

    async def toggle_link(self, document_id: str) -> KnowledgeDocument:
        """
        Flip whether a document is used for training

        Unlinking never deletes anything: the document stays stored until it
        is deleted explicitly.
        """
        self._ensure_editable("change")
        document = self.find(document_id)
        linked = not document.linked

        if document.provenance == Provenance.PROFILE:
            row = await self.table.update(document.id, origin=self.origin, linked=linked)
            updated = KnowledgeDocument.from_row(row)
            if not linked:
                self.logger.warning(
                    f"Unlinked '{document.display_name}'; it stays stored until deleted explicitly"
                )
        else:
            updated = document.model_copy(update={"linked": linked})

        self._replace(updated)
        return updated

    async def delete(self, document_id: str):
        """
        Remove a document

        Profile documents lose their stored object first and their metadata
        row second. When removing the object fails the row is kept and the
        error is raised.
        """
        self._ensure_editable("delete")
        document = self.find(document_id)

        if document.provenance == Provenance.DRAFT_LOCAL:
            self._drafts = [draft for draft in self._drafts if draft.id != document.id]
            self.logger.info(f"Discarded draft '{document.display_name}'")
            return

        await self.attachment_store.remove(document.storage_ref)
        await self.table.delete(document.id, origin=self.origin)
        self._profile_documents = [
            existing for existing in self._profile_documents if existing.id != document.id
        ]
        self.logger.info(f"Deleted '{document.display_name}'")

    def download(self, document_id: str) -> Union[str, bytes]:
        """
        Fetch a document

        Returns:
            The public URL of a profile document, or the bytes of a draft

        Raises:
            NotAvailable: the document has neither
        """
        document = self.find(document_id)
        if document.provenance == Provenance.PROFILE and document.storage_ref:
            return self.attachment_store.resolve_url(document.storage_ref)
        if document.has_content:
            return document.content
        raise NotAvailable(f"'{document.display_name}' has no downloadable content")

    async def promote_drafts(self, profile_id: Optional[str] = None) -> List[KnowledgeDocument]:
        """
        Store every draft document under the profile

        Each draft keeps its linked flag and leaves the draft set as soon as
        it is stored, so after a partial failure a second call promotes only
        the remaining drafts.
        """
        if profile_id:
            self.bind(profile_id)
        if not self.profile_id:
            raise NotAvailable("Cannot promote drafts before the profile has an id")

        self._discard_shadowed_drafts()
        promoted = []
        for draft in list(self._drafts):
            if draft not in self._drafts:
                # Shadowed by a document promoted earlier in this loop
                continue
            document = await self._store(draft.to_upload(), self.profile_id, linked=draft.linked)
            self._drafts = [existing for existing in self._drafts if existing.id != draft.id]
            promoted.append(document)

        if promoted:
            self.logger.info(f"Promoted {len(promoted)} draft documents")
        return promoted

"""
Studio services: wires the storage collaborators, the change feed and the
draft cache from settings, and hands out wizard sessions and ledgers that
share them.
"""

from typing import Optional

from .change_feed import ChangeFeed
from .draft_cache import DraftCache
from .knowledge_ledger import KnowledgeLedger, TrainingLocks
from .wizard_controller import WizardController
from ..config.settings import Settings
from ..data.storage.attachment_store import AttachmentStore
from ..data.storage.blob_storage import BlobStorage, LocalBlobStorage
from ..data.storage.knowledge_table import JsonKnowledgeTable, KnowledgeMetadataTable
from ..data.storage.profile_repository import JsonProfileRepository, ProfileRepository
from ..utils.logging import get_component_logger


class StudioServices:
    """
    Long-lived components shared by every wizard session and view.

    Collaborators can be passed in explicitly; anything omitted is built
    from the local implementations configured in ``settings``.
    """

    def __init__(
        self,
        settings: Settings,
        blob_storage: Optional[BlobStorage] = None,
        profiles: Optional[ProfileRepository] = None,
        knowledge: Optional[KnowledgeMetadataTable] = None,
        draft_cache: Optional[DraftCache] = None
    ):
        self.settings = settings
        self.logger = get_component_logger("Studio")

        self.blob_storage = blob_storage or LocalBlobStorage(
            settings.get_blob_root(), settings.storage.public_base_url
        )
        self.attachments = AttachmentStore(settings, self.blob_storage)
        self.profiles = profiles or JsonProfileRepository(settings.get_profiles_path())
        self.knowledge = knowledge or JsonKnowledgeTable(settings.get_knowledge_path())
        self.feed = ChangeFeed([self.profiles, self.knowledge])
        self.training = TrainingLocks()

        if draft_cache is None and settings.wizard.persist_drafts:
            draft_cache = DraftCache(settings.get_drafts_path())
        self.draft_cache = draft_cache

        self.logger.info(f"Initialized with storage at {settings.base_storage_dir}")

    def new_wizard(
        self,
        owner_id: str = "",
        restore_draft: bool = False,
        resume_session_id: Optional[str] = None
    ) -> WizardController:
        """Start a create-mode wizard session, optionally resuming the draft of an earlier one"""
        wizard = WizardController(
            self.settings,
            self.profiles,
            self.knowledge,
            self.attachments,
            draft_cache=self.draft_cache,
            owner_id=owner_id,
            training_locks=self.training
        )
        if restore_draft:
            wizard.restore_draft(from_session=resume_session_id)
        return wizard

    async def open_wizard(self, profile_id: str, restore_draft: bool = False) -> WizardController:
        """Start an edit-mode wizard session for a persisted profile"""
        wizard = await WizardController.open_existing(
            self.settings,
            self.profiles,
            self.knowledge,
            self.attachments,
            profile_id,
            draft_cache=self.draft_cache,
            training_locks=self.training
        )
        if restore_draft:
            wizard.restore_draft()
        return wizard

    async def ledger_for(self, profile_id: str, origin: Optional[str] = None) -> KnowledgeLedger:
        """
        Build a ledger for a persisted profile, loaded with its documents

        Raises:
            NotAvailable: the profile does not exist
        """
        profile = await self.profiles.get(profile_id)
        ledger = KnowledgeLedger(
            self.attachments,
            self.knowledge,
            owner_id=profile.owner_id,
            profile_id=profile_id,
            origin=origin,
            training_locks=self.training
        )
        await ledger.refresh()
        return ledger

    def close(self):
        self.feed.close()

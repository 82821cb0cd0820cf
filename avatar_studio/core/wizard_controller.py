"""
Avatar creation wizard.

The controller walks an author through the fixed wizard steps, gates every
forward move on the current step's validator, persists drafts and the final
profile through the profile repository, and owns the knowledge ledger of the
session. When attached to a change feed it also applies edits made to the
same profile from other views.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .change_feed import ChangeFeed, Subscription
from .draft_cache import DraftCache
from .knowledge_ledger import KnowledgeLedger, TrainingLocks
from ..config.settings import Settings
from ..data.models.attachments import KnowledgeDocument, UploadedFile, new_id
from ..data.models.avatar_profile import ProfileChange, ProfileFields, PROFILE_FIELD_NAMES, MAX_PERSONA_TAGS
from ..data.models.wizard_state import WizardState, WizardStepInfo
from ..data.storage.attachment_store import AttachmentStore
from ..data.storage.knowledge_table import KnowledgeMetadataTable
from ..data.storage.profile_repository import ProfileRepository
from ..models.wizard_types import ChangeSource, Language, UploadPurpose, WizardMode, WizardStep
from ..utils.errors import NotAvailable, ValidationError
from ..utils.logging import get_component_logger
from ..utils.validation import ensure_step_valid, validate_step


def _issues_from_pydantic(error: PydanticValidationError) -> Dict[str, str]:
    issues = {}
    for detail in error.errors():
        field = ".".join(str(part) for part in detail.get("loc", ())) or "fields"
        issues[field] = detail.get("msg", "Invalid value")
    return issues


class WizardController:
    """
    Step state machine for creating or editing one avatar profile.

    Persistence calls of a session are serialized so they reach the
    repository in the order they were issued.
    """

    def __init__(
        self,
        settings: Settings,
        repository: ProfileRepository,
        knowledge_table: KnowledgeMetadataTable,
        attachment_store: AttachmentStore,
        draft_cache: Optional[DraftCache] = None,
        owner_id: str = "",
        mode: WizardMode = WizardMode.CREATE,
        profile_id: Optional[str] = None,
        step_data: Optional[ProfileFields] = None,
        session_id: Optional[str] = None,
        training_locks: Optional[TrainingLocks] = None
    ):
        """
        Initialize a wizard session

        Args:
            settings: Application settings
            repository: Profile repository
            knowledge_table: Knowledge metadata table for the session's ledger
            attachment_store: Store used for avatar images and knowledge files
            draft_cache: Optional cache of unsaved field values
            owner_id: Authoring user id
            mode: Create a new profile or edit an existing one
            profile_id: Id of the profile being edited
            step_data: Initial field values
            session_id: Explicit session id, generated when omitted
            training_locks: Shared registry of profiles currently training
        """
        if mode == WizardMode.EDIT and not profile_id:
            raise ValueError("Edit mode requires a profile id")

        self.settings = settings
        self.repository = repository
        self.attachment_store = attachment_store
        self.draft_cache = draft_cache
        self.owner_id = owner_id
        self.mode = mode
        self.profile_id = profile_id
        self.session_id = session_id or new_id()
        self.logger = get_component_logger("Wizard", self.session_id[:8])

        self.steps: List[WizardStep] = WizardStep.ordered()
        self.current_step_index = 0
        self.step_data = step_data if step_data is not None else self._initial_fields()
        self.finished = False

        self.ledger = KnowledgeLedger(
            attachment_store,
            knowledge_table,
            owner_id=owner_id,
            profile_id=profile_id,
            origin=self.session_id,
            training_locks=training_locks
        )

        self._snapshot = self.step_data
        self._knowledge_snapshot = self.ledger.signature()
        self._lock = asyncio.Lock()
        self._feed: Optional[ChangeFeed] = None
        self._subscription: Optional[Subscription] = None

    def _initial_fields(self) -> ProfileFields:
        wizard = self.settings.wizard
        return ProfileFields(
            origin_country=wizard.default_origin_country,
            primary_language=wizard.default_primary_language
        )

    @classmethod
    async def open_existing(
        cls,
        settings: Settings,
        repository: ProfileRepository,
        knowledge_table: KnowledgeMetadataTable,
        attachment_store: AttachmentStore,
        profile_id: str,
        draft_cache: Optional[DraftCache] = None,
        session_id: Optional[str] = None,
        training_locks: Optional[TrainingLocks] = None
    ) -> "WizardController":
        """
        Start an edit session for a persisted profile

        Raises:
            NotAvailable: the profile does not exist
        """
        profile = await repository.get(profile_id)
        controller = cls(
            settings,
            repository,
            knowledge_table,
            attachment_store,
            draft_cache=draft_cache,
            owner_id=profile.owner_id,
            mode=WizardMode.EDIT,
            profile_id=profile_id,
            step_data=profile.fields(),
            session_id=session_id,
            training_locks=training_locks
        )
        await controller.ledger.refresh()
        controller._knowledge_snapshot = controller.ledger.signature()
        controller.logger.info(f"Opened profile {profile_id} for editing")
        return controller

    # Navigation

    @property
    def current_step(self) -> WizardStep:
        return self.steps[self.current_step_index]

    @property
    def is_first_step(self) -> bool:
        return self.current_step_index == 0

    @property
    def is_last_step(self) -> bool:
        return self.current_step_index == len(self.steps) - 1

    @property
    def progress_percent(self) -> float:
        if len(self.steps) < 2:
            return 100.0
        return self.current_step_index / (len(self.steps) - 1) * 100

    def current_issues(self) -> Dict[str, str]:
        return validate_step(self.current_step, self.step_data, self.settings)

    def can_proceed(self) -> bool:
        return not self.current_issues()

    def go_next(self) -> WizardStep:
        """
        Advance to the next step if the current one is complete

        On the last step a valid call stays put; finishing is ``finish()``.

        Raises:
            ValidationError: listing every missing or invalid field
        """
        ensure_step_valid(self.current_step, self.step_data, self.settings)
        if not self.is_last_step:
            self.current_step_index += 1
            self.logger.debug(f"Moved to {self.current_step.title}")
        return self.current_step

    def go_back(self) -> WizardStep:
        if self.current_step_index > 0:
            self.current_step_index -= 1
        return self.current_step

    # Dirtiness and drafts

    @property
    def is_dirty(self) -> bool:
        if self.step_data.changed_fields(self._snapshot):
            return True
        return self.ledger.signature() != self._knowledge_snapshot

    def _unsaved_key(self, session_id: str) -> str:
        return f"new-{self.owner_id or 'anonymous'}-{session_id}"

    @property
    def draft_key(self) -> str:
        return self.profile_id or self._unsaved_key(self.session_id)

    def _remember(self):
        if self.draft_cache is not None and self.settings.wizard.persist_drafts:
            self.draft_cache.set(self.draft_key, self.step_data)

    def restore_draft(self, from_session: Optional[str] = None) -> bool:
        """
        Load unsaved field values left in the draft cache by an earlier session

        An edit session reads the draft of its profile. A create session has
        nothing to resume unless ``from_session`` names the earlier create
        session, whose draft then moves over to this one.

        Args:
            from_session: Id of the create session to resume

        Returns:
            True if a draft was restored
        """
        if self.draft_cache is None:
            return False
        if self.profile_id is None and from_session and from_session != self.session_id:
            self.draft_cache.move(self._unsaved_key(from_session), self.draft_key)
        cached = self.draft_cache.get(self.draft_key)
        if cached is None:
            return False
        self.step_data = cached
        self.logger.info(f"Restored draft {self.draft_key}")
        return True

    # Field editing

    def update_fields(self, **changes: Any) -> ProfileFields:
        """
        Apply field edits to the step data

        Raises:
            ValidationError: unknown field or invalid value; nothing is applied
        """
        unknown = set(changes) - PROFILE_FIELD_NAMES
        if unknown:
            raise ValidationError(
                f"Unknown profile fields: {', '.join(sorted(unknown))}",
                issues={field: "Unknown field." for field in sorted(unknown)}
            )
        try:
            self.step_data = self.step_data.merged(changes)
        except PydanticValidationError as e:
            issues = _issues_from_pydantic(e)
            raise ValidationError(
                "Invalid field values: " + "; ".join(f"{k}: {v}" for k, v in issues.items()),
                issues=issues,
                step=self.current_step.title
            ) from e
        self._remember()
        return self.step_data

    @property
    def max_persona_tags(self) -> int:
        return min(self.settings.wizard.max_persona_tags, MAX_PERSONA_TAGS)

    def add_persona_tag(self, tag: str) -> bool:
        """
        Add a persona tag

        Returns:
            False if an equal tag (ignoring case) is already present

        Raises:
            ValidationError: blank tag, or the tag limit is reached
        """
        cleaned = tag.strip()
        if not cleaned:
            raise ValidationError("Persona tag cannot be blank", issues={"persona_tags": "Tag is blank."})

        tags = self.step_data.persona_tags
        if cleaned.lower() in {existing.lower() for existing in tags}:
            return False
        if len(tags) >= self.max_persona_tags:
            message = f"At most {self.max_persona_tags} persona tags are allowed."
            raise ValidationError(message, issues={"persona_tags": message}, step=WizardStep.PERSONA.title)

        self.update_fields(persona_tags=tags + [cleaned])
        return True

    def remove_persona_tag(self, tag: str) -> bool:
        tags = self.step_data.persona_tags
        remaining = [existing for existing in tags if existing.lower() != tag.strip().lower()]
        if len(remaining) == len(tags):
            return False
        self.update_fields(persona_tags=remaining)
        return True

    def _language(self, language: Union[str, Language]) -> Language:
        try:
            return Language(language)
        except ValueError as e:
            raise ValidationError(
                f"Unsupported language: {language}",
                issues={"primary_language": f"Unsupported language: {language}"}
            ) from e

    def set_primary_language(self, language: Union[str, Language]) -> Language:
        """Set the primary language; it is dropped from the secondary languages"""
        return self.update_fields(primary_language=self._language(language)).primary_language

    def toggle_secondary_language(self, language: Union[str, Language]) -> bool:
        """
        Add or remove a secondary language

        Returns:
            True if the language is now a secondary language
        """
        language = self._language(language)
        if language == self.step_data.primary_language:
            return False

        secondary = list(self.step_data.secondary_languages)
        if language in secondary:
            secondary.remove(language)
        else:
            secondary.append(language)
        self.update_fields(secondary_languages=secondary)
        return language in secondary

    async def add_image(self, upload: UploadedFile) -> str:
        """
        Upload an avatar image and append its public URL

        Raises:
            UploadRejected: not an image, or too large
            PersistenceFailure: storage failed
        """
        stored = await self.attachment_store.upload(
            upload, self.owner_id, self.profile_id, UploadPurpose.AVATAR_IMAGE
        )
        self.update_fields(images=self.step_data.images + [stored.public_url])
        return stored.public_url

    def remove_image(self, url: str) -> bool:
        if url not in self.step_data.images:
            return False
        self.update_fields(images=[image for image in self.step_data.images if image != url])
        return True

    # Knowledge

    @property
    def knowledge_files(self) -> List[KnowledgeDocument]:
        return self.ledger.documents()

    async def upload_knowledge(self, upload: UploadedFile) -> KnowledgeDocument:
        async with self._lock:
            return await self.ledger.upload(upload)

    async def toggle_knowledge_link(self, document_id: str) -> KnowledgeDocument:
        async with self._lock:
            return await self.ledger.toggle_link(document_id)

    async def delete_knowledge(self, document_id: str):
        async with self._lock:
            await self.ledger.delete(document_id)

    def download_knowledge(self, document_id: str) -> Union[str, bytes]:
        return self.ledger.download(document_id)

    # Persistence

    async def _persist(self) -> str:
        data = self.step_data

        if self.profile_id is None:
            new_key = self.draft_key
            profile_id = await self.repository.create(data, owner_id=self.owner_id, origin=self.session_id)
            self.profile_id = profile_id
            self.ledger.bind(profile_id)
            if self.draft_cache is not None:
                self.draft_cache.clear(new_key)
            self.logger.info(f"Created profile {profile_id}")
            if self._feed is not None and self._subscription is None:
                self._subscription = await self._feed.subscribe(profile_id, self._on_change)
        else:
            await self.repository.update(self.profile_id, data, origin=self.session_id)
            self.logger.info(f"Saved profile {self.profile_id}")

        self._snapshot = data
        if self.draft_cache is not None:
            self.draft_cache.clear(self.profile_id)
        return self.profile_id

    async def save_draft(self) -> str:
        """
        Persist the current step data without finishing

        Returns:
            The profile id

        Raises:
            ValidationError: the current step is incomplete
            PersistenceFailure: the repository write failed; state is unchanged
        """
        ensure_step_valid(self.current_step, self.step_data, self.settings)
        async with self._lock:
            profile_id = await self._persist()
            self._knowledge_snapshot = self.ledger.signature()
        return profile_id

    async def finish(self) -> str:
        """
        Persist the profile and store every draft knowledge document

        Returns:
            The profile id

        Raises:
            ValidationError: not on the last step, or a step is incomplete
            PersistenceFailure: a write failed; calling again retries what is left
        """
        if not self.is_last_step:
            message = f"Finish is only available on the {self.steps[-1].title} step"
            raise ValidationError(message, issues={"step": message}, step=self.current_step.title)
        for step in self.steps:
            ensure_step_valid(step, self.step_data, self.settings)

        async with self._lock:
            profile_id = await self._persist()
            promoted = await self.ledger.promote_drafts(profile_id)
            self._knowledge_snapshot = self.ledger.signature()

        self.finished = True
        self.logger.info(f"Finished profile {profile_id} with {len(promoted)} new knowledge documents")
        self.detach()
        return profile_id

    def request_exit(self, confirm: Callable[[str], bool]) -> bool:
        """
        Ask whether the session may be closed

        Args:
            confirm: Prompt called with the unsaved-changes message when the
                session is dirty; its answer decides

        Returns:
            True if the session may be closed
        """
        allowed = True
        if self.is_dirty:
            allowed = bool(confirm(self.settings.wizard.unsaved_changes_message))

        if allowed:
            if self.draft_cache is not None:
                self.draft_cache.clear(self.draft_key)
            self.detach()
        return allowed

    # Live updates

    async def attach(self, feed: ChangeFeed):
        """
        Receive changes to this profile made elsewhere

        A session without a profile id subscribes after its first save.
        """
        self._feed = feed
        if self.profile_id and self._subscription is None:
            self._subscription = await feed.subscribe(self.profile_id, self._on_change)

    def detach(self):
        if self._subscription is not None:
            self._subscription.release()
            self._subscription = None
        self._feed = None

    async def _on_change(self, change: ProfileChange):
        if change.origin == self.session_id:
            return

        if change.source == ChangeSource.KNOWLEDGE:
            knowledge_clean = self.ledger.signature() == self._knowledge_snapshot
            await self.ledger.refresh()
            if knowledge_clean:
                self._knowledge_snapshot = self.ledger.signature()
            return

        changes = {key: value for key, value in change.fields.items() if key in PROFILE_FIELD_NAMES}
        if not changes:
            return
        self.step_data = self.step_data.merged(changes)
        self._snapshot = self._snapshot.merged(changes)
        self.logger.info(f"Applied remote changes to {sorted(changes)}")

    def state(self) -> WizardState:
        documents = self.ledger.documents()
        return WizardState(
            session_id=self.session_id,
            mode=self.mode,
            profile_id=self.profile_id,
            steps=[WizardStepInfo.from_step(step) for step in self.steps],
            current_step_index=self.current_step_index,
            current_step=self.current_step,
            progress_percent=self.progress_percent,
            is_dirty=self.is_dirty,
            can_proceed=self.can_proceed(),
            issues=self.current_issues(),
            step_data=self.step_data,
            knowledge_files=documents,
            linked_count=sum(1 for document in documents if document.linked),
            finished=self.finished
        )

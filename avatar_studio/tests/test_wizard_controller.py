"""
Tests for the wizard state machine: navigation gating, field editing,
persistence, exit handling and live updates
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from avatar_studio.core.knowledge_ledger import KnowledgeLedger
from avatar_studio.core.wizard_controller import WizardController
from avatar_studio.models.wizard_types import Language, Provenance, WizardMode, WizardStep
from avatar_studio.utils.errors import NotAvailable, PersistenceFailure, UploadRejected, ValidationError


@pytest.fixture
def wizard(settings, profiles, knowledge_table, attachment_store, draft_cache):
    return WizardController(
        settings,
        profiles,
        knowledge_table,
        attachment_store,
        draft_cache=draft_cache,
        owner_id="owner-1"
    )


def fill(wizard, fields):
    wizard.update_fields(**fields.model_dump())


def walk_to_last_step(wizard):
    while not wizard.is_last_step:
        wizard.go_next()


class TestNavigation:

    def test_incomplete_step_blocks_next(self, wizard):
        with pytest.raises(ValidationError) as exc_info:
            wizard.go_next()

        assert set(exc_info.value.missing_fields) == {"name", "age", "gender"}
        assert wizard.current_step == WizardStep.DETAIL
        assert not wizard.can_proceed()

    def test_progress(self, wizard, valid_fields):
        assert wizard.progress_percent == 0
        fill(wizard, valid_fields)

        wizard.go_next()
        assert wizard.progress_percent == 25

        walk_to_last_step(wizard)
        assert wizard.current_step == WizardStep.KNOWLEDGE
        assert wizard.progress_percent == 100

    def test_next_on_last_step_stays_put(self, wizard, valid_fields):
        fill(wizard, valid_fields)
        walk_to_last_step(wizard)

        assert wizard.go_next() == WizardStep.KNOWLEDGE
        assert wizard.is_last_step

    def test_back_never_validates(self, wizard, valid_fields):
        fill(wizard, valid_fields)
        wizard.go_next()
        wizard.update_fields(persona_tags=[])

        assert wizard.go_back() == WizardStep.DETAIL
        assert wizard.go_back() == WizardStep.DETAIL
        assert wizard.is_first_step

    def test_state_snapshot(self, wizard):
        state = wizard.state()
        assert state.mode == WizardMode.CREATE
        assert [step.key for step in state.steps] == WizardStep.ordered()
        assert state.can_proceed is False
        assert "name" in state.issues
        assert state.is_dirty is False

    def test_edit_mode_requires_profile_id(self, settings, profiles, knowledge_table, attachment_store):
        with pytest.raises(ValueError):
            WizardController(settings, profiles, knowledge_table, attachment_store, mode=WizardMode.EDIT)


class TestFieldEditing:

    def test_tag_limit(self, wizard):
        for i in range(25):
            assert wizard.add_persona_tag(f"tag{i}")

        with pytest.raises(ValidationError):
            wizard.add_persona_tag("one-too-many")
        assert len(wizard.step_data.persona_tags) == 25

    def test_duplicate_and_blank_tags(self, wizard):
        assert wizard.add_persona_tag("Curious")
        assert wizard.add_persona_tag("curious ") is False
        with pytest.raises(ValidationError):
            wizard.add_persona_tag("   ")
        assert wizard.step_data.persona_tags == ["Curious"]

    def test_removing_below_minimum_is_allowed(self, wizard, valid_fields):
        fill(wizard, valid_fields)
        wizard.go_next()

        assert wizard.remove_persona_tag("kind")
        assert wizard.remove_persona_tag("kind") is False
        assert len(wizard.step_data.persona_tags) == 4
        assert "persona_tags" in wizard.current_issues()

    def test_languages(self, wizard):
        wizard.set_primary_language("Malay")
        assert wizard.toggle_secondary_language(Language.ENGLISH) is True
        assert wizard.toggle_secondary_language("Malay") is False
        assert wizard.step_data.secondary_languages == [Language.ENGLISH]

        wizard.set_primary_language(Language.ENGLISH)
        assert wizard.step_data.secondary_languages == []

        assert wizard.toggle_secondary_language("Thai") is True
        assert wizard.toggle_secondary_language("Thai") is False
        assert wizard.step_data.secondary_languages == []

    def test_unsupported_language(self, wizard):
        with pytest.raises(ValidationError):
            wizard.set_primary_language("Klingon")

    def test_invalid_values_leave_step_data_untouched(self, wizard):
        wizard.update_fields(name="Aria")

        with pytest.raises(ValidationError) as exc_info:
            wizard.update_fields(name="Other", age=0)
        assert "age" in exc_info.value.issues

        with pytest.raises(ValidationError):
            wizard.update_fields(nickname="Ari")
        assert wizard.step_data.name == "Aria"

    def test_add_and_remove_image(self, settings, wizard, make_image):
        url = asyncio.run(wizard.add_image(make_image()))

        assert url.startswith(f"{settings.storage.public_base_url}/owner-1/avatars/")
        assert wizard.step_data.images == [url]
        assert wizard.remove_image(url)
        assert wizard.remove_image(url) is False

    def test_image_must_be_an_image(self, wizard, make_pdf):
        with pytest.raises(UploadRejected):
            asyncio.run(wizard.add_image(make_pdf()))
        assert wizard.step_data.images == []


class TestPersistence:

    def test_save_draft_assigns_id_and_clears_dirty(self, wizard, profiles, valid_fields):
        fill(wizard, valid_fields)
        assert wizard.is_dirty

        profile_id = asyncio.run(wizard.save_draft())

        assert wizard.profile_id == profile_id
        assert not wizard.is_dirty
        assert asyncio.run(profiles.get(profile_id)).owner_id == "owner-1"

        wizard.update_fields(name="Renamed")
        assert asyncio.run(wizard.save_draft()) == profile_id
        assert asyncio.run(profiles.get(profile_id)).name == "Renamed"

    def test_save_draft_validates_current_step(self, wizard, profiles):
        wizard.update_fields(name="Aria")
        with pytest.raises(ValidationError):
            asyncio.run(wizard.save_draft())
        assert asyncio.run(profiles.list()) == []

    def test_failed_save_keeps_dirty_state(self, wizard, profiles, valid_fields, monkeypatch):
        fill(wizard, valid_fields)
        monkeypatch.setattr(
            profiles, "create", AsyncMock(side_effect=PersistenceFailure("offline", operation="create"))
        )

        with pytest.raises(PersistenceFailure):
            asyncio.run(wizard.save_draft())

        assert wizard.profile_id is None
        assert wizard.is_dirty

    def test_finish_requires_last_step(self, wizard, valid_fields):
        fill(wizard, valid_fields)
        with pytest.raises(ValidationError):
            asyncio.run(wizard.finish())
        assert not wizard.finished

    def test_full_creation(self, wizard, profiles, knowledge_table, valid_fields, make_pdf):
        async def scenario():
            fill(wizard, valid_fields)
            walk_to_last_step(wizard)
            document = await wizard.upload_knowledge(make_pdf())
            assert document.provenance == Provenance.DRAFT_LOCAL
            profile_id = await wizard.finish()
            return profile_id, await profiles.get(profile_id), await knowledge_table.query_by_profile(profile_id)

        profile_id, profile, rows = asyncio.run(scenario())
        assert wizard.finished
        assert profile.fields() == valid_fields
        assert [(row.display_name, row.linked) for row in rows] == [("spec.pdf", False)]
        assert [document.provenance for document in wizard.knowledge_files] == [Provenance.PROFILE]
        assert not wizard.is_dirty

    def test_edit_existing_profile(self, settings, profiles, knowledge_table, attachment_store,
                                   valid_fields, make_pdf):
        async def scenario():
            profile_id = await profiles.create(valid_fields, owner_id="owner-1")
            ledger = KnowledgeLedger(attachment_store, knowledge_table, owner_id="owner-1", profile_id=profile_id)
            await ledger.upload(make_pdf())
            wizard = await WizardController.open_existing(
                settings, profiles, knowledge_table, attachment_store, profile_id
            )
            return profile_id, wizard

        profile_id, wizard = asyncio.run(scenario())
        assert wizard.mode == WizardMode.EDIT
        assert wizard.owner_id == "owner-1"
        assert wizard.step_data == valid_fields
        assert [document.display_name for document in wizard.knowledge_files] == ["spec.pdf"]
        assert not wizard.is_dirty

    def test_reuploaded_draft_name_stored_once(self, wizard, knowledge_table, valid_fields, make_pdf):
        fill(wizard, valid_fields)

        async def scenario():
            await wizard.upload_knowledge(make_pdf("spec.pdf"))
            await wizard.save_draft()
            await wizard.upload_knowledge(make_pdf("spec.pdf"))
            walk_to_last_step(wizard)
            profile_id = await wizard.finish()
            return await knowledge_table.query_by_profile(profile_id)

        rows = asyncio.run(scenario())
        assert [(row.display_name, row.linked) for row in rows] == [("spec.pdf", True)]
        assert [document.provenance for document in wizard.knowledge_files] == [Provenance.PROFILE]

    def test_edit_session_refuses_knowledge_edits_while_training(self, services, valid_fields, make_pdf):
        async def scenario():
            profile_id = await services.profiles.create(valid_fields, owner_id="owner-1")
            wizard = await services.open_wizard(profile_id)
            services.training.start(profile_id)
            with pytest.raises(NotAvailable):
                await wizard.upload_knowledge(make_pdf())
            services.training.stop(profile_id)
            return await wizard.upload_knowledge(make_pdf())

        assert asyncio.run(scenario()).provenance == Provenance.PROFILE

    def test_open_missing_profile(self, settings, profiles, knowledge_table, attachment_store):
        with pytest.raises(NotAvailable):
            asyncio.run(WizardController.open_existing(
                settings, profiles, knowledge_table, attachment_store, "missing"
            ))


class TestExitAndDrafts:

    def test_clean_session_exits_without_asking(self, wizard):
        prompts = []
        assert wizard.request_exit(lambda message: prompts.append(message) or False)
        assert prompts == []

    def test_dirty_session_asks(self, settings, wizard, draft_cache):
        wizard.update_fields(name="Aria")
        prompts = []

        assert wizard.request_exit(lambda message: prompts.append(message) or False) is False
        assert prompts == [settings.wizard.unsaved_changes_message]
        assert wizard.draft_key in draft_cache

        assert wizard.request_exit(lambda message: True)
        assert wizard.draft_key not in draft_cache

    def test_draft_restored_by_next_session(self, settings, profiles, knowledge_table,
                                             attachment_store, draft_cache, wizard):
        wizard.update_fields(name="Aria", backstory="Half written")

        resumed = WizardController(
            settings, profiles, knowledge_table, attachment_store, draft_cache=draft_cache, owner_id="owner-1"
        )
        assert resumed.restore_draft(from_session=wizard.session_id)
        assert wizard.draft_key not in draft_cache
        assert resumed.draft_key in draft_cache
        assert resumed.step_data.name == "Aria"
        assert resumed.step_data.backstory == "Half written"

    def test_concurrent_create_sessions_keep_separate_drafts(self, services, draft_cache):
        alpha = services.new_wizard("owner-1")
        beta = services.new_wizard("owner-1")
        alpha.update_fields(name="Alpha", backstory="alpha story")
        beta.update_fields(name="Beta")

        assert alpha.draft_key != beta.draft_key
        resumed = services.new_wizard("owner-1", restore_draft=True, resume_session_id=alpha.session_id)

        assert resumed.step_data.name == "Alpha"
        assert resumed.step_data.backstory == "alpha story"
        assert draft_cache.get(beta.draft_key).name == "Beta"

    def test_create_session_without_resume_id_starts_empty(self, services, wizard):
        wizard.update_fields(name="Aria")

        fresh = services.new_wizard("owner-1", restore_draft=True)

        assert fresh.step_data.name == ""
        assert wizard.draft_key in services.draft_cache

    def test_first_save_clears_only_own_draft(self, services, draft_cache, valid_fields):
        alpha = services.new_wizard("owner-1")
        beta = services.new_wizard("owner-1")
        alpha.update_fields(name="Alpha")
        fill(beta, valid_fields)

        asyncio.run(beta.save_draft())

        assert draft_cache.get(alpha.draft_key).name == "Alpha"

    def test_save_clears_draft(self, wizard, draft_cache, valid_fields):
        fill(wizard, valid_fields)
        new_key = wizard.draft_key
        assert new_key in draft_cache

        profile_id = asyncio.run(wizard.save_draft())

        assert new_key not in draft_cache
        assert profile_id not in draft_cache


class TestLiveUpdates:

    def test_remote_edit_applied_without_dirtying(self, settings, profiles, knowledge_table,
                                                  attachment_store, feed, valid_fields):
        async def scenario():
            profile_id = await profiles.create(valid_fields)
            wizard = await WizardController.open_existing(
                settings, profiles, knowledge_table, attachment_store, profile_id
            )
            await wizard.attach(feed)
            wizard.update_fields(name="Local edit")
            await profiles.update(profile_id, {"backstory": "Edited elsewhere."})
            return wizard

        wizard = asyncio.run(scenario())
        assert wizard.step_data.backstory == "Edited elsewhere."
        assert wizard.step_data.name == "Local edit"
        assert wizard.is_dirty

    def test_remote_knowledge_upload_refreshes_ledger(self, settings, profiles, knowledge_table,
                                                      attachment_store, feed, valid_fields, make_pdf):
        async def scenario():
            profile_id = await profiles.create(valid_fields)
            wizard = await WizardController.open_existing(
                settings, profiles, knowledge_table, attachment_store, profile_id
            )
            await wizard.attach(feed)
            other_view = KnowledgeLedger(attachment_store, knowledge_table, profile_id=profile_id)
            await other_view.upload(make_pdf("shared.pdf"))
            return wizard

        wizard = asyncio.run(scenario())
        assert [document.display_name for document in wizard.knowledge_files] == ["shared.pdf"]
        assert not wizard.is_dirty

    def test_new_session_subscribes_after_first_save(self, wizard, feed, valid_fields):
        async def scenario():
            await wizard.attach(feed)
            assert feed.subscriber_count() == 0
            fill(wizard, valid_fields)
            profile_id = await wizard.save_draft()
            subscribed = feed.subscriber_count(profile_id)
            walk_to_last_step(wizard)
            await wizard.finish()
            return subscribed, feed.subscriber_count(profile_id)

        assert asyncio.run(scenario()) == (1, 0)

"""
Shared fixtures: settings rooted in a temporary directory and the local
storage collaborators built on it
"""

import pytest

from avatar_studio.config.settings import Settings
from avatar_studio.core.change_feed import ChangeFeed
from avatar_studio.core.draft_cache import DraftCache
from avatar_studio.core.studio import StudioServices
from avatar_studio.data.models.attachments import UploadedFile
from avatar_studio.data.models.avatar_profile import ProfileFields
from avatar_studio.data.storage.attachment_store import AttachmentStore
from avatar_studio.data.storage.blob_storage import LocalBlobStorage
from avatar_studio.data.storage.knowledge_table import JsonKnowledgeTable
from avatar_studio.data.storage.profile_repository import JsonProfileRepository


PUBLIC_BASE_URL = "http://files.test/blobs"


@pytest.fixture
def settings(tmp_path):
    """Settings with all storage below a temporary directory"""
    return Settings(
        storage={
            "base_storage_dir": str(tmp_path / "studio"),
            "public_base_url": PUBLIC_BASE_URL,
            "logs_dir": str(tmp_path / "logs"),
        }
    )


@pytest.fixture
def blob_storage(settings):
    return LocalBlobStorage(settings.get_blob_root(), settings.storage.public_base_url)


@pytest.fixture
def attachment_store(settings, blob_storage):
    return AttachmentStore(settings, blob_storage)


@pytest.fixture
def profiles(settings):
    return JsonProfileRepository(settings.get_profiles_path())


@pytest.fixture
def knowledge_table(settings):
    return JsonKnowledgeTable(settings.get_knowledge_path())


@pytest.fixture
def feed(profiles, knowledge_table):
    return ChangeFeed([profiles, knowledge_table])


@pytest.fixture
def draft_cache(settings):
    return DraftCache(settings.get_drafts_path())


@pytest.fixture
def services(settings, blob_storage, profiles, knowledge_table, draft_cache):
    return StudioServices(
        settings,
        blob_storage=blob_storage,
        profiles=profiles,
        knowledge=knowledge_table,
        draft_cache=draft_cache
    )


@pytest.fixture
def make_pdf():
    """Factory for PDF uploads of a given name and size"""
    def factory(name: str = "spec.pdf", size: int = 2048) -> UploadedFile:
        header = b"%PDF-1.4\n"
        data = header + b"0" * max(size - len(header), 0)
        return UploadedFile(filename=name, content_type="application/pdf", data=data)
    return factory


@pytest.fixture
def make_image():
    def factory(name: str = "avatar.png", size: int = 1024) -> UploadedFile:
        return UploadedFile(filename=name, content_type="image/png", data=b"\x89PNG" + b"\0" * size)
    return factory


@pytest.fixture
def valid_fields():
    """Field values that satisfy every wizard step"""
    return ProfileFields(
        name="Test",
        age=30,
        gender="male",
        primary_language="English",
        persona_tags=["curious", "patient", "witty", "kind", "bold"],
        backstory="Grew up in a fishing village and became a sailor."
    )

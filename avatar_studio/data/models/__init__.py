"""
Data models for Avatar Studio.

Pydantic models for avatar profiles, knowledge documents and their metadata
rows, change notifications and wizard state.
"""

from .avatar_profile import (
    ProfileFields,
    AvatarProfile,
    ProfileChange,
    PROFILE_FIELD_NAMES,
    MAX_PERSONA_TAGS,
)
from .attachments import (
    UploadedFile,
    StoredObject,
    KnowledgeRow,
    KnowledgeDocument,
    format_file_size,
)
from .wizard_state import WizardState, WizardStepInfo

__all__ = [
    # Profiles
    "ProfileFields",
    "AvatarProfile",
    "ProfileChange",
    "PROFILE_FIELD_NAMES",
    "MAX_PERSONA_TAGS",

    # Knowledge
    "UploadedFile",
    "StoredObject",
    "KnowledgeRow",
    "KnowledgeDocument",
    "format_file_size",

    # Wizard
    "WizardState",
    "WizardStepInfo",
]

"""
Wizard and Knowledge Type Definitions

Enumerations shared by the wizard, the knowledge ledger, the change feed and
the API layer.
"""

from enum import Enum
from typing import List


class WizardStep(Enum):
    """
    The fixed, ordered steps of the avatar creation wizard.

    The declaration order is the navigation order.
    """
    DETAIL = "detail"
    PERSONA = "persona"
    BACKSTORY = "backstory"
    HIDDEN_RULES = "hidden_rules"
    KNOWLEDGE = "knowledge"

    def __str__(self) -> str:
        return self.value

    @property
    def title(self) -> str:
        titles = {
            WizardStep.DETAIL: "Avatar Detail",
            WizardStep.PERSONA: "Avatar Persona",
            WizardStep.BACKSTORY: "Backstory",
            WizardStep.HIDDEN_RULES: "Hidden Rules",
            WizardStep.KNOWLEDGE: "Knowledge Base",
        }
        return titles[self]

    @property
    def description(self) -> str:
        descriptions = {
            WizardStep.DETAIL: "Basic information and appearance",
            WizardStep.PERSONA: "Personality traits and characteristics",
            WizardStep.BACKSTORY: "Background and history",
            WizardStep.HIDDEN_RULES: "Special instructions and constraints",
            WizardStep.KNOWLEDGE: "Upload training documents",
        }
        return descriptions[self]

    @property
    def is_optional(self) -> bool:
        """Optional steps always validate"""
        return self in (WizardStep.HIDDEN_RULES, WizardStep.KNOWLEDGE)

    @classmethod
    def ordered(cls) -> List["WizardStep"]:
        return list(cls)


class WizardMode(str, Enum):
    """Whether the wizard creates a new profile or edits an existing one"""
    CREATE = "create"
    EDIT = "edit"


class Provenance(str, Enum):
    """Where a knowledge document currently lives"""
    PROFILE = "profile"
    DRAFT_LOCAL = "draft-local"


class UploadPurpose(str, Enum):
    """Upload rule set and storage namespace selector"""
    KNOWLEDGE = "knowledge"
    AVATAR_IMAGE = "avatar_image"
    PROFILE_PICTURE = "profile_picture"

    @property
    def namespace(self) -> str:
        """Storage path segment used when no profile id is available"""
        namespaces = {
            UploadPurpose.KNOWLEDGE: "knowledge",
            UploadPurpose.AVATAR_IMAGE: "avatars",
            UploadPurpose.PROFILE_PICTURE: "profiles",
        }
        return namespaces[self]


class ChangeSource(str, Enum):
    """Which half of the backing store produced a change"""
    PROFILE = "profile"
    KNOWLEDGE = "knowledge"


class ChangeEvent(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class MBTIType(str, Enum):
    """The 16 Myers-Briggs type codes"""
    INTJ = "INTJ"
    INTP = "INTP"
    ENTJ = "ENTJ"
    ENTP = "ENTP"
    INFJ = "INFJ"
    INFP = "INFP"
    ENFJ = "ENFJ"
    ENFP = "ENFP"
    ISTJ = "ISTJ"
    ISFJ = "ISFJ"
    ESTJ = "ESTJ"
    ESFJ = "ESFJ"
    ISTP = "ISTP"
    ISFP = "ISFP"
    ESTP = "ESTP"
    ESFP = "ESFP"


class Language(str, Enum):
    """Languages an avatar can speak"""
    ENGLISH = "English"
    CHINESE = "Chinese"
    MALAY = "Malay"
    SPANISH = "Spanish"
    FRENCH = "French"
    GERMAN = "German"
    ITALIAN = "Italian"
    PORTUGUESE = "Portuguese"
    RUSSIAN = "Russian"
    JAPANESE = "Japanese"
    KOREAN = "Korean"
    ARABIC = "Arabic"
    HINDI = "Hindi"
    THAI = "Thai"
    VIETNAMESE = "Vietnamese"
    INDONESIAN = "Indonesian"
    DUTCH = "Dutch"
    SWEDISH = "Swedish"
    NORWEGIAN = "Norwegian"
    DANISH = "Danish"
    FINNISH = "Finnish"
    POLISH = "Polish"
    CZECH = "Czech"
    HUNGARIAN = "Hungarian"
    ROMANIAN = "Romanian"
    BULGARIAN = "Bulgarian"
    GREEK = "Greek"
    TURKISH = "Turkish"
    HEBREW = "Hebrew"
    URDU = "Urdu"
    BENGALI = "Bengali"
    TAMIL = "Tamil"
    TELUGU = "Telugu"

"""
Pydantic models for avatar profiles.

This module defines the editable profile record authored by the wizard, the
persisted profile with its identity and timestamps, and the change
notification pushed to every view watching a profile.
"""

from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator, model_validator

from ...models.wizard_types import Language, MBTIType, ChangeSource, ChangeEvent


MAX_PERSONA_TAGS = 25


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProfileFields(BaseModel):
    """
    The editable part of an avatar profile.

    This is the wizard's step data record: every step reads and writes a
    subset of these fields, and the per-step validators decide whether the
    subset is complete.
    """

    # Avatar Detail
    name: str = Field(default="", description="Display name of the avatar")
    images: List[str] = Field(default_factory=list, description="Ordered avatar image URLs")
    origin_country: str = Field(default="Malaysia", description="Country the avatar comes from")
    age: Optional[int] = Field(default=None, ge=1, le=150, description="Age in years")
    gender: str = Field(default="", description="Gender as chosen by the author")
    primary_language: Optional[Language] = Field(default=Language.ENGLISH)
    secondary_languages: List[Language] = Field(default_factory=list)

    # Avatar Persona
    persona_tags: List[str] = Field(
        default_factory=list,
        max_length=MAX_PERSONA_TAGS,
        description="Interests and personality tags"
    )
    mbti_type: Optional[MBTIType] = Field(default=None)

    # Backstory
    backstory: str = Field(default="")

    # Hidden Rules
    hidden_rules: str = Field(default="")

    @field_validator('name', 'gender', 'origin_country')
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator('persona_tags')
    @classmethod
    def normalize_tags(cls, v):
        """Strip tags and drop blanks and case-insensitive duplicates."""
        seen = set()
        tags = []
        for tag in v:
            cleaned = tag.strip()
            if cleaned and cleaned.lower() not in seen:
                seen.add(cleaned.lower())
                tags.append(cleaned)
        return tags

    @model_validator(mode='after')
    def secondary_excludes_primary(self):
        secondary = []
        for language in self.secondary_languages:
            if language != self.primary_language and language not in secondary:
                secondary.append(language)
        self.secondary_languages = secondary
        return self

    def changed_fields(self, other: "ProfileFields") -> Dict[str, Any]:
        """Return the fields of ``self`` whose values differ from ``other``."""
        mine = self.model_dump(mode='json')
        theirs = other.model_dump(mode='json')
        return {key: value for key, value in mine.items() if theirs.get(key) != value}

    def merged(self, changes: Dict[str, Any]) -> "ProfileFields":
        """Return a validated copy with ``changes`` applied."""
        data = self.model_dump()
        data.update(changes)
        return ProfileFields.model_validate(data)


PROFILE_FIELD_NAMES = frozenset(ProfileFields.model_fields)


class AvatarProfile(ProfileFields):
    """A persisted avatar profile."""

    id: str = Field(..., description="Stable id assigned at first persist")
    owner_id: str = Field(default="", description="Id of the authoring user")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def fields(self) -> ProfileFields:
        """Return the editable subset as a ProfileFields record."""
        return ProfileFields.model_validate(self.model_dump(include=PROFILE_FIELD_NAMES))


class ProfileChange(BaseModel):
    """
    Notification that a watched profile changed.

    For profile changes ``fields`` holds only the fields whose values changed.
    For knowledge changes it holds the affected metadata row.
    """

    profile_id: str
    source: ChangeSource
    event: ChangeEvent
    fields: Dict[str, Any] = Field(default_factory=dict)
    origin: Optional[str] = Field(default=None, description="Session that performed the write")
    occurred_at: datetime = Field(default_factory=utc_now)

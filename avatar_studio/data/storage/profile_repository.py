"""
Profile repository: persistence for avatar profile fields.

``ProfileRepository`` is the boundary the wizard and the views talk to.
``JsonProfileRepository`` keeps the profiles in a single JSON registry file
(or only in memory when no path is given) and notifies field-level changes
to anyone watching a profile id.
"""

import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .notifier import ChangeNotifier
from ..models.avatar_profile import AvatarProfile, ProfileChange, ProfileFields, PROFILE_FIELD_NAMES, utc_now
from ...models.wizard_types import ChangeEvent, ChangeSource
from ...utils.errors import NotAvailable, PersistenceFailure
from ...utils.logging import get_component_logger


FieldValues = Union[ProfileFields, Dict[str, Any]]


class ProfileRepository(ChangeNotifier, ABC):
    """
    Abstract profile store.

    Implementations must call ``_emit`` after every successful write so that
    views subscribed through the change feed see it.
    """

    @abstractmethod
    async def create(self, fields: FieldValues, owner_id: str = "", origin: Optional[str] = None) -> str:
        """Persist a new profile and return its id"""

    @abstractmethod
    async def update(self, profile_id: str, fields: FieldValues, origin: Optional[str] = None) -> None:
        """Overwrite the given fields of an existing profile"""

    @abstractmethod
    async def get(self, profile_id: str) -> AvatarProfile:
        """Load a profile; raises NotAvailable when it does not exist"""

    @abstractmethod
    async def list(self, owner_id: Optional[str] = None) -> List[AvatarProfile]:
        """List profiles, optionally for one owner"""


def _field_values(fields: FieldValues) -> Dict[str, Any]:
    """Normalize input to JSON-ready values restricted to editable fields."""
    if isinstance(fields, ProfileFields):
        data = fields.model_dump(mode='json', include=PROFILE_FIELD_NAMES)
    else:
        unknown = set(fields) - PROFILE_FIELD_NAMES
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)}")
        data = {key: value for key, value in fields.items()}
    return data


class JsonProfileRepository(ProfileRepository):
    """
    Profile registry stored as one JSON document.

    Layout::

        {"profiles": {"<id>": {...}}, "last_updated": "..."}
    """

    def __init__(self, registry_path: Optional[Union[str, Path]] = None):
        super().__init__()
        self.registry_path = Path(registry_path) if registry_path else None
        self.logger = get_component_logger("Profiles")
        self._profiles: Dict[str, Dict[str, Any]] = self._load_registry()

    def _load_registry(self) -> Dict[str, Dict[str, Any]]:
        """Load the profile registry from disk"""
        if self.registry_path is None or not self.registry_path.exists():
            return {}
        try:
            with open(self.registry_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return data.get("profiles", {})
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceFailure(f"Failed to load profile registry: {e}", operation="load") from e

    def _save_registry(self):
        """Save the profile registry to disk"""
        if self.registry_path is None:
            return
        registry_data = {
            "profiles": self._profiles,
            "last_updated": datetime.now(timezone.utc).isoformat()
        }
        self.registry_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.registry_path.with_suffix(self.registry_path.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(registry_data, f, indent=2, ensure_ascii=False)
        tmp_path.replace(self.registry_path)

    def _commit(self, previous: Dict[str, Dict[str, Any]], operation: str):
        """Write the registry, restoring the in-memory state if the write fails."""
        try:
            self._save_registry()
        except OSError as e:
            self._profiles = previous
            self.logger.error(f"Profile {operation} failed: {e}")
            raise PersistenceFailure(f"Failed to {operation} profile: {e}", operation=operation) from e

    async def create(self, fields: FieldValues, owner_id: str = "", origin: Optional[str] = None) -> str:
        values = _field_values(fields)
        profile_id = uuid.uuid4().hex
        now = utc_now()
        profile = AvatarProfile(id=profile_id, owner_id=owner_id, created_at=now, updated_at=now, **values)

        previous = dict(self._profiles)
        self._profiles[profile_id] = profile.model_dump(mode='json')
        self._commit(previous, "create")

        self.logger.info(f"Created profile '{profile.name}' as {profile_id}")
        await self._emit(ProfileChange(
            profile_id=profile_id,
            source=ChangeSource.PROFILE,
            event=ChangeEvent.INSERT,
            fields=profile.fields().model_dump(mode='json'),
            origin=origin
        ))
        return profile_id

    async def update(self, profile_id: str, fields: FieldValues, origin: Optional[str] = None) -> None:
        if profile_id not in self._profiles:
            raise PersistenceFailure(f"Profile '{profile_id}' not found", operation="update")

        current = AvatarProfile.model_validate(self._profiles[profile_id])
        values = _field_values(fields)
        updated_fields = current.fields().merged(values)
        changed = updated_fields.changed_fields(current.fields())
        if not changed:
            self.logger.debug(f"Update of {profile_id} changed nothing")
            return

        updated = AvatarProfile(
            id=current.id,
            owner_id=current.owner_id,
            created_at=current.created_at,
            updated_at=utc_now(),
            **updated_fields.model_dump()
        )

        previous = dict(self._profiles)
        self._profiles[profile_id] = updated.model_dump(mode='json')
        self._commit(previous, "update")

        self.logger.info(f"Updated profile {profile_id}: {sorted(changed)}")
        await self._emit(ProfileChange(
            profile_id=profile_id,
            source=ChangeSource.PROFILE,
            event=ChangeEvent.UPDATE,
            fields=changed,
            origin=origin
        ))

    async def get(self, profile_id: str) -> AvatarProfile:
        data = self._profiles.get(profile_id)
        if data is None:
            raise NotAvailable(f"Profile '{profile_id}' not found")
        return AvatarProfile.model_validate(data)

    async def list(self, owner_id: Optional[str] = None) -> List[AvatarProfile]:
        profiles = [AvatarProfile.model_validate(data) for data in self._profiles.values()]
        if owner_id is not None:
            profiles = [profile for profile in profiles if profile.owner_id == owner_id]
        return sorted(profiles, key=lambda profile: profile.created_at)

    def exists(self, profile_id: str) -> bool:
        return profile_id in self._profiles

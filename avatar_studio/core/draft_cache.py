"""
Draft cache for unsaved wizard input.

Keeps the text and scalar fields of a wizard session between reloads so an
interrupted session can be resumed. Entries are keyed by profile id, or by a
session key while the profile has no id yet. File payloads are never cached:
knowledge documents are restored only from persisted records, and images
only as the public URLs of objects that were already stored.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..data.models.avatar_profile import ProfileFields
from ..utils.logging import get_logger


CACHED_FIELDS = frozenset({
    "name",
    "images",
    "origin_country",
    "age",
    "gender",
    "primary_language",
    "secondary_languages",
    "persona_tags",
    "mbti_type",
    "backstory",
    "hidden_rules",
})


class DraftCache:
    """
    Explicit get/set/clear store of wizard drafts.

    With ``cache_dir`` set, every entry is a small JSON file in that
    directory; without it the cache lives in memory only.
    """

    def __init__(self, cache_dir: Optional[Union[str, Path]] = None):
        self.logger = get_logger(__name__)
        self.cache_dir = Path(cache_dir) if cache_dir else None
        if self.cache_dir is not None:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._entries: Dict[str, Dict[str, Any]] = {}

    def _entry_path(self, key: str) -> Path:
        safe_key = "".join(c if c.isalnum() or c in "-_" else "_" for c in key)
        return self.cache_dir / f"draft_{safe_key}.json"

    def get(self, key: str) -> Optional[ProfileFields]:
        """
        Load the cached draft for ``key``

        Returns:
            ProfileFields if a readable draft exists, None otherwise
        """
        data = self._entries.get(key)

        if data is None and self.cache_dir is not None:
            entry_path = self._entry_path(key)
            if entry_path.exists():
                try:
                    with open(entry_path, 'r', encoding='utf-8') as f:
                        data = json.load(f).get("fields")
                except (OSError, json.JSONDecodeError) as e:
                    self.logger.warning(f"Ignoring unreadable draft {entry_path.name}: {e}")
                    return None

        if data is None:
            return None

        try:
            return ProfileFields.model_validate(data)
        except ValueError as e:
            self.logger.warning(f"Ignoring invalid draft for {key}: {e}")
            return None

    def set(self, key: str, fields: ProfileFields):
        """Cache the text and scalar fields of ``fields`` under ``key``"""
        data = fields.model_dump(mode='json', include=CACHED_FIELDS)
        self._entries[key] = data

        if self.cache_dir is None:
            return

        entry = {
            "key": key,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "fields": data
        }
        try:
            with open(self._entry_path(key), 'w', encoding='utf-8') as f:
                json.dump(entry, f, indent=2, ensure_ascii=False)
        except OSError as e:
            self.logger.warning(f"Failed to write draft for {key}: {e}")

    def clear(self, key: str) -> bool:
        """
        Drop the draft for ``key``

        Returns:
            True if a draft existed
        """
        existed = self._entries.pop(key, None) is not None

        if self.cache_dir is not None:
            entry_path = self._entry_path(key)
            if entry_path.exists():
                entry_path.unlink()
                existed = True

        return existed

    def move(self, old_key: str, new_key: str):
        """Re-key a draft, e.g. when a new profile receives its id"""
        fields = self.get(old_key)
        self.clear(old_key)
        if fields is not None:
            self.set(new_key, fields)

    def __contains__(self, key: str) -> bool:
        if key in self._entries:
            return True
        return self.cache_dir is not None and self._entry_path(key).exists()

"""
Knowledge metadata table.

One row per stored knowledge document. Every insert, update and delete is
announced to the watchers of the row's profile id.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .notifier import ChangeNotifier
from ..models.attachments import KnowledgeRow
from ..models.avatar_profile import ProfileChange
from ...models.wizard_types import ChangeEvent, ChangeSource
from ...utils.errors import NotAvailable, PersistenceFailure
from ...utils.logging import get_component_logger


UPDATABLE_COLUMNS = frozenset({"display_name", "linked"})


class KnowledgeMetadataTable(ChangeNotifier, ABC):
    """Abstract knowledge metadata table keyed by row id, queryable by profile."""

    @abstractmethod
    async def insert(self, row: KnowledgeRow, origin: Optional[str] = None) -> KnowledgeRow:
        """Insert a row and return it"""

    @abstractmethod
    async def update(self, row_id: str, origin: Optional[str] = None, **changes: Any) -> KnowledgeRow:
        """Update mutable columns of a row and return the new row"""

    @abstractmethod
    async def delete(self, row_id: str, origin: Optional[str] = None) -> None:
        """Delete a row"""

    @abstractmethod
    async def get(self, row_id: str) -> KnowledgeRow:
        """Load one row; raises NotAvailable when missing"""

    @abstractmethod
    async def query_by_profile(self, profile_id: str) -> List[KnowledgeRow]:
        """All rows of a profile, oldest first"""


class JsonKnowledgeTable(KnowledgeMetadataTable):
    """
    Knowledge rows stored in a single JSON file (or memory only).

    Layout::

        {"rows": {"<row id>": {...}}, "last_updated": "..."}
    """

    def __init__(self, table_path: Optional[Union[str, Path]] = None):
        super().__init__()
        self.table_path = Path(table_path) if table_path else None
        self.logger = get_component_logger("KnowledgeTable")
        self._rows: Dict[str, Dict[str, Any]] = self._load_rows()

    def _load_rows(self) -> Dict[str, Dict[str, Any]]:
        if self.table_path is None or not self.table_path.exists():
            return {}
        try:
            with open(self.table_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return data.get("rows", {})
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceFailure(f"Failed to load knowledge table: {e}", operation="load") from e

    def _save_rows(self):
        if self.table_path is None:
            return
        data = {
            "rows": self._rows,
            "last_updated": datetime.now(timezone.utc).isoformat()
        }
        self.table_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.table_path.with_suffix(self.table_path.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        tmp_path.replace(self.table_path)

    def _commit(self, previous: Dict[str, Dict[str, Any]], operation: str):
        try:
            self._save_rows()
        except OSError as e:
            self._rows = previous
            self.logger.error(f"Knowledge row {operation} failed: {e}")
            raise PersistenceFailure(f"Failed to {operation} knowledge row: {e}", operation=operation) from e

    async def _announce(self, row: KnowledgeRow, event: ChangeEvent, origin: Optional[str]):
        await self._emit(ProfileChange(
            profile_id=row.profile_id,
            source=ChangeSource.KNOWLEDGE,
            event=event,
            fields=row.model_dump(mode='json'),
            origin=origin
        ))

    async def insert(self, row: KnowledgeRow, origin: Optional[str] = None) -> KnowledgeRow:
        if row.id in self._rows:
            raise PersistenceFailure(f"Knowledge row '{row.id}' already exists", operation="insert")

        previous = dict(self._rows)
        self._rows[row.id] = row.model_dump(mode='json')
        self._commit(previous, "insert")

        self.logger.info(f"Inserted '{row.display_name}' for profile {row.profile_id}")
        await self._announce(row, ChangeEvent.INSERT, origin)
        return row

    async def update(self, row_id: str, origin: Optional[str] = None, **changes: Any) -> KnowledgeRow:
        if row_id not in self._rows:
            raise PersistenceFailure(f"Knowledge row '{row_id}' not found", operation="update")
        unknown = set(changes) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns cannot be updated: {sorted(unknown)}")

        row = KnowledgeRow.model_validate({**self._rows[row_id], **changes})
        previous = dict(self._rows)
        self._rows[row_id] = row.model_dump(mode='json')
        self._commit(previous, "update")

        await self._announce(row, ChangeEvent.UPDATE, origin)
        return row

    async def delete(self, row_id: str, origin: Optional[str] = None) -> None:
        if row_id not in self._rows:
            raise PersistenceFailure(f"Knowledge row '{row_id}' not found", operation="delete")

        row = KnowledgeRow.model_validate(self._rows[row_id])
        previous = dict(self._rows)
        del self._rows[row_id]
        self._commit(previous, "delete")

        self.logger.info(f"Deleted '{row.display_name}' from profile {row.profile_id}")
        await self._announce(row, ChangeEvent.DELETE, origin)

    async def get(self, row_id: str) -> KnowledgeRow:
        data = self._rows.get(row_id)
        if data is None:
            raise NotAvailable(f"Knowledge row '{row_id}' not found")
        return KnowledgeRow.model_validate(data)

    async def query_by_profile(self, profile_id: str) -> List[KnowledgeRow]:
        rows = [
            KnowledgeRow.model_validate(data)
            for data in self._rows.values()
            if data.get("profile_id") == profile_id
        ]
        return sorted(rows, key=lambda row: row.uploaded_at)

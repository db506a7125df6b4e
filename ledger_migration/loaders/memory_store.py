"""In-memory target store for dry runs, previews and tests."""

import copy
import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .base import CreateResult, ReadQuery, TargetStore, is_any_of
from ..models.entities import ENTITY_MAPS_TABLE

logger = logging.getLogger(__name__)

DEFAULT_UNIQUE_KEYS: Dict[str, List[Tuple[str, ...]]] = {
    ENTITY_MAPS_TABLE: [("SourceSystem", "EntityType", "SourceId")],
}


class InMemoryTargetStore(TargetStore):
    """
    Dict-of-tables store with the same query semantics as the REST store.

    Unique keys are declared per table as column tuples; a create that would
    duplicate one returns ``CreateResult(conflict=True)``.
    """

    def __init__(
        self,
        tables: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        unique_keys: Optional[Dict[str, Sequence[Tuple[str, ...]]]] = None
    ):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.unique_keys: Dict[str, List[Tuple[str, ...]]] = {
            table: list(keys) for table, keys in DEFAULT_UNIQUE_KEYS.items()
        }
        if unique_keys:
            for table, keys in unique_keys.items():
                self.unique_keys[table] = [tuple(k) for k in keys]
        self.created: List[Tuple[str, Dict[str, Any]]] = []

        for table, rows in (tables or {}).items():
            for row in rows:
                self.insert(table, row)

    def insert(self, table: str, row: Dict[str, Any]) -> str:
        """Seed a row directly, bypassing the created log. Returns its id."""
        stored = copy.deepcopy(row)
        stored.setdefault("Id", str(uuid.uuid4()))
        stored["Id"] = str(stored["Id"])
        self.tables.setdefault(table, []).append(stored)
        return stored["Id"]

    def rows(self, table: str) -> List[Dict[str, Any]]:
        """All rows of a table (live list)."""
        return self.tables.get(table, [])

    def _violates_unique_key(self, table: str, record: Dict[str, Any]) -> Optional[Tuple[str, ...]]:
        for key in self.unique_keys.get(table, []):
            candidate = tuple(record.get(column) for column in key)
            if any(v is None for v in candidate):
                continue
            for row in self.tables.get(table, []):
                if tuple(row.get(column) for column in key) == candidate:
                    return key
        return None

    async def create(self, table: str, record: Dict[str, Any]) -> CreateResult:
        key = self._violates_unique_key(table, record)
        if key is not None:
            return CreateResult(
                conflict=True,
                error=f"Violation of unique key ({', '.join(key)}) on {table}",
            )

        stored = copy.deepcopy(record)
        stored["Id"] = str(uuid.uuid4())
        self.tables.setdefault(table, []).append(stored)
        self.created.append((table, stored))
        return CreateResult(id=stored["Id"])

    @staticmethod
    def _matches(row: Dict[str, Any], filter_spec: Dict[str, Any]) -> bool:
        for column, value in filter_spec.items():
            actual = row.get(column)
            if is_any_of(value):
                if actual not in value:
                    return False
            elif actual != value:
                return False
        return True

    async def read(self, table: str, query: Optional[ReadQuery] = None) -> List[Dict[str, Any]]:
        query = query or ReadQuery()
        matched = [row for row in self.tables.get(table, []) if self._matches(row, query.filter)]

        if query.order_by:
            column, _, direction = query.order_by.partition(" ")
            matched.sort(
                key=lambda r: (r.get(column) is None, r.get(column)),
                reverse=direction.strip().lower() == "desc",
            )
        if query.first is not None:
            matched = matched[:query.first]
        if query.select:
            matched = [{c: row.get(c) for c in query.select} for row in matched]

        return [copy.deepcopy(row) for row in matched]

    def created_in(self, table: str) -> List[Dict[str, Any]]:
        """Records created through ``create`` for one table."""
        return [record for t, record in self.created if t == table]

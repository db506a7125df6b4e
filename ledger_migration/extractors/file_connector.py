"""Source connectors over in-memory lists and JSON export files."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .base import SourceConnector, SourceResponseError
from ..models.entities import EntityType
from ..models.record import SourceRecord

logger = logging.getLogger(__name__)


class StaticConnector(SourceConnector):
    """Serves pages by slicing in-memory record lists."""

    def __init__(self, records_by_entity: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        """
        Initialize the connector.

        Args:
            records_by_entity: Entity type name -> list of raw source records
        """
        self._records: Dict[EntityType, List[Dict[str, Any]]] = {}
        self.fetch_calls: List[Dict[str, Any]] = []
        for entity, rows in (records_by_entity or {}).items():
            self._records[EntityType.parse(entity)] = list(rows)

    def set_records(self, entity_type: EntityType, rows: List[Dict[str, Any]]) -> None:
        self._records[EntityType.parse(entity_type)] = list(rows)

    def _rows(self, entity_type: EntityType) -> List[Dict[str, Any]]:
        return self._records.get(EntityType.parse(entity_type), [])

    async def count(self, entity_type: EntityType) -> int:
        return len(self._rows(entity_type))

    async def fetch_page(
        self,
        entity_type: EntityType,
        offset: int,
        limit: int
    ) -> List[SourceRecord]:
        self.fetch_calls.append({
            "entity_type": EntityType.parse(entity_type).value,
            "offset": offset,
            "limit": limit,
        })
        rows = self._rows(entity_type)[offset:offset + limit]
        return [self.create_record(entity_type, row) for row in rows]


class FileConnector(StaticConnector):
    """
    Reads ``<EntityType>.json`` export files from a directory.

    Each file holds either a JSON list of records or an object with a
    ``data`` list. Files are loaded lazily on first use; a missing file
    is an empty entity.
    """

    def __init__(self, directory: str):
        super().__init__()
        self.directory = Path(directory)
        self._loaded: Dict[EntityType, bool] = {}

    def _load(self, entity_type: EntityType) -> None:
        entity_type = EntityType.parse(entity_type)
        if self._loaded.get(entity_type):
            return

        file_path = self.directory / f"{entity_type.value}.json"
        rows: List[Dict[str, Any]] = []
        if file_path.exists():
            try:
                with open(file_path, encoding="utf-8") as f:
                    payload = json.load(f)
            except ValueError as e:
                raise SourceResponseError(f"Invalid JSON in {file_path}: {e}") from e

            if isinstance(payload, dict):
                payload = payload.get("data") or payload.get("records") or []
            if not isinstance(payload, list):
                raise SourceResponseError(f"Expected a list of records in {file_path}")
            rows = [row for row in payload if isinstance(row, dict)]
            logger.info(f"Loaded {len(rows)} {entity_type.value} records from {file_path}")
        else:
            logger.debug(f"No export file for {entity_type.value} at {file_path}")

        self._records[entity_type] = rows
        self._loaded[entity_type] = True

    def _rows(self, entity_type: EntityType) -> List[Dict[str, Any]]:
        self._load(entity_type)
        return super()._rows(entity_type)

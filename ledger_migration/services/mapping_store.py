"""Access to the mapping store: field maps, type maps, configs and the identity ledger."""

import logging
from typing import Dict, Iterable, List, Optional

from ..loaders.base import CreateResult, ReadQuery, TargetStore
from ..models.entities import (
    CONFIGS_TABLE,
    ENTITY_MAPS_TABLE,
    FIELD_MAPS_TABLE,
    TYPE_MAPS_TABLE,
)
from ..models.mapping import EntityMapEntry, FieldMap, TypeMap
from .defaults import (
    DEFAULT_CONFIGS,
    DEFAULT_FIELD_MAPS,
    DEFAULT_TYPE_MAPS,
    default_field_maps,
    default_type_maps,
)

logger = logging.getLogger(__name__)


class MappingStore:
    """
    Reads and writes mapping rules kept as rows in the target datastore.

    Rules live in data, not code: fixing a bad mapping is a row edit.
    Supports:
    - Active field maps per entity type, ordered by SortOrder
    - Active type maps per category
    - Active configs per source system
    - Single and batched identity-ledger lookups, and ledger inserts
    - Seeding the built-in rules into an empty store
    """

    def __init__(self, target: TargetStore):
        """
        Initialize the mapping store.

        Args:
            target: Target store holding the mapping tables
        """
        self.target = target

    async def load_field_maps(self, source_system: str, entity_type: str) -> List[FieldMap]:
        """Load active field maps for an entity type, ordered by sort order."""
        rows = await self.target.read(FIELD_MAPS_TABLE, ReadQuery(
            filter={
                "SourceSystem": source_system,
                "EntityType": str(entity_type),
                "IsActive": True,
            },
            order_by="SortOrder",
        ))
        field_maps = [FieldMap.from_row(row) for row in rows]
        return sorted(field_maps, key=lambda m: m.sort_order)

    async def load_type_maps(self, source_system: str, category: str) -> List[TypeMap]:
        """Load active type maps for a category."""
        rows = await self.target.read(TYPE_MAPS_TABLE, ReadQuery(
            filter={
                "SourceSystem": source_system,
                "Category": category,
                "IsActive": True,
            },
        ))
        return [TypeMap.from_row(row) for row in rows]

    async def load_configs(self, source_system: str) -> Dict[str, str]:
        """Load active configs as a key -> value mapping."""
        rows = await self.target.read(CONFIGS_TABLE, ReadQuery(
            filter={"SourceSystem": source_system, "IsActive": True},
        ))
        return {
            row["ConfigKey"]: row.get("ConfigValue")
            for row in rows
            if row.get("ConfigKey")
        }

    async def find_entity_map(
        self,
        source_system: str,
        entity_type: str,
        source_id: str
    ) -> Optional[str]:
        """Look up the target id the ledger holds for one source id."""
        rows = await self.target.read(ENTITY_MAPS_TABLE, ReadQuery(
            filter={
                "SourceSystem": source_system,
                "EntityType": str(entity_type),
                "SourceId": str(source_id),
            },
            select=["TargetId"],
            first=1,
        ))
        if rows and rows[0].get("TargetId"):
            return str(rows[0]["TargetId"])
        return None

    async def find_entity_maps(
        self,
        source_system: str,
        entity_type: str,
        source_ids: Iterable[str]
    ) -> Dict[str, str]:
        """Look up ledger rows for many source ids with "any of" queries."""
        rows = await self.target.read_any_of(
            ENTITY_MAPS_TABLE,
            {"SourceSystem": source_system, "EntityType": str(entity_type)},
            "SourceId",
            [str(source_id) for source_id in source_ids],
            select=["SourceId", "TargetId"],
        )
        return {
            str(row["SourceId"]): str(row["TargetId"])
            for row in rows
            if row.get("SourceId") is not None and row.get("TargetId")
        }

    async def insert_entity_map(self, entry: EntityMapEntry) -> CreateResult:
        """Append one ledger row; a duplicate key comes back as a conflict."""
        return await self.target.create(ENTITY_MAPS_TABLE, entry.to_row())

    async def seed_defaults(self, source_system: str = "QBO") -> Dict[str, int]:
        """
        Write the built-in rules into the store.

        Entity types, categories and config keys that already have rows
        are left alone.

        Returns:
            Number of rows inserted per table
        """
        inserted = {FIELD_MAPS_TABLE: 0, TYPE_MAPS_TABLE: 0, CONFIGS_TABLE: 0}

        for entity_type in DEFAULT_FIELD_MAPS:
            if await self.load_field_maps(source_system, entity_type):
                logger.info(f"Field maps for {entity_type} already present, skipping")
                continue
            for field_map in default_field_maps(source_system, entity_type):
                result = await self.target.create(FIELD_MAPS_TABLE, field_map.to_row())
                if result.success:
                    inserted[FIELD_MAPS_TABLE] += 1
                else:
                    logger.warning(f"Could not seed field map {entity_type}.{field_map.source_field}: {result.error}")

        for category in DEFAULT_TYPE_MAPS:
            if await self.load_type_maps(source_system, category):
                logger.info(f"Type maps for {category} already present, skipping")
                continue
            for type_map in default_type_maps(source_system, category):
                result = await self.target.create(TYPE_MAPS_TABLE, type_map.to_row())
                if result.success:
                    inserted[TYPE_MAPS_TABLE] += 1
                else:
                    logger.warning(f"Could not seed type map {category}.{type_map.source_value}: {result.error}")

        existing_configs = await self.load_configs(source_system)
        for key, (value, description) in DEFAULT_CONFIGS.items():
            if key in existing_configs:
                continue
            result = await self.target.create(CONFIGS_TABLE, {
                "SourceSystem": source_system,
                "ConfigKey": key,
                "ConfigValue": value,
                "Description": description,
                "IsActive": True,
            })
            if result.success:
                inserted[CONFIGS_TABLE] += 1
            else:
                logger.warning(f"Could not seed config {key}: {result.error}")

        logger.info(f"Seeded mapping store for {source_system}: {inserted}")
        return inserted

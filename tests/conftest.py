import asyncio
from typing import Any, Dict

import pytest

from ledger_migration.extractors.file_connector import StaticConnector
from ledger_migration.loaders.memory_store import InMemoryTargetStore
from ledger_migration.models.entities import ENTITY_MAPS_TABLE, EntityType
from ledger_migration.models.record import SourceRecord
from ledger_migration.services.context import MigrationContext
from ledger_migration.services.mapper import Mapper


@pytest.fixture
def run_async():
    """Run a coroutine to completion from a plain test function."""
    def runner(coro):
        return asyncio.run(coro)
    return runner


@pytest.fixture
def store() -> InMemoryTargetStore:
    return InMemoryTargetStore()


@pytest.fixture
def context() -> MigrationContext:
    return MigrationContext(source_system="QBO")


@pytest.fixture
def mapper(store: InMemoryTargetStore, context: MigrationContext) -> Mapper:
    return Mapper(store, context=context)


@pytest.fixture
def connector() -> StaticConnector:
    return StaticConnector()


@pytest.fixture
def make_record():
    def factory(entity_type: EntityType, data: Dict[str, Any]) -> SourceRecord:
        return SourceRecord(id=str(data["Id"]), entity_type=entity_type.value, data=data)
    return factory


@pytest.fixture
def seed_migrated(store: InMemoryTargetStore):
    """Insert a target row that carries source-tracking columns, as a previous run would."""
    def factory(entity_type: EntityType, source_id: str, **columns: Any) -> str:
        row = {"SourceSystem": "QBO", "SourceId": str(source_id)}
        row.update(columns)
        return store.insert(entity_type.table, row)
    return factory


@pytest.fixture
def seed_ledger(store: InMemoryTargetStore):
    """Insert an identity-ledger row only."""
    def factory(entity_type: EntityType, source_id: str, target_id: str) -> None:
        store.insert(ENTITY_MAPS_TABLE, {
            "SourceSystem": "QBO",
            "EntityType": entity_type.value,
            "SourceId": str(source_id),
            "TargetId": target_id,
        })
    return factory

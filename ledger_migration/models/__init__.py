"""Data models for the migration engine."""

from .entities import (
    EntityType,
    TABLE_NAMES,
    MIGRATION_ORDER,
)
from .mapping import (
    TransformKind,
    Transform,
    FieldMap,
    TypeMap,
    EntityMapEntry,
)
from .migration import (
    MigrationConfig,
    MigrationOptions,
    MigrationRun,
    MigrationStatus,
    EntityMigrationResult,
    BatchSummary,
    ValidationOutcome,
    ProgressUpdate,
    BatchCompleteEvent,
    SourceSettings,
    TargetSettings,
)
from .record import (
    SourceRecord,
    MappedRecord,
    MigrationResult,
    RecordDetail,
    RecordError,
    RecordStatus,
)

__all__ = [
    "EntityType",
    "TABLE_NAMES",
    "MIGRATION_ORDER",
    "TransformKind",
    "Transform",
    "FieldMap",
    "TypeMap",
    "EntityMapEntry",
    "MigrationConfig",
    "MigrationOptions",
    "MigrationRun",
    "MigrationStatus",
    "EntityMigrationResult",
    "BatchSummary",
    "ValidationOutcome",
    "ProgressUpdate",
    "BatchCompleteEvent",
    "SourceSettings",
    "TargetSettings",
    "SourceRecord",
    "MappedRecord",
    "MigrationResult",
    "RecordDetail",
    "RecordError",
    "RecordStatus",
]

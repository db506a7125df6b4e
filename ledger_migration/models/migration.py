"""Migration execution models."""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
import uuid

from .record import MigrationResult


class MigrationStatus(str, Enum):
    """Status of an entity-type migration."""
    PENDING = "pending"
    COUNTING = "counting"
    BATCHING = "batching"
    VALIDATING = "validating"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BatchSummary:
    """Outcome of one fetched batch."""
    batch_number: int
    offset: int
    limit: int
    fetched: int = 0
    migrated: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_number": self.batch_number,
            "offset": self.offset,
            "limit": self.limit,
            "fetched": self.fetched,
            "migrated": self.migrated,
            "skipped": self.skipped,
            "errors": self.errors,
        }


@dataclass
class ValidationOutcome:
    """Advisory post-run comparison of processed records against the source count."""
    expected: int
    actual: int
    passed: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expected": self.expected,
            "actual": self.actual,
            "passed": self.passed,
            "message": self.message,
        }


@dataclass
class EntityMigrationResult:
    """Aggregate result for one entity type across all of its batches."""
    entity_type: str
    status: MigrationStatus = MigrationStatus.PENDING
    source_count: int = 0
    total_batches: int = 0
    batches: List[BatchSummary] = field(default_factory=list)
    result: Optional[MigrationResult] = None
    validation: Optional[ValidationOutcome] = None
    degraded: bool = False
    fatal_error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.result is None:
            self.result = MigrationResult(entity_type=self.entity_type)

    @property
    def migrated(self) -> int:
        return self.result.migrated

    @property
    def skipped(self) -> int:
        return self.result.skipped

    @property
    def error_count(self) -> int:
        return self.result.error_count

    @property
    def success(self) -> bool:
        return self.status == MigrationStatus.COMPLETED

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "entity_type": self.entity_type,
            "status": self.status.value,
            "success": self.success,
            "source_count": self.source_count,
            "total_batches": self.total_batches,
            "batches_processed": len(self.batches),
            "migrated": self.migrated,
            "skipped": self.skipped,
            "errors": [e.to_dict() for e in self.result.errors],
            "details": [d.to_dict() for d in self.result.details],
            "batches": [b.to_dict() for b in self.batches],
            "validation": self.validation.to_dict() if self.validation else None,
            "degraded": self.degraded,
            "fatal_error": self.fatal_error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class MigrationRun:
    """A complete full-catalog migration run."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    source_system: str = "QBO"
    dry_run: bool = False
    status: MigrationStatus = MigrationStatus.PENDING

    # Timing
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Per-entity results in execution order
    entities: List[EntityMigrationResult] = field(default_factory=list)

    # Statistics
    total_migrated: int = 0
    total_skipped: int = 0
    total_errors: int = 0
    failed_entities: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed_entities and self.total_errors == 0

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def add_entity_result(self, entity_result: EntityMigrationResult) -> None:
        """Append one entity type's result and refresh the totals."""
        self.entities.append(entity_result)
        self.update_totals()

    def get_entity_result(self, entity_type: str) -> Optional[EntityMigrationResult]:
        """Get the result for an entity type by name."""
        for entity_result in self.entities:
            if entity_result.entity_type == entity_type:
                return entity_result
        return None

    def update_totals(self) -> None:
        """Update total statistics from entity results."""
        self.total_migrated = sum(e.migrated for e in self.entities)
        self.total_skipped = sum(e.skipped for e in self.entities)
        self.total_errors = sum(e.error_count for e in self.entities)
        self.failed_entities = [
            e.entity_type for e in self.entities if e.status == MigrationStatus.FAILED
        ]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "source_system": self.source_system,
            "dry_run": self.dry_run,
            "status": self.status.value,
            "success": self.success,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "summary": {
                "total_migrated": self.total_migrated,
                "total_skipped": self.total_skipped,
                "total_errors": self.total_errors,
                "failed_entities": self.failed_entities,
            },
            "entities": [e.to_dict() for e in self.entities],
        }


@dataclass
class ProgressUpdate:
    """Payload of the per-batch progress callback."""
    entity_type: str
    batch_number: int
    total_batches: int
    processed: int
    total: int
    migrated: int
    skipped: int
    errors: int

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 100.0
        return min(100.0, 100.0 * self.processed / self.total)


@dataclass
class BatchCompleteEvent:
    """Payload of the batch-complete callback."""
    entity_type: str
    batch_number: int
    result: MigrationResult


@dataclass
class MigrationOptions:
    """Per-call options for migrate_all."""
    entities: Optional[List[str]] = None  # allow-list; None means all
    stop_on_error: bool = False
    order: Optional[List[str]] = None


@dataclass
class SourceSettings:
    """Source connector settings."""
    type: str = "mcp"  # mcp | file
    url: Optional[str] = None
    token: Optional[str] = None
    export_dir: Optional[str] = None
    timeout: float = 120.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "url": self.url,
            "export_dir": self.export_dir,
            "timeout": self.timeout,
        }


@dataclass
class TargetSettings:
    """Target store settings."""
    type: str = "rest"  # rest | memory
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    api_role: Optional[str] = None
    rate_limit: Optional[float] = None  # Requests per second
    timeout: float = 30.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "base_url": self.base_url,
            "api_role": self.api_role,
            "rate_limit": self.rate_limit,
            "timeout": self.timeout,
        }


@dataclass
class MigrationConfig:
    """Configuration for a migration."""
    source_system: str = "QBO"

    source: SourceSettings = field(default_factory=SourceSettings)
    target: TargetSettings = field(default_factory=TargetSettings)

    # Execution options
    batch_size: int = 400
    batch_threshold: int = 400
    validation_tolerance: float = 0.99
    entities: Optional[List[str]] = None
    stop_on_error: bool = False
    use_builtin_rules: bool = True
    dry_run: bool = False

    # Output
    output_dir: str = "./data"
    save_report: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (secrets omitted)."""
        return {
            "source_system": self.source_system,
            "source": self.source.to_dict(),
            "target": self.target.to_dict(),
            "batch_size": self.batch_size,
            "batch_threshold": self.batch_threshold,
            "validation_tolerance": self.validation_tolerance,
            "entities": self.entities,
            "stop_on_error": self.stop_on_error,
            "use_builtin_rules": self.use_builtin_rules,
            "dry_run": self.dry_run,
            "output_dir": self.output_dir,
            "save_report": self.save_report,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation."""
        source_data = data.get("source", {})
        source = SourceSettings(
            type=source_data.get("type", "mcp"),
            url=source_data.get("url"),
            token=source_data.get("token") or os.environ.get("QBO_MCP_TOKEN"),
            export_dir=source_data.get("export_dir"),
            timeout=source_data.get("timeout", 120.0),
        )

        target_data = data.get("target", {})
        target = TargetSettings(
            type=target_data.get("type", "rest"),
            base_url=target_data.get("base_url"),
            api_key=target_data.get("api_key") or os.environ.get("TARGET_API_KEY"),
            api_role=target_data.get("api_role"),
            rate_limit=target_data.get("rate_limit"),
            timeout=target_data.get("timeout", 30.0),
        )

        return cls(
            source_system=data.get("source_system", "QBO"),
            source=source,
            target=target,
            batch_size=data.get("batch_size", 400),
            batch_threshold=data.get("batch_threshold", 400),
            validation_tolerance=data.get("validation_tolerance", 0.99),
            entities=data.get("entities"),
            stop_on_error=data.get("stop_on_error", False),
            use_builtin_rules=data.get("use_builtin_rules", True),
            dry_run=data.get("dry_run", False),
            output_dir=data.get("output_dir", "./data"),
            save_report=data.get("save_report", True),
        )

    @classmethod
    def from_json_file(cls, path: str) -> "MigrationConfig":
        """Load configuration from a JSON file."""
        with open(path) as f:
            return cls.from_dict(json.load(f))

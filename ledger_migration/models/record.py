"""Record models for migration data."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum


class RecordStatus(str, Enum):
    """Outcome of processing one source record."""
    CREATED = "created"
    SKIPPED = "skipped"
    ERROR = "error"


def get_nested_value(data: Any, path: str) -> Any:
    """
    Traverse a dot-separated path through nested dicts (and list indexes).

    Any missing intermediate yields None rather than an exception.
    """
    if not path or data is None:
        return None
    value: Any = data
    for part in path.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        elif isinstance(value, list) and part.isdigit():
            idx = int(part)
            value = value[idx] if idx < len(value) else None
        else:
            return None
        if value is None:
            return None
    return value


@dataclass(frozen=True)
class SourceRecord:
    """A raw record read from the source system. Never mutated by the engine."""
    id: str
    entity_type: str
    data: Dict[str, Any]

    def get_field(self, path: str, default: Any = None) -> Any:
        """Get a field value by dot-notation path (e.g., 'CustomerRef.value')."""
        value = get_nested_value(self.data, path)
        return default if value is None else value

    @property
    def display_name(self) -> Optional[str]:
        """Best human-readable label for error and detail reporting."""
        for key in ("DisplayName", "Name", "DocNumber", "PaymentRefNum"):
            if self.data.get(key):
                return str(self.data[key])
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "data": self.data,
        }


@dataclass
class MappedRecord:
    """A target-shaped record, or a skip sentinel carrying the reason."""
    entity_type: str
    source_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    skipped: bool = False
    skip_reason: Optional[str] = None

    @classmethod
    def skip(cls, entity_type: str, source_id: str, reason: str) -> "MappedRecord":
        return cls(entity_type=entity_type, source_id=source_id, skipped=True, skip_reason=reason)

    def get(self, target_field: str, default: Any = None) -> Any:
        return self.data.get(target_field, default)

    def to_dict(self) -> Dict[str, Any]:
        if self.skipped:
            return {"skipped": True, "reason": self.skip_reason, "source_id": self.source_id}
        return dict(self.data)


@dataclass
class RecordDetail:
    """One entry of the per-record details log."""
    entity_type: str
    source_id: str
    status: RecordStatus
    target_id: Optional[str] = None
    name: Optional[str] = None
    reason: Optional[str] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "type": self.entity_type,
            "sourceId": self.source_id,
            "status": self.status.value,
        }
        if self.target_id is not None:
            result["targetId"] = self.target_id
        if self.name is not None:
            result["name"] = self.name
        if self.reason is not None:
            result["reason"] = self.reason
        result.update(self.extras)
        return result


@dataclass
class RecordError:
    """A record that failed to migrate."""
    entity_type: str
    source_id: str
    error: str
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.entity_type,
            "sourceId": self.source_id,
            "name": self.name,
            "error": self.error,
        }


@dataclass
class MigrationResult:
    """Counts, errors and details for one batch (or an aggregate of batches)."""
    entity_type: str
    migrated: int = 0
    skipped: int = 0
    errors: List[RecordError] = field(default_factory=list)
    details: List[RecordDetail] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def processed(self) -> int:
        return self.migrated + self.skipped + self.error_count

    @property
    def success(self) -> bool:
        return not self.errors

    def add_created(
        self,
        source_id: str,
        target_id: str,
        name: Optional[str] = None,
        **extras: Any
    ) -> None:
        """Record a newly created target record."""
        self.migrated += 1
        self.details.append(RecordDetail(
            entity_type=self.entity_type,
            source_id=source_id,
            status=RecordStatus.CREATED,
            target_id=target_id,
            name=name,
            extras=extras,
        ))

    def add_skipped(
        self,
        source_id: str,
        reason: str,
        target_id: Optional[str] = None,
        name: Optional[str] = None
    ) -> None:
        """Record a skipped source record with a human-readable reason."""
        self.skipped += 1
        self.details.append(RecordDetail(
            entity_type=self.entity_type,
            source_id=source_id,
            status=RecordStatus.SKIPPED,
            target_id=target_id,
            name=name,
            reason=reason,
        ))

    def add_error(self, source_id: str, error: str, name: Optional[str] = None) -> None:
        """Record a failed source record; it counts as neither migrated nor skipped."""
        self.errors.append(RecordError(
            entity_type=self.entity_type,
            source_id=source_id,
            error=error,
            name=name,
        ))
        self.details.append(RecordDetail(
            entity_type=self.entity_type,
            source_id=source_id,
            status=RecordStatus.ERROR,
            name=name,
            reason=error,
        ))

    def merge(self, other: "MigrationResult") -> None:
        """Fold another result (e.g. the next batch) into this one."""
        self.migrated += other.migrated
        self.skipped += other.skipped
        self.errors.extend(other.errors)
        self.details.extend(other.details)

    def details_with_status(self, status: RecordStatus) -> List[RecordDetail]:
        return [d for d in self.details if d.status == status]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "entity_type": self.entity_type,
            "success": self.success,
            "migrated": self.migrated,
            "skipped": self.skipped,
            "errors": [e.to_dict() for e in self.errors],
            "details": [d.to_dict() for d in self.details],
        }

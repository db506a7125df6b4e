"""Mapping rule models: field maps, type maps, transforms and the identity ledger."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class TransformKind(str, Enum):
    """Closed set of value transforms a field map may name."""
    DIRECT = "direct"
    STRING = "string"
    FLOAT = "float"
    INT = "int"
    BOOL = "bool"
    DATE = "date"
    ADDRESS = "address"
    STATUS = "status"  # boolean -> Active/Inactive
    LOOKUP = "lookup"  # arg: type-map category
    ENTITY = "entity"  # arg: referenced entity type
    INVOICE_STATUS = "invoicestatus"
    BILL_STATUS = "billstatus"
    JOURNAL_ENTRY_STATUS = "journalentrystatus"


@dataclass(frozen=True)
class Transform:
    """A transform kind plus its typed argument (category or entity type)."""
    kind: TransformKind = TransformKind.DIRECT
    arg: Optional[str] = None

    @classmethod
    def parse(cls, text: Optional[str]) -> "Transform":
        """Parse the stored ``kind:arg`` form of a transform."""
        if not text:
            return cls()

        kind_text, _, arg = str(text).partition(":")
        try:
            kind = TransformKind(kind_text.strip().lower())
        except ValueError:
            logger.warning(f"Unknown transform '{text}', using direct copy")
            return cls()

        return cls(kind=kind, arg=arg.strip() or None)

    def __str__(self) -> str:
        if self.kind == TransformKind.DIRECT:
            return ""
        return f"{self.kind.value}:{self.arg}" if self.arg else self.kind.value


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


@dataclass
class FieldMap:
    """Maps one source field path onto one target field."""
    source_system: str
    entity_type: str
    source_field: str
    target_field: str
    transform: Transform = field(default_factory=Transform)
    default_value: Optional[str] = None
    is_required: bool = False
    sort_order: int = 0
    is_active: bool = True

    def to_row(self) -> Dict[str, Any]:
        """Convert to a mapping-store row."""
        return {
            "SourceSystem": self.source_system,
            "EntityType": self.entity_type,
            "SourceField": self.source_field,
            "TargetField": self.target_field,
            "Transform": str(self.transform) or None,
            "DefaultValue": self.default_value,
            "IsRequired": self.is_required,
            "SortOrder": self.sort_order,
            "IsActive": self.is_active,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "FieldMap":
        """Create from a mapping-store row."""
        return cls(
            source_system=row.get("SourceSystem", ""),
            entity_type=row.get("EntityType", ""),
            source_field=row.get("SourceField", ""),
            target_field=row.get("TargetField", ""),
            transform=Transform.parse(row.get("Transform")),
            default_value=row.get("DefaultValue"),
            is_required=_as_bool(row.get("IsRequired", False)),
            sort_order=int(row.get("SortOrder") or 0),
            is_active=_as_bool(row.get("IsActive", True)),
        )


@dataclass
class TypeMap:
    """Translates one source vocabulary value within a category."""
    source_system: str
    category: str
    source_value: str
    target_value: str
    is_default: bool = False
    is_active: bool = True

    def to_row(self) -> Dict[str, Any]:
        return {
            "SourceSystem": self.source_system,
            "Category": self.category,
            "SourceValue": self.source_value,
            "TargetValue": self.target_value,
            "IsDefault": self.is_default,
            "IsActive": self.is_active,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TypeMap":
        return cls(
            source_system=row.get("SourceSystem", ""),
            category=row.get("Category", ""),
            source_value=row.get("SourceValue", ""),
            target_value=row.get("TargetValue", ""),
            is_default=_as_bool(row.get("IsDefault", False)),
            is_active=_as_bool(row.get("IsActive", True)),
        )


@dataclass
class EntityMapEntry:
    """One row of the identity ledger: source id -> target id."""
    source_system: str
    entity_type: str
    source_id: str
    target_id: str
    source_data: Optional[Dict[str, Any]] = None
    migrated_at: datetime = field(default_factory=datetime.utcnow)

    def to_row(self) -> Dict[str, Any]:
        """Convert to a mapping-store row (snapshot serialized as JSON)."""
        return {
            "SourceSystem": self.source_system,
            "EntityType": self.entity_type,
            "SourceId": self.source_id,
            "TargetId": self.target_id,
            "SourceData": json.dumps(self.source_data, default=str) if self.source_data is not None else None,
            "MigratedAt": self.migrated_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "EntityMapEntry":
        source_data = row.get("SourceData")
        if isinstance(source_data, str):
            try:
                source_data = json.loads(source_data)
            except ValueError:
                source_data = None

        migrated_at = row.get("MigratedAt")
        if isinstance(migrated_at, str):
            try:
                migrated_at = datetime.fromisoformat(migrated_at)
            except ValueError:
                migrated_at = None

        return cls(
            source_system=row.get("SourceSystem", ""),
            entity_type=row.get("EntityType", ""),
            source_id=str(row.get("SourceId", "")),
            target_id=str(row.get("TargetId", "")),
            source_data=source_data,
            migrated_at=migrated_at or datetime.utcnow(),
        )

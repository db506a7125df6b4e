"""Per-run migration context holding every cache the mapper uses."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from ..models.mapping import FieldMap, TypeMap

# Cache key: (entity type name, source id)
EntityKey = Tuple[str, str]


@dataclass
class MigrationContext:
    """
    Caches scoped to one migration run.

    The orchestrator owns one context and hands it to the mapper, so
    independent runs (and tests) never share cached state. For the
    entity-lookup and migrated-flag caches a missing key means "never
    checked" while a ``None`` value means "checked, not found".
    ``name_checked`` holds the keys whose name fallback has also been tried;
    a ``None`` outside it only covers the source-column and ledger tiers.
    """
    source_system: str = "QBO"
    field_maps: Dict[str, List[FieldMap]] = field(default_factory=dict)
    type_maps: Dict[str, List[TypeMap]] = field(default_factory=dict)
    configs: Optional[Dict[str, str]] = None
    entity_lookup: Dict[EntityKey, Optional[str]] = field(default_factory=dict)
    migrated: Dict[EntityKey, Optional[str]] = field(default_factory=dict)
    name_checked: Set[EntityKey] = field(default_factory=set)
    account_codes: Optional[Set[str]] = None

    @staticmethod
    def key(entity_type: str, source_id: str) -> EntityKey:
        return (str(entity_type), str(source_id))

    def remember(self, entity_type: str, source_id: str, target_id: Optional[str]) -> None:
        """Cache an identity outcome in both the lookup and migrated-flag caches."""
        key = self.key(entity_type, source_id)
        self.entity_lookup[key] = target_id
        self.migrated[key] = target_id

    def clear(self) -> None:
        """Drop every cache, e.g. before a new full-catalog run."""
        self.field_maps.clear()
        self.type_maps.clear()
        self.configs = None
        self.entity_lookup.clear()
        self.migrated.clear()
        self.name_checked.clear()
        self.account_codes = None

"""Rule-driven mapper: transforms source records and resolves cross-system identity."""

import logging
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from ..loaders.base import ReadQuery, TargetStore, TargetStoreError
from ..models.entities import EntityType
from ..models.mapping import EntityMapEntry, FieldMap, Transform, TransformKind, TypeMap
from ..models.record import MappedRecord, SourceRecord, get_nested_value
from .coercion import (
    format_address,
    is_blank,
    to_bool,
    to_date_string,
    to_float,
    to_int,
)
from .context import MigrationContext
from .defaults import default_configs, default_field_maps, default_type_maps
from .mapping_store import MappingStore

logger = logging.getLogger(__name__)

RecordLike = Union[SourceRecord, Dict[str, Any]]

ACCOUNT_CODE_RANGES = {
    "Asset": (1000, 1999),
    "Liability": (2000, 2999),
    "Equity": (3000, 3999),
    "Revenue": (4000, 4999),
    "Expense": (5000, 9999),
}


def generate_account_code(
    account_type: Optional[str],
    existing_codes: Iterable[Any] = (),
    start: int = 1000
) -> str:
    """
    Pick the first unused account code in the type's range.

    Unknown types use ``start`` .. ``start + 999``. When the range is full
    the code just past its end is returned.
    """
    range_start, range_end = ACCOUNT_CODE_RANGES.get(account_type or "", (start, start + 999))

    used: Set[int] = set()
    for code in existing_codes:
        try:
            used.add(int(str(code).strip()))
        except (TypeError, ValueError):
            continue

    for code in range(range_start, range_end + 1):
        if code not in used:
            return str(code)
    return str(range_end + 1)


def entity_name(entity_type: Union[str, EntityType]) -> str:
    return entity_type.value if isinstance(entity_type, EntityType) else str(entity_type)


def table_for(entity_type: Union[str, EntityType]) -> str:
    """Target table for an entity type; unknown names fall back to a plural."""
    try:
        return EntityType.parse(entity_type).table
    except ValueError:
        return f"{entity_name(entity_type).lower()}s"


class Mapper:
    """
    Translates source records into target-shaped records using stored rules.

    Supports:
    - Lazily cached field maps, type maps and configs
    - A closed set of value transforms dispatched by TransformKind
    - Three-tier identity resolution with memoized outcomes
    - Batched identity preloading with negative caching
    - Identity ledger writes
    """

    def __init__(
        self,
        target: TargetStore,
        context: Optional[MigrationContext] = None,
        mapping_store: Optional[MappingStore] = None,
        use_builtin_rules: bool = True
    ):
        """
        Initialize the mapper.

        Args:
            target: Target store used for identity lookups
            context: Run context owning all caches
            mapping_store: Store holding rules and the identity ledger
            use_builtin_rules: Fall back to built-in rules when the store has none
        """
        self.target = target
        self.context = context or MigrationContext()
        self.mapping_store = mapping_store or MappingStore(target)
        self.use_builtin_rules = use_builtin_rules
        self._transforms = self._register_builtin_transforms()

    @property
    def source_system(self) -> str:
        return self.context.source_system

    def _register_builtin_transforms(self) -> Dict[TransformKind, Callable]:
        """Register all built-in transformation functions."""
        return {
            TransformKind.DIRECT: self._transform_direct,
            TransformKind.STRING: self._transform_string,
            TransformKind.FLOAT: self._transform_float,
            TransformKind.INT: self._transform_int,
            TransformKind.BOOL: self._transform_bool,
            TransformKind.DATE: self._transform_date,
            TransformKind.ADDRESS: self._transform_address,
            TransformKind.STATUS: self._transform_status,
            TransformKind.LOOKUP: self._transform_lookup,
            TransformKind.ENTITY: self._transform_entity,
            TransformKind.INVOICE_STATUS: self._transform_invoice_status,
            TransformKind.BILL_STATUS: self._transform_bill_status,
            TransformKind.JOURNAL_ENTRY_STATUS: self._transform_journal_entry_status,
        }

    # Rule loading

    async def get_field_maps(self, entity_type: Union[str, EntityType]) -> List[FieldMap]:
        """Active field maps for an entity type, ordered by sort order."""
        name = entity_name(entity_type)
        if name not in self.context.field_maps:
            try:
                field_maps = await self.mapping_store.load_field_maps(self.source_system, name)
            except TargetStoreError as e:
                logger.warning(f"Could not load field maps for {name}: {e}")
                field_maps = []

            if not field_maps and self.use_builtin_rules:
                field_maps = default_field_maps(self.source_system, name)
                if field_maps:
                    logger.info(f"No stored field maps for {name}, using built-in rules")

            self.context.field_maps[name] = field_maps
        return self.context.field_maps[name]

    async def get_type_maps(self, category: str) -> List[TypeMap]:
        """Active type maps for a category."""
        if category not in self.context.type_maps:
            try:
                type_maps = await self.mapping_store.load_type_maps(self.source_system, category)
            except TargetStoreError as e:
                logger.warning(f"Could not load type maps for {category}: {e}")
                type_maps = []

            if not type_maps and self.use_builtin_rules:
                type_maps = default_type_maps(self.source_system, category)

            self.context.type_maps[category] = type_maps
        return self.context.type_maps[category]

    async def get_config(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Config value by key; stored values override built-in ones."""
        if self.context.configs is None:
            try:
                stored = await self.mapping_store.load_configs(self.source_system)
            except TargetStoreError as e:
                logger.warning(f"Could not load migration configs: {e}")
                stored = {}

            configs = default_configs() if self.use_builtin_rules else {}
            configs.update(stored)
            self.context.configs = configs

        value = self.context.configs.get(key)
        return default if value is None else value

    # Transforms

    @staticmethod
    def get_nested_value(record: RecordLike, path: str) -> Any:
        data = record.data if isinstance(record, SourceRecord) else record
        return get_nested_value(data, path)

    async def apply_transform(
        self,
        value: Any,
        transform: Union[Transform, str, None],
        record: RecordLike,
        field_map: Optional[FieldMap] = None
    ) -> Any:
        """
        Apply one named transform to a value.

        Args:
            value: Source value (never None when called from map_entity)
            transform: Transform, or its stored ``kind:arg`` text
            record: The whole source record, for record-derived fields
            field_map: The rule being applied, if any

        Returns:
            Transformed value
        """
        if not isinstance(transform, Transform):
            transform = Transform.parse(transform)
        handler = self._transforms.get(transform.kind, self._transform_direct)
        return await handler(value, transform.arg, record, field_map)

    async def _transform_direct(self, value, arg, record, field_map):
        return value

    async def _transform_string(self, value, arg, record, field_map):
        return str(value) if value is not None else None

    async def _transform_float(self, value, arg, record, field_map):
        return to_float(value)

    async def _transform_int(self, value, arg, record, field_map):
        return to_int(value)

    async def _transform_bool(self, value, arg, record, field_map):
        return to_bool(value)

    async def _transform_date(self, value, arg, record, field_map):
        return to_date_string(value)

    async def _transform_address(self, value, arg, record, field_map):
        return format_address(value)

    async def _transform_status(self, value, arg, record, field_map):
        return "Active" if value is True or str(value).lower() == "true" else "Inactive"

    async def _transform_lookup(self, value, arg, record, field_map):
        if not arg:
            return value
        return await self.lookup_type_map(arg, value)

    async def _transform_entity(self, value, arg, record, field_map):
        if not arg:
            logger.warning("Entity transform without a target entity type, copying value")
            return value

        ref_name = None
        if field_map and field_map.source_field:
            ref_name = self.get_nested_value(record, field_map.source_field.replace(".value", ".name"))
        return await self.lookup_entity(arg, str(value), ref_name)

    async def _transform_invoice_status(self, value, arg, record, field_map):
        data = record.data if isinstance(record, SourceRecord) else record
        return self.calculate_invoice_status(data)

    async def _transform_bill_status(self, value, arg, record, field_map):
        data = record.data if isinstance(record, SourceRecord) else record
        return self.calculate_bill_status(data)

    async def _transform_journal_entry_status(self, value, arg, record, field_map):
        return await self.lookup_type_map("JournalEntryStatus", str(value).lower())

    async def lookup_type_map(self, category: str, source_value: Any) -> Any:
        """Exact match, else the category's default row, else the raw value."""
        type_maps = await self.get_type_maps(category)

        if source_value is not None:
            text = str(source_value)
            for type_map in type_maps:
                if type_map.source_value == source_value or type_map.source_value == text:
                    return type_map.target_value

        for type_map in type_maps:
            if type_map.is_default:
                return type_map.target_value

        return source_value

    @staticmethod
    def calculate_invoice_status(data: Dict[str, Any], today: Optional[date] = None) -> str:
        """Invoice status derived from balance, total and due date."""
        balance = to_float(data.get("Balance"))
        total = to_float(data.get("TotalAmt"))

        if balance == 0 and total > 0:
            return "Paid"
        if 0 < balance < total:
            return "Partial"

        due_date = to_date_string(data.get("DueDate"))
        if due_date and due_date < (today or date.today()).isoformat():
            return "Overdue"

        return "Sent"

    @staticmethod
    def calculate_bill_status(data: Dict[str, Any]) -> str:
        """Bill status derived from balance and total."""
        balance = to_float(data.get("Balance"))
        total = to_float(data.get("TotalAmt"))

        if balance == 0 and total > 0:
            return "Paid"
        if 0 < balance < total:
            return "Partial"

        return "Open"

    @staticmethod
    def _coerce_default(field_map: FieldMap) -> Any:
        value = field_map.default_value
        kind = field_map.transform.kind
        if kind == TransformKind.FLOAT:
            return to_float(value)
        if kind == TransformKind.INT:
            return to_int(value)
        if kind == TransformKind.BOOL:
            return to_bool(value)
        return value

    async def map_entity(self, entity_type: Union[str, EntityType], record: RecordLike) -> MappedRecord:
        """
        Map one source record through the entity type's ordered field maps.

        A field already set by an earlier rule is not overwritten. A missing
        required field yields a skip sentinel, not an error.

        Args:
            entity_type: Entity type being mapped
            record: Source record (or its raw dict)

        Returns:
            MappedRecord with target fields, or a skip sentinel
        """
        name = entity_name(entity_type)
        if isinstance(record, SourceRecord):
            source_id = str(record.id)
        else:
            source_id = str(record.get("Id", ""))

        result: Dict[str, Any] = {
            "SourceSystem": self.source_system,
            "SourceId": source_id,
        }

        for field_map in await self.get_field_maps(name):
            if result.get(field_map.target_field) is not None:
                continue

            value = self.get_nested_value(record, field_map.source_field)
            if value is not None:
                value = await self.apply_transform(value, field_map.transform, record, field_map)

            if is_blank(value) and not is_blank(field_map.default_value):
                value = self._coerce_default(field_map)

            if field_map.is_required and is_blank(value):
                return MappedRecord.skip(name, source_id, f"Required field missing: {field_map.source_field}")

            if value is not None:
                result[field_map.target_field] = value

        return MappedRecord(entity_type=name, source_id=source_id, data=result)

    # Identity resolution

    async def _find_by_source_columns(self, table: str, source_id: str) -> Optional[str]:
        try:
            rows = await self.target.read(table, ReadQuery(
                filter={"SourceSystem": self.source_system, "SourceId": str(source_id)},
                select=["Id"],
                first=1,
            ))
        except TargetStoreError as e:
            logger.debug(f"Source-column lookup on {table} failed: {e}")
            return None
        if rows and rows[0].get("Id") is not None:
            return str(rows[0]["Id"])
        return None

    async def _find_in_ledger(self, name: str, source_id: str) -> Optional[str]:
        try:
            return await self.mapping_store.find_entity_map(self.source_system, name, source_id)
        except TargetStoreError as e:
            logger.debug(f"Ledger lookup for {name}:{source_id} failed: {e}")
            return None

    async def _find_by_name(self, table: str, name: str, display_name: str) -> Optional[str]:
        try:
            rows = await self.target.read(table, ReadQuery(
                filter={"Name": str(display_name)},
                select=["Id"],
                first=1,
            ))
        except TargetStoreError as e:
            logger.debug(f"Name lookup on {table} failed: {e}")
            return None
        if rows and rows[0].get("Id") is not None:
            logger.info(f"Found {name} by name fallback: {display_name}")
            return str(rows[0]["Id"])
        return None

    async def lookup_entity(
        self,
        entity_type: Union[str, EntityType],
        source_id: Any,
        fallback_name: Optional[str] = None
    ) -> Optional[str]:
        """
        Resolve a source id to a target id.

        Tries the target table's source-tracking columns, then the identity
        ledger, then (only with a fallback name) a name match. Every outcome,
        including "not found", is memoized. A "not found" cached by a preload
        still gets one name match when a fallback name is supplied. Query
        failures count as "not found".
        """
        if is_blank(source_id):
            return None

        name = entity_name(entity_type)
        key = self.context.key(name, source_id)
        table = table_for(name)

        if key in self.context.entity_lookup:
            target_id = self.context.entity_lookup[key]
            if target_id is not None or not fallback_name or key in self.context.name_checked:
                return target_id
        else:
            target_id = await self._find_by_source_columns(table, str(source_id))
            if target_id is None:
                target_id = await self._find_in_ledger(name, str(source_id))

        if target_id is None and fallback_name:
            target_id = await self._find_by_name(table, name, fallback_name)
            self.context.name_checked.add(key)

        self.context.entity_lookup[key] = target_id
        return target_id

    async def preload_entity_lookups(
        self,
        entity_type: Union[str, EntityType],
        source_ids: Iterable[Any]
    ) -> int:
        """
        Resolve many source ids with batched queries and fill both caches.

        Ids not found are cached as "checked, not found" so the per-record
        loop never queries for them again.

        Returns:
            Number of ids resolved to a target id
        """
        name = entity_name(entity_type)
        ids = list(dict.fromkeys(str(i) for i in source_ids if not is_blank(i)))
        uncached = [i for i in ids if self.context.key(name, i) not in self.context.entity_lookup]
        if not uncached:
            return 0

        found: Dict[str, str] = {}
        table = table_for(name)
        try:
            rows = await self.target.read_any_of(
                table,
                {"SourceSystem": self.source_system},
                "SourceId",
                uncached,
                select=["Id", "SourceId"],
            )
            for row in rows:
                if row.get("SourceId") is not None and row.get("Id") is not None:
                    found[str(row["SourceId"])] = str(row["Id"])
        except TargetStoreError as e:
            logger.debug(f"Preload on {table} failed, using ledger only: {e}")

        ledger_checked = True
        remaining = [i for i in uncached if i not in found]
        if remaining:
            try:
                found.update(await self.mapping_store.find_entity_maps(self.source_system, name, remaining))
            except TargetStoreError as e:
                ledger_checked = False
                logger.warning(f"Ledger preload for {name} failed: {e}")

        for source_id in uncached:
            key = self.context.key(name, source_id)
            if source_id in found:
                self.context.remember(name, source_id, found[source_id])
            elif ledger_checked:
                self.context.entity_lookup[key] = None
                self.context.migrated.setdefault(key, None)

        logger.info(f"Preloaded {len(found)}/{len(uncached)} {name} lookups")
        return len(found)

    async def record_migration(
        self,
        entity_type: Union[str, EntityType],
        source_id: Any,
        target_id: str,
        source_snapshot: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Append an identity-ledger row for a migrated (or matched) record.

        Caches are updated before the write so later records in the same
        batch resolve against them. An existing row counts as success.
        """
        name = entity_name(entity_type)
        self.context.remember(name, str(source_id), str(target_id))

        entry = EntityMapEntry(
            source_system=self.source_system,
            entity_type=name,
            source_id=str(source_id),
            target_id=str(target_id),
            source_data=source_snapshot,
        )
        try:
            result = await self.mapping_store.insert_entity_map(entry)
        except TargetStoreError as e:
            logger.warning(f"Could not record migration for {name}:{source_id}: {e}")
            return

        if result.conflict:
            logger.debug(f"Migration record already exists for {name}:{source_id}")
        elif result.error:
            logger.warning(f"Could not record migration for {name}:{source_id}: {result.error}")

    async def was_already_migrated(
        self,
        entity_type: Union[str, EntityType],
        source_id: Any
    ) -> Optional[str]:
        """Target id if this source record was migrated before, else None."""
        name = entity_name(entity_type)
        key = self.context.key(name, source_id)
        if key in self.context.migrated:
            return self.context.migrated[key]

        target_id = await self._find_by_source_columns(table_for(name), str(source_id))
        if target_id is None:
            target_id = await self._find_in_ledger(name, str(source_id))

        self.context.migrated[key] = target_id
        return target_id

    def clear_cache(self) -> None:
        """Drop all cached rules and identity outcomes."""
        self.context.clear()

    # Account codes

    async def load_account_codes(self) -> Set[str]:
        """Codes already used in the accounts table (loaded once per run)."""
        if self.context.account_codes is None:
            try:
                rows = await self.target.read(EntityType.ACCOUNT.table, ReadQuery(select=["Code"]))
            except TargetStoreError as e:
                logger.warning(f"Could not load existing account codes: {e}")
                rows = []
            self.context.account_codes = {str(row["Code"]) for row in rows if row.get("Code")}
        return self.context.account_codes

    async def assign_account_code(self, account_type: Optional[str]) -> str:
        """Generate and reserve the next free code for an account type."""
        codes = await self.load_account_codes()
        start = to_int(await self.get_config("DefaultAccountCodeStart", "1000")) or 1000
        code = generate_account_code(account_type, codes, start)
        codes.add(code)
        return code

    async def reserve_account_code(self, code: Any) -> None:
        """Mark an explicit source code as used."""
        if not is_blank(code):
            codes = await self.load_account_codes()
            codes.add(str(code))

"""Generic per-batch migration algorithm."""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..loaders.base import RecordCreateError, TargetStore, TargetStoreError
from ..models.record import MigrationResult, SourceRecord
from ..services.coercion import is_blank
from ..services.mapper import Mapper
from .strategies import ChildRecord, EntityStrategy

logger = logging.getLogger(__name__)

RecordCallback = Callable[[int, int], None]


class BatchExecutor:
    """
    Migrates one batch of source records of a single entity type.

    Per batch:
    - Preload identity lookups for the batch's own ids and foreign references
    - Pre-check candidate dedupe values against the target in one query
    - Per record: filter, already-migrated check, map, duplicate check,
      create, children, ledger write

    A failure on one record is recorded as an error and never stops the batch.
    """

    def __init__(self, target: TargetStore, mapper: Mapper, strategy: EntityStrategy):
        """
        Initialize the executor.

        Args:
            target: Target store receiving created records
            mapper: Mapper owning rules and identity caches
            strategy: Entity-specific hooks
        """
        self.target = target
        self.mapper = mapper
        self.strategy = strategy

    @property
    def entity_type(self) -> str:
        return self.strategy.entity_type.value

    async def execute(
        self,
        records: List[SourceRecord],
        on_record: Optional[RecordCallback] = None
    ) -> MigrationResult:
        """
        Migrate a batch.

        Args:
            records: Source records of this executor's entity type
            on_record: Optional callback(processed, total) after each record

        Returns:
            MigrationResult for this batch
        """
        result = MigrationResult(entity_type=self.entity_type)
        if not records:
            return result

        await self._preload(records)
        await self.strategy.prepare_batch(self.mapper, records)
        duplicates, checked = await self._precheck_duplicates(records)

        total = len(records)
        for index, record in enumerate(records, start=1):
            try:
                await self._migrate_record(record, result, duplicates, checked)
            except Exception as e:
                logger.error(f"Failed to migrate {self.entity_type} {record.id}: {e}")
                result.add_error(record.id, str(e), name=record.display_name)

            if on_record:
                on_record(index, total)

        logger.info(
            f"{self.entity_type} batch: {result.migrated} migrated, "
            f"{result.skipped} skipped, {result.error_count} errors"
        )
        return result

    async def _preload(self, records: List[SourceRecord]) -> None:
        """Warm the identity caches for the batch's own ids and its foreign references."""
        await self.mapper.preload_entity_lookups(self.strategy.entity_type, [r.id for r in records])
        for entity_type, source_ids in self.strategy.foreign_refs(records).items():
            await self.mapper.preload_entity_lookups(entity_type, source_ids)

    async def _precheck_duplicates(self, records: List[SourceRecord]) -> Tuple[Dict[str, str], Set[str]]:
        """Map of dedupe value -> existing target id, plus the values that were checked."""
        dedupe_key = self.strategy.dedupe_key
        if not dedupe_key:
            return {}, set()

        candidates = self.strategy.candidate_keys(records, self.mapper.source_system)
        if not candidates:
            return {}, set()

        try:
            existing = await self.target.batch_check_existing(self.strategy.table, dedupe_key, candidates)
        except TargetStoreError as e:
            logger.warning(f"Duplicate pre-check on {self.strategy.table} failed: {e}")
            return {}, set()

        if existing:
            logger.info(f"Found {len(existing)} existing {self.entity_type} records by {dedupe_key}")
        return dict(existing), set(candidates)

    async def _find_duplicate(self, value: str, duplicates: Dict[str, str], checked: Set[str]) -> Optional[str]:
        if value not in checked:
            existing = await self.target.batch_check_existing(
                self.strategy.table, self.strategy.dedupe_key, [value]
            )
            duplicates.update(existing)
            checked.add(value)
        return duplicates.get(value)

    async def _migrate_record(
        self,
        record: SourceRecord,
        result: MigrationResult,
        duplicates: Dict[str, str],
        checked: Set[str]
    ) -> None:
        strategy = self.strategy

        if await strategy.should_skip(self.mapper, record):
            logger.debug(f"Skipping {self.entity_type} {record.id}: excluded by filter")
            result.add_skipped(record.id, "Excluded by filter", name=record.display_name)
            return

        existing_id = await self.mapper.was_already_migrated(strategy.entity_type, record.id)
        if existing_id:
            logger.debug(f"Skipping {self.entity_type} {record.id}: already migrated as {existing_id}")
            result.add_skipped(record.id, "Already migrated", target_id=existing_id, name=record.display_name)
            return

        mapped = await self.mapper.map_entity(strategy.entity_type, record)
        if mapped.skipped:
            logger.debug(f"Skipping {self.entity_type} {record.id}: {mapped.skip_reason}")
            result.add_skipped(record.id, mapped.skip_reason, name=record.display_name)
            return

        strategy.assign_identifier(mapped, self.mapper.source_system)

        dedupe_value = None
        if strategy.dedupe_key and not is_blank(mapped.get(strategy.dedupe_key)):
            dedupe_value = str(mapped.get(strategy.dedupe_key))
            duplicate_id = await self._find_duplicate(dedupe_value, duplicates, checked)
            if duplicate_id:
                logger.debug(
                    f"Skipping {self.entity_type} {record.id}: "
                    f"{strategy.dedupe_key} {dedupe_value} exists as {duplicate_id}"
                )
                await self.mapper.record_migration(strategy.entity_type, record.id, duplicate_id, record.data)
                result.add_skipped(record.id, "Duplicate exists", target_id=duplicate_id, name=dedupe_value)
                return

        await strategy.before_create(self.mapper, record, mapped)

        created = await self.target.create(strategy.table, strategy.build_parent(record, mapped))
        if not created.success:
            raise RecordCreateError(strategy.table, created.error or "duplicate key")

        target_id = created.id
        if dedupe_value is not None:
            duplicates[dedupe_value] = target_id
            checked.add(dedupe_value)

        children = await strategy.build_children(self.mapper, record, mapped, target_id)
        created_children, failed = await self._create_children(record, children)

        await self.mapper.record_migration(strategy.entity_type, record.id, target_id, record.data)
        result.add_created(
            record.id,
            target_id,
            name=strategy.display_name(mapped),
            **strategy.summarize_children(record, mapped, created_children, failed),
        )

    async def _create_children(
        self,
        record: SourceRecord,
        children: List[ChildRecord]
    ) -> Tuple[List[ChildRecord], int]:
        """Create buildable children concurrently; returns (created, failed count)."""
        failed = 0
        buildable = []
        for child in children:
            if child.data is None:
                failed += 1
                logger.warning(f"{self.entity_type} {record.id}: skipped {child.table} row: {child.error}")
            else:
                buildable.append(child)

        if not buildable:
            return [], failed

        outcomes = await asyncio.gather(
            *(self.target.create(child.table, child.data) for child in buildable),
            return_exceptions=True,
        )

        created = []
        for child, outcome in zip(buildable, outcomes):
            if isinstance(outcome, BaseException):
                failed += 1
                logger.error(f"{self.entity_type} {record.id}: {child.table} create raised: {outcome}")
            elif not outcome.success:
                failed += 1
                logger.error(f"{self.entity_type} {record.id}: {child.table} create failed: {outcome.error}")
            else:
                created.append(child)
        return created, failed

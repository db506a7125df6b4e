"""Migration orchestrator - sequences entity types and batches."""

import inspect
import json
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple, Union

from .executor import BatchExecutor, get_strategy
from .extractors.base import SourceConnector, SourceResponseError
from .loaders.base import TargetStore
from .models.entities import MIGRATION_ORDER, EntityType
from .models.migration import (
    BatchCompleteEvent,
    BatchSummary,
    EntityMigrationResult,
    MigrationOptions,
    MigrationRun,
    MigrationStatus,
    ProgressUpdate,
    ValidationOutcome,
)
from .models.record import SourceRecord
from .services.context import MigrationContext
from .services.mapper import Mapper, entity_name
from .services.mapping_store import MappingStore

logger = logging.getLogger(__name__)

BATCH_SIZE = 400
BATCH_THRESHOLD = 400
VALIDATION_TOLERANCE = 0.99


def plan_batches(count: int, batch_size: int = BATCH_SIZE, threshold: int = BATCH_THRESHOLD) -> List[Tuple[int, int]]:
    """
    Partition a source count into (offset, limit) pairs.

    Counts above the threshold are split into fixed-size batches, the last
    one sized to the remainder; anything else is a single batch.
    """
    if count <= 0:
        return []
    if count <= threshold:
        return [(0, count)]

    total_batches = math.ceil(count / batch_size)
    return [
        (index * batch_size, min(batch_size, count - index * batch_size))
        for index in range(total_batches)
    ]


def save_report(run: MigrationRun, output_dir: Union[str, Path]) -> Path:
    """Write the run summary as JSON and return its path."""
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)
    filepath = directory / f"migration_report_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.json"
    with open(filepath, 'w') as f:
        json.dump(run.to_dict(), f, indent=2, default=str)
    logger.info(f"Saved migration report to {filepath}")
    return filepath


class BatchedMigrationOrchestrator:
    """
    Orchestrates migrations across entity types and batches.

    Handles:
    - Source counting and batch planning
    - Strictly sequential batches per entity type, one entity type at a time
    - Graceful degradation when the source returns an empty batch
    - Advisory count validation
    - Progress and batch-complete callbacks (plain or async)
    - Isolation of fatal failures per entity type
    """

    def __init__(
        self,
        source: SourceConnector,
        target: TargetStore,
        source_system: str = "QBO",
        batch_size: int = BATCH_SIZE,
        batch_threshold: int = BATCH_THRESHOLD,
        validation_tolerance: float = VALIDATION_TOLERANCE,
        on_progress: Optional[Callable[[ProgressUpdate], Any]] = None,
        on_batch_complete: Optional[Callable[[BatchCompleteEvent], Any]] = None,
        context: Optional[MigrationContext] = None,
        mapping_store: Optional[MappingStore] = None,
        use_builtin_rules: bool = True
    ):
        """
        Initialize the orchestrator.

        Args:
            source: Connector reading the source system
            target: Store receiving migrated records
            source_system: Source system identifier scoping rules and the ledger
            batch_size: Records per batch above the threshold
            batch_threshold: Counts above this are batched
            validation_tolerance: Fraction of expected records that must be accounted for
            on_progress: Called with a ProgressUpdate after every batch
            on_batch_complete: Called with a BatchCompleteEvent after every batch
            context: Run context owning the mapper caches
            mapping_store: Store holding rules and the identity ledger
            use_builtin_rules: Fall back to built-in rules when the store has none
        """
        self.source = source
        self.target = target
        self.batch_size = batch_size
        self.batch_threshold = batch_threshold
        self.validation_tolerance = validation_tolerance
        self.on_progress = on_progress
        self.on_batch_complete = on_batch_complete

        self.context = context or MigrationContext(source_system=source_system)
        self.mapping_store = mapping_store or MappingStore(target)
        self.mapper = Mapper(
            target,
            context=self.context,
            mapping_store=self.mapping_store,
            use_builtin_rules=use_builtin_rules,
        )

    @property
    def source_system(self) -> str:
        return self.context.source_system

    async def get_entity_count(self, entity_type: Union[str, EntityType]) -> int:
        """Number of records the source reports for an entity type."""
        return await self.source.count(EntityType.parse(entity_type))

    async def fetch_batch(
        self,
        entity_type: Union[str, EntityType],
        offset: int,
        limit: int
    ) -> List[SourceRecord]:
        """Fetch one page; an unparsable response counts as an empty batch."""
        try:
            return await self.source.fetch_page(EntityType.parse(entity_type), offset, limit)
        except SourceResponseError as e:
            logger.warning(f"Unreadable {entity_name(entity_type)} page at offset {offset}: {e}")
            return []

    async def migrate_entity(self, entity_type: Union[str, EntityType]) -> EntityMigrationResult:
        """
        Migrate every record of one entity type.

        Never raises: an unexpected failure is returned as a failed result
        carrying the error message.
        """
        entity_result = EntityMigrationResult(entity_type=entity_name(entity_type))
        entity_result.started_at = datetime.utcnow()

        try:
            parsed = EntityType.parse(entity_type)
            executor = BatchExecutor(self.target, self.mapper, get_strategy(parsed))

            entity_result.status = MigrationStatus.COUNTING
            count = await self.get_entity_count(parsed)
            entity_result.source_count = count
            logger.info(f"{parsed.value}: {count} source records")

            if count == 0:
                entity_result.validation = ValidationOutcome(
                    expected=0, actual=0, passed=True, message="No records to migrate"
                )
                entity_result.status = MigrationStatus.COMPLETED
                return entity_result

            batches = plan_batches(count, self.batch_size, self.batch_threshold)
            entity_result.total_batches = len(batches)
            entity_result.status = MigrationStatus.BATCHING

            for batch_number, (offset, limit) in enumerate(batches, start=1):
                records = await self.fetch_batch(parsed, offset, limit)
                summary = BatchSummary(batch_number=batch_number, offset=offset, limit=limit, fetched=len(records))

                if not records:
                    entity_result.degraded = True
                    entity_result.batches.append(summary)
                    logger.warning(
                        f"{parsed.value} batch {batch_number}/{len(batches)} came back empty, "
                        f"abandoning remaining batches"
                    )
                    break

                logger.info(f"{parsed.value} batch {batch_number}/{len(batches)}: {len(records)} records")
                batch_result = await executor.execute(records)
                entity_result.result.merge(batch_result)

                summary.migrated = batch_result.migrated
                summary.skipped = batch_result.skipped
                summary.errors = batch_result.error_count
                entity_result.batches.append(summary)

                await self._notify(self.on_progress, ProgressUpdate(
                    entity_type=parsed.value,
                    batch_number=batch_number,
                    total_batches=len(batches),
                    processed=entity_result.result.processed,
                    total=count,
                    migrated=entity_result.migrated,
                    skipped=entity_result.skipped,
                    errors=entity_result.error_count,
                ))
                await self._notify(self.on_batch_complete, BatchCompleteEvent(
                    entity_type=parsed.value,
                    batch_number=batch_number,
                    result=batch_result,
                ))

            entity_result.status = MigrationStatus.VALIDATING
            entity_result.validation = self.validate_migration(entity_result)
            entity_result.status = MigrationStatus.COMPLETED

        except Exception as e:
            logger.exception(f"{entity_result.entity_type} migration failed: {e}")
            entity_result.status = MigrationStatus.FAILED
            entity_result.fatal_error = str(e)

        finally:
            entity_result.completed_at = datetime.utcnow()

        return entity_result

    def validate_migration(self, entity_result: EntityMigrationResult) -> ValidationOutcome:
        """
        Compare records accounted for against the source count.

        Advisory only: the outcome is reported, never acted on.
        """
        expected = entity_result.source_count - entity_result.skipped
        actual = entity_result.migrated + entity_result.error_count

        if entity_result.source_count == 0:
            return ValidationOutcome(expected=0, actual=actual, passed=True, message="No records to migrate")

        passed = actual >= expected * self.validation_tolerance
        if passed:
            message = "All records accounted for"
        else:
            message = (
                f"Count mismatch: expected ~{expected} migrated, "
                f"got {entity_result.migrated} ({entity_result.error_count} errors)"
            )
            logger.warning(f"{entity_result.entity_type} validation failed: {message}")

        return ValidationOutcome(expected=expected, actual=actual, passed=passed, message=message)

    async def migrate_all(self, options: Optional[MigrationOptions] = None) -> MigrationRun:
        """
        Migrate every entity type in dependency order.

        Mapper caches are cleared first so independent runs never share state.
        """
        options = options or MigrationOptions()
        self.mapper.clear_cache()

        run = MigrationRun(source_system=self.source_system)
        run.started_at = datetime.utcnow()
        run.status = MigrationStatus.BATCHING

        order = options.order or [entity_type.value for entity_type in MIGRATION_ORDER]
        allowed = None
        if options.entities:
            allowed = {name.strip().lower() for name in options.entities}

        for entity_type in order:
            name = entity_name(entity_type)
            if allowed is not None and name.lower() not in allowed:
                continue

            logger.info(f"=== {name} migration ===")
            entity_result = await self.migrate_entity(entity_type)
            run.add_entity_result(entity_result)

            logger.info(
                f"{name}: {entity_result.migrated} migrated, {entity_result.skipped} skipped, "
                f"{entity_result.error_count} errors ({entity_result.status.value})"
            )

            if entity_result.status == MigrationStatus.FAILED and options.stop_on_error:
                logger.error(f"Stopping run after {name} failed: {entity_result.fatal_error}")
                break

        run.update_totals()
        run.status = MigrationStatus.FAILED if run.failed_entities else MigrationStatus.COMPLETED
        run.completed_at = datetime.utcnow()
        logger.info(
            f"=== Migration {run.status.value}: {run.total_migrated} migrated, "
            f"{run.total_skipped} skipped, {run.total_errors} errors ==="
        )
        return run

    async def _notify(self, callback: Optional[Callable], payload: Any) -> None:
        """Invoke a plain or async callback; its failures are logged, never raised."""
        if callback is None:
            return
        try:
            outcome = callback(payload)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception(f"{type(payload).__name__} callback failed")

"""Command-line interface for the ledger migration engine."""

import argparse
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from .executor import get_strategy
from .extractors.base import SourceConnector
from .extractors.file_connector import FileConnector, StaticConnector
from .extractors.mcp_connector import QboMcpConnector
from .loaders.base import TargetStore
from .loaders.memory_store import InMemoryTargetStore
from .loaders.rest_store import RestTargetStore
from .models.entities import MIGRATION_ORDER, EntityType
from .models.migration import MigrationConfig, MigrationOptions
from .orchestrator import BatchedMigrationOrchestrator, save_report
from .services.context import MigrationContext
from .services.mapper import Mapper
from .services.mapping_store import MappingStore

logger = logging.getLogger(__name__)


def build_source(config: MigrationConfig) -> SourceConnector:
    """Create the source connector described by the config."""
    settings = config.source
    if settings.type == "file":
        if not settings.export_dir:
            raise ValueError("source.export_dir is required for a file source")
        return FileConnector(settings.export_dir)
    if settings.type == "mcp":
        if not settings.url:
            raise ValueError("source.url is required for an mcp source")
        return QboMcpConnector(settings.url, token=settings.token, timeout=settings.timeout)
    raise ValueError(f"Unknown source type: {settings.type}")


def build_target(config: MigrationConfig) -> TargetStore:
    """Create the target store; dry runs always use an in-memory store."""
    settings = config.target
    if config.dry_run or settings.type == "memory":
        return InMemoryTargetStore()
    if settings.type == "rest":
        if not settings.base_url:
            raise ValueError("target.base_url is required for a rest target")
        return RestTargetStore(
            settings.base_url,
            api_key=settings.api_key,
            api_role=settings.api_role,
            rate_limit=settings.rate_limit,
            timeout=settings.timeout,
        )
    raise ValueError(f"Unknown target type: {settings.type}")


def load_config(args) -> MigrationConfig:
    """Load the config file and apply command-line overrides."""
    config = MigrationConfig.from_json_file(args.config)

    if getattr(args, "dry_run", False):
        config.dry_run = True
    if getattr(args, "entities", None):
        config.entities = [name.strip() for name in args.entities.split(",") if name.strip()]
    if getattr(args, "stop_on_error", False):
        config.stop_on_error = True
    if getattr(args, "batch_size", None):
        config.batch_size = args.batch_size

    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Ledger Migration - Move accounting data into the target ledger"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run migration
    run_parser = subparsers.add_parser("run", help="Run a full-catalog migration")
    run_parser.add_argument("--config", required=True, help="Path to migration config file")
    run_parser.add_argument("--dry-run", action="store_true", help="Migrate into an in-memory store")
    run_parser.add_argument("--entities", help="Comma-separated entity types to migrate")
    run_parser.add_argument("--stop-on-error", action="store_true", help="Stop after the first failed entity type")
    run_parser.add_argument("--batch-size", type=int, help="Records per batch")
    run_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Source counts
    count_parser = subparsers.add_parser("count", help="Show source record counts")
    count_parser.add_argument("--config", required=True, help="Path to migration config file")
    count_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Preview mapping
    preview_parser = subparsers.add_parser("preview", help="Preview mapped records")
    preview_parser.add_argument("--input", required=True, help="Path to input JSON file")
    preview_parser.add_argument("--entity", required=True, help="Entity type of the input records")
    preview_parser.add_argument("--config", help="Path to migration config file")
    preview_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Seed mapping rules
    seed_parser = subparsers.add_parser("seed", help="Write built-in rules to the mapping store")
    seed_parser.add_argument("--config", required=True, help="Path to migration config file")
    seed_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.command == "run":
        return asyncio.run(run_migration(args))
    elif args.command == "count":
        return asyncio.run(run_count(args))
    elif args.command == "preview":
        return asyncio.run(run_preview(args))
    elif args.command == "seed":
        return asyncio.run(run_seed(args))

    parser.print_help()
    return 1


async def run_migration(args) -> int:
    """Run a full-catalog migration from a config file."""
    config = load_config(args)
    source = build_source(config)
    target = build_target(config)

    orchestrator = BatchedMigrationOrchestrator(
        source,
        target,
        source_system=config.source_system,
        batch_size=config.batch_size,
        batch_threshold=config.batch_threshold,
        validation_tolerance=config.validation_tolerance,
        use_builtin_rules=config.use_builtin_rules,
        on_progress=lambda update: print(
            f"  {update.entity_type}: batch {update.batch_number}/{update.total_batches} "
            f"({update.percent:.0f}%)"
        ),
    )

    try:
        run = await orchestrator.migrate_all(MigrationOptions(
            entities=config.entities,
            stop_on_error=config.stop_on_error,
        ))
    finally:
        await source.close()
        await target.close()

    run.dry_run = config.dry_run

    print("\n" + "=" * 60)
    print("MIGRATION COMPLETE" + (" (DRY RUN)" if config.dry_run else ""))
    print("=" * 60)
    print(f"Status: {run.status.value}")
    for entity_result in run.entities:
        line = (
            f"  {entity_result.entity_type}: {entity_result.migrated} migrated, "
            f"{entity_result.skipped} skipped, {entity_result.error_count} errors"
        )
        if entity_result.degraded:
            line += " [degraded]"
        if entity_result.fatal_error:
            line += f" [failed: {entity_result.fatal_error}]"
        elif entity_result.validation and not entity_result.validation.passed:
            line += f" [{entity_result.validation.message}]"
        print(line)
    print(f"Migrated: {run.total_migrated}")
    print(f"Skipped: {run.total_skipped}")
    print(f"Errors: {run.total_errors}")
    if run.duration_seconds:
        print(f"Duration: {run.duration_seconds:.2f} seconds")

    if config.save_report:
        filepath = save_report(run, config.output_dir)
        print(f"Report: {filepath}")

    return 0 if not run.failed_entities else 1


async def run_count(args) -> int:
    """Print the source count for every entity type."""
    config = load_config(args)
    source = build_source(config)

    print("\n=== Source Counts ===")
    try:
        for entity_type in MIGRATION_ORDER:
            count = await source.count(entity_type)
            print(f"  {entity_type.value}: {count}")
    finally:
        await source.close()
    return 0


def _load_input_records(path: str) -> List[Dict[str, Any]]:
    with open(path) as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("data") or data.get("records") or [data]
    return data


async def run_preview(args) -> int:
    """Map records from a JSON file with the built-in rules and print them."""
    source_system = "QBO"
    if args.config:
        source_system = MigrationConfig.from_json_file(args.config).source_system

    try:
        entity_type = EntityType.parse(args.entity)
    except ValueError as e:
        print(str(e))
        return 1

    target = InMemoryTargetStore()
    mapper = Mapper(target, context=MigrationContext(source_system=source_system))
    strategy = get_strategy(entity_type)
    connector = StaticConnector()

    for index, data in enumerate(_load_input_records(args.input)):
        if "Id" not in data:
            data = dict(data, Id=f"preview-{index + 1}")
        record = connector.create_record(entity_type, data)
        mapped = await mapper.map_entity(entity_type, record)
        if not mapped.skipped:
            strategy.assign_identifier(mapped, source_system)

        print(json.dumps(mapped.to_dict(), indent=2, default=str))
        print("-" * 40)

    return 0


async def run_seed(args) -> int:
    """Seed the target mapping store with the built-in rules."""
    config = load_config(args)
    target = build_target(config)

    try:
        inserted = await MappingStore(target).seed_defaults(config.source_system)
    finally:
        await target.close()

    print("\n=== Seeded Mapping Store ===")
    for table, count in inserted.items():
        print(f"  {table}: {count} rows")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

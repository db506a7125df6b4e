import json

import pytest

from ledger_migration.extractors.base import SourceConnectorError, SourceResponseError
from ledger_migration.extractors.file_connector import StaticConnector
from ledger_migration.models.entities import INVOICE_LINES_TABLE, MIGRATION_ORDER, EntityType
from ledger_migration.models.migration import (
    EntityMigrationResult,
    MigrationOptions,
    MigrationStatus,
)
from ledger_migration.orchestrator import BatchedMigrationOrchestrator, plan_batches, save_report


class FixedCountConnector(StaticConnector):
    """Reports a count larger than the rows it can actually serve."""

    def __init__(self, counts, records=None):
        super().__init__(records)
        self.counts = counts

    async def count(self, entity_type):
        return self.counts.get(EntityType.parse(entity_type).value, 0)


class BrokenConnector(StaticConnector):
    def __init__(self, broken, records=None, unreadable=()):
        super().__init__(records)
        self.broken = set(broken)
        self.unreadable = set(unreadable)

    async def count(self, entity_type):
        if EntityType.parse(entity_type).value in self.broken:
            raise SourceConnectorError("analysis unavailable")
        if EntityType.parse(entity_type).value in self.unreadable:
            return 5
        return await super().count(entity_type)

    async def fetch_page(self, entity_type, offset, limit):
        if EntityType.parse(entity_type).value in self.unreadable:
            raise SourceResponseError("Could not parse batch data")
        return await super().fetch_page(entity_type, offset, limit)


def customers(n, start=0):
    return [{"Id": str(i), "DisplayName": f"Customer {i}"} for i in range(start, start + n)]


@pytest.mark.parametrize("count,expected", [
    (0, []),
    (1, [(0, 1)]),
    (400, [(0, 400)]),
    (401, [(0, 400), (400, 1)]),
    (900, [(0, 400), (400, 400), (800, 100)]),
])
def test_plan_batches(count, expected):
    assert plan_batches(count, 400, 400) == expected


def test_plan_batches_respects_custom_sizes():
    assert plan_batches(250, batch_size=100, threshold=200) == [(0, 100), (100, 100), (200, 50)]


def test_large_entity_is_fetched_in_sequential_batches(store, run_async):
    connector = StaticConnector({"Customer": customers(900)})
    orchestrator = BatchedMigrationOrchestrator(connector, store)

    result = run_async(orchestrator.migrate_entity(EntityType.CUSTOMER))

    assert [(c["offset"], c["limit"]) for c in connector.fetch_calls] == [(0, 400), (400, 400), (800, 100)]
    assert result.status == MigrationStatus.COMPLETED
    assert result.total_batches == 3
    assert [b.fetched for b in result.batches] == [400, 400, 100]
    assert result.migrated == 900
    assert result.validation.passed
    assert result.validation.message == "All records accounted for"
    assert not result.degraded


def test_small_entity_uses_one_batch_of_full_count(store, run_async):
    connector = StaticConnector({"Vendor": [{"Id": str(i), "DisplayName": f"V{i}"} for i in range(37)]})
    orchestrator = BatchedMigrationOrchestrator(connector, store)

    result = run_async(orchestrator.migrate_entity("Vendor"))

    assert connector.fetch_calls == [{"entity_type": "Vendor", "offset": 0, "limit": 37}]
    assert result.migrated == 37


def test_empty_batch_abandons_remaining_batches(store, run_async):
    connector = FixedCountConnector({"Customer": 1200}, {"Customer": customers(400)})
    orchestrator = BatchedMigrationOrchestrator(connector, store)

    result = run_async(orchestrator.migrate_entity(EntityType.CUSTOMER))

    assert len(connector.fetch_calls) == 2
    assert result.degraded
    assert result.status == MigrationStatus.COMPLETED
    assert result.migrated == 400
    assert result.batches[-1].fetched == 0
    assert not result.validation.passed
    assert result.validation.message == "Count mismatch: expected ~1200 migrated, got 400 (0 errors)"


def test_unparsable_page_degrades_instead_of_failing(store, run_async):
    connector = BrokenConnector(broken=(), unreadable={"Item"})
    orchestrator = BatchedMigrationOrchestrator(connector, store)

    result = run_async(orchestrator.migrate_entity(EntityType.ITEM))

    assert result.status == MigrationStatus.COMPLETED
    assert result.degraded
    assert result.migrated == 0


def test_zero_count_completes_without_fetching(store, run_async):
    connector = StaticConnector()
    orchestrator = BatchedMigrationOrchestrator(connector, store)

    result = run_async(orchestrator.migrate_entity(EntityType.BILL))

    assert result.status == MigrationStatus.COMPLETED
    assert result.validation.passed
    assert connector.fetch_calls == []


def test_connector_failure_marks_entity_failed(store, run_async):
    orchestrator = BatchedMigrationOrchestrator(BrokenConnector({"Account"}), store)

    result = run_async(orchestrator.migrate_entity(EntityType.ACCOUNT))

    assert result.status == MigrationStatus.FAILED
    assert result.fatal_error == "analysis unavailable"
    assert result.completed_at is not None


def test_unknown_entity_type_is_a_failed_result(store, run_async):
    orchestrator = BatchedMigrationOrchestrator(StaticConnector(), store)

    result = run_async(orchestrator.migrate_entity("Widget"))

    assert result.entity_type == "Widget"
    assert result.status == MigrationStatus.FAILED
    assert result.fatal_error == "Unknown entity type: Widget"


def test_validation_accounts_for_skips_and_errors(store):
    orchestrator = BatchedMigrationOrchestrator(StaticConnector(), store)
    entity_result = EntityMigrationResult(entity_type="Customer", source_count=100)
    entity_result.result.migrated = 90
    entity_result.result.skipped = 5
    for i in range(5):
        entity_result.result.add_error(str(i), "boom")

    outcome = orchestrator.validate_migration(entity_result)

    assert outcome.expected == 95
    assert outcome.actual == 95
    assert outcome.passed


def test_validation_tolerance(store):
    orchestrator = BatchedMigrationOrchestrator(StaticConnector(), store, validation_tolerance=0.99)
    entity_result = EntityMigrationResult(entity_type="Customer", source_count=1000)
    entity_result.result.migrated = 990

    assert orchestrator.validate_migration(entity_result).passed

    entity_result.result.migrated = 989
    assert not orchestrator.validate_migration(entity_result).passed


def test_migrate_all_continues_past_failed_entity(store, run_async):
    connector = BrokenConnector({"Account"}, {"Customer": customers(3)})
    orchestrator = BatchedMigrationOrchestrator(connector, store)

    run = run_async(orchestrator.migrate_all())

    assert [e.entity_type for e in run.entities] == [t.value for t in MIGRATION_ORDER]
    assert run.failed_entities == ["Account"]
    assert run.get_entity_result("Customer").migrated == 3
    assert run.total_migrated == 3
    assert run.status == MigrationStatus.FAILED


def test_migrate_all_stop_on_error(store, run_async):
    connector = BrokenConnector({"Account"}, {"Customer": customers(3)})
    orchestrator = BatchedMigrationOrchestrator(connector, store)

    run = run_async(orchestrator.migrate_all(MigrationOptions(stop_on_error=True)))

    assert [e.entity_type for e in run.entities] == ["Account"]
    assert run.total_migrated == 0


def test_migrate_all_allow_list(store, run_async):
    connector = StaticConnector({"Customer": customers(2), "Vendor": [{"Id": "1", "DisplayName": "V"}]})
    orchestrator = BatchedMigrationOrchestrator(connector, store)

    run = run_async(orchestrator.migrate_all(MigrationOptions(entities=["customer"])))

    assert [e.entity_type for e in run.entities] == ["Customer"]
    assert run.status == MigrationStatus.COMPLETED


def full_catalog():
    return {
        "Account": [
            {"Id": "A1", "Name": "Sales", "AccountType": "Income"},
            {"Id": "A2", "Name": "AR", "AccountType": "Accounts Receivable"},
        ],
        "Customer": [{"Id": "C1", "DisplayName": "Acme"}],
        "Item": [{"Id": "I1", "Name": "Widget", "Type": "Service", "IncomeAccountRef": {"value": "A1"}}],
        "Invoice": [{
            "Id": "INV1",
            "DocNumber": "1001",
            "CustomerRef": {"value": "C1"},
            "TxnDate": "2024-01-05",
            "TotalAmt": 30,
            "Balance": 30,
            "Line": [{
                "DetailType": "SalesItemLineDetail",
                "Amount": 30,
                "SalesItemLineDetail": {"ItemRef": {"value": "I1"}, "Qty": 3, "UnitPrice": 10},
            }],
        }],
    }


def test_migrate_all_resolves_references_in_dependency_order(store, run_async):
    orchestrator = BatchedMigrationOrchestrator(StaticConnector(full_catalog()), store)

    run = run_async(orchestrator.migrate_all())

    assert run.total_errors == 0
    assert run.total_migrated == 4
    assert run.total_skipped == 1

    account_id = store.created_in(EntityType.ACCOUNT.table)[0]["Id"]
    customer_id = store.created_in(EntityType.CUSTOMER.table)[0]["Id"]
    item = store.created_in(EntityType.ITEM.table)[0]
    invoice = store.created_in(EntityType.INVOICE.table)[0]
    assert item["IncomeAccountId"] == account_id
    assert invoice["CustomerId"] == customer_id
    assert store.created_in(INVOICE_LINES_TABLE)[0]["ProductServiceId"] == item["Id"]


def test_second_run_is_idempotent(store, run_async):
    first = run_async(BatchedMigrationOrchestrator(StaticConnector(full_catalog()), store).migrate_all())
    created_after_first = len(store.created)

    second = run_async(BatchedMigrationOrchestrator(StaticConnector(full_catalog()), store).migrate_all())

    assert first.total_migrated == 4
    assert second.total_migrated == 0
    assert second.total_errors == 0
    assert second.total_skipped == 5
    assert len(store.created) == created_after_first


def test_migrate_all_clears_caches_between_runs(store, run_async):
    orchestrator = BatchedMigrationOrchestrator(StaticConnector({"Customer": customers(1)}), store)
    orchestrator.context.remember("Customer", "0", "stale-target")

    run = run_async(orchestrator.migrate_all())

    assert run.get_entity_result("Customer").migrated == 1


def test_callbacks_fire_after_every_batch(store, run_async):
    progress = []
    completed = []

    async def on_batch_complete(event):
        completed.append((event.entity_type, event.batch_number, event.result.migrated))

    orchestrator = BatchedMigrationOrchestrator(
        StaticConnector({"Customer": customers(450)}),
        store,
        on_progress=progress.append,
        on_batch_complete=on_batch_complete,
    )

    run_async(orchestrator.migrate_entity(EntityType.CUSTOMER))

    assert [(p.batch_number, p.total_batches, p.processed, p.total) for p in progress] == [
        (1, 2, 400, 450),
        (2, 2, 450, 450),
    ]
    assert progress[-1].percent == 100.0
    assert completed == [("Customer", 1, 400), ("Customer", 2, 50)]


def test_failing_callback_does_not_stop_migration(store, run_async):
    def explode(update):
        raise RuntimeError("ui went away")

    orchestrator = BatchedMigrationOrchestrator(
        StaticConnector({"Customer": customers(3)}), store, on_progress=explode,
    )

    result = run_async(orchestrator.migrate_entity(EntityType.CUSTOMER))

    assert result.status == MigrationStatus.COMPLETED
    assert result.migrated == 3


def test_save_report_writes_run_summary(store, run_async, tmp_path):
    orchestrator = BatchedMigrationOrchestrator(StaticConnector({"Customer": customers(2)}), store)
    run = run_async(orchestrator.migrate_all(MigrationOptions(entities=["Customer"])))

    path = save_report(run, tmp_path / "reports")

    assert path.name.startswith("migration_report_")
    report = json.loads(path.read_text())
    assert report["summary"]["total_migrated"] == 2
    assert report["entities"][0]["entity_type"] == "Customer"
    assert report["entities"][0]["details"][0]["status"] == "created"

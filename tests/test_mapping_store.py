from ledger_migration.models.entities import (
    CONFIGS_TABLE,
    ENTITY_MAPS_TABLE,
    FIELD_MAPS_TABLE,
    TYPE_MAPS_TABLE,
)
from ledger_migration.models.mapping import EntityMapEntry, FieldMap
from ledger_migration.services.defaults import (
    DEFAULT_CONFIGS,
    DEFAULT_FIELD_MAPS,
    DEFAULT_TYPE_MAPS,
    default_field_maps,
    default_type_maps,
)
from ledger_migration.services.mapping_store import MappingStore


def expected_field_map_rows(source_system="QBO", skip=()):
    return sum(
        len(default_field_maps(source_system, entity_type))
        for entity_type in DEFAULT_FIELD_MAPS
        if entity_type not in skip
    )


def expected_type_map_rows(source_system="QBO"):
    return sum(len(default_type_maps(source_system, category)) for category in DEFAULT_TYPE_MAPS)


def test_seed_defaults_into_empty_store(store, run_async):
    inserted = run_async(MappingStore(store).seed_defaults())

    assert inserted == {
        FIELD_MAPS_TABLE: expected_field_map_rows(),
        TYPE_MAPS_TABLE: expected_type_map_rows(),
        CONFIGS_TABLE: len(DEFAULT_CONFIGS),
    }
    assert len(store.rows(CONFIGS_TABLE)) == len(DEFAULT_CONFIGS)


def test_seed_defaults_is_idempotent(store, run_async):
    mapping_store = MappingStore(store)
    run_async(mapping_store.seed_defaults())
    rows_before = {table: len(store.rows(table)) for table in (FIELD_MAPS_TABLE, TYPE_MAPS_TABLE, CONFIGS_TABLE)}

    inserted = run_async(mapping_store.seed_defaults())

    assert inserted == {FIELD_MAPS_TABLE: 0, TYPE_MAPS_TABLE: 0, CONFIGS_TABLE: 0}
    assert rows_before == {table: len(store.rows(table)) for table in rows_before}


def test_seed_defaults_keeps_existing_rules(store, run_async):
    store.insert(FIELD_MAPS_TABLE, FieldMap(
        source_system="QBO",
        entity_type="Customer",
        source_field="CompanyName",
        target_field="Name",
    ).to_row())
    store.insert(CONFIGS_TABLE, {
        "SourceSystem": "QBO",
        "ConfigKey": "SkipSystemAccounts",
        "ConfigValue": "false",
        "IsActive": True,
    })
    mapping_store = MappingStore(store)

    inserted = run_async(mapping_store.seed_defaults())

    assert inserted[FIELD_MAPS_TABLE] == expected_field_map_rows(skip={"Customer"})
    assert inserted[CONFIGS_TABLE] == len(DEFAULT_CONFIGS) - 1
    customer_maps = run_async(mapping_store.load_field_maps("QBO", "Customer"))
    assert [m.source_field for m in customer_maps] == ["CompanyName"]
    assert run_async(mapping_store.load_configs("QBO"))["SkipSystemAccounts"] == "false"


def test_seed_defaults_is_scoped_per_source_system(store, run_async):
    mapping_store = MappingStore(store)
    run_async(mapping_store.seed_defaults("QBO"))

    inserted = run_async(mapping_store.seed_defaults("XERO"))

    assert inserted[CONFIGS_TABLE] == len(DEFAULT_CONFIGS)
    assert all(m.source_system == "XERO" for m in run_async(mapping_store.load_field_maps("XERO", "Item")))


def test_load_field_maps_orders_and_filters(store, run_async):
    for source_field, sort_order, active in [("B", 20, True), ("A", 10, True), ("Gone", 5, False)]:
        store.insert(FIELD_MAPS_TABLE, FieldMap(
            source_system="QBO",
            entity_type="Vendor",
            source_field=source_field,
            target_field=source_field,
            sort_order=sort_order,
            is_active=active,
        ).to_row())

    maps = run_async(MappingStore(store).load_field_maps("QBO", "Vendor"))

    assert [m.source_field for m in maps] == ["A", "B"]


def test_find_entity_maps_batches_lookups(store, run_async, seed_ledger):
    from ledger_migration.models.entities import EntityType

    seed_ledger(EntityType.CUSTOMER, "1", "t-1")
    seed_ledger(EntityType.CUSTOMER, "2", "t-2")
    seed_ledger(EntityType.VENDOR, "3", "t-3")
    mapping_store = MappingStore(store)

    found = run_async(mapping_store.find_entity_maps("QBO", "Customer", ["1", "2", "3", "4"]))

    assert found == {"1": "t-1", "2": "t-2"}
    assert run_async(mapping_store.find_entity_map("QBO", "Vendor", "3")) == "t-3"
    assert run_async(mapping_store.find_entity_map("QBO", "Vendor", "4")) is None


def test_insert_entity_map_reports_conflict(store, run_async):
    mapping_store = MappingStore(store)
    entry = EntityMapEntry(
        source_system="QBO",
        entity_type="Invoice",
        source_id="42",
        target_id="t-42",
        source_data={"Id": "42", "DocNumber": "1001"},
    )

    first = run_async(mapping_store.insert_entity_map(entry))
    second = run_async(mapping_store.insert_entity_map(entry))

    assert first.success
    assert second.conflict
    assert len(store.rows(ENTITY_MAPS_TABLE)) == 1

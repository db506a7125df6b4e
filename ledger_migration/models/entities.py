"""Entity vocabulary shared by the mapper, executor and orchestrator."""

from enum import Enum
from typing import Dict, List, Union


class EntityType(str, Enum):
    """Source entity types the engine knows how to migrate."""
    ACCOUNT = "Account"
    CUSTOMER = "Customer"
    VENDOR = "Vendor"
    ITEM = "Item"
    INVOICE = "Invoice"
    BILL = "Bill"
    PAYMENT = "Payment"
    BILL_PAYMENT = "BillPayment"
    JOURNAL_ENTRY = "JournalEntry"

    @classmethod
    def parse(cls, value: Union[str, "EntityType"]) -> "EntityType":
        """Resolve an entity type from its name, raising ValueError if unknown."""
        if isinstance(value, EntityType):
            return value
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ValueError(f"Unknown entity type: {value}")

    @property
    def table(self) -> str:
        """Target table holding migrated records of this type."""
        return TABLE_NAMES[self]


TABLE_NAMES: Dict[EntityType, str] = {
    EntityType.ACCOUNT: "accounts",
    EntityType.CUSTOMER: "customers",
    EntityType.VENDOR: "vendors",
    EntityType.ITEM: "productsservices",
    EntityType.INVOICE: "invoices",
    EntityType.BILL: "bills",
    EntityType.PAYMENT: "payments",
    EntityType.BILL_PAYMENT: "billpayments",
    EntityType.JOURNAL_ENTRY: "journalentries",
}

# Child tables
INVOICE_LINES_TABLE = "invoicelines"
BILL_LINES_TABLE = "billlines"
PAYMENT_APPLICATIONS_TABLE = "paymentapplications"
BILL_PAYMENT_APPLICATIONS_TABLE = "billpaymentapplications"
JOURNAL_ENTRY_LINES_TABLE = "journalentrylines"

# Mapping store tables
FIELD_MAPS_TABLE = "migrationfieldmaps"
TYPE_MAPS_TABLE = "migrationtypemaps"
CONFIGS_TABLE = "migrationconfigs"
ENTITY_MAPS_TABLE = "migrationentitymaps"

# Foreign-key dependency order: accounts before anything that posts to them,
# customers/items before invoices, vendors before bills, invoices/bills before payments.
MIGRATION_ORDER: List[EntityType] = [
    EntityType.ACCOUNT,
    EntityType.CUSTOMER,
    EntityType.VENDOR,
    EntityType.ITEM,
    EntityType.INVOICE,
    EntityType.BILL,
    EntityType.PAYMENT,
    EntityType.BILL_PAYMENT,
    EntityType.JOURNAL_ENTRY,
]

"""Per-entity-type migration strategies used by the batch executor."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type

from ..models.entities import (
    BILL_LINES_TABLE,
    BILL_PAYMENT_APPLICATIONS_TABLE,
    INVOICE_LINES_TABLE,
    JOURNAL_ENTRY_LINES_TABLE,
    PAYMENT_APPLICATIONS_TABLE,
    EntityType,
)
from ..models.record import MappedRecord, SourceRecord, get_nested_value
from ..services.coercion import is_blank, money, to_float
from ..services.mapper import Mapper

logger = logging.getLogger(__name__)

SYSTEM_ACCOUNT_TYPES = ("Accounts Receivable", "Accounts Payable")


@dataclass
class ChildRecord:
    """A child sub-record to create after its parent, or the reason it cannot be built."""
    table: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


def _lines(record: SourceRecord, detail_type: Optional[str] = None) -> List[Dict[str, Any]]:
    lines = record.data.get("Line") or []
    return [
        line for line in lines
        if isinstance(line, dict) and (detail_type is None or line.get("DetailType") == detail_type)
    ]


def _linked_transactions(record: SourceRecord, txn_type: str) -> List[Dict[str, Any]]:
    """(TxnId, Amount) pairs from Line[].LinkedTxn entries of one type."""
    linked = []
    for line in _lines(record):
        for txn in line.get("LinkedTxn") or []:
            if isinstance(txn, dict) and txn.get("TxnType") == txn_type and not is_blank(txn.get("TxnId")):
                linked.append({"TxnId": str(txn["TxnId"]), "Amount": money(line, "Amount")})
    return linked


class EntityStrategy:
    """
    Entity-specific behaviour plugged into the generic batch algorithm.

    Subclasses set the class attributes and override the hooks they need;
    the base class covers entities with no children.
    """
    entity_type: EntityType = EntityType.CUSTOMER

    # Target field used for duplicate detection, and the source field it comes from
    dedupe_key: Optional[str] = None
    dedupe_source_field: Optional[str] = None

    # Target field that gets a synthetic "{source}-{id}" value when missing
    identifier_field: Optional[str] = None

    # Foreign entity type -> source field paths referencing it
    reference_fields: Dict[EntityType, List[str]] = {}

    child_label = "lines"

    @property
    def table(self) -> str:
        return self.entity_type.table

    def synthetic_identifier(self, source_system: str, source_id: str) -> str:
        return f"{source_system}-{source_id}"

    async def prepare_batch(self, mapper: Mapper, records: List[SourceRecord]) -> None:
        """Batch-level setup run once before any record is processed."""
        return None

    async def should_skip(self, mapper: Mapper, record: SourceRecord) -> bool:
        """True when the record is excluded by an entity-specific filter."""
        return False

    def foreign_refs(self, records: List[SourceRecord]) -> Dict[EntityType, List[str]]:
        """Distinct foreign source ids per entity type referenced by a batch."""
        refs: Dict[EntityType, List[str]] = {}
        for record in records:
            for entity_type, paths in self.reference_fields.items():
                for path in paths:
                    value = get_nested_value(record.data, path)
                    if not is_blank(value):
                        refs.setdefault(entity_type, []).append(str(value))
            for entity_type, source_id in self.line_refs(record):
                refs.setdefault(entity_type, []).append(source_id)
        return {entity_type: list(dict.fromkeys(ids)) for entity_type, ids in refs.items()}

    def line_refs(self, record: SourceRecord) -> List[tuple]:
        """(entity type, source id) references made by child lines."""
        return []

    def candidate_keys(self, records: List[SourceRecord], source_system: str) -> List[str]:
        """Source-side guesses at each record's dedupe value, for the batch precheck."""
        if not self.dedupe_key or not self.dedupe_source_field:
            return []
        candidates = []
        for record in records:
            value = record.get_field(self.dedupe_source_field)
            if is_blank(value) and self.identifier_field == self.dedupe_key:
                value = self.synthetic_identifier(source_system, record.id)
            if not is_blank(value):
                candidates.append(str(value))
        return list(dict.fromkeys(candidates))

    def assign_identifier(self, mapped: MappedRecord, source_system: str) -> None:
        """Give records without a native number a deterministic synthetic one."""
        if self.identifier_field and is_blank(mapped.data.get(self.identifier_field)):
            mapped.data[self.identifier_field] = self.synthetic_identifier(source_system, mapped.source_id)

    async def before_create(self, mapper: Mapper, record: SourceRecord, mapped: MappedRecord) -> None:
        """Pre-save hook; may adjust the mapped record in place."""
        return None

    def build_parent(self, record: SourceRecord, mapped: MappedRecord) -> Dict[str, Any]:
        return dict(mapped.data)

    async def build_children(
        self,
        mapper: Mapper,
        record: SourceRecord,
        mapped: MappedRecord,
        parent_id: str
    ) -> List[ChildRecord]:
        return []

    def summarize_children(
        self,
        record: SourceRecord,
        mapped: MappedRecord,
        created: List[ChildRecord],
        failed: int
    ) -> Dict[str, Any]:
        """Detail extras describing the child outcome (counts over created children)."""
        return {
            f"{self.child_label}Created": len(created),
            f"{self.child_label}Failed": failed,
        }

    def display_name(self, mapped: MappedRecord) -> Optional[str]:
        for key in (self.dedupe_key, self.identifier_field, "Name"):
            if key and not is_blank(mapped.data.get(key)):
                return str(mapped.data[key])
        return None


class AccountStrategy(EntityStrategy):
    """Chart of accounts; system AR/AP accounts may be skipped, codes auto-assigned."""
    entity_type = EntityType.ACCOUNT
    dedupe_key = "Name"
    dedupe_source_field = "Name"

    async def prepare_batch(self, mapper: Mapper, records: List[SourceRecord]) -> None:
        # Explicit numbers are reserved first so generated codes never take them
        for record in records:
            await mapper.reserve_account_code(record.data.get("AcctNum"))

    async def should_skip(self, mapper: Mapper, record: SourceRecord) -> bool:
        if (await mapper.get_config("SkipSystemAccounts")) != "true":
            return False
        return record.data.get("AccountType") in SYSTEM_ACCOUNT_TYPES

    async def before_create(self, mapper: Mapper, record: SourceRecord, mapped: MappedRecord) -> None:
        code = mapped.data.get("Code")
        if is_blank(code):
            mapped.data["Code"] = await mapper.assign_account_code(mapped.data.get("Type") or "Expense")
        else:
            await mapper.reserve_account_code(code)

    def summarize_children(self, record, mapped, created, failed):
        return {}


class CustomerStrategy(EntityStrategy):
    entity_type = EntityType.CUSTOMER
    dedupe_key = "Name"
    dedupe_source_field = "DisplayName"

    def summarize_children(self, record, mapped, created, failed):
        return {}


class VendorStrategy(CustomerStrategy):
    entity_type = EntityType.VENDOR


class ItemStrategy(EntityStrategy):
    """Products and services."""
    entity_type = EntityType.ITEM
    dedupe_key = "Name"
    dedupe_source_field = "Name"
    reference_fields = {
        EntityType.ACCOUNT: ["IncomeAccountRef.value", "ExpenseAccountRef.value"],
    }

    def summarize_children(self, record, mapped, created, failed):
        return {}


class InvoiceStrategy(EntityStrategy):
    """Invoices with sales lines."""
    entity_type = EntityType.INVOICE
    dedupe_key = "InvoiceNumber"
    dedupe_source_field = "DocNumber"
    identifier_field = "InvoiceNumber"
    reference_fields = {EntityType.CUSTOMER: ["CustomerRef.value"]}

    def line_refs(self, record: SourceRecord) -> List[tuple]:
        refs = []
        for line in _lines(record, "SalesItemLineDetail"):
            item_id = get_nested_value(line, "SalesItemLineDetail.ItemRef.value")
            if not is_blank(item_id):
                refs.append((EntityType.ITEM, str(item_id)))
        return refs

    def build_parent(self, record: SourceRecord, mapped: MappedRecord) -> Dict[str, Any]:
        parent = dict(mapped.data)
        if is_blank(parent.get("DueDate")):
            parent["DueDate"] = parent.get("IssueDate")
        parent["TotalAmount"] = to_float(parent.get("TotalAmount"))
        parent.setdefault("Status", "Sent")
        return parent

    async def build_children(self, mapper, record, mapped, parent_id):
        children = []
        for line in _lines(record, "SalesItemLineDetail"):
            detail = line.get("SalesItemLineDetail") or {}
            item_ref = detail.get("ItemRef") or {}
            product_id = None
            if not is_blank(item_ref.get("value")):
                product_id = await mapper.lookup_entity(EntityType.ITEM, str(item_ref["value"]), item_ref.get("name"))

            amount = money(line, "Amount")
            children.append(ChildRecord(table=INVOICE_LINES_TABLE, data={
                "InvoiceId": parent_id,
                "ProductServiceId": product_id,
                "Description": line.get("Description") or item_ref.get("name") or "Line Item",
                "Quantity": to_float(detail.get("Qty")) or 1,
                "UnitPrice": to_float(detail.get("UnitPrice")) or amount,
                "Amount": amount,
            }))
        return children

    def summarize_children(self, record, mapped, created, failed):
        extras = super().summarize_children(record, mapped, created, failed)
        extras["amount"] = mapped.data.get("TotalAmount")
        return extras


class BillStrategy(EntityStrategy):
    """Bills with account-based expense lines."""
    entity_type = EntityType.BILL
    dedupe_key = "BillNumber"
    dedupe_source_field = "DocNumber"
    identifier_field = "BillNumber"
    reference_fields = {EntityType.VENDOR: ["VendorRef.value"]}

    def line_refs(self, record: SourceRecord) -> List[tuple]:
        refs = []
        for line in _lines(record, "AccountBasedExpenseLineDetail"):
            account_id = get_nested_value(line, "AccountBasedExpenseLineDetail.AccountRef.value")
            if not is_blank(account_id):
                refs.append((EntityType.ACCOUNT, str(account_id)))
        return refs

    def build_parent(self, record: SourceRecord, mapped: MappedRecord) -> Dict[str, Any]:
        parent = dict(mapped.data)
        if is_blank(parent.get("DueDate")):
            parent["DueDate"] = parent.get("BillDate")
        parent["TotalAmount"] = to_float(parent.get("TotalAmount"))
        parent["AmountPaid"] = round(money(record.data, "TotalAmt") - money(record.data, "Balance"), 2)
        parent.setdefault("Status", "Open")
        return parent

    async def build_children(self, mapper, record, mapped, parent_id):
        children = []
        for line in _lines(record, "AccountBasedExpenseLineDetail"):
            detail = line.get("AccountBasedExpenseLineDetail") or {}
            account_ref = detail.get("AccountRef") or {}
            account_id = None
            if not is_blank(account_ref.get("value")):
                account_id = await mapper.lookup_entity(EntityType.ACCOUNT, str(account_ref["value"]))

            if not account_id:
                children.append(ChildRecord(
                    table=BILL_LINES_TABLE,
                    error=f"Account not found: {account_ref.get('value')}",
                ))
                continue

            children.append(ChildRecord(table=BILL_LINES_TABLE, data={
                "BillId": parent_id,
                "AccountId": account_id,
                "Description": line.get("Description") or account_ref.get("name") or "Expense",
                "Amount": money(line, "Amount"),
            }))
        return children

    def summarize_children(self, record, mapped, created, failed):
        extras = super().summarize_children(record, mapped, created, failed)
        extras["amount"] = mapped.data.get("TotalAmount")
        return extras


class PaymentStrategy(EntityStrategy):
    """Customer payments applied to invoices; identity via the ledger only."""
    entity_type = EntityType.PAYMENT
    identifier_field = "PaymentNumber"
    reference_fields = {
        EntityType.CUSTOMER: ["CustomerRef.value"],
        EntityType.ACCOUNT: ["DepositToAccountRef.value"],
    }
    child_label = "applications"
    linked_type = EntityType.INVOICE
    applications_table = PAYMENT_APPLICATIONS_TABLE
    parent_column = "PaymentId"
    linked_column = "InvoiceId"

    def line_refs(self, record: SourceRecord) -> List[tuple]:
        return [(self.linked_type, txn["TxnId"]) for txn in _linked_transactions(record, self.linked_type.value)]

    def build_parent(self, record: SourceRecord, mapped: MappedRecord) -> Dict[str, Any]:
        parent = dict(mapped.data)
        parent["TotalAmount"] = to_float(parent.get("TotalAmount"))
        return parent

    async def build_children(self, mapper, record, mapped, parent_id):
        children = []
        for txn in _linked_transactions(record, self.linked_type.value):
            linked_id = await mapper.lookup_entity(self.linked_type, txn["TxnId"])
            if not linked_id:
                children.append(ChildRecord(
                    table=self.applications_table,
                    error=f"{self.linked_type.value} not found: {txn['TxnId']}",
                ))
                continue
            children.append(ChildRecord(table=self.applications_table, data={
                self.parent_column: parent_id,
                self.linked_column: linked_id,
                "AmountApplied": txn["Amount"],
            }))
        return children

    def summarize_children(self, record, mapped, created, failed):
        extras = super().summarize_children(record, mapped, created, failed)
        extras["amount"] = mapped.data.get("TotalAmount")
        return extras


class BillPaymentStrategy(PaymentStrategy):
    """Vendor payments applied to bills."""
    entity_type = EntityType.BILL_PAYMENT
    reference_fields = {
        EntityType.VENDOR: ["VendorRef.value"],
        EntityType.ACCOUNT: [
            "CheckPayment.BankAccountRef.value",
            "CreditCardPayment.CCAccountRef.value",
        ],
    }
    linked_type = EntityType.BILL
    applications_table = BILL_PAYMENT_APPLICATIONS_TABLE
    parent_column = "BillPaymentId"
    linked_column = "BillId"


class JournalEntryStrategy(EntityStrategy):
    """
    Journal entries with debit/credit lines.

    Reported totals are summed over the lines actually created, so a
    partially migrated entry still reports self-consistent figures.
    """
    entity_type = EntityType.JOURNAL_ENTRY
    identifier_field = "Reference"

    def line_refs(self, record: SourceRecord) -> List[tuple]:
        refs = []
        for line in _lines(record, "JournalEntryLineDetail"):
            account_id = get_nested_value(line, "JournalEntryLineDetail.AccountRef.value")
            if not is_blank(account_id):
                refs.append((EntityType.ACCOUNT, str(account_id)))
        return refs

    async def before_create(self, mapper: Mapper, record: SourceRecord, mapped: MappedRecord) -> None:
        if (await mapper.get_config("AutoPostJournalEntries")) == "false":
            mapped.data["Status"] = "Draft"

    async def build_children(self, mapper, record, mapped, parent_id):
        children = []
        for line in _lines(record, "JournalEntryLineDetail"):
            detail = line.get("JournalEntryLineDetail") or {}
            account_ref = detail.get("AccountRef") or {}
            account_id = None
            if not is_blank(account_ref.get("value")):
                account_id = await mapper.lookup_entity(EntityType.ACCOUNT, str(account_ref["value"]))

            if not account_id:
                children.append(ChildRecord(
                    table=JOURNAL_ENTRY_LINES_TABLE,
                    error=f"Account not found: {account_ref.get('value')}",
                ))
                continue

            amount = money(line, "Amount")
            is_debit = detail.get("PostingType") == "Debit"
            children.append(ChildRecord(table=JOURNAL_ENTRY_LINES_TABLE, data={
                "JournalEntryId": parent_id,
                "AccountId": account_id,
                "Description": line.get("Description") or mapped.data.get("Description"),
                "Debit": amount if is_debit else 0.0,
                "Credit": 0.0 if is_debit else amount,
            }))
        return children

    def summarize_children(self, record, mapped, created, failed):
        total_debit = round(sum(to_float(c.data.get("Debit")) for c in created), 2)
        total_credit = round(sum(to_float(c.data.get("Credit")) for c in created), 2)
        return {
            "linesCreated": len(created),
            "linesFailed": failed,
            "totalDebit": total_debit,
            "totalCredit": total_credit,
            "isBalanced": abs(total_debit - total_credit) < 0.005,
        }


STRATEGIES: Dict[EntityType, Type[EntityStrategy]] = {
    EntityType.ACCOUNT: AccountStrategy,
    EntityType.CUSTOMER: CustomerStrategy,
    EntityType.VENDOR: VendorStrategy,
    EntityType.ITEM: ItemStrategy,
    EntityType.INVOICE: InvoiceStrategy,
    EntityType.BILL: BillStrategy,
    EntityType.PAYMENT: PaymentStrategy,
    EntityType.BILL_PAYMENT: BillPaymentStrategy,
    EntityType.JOURNAL_ENTRY: JournalEntryStrategy,
}


def get_strategy(entity_type: Any) -> EntityStrategy:
    """Strategy instance for an entity type; unknown names raise ValueError."""
    return STRATEGIES[EntityType.parse(entity_type)]()

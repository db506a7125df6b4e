"""
Built-in QuickBooks Online mapping rules.

These are the rules a fresh mapping store is seeded with, and the rules
the mapper falls back to when the store has none for an entity type or
category.
"""

from typing import Dict, List, Tuple

from ..models.mapping import FieldMap, Transform, TypeMap

# entity type -> (source field, target field, transform, default, required, sort order)
DEFAULT_FIELD_MAPS: Dict[str, List[Tuple]] = {
    "Customer": [
        ("DisplayName", "Name", "string", "Unnamed Customer", True, 1),
        ("CompanyName", "Name", "string", None, False, 2),
        ("PrimaryEmailAddr.Address", "Email", "string", None, False, 3),
        ("PrimaryPhone.FreeFormNumber", "Phone", "string", None, False, 4),
        ("BillAddr", "Address", "address", None, False, 5),
    ],
    "Vendor": [
        ("DisplayName", "Name", "string", "Unnamed Vendor", True, 1),
        ("CompanyName", "Name", "string", None, False, 2),
        ("PrimaryEmailAddr.Address", "Email", "string", None, False, 3),
        ("PrimaryPhone.FreeFormNumber", "Phone", "string", None, False, 4),
        ("BillAddr", "Address", "address", None, False, 5),
        ("Vendor1099", "Is1099Vendor", "bool", "false", False, 6),
        ("TaxIdentifier", "TaxId", "string", None, False, 7),
        ("Active", "Status", "status", "Active", False, 8),
    ],
    "Account": [
        ("AcctNum", "Code", "string", None, False, 1),
        ("Name", "Name", "string", "Unnamed Account", True, 2),
        ("AccountType", "Type", "lookup:AccountType", "Expense", True, 3),
        ("AccountSubType", "Subtype", "lookup:AccountSubtype", None, False, 4),
        ("Description", "Description", "string", None, False, 5),
        ("Active", "IsActive", "bool", "true", False, 6),
    ],
    "Item": [
        ("Name", "Name", "string", None, True, 1),
        ("Sku", "Sku", "string", None, False, 2),
        ("Description", "Description", "string", None, False, 3),
        ("UnitPrice", "UnitPrice", "float", "0", False, 4),
        ("Type", "Type", "lookup:ItemType", None, False, 5),
        ("IncomeAccountRef.value", "IncomeAccountId", "entity:Account", None, False, 6),
        ("ExpenseAccountRef.value", "ExpenseAccountId", "entity:Account", None, False, 7),
        ("Active", "Status", "status", "Active", False, 8),
    ],
    "Invoice": [
        ("DocNumber", "InvoiceNumber", "string", None, False, 1),
        ("CustomerRef.value", "CustomerId", "entity:Customer", None, True, 2),
        ("TxnDate", "IssueDate", "date", None, True, 3),
        ("DueDate", "DueDate", "date", None, False, 4),
        ("TotalAmt", "TotalAmount", "float", "0", False, 5),
        ("Balance", "Status", "invoicestatus", "Sent", False, 6),
    ],
    "Bill": [
        ("DocNumber", "BillNumber", "string", None, False, 1),
        ("VendorRef.value", "VendorId", "entity:Vendor", None, True, 2),
        ("TxnDate", "BillDate", "date", None, True, 3),
        ("DueDate", "DueDate", "date", None, False, 4),
        ("TotalAmt", "TotalAmount", "float", "0", False, 5),
        ("Balance", "Status", "billstatus", "Open", False, 6),
        ("PrivateNote", "Memo", "string", None, False, 7),
    ],
    "Payment": [
        ("PaymentRefNum", "PaymentNumber", "string", None, False, 1),
        ("CustomerRef.value", "CustomerId", "entity:Customer", None, True, 2),
        ("TxnDate", "PaymentDate", "date", None, True, 3),
        ("TotalAmt", "TotalAmount", "float", "0", False, 4),
        ("PaymentMethodRef.name", "PaymentMethod", "string", None, False, 5),
        ("DepositToAccountRef.value", "DepositAccountId", "entity:Account", None, False, 6),
        ("PrivateNote", "Memo", "string", None, False, 7),
    ],
    "BillPayment": [
        ("DocNumber", "PaymentNumber", "string", None, False, 1),
        ("VendorRef.value", "VendorId", "entity:Vendor", None, True, 2),
        ("TxnDate", "PaymentDate", "date", None, True, 3),
        ("TotalAmt", "TotalAmount", "float", "0", False, 4),
        ("PayType", "PaymentMethod", "lookup:PaymentType", None, False, 5),
        ("CheckPayment.BankAccountRef.value", "PaymentAccountId", "entity:Account", None, False, 6),
        ("CreditCardPayment.CCAccountRef.value", "PaymentAccountId", "entity:Account", None, False, 7),
        ("PrivateNote", "Memo", "string", None, False, 8),
    ],
    "JournalEntry": [
        ("DocNumber", "Reference", "string", None, False, 1),
        ("TxnDate", "TransactionDate", "date", None, True, 2),
        ("PrivateNote", "Description", "string", "Imported from QuickBooks", False, 3),
        ("Adjustment", "Status", "journalentrystatus", "Posted", False, 4),
    ],
}

# category -> (source value, target value, is default)
DEFAULT_TYPE_MAPS: Dict[str, List[Tuple[str, str, bool]]] = {
    "AccountType": [
        ("Bank", "Asset", False),
        ("Other Current Asset", "Asset", False),
        ("Fixed Asset", "Asset", False),
        ("Other Asset", "Asset", False),
        ("Accounts Receivable", "Asset", False),
        ("Accounts Payable", "Liability", False),
        ("Credit Card", "Liability", False),
        ("Other Current Liability", "Liability", False),
        ("Long Term Liability", "Liability", False),
        ("Equity", "Equity", False),
        ("Income", "Revenue", False),
        ("Other Income", "Revenue", False),
        ("Expense", "Expense", True),
        ("Other Expense", "Expense", False),
        ("Cost of Goods Sold", "Expense", False),
    ],
    "AccountSubtype": [
        ("Checking", "Cash", False),
        ("Savings", "Cash", False),
        ("MoneyMarket", "Cash", False),
        ("CashOnHand", "Cash", False),
        ("AccountsReceivable", "Accounts Receivable", False),
        ("AccountsPayable", "Accounts Payable", False),
        ("CreditCard", "Credit Card", False),
        ("AdvertisingPromotional", "Advertising", False),
        ("Auto", "Auto", False),
        ("Insurance", "Insurance", False),
        ("LegalProfessionalFees", "Professional Fees", False),
        ("OfficeGeneralAdministrativeExpenses", "Office Expense", False),
        ("RentOrLeaseOfBuildings", "Rent", False),
        ("Utilities", "Utilities", False),
        ("Travel", "Travel", False),
        ("TravelMeals", "Meals & Entertainment", False),
    ],
    "InvoiceStatus": [
        ("Paid", "Paid", False),
        ("Partial", "Partial", False),
        ("Overdue", "Overdue", False),
        ("Open", "Sent", True),
    ],
    "BillStatus": [
        ("Paid", "Paid", False),
        ("Partial", "Partial", False),
        ("Open", "Open", True),
    ],
    "PaymentType": [
        ("Check", "Check", False),
        ("CreditCard", "Credit Card", False),
        ("Cash", "Cash", True),
    ],
    "JournalEntryStatus": [
        ("true", "Draft", False),
        ("false", "Posted", True),
    ],
    "ItemType": [
        ("Service", "Service", True),
        ("Inventory", "Inventory", False),
        ("NonInventory", "Non-Inventory", False),
    ],
}

# key -> (value, description)
DEFAULT_CONFIGS: Dict[str, Tuple[str, str]] = {
    "SkipSystemAccounts": ("true", "Skip AR/AP system accounts during migration"),
    "DefaultAccountCodeStart": ("1000", "Starting code for auto-generated account codes"),
    "DuplicateHandling": ("skip", "How to handle duplicates: skip, update, error"),
    "MigrateInactiveRecords": ("false", "Whether to migrate inactive/deleted records"),
    "UpdateInvoiceBalances": ("true", "Update invoice balances when payments are migrated"),
    "UpdateBillBalances": ("true", "Update bill balances when bill payments are migrated"),
    "AutoPostJournalEntries": ("true", "Automatically post migrated journal entries"),
}


def default_field_maps(source_system: str, entity_type: str) -> List[FieldMap]:
    """Built-in field maps for one entity type, ordered by sort order."""
    rows = DEFAULT_FIELD_MAPS.get(str(entity_type), [])
    maps = [
        FieldMap(
            source_system=source_system,
            entity_type=str(entity_type),
            source_field=source_field,
            target_field=target_field,
            transform=Transform.parse(transform),
            default_value=default_value,
            is_required=is_required,
            sort_order=sort_order,
        )
        for source_field, target_field, transform, default_value, is_required, sort_order in rows
    ]
    return sorted(maps, key=lambda m: m.sort_order)


def default_type_maps(source_system: str, category: str) -> List[TypeMap]:
    """Built-in type maps for one category."""
    return [
        TypeMap(
            source_system=source_system,
            category=category,
            source_value=source_value,
            target_value=target_value,
            is_default=is_default,
        )
        for source_value, target_value, is_default in DEFAULT_TYPE_MAPS.get(category, [])
    ]


def default_configs() -> Dict[str, str]:
    """Built-in config values by key."""
    return {key: value for key, (value, _) in DEFAULT_CONFIGS.items()}

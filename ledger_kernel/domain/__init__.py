"""
Pure domain layer.

Records, commands, money helpers and the clock abstraction, with NO
dependencies on the ORM, the database, or I/O.  All domain objects are
immutable and deterministic.
"""

from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.commands import (
    CreateDocument,
    CreatePayment,
    CreateTemplate,
    DeleteDocument,
    DeletePayment,
    DeleteTemplate,
    LedgerCommand,
    SetPaidAmount,
    UpdateNumbering,
    UpdateTemplate,
)
from ledger_kernel.domain.money import ZERO, round_money, to_decimal
from ledger_kernel.domain.records import (
    Bill,
    Building,
    Category,
    CategoryKind,
    Contact,
    ContactType,
    DocumentKind,
    DocumentStatus,
    Entity,
    EntityKind,
    ExpenseBearer,
    Frequency,
    Invoice,
    InvoiceType,
    LedgerDocument,
    NumberingSettings,
    Payment,
    Project,
    Property,
    RecurringInvoiceTemplate,
    TransactionType,
    Unit,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CreateDocument",
    "CreatePayment",
    "CreateTemplate",
    "DeleteDocument",
    "DeletePayment",
    "DeleteTemplate",
    "LedgerCommand",
    "SetPaidAmount",
    "UpdateNumbering",
    "UpdateTemplate",
    "ZERO",
    "round_money",
    "to_decimal",
    "Bill",
    "Building",
    "Category",
    "CategoryKind",
    "Contact",
    "ContactType",
    "DocumentKind",
    "DocumentStatus",
    "Entity",
    "EntityKind",
    "ExpenseBearer",
    "Frequency",
    "Invoice",
    "InvoiceType",
    "LedgerDocument",
    "NumberingSettings",
    "Payment",
    "Project",
    "Property",
    "RecurringInvoiceTemplate",
    "TransactionType",
    "Unit",
]

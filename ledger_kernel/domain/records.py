"""
Ledger Records (``ledger_kernel.domain.records``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of the receivables/payables
ledger: invoices, bills, payments, recurring invoice templates, the
entities they reference (contacts, properties, buildings, projects, units)
and the income/expense categories payments are tagged with.

Architecture position
---------------------
**Kernel > Domain** -- pure data definitions with ZERO I/O.  Produced by
record stores, consumed by every engine.

Invariants enforced
-------------------
* All records are ``frozen=True`` (immutable after construction).
* All monetary fields are ``Decimal`` -- floats are rejected.
* ``due_date >= issue_date`` on every document that has a due date.
* ``security_deposit_charge + service_charges <= amount`` on invoices.

Derived values
--------------
``status`` and ``remaining`` are NOT fields.  They are computed by
``ledger_engines.balance`` from linked payments.  ``paid_amount`` is a
cache of applied payments, refreshed only through store commands.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import ClassVar

from ledger_kernel.domain.money import ZERO, to_decimal
from ledger_kernel.exceptions import (
    InvalidAmountError,
    InvalidDateOrderError,
    InvalidRecordError,
)


class DocumentKind(str, Enum):
    """Receivable (invoice) vs payable (bill) direction."""

    INVOICE = "invoice"
    BILL = "bill"


class DocumentStatus(str, Enum):
    """Derived document status. Never persisted independently."""

    DRAFT = "Draft"
    UNPAID = "Unpaid"
    PARTIALLY_PAID = "Partially Paid"
    PAID = "Paid"
    OVERDUE = "Overdue"


class InvoiceType(str, Enum):
    """Invoice classification."""

    RENTAL = "Rental"
    SECURITY_DEPOSIT = "Security Deposit"
    SERVICE_CHARGE = "Service Charge"
    INSTALLMENT = "Installment"


class TransactionType(str, Enum):
    """Money movement direction."""

    INCOME = "Income"
    EXPENSE = "Expense"


class CategoryKind(str, Enum):
    """Closed set of sub-ledger categories the engine resolves against."""

    RENTAL_INCOME = "rental_income"
    SECURITY_DEPOSIT = "security_deposit"
    SERVICE_CHARGE_INCOME = "service_charge_income"
    INSTALLMENT_INCOME = "installment_income"
    GENERAL_EXPENSE = "general_expense"


class EntityKind(str, Enum):
    """Kinds of entity the host can resolve by id."""

    CONTACT = "contact"
    PROPERTY = "property"
    BUILDING = "building"
    PROJECT = "project"
    UNIT = "unit"


class ContactType(str, Enum):
    TENANT = "Tenant"
    OWNER = "Owner"
    VENDOR = "Vendor"
    OTHER = "Other"


class ExpenseBearer(str, Enum):
    """Who bears the cost recorded on a bill."""

    OWNER = "owner"
    BUILDING = "building"
    TENANT = "tenant"


class Frequency(str, Enum):
    """Recurring schedule frequency."""

    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    YEARLY = "Yearly"


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerDocument:
    """
    Common shape of invoices and bills.

    Contract:
        Identity, amounts, dates and non-owning references shared by the
        receivable and payable directions.  Subclasses fix ``kind``, the
        payment type that counts toward the balance, and the payment field
        that links to the document.
    Guarantees:
        - ``amount`` and ``paid_amount`` are non-negative Decimals.
        - ``due_date`` (when set) is not before ``issue_date``.
    """

    kind: ClassVar[DocumentKind]
    payment_type: ClassVar[TransactionType]
    link_field: ClassVar[str]

    id: str
    number: str
    amount: Decimal
    issue_date: date
    due_date: date | None = None
    paid_amount: Decimal = ZERO
    contact_id: str | None = None
    description: str = ""
    category_id: str | None = None
    property_id: str | None = None
    building_id: str | None = None
    project_id: str | None = None
    unit_id: str | None = None
    is_draft: bool = False

    def __post_init__(self) -> None:
        if not self.id:
            raise InvalidRecordError(str(self.id), "id is required")
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "paid_amount", to_decimal(self.paid_amount))
        if self.amount < ZERO:
            raise InvalidAmountError("amount", self.amount, "must not be negative")
        if self.paid_amount < ZERO:
            raise InvalidAmountError("paid_amount", self.paid_amount, "must not be negative")
        if self.due_date is not None and self.due_date < self.issue_date:
            raise InvalidDateOrderError(self.id, "issue_date", "due_date")

    @property
    def counterparty_id(self) -> str | None:
        """Payer (invoice) or payee (bill)."""
        return self.contact_id

    @property
    def aging_date(self) -> date:
        """Date the document ages from: due date, else issue date."""
        return self.due_date or self.issue_date


@dataclass(frozen=True)
class Invoice(LedgerDocument):
    """A receivable: rent, deposit, service charge or installment owed to us."""

    kind: ClassVar[DocumentKind] = DocumentKind.INVOICE
    payment_type: ClassVar[TransactionType] = TransactionType.INCOME
    link_field: ClassVar[str] = "invoice_id"

    invoice_type: InvoiceType = InvoiceType.RENTAL
    security_deposit_charge: Decimal = ZERO
    service_charges: Decimal = ZERO
    agreement_id: str | None = None
    rental_month: str | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.due_date is None:
            raise InvalidRecordError(self.id, "invoices require a due_date")
        object.__setattr__(
            self, "security_deposit_charge", to_decimal(self.security_deposit_charge)
        )
        object.__setattr__(self, "service_charges", to_decimal(self.service_charges))
        if self.security_deposit_charge < ZERO:
            raise InvalidAmountError(
                "security_deposit_charge", self.security_deposit_charge, "must not be negative"
            )
        if self.service_charges < ZERO:
            raise InvalidAmountError(
                "service_charges", self.service_charges, "must not be negative"
            )
        if self.security_deposit_charge + self.service_charges > self.amount:
            raise InvalidRecordError(
                self.id,
                "security_deposit_charge + service_charges exceeds amount "
                f"({self.security_deposit_charge} + {self.service_charges} > {self.amount})",
            )


@dataclass(frozen=True)
class Bill(LedgerDocument):
    """A payable owed to a vendor or contact."""

    kind: ClassVar[DocumentKind] = DocumentKind.BILL
    payment_type: ClassVar[TransactionType] = TransactionType.EXPENSE
    link_field: ClassVar[str] = "bill_id"

    vendor_id: str | None = None
    expense_bearer: ExpenseBearer | None = None
    contract_id: str | None = None

    @property
    def counterparty_id(self) -> str | None:
        return self.vendor_id or self.contact_id


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Payment:
    """
    A money movement, optionally linked to one invoice or one bill.

    Guarantees:
        - ``amount`` is a Decimal (positive = collected/paid out).
        - At most one of ``invoice_id`` / ``bill_id`` is set.
    """

    id: str
    type: TransactionType
    amount: Decimal
    date: date
    account_id: str | None = None
    invoice_id: str | None = None
    bill_id: str | None = None
    batch_id: str | None = None
    category_id: str | None = None
    contact_id: str | None = None
    property_id: str | None = None
    building_id: str | None = None
    description: str = ""
    reference: str | None = None
    voided: bool = False

    def __post_init__(self) -> None:
        if not self.id:
            raise InvalidRecordError(str(self.id), "id is required")
        object.__setattr__(self, "amount", to_decimal(self.amount))
        if self.invoice_id and self.bill_id:
            raise InvalidRecordError(self.id, "payment cannot link both an invoice and a bill")

    @property
    def document_id(self) -> str | None:
        return self.invoice_id or self.bill_id

    def links_to(self, document: LedgerDocument) -> bool:
        """True when this payment counts toward ``document``'s balance."""
        return (
            not self.voided
            and self.type == document.payment_type
            and getattr(self, document.link_field) == document.id
        )


# ---------------------------------------------------------------------------
# Recurring templates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecurringInvoiceTemplate:
    """
    A memorized invoice pattern generated on a schedule.

    Guarantees:
        - ``1 <= day_of_month <= 31``.
        - ``amount`` is a non-negative Decimal.
        - Either ``agreement_id`` or ``property_id`` + ``contact_id`` scopes it.
    """

    id: str
    contact_id: str
    amount: Decimal
    day_of_month: int
    next_due_date: date
    property_id: str | None = None
    building_id: str | None = None
    agreement_id: str | None = None
    description_template: str = "Rent for {Month}"
    invoice_type: InvoiceType = InvoiceType.RENTAL
    frequency: Frequency = Frequency.MONTHLY
    active: bool = True
    auto_generate: bool = False
    max_occurrences: int | None = None
    generated_count: int = 0
    last_generated_date: date | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        if self.amount < ZERO:
            raise InvalidAmountError("amount", self.amount, "must not be negative")
        if not 1 <= self.day_of_month <= 31:
            raise InvalidRecordError(self.id, f"day_of_month out of range: {self.day_of_month}")
        if not self.agreement_id and not (self.property_id and self.contact_id):
            raise InvalidRecordError(
                self.id, "template needs agreement_id or property_id + contact_id"
            )
        if self.max_occurrences is not None and self.max_occurrences <= 0:
            raise InvalidRecordError(self.id, "max_occurrences must be positive")

    @property
    def is_exhausted(self) -> bool:
        return (
            self.max_occurrences is not None
            and self.generated_count >= self.max_occurrences
        )


# ---------------------------------------------------------------------------
# Entities and categories
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Contact:
    id: str
    name: str
    contact_type: ContactType = ContactType.OTHER


@dataclass(frozen=True)
class Property:
    id: str
    name: str
    building_id: str | None = None
    owner_id: str | None = None


@dataclass(frozen=True)
class Building:
    id: str
    name: str


@dataclass(frozen=True)
class Project:
    id: str
    name: str


@dataclass(frozen=True)
class Unit:
    id: str
    name: str
    project_id: str | None = None


Entity = Contact | Property | Building | Project | Unit


@dataclass(frozen=True)
class Category:
    """An income/expense category. ``kind`` is optional; hosts may tag by name only."""

    id: str
    name: str
    kind: CategoryKind | None = None


@dataclass(frozen=True)
class NumberingSettings:
    """Invoice number sequence: ``prefix`` + zero-padded counter."""

    prefix: str = "INV-"
    next_number: int = 1
    padding: int = 5

    def format(self, number: int) -> str:
        return f"{self.prefix}{str(number).zfill(self.padding)}"

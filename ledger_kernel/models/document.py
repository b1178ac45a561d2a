"""
Ledger Document ORM Models (``ledger_kernel.models.document``).

Responsibility
--------------
SQLAlchemy persistence for invoices (receivables) and bills (payables).
Maps the frozen ``Invoice`` / ``Bill`` dataclasses to tables.

Architecture position
---------------------
**Kernel > Models** -- imports from ``ledger_kernel.db.base`` and the
domain records only.

Invariants enforced
-------------------
* ``paid_amount`` is a cache; it is written only through
  ``SetPaidAmount`` commands applied by ``SqlRecordStore``.
* Entity references are plain indexed strings, not foreign keys: a
  dangling reference must never block a write or a read.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import ID_LENGTH, TrackedBase
from ledger_kernel.domain.records import (
    Bill,
    ExpenseBearer,
    Invoice,
    InvoiceType,
)


class InvoiceModel(TrackedBase):
    """
    ORM model for receivable invoices.

    Guarantees:
        - number is unique (uq_ledger_invoices_number).
        - amount / paid_amount / sub-amounts are Numeric(38, 9).
    """

    __tablename__ = "ledger_invoices"

    __table_args__ = (
        UniqueConstraint("number", name="uq_ledger_invoices_number"),
        Index("idx_ledger_invoices_contact", "contact_id"),
        Index("idx_ledger_invoices_property", "property_id"),
        Index("idx_ledger_invoices_agreement", "agreement_id"),
        Index("idx_ledger_invoices_due_date", "due_date"),
    )

    number: Mapped[str] = mapped_column(String(100), nullable=False)
    invoice_type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    security_deposit_charge: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    service_charges: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    issue_date: Mapped[date] = mapped_column(nullable=False)
    due_date: Mapped[date] = mapped_column(nullable=False)
    contact_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    category_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    property_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    building_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    project_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    unit_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    agreement_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    rental_month: Mapped[str | None] = mapped_column(String(7), nullable=True)
    is_draft: Mapped[bool] = mapped_column(Boolean, default=False)

    def to_dto(self) -> Invoice:
        """Convert ORM model to frozen dataclass."""
        return Invoice(
            id=self.id,
            number=self.number,
            amount=self.amount,
            issue_date=self.issue_date,
            due_date=self.due_date,
            paid_amount=self.paid_amount,
            contact_id=self.contact_id,
            description=self.description or "",
            category_id=self.category_id,
            property_id=self.property_id,
            building_id=self.building_id,
            project_id=self.project_id,
            unit_id=self.unit_id,
            is_draft=self.is_draft,
            invoice_type=InvoiceType(self.invoice_type),
            security_deposit_charge=self.security_deposit_charge,
            service_charges=self.service_charges,
            agreement_id=self.agreement_id,
            rental_month=self.rental_month,
        )

    @classmethod
    def from_dto(cls, dto: Invoice) -> "InvoiceModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            number=dto.number,
            invoice_type=InvoiceType(dto.invoice_type).value,
            amount=dto.amount,
            paid_amount=dto.paid_amount,
            security_deposit_charge=dto.security_deposit_charge,
            service_charges=dto.service_charges,
            issue_date=dto.issue_date,
            due_date=dto.due_date,
            contact_id=dto.contact_id,
            description=dto.description,
            category_id=dto.category_id,
            property_id=dto.property_id,
            building_id=dto.building_id,
            project_id=dto.project_id,
            unit_id=dto.unit_id,
            agreement_id=dto.agreement_id,
            rental_month=dto.rental_month,
            is_draft=dto.is_draft,
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.number}: {self.amount}>"


class BillModel(TrackedBase):
    """
    ORM model for payable bills.

    Bills may carry no due date; they then age from ``issue_date``.
    """

    __tablename__ = "ledger_bills"

    __table_args__ = (
        Index("idx_ledger_bills_vendor", "vendor_id"),
        Index("idx_ledger_bills_property", "property_id"),
        Index("idx_ledger_bills_building", "building_id"),
    )

    number: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    issue_date: Mapped[date] = mapped_column(nullable=False)
    due_date: Mapped[date | None] = mapped_column(nullable=True)
    contact_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    vendor_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    category_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    property_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    building_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    project_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    unit_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    contract_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    expense_bearer: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_draft: Mapped[bool] = mapped_column(Boolean, default=False)

    def to_dto(self) -> Bill:
        """Convert ORM model to frozen dataclass."""
        return Bill(
            id=self.id,
            number=self.number,
            amount=self.amount,
            issue_date=self.issue_date,
            due_date=self.due_date,
            paid_amount=self.paid_amount,
            contact_id=self.contact_id,
            description=self.description or "",
            category_id=self.category_id,
            property_id=self.property_id,
            building_id=self.building_id,
            project_id=self.project_id,
            unit_id=self.unit_id,
            is_draft=self.is_draft,
            vendor_id=self.vendor_id,
            expense_bearer=(
                ExpenseBearer(self.expense_bearer) if self.expense_bearer else None
            ),
            contract_id=self.contract_id,
        )

    @classmethod
    def from_dto(cls, dto: Bill) -> "BillModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            number=dto.number,
            amount=dto.amount,
            paid_amount=dto.paid_amount,
            issue_date=dto.issue_date,
            due_date=dto.due_date,
            contact_id=dto.contact_id,
            vendor_id=dto.vendor_id,
            description=dto.description,
            category_id=dto.category_id,
            property_id=dto.property_id,
            building_id=dto.building_id,
            project_id=dto.project_id,
            unit_id=dto.unit_id,
            contract_id=dto.contract_id,
            expense_bearer=(
                ExpenseBearer(dto.expense_bearer).value if dto.expense_bearer else None
            ),
            is_draft=dto.is_draft,
        )

    def __repr__(self) -> str:
        return f"<BillModel {self.number}: {self.amount}>"

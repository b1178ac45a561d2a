"""
Payment ORM Model (``ledger_kernel.models.payment``).

Maps the frozen ``Payment`` dataclass to ``ledger_payments``.  Payments
link to at most one invoice or one bill; ``batch_id`` groups the payments
created by one bulk action.
"""

import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Date, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import ID_LENGTH, TrackedBase
from ledger_kernel.domain.records import Payment, TransactionType


class PaymentModel(TrackedBase):
    """ORM model for payments (transactions)."""

    __tablename__ = "ledger_payments"

    __table_args__ = (
        CheckConstraint(
            "invoice_id IS NULL OR bill_id IS NULL",
            name="ck_ledger_payments_single_link",
        ),
        Index("idx_ledger_payments_invoice", "invoice_id"),
        Index("idx_ledger_payments_bill", "bill_id"),
        Index("idx_ledger_payments_batch", "batch_id"),
    )

    type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    account_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    invoice_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    bill_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    batch_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    category_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    contact_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    property_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    building_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    voided: Mapped[bool] = mapped_column(Boolean, default=False)

    def to_dto(self) -> Payment:
        """Convert ORM model to frozen dataclass."""
        return Payment(
            id=self.id,
            type=TransactionType(self.type),
            amount=self.amount,
            date=self.date,
            account_id=self.account_id,
            invoice_id=self.invoice_id,
            bill_id=self.bill_id,
            batch_id=self.batch_id,
            category_id=self.category_id,
            contact_id=self.contact_id,
            property_id=self.property_id,
            building_id=self.building_id,
            description=self.description or "",
            reference=self.reference,
            voided=self.voided,
        )

    @classmethod
    def from_dto(cls, dto: Payment) -> "PaymentModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            type=TransactionType(dto.type).value,
            amount=dto.amount,
            date=dto.date,
            account_id=dto.account_id,
            invoice_id=dto.invoice_id,
            bill_id=dto.bill_id,
            batch_id=dto.batch_id,
            category_id=dto.category_id,
            contact_id=dto.contact_id,
            property_id=dto.property_id,
            building_id=dto.building_id,
            description=dto.description,
            reference=dto.reference,
            voided=dto.voided,
        )

    def __repr__(self) -> str:
        return f"<PaymentModel {self.id}: {self.type} {self.amount}>"

"""
Recurring Template ORM Models (``ledger_kernel.models.template``).

Responsibility
--------------
Persistence for memorized recurring invoice templates and the invoice
numbering sequence.  Both are rewritten by the recurring advancer in the
same transaction as the invoice they produce.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import ID_LENGTH, TrackedBase
from ledger_kernel.domain.records import (
    Frequency,
    InvoiceType,
    NumberingSettings,
    RecurringInvoiceTemplate,
)

NUMBERING_ROW_ID = "invoice-numbering"


class RecurringTemplateModel(TrackedBase):
    """
    ORM model for recurring invoice templates.

    Guarantees:
        - ``update_from_dto`` rewrites every mutable column in place so the
          row keeps its identity and ``created_at``.
    """

    __tablename__ = "ledger_recurring_templates"

    __table_args__ = (
        Index("idx_ledger_templates_next_due", "active", "next_due_date"),
        Index("idx_ledger_templates_agreement", "agreement_id"),
    )

    contact_id: Mapped[str] = mapped_column(String(ID_LENGTH), nullable=False)
    property_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    building_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    agreement_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    description_template: Mapped[str] = mapped_column(Text, nullable=False)
    day_of_month: Mapped[int] = mapped_column(Integer, nullable=False)
    next_due_date: Mapped[date] = mapped_column(nullable=False)
    invoice_type: Mapped[str] = mapped_column(String(32), nullable=False)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_generate: Mapped[bool] = mapped_column(Boolean, default=False)
    max_occurrences: Mapped[int | None] = mapped_column(Integer, nullable=True)
    generated_count: Mapped[int] = mapped_column(Integer, default=0)
    last_generated_date: Mapped[date | None] = mapped_column(nullable=True)

    def to_dto(self) -> RecurringInvoiceTemplate:
        """Convert ORM model to frozen dataclass."""
        return RecurringInvoiceTemplate(
            id=self.id,
            contact_id=self.contact_id,
            amount=self.amount,
            day_of_month=self.day_of_month,
            next_due_date=self.next_due_date,
            property_id=self.property_id,
            building_id=self.building_id,
            agreement_id=self.agreement_id,
            description_template=self.description_template,
            invoice_type=InvoiceType(self.invoice_type),
            frequency=Frequency(self.frequency),
            active=self.active,
            auto_generate=self.auto_generate,
            max_occurrences=self.max_occurrences,
            generated_count=self.generated_count,
            last_generated_date=self.last_generated_date,
        )

    def update_from_dto(self, dto: RecurringInvoiceTemplate) -> None:
        self.contact_id = dto.contact_id
        self.property_id = dto.property_id
        self.building_id = dto.building_id
        self.agreement_id = dto.agreement_id
        self.amount = dto.amount
        self.description_template = dto.description_template
        self.day_of_month = dto.day_of_month
        self.next_due_date = dto.next_due_date
        self.invoice_type = InvoiceType(dto.invoice_type).value
        self.frequency = Frequency(dto.frequency).value
        self.active = dto.active
        self.auto_generate = dto.auto_generate
        self.max_occurrences = dto.max_occurrences
        self.generated_count = dto.generated_count
        self.last_generated_date = dto.last_generated_date

    @classmethod
    def from_dto(cls, dto: RecurringInvoiceTemplate) -> "RecurringTemplateModel":
        """Create ORM model from frozen dataclass."""
        model = cls(id=dto.id)
        model.update_from_dto(dto)
        return model

    def __repr__(self) -> str:
        return f"<RecurringTemplateModel {self.id}: next {self.next_due_date}>"


class NumberingSettingsModel(TrackedBase):
    """Single-row table holding the invoice number sequence."""

    __tablename__ = "ledger_numbering_settings"

    prefix: Mapped[str] = mapped_column(String(32), nullable=False)
    next_number: Mapped[int] = mapped_column(Integer, nullable=False)
    padding: Mapped[int] = mapped_column(Integer, nullable=False)

    def to_dto(self) -> NumberingSettings:
        return NumberingSettings(
            prefix=self.prefix,
            next_number=self.next_number,
            padding=self.padding,
        )

    @classmethod
    def from_dto(cls, dto: NumberingSettings) -> "NumberingSettingsModel":
        return cls(
            id=NUMBERING_ROW_ID,
            prefix=dto.prefix,
            next_number=dto.next_number,
            padding=dto.padding,
        )

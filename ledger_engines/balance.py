"""
Module: ledger_engines.balance
Responsibility:
    Derive the authoritative paid amount, remaining balance and status of
    an invoice or bill from its linked payments, plus the rent/deposit
    sub-ledger breakdown used to cap split payments.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Consumed by aging,
    hierarchy, allocation and the query layer.

Invariants enforced:
    - Status and remaining are always computed, never read from a field.
      The document's ``paid_amount`` cache is ignored here.
    - Only payments of the document's direction that link to it and are
      not voided count toward ``paid``.
    - ``remaining = max(0, amount - paid)``.
    - Settlement is tolerance-based (``ReconciliationConfig.tolerance``).

Status rules (first match wins):
    1. draft flag and nothing paid     -> Draft
    2. remaining <= tolerance          -> Paid
    3. paid > 0                        -> Partially Paid
    4. due_date < today                -> Overdue
    5. otherwise                       -> Unpaid
    A document without a due date is never Overdue.

Failure modes:
    None.  Every input combination maps to exactly one status.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from ledger_config.schema import ReconciliationConfig
from ledger_engines.lookup import LookupIndex
from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.money import ZERO, floor_zero, is_settled
from ledger_kernel.domain.records import (
    DocumentStatus,
    Invoice,
    LedgerDocument,
    Payment,
)
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.balance")


@dataclass(frozen=True)
class DocumentBalance:
    """
    Derived balance of one document.

    Guarantees:
        - ``remaining >= 0``.
        - ``status`` is consistent with ``paid`` / ``remaining`` / ``today``.
    """

    document_id: str
    amount: Decimal
    paid: Decimal
    remaining: Decimal
    status: DocumentStatus

    @property
    def is_paid(self) -> bool:
        return self.status is DocumentStatus.PAID

    @property
    def outstanding(self) -> Decimal:
        """Contribution to outstanding sums: zero once Paid."""
        return ZERO if self.is_paid else self.remaining


@dataclass(frozen=True)
class SubLedgerBalance:
    """
    Rent/deposit split of one invoice.

    The primary portion covers rent, service charges and installments;
    the deposit portion is ``security_deposit_charge``.
    """

    primary_due: Decimal
    primary_paid: Decimal
    deposit_due: Decimal
    deposit_paid: Decimal

    @property
    def primary_remaining(self) -> Decimal:
        return floor_zero(self.primary_due - self.primary_paid)

    @property
    def deposit_remaining(self) -> Decimal:
        return floor_zero(self.deposit_due - self.deposit_paid)

    @property
    def total_remaining(self) -> Decimal:
        return self.primary_remaining + self.deposit_remaining


@dataclass(frozen=True)
class ResolvedDocument:
    """A document paired with its derived balance."""

    document: LedgerDocument
    balance: DocumentBalance

    @property
    def status(self) -> DocumentStatus:
        return self.balance.status

    @property
    def remaining(self) -> Decimal:
        return self.balance.remaining


class BalanceResolver:
    """
    Resolve balances and statuses.

    Contract:
        Pure functions -- no I/O; ``today`` is always a parameter.
    Non-goals:
        - Does not refresh the stored ``paid_amount`` cache; the
          reconciliation service emits ``SetPaidAmount`` commands for that.
    """

    def __init__(self, config: ReconciliationConfig | None = None):
        self._config = config or ReconciliationConfig()

    @property
    def tolerance(self) -> Decimal:
        return self._config.tolerance

    def linked_payments(
        self,
        document: LedgerDocument,
        payments: Iterable[Payment],
    ) -> tuple[Payment, ...]:
        """Payments that count toward ``document``'s balance."""
        return tuple(p for p in payments if p.links_to(document))

    def paid_amount(
        self,
        document: LedgerDocument,
        payments: Iterable[Payment],
    ) -> Decimal:
        return sum((p.amount for p in self.linked_payments(document, payments)), ZERO)

    def status_for(
        self,
        document: LedgerDocument,
        paid: Decimal,
        remaining: Decimal,
        today: date,
    ) -> DocumentStatus:
        if document.is_draft and paid <= ZERO:
            return DocumentStatus.DRAFT
        if is_settled(remaining, self.tolerance):
            return DocumentStatus.PAID
        if paid > ZERO:
            return DocumentStatus.PARTIALLY_PAID
        if document.due_date is not None and document.due_date < today:
            return DocumentStatus.OVERDUE
        return DocumentStatus.UNPAID

    def resolve(
        self,
        document: LedgerDocument,
        payments: Iterable[Payment],
        today: date,
    ) -> DocumentBalance:
        """
        Derive paid, remaining and status for one document.

        Args:
            document: Invoice or bill.
            payments: Candidate payments; non-linking ones are ignored.
            today: Date the overdue check is made against.
        """
        paid = self.paid_amount(document, payments)
        remaining = floor_zero(document.amount - paid)
        return DocumentBalance(
            document_id=document.id,
            amount=document.amount,
            paid=paid,
            remaining=remaining,
            status=self.status_for(document, paid, remaining, today),
        )

    @traced_engine("balance", "1.0", fingerprint_fields=("today",))
    def resolve_all(
        self,
        documents: Sequence[LedgerDocument],
        index: LookupIndex,
        today: date,
    ) -> tuple[ResolvedDocument, ...]:
        """Resolve every document against the index's payment map."""
        resolved = tuple(
            ResolvedDocument(
                document=doc,
                balance=self.resolve(doc, index.payments_for(doc), today),
            )
            for doc in documents
        )
        logger.debug(
            "balances_resolved",
            extra={"document_count": len(resolved), "today": today.isoformat()},
        )
        return resolved

    def sub_ledger(
        self,
        invoice: Invoice,
        payments: Iterable[Payment],
        deposit_category_id: str | None,
    ) -> SubLedgerBalance:
        """
        Split an invoice's balance into primary and deposit portions.

        Payments tagged with the deposit category count toward the deposit
        portion; every other linked payment counts toward the primary
        portion.  An invoice with no deposit charge is all primary.
        """
        deposit_due = invoice.security_deposit_charge
        primary_due = invoice.amount - deposit_due
        primary_paid = ZERO
        deposit_paid = ZERO
        for payment in self.linked_payments(invoice, payments):
            if (
                deposit_due > ZERO
                and deposit_category_id is not None
                and payment.category_id == deposit_category_id
            ):
                deposit_paid += payment.amount
            else:
                primary_paid += payment.amount
        return SubLedgerBalance(
            primary_due=primary_due,
            primary_paid=primary_paid,
            deposit_due=deposit_due,
            deposit_paid=deposit_paid,
        )

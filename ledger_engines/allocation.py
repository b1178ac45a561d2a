"""
Module: ledger_engines.allocation
Responsibility:
    Plan the payments that apply a collected (or paid-out) amount to one or
    more open invoices or bills: single-invoice rent/deposit splits,
    waterfall bulk payments, explicit per-document bulk payments, bill
    payments, and reversals.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Returns plans made of
    ``ledger_kernel.domain.commands``; the reconciliation service applies
    them through the record store.

Invariants enforced:
    - Sub-ledger caps: a component payment never exceeds that component's
      remaining balance by more than the configured tolerance.
    - Conservation: ``total_allocated + unallocated == requested``.
    - One payment per non-zero component, each tagged with its resolved
      category.  Rent and deposit are never merged into one payment.
    - Every payment of one bulk action shares one ``batch_id``.
    - Waterfall order: oldest due date first, ties by document number.
    - Nothing is planned unless the whole request validates; categories
      are resolved before any line is produced.

Failure modes:
    - InvalidAmountError: negative component, or total <= 0.
    - AmountExceedsRemainingError: a component or document cap exceeded.
    - DocumentNotPayableError: draft document selected for payment.
    - CategoryResolutionError: no category resolvable for a component.

Audit relevance:
    Each planned payment carries invoice/bill linkage, category and batch
    id, so sub-ledger balances and batch reversals can be reconstructed
    from the payment history alone.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import uuid4

from ledger_config.schema import ReconciliationConfig
from ledger_engines.balance import BalanceResolver
from ledger_engines.categories import CategoryResolver, Component
from ledger_engines.lookup import LookupIndex
from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.commands import CreatePayment, DeletePayment
from ledger_kernel.domain.money import ZERO, exceeds, round_money, to_decimal
from ledger_kernel.domain.records import (
    Bill,
    DocumentStatus,
    Invoice,
    LedgerDocument,
    Payment,
)
from ledger_kernel.exceptions import (
    AmountExceedsRemainingError,
    DocumentNotPayableError,
    InvalidAmountError,
)
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

EXPENSE_COMPONENT = "expense"


def _new_id() -> str:
    return str(uuid4())


@dataclass(frozen=True)
class PaymentDetails:
    """Fields shared by every payment of one allocation."""

    payment_date: date
    account_id: str | None = None
    reference: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class AllocationLine:
    """
    Amount applied to one component of one document.

    Guarantees:
        - ``amount > 0``.
    """

    document_id: str
    component: str
    category_id: str
    amount: Decimal
    payment_id: str


@dataclass(frozen=True)
class AllocationPlan:
    """
    Planned payments for one allocation action.

    Guarantees:
        - ``total_allocated + unallocated == requested``.
        - ``payments`` and ``lines`` correspond one-to-one.
    """

    requested: Decimal
    lines: tuple[AllocationLine, ...]
    payments: tuple[Payment, ...]
    batch_id: str | None = None

    @property
    def total_allocated(self) -> Decimal:
        return sum((line.amount for line in self.lines), ZERO)

    @property
    def unallocated(self) -> Decimal:
        return self.requested - self.total_allocated

    @property
    def document_ids(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for line in self.lines:
            seen.setdefault(line.document_id, None)
        return tuple(seen)

    @property
    def commands(self) -> tuple[CreatePayment, ...]:
        return tuple(CreatePayment(p) for p in self.payments)

    def allocated_to(self, document_id: str) -> Decimal:
        return sum(
            (line.amount for line in self.lines if line.document_id == document_id),
            ZERO,
        )


@dataclass(frozen=True)
class _Slot:
    """Open capacity of one component of one document."""

    component: str
    capacity: Decimal


class PaymentAllocator:
    """
    Plan payments against invoices and bills.

    Contract:
        Pure planning -- the allocator reads a snapshot (documents plus a
        ``LookupIndex``) and returns an ``AllocationPlan``.  It never
        writes.  Payment and batch ids come from ``id_factory``.
    Guarantees:
        - A raised error means no plan; there is nothing to undo.
    Non-goals:
        - Does not refresh cached ``paid_amount``; the service does that in
          the same atomic batch.
    """

    def __init__(
        self,
        config: ReconciliationConfig | None = None,
        id_factory: Callable[[], str] = _new_id,
    ):
        self._config = config or ReconciliationConfig()
        self._resolver = BalanceResolver(self._config)
        self._new_id = id_factory

    @property
    def tolerance(self) -> Decimal:
        return self._config.tolerance

    def _money(self, value: Decimal | int | str) -> Decimal:
        """Host amount as a Decimal at the configured precision."""
        return round_money(to_decimal(value), self._config.money_decimal_places)

    # ------------------------------------------------------------------
    # Capacity
    # ------------------------------------------------------------------

    def _ensure_payable(self, document: LedgerDocument, index: LookupIndex, today: date):
        balance = self._resolver.resolve(document, index.payments_for(document), today)
        if balance.status is DocumentStatus.DRAFT:
            logger.warning("allocation_document_not_payable", extra={
                "document_id": document.id,
                "status": balance.status.value,
            })
            raise DocumentNotPayableError(document.id, balance.status.value)
        return balance

    def _slots(
        self,
        document: LedgerDocument,
        index: LookupIndex,
        categories: CategoryResolver,
    ) -> list[_Slot]:
        """Open components of ``document`` in payment order."""
        if isinstance(document, Invoice):
            sub = self._resolver.sub_ledger(
                document, index.payments_for(document), categories.deposit_category_id()
            )
            primary = _Slot(Component.PRIMARY.value, sub.primary_remaining)
            deposit = _Slot(Component.DEPOSIT.value, sub.deposit_remaining)
            if self._config.deposit_first:
                return [deposit, primary]
            return [primary, deposit]
        balance = self._resolver.resolve(document, index.payments_for(document), date.min)
        return [_Slot(EXPENSE_COMPONENT, balance.remaining)]

    def _category_id(
        self,
        document: LedgerDocument,
        component: str,
        categories: CategoryResolver,
    ) -> str:
        if isinstance(document, Invoice):
            return categories.for_invoice(document, Component(component)).id
        return categories.for_bill(document).id

    def _distribute(
        self,
        document: LedgerDocument,
        amount: Decimal,
        slots: Sequence[_Slot],
    ) -> list[tuple[str, Decimal]]:
        """
        Spread ``amount`` over ``slots`` in order.

        A leftover within tolerance (amount slightly above capacity) is
        added to the last funded component.
        """
        parts: list[tuple[str, Decimal]] = []
        left = amount
        for slot in slots:
            if left <= ZERO:
                break
            take = min(left, slot.capacity)
            if take > ZERO:
                parts.append((slot.component, take))
                left -= take
        if left > ZERO:
            if parts:
                component, take = parts[-1]
                parts[-1] = (component, take + left)
            else:
                parts.append((slots[0].component, left))
        return parts

    # ------------------------------------------------------------------
    # Payment construction
    # ------------------------------------------------------------------

    def _describe(self, document: LedgerDocument, component: str, bulk: bool) -> str:
        doc_label = "Invoice" if isinstance(document, Invoice) else "Bill"
        if component == Component.DEPOSIT.value:
            return f"Security Deposit for {doc_label} #{document.number}"
        prefix = "Bulk payment" if bulk else "Payment"
        return f"{prefix} for {doc_label} #{document.number}"

    def _payment(
        self,
        document: LedgerDocument,
        component: str,
        category_id: str,
        amount: Decimal,
        details: PaymentDetails,
        batch_id: str | None,
    ) -> Payment:
        link = {document.link_field: document.id}
        return Payment(
            id=self._new_id(),
            type=document.payment_type,
            amount=amount,
            date=details.payment_date,
            account_id=details.account_id,
            batch_id=batch_id,
            category_id=category_id,
            contact_id=document.counterparty_id,
            property_id=document.property_id,
            building_id=document.building_id,
            description=details.description
            or self._describe(document, component, bulk=batch_id is not None),
            reference=details.reference,
            **link,
        )

    def _plan(
        self,
        requested: Decimal,
        portions: Sequence[tuple[LedgerDocument, Sequence[tuple[str, Decimal]]]],
        categories: CategoryResolver,
        details: PaymentDetails,
        batch_id: str | None,
    ) -> AllocationPlan:
        # Resolve every category first so a configuration error leaves no plan.
        resolved = [
            (document, component, self._category_id(document, component, categories), amount)
            for document, parts in portions
            for component, amount in parts
        ]
        lines: list[AllocationLine] = []
        payments: list[Payment] = []
        for document, component, category_id, amount in resolved:
            payment = self._payment(document, component, category_id, amount, details, batch_id)
            payments.append(payment)
            lines.append(
                AllocationLine(
                    document_id=document.id,
                    component=component,
                    category_id=category_id,
                    amount=amount,
                    payment_id=payment.id,
                )
            )
        return AllocationPlan(
            requested=requested,
            lines=tuple(lines),
            payments=tuple(payments),
            batch_id=batch_id,
        )

    @staticmethod
    def _order(documents: Iterable[LedgerDocument]) -> list[LedgerDocument]:
        return sorted(documents, key=lambda d: (d.aging_date, d.number, d.id))

    # ------------------------------------------------------------------
    # Single-invoice split
    # ------------------------------------------------------------------

    @traced_engine(
        "allocation", "1.0",
        fingerprint_fields=("invoice", "primary_amount", "deposit_amount"),
    )
    def plan_split(
        self,
        invoice: Invoice,
        index: LookupIndex,
        primary_amount: Decimal,
        deposit_amount: Decimal,
        details: PaymentDetails,
        today: date,
    ) -> AllocationPlan:
        """
        Plan a rent/deposit split payment against one invoice.

        Args:
            invoice: Target invoice.
            index: Lookup maps for the snapshot (linked payments, categories).
            primary_amount: Rent (or service/installment) portion.
            deposit_amount: Security-deposit portion.
            details: Date/account/reference shared by both payments.
            today: Date used for the payability check.

        Raises:
            InvalidAmountError, AmountExceedsRemainingError,
            DocumentNotPayableError, CategoryResolutionError.
        """
        primary_amount = self._money(primary_amount)
        deposit_amount = self._money(deposit_amount)

        logger.info("split_allocation_started", extra={
            "document_id": invoice.id,
            "primary_amount": str(primary_amount),
            "deposit_amount": str(deposit_amount),
        })

        for field_name, value in (
            ("primary_amount", primary_amount),
            ("deposit_amount", deposit_amount),
        ):
            if value < ZERO:
                raise InvalidAmountError(field_name, value, "must not be negative")
        total = primary_amount + deposit_amount
        if total <= ZERO:
            raise InvalidAmountError("total", total, "total payment must be positive")

        balance = self._ensure_payable(invoice, index, today)
        categories = CategoryResolver(index, self._config)
        sub = self._resolver.sub_ledger(
            invoice, index.payments_for(invoice), categories.deposit_category_id()
        )

        if exceeds(primary_amount, sub.primary_remaining, self.tolerance):
            logger.warning("split_allocation_rejected", extra={
                "document_id": invoice.id,
                "cap": Component.PRIMARY.value,
                "requested": str(primary_amount),
                "remaining": str(sub.primary_remaining),
            })
            raise AmountExceedsRemainingError(
                invoice.id, Component.PRIMARY.value, primary_amount, sub.primary_remaining
            )
        if exceeds(deposit_amount, sub.deposit_remaining, self.tolerance):
            logger.warning("split_allocation_rejected", extra={
                "document_id": invoice.id,
                "cap": Component.DEPOSIT.value,
                "requested": str(deposit_amount),
                "remaining": str(sub.deposit_remaining),
            })
            raise AmountExceedsRemainingError(
                invoice.id, Component.DEPOSIT.value, deposit_amount, sub.deposit_remaining
            )
        if exceeds(total, balance.remaining, self.tolerance):
            logger.warning("split_allocation_rejected", extra={
                "document_id": invoice.id,
                "cap": "total",
                "requested": str(total),
                "remaining": str(balance.remaining),
            })
            raise AmountExceedsRemainingError(invoice.id, "total", total, balance.remaining)

        parts = [
            (component, amount)
            for component, amount in (
                (Component.PRIMARY.value, primary_amount),
                (Component.DEPOSIT.value, deposit_amount),
            )
            if amount > ZERO
        ]
        plan = self._plan(total, [(invoice, parts)], categories, details, batch_id=None)

        logger.info("split_allocation_planned", extra={
            "document_id": invoice.id,
            "payment_count": len(plan.payments),
            "total_allocated": str(plan.total_allocated),
        })
        return plan

    # ------------------------------------------------------------------
    # Waterfall bulk
    # ------------------------------------------------------------------

    @traced_engine("allocation", "1.0", fingerprint_fields=("documents", "amount"))
    def plan_waterfall(
        self,
        documents: Sequence[LedgerDocument],
        index: LookupIndex,
        amount: Decimal,
        details: PaymentDetails,
        today: date,
    ) -> AllocationPlan:
        """
        Spread one collected amount across documents, oldest due first.

        Each document receives up to its remaining balance; the walk stops
        when the amount or the documents run out.  Whatever is left stays
        in ``unallocated``.  All payments share one new batch id.

        Raises:
            InvalidAmountError: amount <= 0.
            DocumentNotPayableError: a draft is selected.
            CategoryResolutionError: a funded component has no category.
        """
        amount = self._money(amount)
        logger.info("waterfall_allocation_started", extra={
            "amount": str(amount),
            "document_count": len(documents),
        })
        if amount <= ZERO:
            raise InvalidAmountError("amount", amount, "bulk payment must be positive")

        categories = CategoryResolver(index, self._config)
        portions: list[tuple[LedgerDocument, list[tuple[str, Decimal]]]] = []
        left = amount
        for document in self._order(documents):
            balance = self._ensure_payable(document, index, today)
            if left <= ZERO:
                continue
            take = min(left, balance.remaining)
            if take <= ZERO:
                continue
            slots = self._slots(document, index, categories)
            parts = []
            budget = take
            for slot in slots:
                piece = min(budget, slot.capacity)
                if piece > ZERO:
                    parts.append((slot.component, piece))
                    budget -= piece
            if parts:
                portions.append((document, parts))
                left -= take - budget

        plan = self._plan(amount, portions, categories, details, batch_id=self._new_id())

        logger.info("waterfall_allocation_planned", extra={
            "batch_id": plan.batch_id,
            "requested": str(amount),
            "total_allocated": str(plan.total_allocated),
            "unallocated": str(plan.unallocated),
            "documents_funded": len(plan.document_ids),
        })
        return plan

    # ------------------------------------------------------------------
    # Explicit bulk
    # ------------------------------------------------------------------

    @traced_engine("allocation", "1.0", fingerprint_fields=("documents", "amounts"))
    def plan_explicit(
        self,
        documents: Sequence[LedgerDocument],
        index: LookupIndex,
        amounts: Mapping[str, Decimal],
        details: PaymentDetails,
        today: date,
        batch: bool = True,
    ) -> AllocationPlan:
        """
        Apply a caller-chosen amount to each document.

        Zero amounts are skipped; each amount is capped at the document's
        remaining balance plus tolerance; the total must be positive.

        Args:
            amounts: document id -> amount.  Documents without an entry
                receive nothing.
            batch: When True (bulk dialogs) the payments share a batch id.

        Raises:
            InvalidAmountError, AmountExceedsRemainingError,
            DocumentNotPayableError, CategoryResolutionError.
        """
        requested = {doc_id: self._money(value) for doc_id, value in amounts.items()}
        for doc_id, value in requested.items():
            if value < ZERO:
                raise InvalidAmountError(f"amount[{doc_id}]", value, "must not be negative")
        total = sum(requested.values(), ZERO)

        logger.info("explicit_allocation_started", extra={
            "total": str(total),
            "document_count": len(documents),
        })
        if total <= ZERO:
            raise InvalidAmountError("total", total, "total payment must be positive")

        categories = CategoryResolver(index, self._config)
        portions: list[tuple[LedgerDocument, list[tuple[str, Decimal]]]] = []
        for document in self._order(documents):
            value = requested.get(document.id, ZERO)
            if value <= ZERO:
                continue
            balance = self._ensure_payable(document, index, today)
            if exceeds(value, balance.remaining, self.tolerance):
                logger.warning("explicit_allocation_rejected", extra={
                    "document_id": document.id,
                    "requested": str(value),
                    "remaining": str(balance.remaining),
                })
                raise AmountExceedsRemainingError(
                    document.id, "total", value, balance.remaining
                )
            portions.append(
                (document, self._distribute(document, value, self._slots(document, index, categories)))
            )

        plan = self._plan(
            total,
            portions,
            categories,
            details,
            batch_id=self._new_id() if batch else None,
        )

        logger.info("explicit_allocation_planned", extra={
            "batch_id": plan.batch_id,
            "total_allocated": str(plan.total_allocated),
            "documents_funded": len(plan.document_ids),
        })
        return plan

    def plan_bill_payment(
        self,
        bill: Bill,
        index: LookupIndex,
        amount: Decimal,
        details: PaymentDetails,
        today: date,
    ) -> AllocationPlan:
        """Single payment against one bill (no batch id)."""
        return self.plan_explicit(
            documents=[bill],
            index=index,
            amounts={bill.id: amount},
            details=details,
            today=today,
            batch=False,
        )

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------

    def plan_reversal(self, payments: Iterable[Payment]) -> tuple[DeletePayment, ...]:
        """Commands removing ``payments``; balances are re-derived afterwards."""
        return tuple(DeletePayment(p.id) for p in payments)

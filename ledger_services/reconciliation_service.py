"""
Ledger Reconciliation Service - Orchestrates reconciliation via engines + store.

Thin glue layer that:
1. Captures one ``LedgerSnapshot`` per operation
2. Calls BalanceResolver / QueryEngine / HierarchyAggregator / AgingClassifier
   for read views
3. Calls PaymentAllocator and RecurringAdvancer for command plans
4. Appends ``SetPaidAmount`` refreshes for every touched document and hands
   the whole batch to ``RecordStore.apply``

All computation lives in engines.  All persistence lives in the store.
This service owns the operation boundary: one operation, one batch.

Usage:
    service = LedgerReconciliationService(store, config, clock)
    plan = service.record_bulk_payment(
        ["inv-1", "inv-2"], Decimal("500.00"), payment_date=date(2024, 3, 1),
    )
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

from ledger_config.schema import ReconciliationConfig
from ledger_engines.aging import AgingClassifier, AgingReport
from ledger_engines.allocation import AllocationPlan, PaymentAllocator, PaymentDetails
from ledger_engines.balance import BalanceResolver, ResolvedDocument, SubLedgerBalance
from ledger_engines.categories import CategoryResolver
from ledger_engines.hierarchy import (
    GroupingStrategy,
    HierarchyAggregator,
    SortSpec,
    TreeNode,
    levels_for,
    sort_tree,
)
from ledger_engines.query import LedgerQuery, QueryEngine, payments_for_records
from ledger_engines.recurring import RecurringAdvancer, TemplateAdvance, find_template_for
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.commands import (
    CreatePayment,
    CreateTemplate,
    DeleteDocument,
    DeletePayment,
    DeleteTemplate,
    LedgerCommand,
    SetPaidAmount,
    UpdateTemplate,
)
from ledger_kernel.domain.money import ZERO
from ledger_kernel.domain.records import (
    Bill,
    DocumentKind,
    Frequency,
    Invoice,
    LedgerDocument,
    Payment,
    RecurringInvoiceTemplate,
)
from ledger_kernel.exceptions import (
    BatchNotFoundError,
    DocumentHasPaymentsError,
    DocumentNotFoundError,
    LedgerError,
    PaymentNotFoundError,
    TemplateNotFoundError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_services.record_store import LedgerSnapshot, RecordStore

logger = get_logger("services.reconciliation")

DocumentKey = tuple[DocumentKind, str]

_DEFAULT_STRATEGY = {
    DocumentKind.INVOICE: GroupingStrategy.BUILDING_PROPERTY_TENANT,
    DocumentKind.BILL: GroupingStrategy.VENDOR,
}


class DocumentLocks:
    """
    Process-local per-document locks.

    ``hold`` acquires the locks for every key in sorted order so two
    operations over overlapping document sets cannot deadlock.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[DocumentKey, threading.Lock] = {}

    @contextmanager
    def hold(self, keys: Iterable[DocumentKey]) -> Iterator[None]:
        ordered = sorted(set(keys), key=lambda k: (DocumentKind(k[0]).value, k[1]))
        with self._guard:
            locks = [self._locks.setdefault(key, threading.Lock()) for key in ordered]
        acquired: list[threading.Lock] = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


class LedgerReconciliationService:
    """
    Orchestrates balance views, payment allocation and recurring billing.

    Engine composition:
    - BalanceResolver: derived paid / remaining / status
    - QueryEngine: filters for listings, trees and reports
    - HierarchyAggregator: outstanding / overdue trees
    - AgingClassifier: aging buckets and reports
    - PaymentAllocator: split, waterfall, explicit and bill payment plans
    - RecurringAdvancer: template schedule advance and invoice generation

    Transaction boundary: each write operation hands exactly one command
    batch to the store.  A rejected batch leaves the store untouched.
    """

    def __init__(
        self,
        store: RecordStore,
        config: ReconciliationConfig | None = None,
        clock: Clock | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self._store = store
        self._config = config or ReconciliationConfig.with_defaults()
        self._clock = clock or SystemClock()
        new_id = id_factory or (lambda: str(uuid4()))

        # Stateless engines
        self._balances = BalanceResolver(self._config)
        self._query = QueryEngine(self._config)
        self._hierarchy = HierarchyAggregator(self._config)
        self._aging = AgingClassifier(self._config)
        self._allocator = PaymentAllocator(self._config, id_factory=new_id)
        self._advancer = RecurringAdvancer(self._config, id_factory=new_id)

        self._locks = DocumentLocks()
        self._recurring_lock = threading.Lock()

    @property
    def config(self) -> ReconciliationConfig:
        return self._config

    # =========================================================================
    # Helpers
    # =========================================================================

    def _snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot.capture(self._store)

    def _today(self) -> date:
        return self._clock.today()

    @staticmethod
    def _require(
        snapshot: LedgerSnapshot, kind: DocumentKind, document_id: str
    ) -> LedgerDocument:
        document = snapshot.document(kind, document_id)
        if document is None:
            raise DocumentNotFoundError(DocumentKind(kind).value, document_id)
        return document

    @staticmethod
    def _require_template(
        snapshot: LedgerSnapshot, template_id: str
    ) -> RecurringInvoiceTemplate:
        template = snapshot.template(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    def _resolved(
        self,
        snapshot: LedgerSnapshot,
        kind: DocumentKind,
        query: LedgerQuery | None,
        today: date,
    ) -> tuple[ResolvedDocument, ...]:
        records = self._balances.resolve_all(
            documents=snapshot.documents(kind), index=snapshot.index, today=today
        )
        if query is None:
            return records
        return self._query.apply(records, query, snapshot.index, today)

    def _details(
        self,
        payment_date: date | None,
        account_id: str | None,
        reference: str | None,
        description: str | None,
    ) -> PaymentDetails:
        return PaymentDetails(
            payment_date=payment_date or self._today(),
            account_id=account_id,
            reference=reference,
            description=description,
        )

    def _paid_refreshes(
        self,
        snapshot: LedgerSnapshot,
        commands: Sequence[LedgerCommand],
        touched: Iterable[DocumentKey],
    ) -> list[SetPaidAmount]:
        """``SetPaidAmount`` for every touched document whose cache moves."""
        payments = {p.id: p for p in snapshot.payments}
        for command in commands:
            if isinstance(command, CreatePayment):
                payments[command.payment.id] = command.payment
            elif isinstance(command, DeletePayment):
                payments.pop(command.payment_id, None)

        refreshes: list[SetPaidAmount] = []
        for kind, document_id in sorted(set(touched), key=lambda k: (k[0].value, k[1])):
            document = snapshot.document(kind, document_id)
            if document is None:
                continue
            paid = self._balances.paid_amount(document, payments.values())
            if paid != document.paid_amount:
                refreshes.append(
                    SetPaidAmount(
                        kind=kind,
                        document_id=document_id,
                        paid_amount=paid,
                        expected_paid_amount=document.paid_amount,
                    )
                )
        return refreshes

    def _commit(
        self,
        operation: str,
        snapshot: LedgerSnapshot,
        commands: Sequence[LedgerCommand],
        touched: Iterable[DocumentKey] = (),
    ) -> tuple[LedgerCommand, ...]:
        batch = (*commands, *self._paid_refreshes(snapshot, commands, touched))
        try:
            self._store.apply(batch)
        except LedgerError as exc:
            logger.error(f"{operation}_failed", extra={
                "error_code": exc.code,
                "error": str(exc),
                "command_count": len(batch),
            })
            raise
        logger.info(f"{operation}_committed", extra={"command_count": len(batch)})
        return batch

    @staticmethod
    def _payment_keys(payments: Iterable[Payment]) -> set[DocumentKey]:
        keys: set[DocumentKey] = set()
        for payment in payments:
            if payment.invoice_id:
                keys.add((DocumentKind.INVOICE, payment.invoice_id))
            elif payment.bill_id:
                keys.add((DocumentKind.BILL, payment.bill_id))
        return keys

    # =========================================================================
    # Read views
    # =========================================================================

    def resolve_document(self, kind: DocumentKind, document_id: str) -> ResolvedDocument:
        """
        Current balance and status of one invoice or bill.

        Raises:
            DocumentNotFoundError
        """
        snapshot = self._snapshot()
        document = self._require(snapshot, kind, document_id)
        balance = self._balances.resolve(
            document, snapshot.index.payments_for(document), self._today()
        )
        return ResolvedDocument(document=document, balance=balance)

    def sub_ledger(self, invoice_id: str) -> SubLedgerBalance:
        """Rent/deposit breakdown of one invoice."""
        snapshot = self._snapshot()
        invoice = self._require(snapshot, DocumentKind.INVOICE, invoice_id)
        categories = CategoryResolver(snapshot.index, self._config)
        return self._balances.sub_ledger(
            invoice,
            snapshot.index.payments_for(invoice),
            categories.deposit_category_id(),
        )

    def list_documents(
        self,
        kind: DocumentKind = DocumentKind.INVOICE,
        query: LedgerQuery | None = None,
    ) -> tuple[ResolvedDocument, ...]:
        snapshot = self._snapshot()
        return self._resolved(snapshot, kind, query or LedgerQuery(), self._today())

    def payment_history(
        self,
        kind: DocumentKind = DocumentKind.INVOICE,
        query: LedgerQuery | None = None,
    ) -> tuple[Payment, ...]:
        """
        Payments linked to the documents matching ``query``, newest first.

        The status filter is dropped so a payment stays listed after it
        moved its invoice to Paid.
        """
        snapshot = self._snapshot()
        records = self._resolved(
            snapshot, kind, (query or LedgerQuery()).without_status(), self._today()
        )
        return payments_for_records(records, snapshot.index)

    def build_tree(
        self,
        kind: DocumentKind = DocumentKind.INVOICE,
        strategy: GroupingStrategy | str | None = None,
        query: LedgerQuery | None = None,
        sort: SortSpec | None = None,
        per_level: Mapping[str, SortSpec] | None = None,
    ) -> TreeNode:
        """
        Outstanding/overdue tree over the documents matching ``query``.

        Defaults to building > property > tenant for invoices and vendor
        for bills.
        """
        today = self._today()
        snapshot = self._snapshot()
        records = self._resolved(snapshot, kind, query, today)
        levels = levels_for(strategy or _DEFAULT_STRATEGY[DocumentKind(kind)])
        tree = self._hierarchy.build(
            records=records, index=snapshot.index, levels=levels, today=today
        )
        return sort_tree(tree, sort or SortSpec(), per_level)

    def aging_report(
        self,
        kind: DocumentKind = DocumentKind.INVOICE,
        query: LedgerQuery | None = None,
    ) -> AgingReport:
        today = self._today()
        snapshot = self._snapshot()
        records = self._resolved(snapshot, kind, query, today)
        return self._aging.build_report(records=records, today=today, index=snapshot.index)

    # =========================================================================
    # Payments
    # =========================================================================

    def record_split_payment(
        self,
        invoice_id: str,
        primary_amount: Decimal,
        deposit_amount: Decimal = ZERO,
        payment_date: date | None = None,
        account_id: str | None = None,
        reference: str | None = None,
        description: str | None = None,
        actor_id: str | None = None,
    ) -> AllocationPlan:
        """
        Record a rent/deposit split payment against one invoice.

        Creates one payment per non-zero component, each tagged with its
        sub-ledger category.

        Raises:
            DocumentNotFoundError, InvalidAmountError,
            AmountExceedsRemainingError, DocumentNotPayableError,
            CategoryResolutionError, OptimisticLockError.
        """
        key = (DocumentKind.INVOICE, invoice_id)
        with self._locks.hold([key]), LogContext.bind(
            correlation_id=str(uuid4()), actor_id=actor_id, document_id=invoice_id
        ):
            logger.info("split_payment_started", extra={
                "invoice_id": invoice_id,
                "primary_amount": str(primary_amount),
                "deposit_amount": str(deposit_amount),
            })
            snapshot = self._snapshot()
            invoice = self._require(snapshot, DocumentKind.INVOICE, invoice_id)
            plan = self._allocator.plan_split(
                invoice=invoice,
                index=snapshot.index,
                primary_amount=primary_amount,
                deposit_amount=deposit_amount,
                details=self._details(payment_date, account_id, reference, description),
                today=self._today(),
            )
            self._commit("split_payment", snapshot, plan.commands, [key])
            return plan

    def record_bulk_payment(
        self,
        document_ids: Sequence[str],
        amount: Decimal,
        kind: DocumentKind = DocumentKind.INVOICE,
        payment_date: date | None = None,
        account_id: str | None = None,
        reference: str | None = None,
        description: str | None = None,
        actor_id: str | None = None,
    ) -> AllocationPlan:
        """
        Spread ``amount`` across the selected documents, oldest due first.

        Every created payment shares one batch id.  An amount larger than
        the combined remaining balance leaves the excess in
        ``plan.unallocated``; nothing is created for it.
        """
        document_ids = list(dict.fromkeys(document_ids))
        keys = [(DocumentKind(kind), doc_id) for doc_id in document_ids]
        with self._locks.hold(keys), LogContext.bind(
            correlation_id=str(uuid4()), actor_id=actor_id
        ):
            logger.info("bulk_payment_started", extra={
                "kind": DocumentKind(kind).value,
                "document_count": len(document_ids),
                "amount": str(amount),
            })
            snapshot = self._snapshot()
            documents = [self._require(snapshot, kind, doc_id) for doc_id in document_ids]
            plan = self._allocator.plan_waterfall(
                documents=documents,
                index=snapshot.index,
                amount=amount,
                details=self._details(payment_date, account_id, reference, description),
                today=self._today(),
            )
            with LogContext.bind(batch_id=plan.batch_id):
                self._commit("bulk_payment", snapshot, plan.commands, keys)
            return plan

    def record_explicit_bulk_payment(
        self,
        amounts: Mapping[str, Decimal],
        kind: DocumentKind = DocumentKind.INVOICE,
        payment_date: date | None = None,
        account_id: str | None = None,
        reference: str | None = None,
        description: str | None = None,
        actor_id: str | None = None,
    ) -> AllocationPlan:
        """
        Apply a caller-chosen amount to each document (bulk payment dialog).

        Raises:
            DocumentNotFoundError, InvalidAmountError,
            AmountExceedsRemainingError, DocumentNotPayableError,
            CategoryResolutionError, OptimisticLockError.
        """
        keys = [(DocumentKind(kind), doc_id) for doc_id in amounts]
        with self._locks.hold(keys), LogContext.bind(
            correlation_id=str(uuid4()), actor_id=actor_id
        ):
            logger.info("explicit_bulk_payment_started", extra={
                "kind": DocumentKind(kind).value,
                "document_count": len(amounts),
            })
            snapshot = self._snapshot()
            documents = [self._require(snapshot, kind, doc_id) for doc_id in amounts]
            plan = self._allocator.plan_explicit(
                documents=documents,
                index=snapshot.index,
                amounts=amounts,
                details=self._details(payment_date, account_id, reference, description),
                today=self._today(),
            )
            with LogContext.bind(batch_id=plan.batch_id):
                self._commit("explicit_bulk_payment", snapshot, plan.commands, keys)
            return plan

    def record_bill_payment(
        self,
        bill_id: str,
        amount: Decimal,
        payment_date: date | None = None,
        account_id: str | None = None,
        reference: str | None = None,
        description: str | None = None,
        actor_id: str | None = None,
    ) -> AllocationPlan:
        """Pay one bill (expense payment linked by ``bill_id``)."""
        key = (DocumentKind.BILL, bill_id)
        with self._locks.hold([key]), LogContext.bind(
            correlation_id=str(uuid4()), actor_id=actor_id, document_id=bill_id
        ):
            logger.info("bill_payment_started", extra={
                "bill_id": bill_id,
                "amount": str(amount),
            })
            snapshot = self._snapshot()
            bill = self._require(snapshot, DocumentKind.BILL, bill_id)
            assert isinstance(bill, Bill)
            plan = self._allocator.plan_bill_payment(
                bill=bill,
                index=snapshot.index,
                amount=amount,
                details=self._details(payment_date, account_id, reference, description),
                today=self._today(),
            )
            self._commit("bill_payment", snapshot, plan.commands, [key])
            return plan

    # =========================================================================
    # Reversal and deletion
    # =========================================================================

    def reverse_payment(self, payment_id: str, actor_id: str | None = None) -> Payment:
        """
        Remove one payment and refresh its document's cached paid amount.

        Raises:
            PaymentNotFoundError
        """
        located = self._snapshot().payment(payment_id)
        if located is None:
            raise PaymentNotFoundError(payment_id)
        keys = self._payment_keys([located])

        with self._locks.hold(keys), LogContext.bind(
            correlation_id=str(uuid4()), actor_id=actor_id
        ):
            snapshot = self._snapshot()
            payment = snapshot.payment(payment_id)
            if payment is None:
                raise PaymentNotFoundError(payment_id)
            logger.info("payment_reversal_started", extra={
                "payment_id": payment_id,
                "document_id": payment.document_id,
                "amount": str(payment.amount),
            })
            commands = self._allocator.plan_reversal([payment])
            self._commit("payment_reversal", snapshot, commands, keys)
            return payment

    def reverse_batch(self, batch_id: str, actor_id: str | None = None) -> tuple[Payment, ...]:
        """
        Remove every payment of a bulk action atomically.

        Raises:
            BatchNotFoundError
        """
        located = [p for p in self._snapshot().payments if p.batch_id == batch_id]
        if not located:
            raise BatchNotFoundError(batch_id)
        keys = self._payment_keys(located)

        with self._locks.hold(keys), LogContext.bind(
            correlation_id=str(uuid4()), actor_id=actor_id, batch_id=batch_id
        ):
            snapshot = self._snapshot()
            payments = tuple(p for p in snapshot.payments if p.batch_id == batch_id)
            if not payments:
                raise BatchNotFoundError(batch_id)
            logger.info("batch_reversal_started", extra={
                "batch_id": batch_id,
                "payment_count": len(payments),
            })
            commands = self._allocator.plan_reversal(payments)
            # Payments added to the batch since the first read carry their own keys.
            self._commit(
                "batch_reversal", snapshot, commands, keys | self._payment_keys(payments)
            )
            return payments

    def delete_document(
        self,
        kind: DocumentKind,
        document_id: str,
        actor_id: str | None = None,
    ) -> None:
        """
        Delete an invoice or bill that has nothing paid against it.

        Raises:
            DocumentNotFoundError
            DocumentHasPaymentsError: payments must be reversed first.
        """
        key = (DocumentKind(kind), document_id)
        with self._locks.hold([key]), LogContext.bind(
            correlation_id=str(uuid4()), actor_id=actor_id, document_id=document_id
        ):
            snapshot = self._snapshot()
            document = self._require(snapshot, kind, document_id)
            paid = self._balances.paid_amount(document, snapshot.index.payments_for(document))
            paid = max(paid, document.paid_amount)
            if paid > ZERO:
                logger.warning("document_delete_refused", extra={
                    "document_id": document_id,
                    "paid_amount": str(paid),
                })
                raise DocumentHasPaymentsError(DocumentKind(kind).value, document_id, paid)
            self._commit(
                "document_delete",
                snapshot,
                [DeleteDocument(kind=DocumentKind(kind), document_id=document_id)],
            )

    # =========================================================================
    # Recurring invoices
    # =========================================================================

    def run_recurring(
        self,
        catch_up: bool = False,
        auto_only: bool = False,
    ) -> tuple[TemplateAdvance, ...]:
        """
        Advance every due template once (or until caught up).

        Each template's invoices, schedule update and numbering update are
        applied as one batch.  A failing template stops the run; templates
        processed before it stay committed.

        Args:
            catch_up: Generate every missed period, bounded by
                ``recurring_max_catch_up``.
            auto_only: Only templates flagged ``auto_generate``.
        """
        today = self._today()
        results: list[TemplateAdvance] = []

        with self._recurring_lock, LogContext.bind(correlation_id=str(uuid4())):
            due = self._advancer.due_templates(self._snapshot().templates, today)
            if auto_only:
                due = tuple(t for t in due if t.auto_generate)
            logger.info("recurring_run_started", extra={
                "today": today.isoformat(),
                "due_count": len(due),
                "catch_up": catch_up,
            })

            for due_template in due:
                with LogContext.bind(template_id=due_template.id):
                    snapshot = self._snapshot()
                    template = snapshot.template(due_template.id)
                    if template is None or not self._advancer.is_due(template, today):
                        continue
                    advance = self._advancer.advance(
                        template=template,
                        invoices=snapshot.invoices,
                        numbering=snapshot.numbering or self._config.default_numbering(),
                        today=today,
                        index=snapshot.index,
                        catch_up=catch_up,
                    )
                    if advance.commands:
                        self._commit("recurring_advance", snapshot, advance.commands)
                    results.append(advance)

            logger.info("recurring_run_completed", extra={
                "templates_processed": len(results),
                "invoices_generated": sum(len(r.generated) for r in results),
            })
        return tuple(results)

    def generate_now(self, template_id: str, actor_id: str | None = None) -> TemplateAdvance:
        """
        Generate the template's next scheduled invoice immediately.

        Bills the period of ``next_due_date`` even when that date is still
        ahead, then advances the schedule one period.  A period that is
        already billed only moves the schedule.  Inactive templates are
        left untouched.

        Raises:
            TemplateNotFoundError: unknown ``template_id``.
        """
        with self._recurring_lock, LogContext.bind(
            correlation_id=str(uuid4()), actor_id=actor_id, template_id=template_id
        ):
            snapshot = self._snapshot()
            template = self._require_template(snapshot, template_id)
            advance = self._advancer.advance(
                template=template,
                invoices=snapshot.invoices,
                numbering=snapshot.numbering or self._config.default_numbering(),
                today=template.next_due_date,
                index=snapshot.index,
            )
            if advance.commands:
                self._commit("recurring_generate_now", snapshot, advance.commands)
            return advance

    def memorize_invoice(
        self,
        invoice_id: str,
        frequency: Frequency = Frequency.MONTHLY,
        auto_generate: bool = False,
    ) -> RecurringInvoiceTemplate:
        """
        Create a recurring template from an existing invoice.

        Returns the existing template when the invoice's scope is already
        memorized.
        """
        snapshot = self._snapshot()
        invoice = self._require(snapshot, DocumentKind.INVOICE, invoice_id)
        assert isinstance(invoice, Invoice)
        existing = find_template_for(invoice, snapshot.templates)
        if existing is not None:
            logger.info("invoice_already_memorized", extra={
                "invoice_id": invoice_id,
                "template_id": existing.id,
            })
            return existing

        template = self._advancer.memorize(invoice=invoice, frequency=frequency)
        if auto_generate:
            template = replace(template, auto_generate=True)
        with LogContext.bind(template_id=template.id):
            self._commit("template_create", snapshot, [CreateTemplate(template)])
        return template

    def unmemorize_template(self, template_id: str) -> None:
        snapshot = self._snapshot()
        self._require_template(snapshot, template_id)
        with LogContext.bind(template_id=template_id):
            self._commit("template_delete", snapshot, [DeleteTemplate(template_id)])

    def set_template_active(self, template_id: str, active: bool) -> RecurringInvoiceTemplate:
        snapshot = self._snapshot()
        template = replace(self._require_template(snapshot, template_id), active=active)
        with LogContext.bind(template_id=template_id):
            self._commit("template_update", snapshot, [UpdateTemplate(template)])
        return template

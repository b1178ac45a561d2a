"""
Module: ledger_services.record_store
Responsibility:
    The host-side record store contract and its in-memory implementation.
    Stores hand out immutable snapshots for the engines and apply command
    batches all-or-nothing.

Architecture position:
    Services -- stateful layer wrapping the persistence boundary.
    ``SqlRecordStore`` (ledger_services.sql_store) is the ORM-backed
    implementation of the same protocol.

Invariants enforced:
    - ``apply`` is atomic: every command in a batch is validated against the
      state produced by the commands before it; a single failure discards
      the whole batch.
    - ``SetPaidAmount`` carries the paid amount the caller read; a batch is
      rejected with OptimisticLockError when the stored cache has moved.
    - ``resolve_entity`` returns None for unknown ids, never raises.

Failure modes:
    - CommandRejectedError: duplicate id, missing target, dangling link,
      duplicate invoice number, delete with linked payments.
    - OptimisticLockError: stale ``expected_paid_amount``.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from typing import Protocol, runtime_checkable

from ledger_engines.lookup import LookupIndex
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
from ledger_kernel.domain.records import (
    Bill,
    Building,
    Category,
    Contact,
    DocumentKind,
    Entity,
    EntityKind,
    Invoice,
    LedgerDocument,
    NumberingSettings,
    Payment,
    Project,
    Property,
    RecurringInvoiceTemplate,
    Unit,
)
from ledger_kernel.exceptions import CommandRejectedError, OptimisticLockError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.record_store")


@runtime_checkable
class RecordStore(Protocol):
    """
    Persistence collaborator for the reconciliation service.

    Reads return immutable records; writes go through ``apply``.  The
    convenience write paths delegate to ``apply`` with a one-command batch.
    """

    def list_invoices(self) -> Sequence[Invoice]: ...

    def list_bills(self) -> Sequence[Bill]: ...

    def list_payments(self) -> Sequence[Payment]: ...

    def list_templates(self) -> Sequence[RecurringInvoiceTemplate]: ...

    def list_entities(self, kind: EntityKind) -> Sequence[Entity]: ...

    def list_categories(self) -> Sequence[Category]: ...

    def numbering_settings(self) -> NumberingSettings | None: ...

    def resolve_entity(self, kind: EntityKind, entity_id: str) -> Entity | None: ...

    def apply(self, commands: Sequence[LedgerCommand]) -> None: ...

    def create_payment(self, payment: Payment) -> None:
        self.apply([CreatePayment(payment)])

    def create_invoice(self, invoice: Invoice) -> None:
        self.apply([CreateDocument(invoice)])

    def update_template(self, template: RecurringInvoiceTemplate) -> None:
        self.apply([UpdateTemplate(template)])


@dataclass(frozen=True)
class LedgerSnapshot:
    """
    Immutable view of a store for one operation.

    Contract:
        Taken once at the start of an operation; every engine call of that
        operation reads the same snapshot and the same ``index``.
    """

    invoices: tuple[Invoice, ...]
    bills: tuple[Bill, ...]
    payments: tuple[Payment, ...]
    templates: tuple[RecurringInvoiceTemplate, ...]
    numbering: NumberingSettings | None
    index: LookupIndex = field(repr=False)
    _documents_by_key: dict[tuple[DocumentKind, str], LedgerDocument] = field(
        init=False, repr=False, compare=False
    )
    _payments_by_id: dict[str, Payment] = field(init=False, repr=False, compare=False)
    _templates_by_id: dict[str, RecurringInvoiceTemplate] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self):
        documents: dict[tuple[DocumentKind, str], LedgerDocument] = {}
        for invoice in self.invoices:
            documents[(DocumentKind.INVOICE, invoice.id)] = invoice
        for bill in self.bills:
            documents[(DocumentKind.BILL, bill.id)] = bill
        object.__setattr__(self, "_documents_by_key", documents)
        object.__setattr__(self, "_payments_by_id", {p.id: p for p in self.payments})
        object.__setattr__(self, "_templates_by_id", {t.id: t for t in self.templates})

    @classmethod
    def capture(cls, store: RecordStore) -> LedgerSnapshot:
        payments = tuple(store.list_payments())
        index = LookupIndex.build(
            contacts=store.list_entities(EntityKind.CONTACT),
            properties=store.list_entities(EntityKind.PROPERTY),
            buildings=store.list_entities(EntityKind.BUILDING),
            projects=store.list_entities(EntityKind.PROJECT),
            units=store.list_entities(EntityKind.UNIT),
            categories=store.list_categories(),
            payments=payments,
        )
        return cls(
            invoices=tuple(store.list_invoices()),
            bills=tuple(store.list_bills()),
            payments=payments,
            templates=tuple(store.list_templates()),
            numbering=store.numbering_settings(),
            index=index,
        )

    def documents(self, kind: DocumentKind) -> tuple[LedgerDocument, ...]:
        if DocumentKind(kind) is DocumentKind.INVOICE:
            return self.invoices
        return self.bills

    def document(self, kind: DocumentKind, document_id: str) -> LedgerDocument | None:
        return self._documents_by_key.get((DocumentKind(kind), document_id))

    def payment(self, payment_id: str) -> Payment | None:
        return self._payments_by_id.get(payment_id)

    def template(self, template_id: str) -> RecurringInvoiceTemplate | None:
        return self._templates_by_id.get(template_id)


def command_name(command: LedgerCommand) -> str:
    return type(command).__name__


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


@dataclass
class _State:
    invoices: dict[str, Invoice]
    bills: dict[str, Bill]
    payments: dict[str, Payment]
    templates: dict[str, RecurringInvoiceTemplate]
    numbering: NumberingSettings | None

    def copy(self) -> _State:
        return _State(
            invoices=dict(self.invoices),
            bills=dict(self.bills),
            payments=dict(self.payments),
            templates=dict(self.templates),
            numbering=self.numbering,
        )

    def documents(self, kind: DocumentKind) -> dict[str, LedgerDocument]:
        if DocumentKind(kind) is DocumentKind.INVOICE:
            return self.invoices  # type: ignore[return-value]
        return self.bills  # type: ignore[return-value]


class InMemoryRecordStore(RecordStore):
    """
    Dict-backed record store.

    Contract:
        ``apply`` works on a copy of the current state and swaps it in only
        when every command succeeded.  A lock serialises concurrent batches.
    Non-goals:
        - No persistence across processes.
        - Entities and categories are fixed at construction.
    """

    def __init__(
        self,
        *,
        invoices: Iterable[Invoice] = (),
        bills: Iterable[Bill] = (),
        payments: Iterable[Payment] = (),
        templates: Iterable[RecurringInvoiceTemplate] = (),
        contacts: Iterable[Contact] = (),
        properties: Iterable[Property] = (),
        buildings: Iterable[Building] = (),
        projects: Iterable[Project] = (),
        units: Iterable[Unit] = (),
        categories: Iterable[Category] = (),
        numbering: NumberingSettings | None = None,
    ):
        self._lock = threading.Lock()
        self._state = _State(
            invoices={i.id: i for i in invoices},
            bills={b.id: b for b in bills},
            payments={p.id: p for p in payments},
            templates={t.id: t for t in templates},
            numbering=numbering,
        )
        self._entities: dict[EntityKind, dict[str, Entity]] = {
            EntityKind.CONTACT: {c.id: c for c in contacts},
            EntityKind.PROPERTY: {p.id: p for p in properties},
            EntityKind.BUILDING: {b.id: b for b in buildings},
            EntityKind.PROJECT: {p.id: p for p in projects},
            EntityKind.UNIT: {u.id: u for u in units},
        }
        self._categories = tuple(categories)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_invoices(self) -> Sequence[Invoice]:
        return tuple(self._state.invoices.values())

    def list_bills(self) -> Sequence[Bill]:
        return tuple(self._state.bills.values())

    def list_payments(self) -> Sequence[Payment]:
        return tuple(self._state.payments.values())

    def list_templates(self) -> Sequence[RecurringInvoiceTemplate]:
        return tuple(self._state.templates.values())

    def list_entities(self, kind: EntityKind) -> Sequence[Entity]:
        return tuple(self._entities[EntityKind(kind)].values())

    def list_categories(self) -> Sequence[Category]:
        return self._categories

    def numbering_settings(self) -> NumberingSettings | None:
        return self._state.numbering

    def resolve_entity(self, kind: EntityKind, entity_id: str) -> Entity | None:
        if not entity_id:
            return None
        return self._entities[EntityKind(kind)].get(entity_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply(self, commands: Sequence[LedgerCommand]) -> None:
        """
        Apply ``commands`` all-or-nothing.

        Raises:
            CommandRejectedError: A command is invalid against the state
                produced by the commands before it.
            OptimisticLockError: A ``SetPaidAmount`` expectation is stale.
        """
        with self._lock:
            working = self._state.copy()
            for command in commands:
                self._apply_one(working, command)
            self._state = working

        logger.debug("store_batch_applied", extra={
            "command_count": len(commands),
            "commands": sorted({command_name(c) for c in commands}),
        })

    def _apply_one(self, state: _State, command: LedgerCommand) -> None:
        match command:
            case CreatePayment(payment=payment):
                if payment.id in state.payments:
                    raise CommandRejectedError(
                        command_name(command), f"payment {payment.id} already exists"
                    )
                if payment.invoice_id and payment.invoice_id not in state.invoices:
                    raise CommandRejectedError(
                        command_name(command), f"invoice {payment.invoice_id} does not exist"
                    )
                if payment.bill_id and payment.bill_id not in state.bills:
                    raise CommandRejectedError(
                        command_name(command), f"bill {payment.bill_id} does not exist"
                    )
                state.payments[payment.id] = payment

            case DeletePayment(payment_id=payment_id):
                if state.payments.pop(payment_id, None) is None:
                    raise CommandRejectedError(
                        command_name(command), f"payment {payment_id} does not exist"
                    )

            case CreateDocument(document=document):
                table = state.documents(document.kind)
                if document.id in table:
                    raise CommandRejectedError(
                        command_name(command), f"{document.kind.value} {document.id} already exists"
                    )
                if any(d.number == document.number for d in table.values()):
                    raise CommandRejectedError(
                        command_name(command),
                        f"{document.kind.value} number {document.number} already in use",
                    )
                table[document.id] = document

            case DeleteDocument(kind=kind, document_id=document_id):
                table = state.documents(kind)
                document = table.get(document_id)
                if document is None:
                    raise CommandRejectedError(
                        command_name(command), f"{kind.value} {document_id} does not exist"
                    )
                if any(p.links_to(document) for p in state.payments.values()):
                    raise CommandRejectedError(
                        command_name(command), f"{kind.value} {document_id} has linked payments"
                    )
                del table[document_id]

            case SetPaidAmount(
                kind=kind,
                document_id=document_id,
                paid_amount=paid_amount,
                expected_paid_amount=expected,
            ):
                table = state.documents(kind)
                document = table.get(document_id)
                if document is None:
                    raise CommandRejectedError(
                        command_name(command), f"{kind.value} {document_id} does not exist"
                    )
                if document.paid_amount != expected:
                    logger.warning("store_optimistic_lock_conflict", extra={
                        "document_id": document_id,
                        "expected": str(expected),
                        "actual": str(document.paid_amount),
                    })
                    raise OptimisticLockError(
                        kind.value, document_id, expected, document.paid_amount
                    )
                table[document_id] = replace(document, paid_amount=paid_amount)

            case CreateTemplate(template=template):
                if template.id in state.templates:
                    raise CommandRejectedError(
                        command_name(command), f"template {template.id} already exists"
                    )
                state.templates[template.id] = template

            case UpdateTemplate(template=template):
                if template.id not in state.templates:
                    raise CommandRejectedError(
                        command_name(command), f"template {template.id} does not exist"
                    )
                state.templates[template.id] = template

            case DeleteTemplate(template_id=template_id):
                if state.templates.pop(template_id, None) is None:
                    raise CommandRejectedError(
                        command_name(command), f"template {template_id} does not exist"
                    )

            case UpdateNumbering(settings=settings):
                state.numbering = settings

            case _:
                raise CommandRejectedError(command_name(command), "unknown command")

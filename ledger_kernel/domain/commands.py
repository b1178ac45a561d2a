"""
Ledger Commands (``ledger_kernel.domain.commands``).

Responsibility
--------------
Discrete mutation commands emitted by the engines and applied by a record
store.  Engines never write fields directly; they return a sequence of
commands and the store applies that sequence all-or-nothing.

Architecture position
---------------------
**Kernel > Domain** -- pure data, zero I/O.  Produced by
``ledger_engines``, consumed by ``ledger_services`` stores.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ledger_kernel.domain.records import (
    DocumentKind,
    LedgerDocument,
    NumberingSettings,
    Payment,
    RecurringInvoiceTemplate,
)


@dataclass(frozen=True)
class CreatePayment:
    payment: Payment


@dataclass(frozen=True)
class DeletePayment:
    payment_id: str


@dataclass(frozen=True)
class CreateDocument:
    document: LedgerDocument


@dataclass(frozen=True)
class DeleteDocument:
    kind: DocumentKind
    document_id: str


@dataclass(frozen=True)
class SetPaidAmount:
    """
    Refresh the cached ``paid_amount`` of a document.

    ``expected_paid_amount`` is the value read from the snapshot the plan
    was built on; the store rejects the batch if the cache has moved.
    """

    kind: DocumentKind
    document_id: str
    paid_amount: Decimal
    expected_paid_amount: Decimal


@dataclass(frozen=True)
class CreateTemplate:
    template: RecurringInvoiceTemplate


@dataclass(frozen=True)
class UpdateTemplate:
    template: RecurringInvoiceTemplate


@dataclass(frozen=True)
class DeleteTemplate:
    template_id: str


@dataclass(frozen=True)
class UpdateNumbering:
    settings: NumberingSettings


LedgerCommand = (
    CreatePayment
    | DeletePayment
    | CreateDocument
    | DeleteDocument
    | SetPaidAmount
    | CreateTemplate
    | UpdateTemplate
    | DeleteTemplate
    | UpdateNumbering
)

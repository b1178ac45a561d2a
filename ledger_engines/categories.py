"""
Module: ledger_engines.categories
Responsibility:
    Resolve the category a payment component is tagged with.  Invoice and
    category types are closed enums; every fallback chain is an exhaustive
    match so a missing category surfaces as ``CategoryResolutionError``
    instead of a silent string miss.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Failure modes:
    - CategoryResolutionError when no link of a fallback chain resolves.
      The error lists every link that was tried.
"""

from __future__ import annotations

from enum import Enum

from ledger_config.schema import ReconciliationConfig
from ledger_engines.lookup import LookupIndex
from ledger_kernel.domain.money import ZERO
from ledger_kernel.domain.records import (
    Bill,
    Category,
    CategoryKind,
    Invoice,
    InvoiceType,
)
from ledger_kernel.exceptions import CategoryResolutionError
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.categories")


class Component(str, Enum):
    """Sub-ledger component of a payment against an invoice."""

    PRIMARY = "primary"
    DEPOSIT = "deposit"


def default_kind_for(invoice_type: InvoiceType) -> CategoryKind:
    """Type-based default category kind."""
    match InvoiceType(invoice_type):
        case InvoiceType.RENTAL:
            return CategoryKind.RENTAL_INCOME
        case InvoiceType.SECURITY_DEPOSIT:
            return CategoryKind.SECURITY_DEPOSIT
        case InvoiceType.SERVICE_CHARGE:
            return CategoryKind.SERVICE_CHARGE_INCOME
        case InvoiceType.INSTALLMENT:
            return CategoryKind.INSTALLMENT_INCOME


class CategoryResolver:
    """
    Category lookup by id, kind, then configured name.

    Contract:
        A category matches a kind when it is tagged with that kind, or,
        failing that, when its name equals the configured name for the kind
        (case-insensitive).
    Guarantees:
        - ``for_invoice`` / ``for_bill`` either return a Category or raise.
    """

    def __init__(self, index: LookupIndex, config: ReconciliationConfig):
        self._index = index
        self._config = config

    def by_id(self, category_id: str | None) -> Category | None:
        return self._index.categories.get(category_id) if category_id else None

    def by_kind(self, kind: CategoryKind) -> Category | None:
        category = self._index.categories_by_kind.get(kind)
        if category is not None:
            return category
        return self._index.categories_by_name.get(
            self._config.category_name(kind).casefold()
        )

    def deposit_category_id(self) -> str | None:
        category = self.by_kind(CategoryKind.SECURITY_DEPOSIT)
        return category.id if category else None

    def for_invoice(self, invoice: Invoice, component: Component) -> Category:
        """
        Category for one component of a payment against ``invoice``.

        Primary: invoice.category_id -> type default -> Rental Income.
        Deposit: Security Deposit.

        When the invoice carries a deposit charge, the primary chain skips
        the deposit category; otherwise primary payments would count toward
        the deposit portion of the sub-ledger.

        Raises:
            CategoryResolutionError: if nothing in the chain resolves.
        """
        tried: list[str] = []
        reserved: str | None = None

        if Component(component) is Component.DEPOSIT:
            chain = [CategoryKind.SECURITY_DEPOSIT]
        else:
            if invoice.security_deposit_charge > ZERO:
                reserved = self.deposit_category_id()
            tried.append(f"category_id={invoice.category_id}")
            category = self.by_id(invoice.category_id)
            if category is not None and category.id != reserved:
                return category
            chain = [default_kind_for(invoice.invoice_type), CategoryKind.RENTAL_INCOME]

        for kind in chain:
            tried.append(kind.value)
            category = self.by_kind(kind)
            if category is not None and category.id != reserved:
                return category

        logger.error(
            "category_resolution_failed",
            extra={
                "document_id": invoice.id,
                "component": Component(component).value,
                "tried": tried,
            },
        )
        raise CategoryResolutionError(invoice.id, Component(component).value, tuple(tried))

    def for_bill(self, bill: Bill) -> Category:
        """
        Category for a payment against ``bill``.

        bill.category_id -> General Expense.
        """
        tried = [f"category_id={bill.category_id}"]
        category = self.by_id(bill.category_id)
        if category is not None:
            return category

        tried.append(CategoryKind.GENERAL_EXPENSE.value)
        category = self.by_kind(CategoryKind.GENERAL_EXPENSE)
        if category is not None:
            return category

        logger.error(
            "category_resolution_failed",
            extra={"document_id": bill.id, "component": "expense", "tried": tried},
        )
        raise CategoryResolutionError(bill.id, "expense", tuple(tried))

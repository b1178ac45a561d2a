"""
Module: ledger_engines.query
Responsibility:
    Composable filters over resolved invoices and bills: status, invoice
    type, entity scope (direct or through property -> building/owner),
    free-text search, issue-date range and aging bucket.  Filters combine
    by logical AND.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Applied before
    aggregation or listing.

Invariants enforced:
    - A query never mutates records and never raises on a dangling
      reference; an unresolvable entity simply fails to match by name.
    - ``LedgerQuery.without_status()`` is the status-unfiltered variant:
      identical in every filter except status.  Payment history uses it
      so payments stay visible after the invoice's status moves on.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import date

from ledger_config.schema import ReconciliationConfig
from ledger_engines.aging import AgingClassifier
from ledger_engines.balance import ResolvedDocument
from ledger_engines.lookup import LookupIndex
from ledger_kernel.domain.records import (
    DocumentStatus,
    EntityKind,
    Invoice,
    InvoiceType,
    Payment,
)
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.query")

Predicate = Callable[[ResolvedDocument], bool]


@dataclass(frozen=True)
class LedgerQuery:
    """
    Filter criteria.  ``None`` / empty means "do not filter on this".

    ``date_from`` / ``date_to`` bound ``issue_date`` inclusively.
    """

    statuses: frozenset[DocumentStatus] | None = None
    invoice_types: frozenset[InvoiceType] | None = None
    building_id: str | None = None
    owner_id: str | None = None
    contact_id: str | None = None
    property_id: str | None = None
    vendor_id: str | None = None
    search: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    aging_bucket: str | None = None

    def __post_init__(self) -> None:
        if self.statuses is not None:
            object.__setattr__(
                self, "statuses", frozenset(DocumentStatus(s) for s in self.statuses)
            )
        if self.invoice_types is not None:
            object.__setattr__(
                self, "invoice_types", frozenset(InvoiceType(t) for t in self.invoice_types)
            )

    def without_status(self) -> LedgerQuery:
        return replace(self, statuses=None)


def entity_label(index: LookupIndex, kind: EntityKind, entity_id: str | None) -> str:
    """Entity name, or "Unknown <Kind>" when it cannot be resolved."""
    entity = index.entity(kind, entity_id)
    if entity is None:
        return f"Unknown {EntityKind(kind).value.title()}"
    return entity.name


def _search_text(record: ResolvedDocument, index: LookupIndex) -> str:
    document = record.document
    parts = [document.number, document.description]
    contact = index.contact_name(document.counterparty_id)
    if contact:
        parts.append(contact)
    prop = index.property_of(document)
    if prop is not None:
        parts.append(prop.name)
    building = index.buildings.get(index.building_id_of(document) or "")
    if building is not None:
        parts.append(building.name)
    return " ".join(p for p in parts if p).casefold()


class QueryEngine:
    """
    Build and apply predicates.

    Contract:
        Pure -- ``today`` and the index are parameters.
    """

    def __init__(self, config: ReconciliationConfig | None = None):
        self._config = config or ReconciliationConfig()
        self._aging = AgingClassifier(self._config)

    def predicates(
        self,
        query: LedgerQuery,
        index: LookupIndex,
        today: date,
    ) -> list[Predicate]:
        """One predicate per active filter, in a fixed order."""
        preds: list[Predicate] = []

        if query.statuses:
            statuses = query.statuses
            preds.append(lambda r: r.status in statuses)

        if query.invoice_types:
            types = query.invoice_types
            preds.append(
                lambda r: isinstance(r.document, Invoice) and r.document.invoice_type in types
            )

        if query.building_id:
            building_id = query.building_id
            preds.append(lambda r: index.building_id_of(r.document) == building_id)

        if query.owner_id:
            owner_id = query.owner_id
            preds.append(lambda r: index.owner_id_of(r.document) == owner_id)

        if query.property_id:
            property_id = query.property_id
            preds.append(lambda r: r.document.property_id == property_id)

        if query.contact_id:
            contact_id = query.contact_id
            preds.append(lambda r: r.document.contact_id == contact_id)

        if query.vendor_id:
            vendor_id = query.vendor_id
            preds.append(lambda r: r.document.counterparty_id == vendor_id)

        if query.search and query.search.strip():
            needle = query.search.strip().casefold()
            preds.append(lambda r: needle in _search_text(r, index))

        if query.date_from is not None:
            start = query.date_from
            preds.append(lambda r: r.document.issue_date >= start)

        if query.date_to is not None:
            end = query.date_to
            preds.append(lambda r: r.document.issue_date <= end)

        if query.aging_bucket:
            bucket = self._aging.bucket_named(query.aging_bucket)
            if bucket is None:
                logger.warning("query_unknown_aging_bucket", extra={
                    "aging_bucket": query.aging_bucket,
                })
                preds.append(lambda r: False)
            else:
                preds.append(
                    lambda r: not r.balance.is_paid
                    and bucket.contains(
                        self._aging.days_overdue(r.document.aging_date, today)
                    )
                )

        return preds

    def apply(
        self,
        records: Sequence[ResolvedDocument],
        query: LedgerQuery,
        index: LookupIndex,
        today: date,
    ) -> tuple[ResolvedDocument, ...]:
        """Records matching every active filter, input order preserved."""
        preds = self.predicates(query, index, today)
        matched = tuple(r for r in records if all(p(r) for p in preds))
        logger.debug("query_applied", extra={
            "input_count": len(records),
            "matched_count": len(matched),
            "filter_count": len(preds),
        })
        return matched


def payments_for_records(
    records: Iterable[ResolvedDocument],
    index: LookupIndex,
) -> tuple[Payment, ...]:
    """
    Non-voided payments linked to ``records``, newest first.

    Pair with ``LedgerQuery.without_status()`` for payment history views.
    """
    payments = [
        p
        for record in records
        for p in index.payments_for(record.document)
        if p.links_to(record.document)
    ]
    return tuple(sorted(payments, key=lambda p: (p.date, p.id), reverse=True))

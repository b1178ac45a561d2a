"""
Module: ledger_engines.lookup
Responsibility:
    ID-indexed maps over one snapshot of the record store, built once per
    operation.  Aggregation, filtering and balance resolution look entities
    and linked payments up here instead of scanning collections.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Every lookup is O(1); nothing in the engines scans a full entity
      collection per record.
    - Missing ids resolve to None, never raise.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from ledger_kernel.domain.records import (
    Building,
    Category,
    CategoryKind,
    Contact,
    DocumentKind,
    EntityKind,
    LedgerDocument,
    Payment,
    Project,
    Property,
    Unit,
)


@dataclass(frozen=True)
class LookupIndex:
    """
    Precomputed id -> record maps for one snapshot.

    Contract:
        Built by ``LookupIndex.build`` from plain record iterables.  The
        index is read-only; rebuild it for the next operation.
    """

    contacts: dict[str, Contact] = field(default_factory=dict)
    properties: dict[str, Property] = field(default_factory=dict)
    buildings: dict[str, Building] = field(default_factory=dict)
    projects: dict[str, Project] = field(default_factory=dict)
    units: dict[str, Unit] = field(default_factory=dict)
    categories: dict[str, Category] = field(default_factory=dict)
    categories_by_kind: dict[CategoryKind, Category] = field(default_factory=dict)
    categories_by_name: dict[str, Category] = field(default_factory=dict)
    payments_by_document: dict[tuple[DocumentKind, str], tuple[Payment, ...]] = field(
        default_factory=dict
    )

    @classmethod
    def build(
        cls,
        *,
        contacts: Iterable[Contact] = (),
        properties: Iterable[Property] = (),
        buildings: Iterable[Building] = (),
        projects: Iterable[Project] = (),
        units: Iterable[Unit] = (),
        categories: Iterable[Category] = (),
        payments: Iterable[Payment] = (),
    ) -> LookupIndex:
        category_list = list(categories)
        by_kind: dict[CategoryKind, Category] = {}
        by_name: dict[str, Category] = {}
        for category in category_list:
            # First definition wins for duplicate kinds / names.
            if category.kind is not None:
                by_kind.setdefault(category.kind, category)
            by_name.setdefault(category.name.casefold(), category)

        linked: dict[tuple[DocumentKind, str], list[Payment]] = defaultdict(list)
        for payment in payments:
            if payment.invoice_id:
                linked[(DocumentKind.INVOICE, payment.invoice_id)].append(payment)
            elif payment.bill_id:
                linked[(DocumentKind.BILL, payment.bill_id)].append(payment)

        return cls(
            contacts={c.id: c for c in contacts},
            properties={p.id: p for p in properties},
            buildings={b.id: b for b in buildings},
            projects={p.id: p for p in projects},
            units={u.id: u for u in units},
            categories={c.id: c for c in category_list},
            categories_by_kind=by_kind,
            categories_by_name=by_name,
            payments_by_document={k: tuple(v) for k, v in linked.items()},
        )

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def entity(self, kind: EntityKind, entity_id: str | None):
        if not entity_id:
            return None
        table = {
            EntityKind.CONTACT: self.contacts,
            EntityKind.PROPERTY: self.properties,
            EntityKind.BUILDING: self.buildings,
            EntityKind.PROJECT: self.projects,
            EntityKind.UNIT: self.units,
        }[EntityKind(kind)]
        return table.get(entity_id)

    def property_of(self, document: LedgerDocument) -> Property | None:
        return self.properties.get(document.property_id) if document.property_id else None

    def building_id_of(self, document: LedgerDocument) -> str | None:
        """Record's own building, else its property's building."""
        if document.building_id:
            return document.building_id
        prop = self.property_of(document)
        return prop.building_id if prop else None

    def owner_id_of(self, document: LedgerDocument) -> str | None:
        prop = self.property_of(document)
        return prop.owner_id if prop else None

    def contact_name(self, contact_id: str | None) -> str | None:
        contact = self.contacts.get(contact_id) if contact_id else None
        return contact.name if contact else None

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def payments_for(self, document: LedgerDocument) -> tuple[Payment, ...]:
        """Payments whose link field points at ``document`` (unfiltered)."""
        return self.payments_by_document.get((document.kind, document.id), ())

    def payments_in_batch(self, batch_id: str) -> tuple[Payment, ...]:
        return tuple(
            p
            for payments in self.payments_by_document.values()
            for p in payments
            if p.batch_id == batch_id
        )

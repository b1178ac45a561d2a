"""
Module: ledger_engines.aging
Responsibility:
    Compute days overdue for open invoices and bills and classify their
    remaining balances into configurable aging buckets.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Depends on
    ``ledger_engines.balance`` for remaining/status.

Invariants enforced:
    - Purity: no clock access; ``today`` is always a parameter.
    - ``days_overdue = max(0, (today - due_date).days)``; a document due
      today has zero days overdue, is not overdue and lands in the first
      bucket.
    - Paid documents are excluded from every bucket.
    - Buckets come from ``ReconciliationConfig.aging_boundaries``:
      (30, 60, 90) -> "0-30", "31-60", "61-90", "90+".

Failure modes:
    - ValueError when a bucket is malformed or an age fits no bucket
      (impossible for buckets produced by ``buckets_from_boundaries``).

Usage:
    from ledger_engines.aging import AgingClassifier

    classifier = AgingClassifier(config)
    days = classifier.days_overdue(date(2024, 1, 15), today=date(2024, 2, 15))
    bucket = classifier.classify(days)  # AgeBucket("31-60", 31, 60)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from ledger_config.schema import ReconciliationConfig
from ledger_engines.balance import ResolvedDocument
from ledger_engines.lookup import LookupIndex
from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.money import ZERO
from ledger_kernel.domain.records import DocumentKind
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.aging")


@dataclass(frozen=True)
class AgeBucket:
    """
    Definition of an aging bucket.

    Contract:
        Frozen dataclass representing a contiguous range of days.
    Guarantees:
        - min_days >= 0.
        - max_days >= min_days (when bounded).
    """

    name: str
    min_days: int
    max_days: int | None  # None = unbounded (e.g., 90+)

    def __post_init__(self) -> None:
        if self.min_days < 0:
            raise ValueError("min_days cannot be negative")
        if self.max_days is not None and self.max_days < self.min_days:
            raise ValueError("max_days cannot be less than min_days")

    def contains(self, age_days: int) -> bool:
        """Check if age falls within this bucket."""
        if age_days < self.min_days:
            return False
        if self.max_days is None:
            return True
        return age_days <= self.max_days

    @property
    def is_unbounded(self) -> bool:
        return self.max_days is None


def buckets_from_boundaries(boundaries: Sequence[int]) -> tuple[AgeBucket, ...]:
    """
    Build contiguous buckets from ascending upper bounds.

    (30, 60, 90) -> 0-30, 31-60, 61-90, 90+ (91 and over).
    """
    buckets: list[AgeBucket] = []
    lower = 0
    for upper in boundaries:
        buckets.append(AgeBucket(f"{lower}-{upper}", lower, upper))
        lower = upper + 1
    buckets.append(AgeBucket(f"{boundaries[-1]}+", lower, None))
    return tuple(buckets)


STANDARD_BUCKETS: tuple[AgeBucket, ...] = buckets_from_boundaries((30, 60, 90))


@dataclass(frozen=True)
class AgedItem:
    """
    An open document with its age classification.

    Guarantees:
        - ``bucket.contains(days_overdue)``.
        - ``remaining > 0`` side of the tolerance (Paid items never appear).
    """

    document_id: str
    document_kind: DocumentKind
    number: str
    aging_date: date
    due_date: date | None
    remaining: Decimal
    days_overdue: int
    bucket: AgeBucket
    counterparty_id: str | None = None
    counterparty_name: str | None = None

    @property
    def is_overdue(self) -> bool:
        """True if past due date (if due date exists)."""
        if self.due_date is None:
            return False
        return self.days_overdue > 0


@dataclass(frozen=True)
class AgingReport:
    """
    Complete aging report.

    Guarantees:
        - ``total_amount()`` equals the sum of all item remaining balances.
        - ``total_by_bucket()`` covers every bucket in ``self.buckets``.
    """

    as_of_date: date
    buckets: tuple[AgeBucket, ...]
    items: tuple[AgedItem, ...]

    @property
    def item_count(self) -> int:
        return len(self.items)

    def total_amount(self) -> Decimal:
        return sum((i.remaining for i in self.items), ZERO)

    def total_by_bucket(self) -> dict[str, Decimal]:
        """Sum remaining by bucket; every bucket is present."""
        result = {b.name: ZERO for b in self.buckets}
        for item in self.items:
            result[item.bucket.name] += item.remaining
        return result

    def count_by_bucket(self) -> dict[str, int]:
        result = {b.name: 0 for b in self.buckets}
        for item in self.items:
            result[item.bucket.name] += 1
        return result

    def total_by_counterparty(self) -> dict[str, dict[str, Decimal]]:
        """
        Sum remaining by counterparty and bucket.

        Items without a counterparty are skipped.
        """
        result: dict[str, dict[str, Decimal]] = {}
        for item in self.items:
            if item.counterparty_id is None:
                continue
            row = result.setdefault(
                item.counterparty_id, {b.name: ZERO for b in self.buckets}
            )
            row[item.bucket.name] += item.remaining
        return result

    def items_in_bucket(self, bucket_name: str) -> tuple[AgedItem, ...]:
        return tuple(i for i in self.items if i.bucket.name == bucket_name)

    def items_for_counterparty(self, counterparty_id: str) -> tuple[AgedItem, ...]:
        return tuple(i for i in self.items if i.counterparty_id == counterparty_id)

    def overdue_items(self) -> tuple[AgedItem, ...]:
        return tuple(i for i in self.items if i.is_overdue)

    def overdue_amount(self) -> Decimal:
        return sum((i.remaining for i in self.overdue_items()), ZERO)


class AgingClassifier:
    """
    Age open documents.

    Contract:
        Pure functions -- no I/O, no database access.
    Guarantees:
        - ``classify`` maps every non-negative age to exactly one bucket.
    Non-goals:
        - Does not persist reports.
    """

    def __init__(self, config: ReconciliationConfig | None = None):
        self._config = config or ReconciliationConfig()
        self.buckets = buckets_from_boundaries(self._config.aging_boundaries)

    def days_overdue(self, aging_date: date, today: date) -> int:
        """Whole days past ``aging_date``; 0 when not yet due."""
        return max(0, (today - aging_date).days)

    def classify(self, age_days: int) -> AgeBucket:
        """
        Classify age into a bucket.

        Raises:
            ValueError: If age doesn't fit any bucket.
        """
        for bucket in self.buckets:
            if bucket.contains(max(0, age_days)):
                return bucket
        logger.warning("age_classification_no_bucket", extra={
            "age_days": age_days,
            "bucket_count": len(self.buckets),
        })
        raise ValueError(f"Age {age_days} does not fit any bucket")

    def bucket_named(self, name: str) -> AgeBucket | None:
        for bucket in self.buckets:
            if bucket.name == name:
                return bucket
        return None

    def age(
        self,
        record: ResolvedDocument,
        today: date,
        index: LookupIndex | None = None,
    ) -> AgedItem | None:
        """Aged view of one resolved document, or None when it is Paid."""
        if record.balance.is_paid:
            return None
        document = record.document
        days = self.days_overdue(document.aging_date, today)
        counterparty = document.counterparty_id
        return AgedItem(
            document_id=document.id,
            document_kind=document.kind,
            number=document.number,
            aging_date=document.aging_date,
            due_date=document.due_date,
            remaining=record.remaining,
            days_overdue=days,
            bucket=self.classify(days),
            counterparty_id=counterparty,
            counterparty_name=index.contact_name(counterparty) if index else None,
        )

    @traced_engine("aging", "1.0", fingerprint_fields=("today",))
    def build_report(
        self,
        records: Sequence[ResolvedDocument],
        today: date,
        index: LookupIndex | None = None,
    ) -> AgingReport:
        """
        Generate an aging report over resolved documents.

        Paid documents are dropped; everything else is bucketed.
        """
        items = tuple(
            item
            for item in (self.age(r, today, index) for r in records)
            if item is not None
        )

        logger.info("aging_report_generated", extra={
            "as_of_date": today.isoformat(),
            "record_count": len(records),
            "item_count": len(items),
            "bucket_count": len(self.buckets),
        })

        return AgingReport(as_of_date=today, buckets=self.buckets, items=items)

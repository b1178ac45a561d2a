"""
Module: ledger_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    reconciliation engines.  This is the canonical import surface for
    ``ledger_services``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import ledger_kernel.domain, ledger_kernel.exceptions and
    ledger_config.schema.  MUST NOT import ledger_services.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()`` or ``date.today()``.
      ``today`` is always an explicit parameter supplied by the caller.
    - Decimal-only arithmetic for every monetary amount.
    - Determinism: identical inputs produce identical outputs (payment,
      batch and invoice ids come from an injectable factory).

Audit relevance:
    Engine entry points are traced via ``@traced_engine`` (see
    ``ledger_engines.tracer``), emitting LEDGER_ENGINE_TRACE records.

Usage:
    from ledger_engines.balance import BalanceResolver
    from ledger_engines.aging import AgingClassifier
    from ledger_engines.hierarchy import HierarchyAggregator, GroupingStrategy
    from ledger_engines.allocation import PaymentAllocator
    from ledger_engines.recurring import RecurringAdvancer
    from ledger_engines.query import LedgerQuery, QueryEngine
"""

from ledger_engines.aging import (
    AgeBucket,
    AgedItem,
    AgingClassifier,
    AgingReport,
    buckets_from_boundaries,
)
from ledger_engines.allocation import (
    AllocationLine,
    AllocationPlan,
    PaymentAllocator,
    PaymentDetails,
)
from ledger_engines.balance import (
    BalanceResolver,
    DocumentBalance,
    ResolvedDocument,
    SubLedgerBalance,
)
from ledger_engines.categories import CategoryResolver, Component, default_kind_for
from ledger_engines.hierarchy import (
    GroupingLevel,
    GroupingStrategy,
    HierarchyAggregator,
    SortField,
    SortSpec,
    TreeNode,
    levels_for,
    sort_tree,
)
from ledger_engines.lookup import LookupIndex
from ledger_engines.query import (
    LedgerQuery,
    QueryEngine,
    entity_label,
    payments_for_records,
)
from ledger_engines.recurring import (
    AdvanceStep,
    RecurringAdvancer,
    RecurringOutcome,
    TemplateAdvance,
    add_frequency,
    next_invoice_number,
    period_key,
)
from ledger_engines.tracer import traced_engine

__all__ = [
    "AgeBucket",
    "AgedItem",
    "AgingClassifier",
    "AgingReport",
    "buckets_from_boundaries",
    "AllocationLine",
    "AllocationPlan",
    "PaymentAllocator",
    "PaymentDetails",
    "BalanceResolver",
    "DocumentBalance",
    "ResolvedDocument",
    "SubLedgerBalance",
    "CategoryResolver",
    "Component",
    "default_kind_for",
    "GroupingLevel",
    "GroupingStrategy",
    "HierarchyAggregator",
    "SortField",
    "SortSpec",
    "TreeNode",
    "levels_for",
    "sort_tree",
    "LookupIndex",
    "LedgerQuery",
    "QueryEngine",
    "entity_label",
    "payments_for_records",
    "AdvanceStep",
    "RecurringAdvancer",
    "RecurringOutcome",
    "TemplateAdvance",
    "add_frequency",
    "next_invoice_number",
    "period_key",
    "traced_engine",
]

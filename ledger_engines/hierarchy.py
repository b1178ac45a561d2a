"""
Module: ledger_engines.hierarchy
Responsibility:
    Group a pre-filtered list of resolved invoices/bills into a tree
    (e.g. building -> property -> tenant) and roll up outstanding sums,
    overdue sums and record counts at every node.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Depends on
    ``ledger_engines.balance`` (remaining/status) and
    ``ledger_engines.lookup`` (id -> entity maps).

Invariants enforced:
    - Grouping is a partition: every record lands in exactly one node per
      level.  A missing or dangling reference lands in the level's
      unassigned node; nothing is dropped and nothing raises.
    - A node's sums are computed from exactly the records placed at or
      below it, never re-derived from its children.  The root's
      outstanding sum therefore equals the sum over the whole input.
    - Sums add each record's ``outstanding``, not its ``remaining``: a
      document settled within tolerance is Paid, still counted, and adds
      nothing.  Trees agree with aging report totals.
    - One linear grouping pass per level: O(n * d).  Entity names come
      from ``LookupIndex`` maps.
    - Sorting (``sort_tree``) returns a new tree and never touches sums.

Failure modes:
    None for well-formed inputs.

Usage:
    aggregator = HierarchyAggregator(config)
    root = aggregator.build(
        records=resolved,
        index=index,
        levels=levels_for(GroupingStrategy.BUILDING_PROPERTY_TENANT),
        today=today,
    )
    root = sort_tree(root, SortSpec(SortField.OUTSTANDING, descending=True))
"""

from __future__ import annotations

import locale
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from enum import Enum

from ledger_config.schema import ReconciliationConfig
from ledger_engines.balance import ResolvedDocument
from ledger_engines.lookup import LookupIndex
from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.money import ZERO
from ledger_kernel.domain.records import LedgerDocument
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.hierarchy")

UNASSIGNED_KEY = "__unassigned"
ROOT_ID = "root"


# ---------------------------------------------------------------------------
# Grouping levels
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GroupingLevel:
    """
    One level of a grouping strategy.

    ``key_of`` returns the entity id a record groups under (or None);
    ``table_of`` returns the id -> entity map the key must resolve in.
    A key that does not resolve is replaced by ``UNASSIGNED_KEY``.
    """

    name: str
    unassigned_name: str
    key_of: Callable[[LedgerDocument, LookupIndex], str | None]
    table_of: Callable[[LookupIndex], Mapping]

    def resolve_key(self, document: LedgerDocument, index: LookupIndex) -> str:
        key = self.key_of(document, index)
        if key and key in self.table_of(index):
            return key
        return UNASSIGNED_KEY

    def name_for(self, key: str, index: LookupIndex) -> str:
        if key == UNASSIGNED_KEY:
            return self.unassigned_name
        return self.table_of(index)[key].name


BUILDING = GroupingLevel(
    name="building",
    unassigned_name="Unassigned Building",
    key_of=lambda doc, index: index.building_id_of(doc),
    table_of=lambda index: index.buildings,
)

PROPERTY = GroupingLevel(
    name="property",
    unassigned_name="Unassigned Property",
    key_of=lambda doc, index: doc.property_id,
    table_of=lambda index: index.properties,
)

TENANT = GroupingLevel(
    name="tenant",
    unassigned_name="Unknown Tenant",
    key_of=lambda doc, index: doc.contact_id,
    table_of=lambda index: index.contacts,
)

OWNER = GroupingLevel(
    name="owner",
    unassigned_name="Unassigned Owner",
    key_of=lambda doc, index: index.owner_id_of(doc),
    table_of=lambda index: index.contacts,
)

VENDOR = GroupingLevel(
    name="vendor",
    unassigned_name="Unknown Vendor",
    key_of=lambda doc, index: doc.counterparty_id,
    table_of=lambda index: index.contacts,
)


class GroupingStrategy(str, Enum):
    """Ready-made grouping strategies."""

    BUILDING_PROPERTY_TENANT = "building>property>tenant"
    PROPERTY_TENANT = "property>tenant"
    TENANT = "tenant"
    OWNER_PROPERTY_TENANT = "owner>property>tenant"
    VENDOR = "vendor"
    BUILDING_VENDOR = "building>vendor"


_STRATEGY_LEVELS: dict[GroupingStrategy, tuple[GroupingLevel, ...]] = {
    GroupingStrategy.BUILDING_PROPERTY_TENANT: (BUILDING, PROPERTY, TENANT),
    GroupingStrategy.PROPERTY_TENANT: (PROPERTY, TENANT),
    GroupingStrategy.TENANT: (TENANT,),
    GroupingStrategy.OWNER_PROPERTY_TENANT: (OWNER, PROPERTY, TENANT),
    GroupingStrategy.VENDOR: (VENDOR,),
    GroupingStrategy.BUILDING_VENDOR: (BUILDING, VENDOR),
}


def levels_for(strategy: GroupingStrategy | str) -> tuple[GroupingLevel, ...]:
    return _STRATEGY_LEVELS[GroupingStrategy(strategy)]


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TreeNode:
    """
    One node of an aggregation tree.

    Contract:
        ``outstanding`` / ``overdue`` / ``count`` cover every record at or
        below this node.  Leaf nodes carry ``records``; inner nodes carry
        ``children``.
    Guarantees:
        - ``id`` is path-qualified, so the same tenant under two
          properties yields two distinct nodes.
    """

    id: str
    key: str
    name: str
    level: str | None
    outstanding: Decimal
    overdue: Decimal
    count: int
    children: tuple[TreeNode, ...] = ()
    records: tuple[ResolvedDocument, ...] = ()

    @property
    def is_unassigned(self) -> bool:
        return self.key == UNASSIGNED_KEY

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def find_node(self, node_id: str) -> TreeNode | None:
        if self.id == node_id:
            return self
        for child in self.children:
            found = child.find_node(node_id)
            if found is not None:
                return found
        return None

    def flatten(self) -> tuple[TreeNode, ...]:
        """Depth-first pre-order list of this node and its descendants."""
        nodes: list[TreeNode] = [self]
        for child in self.children:
            nodes.extend(child.flatten())
        return tuple(nodes)

    def all_records(self) -> tuple[ResolvedDocument, ...]:
        if self.is_leaf:
            return self.records
        return tuple(r for child in self.children for r in child.all_records())


class HierarchyAggregator:
    """
    Build aggregation trees.

    Contract:
        Pure functions -- ``today`` and the lookup index are parameters.
    Non-goals:
        - Does not filter; apply ``ledger_engines.query`` first.
        - Does not sort; use ``sort_tree``.
    """

    def __init__(self, config: ReconciliationConfig | None = None):
        self._config = config or ReconciliationConfig()

    def _is_overdue(self, record: ResolvedDocument, today: date) -> bool:
        due = record.document.due_date
        return due is not None and due < today and not record.balance.is_paid

    def _make_node(
        self,
        *,
        node_id: str,
        key: str,
        name: str,
        level: str | None,
        records: Sequence[ResolvedDocument],
        today: date,
        children: tuple[TreeNode, ...],
    ) -> TreeNode:
        outstanding = ZERO
        overdue = ZERO
        for record in records:
            contribution = record.balance.outstanding
            outstanding += contribution
            if self._is_overdue(record, today):
                overdue += contribution
        return TreeNode(
            id=node_id,
            key=key,
            name=name,
            level=level,
            outstanding=outstanding,
            overdue=overdue,
            count=len(records),
            children=children,
            records=() if children else tuple(records),
        )

    def _group(
        self,
        records: Sequence[ResolvedDocument],
        levels: Sequence[GroupingLevel],
        depth: int,
        parent_id: str,
        index: LookupIndex,
        today: date,
    ) -> tuple[TreeNode, ...]:
        level = levels[depth]
        groups: dict[str, list[ResolvedDocument]] = {}
        for record in records:
            groups.setdefault(level.resolve_key(record.document, index), []).append(record)

        nodes: list[TreeNode] = []
        for key, group in groups.items():
            node_id = f"{parent_id}/{level.name}:{key}"
            children: tuple[TreeNode, ...] = ()
            if depth + 1 < len(levels):
                children = self._group(group, levels, depth + 1, node_id, index, today)
            nodes.append(
                self._make_node(
                    node_id=node_id,
                    key=key,
                    name=level.name_for(key, index),
                    level=level.name,
                    records=group,
                    today=today,
                    children=children,
                )
            )
        return tuple(nodes)

    @traced_engine("hierarchy", "1.0", fingerprint_fields=("today",))
    def build(
        self,
        records: Sequence[ResolvedDocument],
        index: LookupIndex,
        levels: Sequence[GroupingLevel],
        today: date,
    ) -> TreeNode:
        """
        Aggregate ``records`` into a tree rooted at an "All" node.

        Args:
            records: Pre-filtered, resolved documents.
            index: Lookup maps for the same snapshot.
            levels: Grouping levels, outermost first.  Empty -> a single
                root leaf holding every record.
            today: Date the overdue split is made against.
        """
        children: tuple[TreeNode, ...] = ()
        if levels and records:
            children = self._group(records, levels, 0, ROOT_ID, index, today)

        root = self._make_node(
            node_id=ROOT_ID,
            key=ROOT_ID,
            name="All",
            level=None,
            records=records,
            today=today,
            children=children,
        )

        logger.info("hierarchy_built", extra={
            "record_count": len(records),
            "levels": [lvl.name for lvl in levels],
            "top_level_nodes": len(children),
            "outstanding": str(root.outstanding),
        })
        return root


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


class SortField(str, Enum):
    NAME = "name"
    OUTSTANDING = "outstanding"


@dataclass(frozen=True)
class SortSpec:
    field: SortField = SortField.NAME
    descending: bool = False


def _name_key(node: TreeNode) -> tuple[str, str]:
    return (locale.strxfrm(node.name.casefold()), node.id)


def _sort_key(spec: SortSpec) -> Callable[[TreeNode], tuple]:
    if SortField(spec.field) is SortField.OUTSTANDING:
        return lambda node: (node.outstanding, _name_key(node))
    return _name_key


def sort_tree(
    node: TreeNode,
    default: SortSpec = SortSpec(),
    per_level: Mapping[str, SortSpec] | None = None,
) -> TreeNode:
    """
    Return a copy of ``node`` with children sorted at every level.

    ``per_level`` maps a level name ("building", "tenant", ...) to the spec
    used for nodes of that level; other levels use ``default``.
    """
    if not node.children:
        return node
    per_level = per_level or {}
    level = node.children[0].level
    spec = per_level.get(level, default) if level else default
    children = sorted(
        (sort_tree(child, default, per_level) for child in node.children),
        key=_sort_key(spec),
        reverse=spec.descending,
    )
    return replace(node, children=tuple(children))

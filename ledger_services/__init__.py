"""
ledger_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the pure reconciliation engines
    (ledger_engines/) and a record store.  This is the only layer that
    reads the clock, holds locks, or talks to persistence.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        ledger_services/ -> ledger_engines/  (allowed)
        ledger_services/ -> ledger_kernel/   (allowed)
        ledger_engines/  -> ledger_services/ (FORBIDDEN)
        ledger_kernel/   -> ledger_services/ (FORBIDDEN)

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.
"""

from ledger_services.reconciliation_service import (
    DocumentLocks,
    LedgerReconciliationService,
)
from ledger_services.record_store import (
    InMemoryRecordStore,
    LedgerSnapshot,
    RecordStore,
)
from ledger_services.sql_store import SqlRecordStore

__all__ = [
    "DocumentLocks",
    "InMemoryRecordStore",
    "LedgerReconciliationService",
    "LedgerSnapshot",
    "RecordStore",
    "SqlRecordStore",
]

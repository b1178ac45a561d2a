"""
Module: ledger_services.sql_store
Responsibility:
    ``RecordStore`` implementation over the SQLAlchemy ORM models in
    ``ledger_kernel.models``.  Each read opens a short session; each
    ``apply`` batch runs in exactly one transaction.

Architecture position:
    Services -- owns the transaction boundary for persisted ledgers.

Invariants enforced:
    - One ``session_scope`` per ``apply``: commit on success, rollback on
      any failure, so a rejected batch leaves no rows behind.
    - ``SetPaidAmount`` reads the document row with ``SELECT ... FOR
      UPDATE`` and compares the stored cache with the expected value
      before writing (optimistic check across processes).
    - Rows are converted to frozen domain records before leaving the
      store; no ORM instance escapes a session.

Failure modes:
    - CommandRejectedError / OptimisticLockError as for the in-memory store.
    - SQLAlchemy errors (connectivity, constraint violations not caught by
      validation) propagate after rollback.
"""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.engine import get_session_factory, session_scope
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
    NumberingSettings,
    Payment,
    Project,
    Property,
    RecurringInvoiceTemplate,
    TransactionType,
    Unit,
)
from ledger_kernel.exceptions import CommandRejectedError, OptimisticLockError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models import (
    NUMBERING_ROW_ID,
    BillModel,
    BuildingModel,
    CategoryModel,
    ContactModel,
    InvoiceModel,
    NumberingSettingsModel,
    PaymentModel,
    ProjectModel,
    PropertyModel,
    RecurringTemplateModel,
    UnitModel,
)
from ledger_services.record_store import RecordStore, command_name

logger = get_logger("services.sql_store")

_ENTITY_MODELS = {
    EntityKind.CONTACT: ContactModel,
    EntityKind.PROPERTY: PropertyModel,
    EntityKind.BUILDING: BuildingModel,
    EntityKind.PROJECT: ProjectModel,
    EntityKind.UNIT: UnitModel,
}

_DOCUMENT_MODELS = {
    DocumentKind.INVOICE: InvoiceModel,
    DocumentKind.BILL: BillModel,
}

_REFERENCE_MODELS = {
    Contact: ContactModel,
    Property: PropertyModel,
    Building: BuildingModel,
    Project: ProjectModel,
    Unit: UnitModel,
    Category: CategoryModel,
    NumberingSettings: NumberingSettingsModel,
}


class SqlRecordStore(RecordStore):
    """
    SQLAlchemy-backed record store.

    Usage:
        init_engine_from_url("sqlite://")
        create_tables()
        store = SqlRecordStore()
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._factory = session_factory or get_session_factory()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _all(self, model, *order_by) -> tuple:
        with session_scope(self._factory) as session:
            rows = session.scalars(select(model).order_by(*order_by)).all()
            return tuple(row.to_dto() for row in rows)

    def list_invoices(self) -> Sequence[Invoice]:
        return self._all(InvoiceModel, InvoiceModel.number, InvoiceModel.id)

    def list_bills(self) -> Sequence[Bill]:
        return self._all(BillModel, BillModel.number, BillModel.id)

    def list_payments(self) -> Sequence[Payment]:
        return self._all(PaymentModel, PaymentModel.date, PaymentModel.id)

    def list_templates(self) -> Sequence[RecurringInvoiceTemplate]:
        return self._all(RecurringTemplateModel, RecurringTemplateModel.id)

    def list_entities(self, kind: EntityKind) -> Sequence[Entity]:
        model = _ENTITY_MODELS[EntityKind(kind)]
        return self._all(model, model.id)

    def list_categories(self) -> Sequence[Category]:
        return self._all(CategoryModel, CategoryModel.id)

    def numbering_settings(self) -> NumberingSettings | None:
        with session_scope(self._factory) as session:
            row = session.get(NumberingSettingsModel, NUMBERING_ROW_ID)
            return row.to_dto() if row is not None else None

    def resolve_entity(self, kind: EntityKind, entity_id: str) -> Entity | None:
        if not entity_id:
            return None
        with session_scope(self._factory) as session:
            row = session.get(_ENTITY_MODELS[EntityKind(kind)], entity_id)
            return row.to_dto() if row is not None else None

    # ------------------------------------------------------------------
    # Reference data (host-maintained)
    # ------------------------------------------------------------------

    def add_records(self, records: Sequence[object]) -> None:
        """
        Insert entities, categories or numbering settings in one transaction.

        Documents, payments and templates go through ``apply``.

        Raises:
            TypeError: ``records`` holds something other than reference data.
        """
        with session_scope(self._factory) as session:
            for record in records:
                model = _REFERENCE_MODELS.get(type(record))
                if model is None:
                    raise TypeError(f"not reference data: {type(record).__name__}")
                session.merge(model.from_dto(record))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply(self, commands: Sequence[LedgerCommand]) -> None:
        """
        Apply ``commands`` in a single transaction.

        Raises:
            CommandRejectedError, OptimisticLockError: the transaction is
                rolled back and nothing is written.
        """
        with session_scope(self._factory) as session:
            for command in commands:
                self._apply_one(session, command)
                session.flush()

        logger.debug("store_batch_applied", extra={
            "command_count": len(commands),
            "commands": sorted({command_name(c) for c in commands}),
        })

    def _apply_one(self, session: Session, command: LedgerCommand) -> None:
        match command:
            case CreatePayment(payment=payment):
                if session.get(PaymentModel, payment.id) is not None:
                    raise CommandRejectedError(
                        command_name(command), f"payment {payment.id} already exists"
                    )
                if payment.invoice_id and session.get(InvoiceModel, payment.invoice_id) is None:
                    raise CommandRejectedError(
                        command_name(command), f"invoice {payment.invoice_id} does not exist"
                    )
                if payment.bill_id and session.get(BillModel, payment.bill_id) is None:
                    raise CommandRejectedError(
                        command_name(command), f"bill {payment.bill_id} does not exist"
                    )
                session.add(PaymentModel.from_dto(payment))

            case DeletePayment(payment_id=payment_id):
                row = session.get(PaymentModel, payment_id)
                if row is None:
                    raise CommandRejectedError(
                        command_name(command), f"payment {payment_id} does not exist"
                    )
                session.delete(row)

            case CreateDocument(document=document):
                model = _DOCUMENT_MODELS[document.kind]
                if session.get(model, document.id) is not None:
                    raise CommandRejectedError(
                        command_name(command), f"{document.kind.value} {document.id} already exists"
                    )
                taken = session.scalar(
                    select(func.count()).select_from(model).where(model.number == document.number)
                )
                if taken:
                    raise CommandRejectedError(
                        command_name(command),
                        f"{document.kind.value} number {document.number} already in use",
                    )
                session.add(model.from_dto(document))

            case DeleteDocument(kind=kind, document_id=document_id):
                model = _DOCUMENT_MODELS[DocumentKind(kind)]
                row = session.get(model, document_id)
                if row is None:
                    raise CommandRejectedError(
                        command_name(command), f"{kind.value} {document_id} does not exist"
                    )
                link_column = (
                    PaymentModel.invoice_id
                    if DocumentKind(kind) is DocumentKind.INVOICE
                    else PaymentModel.bill_id
                )
                payment_type = (
                    TransactionType.INCOME
                    if DocumentKind(kind) is DocumentKind.INVOICE
                    else TransactionType.EXPENSE
                )
                linked = session.scalar(
                    select(func.count())
                    .select_from(PaymentModel)
                    .where(
                        link_column == document_id,
                        PaymentModel.type == payment_type.value,
                        PaymentModel.voided.is_(False),
                    )
                )
                if linked:
                    raise CommandRejectedError(
                        command_name(command), f"{kind.value} {document_id} has linked payments"
                    )
                session.delete(row)

            case SetPaidAmount(
                kind=kind,
                document_id=document_id,
                paid_amount=paid_amount,
                expected_paid_amount=expected,
            ):
                model = _DOCUMENT_MODELS[DocumentKind(kind)]
                row = session.execute(
                    select(model)
                    .where(model.id == document_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one_or_none()
                if row is None:
                    raise CommandRejectedError(
                        command_name(command), f"{kind.value} {document_id} does not exist"
                    )
                if row.paid_amount != expected:
                    logger.warning("store_optimistic_lock_conflict", extra={
                        "document_id": document_id,
                        "expected": str(expected),
                        "actual": str(row.paid_amount),
                    })
                    raise OptimisticLockError(
                        kind.value, document_id, expected, row.paid_amount
                    )
                row.paid_amount = paid_amount

            case CreateTemplate(template=template):
                if session.get(RecurringTemplateModel, template.id) is not None:
                    raise CommandRejectedError(
                        command_name(command), f"template {template.id} already exists"
                    )
                session.add(RecurringTemplateModel.from_dto(template))

            case UpdateTemplate(template=template):
                row = session.get(RecurringTemplateModel, template.id)
                if row is None:
                    raise CommandRejectedError(
                        command_name(command), f"template {template.id} does not exist"
                    )
                row.update_from_dto(template)

            case DeleteTemplate(template_id=template_id):
                row = session.get(RecurringTemplateModel, template_id)
                if row is None:
                    raise CommandRejectedError(
                        command_name(command), f"template {template_id} does not exist"
                    )
                session.delete(row)

            case UpdateNumbering(settings=settings):
                row = session.get(NumberingSettingsModel, NUMBERING_ROW_ID)
                if row is None:
                    session.add(NumberingSettingsModel.from_dto(settings))
                else:
                    row.prefix = settings.prefix
                    row.next_number = settings.next_number
                    row.padding = settings.padding

            case _:
                raise CommandRejectedError(command_name(command), "unknown command")

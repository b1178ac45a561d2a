"""
Module: ledger_engines.recurring
Responsibility:
    Decide which recurring invoice templates are due, generate the invoice
    for each due period, and advance the template schedule.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Returns
    ``TemplateAdvance`` results made of ledger commands; the reconciliation
    service applies each template's commands as one atomic batch.

Invariants enforced:
    - A template is due when it is active and ``next_due_date <= today``.
    - Idempotent per period: when an invoice already exists for the
      template's scope (agreement, else property + contact), invoice type
      and period, the schedule advances without generating a second one.
    - Invoice creation, schedule advance and the numbering update are
      emitted together; there is no plan that does one without the others.
    - Monthly/yearly advances keep ``day_of_month`` where the target month
      has that many days and clamp to month end otherwise.
    - Catch-up generation is bounded by ``recurring_max_catch_up``.
    - A template whose ``generated_count`` reaches ``max_occurrences`` is
      deactivated in the same step.

Failure modes:
    None for valid templates.  Category lookup for the generated invoice
    is best-effort; an invoice without a category is still generated.
"""

from __future__ import annotations

import calendar
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import date, timedelta
from enum import Enum
from uuid import uuid4

from ledger_config.schema import ReconciliationConfig
from ledger_engines.categories import CategoryResolver, default_kind_for
from ledger_engines.lookup import LookupIndex
from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.commands import (
    CreateDocument,
    LedgerCommand,
    UpdateNumbering,
    UpdateTemplate,
)
from ledger_kernel.domain.money import ZERO
from ledger_kernel.domain.records import (
    CategoryKind,
    Frequency,
    Invoice,
    InvoiceType,
    NumberingSettings,
    RecurringInvoiceTemplate,
)
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.recurring")


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def _clamped(year: int, month: int, day_of_month: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day_of_month, last_day))


def add_frequency(current: date, frequency: Frequency, day_of_month: int) -> date:
    """Advance ``current`` by exactly one ``frequency`` unit."""
    match Frequency(frequency):
        case Frequency.DAILY:
            return current + timedelta(days=1)
        case Frequency.WEEKLY:
            return current + timedelta(days=7)
        case Frequency.MONTHLY:
            year, month = current.year, current.month + 1
            if month > 12:
                year, month = year + 1, 1
            return _clamped(year, month, day_of_month)
        case Frequency.YEARLY:
            return _clamped(current.year + 1, current.month, day_of_month)


def period_key(day: date, frequency: Frequency) -> str:
    """Identity of the billing period ``day`` falls in."""
    match Frequency(frequency):
        case Frequency.DAILY:
            return day.isoformat()
        case Frequency.WEEKLY:
            iso = day.isocalendar()
            return f"{iso.year}-W{iso.week:02d}"
        case Frequency.MONTHLY:
            return f"{day.year:04d}-{day.month:02d}"
        case Frequency.YEARLY:
            return f"{day.year:04d}"


def invoice_period(invoice: Invoice, frequency: Frequency) -> str:
    """Billing period an existing invoice covers; monthly invoices prefer ``rental_month``."""
    if frequency == Frequency.MONTHLY and invoice.rental_month:
        return invoice.rental_month
    return period_key(invoice.issue_date, frequency)


def render_description(template_text: str, placeholder: str, period_date: date) -> str:
    """Replace the month placeholder with "<Month name> <Year>"."""
    month_year = f"{calendar.month_name[period_date.month]} {period_date.year}"
    return template_text.replace(placeholder, month_year)


def next_invoice_number(settings: NumberingSettings, existing_numbers: Iterable[str]) -> int:
    """
    Next free number for ``settings.prefix``.

    The larger of the stored counter and one past the highest numeric
    suffix already in use with the prefix.
    """
    highest = settings.next_number
    prefix = settings.prefix
    for number in existing_numbers:
        if number and number.startswith(prefix):
            suffix = number[len(prefix):]
            if suffix.isdigit() and int(suffix) >= highest:
                highest = int(suffix) + 1
    return highest


def template_matches(template: RecurringInvoiceTemplate, invoice: Invoice) -> bool:
    """True when ``invoice`` falls in ``template``'s scope."""
    if template.agreement_id:
        return invoice.agreement_id == template.agreement_id
    return (
        invoice.property_id == template.property_id
        and invoice.contact_id == template.contact_id
    )


def find_template_for(
    invoice: Invoice,
    templates: Iterable[RecurringInvoiceTemplate],
) -> RecurringInvoiceTemplate | None:
    """The memorized template covering ``invoice``, if any."""
    for template in templates:
        if invoice.agreement_id and template.agreement_id == invoice.agreement_id:
            return template
        if (
            not invoice.agreement_id
            and template.property_id == invoice.property_id
            and template.contact_id == invoice.contact_id
        ):
            return template
    return None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class RecurringOutcome(str, Enum):
    GENERATED = "generated"
    SKIPPED_EXISTING = "skipped_existing"
    NOT_DUE = "not_due"
    INACTIVE = "inactive"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class AdvanceStep:
    """One period processed for one template."""

    outcome: RecurringOutcome
    period: str | None = None
    due_date: date | None = None
    invoice: Invoice | None = None


@dataclass(frozen=True)
class TemplateAdvance:
    """
    Everything one template produced in one run.

    Guarantees:
        - ``commands`` holds every generated invoice, the final template
          state and (when anything was generated) the numbering update.
        - ``commands`` is empty when nothing changed.
    """

    template_id: str
    steps: tuple[AdvanceStep, ...]
    template: RecurringInvoiceTemplate
    numbering: NumberingSettings
    commands: tuple[LedgerCommand, ...]

    @property
    def generated(self) -> tuple[Invoice, ...]:
        return tuple(s.invoice for s in self.steps if s.invoice is not None)

    @property
    def outcome(self) -> RecurringOutcome:
        return self.steps[-1].outcome if self.steps else RecurringOutcome.NOT_DUE


# ---------------------------------------------------------------------------
# Advancer
# ---------------------------------------------------------------------------


def _new_id() -> str:
    return str(uuid4())


class RecurringAdvancer:
    """
    Recurring schedule advancer.

    Contract:
        Pure -- ``today``, existing invoices and numbering are parameters;
        the clock is owned by the host.
    Guarantees:
        - Running ``advance`` twice on the same inputs after applying the
          first result generates nothing the second time.
    """

    def __init__(
        self,
        config: ReconciliationConfig | None = None,
        id_factory: Callable[[], str] = _new_id,
    ):
        self._config = config or ReconciliationConfig()
        self._new_id = id_factory

    def is_due(self, template: RecurringInvoiceTemplate, today: date) -> bool:
        return template.active and template.next_due_date <= today

    def due_templates(
        self,
        templates: Iterable[RecurringInvoiceTemplate],
        today: date,
    ) -> tuple[RecurringInvoiceTemplate, ...]:
        return tuple(
            sorted(
                (t for t in templates if self.is_due(t, today)),
                key=lambda t: (t.next_due_date, t.id),
            )
        )

    @staticmethod
    def _billed_periods(
        template: RecurringInvoiceTemplate,
        invoices: Iterable[Invoice],
    ) -> dict[str, Invoice]:
        """First invoice per period within ``template``'s scope and type."""
        billed: dict[str, Invoice] = {}
        for invoice in invoices:
            if invoice.invoice_type != template.invoice_type:
                continue
            if not template_matches(template, invoice):
                continue
            billed.setdefault(invoice_period(invoice, template.frequency), invoice)
        return billed

    def _category_id(self, invoice_type: InvoiceType, index: LookupIndex | None) -> str | None:
        if index is None:
            return None
        categories = CategoryResolver(index, self._config)
        for kind in (default_kind_for(invoice_type), CategoryKind.RENTAL_INCOME):
            category = categories.by_kind(kind)
            if category is not None:
                return category.id
        return None

    def _build_invoice(
        self,
        template: RecurringInvoiceTemplate,
        number: str,
        index: LookupIndex | None,
    ) -> Invoice:
        issue = template.next_due_date
        return Invoice(
            id=self._new_id(),
            number=number,
            amount=template.amount,
            issue_date=issue,
            due_date=issue + timedelta(days=self._config.recurring_due_days),
            paid_amount=ZERO,
            contact_id=template.contact_id,
            description=render_description(
                template.description_template, self._config.month_placeholder, issue
            ),
            category_id=self._category_id(template.invoice_type, index),
            property_id=template.property_id,
            building_id=template.building_id,
            invoice_type=template.invoice_type,
            agreement_id=template.agreement_id,
            rental_month=f"{issue.year:04d}-{issue.month:02d}",
        )

    @traced_engine("recurring", "1.0", fingerprint_fields=("template", "today", "catch_up"))
    def advance(
        self,
        template: RecurringInvoiceTemplate,
        invoices: Sequence[Invoice],
        numbering: NumberingSettings,
        today: date,
        index: LookupIndex | None = None,
        catch_up: bool = False,
    ) -> TemplateAdvance:
        """
        Process one template.

        Args:
            template: Template to advance.
            invoices: Every existing invoice (duplicate check, numbering).
            numbering: Current invoice number sequence.
            today: Host-supplied date of the scheduled check.
            index: Lookup maps used to pick the generated invoice's category.
            catch_up: Repeat until the schedule is past ``today``, bounded
                by ``recurring_max_catch_up``.  Default is a single period.
        """
        original = template
        if not template.active:
            return TemplateAdvance(
                template.id, (AdvanceStep(RecurringOutcome.INACTIVE),), template, numbering, ()
            )

        billed = self._billed_periods(template, invoices)
        steps: list[AdvanceStep] = []
        next_number = next_invoice_number(numbering, (i.number for i in invoices))
        generated_any = False
        limit = self._config.recurring_max_catch_up if catch_up else 1

        while len(steps) < limit and self.is_due(template, today):
            if template.is_exhausted:
                template = replace(template, active=False)
                steps.append(AdvanceStep(RecurringOutcome.EXHAUSTED))
                break

            due = template.next_due_date
            period = period_key(due, template.frequency)
            following = add_frequency(due, template.frequency, template.day_of_month)
            existing = billed.get(period)

            if existing is not None:
                logger.info("recurring_period_already_billed", extra={
                    "template_id": template.id,
                    "period": period,
                    "invoice_id": existing.id,
                })
                template = replace(template, next_due_date=following)
                steps.append(AdvanceStep(RecurringOutcome.SKIPPED_EXISTING, period, due))
                continue

            invoice = self._build_invoice(template, numbering.format(next_number), index)
            next_number += 1
            generated_any = True
            billed.setdefault(period, invoice)

            count = template.generated_count + 1
            template = replace(
                template,
                next_due_date=following,
                generated_count=count,
                last_generated_date=today,
                active=not (
                    template.max_occurrences is not None and count >= template.max_occurrences
                ),
            )
            steps.append(AdvanceStep(RecurringOutcome.GENERATED, period, due, invoice))

        if not steps:
            steps.append(AdvanceStep(RecurringOutcome.NOT_DUE))

        commands: list[LedgerCommand] = [
            CreateDocument(s.invoice) for s in steps if s.invoice is not None
        ]
        if template != original:
            commands.append(UpdateTemplate(template))
        final_numbering = numbering
        if generated_any:
            final_numbering = replace(numbering, next_number=next_number)
            commands.append(UpdateNumbering(final_numbering))

        result = TemplateAdvance(
            template_id=template.id,
            steps=tuple(steps),
            template=template,
            numbering=final_numbering,
            commands=tuple(commands),
        )

        logger.info("recurring_template_advanced", extra={
            "template_id": template.id,
            "outcome": result.outcome.value,
            "generated": len(result.generated),
            "steps": len(steps),
            "next_due_date": template.next_due_date.isoformat(),
            "active": template.active,
        })
        return result

    def memorize(
        self,
        invoice: Invoice,
        frequency: Frequency = Frequency.MONTHLY,
        template_id: str | None = None,
    ) -> RecurringInvoiceTemplate:
        """
        Template repeating ``invoice``'s rent portion.

        Amount excludes the deposit and service charges; the first due date
        is one period after the invoice's issue date.
        """
        day_of_month = invoice.issue_date.day
        return RecurringInvoiceTemplate(
            id=template_id or self._new_id(),
            contact_id=invoice.contact_id or "",
            amount=invoice.amount - invoice.security_deposit_charge - invoice.service_charges,
            day_of_month=day_of_month,
            next_due_date=add_frequency(invoice.issue_date, frequency, day_of_month),
            property_id=invoice.property_id,
            building_id=invoice.building_id,
            agreement_id=invoice.agreement_id,
            description_template=f"Rent for {self._config.month_placeholder}",
            invoice_type=invoice.invoice_type,
            frequency=frequency,
        )

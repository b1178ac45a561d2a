"""
Tests for the recurring schedule advancer.

Covers due detection, generation, per-period idempotence, month-end
clamping, bounded catch-up, exhaustion and memorizing an invoice.
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from ledger_config.schema import ReconciliationConfig
from ledger_engines.recurring import (
    RecurringAdvancer,
    RecurringOutcome,
    add_frequency,
    find_template_for,
    invoice_period,
    next_invoice_number,
    period_key,
    render_description,
)
from ledger_kernel.domain.commands import CreateDocument, UpdateNumbering, UpdateTemplate
from ledger_kernel.domain.records import (
    Frequency,
    Invoice,
    InvoiceType,
    NumberingSettings,
    RecurringInvoiceTemplate,
)


@pytest.fixture
def make_template():
    def _make(**overrides) -> RecurringInvoiceTemplate:
        values = {
            "id": "tpl-1",
            "contact_id": "t1",
            "property_id": "p1",
            "amount": Decimal("1000.00"),
            "day_of_month": 1,
            "next_due_date": date(2024, 3, 1),
        }
        values.update(overrides)
        return RecurringInvoiceTemplate(**values)

    return _make


@pytest.fixture
def advancer(config, id_factory) -> RecurringAdvancer:
    return RecurringAdvancer(config, id_factory=id_factory)


class TestCalendarHelpers:
    """Frequency arithmetic and period identity."""

    def test_monthly_clamps_to_month_end(self):
        """Day 31 advancing into a 30-day month lands on the 30th."""
        assert add_frequency(date(2024, 3, 31), Frequency.MONTHLY, 31) == date(2024, 4, 30)

    def test_monthly_restores_day_after_short_month(self):
        assert add_frequency(date(2024, 4, 30), Frequency.MONTHLY, 31) == date(2024, 5, 31)
        assert add_frequency(date(2024, 1, 31), Frequency.MONTHLY, 31) == date(2024, 2, 29)

    def test_december_rolls_year(self):
        assert add_frequency(date(2024, 12, 15), Frequency.MONTHLY, 15) == date(2025, 1, 15)

    def test_yearly_leap_day(self):
        assert add_frequency(date(2024, 2, 29), Frequency.YEARLY, 29) == date(2025, 2, 28)

    def test_daily_and_weekly(self):
        assert add_frequency(date(2024, 2, 28), Frequency.DAILY, 28) == date(2024, 2, 29)
        assert add_frequency(date(2024, 3, 1), Frequency.WEEKLY, 1) == date(2024, 3, 8)

    def test_period_keys(self):
        day = date(2024, 3, 15)

        assert period_key(day, Frequency.MONTHLY) == "2024-03"
        assert period_key(day, Frequency.YEARLY) == "2024"
        assert period_key(day, Frequency.DAILY) == "2024-03-15"
        assert period_key(day, Frequency.WEEKLY) == "2024-W11"

    def test_render_description(self):
        assert (
            render_description("Rent for {Month}", "{Month}", date(2024, 3, 1))
            == "Rent for March 2024"
        )

    def test_next_invoice_number_skips_used(self):
        settings = NumberingSettings(prefix="INV-", next_number=3, padding=5)

        assert next_invoice_number(settings, ["INV-00001"]) == 3
        assert next_invoice_number(settings, ["INV-00007", "OTHER-00050", "INV-X"]) == 8


class TestAdvance:
    """Single-template advancing."""

    def test_not_due(self, advancer, make_template):
        template = make_template(next_due_date=date(2024, 4, 1))

        result = advancer.advance(
            template=template, invoices=[], numbering=NumberingSettings(),
            today=date(2024, 3, 15),
        )

        assert result.outcome is RecurringOutcome.NOT_DUE
        assert result.commands == ()

    def test_inactive(self, advancer, make_template):
        result = advancer.advance(
            template=make_template(active=False), invoices=[], numbering=NumberingSettings(),
            today=date(2024, 3, 15),
        )

        assert result.outcome is RecurringOutcome.INACTIVE
        assert result.commands == ()

    def test_generates_invoice_and_advances(self, advancer, make_template, index):
        template = make_template()

        result = advancer.advance(
            template=template,
            invoices=[],
            numbering=NumberingSettings(prefix="INV-", next_number=12, padding=5),
            today=date(2024, 3, 15),
            index=index,
        )

        assert result.outcome is RecurringOutcome.GENERATED
        invoice = result.generated[0]
        assert invoice.number == "INV-00012"
        assert invoice.issue_date == date(2024, 3, 1)
        assert invoice.due_date == date(2024, 3, 8)
        assert invoice.rental_month == "2024-03"
        assert invoice.description == "Rent for March 2024"
        assert invoice.category_id == "cat-rent"
        assert invoice.amount == Decimal("1000.00")
        assert result.template.next_due_date == date(2024, 4, 1)
        assert result.template.generated_count == 1
        assert result.template.last_generated_date == date(2024, 3, 15)
        assert result.numbering.next_number == 13

    def test_command_order(self, advancer, make_template):
        result = advancer.advance(
            template=make_template(), invoices=[], numbering=NumberingSettings(),
            today=date(2024, 3, 15),
        )

        assert [type(c) for c in result.commands] == [
            CreateDocument,
            UpdateTemplate,
            UpdateNumbering,
        ]

    def test_existing_invoice_for_period_is_not_duplicated(
        self, advancer, make_template, make_invoice
    ):
        """An invoice already billed for March only moves the schedule."""
        existing = make_invoice(
            issue_date=date(2024, 3, 1), due_date=date(2024, 3, 8), rental_month="2024-03"
        )

        result = advancer.advance(
            template=make_template(), invoices=[existing], numbering=NumberingSettings(),
            today=date(2024, 3, 15),
        )

        assert result.outcome is RecurringOutcome.SKIPPED_EXISTING
        assert result.generated == ()
        assert result.template.next_due_date == date(2024, 4, 1)
        assert result.template.generated_count == 0
        assert [type(c) for c in result.commands] == [UpdateTemplate]

    def test_idempotent_after_apply(self, advancer, make_template):
        template = make_template()
        first = advancer.advance(
            template=template, invoices=[], numbering=NumberingSettings(),
            today=date(2024, 3, 15),
        )

        # Re-run against the pre-advance schedule but with the invoice present.
        second = advancer.advance(
            template=template, invoices=list(first.generated), numbering=first.numbering,
            today=date(2024, 3, 15),
        )

        assert second.generated == ()
        assert second.outcome is RecurringOutcome.SKIPPED_EXISTING

    def test_other_type_does_not_block(self, advancer, make_template, make_invoice):
        existing = make_invoice(
            issue_date=date(2024, 3, 1),
            due_date=date(2024, 3, 8),
            invoice_type=InvoiceType.SERVICE_CHARGE,
        )

        result = advancer.advance(
            template=make_template(), invoices=[existing], numbering=NumberingSettings(),
            today=date(2024, 3, 15),
        )

        assert result.outcome is RecurringOutcome.GENERATED

    def test_other_tenant_does_not_block(self, advancer, make_template, make_invoice):
        existing = make_invoice(
            issue_date=date(2024, 3, 1), due_date=date(2024, 3, 8), contact_id="t2",
            rental_month="2024-03",
        )

        result = advancer.advance(
            template=make_template(), invoices=[existing], numbering=NumberingSettings(),
            today=date(2024, 3, 15),
        )

        assert result.outcome is RecurringOutcome.GENERATED

    def test_catch_up_skips_only_billed_periods(self, advancer, make_template, make_invoice):
        """February already billed among unrelated invoices: January and March generate."""
        invoices = [
            make_invoice(contact_id="t2", issue_date=date(2024, 1, 1), rental_month="2024-01"),
            make_invoice(issue_date=date(2024, 2, 1), rental_month="2024-02"),
            make_invoice(
                issue_date=date(2024, 3, 1), invoice_type=InvoiceType.SERVICE_CHARGE,
            ),
        ]
        template = make_template(next_due_date=date(2024, 1, 1))

        result = advancer.advance(
            template=template, invoices=invoices, numbering=NumberingSettings(),
            today=date(2024, 3, 15), catch_up=True,
        )

        assert [s.outcome for s in result.steps] == [
            RecurringOutcome.GENERATED,
            RecurringOutcome.SKIPPED_EXISTING,
            RecurringOutcome.GENERATED,
        ]
        assert [i.rental_month for i in result.generated] == ["2024-01", "2024-03"]
        assert result.template.generated_count == 2

    def test_weekly_period_ignores_rental_month(self):
        invoice = Invoice(
            id="inv-w", number="INV-00009", amount=Decimal("50.00"),
            issue_date=date(2024, 3, 4), due_date=date(2024, 3, 11), rental_month="2024-03",
        )

        assert invoice_period(invoice, Frequency.WEEKLY) == "2024-W10"
        assert invoice_period(invoice, Frequency.MONTHLY) == "2024-03"

    def test_month_end_template_clamps(self, advancer, make_template):
        """day_of_month=31 generating on March 31st next falls due April 30th."""
        template = make_template(day_of_month=31, next_due_date=date(2024, 3, 31))

        result = advancer.advance(
            template=template, invoices=[], numbering=NumberingSettings(),
            today=date(2024, 3, 31),
        )

        assert result.template.next_due_date == date(2024, 4, 30)
        assert result.template.day_of_month == 31

    def test_single_step_by_default(self, advancer, make_template):
        template = make_template(next_due_date=date(2024, 1, 1))

        result = advancer.advance(
            template=template, invoices=[], numbering=NumberingSettings(),
            today=date(2024, 3, 15),
        )

        assert len(result.generated) == 1
        assert result.template.next_due_date == date(2024, 2, 1)

    def test_catch_up_generates_each_missed_period(self, advancer, make_template):
        template = make_template(next_due_date=date(2024, 1, 1))

        result = advancer.advance(
            template=template, invoices=[], numbering=NumberingSettings(),
            today=date(2024, 3, 15), catch_up=True,
        )

        assert [i.rental_month for i in result.generated] == ["2024-01", "2024-02", "2024-03"]
        assert [i.number for i in result.generated] == ["INV-00001", "INV-00002", "INV-00003"]
        assert result.template.next_due_date == date(2024, 4, 1)
        assert sum(isinstance(c, CreateDocument) for c in result.commands) == 3

    def test_catch_up_is_bounded(self, make_template):
        advancer = RecurringAdvancer(ReconciliationConfig(recurring_max_catch_up=2))
        template = make_template(next_due_date=date(2023, 1, 1))

        result = advancer.advance(
            template=template, invoices=[], numbering=NumberingSettings(),
            today=date(2024, 3, 15), catch_up=True,
        )

        assert len(result.generated) == 2
        assert result.template.next_due_date == date(2023, 3, 1)

    def test_max_occurrences_deactivates(self, advancer, make_template):
        template = make_template(max_occurrences=3, generated_count=2)

        result = advancer.advance(
            template=template, invoices=[], numbering=NumberingSettings(),
            today=date(2024, 3, 15),
        )

        assert len(result.generated) == 1
        assert result.template.active is False

    def test_exhausted_template_is_deactivated(self, advancer, make_template):
        template = make_template(max_occurrences=2, generated_count=2)

        result = advancer.advance(
            template=template, invoices=[], numbering=NumberingSettings(),
            today=date(2024, 3, 15),
        )

        assert result.outcome is RecurringOutcome.EXHAUSTED
        assert result.generated == ()
        assert result.commands == (UpdateTemplate(replace(template, active=False)),)

    def test_due_templates_sorted(self, advancer, make_template):
        templates = [
            make_template(id="b", next_due_date=date(2024, 3, 1)),
            make_template(id="a", next_due_date=date(2024, 3, 1)),
            make_template(id="c", next_due_date=date(2024, 2, 1)),
            make_template(id="d", next_due_date=date(2024, 4, 1)),
            make_template(id="e", next_due_date=date(2024, 1, 1), active=False),
        ]

        due = advancer.due_templates(templates, date(2024, 3, 15))

        assert [t.id for t in due] == ["c", "a", "b"]


class TestMemorize:
    """Turning an invoice into a template."""

    def test_memorize_strips_deposit_and_service(self, advancer, make_invoice):
        invoice = make_invoice(
            amount=Decimal("1500"),
            security_deposit_charge=Decimal("300"),
            service_charges=Decimal("100"),
            issue_date=date(2024, 1, 31),
            due_date=date(2024, 2, 7),
        )

        template = advancer.memorize(invoice, template_id="tpl-x")

        assert template.id == "tpl-x"
        assert template.amount == Decimal("1100")
        assert template.day_of_month == 31
        assert template.next_due_date == date(2024, 2, 29)
        assert template.description_template == "Rent for {Month}"
        assert template.property_id == "p1"
        assert template.contact_id == "t1"

    def test_find_template_for(self, make_template, make_invoice):
        templates = [
            make_template(id="tpl-agr", property_id=None, agreement_id="agr-1"),
            make_template(id="tpl-p1"),
        ]

        assert find_template_for(make_invoice(), templates).id == "tpl-p1"
        assert find_template_for(make_invoice(agreement_id="agr-1"), templates).id == "tpl-agr"
        assert find_template_for(make_invoice(contact_id="t2"), templates) is None


def test_generated_invoice_is_valid_record(advancer, make_template):
    result = advancer.advance(
        template=make_template(), invoices=[], numbering=NumberingSettings(),
        today=date(2024, 3, 15),
    )

    assert isinstance(result.generated[0], Invoice)
    assert result.generated[0].paid_amount == Decimal("0")

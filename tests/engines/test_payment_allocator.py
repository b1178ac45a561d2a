"""
Tests for payment allocation planning.

Covers rent/deposit splits, the waterfall bulk walk, explicit bulk
amounts, bill payments and reversal commands.  Plans are pure; nothing
here touches a store.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from ledger_config.schema import ReconciliationConfig
from ledger_engines.allocation import PaymentAllocator, PaymentDetails
from ledger_engines.lookup import LookupIndex
from ledger_kernel.domain.commands import CreatePayment, DeletePayment
from ledger_kernel.domain.records import TransactionType
from ledger_kernel.exceptions import (
    AmountExceedsRemainingError,
    CategoryResolutionError,
    DocumentNotPayableError,
    InvalidAmountError,
)


@pytest.fixture
def allocator(config, id_factory) -> PaymentAllocator:
    return PaymentAllocator(config, id_factory=id_factory)


@pytest.fixture
def details(today) -> PaymentDetails:
    return PaymentDetails(payment_date=today, account_id="acc-cash")


class TestSplitPayment:
    """Single-invoice rent/deposit split."""

    def test_split_creates_one_payment_per_component(
        self, allocator, details, make_invoice, index, today
    ):
        """1200 with a 300 deposit, paid 900 + 300: two payments, fully settled."""
        invoice = make_invoice(amount=Decimal("1200"), security_deposit_charge=Decimal("300"))

        plan = allocator.plan_split(
            invoice=invoice,
            index=index,
            primary_amount=Decimal("900"),
            deposit_amount=Decimal("300"),
            details=details,
            today=today,
        )

        assert len(plan.payments) == 2
        rent, deposit = plan.payments
        assert rent.amount == Decimal("900")
        assert rent.category_id == "cat-rent"
        assert rent.description == f"Payment for Invoice #{invoice.number}"
        assert deposit.amount == Decimal("300")
        assert deposit.category_id == "cat-deposit"
        assert deposit.description == f"Security Deposit for Invoice #{invoice.number}"
        assert all(p.invoice_id == invoice.id for p in plan.payments)
        assert all(p.batch_id is None for p in plan.payments)
        assert all(p.type is TransactionType.INCOME for p in plan.payments)
        assert plan.total_allocated == Decimal("1200")
        assert plan.unallocated == Decimal("0")

    def test_zero_component_is_skipped(self, allocator, details, make_invoice, index, today):
        invoice = make_invoice(amount=Decimal("1200"), security_deposit_charge=Decimal("300"))

        plan = allocator.plan_split(
            invoice=invoice,
            index=index,
            primary_amount=Decimal("0"),
            deposit_amount=Decimal("300"),
            details=details,
            today=today,
        )

        assert [line.component for line in plan.lines] == ["deposit"]

    def test_deposit_cap_enforced(self, allocator, details, make_invoice, index, today):
        invoice = make_invoice(amount=Decimal("1200"), security_deposit_charge=Decimal("300"))

        with pytest.raises(AmountExceedsRemainingError) as exc_info:
            allocator.plan_split(
                invoice=invoice,
                index=index,
                primary_amount=Decimal("100"),
                deposit_amount=Decimal("400"),
                details=details,
                today=today,
            )

        assert exc_info.value.cap == "deposit"
        assert exc_info.value.remaining == Decimal("300")

    def test_primary_cap_accounts_for_prior_payments(
        self, allocator, details, make_invoice, make_payment, reference_data, today
    ):
        invoice = make_invoice(amount=Decimal("1200"), security_deposit_charge=Decimal("300"))
        index = LookupIndex.build(
            payments=[make_payment(invoice_id=invoice.id, amount=Decimal("800"))],
            **reference_data,
        )

        with pytest.raises(AmountExceedsRemainingError) as exc_info:
            allocator.plan_split(
                invoice=invoice,
                index=index,
                primary_amount=Decimal("150"),
                deposit_amount=Decimal("0"),
                details=details,
                today=today,
            )

        assert exc_info.value.cap == "primary"
        assert exc_info.value.remaining == Decimal("100")

    def test_within_tolerance_is_accepted(self, allocator, details, make_invoice, index, today):
        invoice = make_invoice()

        plan = allocator.plan_split(
            invoice=invoice,
            index=index,
            primary_amount=Decimal("1000.01"),
            deposit_amount=Decimal("0"),
            details=details,
            today=today,
        )

        assert plan.total_allocated == Decimal("1000.01")

    def test_total_capped_by_invoice_remaining(
        self, allocator, details, make_invoice, make_payment, reference_data, today
    ):
        """Sub-ledger caps never let the invoice as a whole be overpaid."""
        invoice = make_invoice(
            amount=Decimal("1000"),
            security_deposit_charge=Decimal("200"),
            category_id="cat-deposit",
        )
        # Earlier payment booked to the deposit category before the invoice was split.
        index = LookupIndex.build(
            payments=[
                make_payment(
                    invoice_id=invoice.id, amount=Decimal("800"), category_id="cat-deposit"
                )
            ],
            **reference_data,
        )

        with pytest.raises(AmountExceedsRemainingError) as exc_info:
            allocator.plan_split(
                invoice=invoice,
                index=index,
                primary_amount=Decimal("800"),
                deposit_amount=Decimal("0"),
                details=details,
                today=today,
            )

        assert exc_info.value.cap == "total"
        assert exc_info.value.remaining == Decimal("200")

    def test_deposit_tagged_invoice_books_primary_as_rent(
        self, allocator, details, make_invoice, index, today
    ):
        invoice = make_invoice(
            amount=Decimal("1000"),
            security_deposit_charge=Decimal("200"),
            category_id="cat-deposit",
        )

        plan = allocator.plan_split(
            invoice=invoice,
            index=index,
            primary_amount=Decimal("800"),
            deposit_amount=Decimal("0"),
            details=details,
            today=today,
        )

        assert [p.category_id for p in plan.payments] == ["cat-rent"]

    def test_negative_component_rejected(self, allocator, details, make_invoice, index, today):
        with pytest.raises(InvalidAmountError):
            allocator.plan_split(
                invoice=make_invoice(),
                index=index,
                primary_amount=Decimal("-1"),
                deposit_amount=Decimal("5"),
                details=details,
                today=today,
            )

    def test_zero_total_rejected(self, allocator, details, make_invoice, index, today):
        with pytest.raises(InvalidAmountError):
            allocator.plan_split(
                invoice=make_invoice(),
                index=index,
                primary_amount=Decimal("0"),
                deposit_amount=Decimal("0"),
                details=details,
                today=today,
            )

    def test_draft_not_payable(self, allocator, details, make_invoice, index, today):
        with pytest.raises(DocumentNotPayableError):
            allocator.plan_split(
                invoice=make_invoice(is_draft=True),
                index=index,
                primary_amount=Decimal("10"),
                deposit_amount=Decimal("0"),
                details=details,
                today=today,
            )

    def test_missing_category_leaves_no_plan(self, allocator, details, make_invoice, today):
        with pytest.raises(CategoryResolutionError):
            allocator.plan_split(
                invoice=make_invoice(),
                index=LookupIndex.build(),
                primary_amount=Decimal("10"),
                deposit_amount=Decimal("0"),
                details=details,
                today=today,
            )

    def test_caller_description_and_reference(self, allocator, make_invoice, index, today):
        details = PaymentDetails(
            payment_date=today, reference="CHQ-88", description="March rent"
        )

        plan = allocator.plan_split(
            invoice=make_invoice(),
            index=index,
            primary_amount=Decimal("10"),
            deposit_amount=Decimal("0"),
            details=details,
            today=today,
        )

        assert plan.payments[0].description == "March rent"
        assert plan.payments[0].reference == "CHQ-88"


class TestWaterfall:
    """Waterfall bulk allocation."""

    def test_oldest_first_with_leftover_capacity(
        self, allocator, details, make_invoice, make_payment, reference_data, today
    ):
        """500 over remaining 300 (older) and 400: 300 then 200, one batch."""
        older = make_invoice(
            amount=Decimal("300"),
            issue_date=today - timedelta(days=60),
            due_date=today - timedelta(days=30),
        )
        newer = make_invoice(amount=Decimal("400"))
        index = LookupIndex.build(**reference_data)

        plan = allocator.plan_waterfall(
            documents=[newer, older],
            index=index,
            amount=Decimal("500"),
            details=details,
            today=today,
        )

        assert [(p.invoice_id, p.amount) for p in plan.payments] == [
            (older.id, Decimal("300")),
            (newer.id, Decimal("200")),
        ]
        assert plan.batch_id is not None
        assert {p.batch_id for p in plan.payments} == {plan.batch_id}
        assert plan.payments[0].description == f"Bulk payment for Invoice #{older.number}"
        assert plan.unallocated == Decimal("0")

    def test_excess_stays_unallocated(self, allocator, details, make_invoice, index, today):
        plan = allocator.plan_waterfall(
            documents=[make_invoice()],
            index=index,
            amount=Decimal("1500"),
            details=details,
            today=today,
        )

        assert plan.total_allocated == Decimal("1000.00")
        assert plan.unallocated == Decimal("500.00")

    def test_tie_broken_by_number(self, allocator, details, make_invoice, index, today):
        first = make_invoice(number="INV-00002")
        second = make_invoice(number="INV-00001")

        plan = allocator.plan_waterfall(
            documents=[first, second],
            index=index,
            amount=Decimal("1000"),
            details=details,
            today=today,
        )

        assert [p.invoice_id for p in plan.payments] == [second.id]

    def test_primary_before_deposit(self, allocator, details, make_invoice, index, today):
        invoice = make_invoice(amount=Decimal("1200"), security_deposit_charge=Decimal("300"))

        plan = allocator.plan_waterfall(
            documents=[invoice], index=index, amount=Decimal("1000"), details=details, today=today
        )

        assert [(line.component, line.amount) for line in plan.lines] == [
            ("primary", Decimal("900")),
            ("deposit", Decimal("100")),
        ]

    def test_deposit_first_configuration(self, details, make_invoice, index, today):
        allocator = PaymentAllocator(ReconciliationConfig(deposit_first=True))
        invoice = make_invoice(amount=Decimal("1200"), security_deposit_charge=Decimal("300"))

        plan = allocator.plan_waterfall(
            documents=[invoice], index=index, amount=Decimal("500"), details=details, today=today
        )

        assert [(line.component, line.amount) for line in plan.lines] == [
            ("deposit", Decimal("300")),
            ("primary", Decimal("200")),
        ]

    def test_paid_document_receives_nothing(
        self, allocator, details, make_invoice, make_payment, reference_data, today
    ):
        paid = make_invoice(
            issue_date=today - timedelta(days=90), due_date=today - timedelta(days=60)
        )
        open_invoice = make_invoice()
        index = LookupIndex.build(
            payments=[make_payment(invoice_id=paid.id, amount=Decimal("1000.00"))],
            **reference_data,
        )

        plan = allocator.plan_waterfall(
            documents=[paid, open_invoice],
            index=index,
            amount=Decimal("100"),
            details=details,
            today=today,
        )

        assert plan.document_ids == (open_invoice.id,)

    def test_non_positive_amount_rejected(self, allocator, details, make_invoice, index, today):
        with pytest.raises(InvalidAmountError):
            allocator.plan_waterfall(
                documents=[make_invoice()],
                index=index,
                amount=Decimal("0"),
                details=details,
                today=today,
            )

    def test_commands_wrap_payments(self, allocator, details, make_invoice, index, today):
        plan = allocator.plan_waterfall(
            documents=[make_invoice()], index=index, amount=Decimal("50"), details=details,
            today=today,
        )

        assert plan.commands == (CreatePayment(plan.payments[0]),)

    def test_amount_rounded_to_configured_places(
        self, allocator, details, make_invoice, index, today
    ):
        plan = allocator.plan_waterfall(
            documents=[make_invoice()], index=index, amount="250.005", details=details,
            today=today,
        )

        assert plan.payments[0].amount == Decimal("250.01")
        assert plan.payments[0].amount.as_tuple().exponent == -2
        assert plan.unallocated == Decimal("0")

    def test_whole_unit_precision(self, details, make_invoice, index, today, id_factory):
        allocator = PaymentAllocator(
            ReconciliationConfig(money_decimal_places=0), id_factory=id_factory
        )

        plan = allocator.plan_waterfall(
            documents=[make_invoice()], index=index, amount=Decimal("99.5"), details=details,
            today=today,
        )

        assert plan.payments[0].amount == Decimal("100")

    def test_sub_cent_amount_rejected_after_rounding(
        self, allocator, details, make_invoice, index, today
    ):
        with pytest.raises(InvalidAmountError):
            allocator.plan_waterfall(
                documents=[make_invoice()], index=index, amount=Decimal("0.004"),
                details=details, today=today,
            )


class TestExplicitBulk:
    """Caller-chosen amounts per document."""

    def test_amounts_applied_as_given(self, allocator, details, make_invoice, index, today):
        first = make_invoice()
        second = make_invoice()

        plan = allocator.plan_explicit(
            documents=[first, second],
            index=index,
            amounts={first.id: Decimal("250"), second.id: Decimal("0")},
            details=details,
            today=today,
        )

        assert plan.allocated_to(first.id) == Decimal("250")
        assert plan.allocated_to(second.id) == Decimal("0")
        assert plan.batch_id is not None

    def test_cap_per_document(self, allocator, details, make_invoice, index, today):
        invoice = make_invoice()

        with pytest.raises(AmountExceedsRemainingError) as exc_info:
            allocator.plan_explicit(
                documents=[invoice],
                index=index,
                amounts={invoice.id: Decimal("1000.02")},
                details=details,
                today=today,
            )

        assert exc_info.value.document_id == invoice.id

    def test_negative_amount_rejected(self, allocator, details, make_invoice, index, today):
        invoice = make_invoice()

        with pytest.raises(InvalidAmountError):
            allocator.plan_explicit(
                documents=[invoice],
                index=index,
                amounts={invoice.id: Decimal("-5")},
                details=details,
                today=today,
            )

    def test_all_zero_rejected(self, allocator, details, make_invoice, index, today):
        invoice = make_invoice()

        with pytest.raises(InvalidAmountError):
            allocator.plan_explicit(
                documents=[invoice],
                index=index,
                amounts={invoice.id: Decimal("0")},
                details=details,
                today=today,
            )


class TestBillPayment:
    """Payments against bills."""

    def test_bill_payment(self, allocator, details, make_bill, index, today):
        bill = make_bill()

        plan = allocator.plan_bill_payment(
            bill=bill, index=index, amount=Decimal("150"), details=details, today=today
        )

        payment = plan.payments[0]
        assert payment.type is TransactionType.EXPENSE
        assert payment.bill_id == bill.id
        assert payment.invoice_id is None
        assert payment.category_id == "cat-expense"
        assert payment.contact_id == "v1"
        assert payment.batch_id is None
        assert payment.description == f"Payment for Bill #{bill.number}"

    def test_bill_category_override(self, allocator, details, make_bill, index, today):
        bill = make_bill(category_id="cat-service")

        plan = allocator.plan_bill_payment(
            bill=bill, index=index, amount=Decimal("150"), details=details, today=today
        )

        assert plan.payments[0].category_id == "cat-service"

    def test_bill_overpayment_rejected(self, allocator, details, make_bill, index, today):
        with pytest.raises(AmountExceedsRemainingError):
            allocator.plan_bill_payment(
                bill=make_bill(), index=index, amount=Decimal("500"), details=details, today=today
            )


class TestReversal:
    def test_reversal_deletes_each_payment(self, allocator, make_payment):
        payments = [make_payment(), make_payment()]

        commands = allocator.plan_reversal(payments)

        assert commands == tuple(DeletePayment(p.id) for p in payments)

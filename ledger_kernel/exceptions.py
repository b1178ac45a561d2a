"""
Typed exception hierarchy for the ledger reconciliation core.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (dialogs, API handlers, batch jobs) must react to a rejected
allocation or a blocked delete without parsing message strings.  Every
exception therefore has:
  1. A TYPED class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured attributes naming the offending record, cap, or amount

Example:
    try:
        service.record_split_payment(invoice_id, rent_amount=..., ...)
    except AmountExceedsRemainingError as e:
        show_error(f"{e.cap} cannot exceed {e.remaining}")
    except LedgerConfigurationError as e:
        alert_admin(e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- LedgerValidationError            caller-facing, no mutation performed
    |   +-- InvalidAmountError
    |   +-- AmountExceedsRemainingError
    |   +-- InvalidDateOrderError
    |   +-- InvalidRecordError
    |
    +-- RecordNotFoundError
    |   +-- DocumentNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- BatchNotFoundError
    |   +-- TemplateNotFoundError
    |
    +-- BusinessRuleError                blocking, caller-facing
    |   +-- DocumentHasPaymentsError
    |   +-- DocumentNotPayableError
    |
    +-- LedgerConfigurationError         fatal to the operation
    |   +-- CategoryResolutionError
    |   +-- InvalidConfigurationError
    |
    +-- LedgerConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- StoreError
        +-- CommandRejectedError

Referential gaps (a record pointing at a building or contact the host
cannot resolve) are NOT exceptions: aggregation and filtering resolve them
to "Unassigned" buckets or "Unknown <Kind>" labels.

===============================================================================
"""

from decimal import Decimal


class LedgerError(Exception):
    """
    Base exception for all ledger errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification.
    """

    code: str = "LEDGER_ERROR"


# Validation errors


class LedgerValidationError(LedgerError):
    """Base exception for rejected input. No mutation has been performed."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(LedgerValidationError):
    """Amount is zero, negative, or otherwise unusable."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, amount: Decimal, reason: str):
        self.field = field
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid {field} {amount}: {reason}")


class AmountExceedsRemainingError(LedgerValidationError):
    """Requested amount exceeds the remaining balance of a sub-ledger cap."""

    code: str = "AMOUNT_EXCEEDS_REMAINING"

    def __init__(
        self,
        document_id: str,
        cap: str,
        requested: Decimal,
        remaining: Decimal,
    ):
        self.document_id = document_id
        self.cap = cap
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"{cap} payment {requested} exceeds remaining balance "
            f"{remaining} on document {document_id}"
        )


class InvalidDateOrderError(LedgerValidationError):
    """A later date precedes an earlier one (e.g. due before issue)."""

    code: str = "INVALID_DATE_ORDER"

    def __init__(self, record_id: str, earlier_field: str, later_field: str):
        self.record_id = record_id
        self.earlier_field = earlier_field
        self.later_field = later_field
        super().__init__(
            f"Record {record_id}: {later_field} cannot precede {earlier_field}"
        )


class InvalidRecordError(LedgerValidationError):
    """A record is structurally invalid."""

    code: str = "INVALID_RECORD"

    def __init__(self, record_id: str, reason: str):
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Invalid record {record_id}: {reason}")


# Not-found errors


class RecordNotFoundError(LedgerError):
    """Base exception for missing records addressed by the caller."""

    code: str = "RECORD_NOT_FOUND"


class DocumentNotFoundError(RecordNotFoundError):
    """Invoice or bill was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_kind: str, document_id: str):
        self.document_kind = document_kind
        self.document_id = document_id
        super().__init__(f"{document_kind} not found: {document_id}")


class PaymentNotFoundError(RecordNotFoundError):
    """Payment was not found."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


class BatchNotFoundError(RecordNotFoundError):
    """No payments share the given batch id."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"No payments found for batch: {batch_id}")


class TemplateNotFoundError(RecordNotFoundError):
    """Recurring template was not found."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Recurring template not found: {template_id}")


# Business-rule violations


class BusinessRuleError(LedgerError):
    """Base exception for blocked operations."""

    code: str = "BUSINESS_RULE_VIOLATION"


class DocumentHasPaymentsError(BusinessRuleError):
    """Invoice/bill cannot be deleted while payments are applied to it."""

    code: str = "DOCUMENT_HAS_PAYMENTS"

    def __init__(self, document_kind: str, document_id: str, paid_amount: Decimal):
        self.document_kind = document_kind
        self.document_id = document_id
        self.paid_amount = paid_amount
        super().__init__(
            f"Cannot delete {document_kind} {document_id}: it has payments "
            f"of {paid_amount} applied; remove the payments first"
        )


class DocumentNotPayableError(BusinessRuleError):
    """Document cannot receive payments in its current state."""

    code: str = "DOCUMENT_NOT_PAYABLE"

    def __init__(self, document_id: str, status: str):
        self.document_id = document_id
        self.status = status
        super().__init__(
            f"Document {document_id} cannot receive payments (status: {status})"
        )


# Configuration errors


class LedgerConfigurationError(LedgerError):
    """Base exception for configuration problems that abort an operation."""

    code: str = "CONFIGURATION_ERROR"


class CategoryResolutionError(LedgerConfigurationError):
    """No category could be resolved for a payment component."""

    code: str = "CATEGORY_NOT_RESOLVABLE"

    def __init__(self, document_id: str, component: str, tried: tuple[str, ...]):
        self.document_id = document_id
        self.component = component
        self.tried = tried
        super().__init__(
            f"No category resolvable for {component} payment on document "
            f"{document_id} (tried: {', '.join(tried)})"
        )


class InvalidConfigurationError(LedgerConfigurationError):
    """Configuration values are inconsistent."""

    code: str = "INVALID_CONFIGURATION"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid configuration for {field}: {reason}")


# Concurrency errors


class LedgerConcurrencyError(LedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(LedgerConcurrencyError):
    """Cached paid amount moved between snapshot and apply."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected: Decimal,
        actual: Decimal,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            f"expected paid amount {expected}, found {actual}"
        )


# Store errors


class StoreError(LedgerError):
    """Base exception for record-store failures."""

    code: str = "STORE_ERROR"


class CommandRejectedError(StoreError):
    """A command in a batch could not be applied; the batch was discarded."""

    code: str = "COMMAND_REJECTED"

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Command {command} rejected: {reason}")

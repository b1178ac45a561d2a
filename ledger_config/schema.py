"""
Reconciliation Configuration Schema (``ledger_config.schema``).

Defines the structure and defaults for the reconciliation core.  The
tolerance and aging boundaries are business decisions, so they live here
rather than as literals in the engines.
"""

from dataclasses import asdict, dataclass, field, fields
from decimal import Decimal
from typing import Any, Self

from ledger_kernel.domain.money import to_decimal
from ledger_kernel.domain.records import CategoryKind, NumberingSettings
from ledger_kernel.exceptions import InvalidConfigurationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("config.schema")

DEFAULT_CATEGORY_NAMES: dict[CategoryKind, str] = {
    CategoryKind.RENTAL_INCOME: "Rental Income",
    CategoryKind.SECURITY_DEPOSIT: "Security Deposit",
    CategoryKind.SERVICE_CHARGE_INCOME: "Service Charge Income",
    CategoryKind.INSTALLMENT_INCOME: "Installment Income",
    CategoryKind.GENERAL_EXPENSE: "General Expense",
}


@dataclass(frozen=True)
class ReconciliationConfig:
    """
    Configuration schema for the reconciliation core.

    Override at instantiation with host-specific values:

        config = ReconciliationConfig(
            tolerance=Decimal("0.005"),
            aging_boundaries=(15, 30, 60, 90),
        )
    """

    config_id: str = "default"
    version: int = 1

    # Rounding
    tolerance: Decimal = Decimal("0.01")
    money_decimal_places: int = 2

    # Aging buckets: upper bounds, last bucket is open-ended
    aging_boundaries: tuple[int, ...] = (30, 60, 90)

    # Category name fallback for hosts whose categories carry no kind tag
    category_names: dict[CategoryKind, str] = field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_NAMES)
    )

    # Recurring billing
    recurring_due_days: int = 7
    recurring_max_catch_up: int = 60
    month_placeholder: str = "{Month}"

    # Invoice numbering
    invoice_prefix: str = "INV-"
    invoice_padding: int = 5

    # Waterfall split on invoices carrying a deposit portion
    deposit_first: bool = False

    def __post_init__(self):
        object.__setattr__(self, "tolerance", to_decimal(self.tolerance))
        object.__setattr__(self, "aging_boundaries", tuple(self.aging_boundaries))

        if self.tolerance < 0:
            raise InvalidConfigurationError("tolerance", "cannot be negative")
        if self.money_decimal_places < 0:
            raise InvalidConfigurationError("money_decimal_places", "cannot be negative")

        if not self.aging_boundaries:
            raise InvalidConfigurationError("aging_boundaries", "at least one boundary required")
        if list(self.aging_boundaries) != sorted(self.aging_boundaries):
            raise InvalidConfigurationError("aging_boundaries", "must be sorted ascending")
        if len(self.aging_boundaries) != len(set(self.aging_boundaries)):
            raise InvalidConfigurationError("aging_boundaries", "must be unique")
        if any(b <= 0 for b in self.aging_boundaries):
            raise InvalidConfigurationError("aging_boundaries", "must contain positive values")

        missing = [k.value for k in CategoryKind if not self.category_names.get(k)]
        if missing:
            raise InvalidConfigurationError(
                "category_names", f"missing names for {', '.join(missing)}"
            )

        if self.recurring_due_days < 0:
            raise InvalidConfigurationError("recurring_due_days", "cannot be negative")
        if self.recurring_max_catch_up <= 0:
            raise InvalidConfigurationError("recurring_max_catch_up", "must be positive")
        if not self.month_placeholder:
            raise InvalidConfigurationError("month_placeholder", "cannot be empty")
        if self.invoice_padding < 0:
            raise InvalidConfigurationError("invoice_padding", "cannot be negative")

        logger.debug(
            "reconciliation_config_initialized",
            extra={
                "config_id": self.config_id,
                "tolerance": str(self.tolerance),
                "aging_boundaries": list(self.aging_boundaries),
                "recurring_max_catch_up": self.recurring_max_catch_up,
                "deposit_first": self.deposit_first,
            },
        )

    def category_name(self, kind: CategoryKind) -> str:
        return self.category_names[kind]

    def default_numbering(self) -> NumberingSettings:
        """Numbering used until a store has persisted its own sequence."""
        return NumberingSettings(
            prefix=self.invoice_prefix, next_number=1, padding=self.invoice_padding
        )

    def to_dict(self) -> dict[str, Any]:
        """Plain-data form used for checksums."""
        data = asdict(self)
        data["tolerance"] = str(self.tolerance)
        data["aging_boundaries"] = list(self.aging_boundaries)
        data["category_names"] = {
            k.value: v for k, v in sorted(self.category_names.items(), key=lambda kv: kv[0].value)
        }
        return data

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the standard defaults."""
        logger.info("reconciliation_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g., loaded from YAML)."""
        logger.info(
            "reconciliation_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidConfigurationError(
                ", ".join(unknown), "unknown configuration key"
            )

        values = dict(data)
        if "tolerance" in values:
            values["tolerance"] = _parse_decimal("tolerance", values["tolerance"])
        if "aging_boundaries" in values:
            values["aging_boundaries"] = tuple(int(b) for b in values["aging_boundaries"])
        if "category_names" in values:
            names = dict(DEFAULT_CATEGORY_NAMES)
            for key, name in (values["category_names"] or {}).items():
                try:
                    names[CategoryKind(key)] = name
                except ValueError:
                    raise InvalidConfigurationError(
                        "category_names", f"unknown category kind {key!r}"
                    ) from None
            values["category_names"] = names
        return cls(**values)


def _parse_decimal(field_name: str, value: Any) -> Decimal:
    # YAML turns 0.01 into a float; go through its text form.
    if isinstance(value, float):
        value = repr(value)
    try:
        return to_decimal(value)
    except (TypeError, ValueError) as e:
        raise InvalidConfigurationError(field_name, str(e)) from e

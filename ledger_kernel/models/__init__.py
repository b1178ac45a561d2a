"""ORM models for the ledger kernel."""

from ledger_kernel.models.document import BillModel, InvoiceModel
from ledger_kernel.models.entity import (
    BuildingModel,
    CategoryModel,
    ContactModel,
    ProjectModel,
    PropertyModel,
    UnitModel,
)
from ledger_kernel.models.payment import PaymentModel
from ledger_kernel.models.template import (
    NUMBERING_ROW_ID,
    NumberingSettingsModel,
    RecurringTemplateModel,
)

__all__ = [
    "InvoiceModel",
    "BillModel",
    "PaymentModel",
    "RecurringTemplateModel",
    "NumberingSettingsModel",
    "NUMBERING_ROW_ID",
    "ContactModel",
    "PropertyModel",
    "BuildingModel",
    "ProjectModel",
    "UnitModel",
    "CategoryModel",
]

"""
Entity ORM Models (``ledger_kernel.models.entity``).

Responsibility
--------------
Persistence for the reference data the engines resolve by id: contacts,
properties, buildings, projects, units and categories.  The reconciliation
core only reads these; hosts maintain them.
"""

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import ID_LENGTH, TrackedBase
from ledger_kernel.domain.records import (
    Building,
    Category,
    CategoryKind,
    Contact,
    ContactType,
    Project,
    Property,
    Unit,
)


class ContactModel(TrackedBase):
    """Tenants, owners, vendors."""

    __tablename__ = "ledger_contacts"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_type: Mapped[str] = mapped_column(String(16), nullable=False)

    def to_dto(self) -> Contact:
        return Contact(
            id=self.id, name=self.name, contact_type=ContactType(self.contact_type)
        )

    @classmethod
    def from_dto(cls, dto: Contact) -> "ContactModel":
        return cls(
            id=dto.id, name=dto.name, contact_type=ContactType(dto.contact_type).value
        )


class BuildingModel(TrackedBase):
    __tablename__ = "ledger_buildings"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def to_dto(self) -> Building:
        return Building(id=self.id, name=self.name)

    @classmethod
    def from_dto(cls, dto: Building) -> "BuildingModel":
        return cls(id=dto.id, name=dto.name)


class PropertyModel(TrackedBase):
    """
    A rentable property.

    ``building_id`` and ``owner_id`` are plain strings; the aggregator
    treats an unresolvable building or owner as "Unassigned".
    """

    __tablename__ = "ledger_properties"

    __table_args__ = (
        Index("idx_ledger_properties_building", "building_id"),
        Index("idx_ledger_properties_owner", "owner_id"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    building_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    owner_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)

    def to_dto(self) -> Property:
        return Property(
            id=self.id,
            name=self.name,
            building_id=self.building_id,
            owner_id=self.owner_id,
        )

    @classmethod
    def from_dto(cls, dto: Property) -> "PropertyModel":
        return cls(
            id=dto.id,
            name=dto.name,
            building_id=dto.building_id,
            owner_id=dto.owner_id,
        )


class ProjectModel(TrackedBase):
    __tablename__ = "ledger_projects"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def to_dto(self) -> Project:
        return Project(id=self.id, name=self.name)

    @classmethod
    def from_dto(cls, dto: Project) -> "ProjectModel":
        return cls(id=dto.id, name=dto.name)


class UnitModel(TrackedBase):
    __tablename__ = "ledger_units"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    project_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)

    def to_dto(self) -> Unit:
        return Unit(id=self.id, name=self.name, project_id=self.project_id)

    @classmethod
    def from_dto(cls, dto: Unit) -> "UnitModel":
        return cls(id=dto.id, name=dto.name, project_id=dto.project_id)


class CategoryModel(TrackedBase):
    """Income/expense category; ``kind`` is optional."""

    __tablename__ = "ledger_categories"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str | None] = mapped_column(String(32), nullable=True)

    def to_dto(self) -> Category:
        return Category(
            id=self.id,
            name=self.name,
            kind=CategoryKind(self.kind) if self.kind else None,
        )

    @classmethod
    def from_dto(cls, dto: Category) -> "CategoryModel":
        return cls(
            id=dto.id,
            name=dto.name,
            kind=CategoryKind(dto.kind).value if dto.kind else None,
        )

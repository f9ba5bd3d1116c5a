# circuit_boq/models/circuit_material.py
from typing import Optional
from decimal import Decimal
from sqlalchemy import (
    String,
    Numeric,
    Boolean,
    Enum,
    ForeignKey,
    Integer,
    CheckConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column
from circuit_boq.db.base import Base
from circuit_boq.db.enums import MaterialCategory, BOQSection, InstallationStatus
from circuit_boq.models.mixins.base_circuit_item import BaseCircuitItemMixin


class CircuitMaterial(Base, BaseCircuitItemMixin):
    """
    A material line recorded against a circuit.

    Primary records are entered by users; auto-generated records are
    supporting materials derived from a cable primary and point back to it
    through parent_material_id (one level only).
    """

    __tablename__ = "circuit_materials"

    # =========
    # 🔤 Description
    # =========
    description :Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Free-text material description",
    )

    unit :Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Unit label (m, No, ...)",
    )

    boq_item_code :Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Bill of quantities item code",
    )

    # =========
    # 🔢 Quantity & pricing
    # =========
    quantity :Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Net quantity",
    )

    supply_rate :Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Supply rate per unit",
    )

    install_rate :Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Install rate per unit",
    )

    total_cost :Mapped[Optional[Decimal]] = mapped_column(
        Numeric(14, 2),
        nullable=True,
        comment="Written by the external cost rollup, never by the engine",
    )

    # =========
    # 🏷 Classification
    # =========
    category :Mapped[MaterialCategory] = mapped_column(
        Enum(MaterialCategory, name="material_category"),
        nullable=False,
        default=MaterialCategory.other,
        comment="Material category",
    )

    boq_section :Mapped[BOQSection] = mapped_column(
        Enum(BOQSection, name="boq_section"),
        nullable=False,
        default=BOQSection.general,
        comment="BOQ grouping section",
    )

    installation_status :Mapped[InstallationStatus] = mapped_column(
        Enum(InstallationStatus, name="installation_status"),
        nullable=False,
        default=InstallationStatus.planned,
        comment="Installation lifecycle tag, driven by the UI",
    )

    # =========
    # ♻ Wastage
    # =========
    wastage_factor :Mapped[Decimal] = mapped_column(
        Numeric(6, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Wastage percentage",
    )

    wastage_quantity :Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Wastage quantity = round(quantity * wastage_factor / 100)",
    )

    gross_quantity :Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        comment="quantity + wastage_quantity",
    )

    # =========
    # 🧬 Provenance
    # =========
    is_auto_generated :Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        comment="Derived automatically from a parent cable record",
    )

    parent_material_id :Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("circuit_materials.id"),
        nullable=True,
        index=True,
        comment="Primary record this item was derived from",
    )

    # =========
    # 🔢 Display order
    # =========
    list_position :Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        index=True,
        comment="Insertion order of the primary within its circuit, copied to its children",
    )

    derivation_index :Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="0 for a primary, 1..n for derived items in rule order",
    )

    # =========
    # 🔗 External linkage
    # =========
    external_ref :Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True,
        comment="Drawing element that triggers deletion, never ownership",
    )

    __table_args__ = (
        CheckConstraint(
            "parent_material_id IS NULL OR parent_material_id <> id",
            name="ck_material_not_own_parent",
        ),
        CheckConstraint(
            "NOT is_auto_generated OR parent_material_id IS NOT NULL",
            name="ck_generated_has_parent",
        ),
    )

    # =========
    # Optional: representation
    # =========
    def __repr__(self) -> str:
        return (
            f"<CircuitMaterial id={self.id} "
            f"description={self.description} "
            f"category={self.category.value if self.category else None} "
            f"gross={self.gross_quantity}>"
        )

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from circuit_boq.models.circuit_material import CircuitMaterial
from circuit_boq.schemas.dto.base_dto import BaseDTO
from circuit_boq.services.circuit_material_service import MaterialCreationResult


class CircuitMaterialDTO(BaseDTO):
    id: str
    circuit_id: str
    description: str
    unit: Optional[str]
    boq_item_code: Optional[str]

    quantity: Decimal
    supply_rate: Decimal
    install_rate: Decimal
    total_cost: Optional[Decimal]

    category: str
    boq_section: str
    installation_status: str

    wastage_factor: Decimal
    wastage_quantity: Decimal
    gross_quantity: Decimal

    is_auto_generated: bool
    parent_material_id: Optional[str]
    list_position: int
    derivation_index: int
    external_ref: Optional[str]

    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_orm_model(cls, material: CircuitMaterial) -> "CircuitMaterialDTO":
        return cls(
            id=material.id,
            circuit_id=material.circuit_id,
            description=material.description,
            unit=material.unit,
            boq_item_code=material.boq_item_code,
            quantity=material.quantity,
            supply_rate=material.supply_rate,
            install_rate=material.install_rate,
            total_cost=material.total_cost,
            category=material.category.value,
            boq_section=material.boq_section.value,
            installation_status=material.installation_status.value,
            wastage_factor=material.wastage_factor,
            wastage_quantity=material.wastage_quantity,
            gross_quantity=material.gross_quantity,
            is_auto_generated=material.is_auto_generated,
            parent_material_id=material.parent_material_id,
            list_position=material.list_position,
            derivation_index=material.derivation_index,
            external_ref=material.external_ref,
            created_at=material.created_at,
            updated_at=material.updated_at,
        )


class DerivationFailureDTO(BaseModel):
    description: str
    error: str


class MaterialCreationResultDTO(BaseModel):
    primary: CircuitMaterialDTO
    children: List[CircuitMaterialDTO]
    failed_derivations: List[DerivationFailureDTO]
    is_complete: bool

    @classmethod
    def from_domain_model(cls, result: MaterialCreationResult) -> "MaterialCreationResultDTO":
        return cls(
            primary=CircuitMaterialDTO.from_orm_model(result.primary),
            children=[CircuitMaterialDTO.from_orm_model(c) for c in result.children],
            failed_derivations=[
                DerivationFailureDTO(description=f.descriptor.description, error=f.error)
                for f in result.failed_derivations
            ],
            is_complete=result.is_complete,
        )

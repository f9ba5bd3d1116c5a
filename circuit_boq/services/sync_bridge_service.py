# circuit_boq/services/sync_bridge_service.py
from typing import List, Optional

from sqlalchemy.orm import Session

from circuit_boq.logger import get_logger
from circuit_boq.models.circuit_material import CircuitMaterial
from circuit_boq.services.circuit_material_service import CircuitMaterialService

logger = get_logger(__name__)


class SyncBridgeService:
    """
    Keeps circuit materials in step with the drawing tool.

    When a drawn element is removed, the material linked to it (and everything
    derived from it) is removed too. References that were never linked are
    ignored: the drawing tool fires for every element it deletes.
    """

    def __init__(self, db: Session, material_service: CircuitMaterialService):
        self.db = db
        self.material_service = material_service

    def find_by_external_reference(self, external_ref: Optional[str]) -> List[CircuitMaterial]:
        if not external_ref or not str(external_ref).strip():
            return []
        return (
            self.db.query(CircuitMaterial)
            .filter(CircuitMaterial.external_ref == str(external_ref).strip())
            .order_by(CircuitMaterial.list_position, CircuitMaterial.derivation_index, CircuitMaterial.id)
            .all()
        )

    def delete_by_external_reference(
        self,
        *,
        external_ref: Optional[str],
        operator_id: str,
    ) -> List[str]:
        '''
        Cascade-delete every material linked to a drawing element.

        :param external_ref: 图纸元素ID
        :param operator_id: 操作者ID
        :return: 被删除的记录ID（子项在各自父项之前）；没有匹配时返回空列表
        '''
        materials = self.find_by_external_reference(external_ref)
        if not materials:
            logger.info(f"No material linked to external reference '{external_ref}', nothing to delete")
            return []

        deleted_ids: List[str] = []
        for material in materials:
            deleted_ids.extend(
                self.material_service.delete_material(
                    material_id=material.id,
                    operator_id=operator_id,
                )
            )
        logger.info(f"External reference '{external_ref}' removed {len(deleted_ids)} materials")
        return deleted_ids

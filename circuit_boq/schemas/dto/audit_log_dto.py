from datetime import datetime
from typing import Any, Optional

from circuit_boq.models.audit_log import AuditLog
from circuit_boq.schemas.dto.base_dto import BaseDTO


class AuditLogDTO(BaseDTO):
    id: str
    circuit_id: Optional[str]
    entity_type: str
    entity_id: str
    action: str
    changed_attribute: str
    before_value: Any
    after_value: Any
    operator_id: str
    timestamp: Optional[datetime]

    @classmethod
    def from_orm_model(cls, log: AuditLog) -> "AuditLogDTO":
        return cls(
            id=log.id,
            circuit_id=log.circuit_id,
            entity_type=log.entity_type.value,
            entity_id=log.entity_id,
            action=log.action.value,
            changed_attribute=log.changed_attribute,
            before_value=log.before_value,
            after_value=log.after_value,
            operator_id=log.operator_id,
            timestamp=log.timestamp,
        )

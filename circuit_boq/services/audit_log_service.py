from typing import Any, Optional
from uuid import uuid4
from datetime import datetime, date
from decimal import Decimal
import enum

from sqlalchemy.orm import Session

from circuit_boq.models.audit_log import AuditLog
from circuit_boq.db.enums import AuditEntityType, AuditAction

class AuditLogService:
    """
    Centralized service for recording all auditable actions.
    This service is the ONLY place where AuditLog records can be created.
    """

    def __init__(self, db: Session):
        self.db = db

    def serialize_audit_value(self, value) -> Any:
        if value is None:
            return None
        if isinstance(value, Decimal):
            return str(value)      # 保留精度
        if isinstance(value, enum.Enum):
            return value.value
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        if isinstance(value, (int, float, str, bool)):
            return value
        return str(value)  # 兜底

    def _add(
        self,
        *,
        circuit_id: Optional[str],
        entity_id: str,
        action: AuditAction,
        changed_attribute: str,
        before_value: Any,
        after_value: Any,
        operator_id: str,
    ) -> None:
        log = AuditLog(
            id=str(uuid4()),
            circuit_id=circuit_id,
            entity_type=AuditEntityType.CircuitMaterial,
            entity_id=entity_id,
            action=action,
            changed_attribute=changed_attribute,
            before_value=self.serialize_audit_value(before_value),
            after_value=self.serialize_audit_value(after_value),
            operator_id=operator_id,
            timestamp=datetime.now(),
        )
        self.db.add(log)

    def record_create(
        self,
        *,
        circuit_id: Optional[str],
        entity_id: str,
        operator_id: str,
    ) -> None:
        '''
        创建一条创建操作的审计日志

        :param circuit_id: 从属回路ID
        :type circuit_id: Optional[str]
        :param entity_id: 所属实体唯一id
        :type entity_id: str
        :param operator_id: 操作用户ID
        :type operator_id: str
        '''
        self._add(
            circuit_id=circuit_id,
            entity_id=entity_id,
            action=AuditAction.create,
            changed_attribute="__all__",
            before_value=None,
            after_value=None,
            operator_id=operator_id,
        )

    def record_update(
        self,
        *,
        circuit_id: Optional[str],
        entity_id: str,
        changed_attribute: str,
        before_value: Any,
        after_value: Any,
        operator_id: str,
    ) -> None:
        '''
        创建一条更新操作的审计日志
        :param circuit_id: 从属回路ID
        :param entity_id: 所属实体唯一id
        :param changed_attribute: 变更的属性名称
        :param before_value：修改前的值
        :param after_value: 修改后的值
        :param operator_id: 操作用户ID
        '''
        self._add(
            circuit_id=circuit_id,
            entity_id=entity_id,
            action=AuditAction.update,
            changed_attribute=changed_attribute,
            before_value=before_value,
            after_value=after_value,
            operator_id=operator_id,
        )

    def record_delete(
        self,
        *,
        circuit_id: Optional[str],
        entity_id: str,
        operator_id: str,
        description: Optional[str] = None,
    ) -> None:
        '''
        创建一条删除操作的审计日志，before_value 保存被删除记录的描述
        '''
        self._add(
            circuit_id=circuit_id,
            entity_id=entity_id,
            action=AuditAction.delete,
            changed_attribute="__all__",
            before_value=description,
            after_value=None,
            operator_id=operator_id,
        )

    def record_system_update(
        self,
        *,
        circuit_id: Optional[str],
        entity_id: str,
        changed_attribute: str,
        before_value: Any,
        after_value: Any,
    ) -> None:
        '''
        系统自动更新（例如数量变化后重新计算 gross_quantity）
        '''
        self._add(
            circuit_id=circuit_id,
            entity_id=entity_id,
            action=AuditAction.system,
            changed_attribute=changed_attribute,
            before_value=before_value,
            after_value=after_value,
            operator_id="SYSTEM",
        )

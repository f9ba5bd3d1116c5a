# circuit_boq/services/circuit_material_service.py
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from circuit_boq.config import EngineSettings, load_engine_settings
from circuit_boq.db.enums import MaterialCategory, BOQSection, InstallationStatus
from circuit_boq.logger import get_logger
from circuit_boq.models.circuit_material import CircuitMaterial
from circuit_boq.services.audit_log_service import AuditLogService
from circuit_boq.services.classification_service import classify_with_override
from circuit_boq.services.derivation_service import DerivationService, DerivedMaterial
from circuit_boq.services.exceptions import (
    CascadeDeleteError,
    MaterialNotFoundError,
    MaterialValidationError,
    PersistenceError,
)
from circuit_boq.services.quantity_service import compute_gross, parse_quantity, ZERO

logger = get_logger(__name__)


@dataclass
class DerivationFailure:
    descriptor: DerivedMaterial
    error: str


@dataclass
class MaterialCreationResult:
    primary: CircuitMaterial
    children: List[CircuitMaterial] = field(default_factory=list)
    # 子项写入失败不会回滚主记录，由调用方决定如何提示/重试
    failed_derivations: List[DerivationFailure] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.failed_derivations


class CircuitMaterialService:
    """
    Lifecycle of circuit materials and their derived children.

    Responsibilities:
    - classify, compute wastage/gross and persist primary records
    - derive and persist supporting materials for cable records
    - cascade deletes (children strictly before parent)
    - whitelisted field edits with audit logs (children are never re-derived on edit)

    The service flushes but never commits; the caller owns the transaction.
    """
    # circuit_id、来源字段和计算字段不允许人工修改
    EDITABLE_FIELDS = {
        "description",
        "unit",
        "quantity",
        "supply_rate",
        "install_rate",
        "boq_item_code",
        "category",
        "boq_section",
        "wastage_factor",
    }

    # 修改后需要重新计算 gross_quantity 的字段
    QUANTITY_TRIGGER_FIELDS = {
        "quantity",
        "wastage_factor",
    }

    def __init__(
        self,
        db: Session,
        audit_log_service: AuditLogService,
        derivation_service: Optional[DerivationService] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.db = db
        self.audit_log_service = audit_log_service
        self.settings = settings or load_engine_settings()
        self.derivation_service = derivation_service or DerivationService(self.settings)

    # =========
    # Queries
    # =========
    def get_material(self, material_id: str) -> CircuitMaterial:
        material = self.db.get(CircuitMaterial, material_id)
        if not material:
            raise MaterialNotFoundError(f"Circuit material not found: {material_id}")
        return material

    def list_by_circuit(self, circuit_id: str) -> List[CircuitMaterial]:
        '''
        Primaries in insertion order, each directly followed by its derived items in rule order.
        '''
        return (
            self.db.query(CircuitMaterial)
            .filter(CircuitMaterial.circuit_id == circuit_id)
            .order_by(CircuitMaterial.list_position, CircuitMaterial.derivation_index, CircuitMaterial.id)
            .all()
        )

    def list_children(self, material_id: str) -> List[CircuitMaterial]:
        return (
            self.db.query(CircuitMaterial)
            .filter(CircuitMaterial.parent_material_id == material_id)
            .order_by(CircuitMaterial.derivation_index, CircuitMaterial.id)
            .all()
        )

    def _next_list_position(self, circuit_id: str) -> int:
        current = (
            self.db.query(func.max(CircuitMaterial.list_position))
            .filter(CircuitMaterial.circuit_id == circuit_id)
            .scalar()
        )
        return (current or 0) + 1

    # =========
    # Create
    # =========
    def create_material(
        self,
        *,
        circuit_id: str,
        description: str,
        unit: Optional[str] = None,
        quantity: Any = None,
        supply_rate: Any = None,
        install_rate: Any = None,
        boq_item_code: Optional[str] = None,
        category: Any = None,
        boq_section: Any = None,
        cable_size: Any = None,
        skip_derivation: bool = False,
        external_ref: Optional[str] = None,
        operator_id: str,
    ) -> MaterialCreationResult:
        '''
        Create a primary material and, for cables, its derived supporting materials.

        :param circuit_id: 所属回路ID（创建后不可修改）
        :param description: 材料描述，不能为空
        :param quantity: 净用量，空值按 0，负数按 0，非数字报错
        :param category: 可选，人工指定类别（字符串或 MaterialCategory），跳过自动分类
        :param boq_section: 可选，人工指定 BOQ 分组
        :param cable_size: 可选，声明的线径（mm²），优先于描述中提取的线径
        :param skip_derivation: True 时不生成任何子项
        :param external_ref: 可选，图纸元素引用，删除图元时用于联动删除
        :param operator_id: 操作者ID
        :return: MaterialCreationResult
        '''
        # 1️⃣ 输入校验，在任何写入之前完成
        circuit_id = self._require_text(circuit_id, "circuit_id")
        description = self._require_text(description, "description")
        net_quantity = parse_quantity(quantity, field="quantity")
        supply = parse_quantity(supply_rate, field="supply_rate")
        install = parse_quantity(install_rate, field="install_rate")
        category_override = self._parse_enum(MaterialCategory, category, "category")
        section_override = self._parse_enum(BOQSection, boq_section, "boq_section")

        # 2️⃣ 分类（或人工覆盖）+ 损耗计算
        classification = classify_with_override(description, category_override, section_override)
        breakdown = compute_gross(net_quantity, classification.wastage_percent)

        # 3️⃣ 主记录入库，失败则整个操作失败，不尝试子项
        primary = CircuitMaterial(
            id=str(uuid4()),
            circuit_id=circuit_id,
            description=description,
            unit=unit,
            boq_item_code=boq_item_code,
            quantity=net_quantity,
            supply_rate=supply,
            install_rate=install,
            category=classification.category,
            boq_section=classification.boq_section,
            installation_status=InstallationStatus.planned,
            wastage_factor=classification.wastage_percent,
            wastage_quantity=breakdown.wastage_quantity,
            gross_quantity=breakdown.gross_quantity,
            is_auto_generated=False,
            parent_material_id=None,
            derivation_index=0,
            external_ref=external_ref or None,
        )
        try:
            primary.list_position = self._next_list_position(circuit_id)
            self.db.add(primary)
            self.db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist material '{description}' on circuit {circuit_id}: {e}")
            raise PersistenceError(f"Failed to persist material: {e}") from e

        self.audit_log_service.record_create(
            circuit_id=circuit_id,
            entity_id=primary.id,
            operator_id=operator_id,
        )
        logger.info(
            f"Created material {primary.id} ({classification.category.value}, "
            f"net={net_quantity}, gross={breakdown.gross_quantity}) on circuit {circuit_id}"
        )

        result = MaterialCreationResult(primary=primary)

        # 4️⃣ 电缆类材料自动派生配套材料
        if (
            classification.category == MaterialCategory.cable
            and not skip_derivation
            and net_quantity > ZERO
        ):
            descriptors = self.derivation_service.derive_supporting_materials(
                description, net_quantity, cable_size
            )
            for index, descriptor in enumerate(descriptors, start=1):
                self._persist_child(primary, descriptor, index, result, operator_id)

            if result.failed_derivations:
                logger.warning(
                    f"Material {primary.id}: {len(result.failed_derivations)} of "
                    f"{len(descriptors)} derived materials could not be saved"
                )

        return result

    def bulk_create_materials(
        self,
        *,
        circuit_id: str,
        items: List[Dict[str, Any]],
        operator_id: str,
    ) -> List[MaterialCreationResult]:
        '''
        Create several materials on one circuit, in order.
        Each item is a dict of create_material keyword arguments (without circuit_id/operator_id).
        '''
        results = []
        for item in items:
            results.append(
                self.create_material(circuit_id=circuit_id, operator_id=operator_id, **item)
            )
        return results

    def _persist_child(
        self,
        primary: CircuitMaterial,
        descriptor: DerivedMaterial,
        derivation_index: int,
        result: MaterialCreationResult,
        operator_id: str,
    ) -> None:
        try:
            # 每个子项单独一个 SAVEPOINT，失败只回滚这一条
            with self.db.begin_nested():
                child = self._build_child(primary, descriptor, derivation_index)
                self.db.add(child)
        except SQLAlchemyError as e:
            logger.warning(
                f"Derived material '{descriptor.description}' for {primary.id} failed: {e}"
            )
            result.failed_derivations.append(DerivationFailure(descriptor=descriptor, error=str(e)))
            return

        self.audit_log_service.record_create(
            circuit_id=primary.circuit_id,
            entity_id=child.id,
            operator_id=operator_id,
        )
        result.children.append(child)

    def _build_child(
        self,
        primary: CircuitMaterial,
        descriptor: DerivedMaterial,
        derivation_index: int,
    ) -> CircuitMaterial:
        # 派生子项不再额外计损耗：wastage_factor = 0, gross = quantity
        return CircuitMaterial(
            id=str(uuid4()),
            circuit_id=primary.circuit_id,
            description=descriptor.description,
            unit=descriptor.unit,
            boq_item_code=None,
            quantity=descriptor.quantity,
            supply_rate=Decimal("0"),
            install_rate=Decimal("0"),
            category=descriptor.category,
            boq_section=descriptor.boq_section,
            installation_status=InstallationStatus.planned,
            wastage_factor=Decimal("0"),
            wastage_quantity=Decimal("0"),
            gross_quantity=descriptor.quantity,
            is_auto_generated=True,
            parent_material_id=primary.id,
            list_position=primary.list_position,
            derivation_index=derivation_index,
            external_ref=None,
        )

    # =========
    # Delete
    # =========
    def delete_material(self, *, material_id: str, operator_id: str) -> List[str]:
        '''
        Delete a material and every record derived from it.
        Children are removed (and flushed) strictly before the parent; a failing
        child aborts the cascade and the parent is left in place.

        :return: 被删除的记录ID列表，子项在前，父项在最后
        '''
        material = self.get_material(material_id)
        circuit_id = material.circuit_id
        deleted_ids: List[str] = []

        for child in self.list_children(material_id):
            child_id = child.id
            child_description = child.description
            try:
                with self.db.begin_nested():
                    self.db.delete(child)
            except SQLAlchemyError as e:
                logger.error(f"Cascade delete of {material_id} stopped at child {child_id}: {e}")
                raise CascadeDeleteError(
                    f"Failed to delete derived material {child_id}: {e}",
                    parent_id=material_id,
                    deleted_child_ids=deleted_ids,
                ) from e
            self.audit_log_service.record_delete(
                circuit_id=circuit_id,
                entity_id=child_id,
                operator_id=operator_id,
                description=child_description,
            )
            deleted_ids.append(child_id)

        material_description = material.description
        try:
            with self.db.begin_nested():
                self.db.delete(material)
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete material {material_id}: {e}")
            raise PersistenceError(f"Failed to delete material {material_id}: {e}") from e

        self.audit_log_service.record_delete(
            circuit_id=circuit_id,
            entity_id=material_id,
            operator_id=operator_id,
            description=material_description,
        )
        deleted_ids.append(material_id)
        logger.info(f"Deleted material {material_id} with {len(deleted_ids) - 1} derived materials")
        return deleted_ids

    # =========
    # Update
    # =========
    def unlink_external_reference(self, *, material_id: str, operator_id: str) -> CircuitMaterial:
        '''
        Clear the drawing link only; the record and its children stay.
        '''
        material = self.get_material(material_id)
        old_value = material.external_ref
        if old_value is None:
            return material

        material.external_ref = None
        self.audit_log_service.record_update(
            circuit_id=material.circuit_id,
            entity_id=material.id,
            changed_attribute="external_ref",
            before_value=old_value,
            after_value=None,
            operator_id=operator_id,
        )
        self.db.flush()
        return material

    def update_status(
        self,
        *,
        material_id: str,
        status: Any,
        operator_id: str,
    ) -> CircuitMaterial:
        '''
        Store a new installation status. Transitions are driven by the UI and not checked here.
        '''
        material = self.get_material(material_id)
        new_status = self._parse_enum(InstallationStatus, status, "installation_status")
        if new_status is None:
            raise MaterialValidationError("installation_status is required", field="installation_status")

        old_status = material.installation_status
        if old_status == new_status:
            return material

        material.installation_status = new_status
        self.audit_log_service.record_update(
            circuit_id=material.circuit_id,
            entity_id=material.id,
            changed_attribute="installation_status",
            before_value=old_status,
            after_value=new_status,
            operator_id=operator_id,
        )
        self.db.flush()
        return material

    def update_material(
        self,
        *,
        material_id: str,
        updates: Dict[str, Any],
        operator_id: str,
    ) -> CircuitMaterial:
        '''
        Modify allowed fields of a material.
        Quantity and wastage edits recompute wastage_quantity and gross_quantity.
        Derived items are not re-derived: editing a cable's quantity, description
        or category leaves its existing children as they are. To resize them,
        delete the cable and create it again.

        :param material_id: 材料ID
        :param updates: 字段 -> 新值
        :param operator_id: 操作者ID
        '''
        material = self.get_material(material_id)

        # 1️⃣ 先全部解析校验，任何字段不合法都不修改记录
        parsed: Dict[str, Any] = {}
        for field_name, raw_value in updates.items():
            if field_name not in self.EDITABLE_FIELDS:
                raise MaterialValidationError(f"Field '{field_name}' is not editable", field=field_name)
            parsed[field_name] = self._parse_field(field_name, raw_value)

        if material.is_auto_generated and parsed.get("wastage_factor", ZERO) != ZERO:
            raise MaterialValidationError(
                "Derived materials carry no wastage", field="wastage_factor"
            )

        # 2️⃣ 字段级修改 + 审计
        need_recompute = False
        for field_name, new_value in parsed.items():
            old_value = getattr(material, field_name)
            if old_value == new_value:
                continue
            if field_name in self.QUANTITY_TRIGGER_FIELDS:
                need_recompute = True

            setattr(material, field_name, new_value)
            self.audit_log_service.record_update(
                circuit_id=material.circuit_id,
                entity_id=material.id,
                changed_attribute=field_name,
                before_value=old_value,
                after_value=new_value,
                operator_id=operator_id,
            )

        # 3️⃣ 数量相关字段变化后重新计算 gross
        if need_recompute:
            self._recompute_quantities(material)

        self.db.flush()
        return material

    def _recompute_quantities(self, material: CircuitMaterial) -> None:
        breakdown = compute_gross(material.quantity, material.wastage_factor)
        old_gross = material.gross_quantity
        material.wastage_quantity = breakdown.wastage_quantity
        material.gross_quantity = breakdown.gross_quantity
        if old_gross != breakdown.gross_quantity:
            self.audit_log_service.record_system_update(
                circuit_id=material.circuit_id,
                entity_id=material.id,
                changed_attribute="gross_quantity",
                before_value=old_gross,
                after_value=breakdown.gross_quantity,
            )

    def _parse_field(self, field_name: str, raw_value: Any) -> Any:
        if field_name == "description":
            return self._require_text(raw_value, "description")
        if field_name in ("quantity", "supply_rate", "install_rate", "wastage_factor"):
            return parse_quantity(raw_value, field=field_name)
        if field_name == "category":
            value = self._parse_enum(MaterialCategory, raw_value, field_name)
            if value is None:
                raise MaterialValidationError("category cannot be empty", field=field_name)
            return value
        if field_name == "boq_section":
            value = self._parse_enum(BOQSection, raw_value, field_name)
            if value is None:
                raise MaterialValidationError("boq_section cannot be empty", field=field_name)
            return value
        # unit / boq_item_code：空字符串存为 None
        if raw_value is None:
            return None
        text = str(raw_value).strip()
        return text or None

    # =========
    # Helpers
    # =========
    @staticmethod
    def _require_text(value: Any, field_name: str) -> str:
        if value is None or str(value).strip() == "":
            raise MaterialValidationError(f"{field_name} cannot be empty", field=field_name)
        return str(value).strip()

    @staticmethod
    def _parse_enum(enum_cls, value: Any, field_name: str):
        if value is None or value == "":
            return None
        if isinstance(value, enum_cls):
            return value
        try:
            return enum_cls(str(value).strip().lower())
        except ValueError:
            valid = [e.value for e in enum_cls]
            raise MaterialValidationError(
                f"Unknown {field_name} '{value}'. Valid values: {valid}", field=field_name
            )

# circuit_boq/routes/material.py
from flask import Blueprint, request, jsonify

from circuit_boq.db.session import get_session
from circuit_boq.schemas.dto.circuit_material_dto import CircuitMaterialDTO, MaterialCreationResultDTO
from circuit_boq.services.audit_log_service import AuditLogService
from circuit_boq.services.circuit_material_service import CircuitMaterialService
from circuit_boq.services.exceptions import MaterialValidationError
from circuit_boq.services.sync_bridge_service import SyncBridgeService

material_bp = Blueprint('material', __name__)

CREATE_FIELDS = (
    "description",
    "unit",
    "quantity",
    "supply_rate",
    "install_rate",
    "boq_item_code",
    "category",
    "boq_section",
    "cable_size",
    "skip_derivation",
    "external_ref",
)


def current_operator() -> str:
    """请求方在 header 中携带操作者ID，缺省为 SYSTEM"""
    return request.headers.get("X-Operator-Id", "SYSTEM").strip() or "SYSTEM"


def build_services(db):
    audit = AuditLogService(db)
    material_service = CircuitMaterialService(db=db, audit_log_service=audit)
    return material_service, SyncBridgeService(db=db, material_service=material_service)


def parse_flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def dump(dto) -> dict:
    return dto.model_dump(mode="json")


def json_object() -> dict:
    """请求体必须是 JSON 对象，没有请求体时按空对象处理"""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise MaterialValidationError("Request body must be a JSON object", field="body")
    return payload


def create_kwargs(item: dict) -> dict:
    kwargs = {k: item[k] for k in CREATE_FIELDS if k in item}
    kwargs["skip_derivation"] = parse_flag(kwargs.get("skip_derivation"))
    return kwargs


@material_bp.route('/circuits/<circuit_id>/materials', methods=['GET'])
def list_materials(circuit_id):
    """回路材料列表（主记录与派生子项）"""
    db = get_session()
    try:
        service, _ = build_services(db)
        materials = service.list_by_circuit(circuit_id)
        return jsonify([dump(CircuitMaterialDTO.from_orm_model(m)) for m in materials])
    finally:
        db.close()


@material_bp.route('/circuits/<circuit_id>/materials', methods=['POST'])
def create_material(circuit_id):
    """新增材料；电缆类自动生成配套材料"""
    payload = json_object()
    db = get_session()
    try:
        service, _ = build_services(db)
        result = service.create_material(
            circuit_id=circuit_id,
            operator_id=current_operator(),
            **create_kwargs(payload),
        )
        db.commit()
        # 子项部分失败时，已写入的数据保留并返回给前端提示
        return jsonify(dump(MaterialCreationResultDTO.from_domain_model(result))), 201
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@material_bp.route('/circuits/<circuit_id>/materials/bulk', methods=['POST'])
def bulk_create_materials(circuit_id):
    """批量新增材料，任何一条校验失败则整批回滚"""
    items = json_object().get("items")
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise MaterialValidationError("items must be a list of JSON objects", field="items")

    db = get_session()
    try:
        service, _ = build_services(db)
        results = service.bulk_create_materials(
            circuit_id=circuit_id,
            items=[create_kwargs(item) for item in items],
            operator_id=current_operator(),
        )
        db.commit()
        return jsonify([dump(MaterialCreationResultDTO.from_domain_model(r)) for r in results]), 201
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@material_bp.route('/materials/<material_id>', methods=['PATCH'])
def update_material(material_id):
    """修改材料字段（白名单）"""
    payload = json_object()
    db = get_session()
    try:
        service, _ = build_services(db)
        material = service.update_material(
            material_id=material_id,
            updates=payload,
            operator_id=current_operator(),
        )
        db.commit()
        return jsonify(dump(CircuitMaterialDTO.from_orm_model(material)))
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@material_bp.route('/materials/<material_id>/status', methods=['PATCH'])
def update_status(material_id):
    """修改安装状态"""
    payload = json_object()
    db = get_session()
    try:
        service, _ = build_services(db)
        material = service.update_status(
            material_id=material_id,
            status=payload.get("installation_status"),
            operator_id=current_operator(),
        )
        db.commit()
        return jsonify(dump(CircuitMaterialDTO.from_orm_model(material)))
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@material_bp.route('/materials/<material_id>', methods=['DELETE'])
def delete_material(material_id):
    """删除材料及其派生子项"""
    db = get_session()
    try:
        service, _ = build_services(db)
        deleted_ids = service.delete_material(
            material_id=material_id,
            operator_id=current_operator(),
        )
        db.commit()
        return jsonify({"deleted_ids": deleted_ids})
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@material_bp.route('/materials/<material_id>/unlink', methods=['POST'])
def unlink_external_reference(material_id):
    """解除与图纸元素的关联，不删除记录"""
    db = get_session()
    try:
        service, _ = build_services(db)
        material = service.unlink_external_reference(
            material_id=material_id,
            operator_id=current_operator(),
        )
        db.commit()
        return jsonify(dump(CircuitMaterialDTO.from_orm_model(material)))
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@material_bp.route('/external-refs/<path:external_ref>/materials', methods=['DELETE'])
def delete_by_external_reference(external_ref):
    """图纸元素被删除时联动删除材料；没有关联材料时返回空列表"""
    db = get_session()
    try:
        _, bridge = build_services(db)
        deleted_ids = bridge.delete_by_external_reference(
            external_ref=external_ref,
            operator_id=current_operator(),
        )
        db.commit()
        return jsonify({"deleted_ids": deleted_ids})
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

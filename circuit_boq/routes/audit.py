# circuit_boq/routes/audit.py
from flask import Blueprint, request, jsonify
from sqlalchemy import desc

from circuit_boq.db.enums import AuditAction
from circuit_boq.db.session import get_session
from circuit_boq.models.audit_log import AuditLog
from circuit_boq.schemas.dto.audit_log_dto import AuditLogDTO
from circuit_boq.services.exceptions import MaterialValidationError

audit_bp = Blueprint('audit', __name__, url_prefix='/audit-logs')

PER_PAGE = 50


@audit_bp.route('/', methods=['GET'])
def list_logs():
    """审计日志列表（按回路 / 材料 / 操作者 / 动作筛选）"""
    # 获取筛选参数
    circuit_id = request.args.get('circuit_id', '').strip() or None
    entity_id = request.args.get('entity_id', '').strip() or None
    operator_id = request.args.get('operator_id', '').strip() or None
    action = request.args.get('action', '').strip() or None
    try:
        page = max(int(request.args.get('page', 1)), 1)
    except ValueError:
        raise MaterialValidationError("page must be an integer", field="page")

    db = get_session()
    try:
        # 构建查询
        query = db.query(AuditLog)

        if circuit_id:
            query = query.filter(AuditLog.circuit_id == circuit_id)

        if entity_id:
            query = query.filter(AuditLog.entity_id == entity_id)

        if operator_id:
            query = query.filter(AuditLog.operator_id == operator_id)

        if action:
            try:
                query = query.filter(AuditLog.action == AuditAction(action.lower()))
            except ValueError:
                raise MaterialValidationError(f"Unknown action '{action}'", field="action")

        # 分页
        total = query.count()
        logs = (
            query.order_by(desc(AuditLog.timestamp), AuditLog.id)
            .offset((page - 1) * PER_PAGE)
            .limit(PER_PAGE)
            .all()
        )

        return jsonify({
            "total": total,
            "page": page,
            "per_page": PER_PAGE,
            "logs": [AuditLogDTO.from_orm_model(log).model_dump(mode="json") for log in logs],
        })
    finally:
        db.close()

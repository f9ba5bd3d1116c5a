from circuit_boq.db.session import get_engine
from circuit_boq.db.base import Base

def init_db():
    # 导入所有表，确保 metadata 完整
    from circuit_boq.models.circuit_material import CircuitMaterial  # noqa: F401
    from circuit_boq.models.audit_log import AuditLog  # noqa: F401

    engine = get_engine()
    Base.metadata.create_all(bind=engine)

"""
conftest.py: Shared pytest fixtures for the circuit_boq test suite.

Service tests run against an in-memory SQLite database with the schema created
from the ORM metadata; route tests use a temporary SQLite file so the Flask
app can open its own sessions.
"""
import os
import tempfile

# 日志写到临时目录，避免在仓库里生成 logs/
os.environ.setdefault("CIRCUIT_BOQ_LOG_DIR", os.path.join(tempfile.gettempdir(), "circuit_boq_test_logs"))

import pytest
from sqlalchemy.orm import Session

from circuit_boq.db.base import Base
from circuit_boq.db.session import build_engine
from circuit_boq.models.circuit_material import CircuitMaterial  # noqa: F401
from circuit_boq.models.audit_log import AuditLog  # noqa: F401
from circuit_boq.services.audit_log_service import AuditLogService
from circuit_boq.services.circuit_material_service import CircuitMaterialService
from circuit_boq.services.sync_bridge_service import SyncBridgeService


CIRCUIT_ID = "c0ffee00-0000-4000-8000-000000000001"


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = Session(bind=engine, autoflush=False)
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def audit_log_service(db):
    return AuditLogService(db)


@pytest.fixture
def material_service(db, audit_log_service):
    return CircuitMaterialService(db=db, audit_log_service=audit_log_service)


@pytest.fixture
def sync_bridge(db, material_service):
    return SyncBridgeService(db=db, material_service=material_service)


@pytest.fixture
def create_cable(material_service):
    """Create the reference 50 m, 4mm² cable run on CIRCUIT_ID."""
    def _create(**overrides):
        kwargs = dict(
            circuit_id=CIRCUIT_ID,
            description="4mm PVC insulated cable",
            unit="m",
            quantity=50,
            supply_rate="18.00",
            install_rate="22.00",
            operator_id="tester",
        )
        kwargs.update(overrides)
        return material_service.create_material(**kwargs)
    return _create

"""
test_circuit_material_service.py: create / derive / delete / edit lifecycle of circuit materials.
"""
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from circuit_boq.db.enums import AuditAction, BOQSection, InstallationStatus, MaterialCategory
from circuit_boq.models.audit_log import AuditLog
from circuit_boq.models.circuit_material import CircuitMaterial
from circuit_boq.services.exceptions import (
    CascadeDeleteError,
    MaterialNotFoundError,
    MaterialValidationError,
    PersistenceError,
)

from tests.conftest import CIRCUIT_ID


def audit_rows(db, action=None):
    db.flush()
    query = db.query(AuditLog)
    if action is not None:
        query = query.filter(AuditLog.action == action)
    return query.all()


def material_count(db):
    db.flush()
    return db.query(CircuitMaterial).count()


# =========
# Create
# =========
def test_reference_cable_creates_primary_and_children(create_cable):
    result = create_cable()
    primary = result.primary

    assert primary.category == MaterialCategory.cable
    assert primary.boq_section == BOQSection.conductors_and_cables
    assert primary.quantity == Decimal("50")
    assert primary.wastage_factor == Decimal("5")
    assert primary.wastage_quantity == Decimal("2.5")
    assert primary.gross_quantity == Decimal("52.5")
    assert primary.is_auto_generated is False
    assert primary.parent_material_id is None
    assert primary.installation_status == InstallationStatus.planned

    assert result.is_complete
    assert [c.quantity for c in result.children] == [
        Decimal("50"), Decimal("84"), Decimal("13"), Decimal("6"),
    ]


def test_children_carry_lineage_and_no_wastage(create_cable):
    result = create_cable(external_ref="dwg-cable-7")

    for child in result.children:
        assert child.is_auto_generated is True
        assert child.parent_material_id == result.primary.id
        assert child.circuit_id == CIRCUIT_ID
        assert child.wastage_factor == 0
        assert child.wastage_quantity == 0
        assert child.gross_quantity == child.quantity
        assert child.installation_status == InstallationStatus.planned
        assert child.external_ref is None


def test_children_are_persisted(material_service, create_cable):
    result = create_cable()

    stored = material_service.list_children(result.primary.id)

    assert {c.id for c in stored} == {c.id for c in result.children}
    assert len(material_service.list_by_circuit(CIRCUIT_ID)) == 5


def test_create_writes_one_audit_row_per_record(db, create_cable):
    result = create_cable(operator_id="alice")

    rows = audit_rows(db, AuditAction.create)

    assert len(rows) == 5
    assert {r.entity_id for r in rows} == {result.primary.id, *(c.id for c in result.children)}
    assert all(r.operator_id == "alice" for r in rows)
    assert all(r.circuit_id == CIRCUIT_ID for r in rows)


def test_skip_derivation_creates_primary_only(create_cable):
    result = create_cable(skip_derivation=True)

    assert result.children == []
    assert result.primary.gross_quantity == Decimal("52.5")


@pytest.mark.parametrize("quantity", [0, None, "", -5, "-0.5"])
def test_zero_or_negative_quantity_derives_nothing(create_cable, quantity):
    result = create_cable(quantity=quantity)

    assert result.primary.quantity == 0
    assert result.primary.gross_quantity == 0
    assert result.children == []


def test_non_cable_material_has_no_children(material_service):
    result = material_service.create_material(
        circuit_id=CIRCUIT_ID,
        description="20mm PVC conduit",
        unit="m",
        quantity="10",
        operator_id="tester",
    )

    assert result.primary.category == MaterialCategory.containment
    assert result.primary.wastage_quantity == Decimal("1")
    assert result.primary.gross_quantity == Decimal("11")
    assert result.children == []


def test_category_override_skips_derivation(create_cable):
    result = create_cable(category="accessory")

    assert result.primary.category == MaterialCategory.accessory
    assert result.primary.boq_section == BOQSection.appliances_and_accessories
    assert result.primary.wastage_factor == 0
    assert result.primary.gross_quantity == Decimal("50")
    assert result.children == []


def test_cable_override_derives_with_default_size(material_service):
    result = material_service.create_material(
        circuit_id=CIRCUIT_ID,
        description="Armoured feeder",
        quantity=20,
        category="CABLE",
        operator_id="tester",
    )

    assert result.primary.category == MaterialCategory.cable
    assert len(result.children) == 4
    assert result.children[0].description == "20mm PVC conduit for 2.5mm² cable"


def test_declared_cable_size_selects_bracket(create_cable):
    result = create_cable(cable_size="95")

    assert [c.description for c in result.children][0] == "300mm cable ladder for 95mm² cable"
    assert len(result.children) == 6


def test_external_ref_is_stored(create_cable):
    result = create_cable(external_ref="dwg-cable-7")

    assert result.primary.external_ref == "dwg-cable-7"


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"description": ""}, "description"),
        ({"description": "   "}, "description"),
        ({"description": None}, "description"),
        ({"circuit_id": ""}, "circuit_id"),
        ({"quantity": "fifty"}, "quantity"),
        ({"quantity": "nan"}, "quantity"),
        ({"supply_rate": "cheap"}, "supply_rate"),
        ({"category": "plumbing"}, "category"),
        ({"boq_section": "roofing"}, "boq_section"),
    ],
)
def test_invalid_input_persists_nothing(db, create_cable, overrides, field):
    with pytest.raises(MaterialValidationError) as exc_info:
        create_cable(**overrides)

    assert exc_info.value.field == field
    assert material_count(db) == 0
    assert audit_rows(db) == []


def test_primary_write_failure_raises_persistence_error(db, create_cable, monkeypatch):
    def broken_flush(*args, **kwargs):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(db, "flush", broken_flush)

    with pytest.raises(PersistenceError):
        create_cable()

    monkeypatch.undo()
    db.rollback()
    assert material_count(db) == 0
    assert audit_rows(db) == []


def test_failed_child_is_reported_and_the_rest_kept(db, material_service, create_cable, monkeypatch):
    build_child = material_service._build_child

    def flaky_build_child(primary, descriptor, derivation_index):
        child = build_child(primary, descriptor, derivation_index)
        if descriptor.rule_name == "conduit_saddle":
            child.description = None  # NOT NULL 约束失败
        return child

    monkeypatch.setattr(material_service, "_build_child", flaky_build_child)

    result = create_cable()

    assert not result.is_complete
    assert [f.descriptor.rule_name for f in result.failed_derivations] == ["conduit_saddle"]
    assert len(result.children) == 3
    assert material_count(db) == 4
    assert db.get(CircuitMaterial, result.primary.id) is not None
    assert len(audit_rows(db, AuditAction.create)) == 4


def test_bulk_create_keeps_order(db, material_service):
    results = material_service.bulk_create_materials(
        circuit_id=CIRCUIT_ID,
        items=[
            {"description": "63A MCB", "unit": "No", "quantity": 2},
            {"description": "2.5mm² twin & earth cable", "unit": "m", "quantity": 12},
        ],
        operator_id="tester",
    )

    assert [r.primary.category for r in results] == [MaterialCategory.distribution, MaterialCategory.cable]
    assert results[0].children == []
    assert len(results[1].children) == 4
    assert material_count(db) == 6


# =========
# Delete
# =========
def test_delete_cascades_children_first(db, material_service, create_cable):
    result = create_cable()
    child_ids = {c.id for c in result.children}

    deleted_ids = material_service.delete_material(material_id=result.primary.id, operator_id="tester")

    assert deleted_ids[-1] == result.primary.id
    assert set(deleted_ids[:-1]) == child_ids
    assert material_count(db) == 0
    assert material_service.list_children(result.primary.id) == []


def test_delete_is_audited_with_descriptions(db, material_service, create_cable):
    result = create_cable()

    material_service.delete_material(material_id=result.primary.id, operator_id="bob")

    rows = audit_rows(db, AuditAction.delete)
    assert len(rows) == 5
    assert all(r.operator_id == "bob" for r in rows)
    parent_row = next(r for r in rows if r.entity_id == result.primary.id)
    assert parent_row.before_value == "4mm PVC insulated cable"


def test_deleting_a_child_keeps_the_parent(db, material_service, create_cable):
    result = create_cable()
    child = result.children[0]

    deleted_ids = material_service.delete_material(material_id=child.id, operator_id="tester")

    assert deleted_ids == [child.id]
    assert db.get(CircuitMaterial, result.primary.id) is not None
    assert len(material_service.list_children(result.primary.id)) == 3


def test_delete_without_children(material_service, create_cable):
    result = create_cable(skip_derivation=True)

    assert material_service.delete_material(material_id=result.primary.id, operator_id="tester") == [
        result.primary.id
    ]


def test_child_delete_failure_keeps_parent(db, material_service, create_cable, monkeypatch):
    result = create_cable()
    parent_id = result.primary.id
    stuck = result.children[1]
    delete = db.delete

    def flaky_delete(instance):
        if instance is stuck:
            raise SQLAlchemyError("database is locked")
        delete(instance)

    monkeypatch.setattr(db, "delete", flaky_delete)

    with pytest.raises(CascadeDeleteError) as exc_info:
        material_service.delete_material(material_id=parent_id, operator_id="tester")

    monkeypatch.undo()
    assert exc_info.value.parent_id == parent_id
    assert stuck.id not in exc_info.value.deleted_child_ids
    assert db.get(CircuitMaterial, parent_id) is not None
    assert stuck.id in {c.id for c in material_service.list_children(parent_id)}


def test_delete_unknown_material(material_service):
    with pytest.raises(MaterialNotFoundError):
        material_service.delete_material(material_id="missing", operator_id="tester")


# =========
# Update
# =========
def test_unlink_clears_reference_only(db, material_service, create_cable):
    result = create_cable(external_ref="dwg-cable-7")

    material = material_service.unlink_external_reference(material_id=result.primary.id, operator_id="tester")

    assert material.external_ref is None
    assert material_count(db) == 5
    rows = audit_rows(db, AuditAction.update)
    assert [(r.changed_attribute, r.before_value, r.after_value) for r in rows] == [
        ("external_ref", "dwg-cable-7", None)
    ]


def test_unlink_without_reference_is_a_no_op(db, material_service, create_cable):
    result = create_cable()

    material_service.unlink_external_reference(material_id=result.primary.id, operator_id="tester")

    assert audit_rows(db, AuditAction.update) == []


def test_quantity_edit_recomputes_gross(db, material_service, create_cable):
    result = create_cable()

    material = material_service.update_material(
        material_id=result.primary.id,
        updates={"quantity": "100"},
        operator_id="tester",
    )

    assert material.quantity == Decimal("100")
    assert material.wastage_quantity == Decimal("5")
    assert material.gross_quantity == Decimal("105")

    update_row = audit_rows(db, AuditAction.update)[0]
    assert (update_row.changed_attribute, update_row.before_value, update_row.after_value) == (
        "quantity", "50.00", "100.00",
    )
    system_row = audit_rows(db, AuditAction.system)[0]
    assert system_row.changed_attribute == "gross_quantity"
    assert system_row.operator_id == "SYSTEM"
    assert system_row.after_value == "105.00"


def test_wastage_edit_recomputes_gross(material_service, create_cable):
    result = create_cable(skip_derivation=True)

    material = material_service.update_material(
        material_id=result.primary.id,
        updates={"wastage_factor": 10},
        operator_id="tester",
    )

    assert material.wastage_factor == Decimal("10")
    assert material.gross_quantity == Decimal("55")


def test_derived_material_cannot_take_wastage(material_service, create_cable):
    child = create_cable().children[0]

    with pytest.raises(MaterialValidationError) as exc_info:
        material_service.update_material(
            material_id=child.id,
            updates={"wastage_factor": 5},
            operator_id="tester",
        )

    assert exc_info.value.field == "wastage_factor"
    assert child.wastage_factor == 0


def test_derived_material_quantity_edit_keeps_gross_equal(material_service, create_cable):
    child = create_cable().children[1]

    material = material_service.update_material(
        material_id=child.id,
        updates={"quantity": 90},
        operator_id="tester",
    )

    assert material.gross_quantity == material.quantity == Decimal("90")


@pytest.mark.parametrize(
    "field",
    ["circuit_id", "parent_material_id", "is_auto_generated", "gross_quantity", "external_ref", "total_cost"],
)
def test_protected_fields_are_rejected(material_service, create_cable, field):
    primary = create_cable().primary

    with pytest.raises(MaterialValidationError) as exc_info:
        material_service.update_material(
            material_id=primary.id,
            updates={field: "x"},
            operator_id="tester",
        )

    assert exc_info.value.field == field


def test_invalid_update_changes_nothing(db, material_service, create_cable):
    primary = create_cable(skip_derivation=True).primary

    with pytest.raises(MaterialValidationError):
        material_service.update_material(
            material_id=primary.id,
            updates={"description": "Renamed cable", "quantity": "lots"},
            operator_id="tester",
        )

    assert primary.description == "4mm PVC insulated cable"
    assert audit_rows(db, AuditAction.update) == []


def test_category_and_text_edits(material_service, create_cable):
    primary = create_cable(skip_derivation=True).primary

    material = material_service.update_material(
        material_id=primary.id,
        updates={"category": "Containment", "boq_section": "general", "unit": "  ", "boq_item_code": "E-101"},
        operator_id="tester",
    )

    assert material.category == MaterialCategory.containment
    assert material.boq_section == BOQSection.general
    assert material.unit is None
    assert material.boq_item_code == "E-101"


@pytest.mark.parametrize(
    "status, expected",
    [
        ("installed", InstallationStatus.installed),
        ("VERIFIED", InstallationStatus.verified),
        (InstallationStatus.removed, InstallationStatus.removed),
    ],
)
def test_update_status(db, material_service, create_cable, status, expected):
    primary = create_cable(skip_derivation=True).primary

    material = material_service.update_status(material_id=primary.id, status=status, operator_id="tester")

    assert material.installation_status == expected
    row = audit_rows(db, AuditAction.update)[0]
    assert (row.changed_attribute, row.before_value, row.after_value) == (
        "installation_status", "planned", expected.value,
    )


def test_status_transitions_are_not_enforced(material_service, create_cable):
    primary = create_cable(skip_derivation=True).primary

    material_service.update_status(material_id=primary.id, status="removed", operator_id="tester")
    material = material_service.update_status(material_id=primary.id, status="planned", operator_id="tester")

    assert material.installation_status == InstallationStatus.planned


@pytest.mark.parametrize("status", [None, "", "broken"])
def test_update_status_rejects_unknown_values(material_service, create_cable, status):
    primary = create_cable(skip_derivation=True).primary

    with pytest.raises(MaterialValidationError) as exc_info:
        material_service.update_status(material_id=primary.id, status=status, operator_id="tester")

    assert exc_info.value.field == "installation_status"


def test_get_unknown_material(material_service):
    with pytest.raises(MaterialNotFoundError):
        material_service.get_material("missing")


# =========
# Ordering
# =========
def test_list_by_circuit_puts_each_primary_before_its_children(material_service, create_cable):
    first = create_cable()
    second = material_service.create_material(
        circuit_id=CIRCUIT_ID,
        description="63A MCB",
        quantity=1,
        operator_id="tester",
    )
    third = create_cable(description="16mm² SWA cable", quantity=10)

    listed = [m.id for m in material_service.list_by_circuit(CIRCUIT_ID)]

    assert listed == [
        first.primary.id,
        *(c.id for c in first.children),
        second.primary.id,
        third.primary.id,
        *(c.id for c in third.children),
    ]
    assert [first.primary.list_position, second.primary.list_position, third.primary.list_position] == [1, 2, 3]


def test_list_children_follows_rule_order(material_service, create_cable):
    result = create_cable()

    stored = material_service.list_children(result.primary.id)

    assert [c.id for c in stored] == [c.id for c in result.children]
    assert [c.derivation_index for c in stored] == [1, 2, 3, 4]
    assert all(c.list_position == result.primary.list_position for c in stored)
    assert result.primary.derivation_index == 0


def test_new_primary_goes_after_the_last_one(material_service, create_cable):
    first = create_cable(skip_derivation=True)
    second = create_cable(skip_derivation=True)
    material_service.delete_material(material_id=first.primary.id, operator_id="tester")

    third = create_cable(skip_derivation=True)

    assert second.primary.list_position == 2
    assert third.primary.list_position == 3
    assert [m.id for m in material_service.list_by_circuit(CIRCUIT_ID)] == [second.primary.id, third.primary.id]


def test_quantity_edit_does_not_rederive_children(material_service, create_cable):
    result = create_cable()

    material_service.update_material(
        material_id=result.primary.id,
        updates={"quantity": 100},
        operator_id="tester",
    )

    assert [c.quantity for c in material_service.list_children(result.primary.id)] == [
        Decimal("50"), Decimal("84"), Decimal("13"), Decimal("6"),
    ]

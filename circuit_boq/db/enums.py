import enum

# CircuitMaterial related enums
class MaterialCategory(enum.Enum):
    cable = "cable"
    containment = "containment"
    termination = "termination"
    fixture = "fixture"
    accessory = "accessory"
    distribution = "distribution"
    earthing = "earthing"
    other = "other"


class BOQSection(enum.Enum):
    conductors_and_cables = "conductors_and_cables"
    conduits_and_fittings = "conduits_and_fittings"
    terminations = "terminations"
    lighting = "lighting"
    appliances_and_accessories = "appliances_and_accessories"
    distribution = "distribution"
    earthing = "earthing"
    general = "general"   #未分类材料的默认分组


class InstallationStatus(enum.Enum):
    planned = "planned"
    installed = "installed"
    verified = "verified"
    removed = "removed"

# AuditLog related enums
class AuditEntityType(enum.Enum):
    CircuitMaterial = "circuit_material"


class AuditAction(enum.Enum):
    create = "create"
    update = "update"
    delete = "delete"
    system = "system"

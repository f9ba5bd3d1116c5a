# circuit_boq/services/classification_service.py
'''
Free-text material classification.

Descriptions are matched against an ordered rule table; the first rule that
matches decides category, BOQ section and wastage percentage. More specific
rules sit above the general ones they overlap with (a "cable gland" is a
termination, a "cable tray" is containment, only then does "cable" win).
'''
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Pattern, Tuple

from circuit_boq.db.enums import MaterialCategory, BOQSection


@dataclass(frozen=True)
class Classification:
    category: MaterialCategory
    boq_section: BOQSection
    wastage_percent: Decimal


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    pattern: Pattern[str]
    category: MaterialCategory
    boq_section: BOQSection
    wastage_percent: Decimal

    def matches(self, normalized: str) -> bool:
        return self.pattern.search(normalized) is not None


def _rule(name, regex, category, boq_section, wastage) -> ClassificationRule:
    return ClassificationRule(
        name=name,
        pattern=re.compile(regex),
        category=category,
        boq_section=boq_section,
        wastage_percent=Decimal(wastage),
    )


# 顺序即优先级：具体规则必须排在通用规则之前
CLASSIFICATION_RULES: Tuple[ClassificationRule, ...] = (
    _rule(
        "earthing_hardware",
        r"\bearth(?:ing)?\s+(?:spike|rod|electrode|bar|clamp)s?\b",
        MaterialCategory.earthing,
        BOQSection.earthing,
        "0",
    ),
    _rule(
        "termination",
        r"\b(?:gland|lug|ferrule|termination|heat[\s-]?shrink|connector\s+block)s?\b",
        MaterialCategory.termination,
        BOQSection.terminations,
        "0",
    ),
    _rule(
        "cable_support",
        r"\bcable\s+(?:tray|ladder|basket)s?\b|\btrunking\b|\bwireways?\b",
        MaterialCategory.containment,
        BOQSection.conduits_and_fittings,
        "5",
    ),
    _rule(
        "containment",
        r"\b(?:conduit|saddle|coupler|bend|sleeve|draw\s+box)(?:e?s)?\b",
        MaterialCategory.containment,
        BOQSection.conduits_and_fittings,
        "10",
    ),
    _rule(
        "cable",
        r"\b(?:cable|wire|conductor|flex|swa)s?\b|\bcu\s*/\s*pvc\b|\binsulated\b",
        MaterialCategory.cable,
        BOQSection.conductors_and_cables,
        "5",
    ),
    _rule(
        "distribution",
        r"\bdistribution\s+boards?\b|\b(?:db|mcb|rcd|rcbo|breaker)s?\b",
        MaterialCategory.distribution,
        BOQSection.distribution,
        "0",
    ),
    _rule(
        "accessory",
        r"\b(?:socket|switch(?:ed|es)?|isolator|plug|outlet|cover\s+plate)s?\b",
        MaterialCategory.accessory,
        BOQSection.appliances_and_accessories,
        "0",
    ),
    _rule(
        "fixture",
        r"\b(?:light|lamp|luminaire|downlight|led|batten|floodlight)s?\b",
        MaterialCategory.fixture,
        BOQSection.lighting,
        "0",
    ),
)

DEFAULT_CLASSIFICATION = Classification(
    category=MaterialCategory.other,
    boq_section=BOQSection.general,
    wastage_percent=Decimal("0"),
)

# 人工指定 category 时使用的默认分组和损耗率
CATEGORY_DEFAULTS = {
    MaterialCategory.cable: (BOQSection.conductors_and_cables, Decimal("5")),
    MaterialCategory.containment: (BOQSection.conduits_and_fittings, Decimal("10")),
    MaterialCategory.termination: (BOQSection.terminations, Decimal("0")),
    MaterialCategory.fixture: (BOQSection.lighting, Decimal("0")),
    MaterialCategory.accessory: (BOQSection.appliances_and_accessories, Decimal("0")),
    MaterialCategory.distribution: (BOQSection.distribution, Decimal("0")),
    MaterialCategory.earthing: (BOQSection.earthing, Decimal("0")),
    MaterialCategory.other: (BOQSection.general, Decimal("0")),
}


def normalize_description(description: Optional[str]) -> str:
    if not description:
        return ""
    return str(description).strip().casefold()


def classify(description: Optional[str]) -> Classification:
    '''
    Map a free-text description to category, BOQ section and wastage percent.
    Never raises; anything unmatched gets DEFAULT_CLASSIFICATION.
    '''
    normalized = normalize_description(description)
    if not normalized:
        return DEFAULT_CLASSIFICATION

    for rule in CLASSIFICATION_RULES:
        if rule.matches(normalized):
            return Classification(
                category=rule.category,
                boq_section=rule.boq_section,
                wastage_percent=rule.wastage_percent,
            )
    return DEFAULT_CLASSIFICATION


def classify_with_override(
    description: Optional[str],
    category: Optional[MaterialCategory] = None,
    boq_section: Optional[BOQSection] = None,
) -> Classification:
    '''
    Apply a caller-supplied category/section instead of the rule table.

    :param description: 材料描述，仅在没有任何 override 时参与分类
    :param category: 人工指定的类别
    :param boq_section: 人工指定的 BOQ 分组
    :return: Classification；只给 section 时，类别和损耗率仍按描述分类
    '''
    if category is None:
        classification = classify(description)
        if boq_section is None:
            return classification
        return Classification(
            category=classification.category,
            boq_section=boq_section,
            wastage_percent=classification.wastage_percent,
        )

    default_section, wastage = CATEGORY_DEFAULTS[category]
    return Classification(
        category=category,
        boq_section=boq_section or default_section,
        wastage_percent=wastage,
    )

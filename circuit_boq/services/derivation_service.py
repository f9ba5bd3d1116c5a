# circuit_boq/services/derivation_service.py
'''
Supporting-material derivation for cable runs.

A cable line implies containment, fixings and terminations. The items depend
on the cable size bracket and are scaled from the run length:

    per_metre    run * factor, rounded up     (tray, conduit, ladder)
    per_spacing  ceil(run / factor)            (saddles, brackets, ties)
    per_end      cable_ends * factor, 0 if run == 0   (glands, lugs)
'''
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING, InvalidOperation
from typing import List, Optional, Tuple

from circuit_boq.config import EngineSettings, load_engine_settings
from circuit_boq.db.enums import MaterialCategory, BOQSection
from circuit_boq.logger import get_logger
from circuit_boq.services.quantity_service import ceil_quantity, quantize_quantity, to_decimal, ZERO

logger = get_logger(__name__)

PER_METRE = "per_metre"
PER_SPACING = "per_spacing"
PER_END = "per_end"

# 数字 + 线径单位，例如 4mm / 2.5mm² / 16 mm2 / 10 sq mm
CABLE_SIZE_PATTERN = re.compile(
    r"(\d+(?:[.,]\d+)?)\s*(?:mm²|mm2|mm\^2|sq\.?\s*mm|sqmm|mm)(?![a-z0-9])"
)


@dataclass(frozen=True)
class DerivationRule:
    name: str
    template: str
    unit: str
    category: MaterialCategory
    boq_section: BOQSection
    basis: str
    factor: Decimal


@dataclass(frozen=True)
class SizeBracket:
    name: str
    max_size_mm2: Decimal
    rules: Tuple[DerivationRule, ...]


@dataclass(frozen=True)
class DerivedMaterial:
    description: str
    unit: str
    quantity: Decimal
    category: MaterialCategory
    boq_section: BOQSection
    rule_name: str


def _containment(name, template, unit, basis, factor) -> DerivationRule:
    return DerivationRule(
        name=name,
        template=template,
        unit=unit,
        category=MaterialCategory.containment,
        boq_section=BOQSection.conduits_and_fittings,
        basis=basis,
        factor=Decimal(factor),
    )


def _termination(name, template, factor) -> DerivationRule:
    return DerivationRule(
        name=name,
        template=template,
        unit="No",
        category=MaterialCategory.termination,
        boq_section=BOQSection.terminations,
        basis=PER_END,
        factor=Decimal(factor),
    )


# 按线径上限升序排列；顺序决定生成子项的顺序
SIZE_BRACKETS: Tuple[SizeBracket, ...] = (
    SizeBracket(
        name="small",
        max_size_mm2=Decimal("6"),
        rules=(
            _containment("conduit", "20mm PVC conduit for {size} cable", "m", PER_METRE, "1"),
            _containment("conduit_saddle", "20mm conduit saddle for {size} cable", "No", PER_SPACING, "0.6"),
            _containment("conduit_coupler", "20mm conduit coupler for {size} cable", "No", PER_SPACING, "4"),
            _termination("ferrule", "Bootlace ferrule for {size} cable", "3"),
        ),
    ),
    SizeBracket(
        name="medium",
        max_size_mm2=Decimal("25"),
        rules=(
            _containment("cable_tray", "150mm cable tray for {size} cable", "m", PER_METRE, "1"),
            _containment("tray_bracket", "Cable tray support bracket for {size} cable", "No", PER_SPACING, "1.5"),
            _containment("cable_tie", "Cable tie for {size} cable", "No", PER_SPACING, "0.3"),
            _termination("gland", "Compression gland for {size} cable", "1"),
            _termination("lug", "Crimp lug for {size} cable", "4"),
        ),
    ),
    SizeBracket(
        name="large",
        max_size_mm2=Decimal("300"),
        rules=(
            _containment("cable_ladder", "300mm cable ladder for {size} cable", "m", PER_METRE, "1"),
            _containment("ladder_support", "Cable ladder support for {size} cable", "No", PER_SPACING, "2"),
            _containment("cable_cleat", "Cable cleat for {size} cable", "No", PER_SPACING, "1"),
            _termination("gland", "Compression gland for {size} cable", "1"),
            _termination("lug", "Crimp lug for {size} cable", "4"),
            _termination("heat_shrink", "Heat shrink boot for {size} cable", "1"),
        ),
    ),
)


def extract_cable_size(description: Optional[str]) -> Optional[Decimal]:
    '''
    Pull the conductor size (mm²) out of a free-text description.
    Returns None when no positive size can be found.
    '''
    if not description:
        return None
    match = CABLE_SIZE_PATTERN.search(str(description).casefold())
    if not match:
        return None
    try:
        size = Decimal(match.group(1).replace(",", "."))
    except InvalidOperation:
        return None
    if size <= ZERO:
        return None
    return size


def select_bracket(cable_size_mm2: Decimal) -> SizeBracket:
    for bracket in SIZE_BRACKETS:
        if cable_size_mm2 <= bracket.max_size_mm2:
            return bracket
    # 超出表格的大线径按最大档处理
    return SIZE_BRACKETS[-1]


def format_size(cable_size_mm2: Decimal) -> str:
    return f"{format(cable_size_mm2.normalize(), 'f')}mm²"


class DerivationService:
    """
    Builds the ordered list of supporting materials implied by a cable run.
    Pure: nothing is persisted here.
    """

    def __init__(self, settings: Optional[EngineSettings] = None):
        self.settings = settings or load_engine_settings()

    def resolve_cable_size(self, description: Optional[str], declared_size=None) -> Decimal:
        '''
        declared size > size found in the description > configured default
        '''
        if declared_size is not None:
            try:
                size = to_decimal(declared_size)
            except (InvalidOperation, ValueError, TypeError):
                size = None
            if size is not None and size.is_finite() and size > ZERO:
                return size

        extracted = extract_cable_size(description)
        if extracted is not None:
            return extracted

        logger.info(
            f"No cable size in '{description}', using default {self.settings.default_cable_size_mm2}mm²"
        )
        return self.settings.default_cable_size_mm2

    def derive_supporting_materials(
        self,
        description: Optional[str],
        net_run_length,
        cable_size=None,
    ) -> List[DerivedMaterial]:
        '''
        Derive supporting materials for one cable run.

        :param description: 电缆描述，用于提取线径
        :param net_run_length: 电缆净长度（米），负数按 0 处理
        :param cable_size: 可选，调用方声明的线径（mm²）
        :return: 按规则顺序排列的 DerivedMaterial 列表
        '''
        # 不先取整：0.004m 仍是正数，子项数量不能为 0
        run_length = to_decimal(net_run_length)
        if run_length < ZERO:
            run_length = ZERO

        size = self.resolve_cable_size(description, cable_size)
        bracket = select_bracket(size)
        size_label = format_size(size)

        derived = [
            DerivedMaterial(
                description=rule.template.format(size=size_label),
                unit=rule.unit,
                quantity=self._rule_quantity(rule, run_length),
                category=rule.category,
                boq_section=rule.boq_section,
                rule_name=rule.name,
            )
            for rule in bracket.rules
        ]
        logger.info(
            f"Derived {len(derived)} supporting materials "
            f"(bracket={bracket.name}, size={size_label}, run={run_length})"
        )
        return derived

    def _rule_quantity(self, rule: DerivationRule, run_length: Decimal) -> Decimal:
        if run_length <= ZERO:
            return quantize_quantity(ZERO)

        if rule.basis == PER_METRE:
            return ceil_quantity(run_length * rule.factor)
        if rule.basis == PER_SPACING:
            return quantize_quantity((run_length / rule.factor).to_integral_value(rounding=ROUND_CEILING))
        if rule.basis == PER_END:
            return quantize_quantity(self.settings.cable_ends * rule.factor)
        raise ValueError(f"Unknown derivation basis: {rule.basis}")

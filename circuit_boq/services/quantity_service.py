# circuit_boq/services/quantity_service.py
'''
Wastage and gross quantity arithmetic.

Rounding policy (used for every stored quantity):
    values are Decimals, quantized to 2 decimal places with ROUND_HALF_UP.
    wastage = quantize(net * percent / 100)
    gross   = net + wastage      (net as given, never re-rounded)

Derived quantities are rounded up instead (ceil_quantity), so a positive
run never turns into a zero quantity.
'''
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP, InvalidOperation
from typing import Any

from circuit_boq.services.exceptions import MaterialValidationError

QUANTITY_PLACES = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class QuantityBreakdown:
    wastage_quantity: Decimal
    gross_quantity: Decimal


def to_decimal(value: Any) -> Decimal:
    # 经 str 转换，避免 float 的二进制误差
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_quantity(value: Any) -> Decimal:
    return to_decimal(value).quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def ceil_quantity(value: Any) -> Decimal:
    return to_decimal(value).quantize(QUANTITY_PLACES, rounding=ROUND_CEILING)


def compute_gross(net_quantity: Any, wastage_percent: Any) -> QuantityBreakdown:
    '''
    Compute wastage and gross quantity for a net quantity.
    Precondition: net_quantity >= 0 (callers clamp with parse_quantity first).

    :param net_quantity: 净用量
    :param wastage_percent: 损耗百分比，例如 5 表示 5%
    :return: QuantityBreakdown(wastage_quantity, gross_quantity)
    '''
    net = to_decimal(net_quantity)
    percent = to_decimal(wastage_percent)

    if percent == ZERO:
        wastage = quantize_quantity(ZERO)
    else:
        wastage = quantize_quantity(net * percent / HUNDRED)

    return QuantityBreakdown(wastage_quantity=wastage, gross_quantity=net + wastage)


def parse_quantity(raw: Any, *, field: str = "quantity") -> Decimal:
    '''
    Turn raw UI input into a non-negative Decimal.
    None / blank -> 0, negative -> 0; text that is not a finite number is rejected.
    '''
    if raw is None:
        return quantize_quantity(ZERO)
    if isinstance(raw, bool):
        raise MaterialValidationError(f"{field} must be a number", field=field)
    if isinstance(raw, str):
        raw = raw.strip()
        if raw == "":
            return quantize_quantity(ZERO)

    try:
        value = to_decimal(raw)
    except (InvalidOperation, ValueError, TypeError):
        raise MaterialValidationError(f"{field} must be a number, got {raw!r}", field=field)

    if not value.is_finite():
        raise MaterialValidationError(f"{field} must be a finite number", field=field)

    if value < ZERO:
        return quantize_quantity(ZERO)
    return quantize_quantity(value)

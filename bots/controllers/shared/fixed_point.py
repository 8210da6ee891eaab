from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import Any

PRECISION = Decimal("1e-18")
ONE = Decimal("1")
# Wide enough for 18 decimal places on any realistic notional.
_CONTEXT_PREC = 60


def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """Parse a config/API value into a Decimal.

    Floats go through ``str`` so ``0.05`` stays ``Decimal("0.05")``.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Expected a numeric {field_name}, got {value!r}.")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Expected a numeric {field_name}, got {value!r}.") from exc


def quantize(value: Decimal) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _CONTEXT_PREC
        return value.quantize(PRECISION, rounding=ROUND_DOWN)


def precise_mul(a: Decimal, b: Decimal) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _CONTEXT_PREC
        return (a * b).quantize(PRECISION, rounding=ROUND_DOWN)


def precise_div(a: Decimal, b: Decimal) -> Decimal:
    if b == 0:
        raise ZeroDivisionError("precise_div by zero")
    with localcontext() as ctx:
        ctx.prec = _CONTEXT_PREC
        return (a / b).quantize(PRECISION, rounding=ROUND_DOWN)

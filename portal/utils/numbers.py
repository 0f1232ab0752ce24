"""Безопасное приведение чисел из недоверенных источников."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")
HUNDRED = Decimal("100")
_DISPLAY = Decimal("0.01")


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Приводит значение к Decimal; мусор, NaN и бесконечность дают default."""

    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    text = str(value).strip()
    if not text:
        return default
    try:
        result = Decimal(text)
    except (InvalidOperation, ValueError):
        return default
    return result if result.is_finite() else default


def to_optional_decimal(value: Any) -> Decimal | None:
    return to_decimal(value, default=None)  # type: ignore[arg-type]


def to_display(value: Decimal | None, places: Decimal = _DISPLAY) -> float:
    """Округление до двух знаков только на границе ответа."""

    if value is None:
        return 0.0
    return float(value.quantize(places, rounding=ROUND_HALF_UP))


def to_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


__all__ = ["HUNDRED", "ZERO", "to_decimal", "to_display", "to_optional_decimal", "to_text"]

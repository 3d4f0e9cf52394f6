"""Rounding helpers for money and percentages"""

from decimal import ROUND_HALF_UP, Decimal


def round_half_up(value: float, places: int = 2) -> float:
    """Round half away from zero (2.675 -> 2.68), unlike the builtin round()"""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def percentage(part: float, whole: float, places: int = 2) -> float:
    """part / whole * 100, rounded. 0 when whole is 0"""
    if not whole:
        return 0.0
    return round_half_up(part / whole * 100, places)

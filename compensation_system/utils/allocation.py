# compensation_system/utils/allocation.py
"""
Money rounding and pool allocation.
"""
from decimal import Decimal, ROUND_DOWN
from typing import List, Sequence, Tuple

from config import MONEY_QUANT

ZERO = Decimal("0")


def toMoney(value) -> Decimal:
    """Round down to whole cents."""
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_DOWN)


def allocateByWeight(pool: Decimal, weights: Sequence[Decimal]) -> Tuple[List[Decimal], Decimal]:
    """
    Split `pool` proportionally to `weights` in whole cents.

    Each exact share is floored to cents, then the leftover cents go one at a
    time to the largest fractional parts (ties keep line order).
    Returns (amounts, remainder) with sum(amounts) + remainder == pool.
    """
    pool = Decimal(pool)
    totalWeight = sum((Decimal(w) for w in weights), ZERO)

    if not weights or totalWeight <= 0 or pool <= 0:
        return [ZERO for _ in weights], pool

    ideals = [pool * Decimal(w) / totalWeight for w in weights]
    floors = [toMoney(ideal) for ideal in ideals]

    leftoverCents = int((toMoney(pool) - sum(floors, ZERO)) / MONEY_QUANT)

    order = sorted(range(len(ideals)), key=lambda i: (-(ideals[i] - floors[i]), i))
    for i in order[:max(0, min(leftoverCents, len(order)))]:
        floors[i] += MONEY_QUANT

    remainder = pool - sum(floors, ZERO)
    return floors, remainder

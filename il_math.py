#!/usr/bin/env python3
"""
Impermanent Loss Math
=====================

Closed-form impermanent loss for a 50/50-weighted liquidity position and
the cost/benefit test that decides whether a rebalance pays for itself.
Pure functions — no I/O, no state.

FORMULA SOURCES:
──────────────────────────────────────────────
1. Impermanent Loss — Original AMM Math (Pintail, 2019)
   https://pintail.medium.com/uniswap-a-good-deal-for-liquidity-providers-104c0b6816f2
   IL = 2·√(r) / (1 + r) − 1,  where r = P_current / P_initial

2. Concentrated liquidity range status
   https://docs.uniswap.org/concepts/protocol/concentrated-liquidity
   Fees accrue only while P_lower ≤ P ≤ P_upper.
"""

import math
from dataclasses import dataclass
from typing import Dict

# ── Named Constants ──────────────────────────────────────────────────────
DEFAULT_MIN_SAVINGS_MULTIPLIER = 10  # Savings must be 10× the gas cost


@dataclass(frozen=True)
class ILResult:
    """
    Impermanent loss of a position versus simply holding the tokens.

      - il_percentage → negative percentage (e.g. −5.72 = 5.72% loss vs HODL)
      - il_value      → USD difference LP − HODL (≤ 0)
      - current_value → LP position value after the price move
      - hold_value    → value had the tokens been held (= initial value)
    """

    il_percentage: float
    il_value: float
    current_value: float
    hold_value: float


def _validate_prices(initial_price: float, current_price: float, initial_value: float):
    if not initial_price > 0:
        raise ValueError(f"initial_price must be positive, got {initial_price!r}")
    if not current_price >= 0:
        raise ValueError(f"current_price must be non-negative, got {current_price!r}")
    if not initial_value >= 0:
        raise ValueError(f"initial_value must be non-negative, got {initial_value!r}")


def impermanent_loss(
    initial_price: float, current_price: float, initial_value: float
) -> ILResult:
    """
    Impermanent loss for a 50/50 LP position.

    Formula (Pintail, 2019):
        r          = P_current / P_initial
        multiplier = 2·√(r) / (1 + r)
        IL %       = (multiplier − 1) × 100
        value_now  = initial_value × multiplier

    multiplier ≤ 1 for every r ≥ 0 (AM–GM), so IL is never positive and is
    exactly 0 at r = 1. A current price of 0 gives multiplier 0 (−100%).

    Raises ValueError for a non-positive initial price, a negative current
    price or a negative value instead of letting NaN propagate.
    """
    _validate_prices(initial_price, current_price, initial_value)

    r = current_price / initial_price
    multiplier = 2 * math.sqrt(r) / (1 + r)
    il_percentage = (multiplier - 1) * 100

    current_value = initial_value * multiplier
    hold_value = initial_value
    il_value = current_value - hold_value

    return ILResult(
        il_percentage=il_percentage,
        il_value=il_value,
        current_value=current_value,
        hold_value=hold_value,
    )


def predict_il(
    current_price: float, predicted_price: float, position_value: float
) -> ILResult:
    """IL a position would suffer if price moved from current to predicted."""
    return impermanent_loss(current_price, predicted_price, position_value)


def price_change_percent(old_price: float, new_price: float) -> float:
    """Percentage change: (new − old) / old × 100."""
    return ((new_price - old_price) / old_price) * 100


def rebalance_worthwhile(
    predicted_il_value: float,
    gas_cost_usd: float,
    min_multiplier: float = DEFAULT_MIN_SAVINGS_MULTIPLIER,
) -> bool:
    """
    True when the loss at stake clearly outweighs the transaction cost.

        |predicted_il_value| > gas_cost_usd × min_multiplier

    Strict comparison: exactly 10× the gas is not enough.
    """
    return abs(predicted_il_value) > gas_cost_usd * min_multiplier


def in_range(current_price: float, price_lower: float, price_upper: float) -> bool:
    """Whether the price sits inside the position's bounds (inclusive)."""
    return price_lower <= current_price <= price_upper


def range_proximity(
    current_price: float, range_min: float, range_max: float
) -> Dict[str, float]:
    """
    How close the current price is to the range boundaries.
    Returns buffer percentages and in-range status.
    """
    if range_max <= range_min or current_price <= 0:
        return {
            "in_range": False,
            "downside_buffer_pct": 0,
            "upside_buffer_pct": 0,
            "position_in_range_pct": 0,
        }

    inside = in_range(current_price, range_min, range_max)
    downside = ((current_price - range_min) / current_price) * 100
    upside = ((range_max - current_price) / current_price) * 100
    total_range = range_max - range_min
    pos_pct = ((current_price - range_min) / total_range) * 100 if inside else 0

    return {
        "in_range": inside,
        "downside_buffer_pct": round(downside, 2),
        "upside_buffer_pct": round(upside, 2),
        "position_in_range_pct": round(pos_pct, 2),
    }


# ── CLI quick test ───────────────────────────────────────────────────────

if __name__ == "__main__":
    import sys as _sys

    if len(_sys.argv) < 3:
        print("Usage: python il_math.py <initial_price> <current_price> [value_usd]")
        _sys.exit(1)

    _value = float(_sys.argv[3]) if len(_sys.argv) > 3 else 10_000.0
    res = impermanent_loss(float(_sys.argv[1]), float(_sys.argv[2]), _value)
    print(f"  IL            : {res.il_percentage:.2f}%")
    print(f"  IL value      : ${res.il_value:,.2f}")
    print(f"  LP value      : ${res.current_value:,.2f}")
    print(f"  HODL value    : ${res.hold_value:,.2f}")

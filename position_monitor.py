#!/usr/bin/env python3
"""
Position Monitor
================

Registry of concentrated-liquidity positions and their live metrics:
current IL versus entry, in-range status, net P&L (fees − |IL|).

Positions are plain data handed in by the host (on-chain discovery is an
external concern). Each update re-prices both tokens through the injected
price source, recomputes the metrics and notifies a registered callback.
"""

import inspect
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from il_math import impermanent_loss, in_range as price_in_range

logger = logging.getLogger(__name__)

URGENCY_LEVELS = ("low", "medium", "high", "critical")


@dataclass
class LPPosition:
    """
    A liquidity position.

    Contract fields (fixed at creation):
      - entry_price / price_lower / price_upper → 0 < lower < entry < upper
      - entry_value_usd                         → value deposited
    Live fields are rewritten by PositionMonitor.update_position().
    """

    position_id: str
    token_a: str
    token_b: str
    entry_price: float
    price_lower: float
    price_upper: float
    entry_value_usd: float

    # Token balances
    token_a_amount: float = 0.0
    token_b_amount: float = 0.0

    # Live metrics
    total_value_usd: float = 0.0
    current_price: float = 0.0
    current_il: float = 0.0  # percentage
    current_il_value: float = 0.0  # USD
    fees_earned_usd: float = 0.0
    net_pnl: float = 0.0
    in_range: bool = True

    protocol: str = "orca"
    entry_timestamp: float = field(default_factory=time.time)
    last_updated: float = field(default_factory=time.time)

    def __post_init__(self):
        if not (0 < self.price_lower < self.entry_price < self.price_upper):
            raise ValueError(
                "position bounds must satisfy 0 < price_lower < entry_price < price_upper, "
                f"got lower={self.price_lower} entry={self.entry_price} upper={self.price_upper}"
            )
        if not self.entry_value_usd > 0:
            raise ValueError(f"entry_value_usd must be positive, got {self.entry_value_usd}")
        if not self.total_value_usd:
            self.total_value_usd = self.entry_value_usd
        if not self.current_price:
            self.current_price = self.entry_price

    @property
    def pair(self) -> str:
        return f"{self.token_a}-{self.token_b}"

    @property
    def price_symbol(self) -> str:
        """Price feed symbol tracked for this position's volatile leg."""
        return f"{self.token_a}/USD"


@dataclass
class PositionUpdate:
    position: LPPosition
    il_change: float  # change in current IL % since the previous update
    recommendation: str
    urgency: str


def classify_il_urgency(
    position: LPPosition, thresholds: Tuple[float, float, float] = (2.0, 4.0, 6.0)
) -> str:
    """Urgency from range status and the magnitude of current IL."""
    low, medium, high = thresholds
    abs_il = abs(position.current_il)
    if not position.in_range or abs_il > high:
        return "critical"
    if abs_il > medium:
        return "high"
    if abs_il > low:
        return "medium"
    return "low"


class PositionMonitor:
    """Tracks positions and refreshes them from a price source."""

    def __init__(
        self,
        price_source,
        scheduler=None,
        il_thresholds: Tuple[float, float, float] = (2.0, 4.0, 6.0),
        clock: Callable[[], float] = None,
        monitor_interval_seconds: float = 30.0,
    ):
        self.price_source = price_source
        self.scheduler = scheduler
        self.il_thresholds = il_thresholds
        self.clock = clock or time.time
        self.monitor_interval_seconds = monitor_interval_seconds
        self._positions: Dict[str, LPPosition] = {}
        self._callbacks: Dict[str, Callable[[PositionUpdate], object]] = {}
        self._ids = itertools.count(1)

    # ── Registry ─────────────────────────────────────────────────────────

    def create_position(
        self,
        token_a: str,
        token_b: str,
        entry_price: float,
        price_lower: float,
        price_upper: float,
        value_usd: float = 10_000,
        fees_earned_usd: float = 0.0,
    ) -> LPPosition:
        """Register a position opened 50/50 at entry_price (token_b priced at $1)."""
        now = self.clock()
        position = LPPosition(
            position_id=f"pos-{next(self._ids)}",
            token_a=token_a.upper(),
            token_b=token_b.upper(),
            entry_price=entry_price,
            price_lower=price_lower,
            price_upper=price_upper,
            entry_value_usd=value_usd,
            token_a_amount=value_usd / 2 / entry_price,
            token_b_amount=value_usd / 2,
            fees_earned_usd=fees_earned_usd,
            net_pnl=fees_earned_usd,
            entry_timestamp=now,
            last_updated=now,
        )
        self._positions[position.position_id] = position
        logger.info(
            "Registered %s %s range %.4f-%.4f value $%.2f",
            position.position_id, position.pair, price_lower, price_upper, value_usd,
        )
        return position

    def add_position(self, position: LPPosition) -> LPPosition:
        """Register an externally built position (e.g. from an on-chain reader)."""
        self._positions[position.position_id] = position
        return position

    def remove_position(self, position_id: str) -> bool:
        self._callbacks.pop(position_id, None)
        return self._positions.pop(position_id, None) is not None

    def get_position(self, position_id: str) -> Optional[LPPosition]:
        return self._positions.get(position_id)

    def all_positions(self) -> List[LPPosition]:
        return list(self._positions.values())

    # ── Updates ──────────────────────────────────────────────────────────

    async def update_position(self, position_id: str) -> Optional[LPPosition]:
        """Re-price a position; None if unknown or either price is unavailable."""
        position = self._positions.get(position_id)
        if position is None:
            logger.error("Position %s not found", position_id)
            return None

        price_a = await self.price_source.get_price(f"{position.token_a}/USD")
        price_b = await self.price_source.get_price(f"{position.token_b}/USD")
        if price_a is None or price_b is None or price_a.price < 0 or price_b.price <= 0:
            logger.warning("Failed to fetch prices for %s", position.pair)
            return None

        previous_il = position.current_il
        current_price = price_a.price / price_b.price

        position.total_value_usd = (
            position.token_a_amount * price_a.price + position.token_b_amount * price_b.price
        )

        il = impermanent_loss(position.entry_price, current_price, position.entry_value_usd)
        position.current_il = il.il_percentage
        position.current_il_value = il.il_value
        position.current_price = current_price
        position.net_pnl = position.fees_earned_usd - abs(position.current_il_value)
        position.in_range = price_in_range(current_price, position.price_lower, position.price_upper)
        position.last_updated = self.clock()

        callback = self._callbacks.get(position_id)
        if callback is not None:
            result = callback(self._build_update(position, position.current_il - previous_il))
            if inspect.isawaitable(result):
                await result

        return position

    async def update_all_positions(self) -> Dict[str, LPPosition]:
        updated = {}
        for position_id in list(self._positions):
            position = await self.update_position(position_id)
            if position is not None:
                updated[position_id] = position
        return updated

    def monitor_position(
        self,
        position_id: str,
        on_update: Callable[[PositionUpdate], object],
        interval_seconds: Optional[float] = None,
    ):
        """Refresh a position every interval; returns the scheduler's TaskHandle."""
        if self.scheduler is None:
            raise RuntimeError("PositionMonitor.monitor_position requires a scheduler")
        self._callbacks[position_id] = on_update

        async def tick():
            await self.update_position(position_id)

        if interval_seconds is None:
            interval_seconds = self.monitor_interval_seconds
        return self.scheduler.every(interval_seconds, tick, name=f"position:{position_id}")

    def _build_update(self, position: LPPosition, il_change: float) -> PositionUpdate:
        urgency = classify_il_urgency(position, self.il_thresholds)
        abs_il = abs(position.current_il)
        il_usd = position.current_il_value

        if not position.in_range:
            recommendation = (
                f"Position OUT OF RANGE! Current price: ${position.current_price:.2f}, "
                f"Range: ${position.price_lower:.2f}-${position.price_upper:.2f}. "
                f"Rebalance immediately to resume earning fees."
            )
        elif urgency == "critical":
            recommendation = (
                f"CRITICAL IL: {abs_il:.2f}% ({il_usd:.2f} USD). "
                f"Consider exiting or widening range."
            )
        elif urgency == "high":
            recommendation = (
                f"High IL: {abs_il:.2f}% ({il_usd:.2f} USD). "
                f"Monitor closely, consider widening range."
            )
        elif urgency == "medium":
            recommendation = (
                f"Moderate IL: {abs_il:.2f}% ({il_usd:.2f} USD). "
                f"Position stable but watch for volatility."
            )
        else:
            recommendation = (
                f"Low IL: {abs_il:.2f}% ({il_usd:.2f} USD). Position healthy. "
                f"Net P&L: ${position.net_pnl:.2f}."
            )

        return PositionUpdate(
            position=position,
            il_change=il_change,
            recommendation=recommendation,
            urgency=urgency,
        )

    # ── Views ────────────────────────────────────────────────────────────

    def positions_by_risk(self) -> Dict[str, List[LPPosition]]:
        """Group positions by current-IL urgency."""
        grouped: Dict[str, List[LPPosition]] = {level: [] for level in URGENCY_LEVELS}
        for position in self._positions.values():
            grouped[classify_il_urgency(position, self.il_thresholds)].append(position)
        return grouped

    def position_summary(self, position_id: str) -> str:
        position = self._positions.get(position_id)
        if position is None:
            return "Position not found"

        range_text = "✅ IN RANGE" if position.in_range else "❌ OUT OF RANGE"
        il_text = (
            f"{abs(position.current_il):.2f}% loss"
            if position.current_il < 0
            else f"{position.current_il:.2f}% gain"
        )
        return (
            f"{position.pair} Position {range_text}\n"
            f"{'━' * 33}\n"
            f"Value: ${position.total_value_usd:.2f}\n"
            f"IL: {il_text} (${position.current_il_value:.2f})\n"
            f"Fees Earned: ${position.fees_earned_usd:.2f}\n"
            f"Net P&L: ${position.net_pnl:.2f}\n"
            f"\n"
            f"Range: ${position.price_lower:.2f} - ${position.price_upper:.2f}\n"
            f"Current: ${position.current_price:.2f}\n"
        )

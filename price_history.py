#!/usr/bin/env python3
"""
Price History — bounded per-symbol time series
===============================================

Stores the most recent price samples for each symbol and derives:

  • velocity   — blended hourly % change rate from 1/5/15-minute lookbacks
  • volatility — population standard deviation of consecutive % changes
                 inside a trailing window

Velocity blend (each horizon extrapolated to one hour, then weighted
50/30/20 toward the longer, steadier horizon):

    v/h = Δ15m × 0.5 × 4  +  Δ5m × 0.3 × 12  +  Δ1m × 0.2 × 60

Single writer (record), many readers. Not locked: everything runs on one
event loop. A threaded host must guard each symbol's buffer, since eviction
and iteration cannot interleave safely.
"""

import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional

from il_math import price_change_percent

logger = logging.getLogger(__name__)

# ── Named Constants ──────────────────────────────────────────────────────
DEFAULT_CAPACITY = 100
DEFAULT_LOOKBACK_TOLERANCE_SECONDS = 30.0
DEFAULT_VOLATILITY_WINDOW_MINUTES = 15.0

# (lookback minutes, blend weight, periods per hour)
VELOCITY_HORIZONS = (
    (15, 0.5, 4),
    (5, 0.3, 12),
    (1, 0.2, 60),
)


@dataclass(frozen=True)
class PriceSample:
    """One price observation. Immutable once recorded."""

    symbol: str
    price: float
    confidence: float
    timestamp: float  # seconds


@dataclass(frozen=True)
class PriceVelocity:
    """Derived rate of change for a symbol; never stored."""

    symbol: str
    current_price: float
    price_change_1min: float
    price_change_5min: float
    price_change_15min: float
    velocity_per_hour: float  # estimated % change per hour


class PriceHistory:
    """Per-symbol FIFO buffers of PriceSample with velocity / volatility readers."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], float] = None,
        lookback_tolerance_seconds: float = DEFAULT_LOOKBACK_TOLERANCE_SECONDS,
    ):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.clock = clock or time.time
        self.lookback_tolerance_seconds = lookback_tolerance_seconds
        self._buffers: Dict[str, Deque[PriceSample]] = {}

    # ── Writes ───────────────────────────────────────────────────────────

    def record(
        self,
        symbol: str,
        price: float,
        timestamp: Optional[float] = None,
        confidence: float = 0.0,
    ) -> PriceSample:
        """
        Append a sample, evicting the oldest beyond capacity. Never fails.

        A timestamp older than the newest sample is clamped to it so the
        buffer stays non-decreasing.
        """
        ts = self.clock() if timestamp is None else float(timestamp)
        buf = self._buffers.get(symbol)
        if buf is None:
            buf = deque(maxlen=self.capacity)
            self._buffers[symbol] = buf
        elif buf and ts < buf[-1].timestamp:
            logger.debug(
                "Out-of-order sample for %s (%.3f < %.3f), clamping", symbol, ts, buf[-1].timestamp
            )
            ts = buf[-1].timestamp

        sample = PriceSample(symbol=symbol, price=price, confidence=confidence, timestamp=ts)
        buf.append(sample)
        return sample

    def clear(self, symbol: str) -> None:
        """Drop all history for a symbol."""
        self._buffers.pop(symbol, None)

    # ── Reads ────────────────────────────────────────────────────────────

    def history_size(self, symbol: str) -> int:
        buf = self._buffers.get(symbol)
        return len(buf) if buf else 0

    def samples(self, symbol: str) -> List[PriceSample]:
        """Snapshot copy of a symbol's samples, oldest first."""
        return list(self._buffers.get(symbol, ()))

    def latest(self, symbol: str) -> Optional[PriceSample]:
        buf = self._buffers.get(symbol)
        return buf[-1] if buf else None

    def symbols(self) -> List[str]:
        return list(self._buffers)

    def _price_near(self, buf: Deque[PriceSample], target: float) -> Optional[float]:
        """Price of the sample closest to target, if strictly within tolerance."""
        closest = min(buf, key=lambda s: abs(s.timestamp - target))
        if abs(closest.timestamp - target) < self.lookback_tolerance_seconds:
            return closest.price
        return None

    def velocity(self, symbol: str) -> Optional[PriceVelocity]:
        """
        Blended hourly % change rate, or None with fewer than 2 samples.

        A lookback with no sample within tolerance of its target instant,
        or one landing on a non-positive price, contributes 0% rather than failing
        the whole computation.
        """
        buf = self._buffers.get(symbol)
        if not buf or len(buf) < 2:
            logger.info("Not enough price history for %s velocity", symbol)
            return None

        now = self.clock()
        current_price = buf[-1].price

        changes = {}
        for minutes, _, _ in VELOCITY_HORIZONS:
            past = self._price_near(buf, now - minutes * 60)
            changes[minutes] = (
                price_change_percent(past, current_price)
                if past is not None and past > 0
                else 0.0
            )

        velocity_per_hour = sum(
            changes[minutes] * weight * per_hour
            for minutes, weight, per_hour in VELOCITY_HORIZONS
        )

        return PriceVelocity(
            symbol=symbol,
            current_price=current_price,
            price_change_1min=changes[1],
            price_change_5min=changes[5],
            price_change_15min=changes[15],
            velocity_per_hour=velocity_per_hour,
        )

    def volatility(
        self, symbol: str, window_minutes: float = DEFAULT_VOLATILITY_WINDOW_MINUTES
    ) -> float:
        """
        Population std-dev of consecutive % changes within the trailing window.

        Returns 0.0 when fewer than 3 samples fall inside the window.
        """
        buf = self._buffers.get(symbol)
        if not buf or len(buf) < 3:
            return 0.0

        now = self.clock()
        window = window_minutes * 60
        prices = [s.price for s in buf if now - s.timestamp < window]
        if len(prices) < 3:
            return 0.0

        changes = [
            price_change_percent(prev, curr)
            for prev, curr in zip(prices, prices[1:])
            if prev
        ]
        if not changes:
            return 0.0

        mean = sum(changes) / len(changes)
        variance = sum((c - mean) ** 2 for c in changes) / len(changes)
        return math.sqrt(variance)
